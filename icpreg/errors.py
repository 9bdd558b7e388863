"""Error models: residuals and Jacobians of matched point pairs w.r.t. a twist.

Reference and current clouds are index-aligned: row ``i`` of the current
cloud is matched with row ``i`` of the reference cloud. Jacobian columns
follow the twist layout ``(tx, ty, tz, wx, wy, wz)``.
"""

import numpy as np

from .exceptions import NumericalFailure


class ErrorModel:
    """
    Interface of a registration error kernel.

    Call ``set_input_reference`` and ``set_input_current`` with matched
    clouds, then ``compute_error`` and ``compute_jacobian``; the results are
    read from ``error_vector`` and ``jacobian``.
    """

    name = None
    # number of residual rows produced per matched pair
    rows_per_point = 1
    requires_normals = False

    def __init__(self):
        self.reference = None
        self.current = None
        self.error_vector = np.zeros(0)
        self.jacobian = np.zeros((0, 6))
        self.weights = np.ones((0, 3))

    def set_input_reference(self, cloud):
        self.reference = cloud

    def set_input_current(self, cloud):
        """Store the current cloud and resize buffers; per-axis weights reset to 1."""
        self.current = cloud
        n = len(cloud)
        self.error_vector = np.zeros(n * self.rows_per_point)
        self.jacobian = np.zeros((n * self.rows_per_point, 6))
        self.weights = np.ones((n, 3))

    def set_weights(self, weights):
        weights = np.asarray(weights, dtype=float)
        if weights.shape != self.weights.shape:
            raise ValueError(f"Expected weights of shape {self.weights.shape}, "
                             f"got {weights.shape}")
        self.weights = weights

    def compute_error(self):
        raise NotImplementedError

    def compute_jacobian(self):
        raise NotImplementedError

    def _check_inputs(self):
        if self.reference is None or self.current is None:
            raise ValueError("Reference and current clouds must be set")
        if len(self.reference) != len(self.current):
            raise ValueError(f"Reference ({len(self.reference)}) and current "
                             f"({len(self.current)}) sizes differ")

    def _check_finite(self, values, what):
        if np.all(np.isfinite(values)):
            return
        bad = np.flatnonzero(~np.all(np.isfinite(values.reshape(len(values), -1)), axis=1))
        bad_points = np.unique(bad // self.rows_per_point)
        raise NumericalFailure(
            f"{what} has non-finite values for {bad_points.size} point(s), "
            f"first indices: {bad_points[:10].tolist()}")


class ErrorPointToPlane(ErrorModel):
    """
    Signed distance of each current point to the plane through its match,
    measured along the current point's normal.

    The Jacobian is the small-angle linearization
    ``[n, p x n]`` per row, the rotation of the normal itself is ignored.
    """

    name = 'point_to_plane'
    requires_normals = True

    def _normals(self):
        if self.current.normals is None:
            raise ValueError("Point-to-plane error needs normals on the current cloud")
        return self.current.normals

    def compute_jacobian(self):
        self._check_inputs()
        p = self.current.points
        n = self._normals()
        self.jacobian = np.hstack([n, np.cross(p, n)])
        self._check_finite(self.jacobian, "Jacobian")
        return self.jacobian

    def compute_error(self):
        self._check_inputs()
        n = self._normals()
        d = self.current.points - self.reference.points
        self.error_vector = np.sum(self.weights * n * d, axis=1)
        self._check_finite(self.error_vector, "Error vector")
        return self.error_vector


class ErrorPointToPoint(ErrorModel):
    """Per-axis displacement between matched points, three rows per pair."""

    name = 'point_to_point'
    rows_per_point = 3

    def compute_jacobian(self):
        self._check_inputs()
        p = self.current.points
        J = np.zeros((len(p), 3, 6))
        J[:, :, :3] = np.eye(3)
        # d(w x p)/dw = -[p]x
        J[:, 0, 4], J[:, 0, 5] = p[:, 2], -p[:, 1]
        J[:, 1, 3], J[:, 1, 5] = -p[:, 2], p[:, 0]
        J[:, 2, 3], J[:, 2, 4] = p[:, 1], -p[:, 0]
        self.jacobian = J.reshape(-1, 6)
        self._check_finite(self.jacobian, "Jacobian")
        return self.jacobian

    def compute_error(self):
        self._check_inputs()
        d = self.current.points - self.reference.points
        self.error_vector = (self.weights * d).reshape(-1)
        self._check_finite(self.error_vector, "Error vector")
        return self.error_vector


def get_error_model(name='point_to_plane'):
    """
    Get an error model by name.

    Args:
        name: 'point_to_plane' or 'point_to_point'

    Returns:
        ErrorModel instance
    """
    models = {
        'point_to_plane': ErrorPointToPlane,
        'point_to_point': ErrorPointToPoint,
    }
    if name not in models:
        raise ValueError(f"Unknown error model: {name}")
    return models[name]()
