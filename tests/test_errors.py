import numpy as np
import pytest

from icpreg import (ErrorPointToPlane, ErrorPointToPoint, NumericalFailure, PointCloud,
                    get_error_model)
from icpreg.transforms import twist_to_matrix


@pytest.fixture
def matched_pair():
    reference = PointCloud([[0.0, 0.0, 0.0], [1.0, 2.0, 3.0]])
    current = PointCloud([[0.5, -0.2, 0.1], [1.0, 2.5, 2.0]],
                         normals=[[0.0, 0.0, 2.0], [1.0, 1.0, 0.0]])
    return reference, current


def test_point_to_plane_residual(matched_pair):
    reference, current = matched_pair
    error = ErrorPointToPlane()
    error.set_input_reference(reference)
    error.set_input_current(current)

    residuals = error.compute_error()

    # normals are unit after construction: (0, 0, 1) and (1, 1, 0) / sqrt(2)
    np.testing.assert_allclose(residuals, [0.1, 0.5 / np.sqrt(2)])


def test_point_to_plane_jacobian_rows(matched_pair):
    reference, current = matched_pair
    error = ErrorPointToPlane()
    error.set_input_reference(reference)
    error.set_input_current(current)

    jacobian = error.compute_jacobian()

    assert jacobian.shape == (2, 6)
    for row, p, n in zip(jacobian, current.points, current.normals):
        np.testing.assert_allclose(row[:3], n)
        np.testing.assert_allclose(row[3:], np.cross(p, n))


def test_point_to_plane_per_axis_weights(matched_pair):
    reference, current = matched_pair
    error = ErrorPointToPlane()
    error.set_input_reference(reference)
    error.set_input_current(current)
    error.set_weights([[1.0, 1.0, 0.5], [0.0, 1.0, 1.0]])

    residuals = error.compute_error()

    np.testing.assert_allclose(residuals, [0.05, 0.5 / np.sqrt(2)])


def test_set_input_current_resets_buffers(matched_pair):
    reference, current = matched_pair
    error = ErrorPointToPlane()
    error.set_input_current(current)
    error.set_weights(np.zeros((2, 3)))

    error.set_input_current(current.subset([0]))

    assert error.error_vector.shape == (1,)
    assert error.jacobian.shape == (1, 6)
    np.testing.assert_array_equal(error.weights, np.ones((1, 3)))


def test_point_to_plane_predicts_small_motion():
    """First-order change of the residuals equals J @ twist for a small motion."""
    rng = np.random.default_rng(0)
    points = rng.normal(size=(20, 3))
    normals = rng.normal(size=(20, 3))
    reference = PointCloud(points + 0.01 * rng.normal(size=(20, 3)))
    current = PointCloud(points, normals)

    error = ErrorPointToPlane()
    error.set_input_reference(reference)
    error.set_input_current(current)
    before = error.compute_error().copy()
    jacobian = error.compute_jacobian().copy()

    twist = 1e-6 * np.array([1.0, -2.0, 0.5, 3.0, 1.0, -1.0])
    moved = PointCloud.__new__(PointCloud)
    moved.points = current.transformed(twist_to_matrix(twist)).points
    moved.normals = current.normals
    error.set_input_current(moved)
    after = error.compute_error()

    np.testing.assert_allclose(after - before, jacobian @ twist, atol=1e-10)


def test_zero_length_normal_is_reported():
    reference = PointCloud([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0]])
    current = PointCloud([[0.0, 0.0, 0.1], [1.0, 0.0, 0.1]],
                         normals=[[0.0, 0.0, 1.0], [0.0, 0.0, 0.0]])
    error = ErrorPointToPlane()
    error.set_input_reference(reference)
    error.set_input_current(current)

    with pytest.raises(NumericalFailure, match=r"\[1\]"):
        error.compute_error()


def test_point_to_plane_needs_normals():
    cloud = PointCloud([[0.0, 0.0, 0.0]])
    error = ErrorPointToPlane()
    error.set_input_reference(cloud)
    error.set_input_current(cloud)
    with pytest.raises(ValueError):
        error.compute_error()


def test_size_mismatch():
    error = ErrorPointToPoint()
    error.set_input_reference(PointCloud(np.zeros((2, 3))))
    error.set_input_current(PointCloud(np.zeros((3, 3))))
    with pytest.raises(ValueError):
        error.compute_error()


def test_point_to_point_rows():
    reference = PointCloud([[0.0, 0.0, 0.0], [1.0, 1.0, 1.0]])
    current = PointCloud([[0.1, 0.2, 0.3], [1.0, 2.0, 3.0]])
    error = ErrorPointToPoint()
    error.set_input_reference(reference)
    error.set_input_current(current)

    residuals = error.compute_error()
    jacobian = error.compute_jacobian()

    np.testing.assert_allclose(residuals, [0.1, 0.2, 0.3, 0.0, 1.0, 2.0])
    assert jacobian.shape == (6, 6)
    omega = np.array([0.3, -0.1, 0.2])
    for i, p in enumerate(current.points):
        block = jacobian[3 * i:3 * i + 3]
        np.testing.assert_allclose(block[:, :3], np.eye(3))
        np.testing.assert_allclose(block[:, 3:] @ omega, np.cross(omega, p))


def test_registry():
    assert isinstance(get_error_model('point_to_plane'), ErrorPointToPlane)
    assert isinstance(get_error_model('point_to_point'), ErrorPointToPoint)
    with pytest.raises(ValueError):
        get_error_model('plane_to_plane')
