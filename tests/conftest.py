import numpy as np
import pytest

from icpreg import PointCloud, twist_to_matrix


def make_corner_cloud(spacing=0.5, count=4):
    """
    Points on the three coordinate planes with their plane normals.

    Coordinates start at ``spacing`` so the three patches never share a
    point, which keeps all 6 degrees of freedom observable for point-to-plane.
    """
    ticks = spacing * np.arange(1, count + 1)
    u, v = np.meshgrid(ticks, ticks, indexing='ij')
    u, v = u.ravel(), v.ravel()
    zeros = np.zeros_like(u)

    points = np.vstack([
        np.column_stack([u, v, zeros]),   # z = 0
        np.column_stack([zeros, u, v]),   # x = 0
        np.column_stack([u, zeros, v]),   # y = 0
    ])
    normals = np.vstack([
        np.tile([0.0, 0.0, 1.0], (len(u), 1)),
        np.tile([1.0, 0.0, 0.0], (len(u), 1)),
        np.tile([0.0, 1.0, 0.0], (len(u), 1)),
    ])
    return PointCloud(points, normals)


@pytest.fixture
def corner_cloud():
    return make_corner_cloud()


@pytest.fixture
def planar_cloud():
    points = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [1.0, 1.0, 0.0]])
    normals = np.tile([0.0, 0.0, 1.0], (4, 1))
    return PointCloud(points, normals)


@pytest.fixture
def small_motion():
    """Pose mapping the displaced source back onto the corner cloud."""
    return twist_to_matrix([0.05, -0.03, 0.02, 0.01, -0.02, 0.035])
