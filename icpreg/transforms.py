"""Transformation utilities for point cloud registration.

Twists are 6-vectors laid out as ``(tx, ty, tz, wx, wy, wz)``: translation
part first, then the axis-angle rotation, matching the column order of the
error model Jacobians.
"""

import numpy as np


def compute_normals(points, k=30):
    """
    Estimate unit normals with Open3D, oriented towards the origin.

    Args:
        points: Points array (N, 3)
        k: Number of neighbours used for the local plane fit

    Returns:
        Normals array (N, 3)
    """
    import open3d as o3d

    pcd = o3d.geometry.PointCloud()
    pcd.points = o3d.utility.Vector3dVector(np.asarray(points, dtype=float))
    pcd.estimate_normals(
        search_param=o3d.geometry.KDTreeSearchParamKNN(knn=k)
    )

    # Orient normals consistently (toward viewpoint at origin)
    pcd.orient_normals_towards_camera_location(camera_location=np.array([0., 0., 0.]))

    return np.asarray(pcd.normals)


def skew(v):
    """Cross-product matrix: ``skew(a) @ b == np.cross(a, b)``."""
    x, y, z = v
    return np.array([
        [0, -z, y],
        [z, 0, -x],
        [-y, x, 0]
    ], dtype=float)


def twist_to_matrix(twist):
    """
    Exponential map from a twist to a 4x4 homogeneous transform.

    The rotation block comes from Rodrigues' formula and is orthonormal for
    any input; the translation is the SE(3) left Jacobian applied to the
    translation part.
    """
    twist = np.asarray(twist, dtype=float).reshape(6)
    rho, omega = twist[:3], twist[3:]
    theta = np.linalg.norm(omega)
    W = skew(omega)
    W2 = W @ W

    if theta < 1e-4:
        # Taylor expansion around zero rotation
        t2 = theta**2
        A, B, C = 1.0 - t2 / 6.0, 0.5 - t2 / 24.0, 1.0 / 6.0 - t2 / 120.0
    else:
        A = np.sin(theta) / theta
        B = (1 - np.cos(theta)) / theta**2
        C = (theta - np.sin(theta)) / theta**3

    R = np.eye(3) + A * W + B * W2
    V = np.eye(3) + B * W + C * W2

    transformation = np.eye(4)
    transformation[:3, :3] = R
    transformation[:3, 3] = V @ rho
    return transformation


def matrix_to_twist(transformation):
    """Logarithm map, inverse of :func:`twist_to_matrix`."""
    R = transformation[:3, :3]
    t = transformation[:3, 3]
    cos_theta = np.clip((np.trace(R) - 1) / 2, -1.0, 1.0)
    theta = np.arccos(cos_theta)

    if theta < 1e-8:
        omega = 0.5 * np.array([R[2, 1] - R[1, 2], R[0, 2] - R[2, 0], R[1, 0] - R[0, 1]])
    elif np.pi - theta < 1e-6:
        # axis from the symmetric part, sin(theta) vanishes near pi
        M = (R + np.eye(3)) / 2
        axis = np.sqrt(np.clip(np.diag(M), 0, None))
        k = np.argmax(axis)
        axis = M[:, k] / axis[k]
        # sign from the skew part, which still carries 2 sin(theta) * axis
        vee = np.array([R[2, 1] - R[1, 2], R[0, 2] - R[2, 0], R[1, 0] - R[0, 1]])
        if np.dot(axis, vee) < 0:
            axis = -axis
        omega = theta * axis / np.linalg.norm(axis)
    else:
        omega = theta / (2 * np.sin(theta)) * np.array(
            [R[2, 1] - R[1, 2], R[0, 2] - R[2, 0], R[1, 0] - R[0, 1]])

    W = skew(omega)
    theta = np.linalg.norm(omega)
    if theta < 1e-8:
        V_inv = np.eye(3) - 0.5 * W + W @ W / 12.0
    else:
        half = theta / 2
        V_inv = (np.eye(3) - 0.5 * W
                 + (1 - half * np.cos(half) / np.sin(half)) / theta**2 * (W @ W))
    return np.hstack([V_inv @ t, omega])


def compose(increment, transformation):
    """Left-compose the exponential of ``increment`` with ``transformation``."""
    return twist_to_matrix(increment) @ transformation


def invert_transformation(transformation):
    R = transformation[:3, :3]
    t = transformation[:3, 3]
    inverse = np.eye(4)
    inverse[:3, :3] = R.T
    inverse[:3, 3] = -R.T @ t
    return inverse


def apply_transformation(points, transformation):

    R = transformation[:3, :3]
    t = transformation[:3, 3]
    return points @ R.T + t


def apply_rotation(normals, transformation):

    return normals @ transformation[:3, :3].T
