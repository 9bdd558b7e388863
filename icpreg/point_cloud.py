"""Point cloud data management."""

import numpy as np

from .transforms import apply_transformation, apply_rotation, compute_normals


class PointCloud:
    """Ordered 3D positions with optional unit surface normals."""

    def __init__(self, points, normals=None):
        """
        Initialize a point cloud from arrays.

        Args:
            points: Positions array (N, 3)
            normals: Optional normals array (N, 3). Normals are scaled to unit
                length; zero-length normals end up non-finite and are
                reported by the error model.
        """
        self.points = np.asarray(points, dtype=float).reshape(-1, 3)
        self.normals = None
        if normals is not None:
            normals = np.asarray(normals, dtype=float).reshape(-1, 3)
            if normals.shape != self.points.shape:
                raise ValueError(f"Expected {self.points.shape[0]} normals, "
                                 f"got {normals.shape[0]}")
            with np.errstate(invalid='ignore', divide='ignore'):
                norms = np.linalg.norm(normals, axis=1, keepdims=True)
                self.normals = normals / norms

    @classmethod
    def from_o3d(cls, o3d_pcd):
        """Build from an Open3D PointCloud object, keeping its normals if any."""
        normals = np.asarray(o3d_pcd.normals) if o3d_pcd.has_normals() else None
        return cls(np.asarray(o3d_pcd.points), normals)

    @classmethod
    def from_file(cls, filepath):
        """Load point cloud from file."""
        import open3d as o3d

        pcd = o3d.io.read_point_cloud(filepath)
        return cls.from_o3d(pcd)

    def to_o3d(self):
        """
        Convert to Open3D PointCloud object.

        Returns:
            Open3D PointCloud object
        """
        import open3d as o3d

        pcd = o3d.geometry.PointCloud()
        pcd.points = o3d.utility.Vector3dVector(self.points)
        if self.normals is not None:
            pcd.normals = o3d.utility.Vector3dVector(self.normals)
        return pcd

    @property
    def has_normals(self):
        return self.normals is not None

    def estimate_normals(self, k=30):
        """Fill ``normals`` from a local plane fit over k neighbours."""
        self.normals = compute_normals(self.points, k=k)
        return self

    def transformed(self, transformation):
        """
        Apply transformation to points and normals.

        Args:
            transformation: 4x4 transformation matrix

        Returns:
            New PointCloud, this one is left untouched
        """
        result = PointCloud.__new__(PointCloud)
        result.points = apply_transformation(self.points, transformation)
        result.normals = None
        if self.normals is not None:
            result.normals = apply_rotation(self.normals, transformation)
        return result

    def subset(self, indices):
        """Points (and normals) at ``indices``, in that order."""
        result = PointCloud.__new__(PointCloud)
        result.points = self.points[indices]
        result.normals = None if self.normals is None else self.normals[indices]
        return result

    def copy(self):
        return self.subset(np.arange(len(self)))

    def __len__(self):
        return len(self.points)

    def __repr__(self):
        return f"PointCloud({len(self)} points, normals={self.has_normals})"
