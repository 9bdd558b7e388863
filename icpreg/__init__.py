"""
ICPReg - Rigid point cloud registration using Iterative Closest Point (ICP)

A small registration library featuring:
- Custom KD-Tree spatial index with deterministic tie-breaking
- Point-to-plane and point-to-point error models on SE(3) twists
- Robust M-estimator weighting for outlier handling
- Parallel nearest neighbor queries
"""

from .errors import ErrorModel, ErrorPointToPlane, ErrorPointToPoint, get_error_model
from .exceptions import IcpError, ConfigurationError, NumericalFailure, NoCorrespondenceFailure
from .icp import IcpDriver, IcpParameters, IcpResults, IcpStatus
from .kdtree import KDTree
from .losses import (MEstimator, NoWeighting, HuberWeighting, TukeyWeighting,
                     PercentileWeighting, get_mestimator)
from .point_cloud import PointCloud
from .transforms import compute_normals, twist_to_matrix, matrix_to_twist

__version__ = "1.0.0"
__all__ = ["IcpDriver", "IcpParameters", "IcpResults", "IcpStatus",
           "ErrorModel", "ErrorPointToPlane", "ErrorPointToPoint", "get_error_model",
           "MEstimator", "NoWeighting", "HuberWeighting", "TukeyWeighting",
           "PercentileWeighting", "get_mestimator",
           "IcpError", "ConfigurationError", "NumericalFailure", "NoCorrespondenceFailure",
           "KDTree", "PointCloud", "compute_normals", "twist_to_matrix", "matrix_to_twist"]
