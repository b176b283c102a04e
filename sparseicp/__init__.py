"""
sparseicp - Robust rigid point cloud registration with Sparse ICP

Features:
- Sparse ICP: lp-penalized residuals optimized by ADMM, robust to
  partial overlap and outliers
- Point-to-point (Kabsch) and point-to-plane alignment steps
- Local-PCA normal estimation
- KD-tree nearest neighbor queries, parallelizable across workers

Point cloud file I/O (sparseicp.point_cloud) needs open3d and plotting
(sparseicp.visualization) needs matplotlib; neither is imported here.
"""

from .config import IcpMethod, SparseICPConfig
from .correspondences import find_correspondences
from .exceptions import ConfigurationError, NotComputedWarning, RegistrationError
from .icp import SparseICP
from .kdtree import KDTree
from .losses import shrink, shrink_rows
from .transforms import (RigidTransform, compute_normals, compute_transformation,
                         compute_transformation_point_to_plane)

__version__ = "1.0.0"
__all__ = ["SparseICP", "SparseICPConfig", "IcpMethod", "KDTree", "RigidTransform",
           "compute_normals", "compute_transformation",
           "compute_transformation_point_to_plane", "find_correspondences",
           "shrink", "shrink_rows", "ConfigurationError", "RegistrationError",
           "NotComputedWarning"]
