"""Transformation utilities for point cloud registration."""

import logging
from typing import NamedTuple

import numpy as np
from scipy.spatial.transform import Rotation

from .config import IcpMethod, MIN_K_NORMALS, MIN_POINTS
from .exceptions import RegistrationError
from .kdtree import KDTree
from .utils import parallel_knn, time_function

logger = logging.getLogger(__name__)


class RigidTransform(NamedTuple):
    """Rotation (proper orthogonal 3x3) followed by a translation (3,)."""
    rotation: np.ndarray
    translation: np.ndarray

    @classmethod
    def identity(cls):
        return cls(np.eye(3), np.zeros(3))

    @classmethod
    def from_matrix(cls, matrix):
        """Split a 4x4 homogeneous matrix."""
        matrix = np.asarray(matrix, dtype=np.float64)
        return cls(matrix[:3, :3].copy(), matrix[:3, 3].copy())

    @property
    def matrix(self):
        """4x4 homogeneous form."""
        transformation = np.eye(4)
        transformation[:3, :3] = self.rotation
        transformation[:3, 3] = self.translation
        return transformation

    def compose(self, older):
        """Transform applying ``older`` first, then self."""
        return RigidTransform(self.rotation @ older.rotation,
                              self.rotation @ older.translation + self.translation)

    def apply(self, points):
        return np.asarray(points) @ self.rotation.T + self.translation

    def rotate(self, vectors):
        """Apply the rotation only (for normals and other directions)."""
        return np.asarray(vectors) @ self.rotation.T

    def inverse(self):
        rotation_t = self.rotation.T
        return RigidTransform(rotation_t, -rotation_t @ self.translation)


@time_function
def compute_normals(points, k=30, n_jobs=1):
    """
    Estimate a unit normal per point by local PCA.

    Each point's k nearest neighbors (itself included) are centered on their
    centroid; the eigenvector of the smallest eigenvalue of their 3x3
    covariance is the normal. Signs are not oriented.

    Args:
        points: (N, 3) array
        k: Neighborhood size, at least 4
        n_jobs: Workers for the neighbor queries

    Returns:
        (N, 3) array of unit normals, index-aligned with points
    """
    points = np.asarray(points, dtype=np.float64)
    if points.ndim != 2 or points.shape[1] != 3:
        raise ValueError(f"Expected points of shape (N, 3), got {points.shape}")
    if points.shape[0] < MIN_POINTS:
        raise ValueError(f"Need at least {MIN_POINTS} points to estimate normals, "
                         f"got {points.shape[0]}")
    if k < MIN_K_NORMALS:
        raise ValueError(f"k must be >= {MIN_K_NORMALS} to estimate normals, got {k}")
    if k > points.shape[0]:
        raise ValueError(f"k={k} exceeds the {points.shape[0]} available points")

    tree = KDTree().build(points)
    neighbor_indices, _ = parallel_knn(tree, points, k=k, n_jobs=n_jobs)

    neighbors = points[neighbor_indices]                      # (N, k, 3)
    centered = neighbors - neighbors.mean(axis=1, keepdims=True)
    covariance = np.einsum('nki,nkj->nij', centered, centered)

    # Symmetric PSD covariance: eigh gives real eigenpairs in ascending order
    _, eigenvectors = np.linalg.eigh(covariance)
    normals = np.real(eigenvectors[:, :, 0])

    lengths = np.linalg.norm(normals, axis=1, keepdims=True)
    lengths[lengths == 0.0] = 1.0
    return normals / lengths


def compute_transformation(source_points, target_points, weights=None):
    """
    Best rigid motion mapping source onto target (Kabsch / Procrustes).

    Args:
        source_points: (N, 3) moving points
        target_points: (N, 3) matched target points
        weights: Optional (N,) non-negative weights

    Returns:
        RigidTransform with det(rotation) = +1
    """
    source_points = np.asarray(source_points, dtype=np.float64)
    target_points = np.asarray(target_points, dtype=np.float64)
    if source_points.shape != target_points.shape:
        raise ValueError(f"Point sets differ in shape: {source_points.shape} "
                         f"vs {target_points.shape}")

    if weights is None:
        weights = np.ones(source_points.shape[0])

    # Normalize weights
    weights = weights / np.sum(weights)

    # Compute weighted centroids
    source_centroid = np.sum(source_points * weights[:, np.newaxis], axis=0)
    target_centroid = np.sum(target_points * weights[:, np.newaxis], axis=0)

    # Center the points
    source_centered = source_points - source_centroid
    target_centered = target_points - target_centroid

    # Weighted cross-covariance W = sum a_i^T b_i
    W = (source_centered * weights[:, np.newaxis]).T @ target_centered
    try:
        U, S, Vt = np.linalg.svd(W)
    except np.linalg.LinAlgError as e:
        raise RegistrationError(f"Point-to-point SVD failed: {e}") from e

    R = Vt.T @ U.T

    # Handle reflection case
    if np.linalg.det(R) < 0:
        Vt[-1, :] *= -1
        R = Vt.T @ U.T

    t = target_centroid - R @ source_centroid
    return RigidTransform(R, t)


def compute_transformation_point_to_plane(source_points, target_points, target_normals,
                                          weights=None):
    """
    Rigid motion minimizing the point-to-plane error sum (n_i . (R s_i + t - d_i))^2.

    The rotation is linearized as R ~ I + [w]x, giving a linear least squares
    problem in (w, t). The solved rotation vector is mapped back onto SO(3)
    with the exponential map, so the result is a proper rotation.

    Args:
        source_points: (N, 3) moving points
        target_points: (N, 3) matched target points
        target_normals: (N, 3) normals at the target points
        weights: Optional (N,) non-negative weights

    Returns:
        RigidTransform

    Raises:
        RegistrationError: the linear system could not be solved
    """
    source_points = np.asarray(source_points, dtype=np.float64)
    target_points = np.asarray(target_points, dtype=np.float64)
    target_normals = np.asarray(target_normals, dtype=np.float64)
    if not source_points.shape == target_points.shape == target_normals.shape:
        raise ValueError("Source points, target points and normals must have the same shape")

    if weights is None:
        weights = np.ones(source_points.shape[0])

    # Normalize weights
    weights = weights / np.sum(weights)
    w = np.sqrt(weights)[:, np.newaxis]

    # Rows [s x n, n] and right-hand side n . (d - s)
    A = w * np.hstack([np.cross(source_points, target_normals), target_normals])
    b = w[:, 0] * np.einsum('ij,ij->i', target_normals, target_points - source_points)

    try:
        params, _, rank, _ = np.linalg.lstsq(A, b, rcond=None)
    except np.linalg.LinAlgError as e:
        raise RegistrationError(f"Point-to-plane solve failed: {e}") from e

    if not np.all(np.isfinite(params)):
        raise RegistrationError("Point-to-plane solve produced non-finite parameters")
    if rank < 6:
        logger.debug(f"Point-to-plane system is rank deficient (rank {rank}), "
                     f"using the minimum-norm solution")

    R = Rotation.from_rotvec(params[:3]).as_matrix()
    return RigidTransform(R, params[3:6].copy())


def apply_transformation(points, transformation):
    """Apply a RigidTransform or a 4x4 homogeneous matrix to (N, 3) points."""
    if not isinstance(transformation, RigidTransform):
        transformation = RigidTransform.from_matrix(transformation)
    return transformation.apply(points)


class PointToPointSolver:
    """Closed-form point-to-point alignment step."""
    method = IcpMethod.POINT_TO_POINT
    requires_normals = False

    def solve(self, source_points, target_points, target_normals=None):
        return compute_transformation(source_points, target_points)


class PointToPlaneSolver:
    """Linearized point-to-plane alignment step; needs the target normals."""
    method = IcpMethod.POINT_TO_PLANE
    requires_normals = True

    def solve(self, source_points, target_points, target_normals=None):
        if target_normals is None:
            raise ValueError("Point-to-plane alignment needs the target normals")
        return compute_transformation_point_to_plane(source_points, target_points,
                                                     target_normals)


def get_solver(method):
    """
    Get the alignment step for a registration method.

    Args:
        method: IcpMethod or its string value

    Returns:
        Solver object exposing ``solve(source, target, normals=None)``
    """
    solvers = {
        IcpMethod.POINT_TO_POINT: PointToPointSolver,
        IcpMethod.POINT_TO_PLANE: PointToPlaneSolver,
    }
    return solvers[IcpMethod.parse(method)]()
