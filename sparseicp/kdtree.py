"""KD-Tree index for k-nearest neighbor search over a fixed point cloud."""

import numpy as np
from scipy.spatial import cKDTree

from .utils import time_function


class KDTree:
    """
    Build-once, query-many spatial index.

    The tree is read-only after ``build`` and may be shared by several
    query threads.
    """

    def __init__(self, leaf_size=10, dimension=3):
        self.leaf_size = max(1, int(leaf_size))
        self.dimension = dimension
        self.points = None
        self._tree = None

    @time_function
    def build(self, points):
        """
        Index a point cloud.

        Args:
            points: (N, dimension) array

        Returns:
            self, so ``KDTree().build(points)`` can be chained
        """
        points = np.asarray(points, dtype=np.float64)
        if points.ndim != 2 or points.shape[1] != self.dimension:
            raise ValueError(
                f"Expected points of shape (N, {self.dimension}), got {points.shape}"
            )
        if points.shape[0] == 0:
            raise ValueError("Cannot build a KD-tree over an empty point cloud")

        self.points = points
        self._tree = cKDTree(points, leafsize=self.leaf_size)
        return self

    def query(self, query_points, k=1):
        """
        Find the k nearest indexed points.

        Args:
            query_points: A single point (dimension,) or a batch (M, dimension)
            k: Number of neighbors, 1 <= k <= number of indexed points

        Returns:
            Tuple of (indices, squared_distances), sorted nearest first.
            Shape (k,) for a single point, (M, k) for a batch.
        """
        if self._tree is None:
            raise RuntimeError("KD-tree has not been built; call build() first")
        if isinstance(k, bool) or int(k) != k or k < 1:
            raise ValueError(f"k must be a positive integer, got {k!r}")
        k = int(k)
        if k > len(self):
            raise ValueError(f"k={k} exceeds the {len(self)} indexed points")

        query_points = np.asarray(query_points, dtype=np.float64)
        single = query_points.ndim == 1
        batch = np.atleast_2d(query_points)
        if batch.shape[1] != self.dimension:
            raise ValueError(
                f"Query points must have {self.dimension} coordinates, got {batch.shape[1]}"
            )

        dists, indices = self._tree.query(batch, k=k)
        # cKDTree drops the neighbor axis when k == 1
        dists = np.asarray(dists, dtype=np.float64).reshape(len(batch), k)
        indices = np.asarray(indices, dtype=np.int64).reshape(len(batch), k)

        if single:
            return indices[0], dists[0] ** 2
        return indices, dists ** 2

    def __len__(self):
        return 0 if self.points is None else self.points.shape[0]
