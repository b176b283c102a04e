"""Closest-point correspondences between a moving cloud and a reference cloud."""

import logging

import numpy as np

from .kdtree import KDTree
from .utils import parallel_knn, time_function

logger = logging.getLogger(__name__)


@time_function
def find_correspondences(reference_points, query_points, tree=None, n_jobs=1,
                         return_indices=False, verbose=False):
    """
    Match every query point with its nearest reference point.

    Several query points may share the same match; nothing is deduplicated.

    Args:
        reference_points: (N, 3) reference cloud
        query_points: (M, 3) cloud to match
        tree: Optional KDTree already built over reference_points
        n_jobs: Workers for the nearest neighbor queries
        return_indices: Also return the matched reference indices
        verbose: Log every query/match pair at DEBUG level

    Returns:
        (M, 3) array of matched reference points (rows copied from the
        reference cloud), and the (M,) index array if return_indices is set
    """
    reference_points = np.asarray(reference_points, dtype=np.float64)
    query_points = np.asarray(query_points, dtype=np.float64)
    if tree is None:
        tree = KDTree().build(reference_points)

    indices, _ = parallel_knn(tree, query_points, k=1, n_jobs=n_jobs)
    indices = indices[:, 0]
    matched = reference_points[indices]

    if verbose:
        for query_point, match in zip(query_points, matched):
            logger.debug(f"query {query_point} -> closest {match}")

    if return_indices:
        return matched, indices
    return matched
