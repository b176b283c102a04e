"""General utility functions."""

import logging
import time
from functools import wraps

import numpy as np
from joblib import Parallel, delayed, effective_n_jobs

logger = logging.getLogger(__name__)


def time_function(func):
    """
    Decorator to time function execution.
    For recursive functions, only times the top-level call.
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        if not hasattr(wrapper, '_in_call'):
            wrapper._in_call = False

        if not wrapper._in_call:
            wrapper._in_call = True
            start_time = time.time()
            try:
                result = func(*args, **kwargs)
                elapsed = time.time() - start_time
                logger.debug(f"{func.__name__} took {elapsed:.6f} seconds")
                return result
            finally:
                wrapper._in_call = False
        else:
            return func(*args, **kwargs)

    return wrapper


def parallel_knn(tree, query_points, k=1, n_jobs=1):
    """
    k-nearest neighbor search for a batch of points, split across workers.

    The built tree is only read, so every worker shares it; each worker gets
    a contiguous chunk of query rows and the chunks are stitched back in order.

    Args:
        tree: Built KDTree
        query_points: (M, 3) array
        k: Number of neighbors
        n_jobs: Number of workers (-1 for all cores)

    Returns:
        Tuple of (indices, squared_distances), both of shape (M, k)
    """
    query_points = np.asarray(query_points, dtype=np.float64)
    n_workers = min(effective_n_jobs(n_jobs), max(1, len(query_points)))
    if n_workers <= 1:
        return tree.query(query_points, k=k)

    chunks = np.array_split(query_points, n_workers)
    results = Parallel(n_jobs=n_workers, backend='threading')(
        delayed(tree.query)(chunk, k) for chunk in chunks
    )
    indices, sq_dists = zip(*results)
    return np.vstack(indices), np.vstack(sq_dists)


def mean_distance(points, matched):
    """Mean Euclidean distance between index-aligned point sets."""
    return float(np.mean(np.linalg.norm(points - matched, axis=1)))
