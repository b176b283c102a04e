"""Sparsity-inducing lp penalty used by the ADMM step of Sparse ICP."""

import numpy as np


def shrink_threshold(mu, p):
    """
    Closed-form threshold of the lp proximal operator.

    Residuals with norm at or below ``h_tilde`` are fully suppressed.
    For p >= 1 the base 2(1-p)/mu is clamped at zero: p = 1 gives the
    soft threshold 1/mu, p in (1, 2) gives a zero threshold.

    Args:
        mu: ADMM penalty weight (> 0)
        p: Norm exponent in (0, 2)

    Returns:
        Tuple of (alpha, h_tilde)
    """
    alpha = max(2.0 * (1.0 - p) / mu, 0.0) ** (1.0 / (2.0 - p))
    h_tilde = alpha + (p / mu) * alpha ** (p - 1.0)
    return alpha, h_tilde


def shrink(h, mu, p, iterations):
    """
    Minimize ||z||^p + mu/2 ||z - h||^2 over z for a single 3-vector h.

    The minimizer is either zero or a scaled copy beta * h, with beta
    refined by fixed-point iteration. More iterations bring beta closer
    to the exact minimizer.

    Args:
        h: 3-vector
        mu: ADMM penalty weight (> 0)
        p: Norm exponent in (0, 2)
        iterations: Number of fixed-point refinements of beta

    Returns:
        The shrunk 3-vector (exactly zero below the threshold)
    """
    h = np.asarray(h, dtype=np.float64)
    h_norm = float(np.linalg.norm(h))
    # ||h||^(p-2) is singular at zero
    if h_norm == 0.0:
        return np.zeros_like(h)

    alpha, h_tilde = shrink_threshold(mu, p)
    if h_norm <= h_tilde:
        return np.zeros_like(h)

    scale = (p / mu) * h_norm ** (p - 2.0)
    beta = np.float64((alpha / h_norm + 1.0) / 2.0)
    with np.errstate(divide='ignore'):
        for _ in range(iterations):
            beta = np.clip(1.0 - scale * beta ** (p - 1.0), 0.0, 1.0)
    return beta * h


def shrink_rows(h, mu, p, iterations):
    """
    Apply ``shrink`` to every row of an (N, 3) array.

    Rows are independent; the computation is vectorized over them and
    agrees with calling ``shrink`` row by row.
    """
    h = np.asarray(h, dtype=np.float64)
    z = np.zeros_like(h)
    if h.shape[0] == 0:
        return z

    norms = np.linalg.norm(h, axis=1)
    alpha, h_tilde = shrink_threshold(mu, p)
    active = (norms > h_tilde) & (norms > 0.0)
    if not np.any(active):
        return z

    active_norms = norms[active]
    scale = (p / mu) * active_norms ** (p - 2.0)
    beta = (alpha / active_norms + 1.0) / 2.0
    with np.errstate(divide='ignore'):
        for _ in range(iterations):
            beta = np.clip(1.0 - scale * beta ** (p - 1.0), 0.0, 1.0)

    z[active] = beta[:, np.newaxis] * h[active]
    return z
