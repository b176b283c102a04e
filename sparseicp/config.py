"""Parameters for Sparse ICP registration and their validation."""

import math
from dataclasses import dataclass, asdict
from enum import Enum
from numbers import Integral, Real
from typing import Optional

import numpy as np

from .exceptions import ConfigurationError

MIN_K_NORMALS = 4
MIN_POINTS = 3


class IcpMethod(Enum):
    POINT_TO_POINT = "point_to_point"
    POINT_TO_PLANE = "point_to_plane"

    @classmethod
    def parse(cls, value):
        """Accept an IcpMethod or its string value ('point_to_point', 'point-to-plane', ...)."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().lower().replace("-", "_")
            for method in cls:
                if method.value == key:
                    return method
        raise ConfigurationError(
            f"Unknown ICP method: {value!r} "
            f"(expected one of {[m.value for m in cls]})"
        )


@dataclass
class SparseICPConfig:
    """
    Scalar parameters of a Sparse ICP run.

    Attributes:
        k_normals: Neighbors used for each normal estimate (self included)
        outer_iterations: Correspondence updates
        inner_iterations: ADMM steps per correspondence update
        mu: ADMM penalty weight
        shrink_iterations: Fixed-point iterations of the shrink operator
        p: Exponent of the sparsity-inducing norm, strictly in (0, 2)
        method: IcpMethod or its string value
        verbose: Log per-point correspondences and per-step transforms
        n_jobs: Workers for per-point nearest neighbor queries (-1 for all cores)
        tolerance: Stop early once the mean nearest neighbor distance drops below this
    """
    k_normals: int
    outer_iterations: int
    inner_iterations: int
    mu: float
    shrink_iterations: int
    p: float
    method: IcpMethod
    verbose: bool
    n_jobs: int = 1
    tolerance: Optional[float] = None

    def validate(self):
        """Check every field and normalize ``method``. Returns self."""
        self.method = IcpMethod.parse(self.method)

        for name in ("k_normals", "outer_iterations", "inner_iterations", "shrink_iterations"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, Integral):
                raise ConfigurationError(f"{name} must be an integer, got {value!r}")
            if value < 0:
                raise ConfigurationError(f"{name} must be >= 0, got {value}")

        if self.k_normals < MIN_K_NORMALS:
            raise ConfigurationError(
                f"k_normals must be >= {MIN_K_NORMALS} for a non-degenerate covariance, "
                f"got {self.k_normals}"
            )

        if not _is_finite_real(self.mu) or self.mu <= 0:
            raise ConfigurationError(f"mu must be a finite number > 0, got {self.mu!r}")

        if not _is_finite_real(self.p) or not 0 < self.p < 2:
            raise ConfigurationError(f"p must lie strictly between 0 and 2, got {self.p!r}")

        if not isinstance(self.verbose, (bool, np.bool_)):
            raise ConfigurationError(f"verbose must be a bool, got {self.verbose!r}")

        if (isinstance(self.n_jobs, bool) or not isinstance(self.n_jobs, Integral)
                or (self.n_jobs < 1 and self.n_jobs != -1)):
            raise ConfigurationError(f"n_jobs must be >= 1 or -1, got {self.n_jobs!r}")

        if self.tolerance is not None:
            if not _is_finite_real(self.tolerance) or self.tolerance <= 0:
                raise ConfigurationError(
                    f"tolerance must be None or a finite number > 0, got {self.tolerance!r}"
                )
        return self

    def to_dict(self):
        params = asdict(self)
        params["method"] = IcpMethod.parse(self.method).value
        return params


def validate_cloud(points, name, k_normals):
    """
    Convert a cloud to a float64 (N, 3) array and check it can be registered.

    Raises:
        ConfigurationError: wrong shape, too few points for ``k_normals``,
            or non-finite coordinates
    """
    try:
        cloud = np.array(points, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name} is not a numeric point array: {e}") from e

    if cloud.ndim != 2 or cloud.shape[1] != 3:
        raise ConfigurationError(f"{name} must have shape (N, 3), got {cloud.shape}")
    if cloud.shape[0] < MIN_POINTS:
        raise ConfigurationError(
            f"{name} needs at least {MIN_POINTS} points, got {cloud.shape[0]}"
        )
    if k_normals > cloud.shape[0]:
        raise ConfigurationError(
            f"k_normals={k_normals} exceeds the {cloud.shape[0]} points of {name}"
        )
    if not np.all(np.isfinite(cloud)):
        raise ConfigurationError(f"{name} contains NaN or infinite coordinates")
    return cloud


def _is_finite_real(value):
    return isinstance(value, Real) and not isinstance(value, bool) and math.isfinite(value)
