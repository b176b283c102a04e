"""Sparse Iterative Closest Point (ICP) registration with an ADMM inner solver."""

import logging
import os
import pickle
import time
import warnings
from dataclasses import dataclass, field

import numpy as np

from .config import SparseICPConfig, validate_cloud
from .correspondences import find_correspondences
from .exceptions import NotComputedWarning, RegistrationError
from .kdtree import KDTree
from .losses import shrink_rows
from .transforms import RigidTransform, compute_normals, get_solver
from .utils import mean_distance

logger = logging.getLogger(__name__)


@dataclass
class _RegistrationState:
    """Everything a run mutates. Owned by one SparseICP and replaced wholesale per run."""
    moving_points: np.ndarray
    moving_normals: np.ndarray
    multipliers: np.ndarray
    transform: RigidTransform = field(default_factory=RigidTransform.identity)
    mean_distances: list = field(default_factory=list)
    intermediate_transforms: list = field(default_factory=list)

    @classmethod
    def initial(cls, points, normals):
        return cls(moving_points=points.copy(),
                   moving_normals=normals.copy(),
                   multipliers=np.zeros_like(points))


def admm_step(state, matched, solver, mu, p, shrink_iterations, matched_normals=None):
    """
    One ADMM iteration of Sparse ICP, updating ``state`` in place.

    1. z-step: shrink h = moving - matched + lambda/mu row by row.
    2. Alignment step: move the cloud onto c = matched + z - lambda/mu.
    3. Dual step: lambda += mu * (moving - matched - z).

    Args:
        state: _RegistrationState to update
        matched: (N, 3) reference points matched to the moving cloud
        solver: Alignment strategy from ``get_solver``
        mu: ADMM penalty weight
        p: Norm exponent
        shrink_iterations: Fixed-point iterations of the shrink operator
        matched_normals: (N, 3) reference normals at the matched points

    Returns:
        The incremental RigidTransform applied in this step
    """
    scaled_multipliers = state.multipliers / mu

    h = state.moving_points - matched + scaled_multipliers
    z = shrink_rows(h, mu, p, shrink_iterations)

    c = matched + z - scaled_multipliers
    step = solver.solve(state.moving_points, c, matched_normals)

    state.moving_points = step.apply(state.moving_points)
    state.moving_normals = step.rotate(state.moving_normals)
    state.transform = step.compose(state.transform)

    delta = state.moving_points - matched - z
    state.multipliers = state.multipliers + mu * delta

    if not np.all(np.isfinite(state.moving_points)):
        raise RegistrationError("Moving cloud diverged to non-finite coordinates")
    return step


class SparseICP:
    """
    Robust rigid registration of a moving cloud onto a fixed reference cloud.

    Correspondence residuals are penalized with an lp norm (0 < p < 2),
    optimized by ADMM, so partial overlap and outliers pull far less than
    in least-squares ICP.

    Usage:
        icp = SparseICP(first, second, k_normals=10, outer_iterations=30,
                        inner_iterations=5, mu=10.0, shrink_iterations=3,
                        p=0.5, method='point_to_point', verbose=False)
        if icp.run():
            transform = icp.get_computed_transform()
    """

    def __init__(self, first_cloud, second_cloud, k_normals, outer_iterations,
                 inner_iterations, mu, shrink_iterations, p, method, verbose,
                 *, n_jobs=1, tolerance=None):
        """
        Validate the configuration and estimate both normal fields.

        Args:
            first_cloud: (N1, 3) moving cloud
            second_cloud: (N2, 3) reference cloud
            k_normals: Neighbors per normal estimate (>= 4)
            outer_iterations: Correspondence updates
            inner_iterations: ADMM steps per correspondence update
            mu: ADMM penalty weight (> 0)
            shrink_iterations: Fixed-point iterations of the shrink operator
            p: Norm exponent, strictly in (0, 2)
            method: 'point_to_point', 'point_to_plane' or an IcpMethod
            verbose: Log per-point correspondences and per-step transforms
            n_jobs: Workers for nearest neighbor queries (-1 for all cores)
            tolerance: Optional early stop on the mean nearest neighbor distance

        Raises:
            ConfigurationError: before any computation, for invalid input
        """
        self.config = SparseICPConfig(
            k_normals=k_normals,
            outer_iterations=outer_iterations,
            inner_iterations=inner_iterations,
            mu=mu,
            shrink_iterations=shrink_iterations,
            p=p,
            method=method,
            verbose=verbose,
            n_jobs=n_jobs,
            tolerance=tolerance,
        ).validate()

        self.first_cloud = validate_cloud(first_cloud, "first_cloud", self.config.k_normals)
        self.second_cloud = validate_cloud(second_cloud, "second_cloud", self.config.k_normals)
        self.solver = get_solver(self.config.method)

        logger.info("Estimating normals for first cloud")
        self.first_normals = compute_normals(self.first_cloud, k=self.config.k_normals,
                                             n_jobs=self.config.n_jobs)
        logger.info("Estimating normals for second cloud")
        self.second_normals = compute_normals(self.second_cloud, k=self.config.k_normals,
                                              n_jobs=self.config.n_jobs)
        logger.info("Done with normal estimation")

        self._state = None
        self.has_been_computed = False

    @classmethod
    def from_config(cls, first_cloud, second_cloud, config):
        """Build an optimizer from a SparseICPConfig."""
        return cls(first_cloud, second_cloud, config.k_normals, config.outer_iterations,
                   config.inner_iterations, config.mu, config.shrink_iterations, config.p,
                   config.method, config.verbose, n_jobs=config.n_jobs,
                   tolerance=config.tolerance)

    def run(self):
        """
        Run the full registration.

        Every run starts from the first cloud with zero multipliers. A failed
        run leaves previous results untouched.

        Returns:
            True on success, False if a numerical step failed
        """
        total_start = time.time()
        state = _RegistrationState.initial(self.first_cloud, self.first_normals)

        try:
            self._register(state)
        except RegistrationError as e:
            logger.error(f"Sparse ICP aborted: {e}")
            return False

        self._state = state
        self.has_been_computed = True

        total_time = time.time() - total_start
        logger.info(f"Sparse ICP finished in {total_time:.3f}s")
        if state.mean_distances:
            logger.info(f"Mean distance: {state.mean_distances[0]:.6f} -> "
                        f"{state.mean_distances[-1]:.6f}")
        return True

    def _register(self, state):
        config = self.config
        verbose = config.verbose

        tree = KDTree().build(self.second_cloud)
        state.intermediate_transforms.append(state.transform)

        for iteration in range(config.outer_iterations):
            matched, indices = find_correspondences(
                self.second_cloud, state.moving_points, tree=tree,
                n_jobs=config.n_jobs, return_indices=True, verbose=verbose
            )
            matched_normals = self.second_normals[indices] if self.solver.requires_normals else None

            distance = mean_distance(state.moving_points, matched)
            state.mean_distances.append(distance)
            logger.info(f"Iteration {iteration}: mean distance = {distance:.6f}")

            if config.tolerance is not None and distance < config.tolerance:
                logger.info(f"Reached tolerance ({config.tolerance}) at iteration {iteration}")
                break

            for _ in range(config.inner_iterations):
                step = admm_step(state, matched, self.solver, config.mu, config.p,
                                 config.shrink_iterations, matched_normals)
                if verbose:
                    logger.debug(f"Rotation:\n{step.rotation}\nTranslation: {step.translation}")

            state.intermediate_transforms.append(state.transform)
        else:
            if config.outer_iterations > 0:
                matched = find_correspondences(self.second_cloud, state.moving_points,
                                               tree=tree, n_jobs=config.n_jobs)
                state.mean_distances.append(mean_distance(state.moving_points, matched))

    def _warn_not_computed(self, what):
        warnings.warn(
            f"The transformation has not been computed; call run() before retrieving "
            f"the {what}. Returning the pre-registration value.",
            NotComputedWarning,
            stacklevel=3,
        )

    def get_computed_transform(self):
        """Accumulated RigidTransform mapping the first cloud onto the second (identity before run)."""
        if not self.has_been_computed:
            self._warn_not_computed("rigid motion")
            return RigidTransform.identity()
        transform = self._state.transform
        return RigidTransform(transform.rotation.copy(), transform.translation.copy())

    def get_moved_cloud(self):
        """First cloud moved by the computed motion (the original first cloud before run)."""
        if not self.has_been_computed:
            self._warn_not_computed("moved point cloud")
            return self.first_cloud.copy()
        return self._state.moving_points.copy()

    def get_moved_normals(self):
        """First cloud normals rotated by the computed motion (the original ones before run)."""
        if not self.has_been_computed:
            self._warn_not_computed("moved normals")
            return self.first_normals.copy()
        return self._state.moving_normals.copy()

    def get_reference_normals(self):
        """Normals of the fixed second cloud."""
        return self.second_normals.copy()

    def get_first_normals(self):
        """Normals of the first cloud before any motion."""
        return self.first_normals.copy()

    @property
    def mean_distances(self):
        """Mean nearest neighbor distance per outer iteration, then the final one."""
        return [] if self._state is None else list(self._state.mean_distances)

    @property
    def intermediate_transforms(self):
        """Accumulated transform before the first and after every outer iteration."""
        return [] if self._state is None else list(self._state.intermediate_transforms)

    def save_result(self, filepath):
        """Save registration results to file."""
        transform = self.get_computed_transform()
        result = {
            'rotation': transform.rotation,
            'translation': transform.translation,
            'transformation': transform.matrix,
            'mean_distances': self.mean_distances,
            'intermediate_transforms': [t.matrix for t in self.intermediate_transforms],
            'moved_points': self.get_moved_cloud(),
            'moved_normals': self.get_moved_normals(),
            'source_points': self.first_cloud,
            'target_points': self.second_cloud,
            'target_normals': self.second_normals,
            'config': self.config.to_dict(),
        }

        with open(filepath, 'wb') as f:
            pickle.dump(result, f)
        logger.info(f"Results saved to {filepath}")

    @staticmethod
    def load_result(filepath):
        """Load previously saved registration results (None if the file is missing)."""
        if not os.path.exists(filepath):
            logger.warning(f"File {filepath} not found")
            return None

        with open(filepath, 'rb') as f:
            result = pickle.load(f)
        logger.info(f"Results loaded from {filepath}")
        return result
