import numpy as np
import pytest
from scipy.spatial.transform import Rotation

from sparseicp.transforms import RigidTransform


def make_grid(counts=(6, 5, 4), spacing=10.0, jitter=0.0, seed=0):
    """Anisotropic 3-D grid centered on the origin, optionally jittered."""
    axes = [(np.arange(n) - (n - 1) / 2.0) * spacing for n in counts]
    grid = np.stack(np.meshgrid(*axes, indexing='ij'), axis=-1).reshape(-1, 3)
    if jitter:
        grid = grid + np.random.default_rng(seed).uniform(-jitter, jitter, grid.shape)
    return grid


def make_rotation(degrees, axis):
    axis = np.asarray(axis, dtype=np.float64)
    return Rotation.from_rotvec(np.deg2rad(degrees) * axis / np.linalg.norm(axis)).as_matrix()


@pytest.fixture
def grid_cloud():
    return make_grid()


@pytest.fixture
def jittered_grid():
    return make_grid(jitter=1.0, seed=7)


@pytest.fixture
def perturbation():
    return RigidTransform(make_rotation(5.0, [1, 1, 1]), np.array([0.5, -0.3, 0.2]))


@pytest.fixture
def random_cloud():
    return np.random.default_rng(42).uniform(-5, 5, size=(200, 3))


@pytest.fixture
def planar_grid():
    """5x5 grid in the z = 0 plane."""
    xs, ys = np.meshgrid(np.arange(5.0), np.arange(5.0), indexing='ij')
    return np.column_stack([xs.ravel(), ys.ravel(), np.zeros(25)])
