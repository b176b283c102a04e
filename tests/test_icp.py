import warnings

import numpy as np
import pytest

from sparseicp import SparseICP, SparseICPConfig
from sparseicp.exceptions import NotComputedWarning, RegistrationError
from sparseicp.icp import _RegistrationState, admm_step
from sparseicp.kdtree import KDTree
from sparseicp.losses import shrink_rows
from sparseicp.transforms import get_solver


def make_icp(first, second, **overrides):
    params = dict(k_normals=8, outer_iterations=3, inner_iterations=2, mu=0.1,
                  shrink_iterations=3, p=0.5, method='point_to_point', verbose=False)
    params.update(overrides)
    return SparseICP(first, second, **params)


def mean_squared_nn_distance(points, reference):
    _, sq = KDTree().build(reference).query(points, k=1)
    return float(np.mean(sq))


class TestBeforeRun:
    def test_moved_cloud_falls_back_to_first_cloud(self, grid_cloud):
        first = grid_cloud + 0.5
        icp = make_icp(first, grid_cloud)

        with pytest.warns(NotComputedWarning):
            moved = icp.get_moved_cloud()
        np.testing.assert_array_equal(moved, first)

    def test_transform_falls_back_to_identity(self, grid_cloud):
        icp = make_icp(grid_cloud, grid_cloud)
        with pytest.warns(NotComputedWarning):
            transform = icp.get_computed_transform()
        np.testing.assert_array_equal(transform.matrix, np.eye(4))

    def test_moved_normals_fall_back_to_first_normals(self, grid_cloud):
        icp = make_icp(grid_cloud, grid_cloud)
        with pytest.warns(NotComputedWarning):
            normals = icp.get_moved_normals()
        np.testing.assert_array_equal(normals, icp.get_first_normals())

    def test_reference_normals_need_no_run(self, grid_cloud):
        icp = make_icp(grid_cloud, grid_cloud)
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            normals = icp.get_reference_normals()
        assert normals.shape == grid_cloud.shape
        np.testing.assert_allclose(np.linalg.norm(normals, axis=1), 1.0)
        assert icp.mean_distances == []


class TestRegistration:
    def test_pure_translation(self, grid_cloud):
        translation = np.array([1.0, 2.0, 3.0])
        icp = make_icp(grid_cloud, grid_cloud + translation, outer_iterations=5,
                       inner_iterations=5, mu=1.0, p=0.5)

        assert icp.run() is True
        transform = icp.get_computed_transform()

        np.testing.assert_allclose(transform.translation, translation, atol=1e-6)
        np.testing.assert_allclose(transform.rotation, np.eye(3), atol=1e-8)

    def test_recovers_rigid_perturbation(self, grid_cloud, perturbation):
        first = perturbation.apply(grid_cloud)
        icp = make_icp(first, grid_cloud)

        assert icp.run()
        moved = icp.get_moved_cloud()
        transform = icp.get_computed_transform()

        assert mean_squared_nn_distance(moved, grid_cloud) < 1e-6
        np.testing.assert_allclose(transform.apply(first), moved, atol=1e-9)
        recovered = transform.compose(perturbation)
        np.testing.assert_allclose(recovered.rotation, np.eye(3), atol=1e-8)
        np.testing.assert_allclose(recovered.translation, np.zeros(3), atol=1e-8)

    def test_rotation_is_proper(self, grid_cloud, perturbation):
        icp = make_icp(perturbation.apply(grid_cloud), grid_cloud, mu=1.0)
        assert icp.run()
        R = icp.get_computed_transform().rotation
        np.testing.assert_allclose(R.T @ R, np.eye(3), atol=1e-10)
        assert np.linalg.det(R) == pytest.approx(1.0)

    def test_moved_normals_follow_rotation(self, grid_cloud, perturbation):
        icp = make_icp(perturbation.apply(grid_cloud), grid_cloud)
        assert icp.run()
        R = icp.get_computed_transform().rotation
        np.testing.assert_allclose(icp.get_moved_normals(), icp.get_first_normals() @ R.T,
                                   atol=1e-12)

    def test_point_to_plane_reduces_distance(self, jittered_grid):
        from scipy.spatial.transform import Rotation
        small = Rotation.from_rotvec(np.deg2rad(3.0) * np.ones(3) / np.sqrt(3)).as_matrix()
        first = jittered_grid @ small.T + np.array([0.5, -0.3, 0.2])
        icp = make_icp(first, jittered_grid, method='point_to_plane',
                       outer_iterations=5, inner_iterations=4)

        assert icp.run()
        distances = icp.mean_distances
        assert distances[-1] < 0.05 * distances[0]
        R = icp.get_computed_transform().rotation
        np.testing.assert_allclose(R.T @ R, np.eye(3), atol=1e-10)

    def test_history(self, grid_cloud, perturbation):
        icp = make_icp(perturbation.apply(grid_cloud), grid_cloud, outer_iterations=4)
        assert icp.run()

        assert len(icp.mean_distances) == 5
        assert len(icp.intermediate_transforms) == 5
        assert icp.mean_distances[-1] < icp.mean_distances[0]

    def test_tolerance_stops_early(self, grid_cloud):
        icp = make_icp(grid_cloud, grid_cloud, outer_iterations=10, tolerance=1e-3)
        assert icp.run()
        assert len(icp.mean_distances) == 1
        assert len(icp.intermediate_transforms) == 1

    def test_zero_outer_iterations(self, grid_cloud):
        first = grid_cloud + 1.0
        icp = make_icp(first, grid_cloud, outer_iterations=0)

        assert icp.run()
        np.testing.assert_array_equal(icp.get_moved_cloud(), first)
        np.testing.assert_array_equal(icp.get_computed_transform().matrix, np.eye(4))
        assert icp.mean_distances == []

    def test_runs_are_repeatable(self, grid_cloud, perturbation):
        icp = make_icp(perturbation.apply(grid_cloud), grid_cloud, mu=1.0)
        assert icp.run()
        first_run = icp.get_computed_transform().matrix
        assert icp.run()
        np.testing.assert_allclose(icp.get_computed_transform().matrix, first_run)

    def test_inputs_are_not_modified(self, grid_cloud):
        first = grid_cloud + 1.0
        original = first.copy()
        icp = make_icp(first, grid_cloud)
        assert icp.run()
        np.testing.assert_array_equal(first, original)

    def test_from_config(self, grid_cloud):
        config = SparseICPConfig(k_normals=8, outer_iterations=5, inner_iterations=5, mu=1.0,
                                 shrink_iterations=3, p=0.5, method='point_to_point',
                                 verbose=False)
        icp = SparseICP.from_config(grid_cloud, grid_cloud + [1.0, 2.0, 3.0], config)
        assert icp.run()
        np.testing.assert_allclose(icp.get_computed_transform().translation, [1.0, 2.0, 3.0],
                                   atol=1e-6)


class TestFailure:
    def test_failed_run_reports_and_keeps_initial_state(self, grid_cloud, monkeypatch):
        first = grid_cloud + 0.5
        icp = make_icp(first, grid_cloud)

        def broken(*args, **kwargs):
            raise RegistrationError("singular system")

        monkeypatch.setattr(icp.solver, "solve", broken)

        assert icp.run() is False
        assert icp.has_been_computed is False
        with pytest.warns(NotComputedWarning):
            moved = icp.get_moved_cloud()
        np.testing.assert_array_equal(moved, first)


class TestAdmmStep:
    def test_updates_state_and_multipliers(self, random_cloud):
        rng = np.random.default_rng(4)
        matched = random_cloud
        state = _RegistrationState.initial(random_cloud + rng.normal(scale=2.0, size=(200, 3)),
                                           np.tile([0.0, 0.0, 1.0], (200, 1)))
        state.multipliers = rng.normal(size=(200, 3))
        mu, p = 2.0, 0.5

        h = state.moving_points - matched + state.multipliers / mu
        z = shrink_rows(h, mu, p, 3)
        previous_multipliers = state.multipliers.copy()

        step = admm_step(state, matched, get_solver('point_to_point'), mu, p, 3)

        np.testing.assert_allclose(state.transform.matrix, step.matrix)
        np.testing.assert_allclose(
            state.multipliers,
            previous_multipliers + mu * (state.moving_points - matched - z),
        )
        np.testing.assert_allclose(state.moving_normals, np.tile([0.0, 0.0, 1.0], (200, 1))
                                   @ step.rotation.T)

    def test_composes_with_previous_transform(self, random_cloud):
        state = _RegistrationState.initial(random_cloud + 1.0, random_cloud)
        solver = get_solver('point_to_point')
        first = admm_step(state, random_cloud, solver, 1.0, 0.5, 3)
        second = admm_step(state, random_cloud, solver, 1.0, 0.5, 3)

        np.testing.assert_allclose(state.transform.matrix, second.matrix @ first.matrix,
                                   atol=1e-12)


def test_verbose_run_logs_correspondences(grid_cloud, caplog):
    import logging
    icp = make_icp(grid_cloud + 0.5, grid_cloud, outer_iterations=1, inner_iterations=1,
                   verbose=True)
    with caplog.at_level(logging.DEBUG, logger="sparseicp"):
        assert icp.run()

    messages = [record.getMessage() for record in caplog.records]
    assert any("closest" in m for m in messages)
    assert any(m.startswith("Iteration 0") for m in messages)


def test_save_and_load_result(grid_cloud, tmp_path):
    icp = make_icp(grid_cloud + [1.0, 2.0, 3.0], grid_cloud)
    assert icp.run()
    path = tmp_path / "result.pkl"

    icp.save_result(str(path))
    result = SparseICP.load_result(str(path))

    np.testing.assert_allclose(result['transformation'], icp.get_computed_transform().matrix)
    assert result['config']['method'] == 'point_to_point'
    assert SparseICP.load_result(str(tmp_path / "missing.pkl")) is None
