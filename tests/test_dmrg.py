"""Tests for two-site DMRG and its sweep schedule."""

import jax
import jax.numpy as jnp
import numpy as np
import pytest

from dmrgjax.algorithms.auto_mpo import AutoMPO, build_heisenberg_mpo
from dmrgjax.algorithms.dmrg import (
    DMRGConfig,
    DMRGResult,
    SweepSchedule,
    _lanczos_solve,
    dmrg,
    expectation_value,
)
from dmrgjax.algorithms.mps import (
    bond_dims,
    make_site_tensor,
    mps_from_tensors,
    mps_site_tensors,
    mps_to_vector,
    product_mps,
    random_mps,
    random_product_mps,
)
from dmrgjax.algorithms.observables import local_profile
from dmrgjax.core.errors import ConfigurationError, NumericalBreakdownError
from dmrgjax.core.index import site_indices
from dmrgjax.core.tensor import conserved_charge_mask

E0_L10 = -4.258035207282883


def _sector_ground_energy(H: np.ndarray, sz_diag: np.ndarray, sz: float) -> float:
    mask = np.isclose(sz_diag, sz)
    return float(np.linalg.eigvalsh(H[np.ix_(mask, mask)])[0])


def _mpo_arrays(mpo):
    return [mpo.get_tensor(i).todense() for i in range(mpo.n_nodes())]


# ------------------------------------------------------------------ #
# Schedule and configuration                                          #
# ------------------------------------------------------------------ #


class TestSweepSchedule:
    def test_uniform(self):
        sched = SweepSchedule.uniform(3, 20, 1e-8)
        assert len(sched) == 3
        assert list(sched) == [(20, 1e-8)] * 3

    def test_from_values_repeats_last(self):
        sched = SweepSchedule.from_values(5, [10, 20, 100], [1e-6, 1e-10])
        assert sched.max_bond_dims == (10, 20, 100, 100, 100)
        assert sched.cutoffs == (1e-6, 1e-10, 1e-10, 1e-10, 1e-10)

    def test_from_values_truncates_long_lists(self):
        sched = SweepSchedule.from_values(2, [1, 2, 4, 8])
        assert sched.max_bond_dims == (1, 2)
        assert sched.cutoffs == (0.0, 0.0)

    def test_prefix(self):
        sched = SweepSchedule.from_values(4, [1, 2, 4, 8])
        assert sched.prefix(2).max_bond_dims == (1, 2)
        assert sched.prefix(4) == sched
        with pytest.raises(ConfigurationError):
            sched.prefix(0)
        with pytest.raises(ConfigurationError):
            sched.prefix(5)

    def test_empty_schedule_raises(self):
        with pytest.raises(ConfigurationError, match="num_sweeps"):
            SweepSchedule((), ())
        with pytest.raises(ConfigurationError, match="num_sweeps"):
            SweepSchedule.uniform(0, 10)

    def test_mismatched_lengths_raise(self):
        with pytest.raises(ConfigurationError, match="equal length"):
            SweepSchedule((10, 10), (0.0,))

    def test_bad_values_raise(self):
        with pytest.raises(ConfigurationError, match="max_bond_dim"):
            SweepSchedule((0,), (0.0,))
        with pytest.raises(ConfigurationError, match="cutoff"):
            SweepSchedule((4,), (-1e-3,))
        with pytest.raises(ConfigurationError, match="cutoff"):
            SweepSchedule((4,), (float("nan"),))

    def test_frozen(self):
        sched = SweepSchedule.uniform(2, 4)
        with pytest.raises(AttributeError):
            sched.cutoffs = (1.0, 1.0)


class TestDMRGConfig:
    def test_defaults(self):
        config = DMRGConfig()
        assert config.max_bond_dim == 100
        assert config.convergence_tol is None
        assert len(config.sweep_schedule()) == config.num_sweeps

    def test_explicit_schedule_wins(self):
        sched = SweepSchedule.from_values(3, [2, 4])
        config = DMRGConfig(max_bond_dim=50, num_sweeps=10, schedule=sched)
        assert config.sweep_schedule() is sched

    def test_bad_lanczos_iter_raises(self):
        with pytest.raises(ConfigurationError, match="lanczos_max_iter"):
            DMRGConfig(lanczos_max_iter=0).sweep_schedule()

    def test_bad_max_bond_dim_raises(self):
        with pytest.raises(ConfigurationError):
            DMRGConfig(max_bond_dim=0).sweep_schedule()


# ------------------------------------------------------------------ #
# Building blocks                                                     #
# ------------------------------------------------------------------ #


class TestLanczos:
    def test_lowest_eigenpair(self, rng):
        M = jax.random.normal(rng, (20, 20))
        H = (M + M.T) / 2
        v0 = jnp.ones(20)
        energy, vec = _lanczos_solve(lambda v: H @ v, v0, 20, 1e-12)
        expected = np.linalg.eigvalsh(np.asarray(H))[0]
        np.testing.assert_allclose(energy, expected, atol=1e-10)
        np.testing.assert_allclose(float(jnp.linalg.norm(vec)), 1.0, rtol=1e-12)
        np.testing.assert_allclose(H @ vec, energy * vec, atol=1e-5)

    def test_eigenvector_start_stops_immediately(self):
        H = jnp.diag(jnp.array([-1.0, 0.0, 2.0]))
        calls = []

        def matvec(v):
            calls.append(1)
            return H @ v

        energy, _ = _lanczos_solve(matvec, jnp.array([1.0, 0.0, 0.0]), 10, 1e-12)
        assert energy == pytest.approx(-1.0)
        assert len(calls) == 1

    def test_zero_start_raises(self):
        with pytest.raises(NumericalBreakdownError, match="norm"):
            _lanczos_solve(lambda v: v, jnp.zeros(4), 4, 1e-12)

    def test_nan_start_raises(self):
        with pytest.raises(NumericalBreakdownError):
            _lanczos_solve(lambda v: v, jnp.array([jnp.nan, 1.0]), 2, 1e-12)


class TestExpectationValue:
    def test_all_up_state(self):
        L = 5
        mpo = build_heisenberg_mpo(L)
        mps = product_mps(site_indices(L), L)
        energy = expectation_value(mps_site_tensors(mps), _mpo_arrays(mpo))
        np.testing.assert_allclose(energy, (L - 1) / 4, atol=1e-14)

    def test_neel_like_state(self):
        # first half up, second half down: one antiparallel bond
        mpo = build_heisenberg_mpo(4)
        mps = product_mps(site_indices(4), 2)
        energy = expectation_value(mps_site_tensors(mps), _mpo_arrays(mpo))
        np.testing.assert_allclose(energy, 0.25 + 0.25 - 0.25, atol=1e-14)

    def test_zero_state_raises(self):
        sites = site_indices(3)
        zeros = [make_site_tensor(jnp.zeros((1, 2, 1)), s, i, 3) for i, s in enumerate(sites)]
        with pytest.raises(NumericalBreakdownError, match="norm"):
            expectation_value(zeros, _mpo_arrays(build_heisenberg_mpo(3)))


# ------------------------------------------------------------------ #
# Full runs                                                           #
# ------------------------------------------------------------------ #


class TestDMRGRuns:
    def test_result_type(self, sites6):
        result = dmrg(
            build_heisenberg_mpo(6),
            product_mps(sites6, 3),
            DMRGConfig(max_bond_dim=4, num_sweeps=2),
        )
        assert isinstance(result, DMRGResult)
        assert len(result.energies_per_sweep) == 2
        assert len(result.truncation_errors) == 2 * 2 * 5
        assert len(result.max_bond_dims_per_sweep) == 2
        assert max(bond_dims(result.mps)) <= 4
        assert result.mps.n_nodes() == 6

    def test_ground_energy_l6(self, sites6, heisenberg_matrix):
        result = dmrg(
            build_heisenberg_mpo(6),
            product_mps(sites6, 3),
            DMRGConfig(max_bond_dim=16, num_sweeps=6),
        )
        exact = np.linalg.eigvalsh(heisenberg_matrix(6))[0]
        np.testing.assert_allclose(result.energy, exact, atol=1e-9)
        assert max(result.truncation_errors[-10:]) <= 1e-10

    def test_stays_in_sector(self, sites6, heisenberg_matrix, total_sz_matrix):
        result = dmrg(
            build_heisenberg_mpo(6),
            product_mps(sites6, 4),
            DMRGConfig(max_bond_dim=16, num_sweeps=6),
        )
        sz = np.diag(total_sz_matrix(6))
        exact = _sector_ground_energy(heisenberg_matrix(6), sz, 1.0)
        np.testing.assert_allclose(result.energy, exact, atol=1e-9)

        vec = mps_to_vector(result.mps)
        vec = vec / np.linalg.norm(vec)
        np.testing.assert_allclose(np.vdot(vec, sz * vec).real, 1.0, atol=1e-10)

    def test_random_product_start(self, sites6, rng, heisenberg_matrix):
        result = dmrg(
            build_heisenberg_mpo(6),
            random_product_mps(sites6, 3, rng),
            DMRGConfig(max_bond_dim=16, num_sweeps=6),
        )
        exact = np.linalg.eigvalsh(heisenberg_matrix(6))[0]
        np.testing.assert_allclose(result.energy, exact, atol=1e-9)

    def test_energy_matches_final_mps(self, sites6):
        mpo = build_heisenberg_mpo(6)
        result = dmrg(mpo, product_mps(sites6, 3), DMRGConfig(max_bond_dim=3, num_sweeps=3))
        recomputed = expectation_value(mps_site_tensors(result.mps), _mpo_arrays(mpo))
        np.testing.assert_allclose(result.energy, recomputed, rtol=1e-12)

    def test_deterministic(self, sites6):
        mpo = build_heisenberg_mpo(6)
        config = DMRGConfig(max_bond_dim=4, num_sweeps=3, cutoff=1e-10)
        a = dmrg(mpo, product_mps(sites6, 3), config)
        b = dmrg(mpo, product_mps(sites6, 3), config)
        assert a.energies_per_sweep == b.energies_per_sweep
        assert a.energy == b.energy

    def test_schedule_prefixes_monotone(self, sites6):
        mpo = build_heisenberg_mpo(6)
        sched = SweepSchedule.from_values(4, [1, 2, 4, 8])
        energies = [
            dmrg(mpo, product_mps(sites6, 3), DMRGConfig(schedule=sched.prefix(k))).energy
            for k in range(1, 5)
        ]
        for e_short, e_long in zip(energies, energies[1:]):
            assert e_long <= e_short + 1e-10

    def test_bond_dim_one_is_finite(self, sites6):
        result = dmrg(
            build_heisenberg_mpo(6),
            product_mps(sites6, 3),
            DMRGConfig(max_bond_dim=1, num_sweeps=2),
        )
        assert np.isfinite(result.energy)
        assert bond_dims(result.mps) == [1] * 5
        assert result.max_bond_dims_per_sweep == [1, 1]

    def test_input_mps_untouched(self, sites6):
        mps = product_mps(sites6, 3)
        before = mps_to_vector(mps)
        dmrg(build_heisenberg_mpo(6), mps, DMRGConfig(max_bond_dim=4, num_sweeps=1))
        np.testing.assert_array_equal(mps_to_vector(mps), before)

    def test_convergence_tol_stops_early(self, sites6):
        result = dmrg(
            build_heisenberg_mpo(6),
            product_mps(sites6, 3),
            DMRGConfig(max_bond_dim=16, num_sweeps=20, convergence_tol=1e-9),
        )
        assert result.converged
        assert len(result.energies_per_sweep) < 20

    def test_converged_flag_without_early_stop(self, sites6):
        result = dmrg(
            build_heisenberg_mpo(6),
            product_mps(sites6, 3),
            DMRGConfig(max_bond_dim=16, num_sweeps=6),
        )
        assert len(result.energies_per_sweep) == 6
        assert result.converged

    def test_single_sweep_not_converged(self, sites6):
        result = dmrg(
            build_heisenberg_mpo(6),
            product_mps(sites6, 3),
            DMRGConfig(max_bond_dim=4, num_sweeps=1),
        )
        assert not result.converged

    def test_wall_time_budget(self, sites6):
        result = dmrg(
            build_heisenberg_mpo(6),
            product_mps(sites6, 3),
            DMRGConfig(max_bond_dim=4, num_sweeps=10, max_wall_time=0.0),
        )
        assert len(result.energies_per_sweep) == 1
        assert np.isfinite(result.energy)

    def test_verbose_prints(self, sites6, capsys):
        dmrg(
            build_heisenberg_mpo(6),
            product_mps(sites6, 3),
            DMRGConfig(max_bond_dim=4, num_sweeps=2, verbose=True),
        )
        out = capsys.readouterr().out
        assert "Sweep 1/2" in out
        assert "Sweep 2/2" in out

    def test_complex_mpo(self, heisenberg_matrix):
        L = 4
        auto = AutoMPO(L=L)
        for i in range(L - 1):
            for op in ("Sx", "Sy", "Sz"):
                auto += (1.0, op, i, op, i + 1)
        mpo = auto.to_mpo()
        result = dmrg(mpo, product_mps(site_indices(L), 2), DMRGConfig(max_bond_dim=8, num_sweeps=4))
        assert result.mps.get_tensor(0).dtype == jnp.complex128
        exact = np.linalg.eigvalsh(heisenberg_matrix(L))[0]
        np.testing.assert_allclose(result.energy, exact, atol=1e-9)

    def test_ten_site_chain(self):
        L = 10
        result = dmrg(
            build_heisenberg_mpo(L),
            product_mps(site_indices(L), L // 2),
            DMRGConfig(max_bond_dim=32, num_sweeps=6),
        )
        np.testing.assert_allclose(result.energy, E0_L10, atol=1e-6)


class TestSectorConservation:
    def test_ten_site_shifted_sector(self, heisenberg_matrix, total_sz_matrix):
        L = 10
        result = dmrg(
            build_heisenberg_mpo(L),
            product_mps(site_indices(L), 6),
            DMRGConfig(max_bond_dim=100, num_sweeps=20, cutoff=1e-10),
        )
        np.testing.assert_allclose(local_profile(result.mps).sum(), 1.0, atol=1e-6)
        exact = _sector_ground_energy(heisenberg_matrix(L), np.diag(total_sz_matrix(L)), 1.0)
        np.testing.assert_allclose(result.energy, exact, atol=1e-7)
        assert result.energy > E0_L10 + 1e-3

    @pytest.mark.parametrize("max_bond_dim", [2, 3, 5])
    def test_truncation_inside_multiplets(self, max_bond_dim, sites6, total_sz_matrix):
        result = dmrg(
            build_heisenberg_mpo(6),
            product_mps(sites6, 4),
            DMRGConfig(max_bond_dim=max_bond_dim, num_sweeps=4),
        )
        vec = mps_to_vector(result.mps)
        vec = vec / np.linalg.norm(vec)
        sz = np.diag(total_sz_matrix(6))
        np.testing.assert_allclose(np.vdot(vec, sz * vec).real, 1.0, atol=1e-12)

    def test_result_tensors_carry_charges(self, sites6):
        result = dmrg(
            build_heisenberg_mpo(6),
            product_mps(sites6, 4),
            DMRGConfig(max_bond_dim=8, num_sweeps=3),
        )
        tensors = mps_site_tensors(result.mps)
        for t in tensors:
            assert conserved_charge_mask(t) is not None
        np.testing.assert_array_equal(tensors[-1].indices[2].charges, [2])
        for a, b in zip(tensors, tensors[1:]):
            np.testing.assert_array_equal(a.indices[2].charges, b.indices[0].charges)

    def test_dense_start_reaches_global_ground_state(self, sites6, rng, heisenberg_matrix):
        result = dmrg(
            build_heisenberg_mpo(6),
            random_mps(sites6, 4, rng),
            DMRGConfig(max_bond_dim=16, num_sweeps=6),
        )
        exact = np.linalg.eigvalsh(heisenberg_matrix(6))[0]
        np.testing.assert_allclose(result.energy, exact, atol=1e-9)


class TestDMRGErrors:
    def test_length_mismatch_raises(self):
        with pytest.raises(ConfigurationError, match="sites"):
            dmrg(
                build_heisenberg_mpo(6),
                product_mps(site_indices(4), 2),
                DMRGConfig(num_sweeps=1),
            )

    def test_single_site_raises(self):
        auto = AutoMPO(L=1)
        auto += (1.0, "Sz", 0)
        with pytest.raises(ConfigurationError, match="L >= 2"):
            dmrg(auto.to_mpo(), product_mps(site_indices(1), 1), DMRGConfig(num_sweeps=1))

    def test_zero_initial_state_raises(self):
        sites = site_indices(4)
        zeros = mps_from_tensors(
            [make_site_tensor(jnp.zeros((1, 2, 1)), s, i, 4) for i, s in enumerate(sites)]
        )
        with pytest.raises(NumericalBreakdownError, match="norm"):
            dmrg(build_heisenberg_mpo(4), zeros, DMRGConfig(num_sweeps=1))

    def test_invalid_config_raises_before_work(self):
        with pytest.raises(ConfigurationError):
            dmrg(
                build_heisenberg_mpo(4),
                product_mps(site_indices(4), 2),
                DMRGConfig(max_bond_dim=0),
            )
