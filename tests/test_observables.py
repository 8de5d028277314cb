"""Tests for MPS expectation values and diagnostics."""

import warnings

import jax.numpy as jnp
import numpy as np
import pytest

from dmrgjax.algorithms.auto_mpo import build_heisenberg_mpo, spin_half_ops
from dmrgjax.algorithms.mps import (
    make_site_tensor,
    mps_from_tensors,
    mps_site_tensors,
    mps_to_vector,
    product_mps,
    random_mps,
)
from dmrgjax.algorithms.observables import (
    energy_variance,
    entanglement_entropy,
    local_profile,
    mpo_expectation,
    mps_norm,
    overlap,
)
from dmrgjax.core.errors import (
    ConfigurationError,
    ImaginaryResidueWarning,
    NumericalBreakdownError,
)
from dmrgjax.core.index import site_indices


def _dense_profile(vec: np.ndarray, op: np.ndarray, L: int) -> np.ndarray:
    vec = vec / np.linalg.norm(vec)
    out = []
    for i in range(L):
        full = np.kron(np.kron(np.eye(2**i), op), np.eye(2 ** (L - i - 1)))
        out.append(np.vdot(vec, full @ vec).real)
    return np.array(out)


def _singlet_mps():
    sites = site_indices(2)
    a0 = np.zeros((1, 2, 2))
    a0[0, 0, 0] = a0[0, 1, 1] = 1 / np.sqrt(2)
    a1 = np.zeros((2, 2, 1))
    a1[0, 1, 0] = 1.0
    a1[1, 0, 0] = -1.0
    return mps_from_tensors(
        [
            make_site_tensor(jnp.asarray(a0), sites[0], 0, 2),
            make_site_tensor(jnp.asarray(a1), sites[1], 1, 2),
        ]
    )


# ------------------------------------------------------------------ #
# Local profile                                                       #
# ------------------------------------------------------------------ #


class TestLocalProfile:
    def test_product_state(self, sites6):
        profile = local_profile(product_mps(sites6, 4))
        np.testing.assert_allclose(profile, [0.5] * 4 + [-0.5] * 2, atol=1e-14)
        assert profile.dtype == np.float64
        assert profile.shape == (6,)

    def test_matches_dense_vector(self, sites6, rng):
        mps = random_mps(sites6, 4, rng)
        vec = mps_to_vector(mps)
        ops = spin_half_ops()
        for name in ("Sz", "Sx"):
            np.testing.assert_allclose(
                local_profile(mps, name), _dense_profile(vec, ops[name], 6), atol=1e-12
            )

    def test_sum_is_total_sz(self, sites6, rng, total_sz_matrix):
        mps = random_mps(sites6, 4, rng)
        vec = mps_to_vector(mps)
        vec = vec / np.linalg.norm(vec)
        total = np.vdot(vec, total_sz_matrix(6) @ vec).real
        np.testing.assert_allclose(local_profile(mps).sum(), total, atol=1e-12)

    def test_unnormalized_state(self, sites6, rng):
        mps = random_mps(sites6, 3, rng)
        tensors = mps_site_tensors(mps)
        tensors[2] = tensors[2].with_data(7.0 * tensors[2].todense())
        np.testing.assert_allclose(
            local_profile(mps_from_tensors(tensors)), local_profile(mps), atol=1e-12
        )

    def test_idempotent_and_input_untouched(self, sites6, rng):
        mps = random_mps(sites6, 4, rng)
        before = mps_to_vector(mps)
        first = local_profile(mps)
        second = local_profile(mps)
        np.testing.assert_array_equal(first, second)
        np.testing.assert_array_equal(mps_to_vector(mps), before)

    def test_returned_array_is_independent(self, sites6):
        mps = product_mps(sites6, 3)
        profile = local_profile(mps)
        profile[0] = 99.0
        assert local_profile(mps)[0] == pytest.approx(0.5)

    def test_explicit_matrix(self, sites6):
        number = np.diag([1.0, 0.0])
        np.testing.assert_allclose(
            local_profile(product_mps(sites6, 2), number), [1, 1, 0, 0, 0, 0], atol=1e-14
        )

    def test_hermitian_operator_does_not_warn(self, sites6, rng):
        mps = random_mps(sites6, 4, rng, dtype=jnp.complex128)
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            local_profile(mps, "Sy")

    def test_non_hermitian_operator_warns(self, sites6):
        op = np.array([[0.5 + 0.1j, 0.0], [0.0, -0.5]])
        with pytest.warns(ImaginaryResidueWarning, match="imaginary residue"):
            profile = local_profile(product_mps(sites6, 6), op)
        np.testing.assert_allclose(profile, [0.5] * 6, atol=1e-14)

    def test_bad_operator_shape_raises(self, sites6):
        with pytest.raises(ValueError, match="shape"):
            local_profile(product_mps(sites6, 3), np.eye(3))

    def test_unknown_operator_raises(self, sites6):
        with pytest.raises(KeyError, match="Sq"):
            local_profile(product_mps(sites6, 3), "Sq")

    def test_zero_state_raises(self):
        sites = site_indices(3)
        zeros = mps_from_tensors(
            [make_site_tensor(jnp.zeros((1, 2, 1)), s, i, 3) for i, s in enumerate(sites)]
        )
        with pytest.raises(NumericalBreakdownError):
            local_profile(zeros)


# ------------------------------------------------------------------ #
# Energies                                                            #
# ------------------------------------------------------------------ #


class TestEnergyDiagnostics:
    def test_mpo_expectation_matches_dense(self, sites6, rng, heisenberg_matrix):
        mps = random_mps(sites6, 4, rng)
        vec = mps_to_vector(mps)
        expected = np.vdot(vec, heisenberg_matrix(6) @ vec).real / np.vdot(vec, vec).real
        np.testing.assert_allclose(
            mpo_expectation(build_heisenberg_mpo(6), mps), expected, atol=1e-12
        )

    def test_variance_vanishes_on_eigenstate(self, sites6):
        # the fully polarized state is an eigenstate with E = (L-1)/4
        assert abs(energy_variance(build_heisenberg_mpo(6), product_mps(sites6, 6))) < 1e-12

    def test_variance_matches_dense(self, sites6, heisenberg_matrix):
        mps = product_mps(sites6, 3)
        vec = mps_to_vector(mps)
        H = heisenberg_matrix(6)
        h1 = np.vdot(vec, H @ vec).real
        h2 = np.vdot(vec, H @ (H @ vec)).real
        np.testing.assert_allclose(
            energy_variance(build_heisenberg_mpo(6), mps), h2 - h1**2, atol=1e-12
        )

    def test_length_mismatch_raises(self, sites6):
        with pytest.raises(ConfigurationError):
            mpo_expectation(build_heisenberg_mpo(4), product_mps(sites6, 3))
        with pytest.raises(ConfigurationError):
            energy_variance(build_heisenberg_mpo(4), product_mps(sites6, 3))


# ------------------------------------------------------------------ #
# Overlaps and entanglement                                           #
# ------------------------------------------------------------------ #


class TestOverlap:
    def test_orthogonal_product_states(self, sites6):
        assert overlap(product_mps(sites6, 3), product_mps(sites6, 4)) == 0.0
        assert overlap(product_mps(sites6, 3), product_mps(sites6, 3)) == pytest.approx(1.0)

    def test_matches_dense(self, sites6, rng, rng2):
        a = random_mps(sites6, 3, rng)
        b = random_mps(sites6, 4, rng2)
        expected = np.vdot(mps_to_vector(a), mps_to_vector(b))
        np.testing.assert_allclose(overlap(a, b), expected, rtol=1e-12)

    def test_complex_states(self, sites6, rng, rng2):
        a = random_mps(sites6, 3, rng, dtype=jnp.complex128)
        b = random_mps(sites6, 3, rng2, dtype=jnp.complex128)
        value = overlap(a, b)
        assert isinstance(value, complex)
        np.testing.assert_allclose(
            value, np.vdot(mps_to_vector(a), mps_to_vector(b)), rtol=1e-12
        )

    def test_real_states_give_float(self, sites6):
        assert isinstance(overlap(product_mps(sites6, 1), product_mps(sites6, 1)), float)

    def test_norm(self, sites6, rng):
        mps = random_mps(sites6, 4, rng)
        np.testing.assert_allclose(
            mps_norm(mps), np.linalg.norm(mps_to_vector(mps)), rtol=1e-12
        )

    def test_length_mismatch_raises(self, sites6):
        with pytest.raises(ConfigurationError):
            overlap(product_mps(sites6, 3), product_mps(site_indices(4), 2))


class TestEntanglementEntropy:
    def test_product_state_has_none(self, sites6):
        entropy = entanglement_entropy(product_mps(sites6, 3))
        assert entropy.shape == (5,)
        np.testing.assert_allclose(entropy, 0.0, atol=1e-14)

    def test_singlet(self):
        np.testing.assert_allclose(entanglement_entropy(_singlet_mps()), [np.log(2)], rtol=1e-12)

    def test_singlet_profile_vanishes(self):
        np.testing.assert_allclose(local_profile(_singlet_mps()), [0.0, 0.0], atol=1e-14)
