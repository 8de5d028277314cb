"""Expectation values and diagnostics of Matrix Product States.

The local profile moves the orthogonality center to each site in turn, so a
single-site operator only needs to be contracted with the center tensor and
its conjugate::

    <psi|O_i|psi> / <psi|psi> = sum C*[a,x,b] O[x,p] C[a,p,b] / sum |C|^2

Canonicalization works on copies of the site tensors: the MPS passed in is
never modified.
"""

from __future__ import annotations

import warnings

import jax.numpy as jnp
import numpy as np

from dmrgjax.algorithms.auto_mpo import default_site_ops
from dmrgjax.algorithms.dmrg import expectation_value
from dmrgjax.algorithms.mps import mps_site_tensors, orthogonalize
from dmrgjax.core.errors import (
    ConfigurationError,
    ImaginaryResidueWarning,
    NumericalBreakdownError,
)
from dmrgjax.network.network import TensorNetwork

__all__ = [
    "orthogonalize",
    "local_profile",
    "mpo_expectation",
    "energy_variance",
    "overlap",
    "mps_norm",
    "entanglement_entropy",
]


def _resolve_operator(op: str | np.ndarray, d: int) -> np.ndarray:
    if isinstance(op, str):
        ops = default_site_ops(d)
        if op not in ops:
            raise KeyError(f"Operator '{op}' not in site_ops. Available: {sorted(ops)}")
        return ops[op]
    matrix = np.asarray(op)
    if matrix.shape != (d, d):
        raise ValueError(f"operator must have shape ({d}, {d}), got {matrix.shape}")
    return matrix


def local_profile(
    mps: TensorNetwork,
    op: str | np.ndarray = "Sz",
    imag_tol: float = 1e-8,
) -> np.ndarray:
    """Expectation value of a single-site operator at every site.

    Args:
        mps:      MPS TensorNetwork (need not be normalized).
        op:       Operator name from the built-in set for the local
                  dimension (``"Sz"``, ``"Sx"``, ...) or a ``d x d`` matrix.
        imag_tol: Largest imaginary part accepted silently.

    Returns:
        Real values ``<O_i>`` for ``i = 0 .. L-1`` as a float64 array.

    Warns:
        ImaginaryResidueWarning: If some ``|Im <O_i>|`` exceeds ``imag_tol``;
            a Hermitian operator should never trigger it.

    Raises:
        NumericalBreakdownError: If the state norm vanishes or a value is not
            finite.
    """
    tensors = mps_site_tensors(mps)
    L = len(tensors)
    matrix = jnp.asarray(_resolve_operator(op, tensors[0].indices[1].dim))

    values = np.empty(L, dtype=np.complex128)
    for i in range(L):
        tensors = orthogonalize(tensors, i)
        C = tensors[i].todense()
        norm_sq = float(jnp.real(jnp.vdot(C, C)))
        if not np.isfinite(norm_sq) or norm_sq <= 0.0:
            raise NumericalBreakdownError(f"MPS norm collapsed at site {i}: {norm_sq}")
        values[i] = complex(jnp.einsum("axb,xp,apb->", jnp.conj(C), matrix, C)) / norm_sq

    if not np.all(np.isfinite(values)):
        raise NumericalBreakdownError(f"non-finite local expectation values: {values}")

    residue = float(np.max(np.abs(values.imag)))
    if residue > imag_tol:
        warnings.warn(
            f"local expectation values have an imaginary residue of {residue:.3e} "
            f"(tolerance {imag_tol:.1e}); is the operator Hermitian?",
            ImaginaryResidueWarning,
            stacklevel=2,
        )
    return values.real.copy()


def mpo_expectation(mpo: TensorNetwork, mps: TensorNetwork) -> float:
    """``<psi|H|psi> / <psi|psi>`` for an MPO ``H``."""
    _check_lengths(mpo, mps)
    mpo_arrays = [mpo.get_tensor(i).todense() for i in range(mpo.n_nodes())]
    return expectation_value(mps_site_tensors(mps), mpo_arrays)


def energy_variance(mpo: TensorNetwork, mps: TensorNetwork) -> float:
    """``<H^2> - <H>^2`` for a normalized copy of the state.

    Vanishes (up to round-off) exactly when the MPS is an eigenstate.
    """
    _check_lengths(mpo, mps)
    tensors = mps_site_tensors(mps)
    dtype = jnp.result_type(tensors[0].dtype, mpo.get_tensor(0).dtype)

    # env[a, b, c, d]: ket bond, first MPO bond, second MPO bond, bra bond
    env = jnp.ones((1, 1, 1, 1), dtype=dtype)
    norm_env = jnp.ones((1, 1), dtype=dtype)
    for i, tensor in enumerate(tensors):
        A = tensor.todense()
        W = mpo.get_tensor(i).todense()
        env = jnp.einsum("abcd,ape,bxpf,cyxg,dyh->efgh", env, A, W, W, jnp.conj(A))
        norm_env = jnp.einsum("ac,apd,cpf->df", norm_env, A, jnp.conj(A))

    norm_sq = float(jnp.real(norm_env[0, 0]))
    if not np.isfinite(norm_sq) or norm_sq <= 0.0:
        raise NumericalBreakdownError(f"MPS norm collapsed: <psi|psi> = {norm_sq}")
    h2 = float(jnp.real(env[0, 0, 0, 0])) / norm_sq
    h1 = mpo_expectation(mpo, mps)
    return h2 - h1**2


def overlap(bra: TensorNetwork, ket: TensorNetwork) -> float | complex:
    """``<bra|ket>``; a float when both states are real."""
    if bra.n_nodes() != ket.n_nodes():
        raise ConfigurationError(
            f"cannot overlap MPS of lengths {bra.n_nodes()} and {ket.n_nodes()}"
        )
    env = jnp.ones((1, 1))
    for a, b in zip(mps_site_tensors(bra), mps_site_tensors(ket)):
        env = jnp.einsum("ac,cpf,apd->df", env, b.todense(), jnp.conj(a.todense()))
    value = env[0, 0]
    if jnp.iscomplexobj(value):
        return complex(value)
    return float(value)


def mps_norm(mps: TensorNetwork) -> float:
    """2-norm of the represented vector."""
    return float(np.sqrt(np.real(overlap(mps, mps))))


def entanglement_entropy(mps: TensorNetwork) -> np.ndarray:
    """Von Neumann entanglement entropy across every internal bond.

    Returns:
        Array of length ``L-1``; entry ``i`` is the entropy between sites
        ``0..i`` and ``i+1..L-1`` (natural logarithm).
    """
    tensors = mps_site_tensors(mps)
    L = len(tensors)
    entropies = np.zeros(L - 1)
    for i in range(L - 1):
        tensors = orthogonalize(tensors, i)
        C = tensors[i].todense()
        chi_l, d, chi_r = C.shape
        s = np.linalg.svd(np.asarray(C).reshape(chi_l * d, chi_r), compute_uv=False)
        p = s**2 / np.sum(s**2)
        p = p[p > 1e-300]
        entropies[i] = float(-np.sum(p * np.log(p)))
    return entropies


def _check_lengths(mpo: TensorNetwork, mps: TensorNetwork) -> None:
    if mpo.n_nodes() != mps.n_nodes():
        raise ConfigurationError(
            f"MPS has {mps.n_nodes()} sites but the MPO has L={mpo.n_nodes()}"
        )
