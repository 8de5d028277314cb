"""Shared fixtures for the dmrgjax test suite."""

import jax
import numpy as np
import pytest

from dmrgjax.core.index import FlowDirection, TensorIndex, site_indices
from dmrgjax.core.symmetry import U1Symmetry
from dmrgjax.core.tensor import DenseTensor

# ------------------------------------------------------------------ #
# Symmetry and random key fixtures                                     #
# ------------------------------------------------------------------ #

@pytest.fixture
def u1():
    return U1Symmetry()


@pytest.fixture
def rng():
    return jax.random.PRNGKey(42)


@pytest.fixture
def rng2():
    return jax.random.PRNGKey(99)


# ------------------------------------------------------------------ #
# TensorIndex fixtures                                                 #
# ------------------------------------------------------------------ #

@pytest.fixture
def u1_charges_3():
    """U(1) charges [-1, 0, 1], typical for a bond of dimension 3."""
    return np.array([-1, 0, 1], dtype=np.int32)


@pytest.fixture
def idx_in_3(u1, u1_charges_3):
    """U(1) IN index with charges [-1, 0, 1], label='left'."""
    return TensorIndex(u1, u1_charges_3, FlowDirection.IN, label="left")


@pytest.fixture
def idx_out_3(u1, u1_charges_3):
    """U(1) OUT index with dual charges [1, 0, -1], label='right'."""
    return TensorIndex(u1, u1.dual(u1_charges_3), FlowDirection.OUT, label="right")


# ------------------------------------------------------------------ #
# DenseTensor fixtures                                                 #
# ------------------------------------------------------------------ #

@pytest.fixture
def small_dense_matrix(u1, rng):
    """A 3x3 DenseTensor (matrix) with U(1) indices."""
    charges = np.array([-1, 0, 1], dtype=np.int32)
    data = jax.random.normal(rng, (3, 3))
    indices = (
        TensorIndex(u1, charges, FlowDirection.IN,  label="row"),
        TensorIndex(u1, charges, FlowDirection.OUT, label="col"),
    )
    return DenseTensor(data, indices)


@pytest.fixture
def dense_vector(u1, rng):
    """A 3-element DenseTensor (vector) with U(1) index."""
    charges = np.array([-1, 0, 1], dtype=np.int32)
    data = jax.random.normal(rng, (3,))
    idx = TensorIndex(u1, charges, FlowDirection.IN, label="vec")
    return DenseTensor(data, (idx,))


# ------------------------------------------------------------------ #
# Spin-chain fixtures                                                  #
# ------------------------------------------------------------------ #

@pytest.fixture
def sites6():
    """Physical legs of a 6-site spin-1/2 chain."""
    return site_indices(6)


@pytest.fixture
def heisenberg_matrix():
    """Factory for the dense (2^L, 2^L) open Heisenberg Hamiltonian."""
    Sz = np.array([[0.5, 0.0], [0.0, -0.5]])
    Sp = np.array([[0.0, 1.0], [0.0, 0.0]])
    Sm = np.array([[0.0, 0.0], [1.0, 0.0]])
    I2 = np.eye(2)

    def kron(ops: list) -> np.ndarray:
        r = ops[0]
        for op in ops[1:]:
            r = np.kron(r, op)
        return r

    def build(L: int, J: float = 1.0) -> np.ndarray:
        H = np.zeros((2**L, 2**L))
        for i in range(L - 1):
            for a, b, c in ((Sz, Sz, J), (Sp, Sm, J / 2), (Sm, Sp, J / 2)):
                ops = [I2] * L
                ops[i], ops[i + 1] = a, b
                H += c * kron(ops)
        return H

    return build


@pytest.fixture
def total_sz_matrix():
    """Factory for the dense total-Sz operator of an L-site chain."""

    def build(L: int) -> np.ndarray:
        diag = np.zeros(2**L)
        for state in range(2**L):
            # site 0 is the most significant bit; bit 0 = up
            bits = [(state >> (L - 1 - i)) & 1 for i in range(L)]
            diag[state] = sum(0.5 if b == 0 else -0.5 for b in bits)
        return np.diag(diag)

    return build
