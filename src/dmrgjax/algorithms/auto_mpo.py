"""AutoMPO: automatic MPO construction from symbolic coupling terms.

Builds Matrix Product Operators from symbolic Hamiltonian descriptions using
a finite-automaton (left-partial-state) approach.  Each Hamiltonian term is
a product of local operators at specified sites:

    H = sum_k  c_k * O_{s0}^(k) ⊗ O_{s1}^(k) ⊗ ... ⊗ O_{sm}^(k)

At each internal bond j, a term is *in-flight* when min_site <= j < max_site.
The MPO bond dimension = (# in-flight terms) + 2 (done + vacuum states),
giving an exact MPO.  For the nearest-neighbour Heisenberg chain three terms
are in flight at every bond, so the bond dimension is 5 independent of L.
An optional SVD compression pass reduces bond dimension toward the optimal.

State index convention:
  0           = "done"   (accumulated result, passes through with identity)
  1 .. n      = one per in-flight term (ordered by term enumeration)
  n + 1 = D-1 = "vacuum" (not yet started, passes through with identity)

W-matrix leg convention: ``W[w_left, out, in, w_right]`` so that each
operator block is stored as the ordinary matrix ``op[out, in]``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import jax.numpy as jnp
import numpy as np

from dmrgjax.core.errors import ConfigurationError
from dmrgjax.core.index import FlowDirection, TensorIndex
from dmrgjax.core.symmetry import U1Symmetry
from dmrgjax.core.tensor import DenseTensor
from dmrgjax.network.network import TensorNetwork, build_chain

# ---------------------------------------------------------------------------
# Built-in operator sets
# ---------------------------------------------------------------------------


def spin_half_ops() -> dict[str, np.ndarray]:
    """Standard spin-1/2 single-site operators (d=2).

    Basis ordering: |up⟩, |down⟩ → indices 0, 1.
    Returns a dict with keys "Sz", "Sp", "Sm", "Sx", "Sy", "Id".
    """
    return {
        "Sz": np.array([[0.5, 0.0], [0.0, -0.5]], dtype=np.float64),
        "Sp": np.array([[0.0, 1.0], [0.0, 0.0]], dtype=np.float64),
        "Sm": np.array([[0.0, 0.0], [1.0, 0.0]], dtype=np.float64),
        "Sx": np.array([[0.0, 0.5], [0.5, 0.0]], dtype=np.float64),
        "Sy": np.array([[0.0, -0.5j], [0.5j, 0.0]], dtype=np.complex128),
        "Id": np.eye(2, dtype=np.float64),
    }


def spin_one_ops() -> dict[str, np.ndarray]:
    """Standard spin-1 single-site operators (d=3).

    Basis ordering: |m=+1⟩, |m=0⟩, |m=-1⟩ → indices 0, 1, 2.
    Returns a dict with keys "Sz", "Sp", "Sm", "Id".
    """
    sq2 = np.sqrt(2.0)
    return {
        "Sz": np.diag([1.0, 0.0, -1.0]).astype(np.float64),
        "Sp": np.array(
            [[0.0, sq2, 0.0], [0.0, 0.0, sq2], [0.0, 0.0, 0.0]], dtype=np.float64
        ),
        "Sm": np.array(
            [[0.0, 0.0, 0.0], [sq2, 0.0, 0.0], [0.0, sq2, 0.0]], dtype=np.float64
        ),
        "Id": np.eye(3, dtype=np.float64),
    }


def default_site_ops(d: int) -> dict[str, np.ndarray]:
    """Return the built-in operator set for local dimension ``d``.

    Raises:
        ConfigurationError: If no built-in set exists for ``d``.
    """
    if d == 2:
        return spin_half_ops()
    if d == 3:
        return spin_one_ops()
    raise ConfigurationError(
        f"No default site_ops for d={d}; provide site_ops explicitly."
    )


# ---------------------------------------------------------------------------
# Data structure
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HamiltonianTerm:
    """One term in the Hamiltonian: coefficient * product of local operators.

    Attributes:
        coefficient: Scalar (real or complex) prefactor.
        ops: Tuple of (site, operator_matrix) pairs, sorted by site.
    """

    coefficient: float | complex
    ops: tuple[tuple[int, np.ndarray], ...]


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _assign_bond_states(
    terms: list[HamiltonianTerm], L: int
) -> list[dict[int, int]]:
    """Assign MPO bond-state indices to in-flight terms at each internal bond.

    Returns ``bond_states`` where ``bond_states[j][t_id]`` is the state index
    for term ``t_id`` at bond ``j`` (between sites ``j`` and ``j+1``).

    Done = 0 and vacuum = n_active+1 are *not* stored in this dict; callers
    derive them from ``len(bond_states[j]) + 1``.
    """
    bond_states: list[dict[int, int]] = []
    for j in range(L - 1):
        states: dict[int, int] = {}
        idx = 1
        for t_id, term in enumerate(terms):
            sites = [s for s, _ in term.ops]
            if min(sites) <= j < max(sites):
                states[t_id] = idx
                idx += 1
        bond_states.append(states)
    return bond_states


def _build_w_matrices(
    terms: list[HamiltonianTerm],
    bond_states: list[dict[int, int]],
    L: int,
    d: int,
    identity: np.ndarray,
) -> list[np.ndarray]:
    """Build a W-matrix for every site.

    Shape conventions:
      * Left boundary  (i=0):   (1,   d, d, D_r); left dim = 1 (vacuum only)
      * Right boundary (i=L-1): (D_l, d, d, 1  ); right dim = 1 (done only)
      * Bulk sites:             (D_l, d, d, D_r)

    The dtype is float64 unless a coefficient or operator is complex.
    """
    dtype = np.result_type(
        np.float64,
        *(np.asarray(term.coefficient) for term in terms),
        *(op for term in terms for _, op in term.ops),
    )
    w_mats: list[np.ndarray] = []

    for i in range(L):
        D_l = 1 if i == 0 else len(bond_states[i - 1]) + 2
        D_r = 1 if i == L - 1 else len(bond_states[i]) + 2

        W = np.zeros((D_l, d, d, D_r), dtype=dtype)

        # Left boundary: single state acts as vacuum (index 0).
        # Right boundary: single state acts as done (index 0).
        vac_l = 0 if i == 0 else D_l - 1
        done_l = 0
        done_r = 0
        vac_r = D_r - 1

        # ----- pass-through identities -----
        if L == 1:
            pass  # No bonds; W is purely the operator sum
        elif i == 0:
            W[0, :, :, vac_r] = identity
        elif i == L - 1:
            W[done_l, :, :, 0] = identity
        else:
            W[done_l, :, :, done_r] = identity
            W[vac_l, :, :, vac_r] = identity

        # ----- fill each Hamiltonian term -----
        for t_id, term in enumerate(terms):
            op_dict = dict(term.ops)
            sites = sorted(op_dict.keys())
            min_s, max_s = sites[0], sites[-1]

            if i < min_s or i > max_s:
                continue

            op = op_dict.get(i, identity)

            if min_s == max_s:
                # Single-site term: vacuum → done in one step
                W[vac_l, :, :, done_r] += term.coefficient * op
            elif i == min_s:
                # First site of multi-site term: absorb coefficient here
                W[vac_l, :, :, bond_states[i][t_id]] += term.coefficient * op
            elif i == max_s:
                W[bond_states[i - 1][t_id], :, :, done_r] += op
            else:
                # Each term owns unique state indices, so SET is safe here
                W[bond_states[i - 1][t_id], :, :, bond_states[i][t_id]] = op

        w_mats.append(W)

    return w_mats


def _compress_mpo_bond(
    w_left: np.ndarray,
    w_right: np.ndarray,
    tol: float = 1e-12,
) -> tuple[np.ndarray, np.ndarray]:
    """SVD-compress one MPO bond between two adjacent W-matrices.

    The left singular vectors (scaled by the singular values) replace
    ``w_left``; the right factor is applied to ``w_right``.  Singular values
    below ``tol * sigma_max`` are discarded.
    """
    D_l, d, _, D_mid = w_left.shape

    U, s, Vt = np.linalg.svd(w_left.reshape(D_l * d * d, D_mid), full_matrices=False)

    threshold = tol * s[0] if s[0] > 0.0 else tol
    rank = max(int(np.sum(s > threshold)), 1)

    w_left_new = (U[:, :rank] * s[:rank]).reshape(D_l, d, d, rank)
    w_right_new = np.einsum("km,mabn->kabn", Vt[:rank, :], w_right)

    return w_left_new, w_right_new


def _w_matrices_to_mpo(
    w_matrices: list[np.ndarray],
    d: int,
    dtype: Any = None,
    name: str = "AutoMPO",
) -> TensorNetwork:
    """Wrap a list of W-matrices into a chain TensorNetwork.

    Labels:
      - Left bond labels:  ``"w_left_0"`` (i=0), ``"w{i-1}_{i}"`` (i>0)
      - Right bond labels: ``"w_right"`` (i=L-1), ``"w{i}_{i+1}"`` (i<L-1)
      - Physical labels:   ``"mpo_top_{i}"`` (out), ``"mpo_bot_{i}"`` (in)
      - MPO bond charges are all zero.
    """
    L = len(w_matrices)
    sym = U1Symmetry()
    bond_d = np.zeros(d, dtype=np.int32)

    tensors = []
    for i, W_np in enumerate(w_matrices):
        D_l, _, _, D_r = W_np.shape
        W = jnp.asarray(W_np, dtype=dtype if dtype is not None else W_np.dtype)

        left_label = "w_left_0" if i == 0 else f"w{i - 1}_{i}"
        right_label = "w_right" if i == L - 1 else f"w{i}_{i + 1}"

        indices = (
            TensorIndex(sym, np.zeros(D_l, dtype=np.int32), FlowDirection.IN, label=left_label),
            TensorIndex(sym, bond_d, FlowDirection.OUT, label=f"mpo_top_{i}"),
            TensorIndex(sym, bond_d, FlowDirection.IN, label=f"mpo_bot_{i}"),
            TensorIndex(sym, np.zeros(D_r, dtype=np.int32), FlowDirection.OUT, label=right_label),
        )
        tensors.append(DenseTensor(W, indices))

    return build_chain(tensors, name=name)


# ---------------------------------------------------------------------------
# Public class
# ---------------------------------------------------------------------------


class AutoMPO:
    """Symbolic Hamiltonian builder that produces an MPO TensorNetwork.

    Operator names are resolved against a ``site_ops`` dictionary; the
    defaults are ``spin_half_ops()`` for ``d=2`` and ``spin_one_ops()`` for
    ``d=3``.

    Example::

        auto = AutoMPO(L=6)
        for i in range(5):
            auto += (1.0, "Sz", i, "Sz", i + 1)
            auto += (0.5, "Sp", i, "Sm", i + 1)
            auto += (0.5, "Sm", i, "Sp", i + 1)
        mpo = auto.to_mpo()

    The resulting MPO is directly compatible with ``dmrg()``.
    """

    def __init__(
        self,
        L: int,
        d: int = 2,
        site_ops: dict[str, np.ndarray] | None = None,
    ) -> None:
        if L < 1:
            raise ConfigurationError(f"L must be >= 1, got {L}")
        self.L = L
        self.d = d
        self._site_ops = site_ops if site_ops is not None else default_site_ops(d)
        self._terms: list[HamiltonianTerm] = []

    # ------------------------------------------------------------------
    # Term addition
    # ------------------------------------------------------------------

    def add_term(self, coeff: float | complex, *args: Any) -> None:
        """Add one term to the Hamiltonian.

        Args:
            coeff: Scalar coefficient.
            *args: Alternating ``(op_name, site)`` pairs, at least one pair.

        Example::

            auto.add_term(0.5, "Sp", 0, "Sm", 1)
            auto.add_term(-0.3, "Sz", 2)  # single-site field
        """
        if len(args) == 0 or len(args) % 2 != 0:
            raise ValueError(
                "args must be alternating (op_name, site) pairs; "
                f"got {len(args)} argument(s)."
            )

        pairs: list[tuple[int, np.ndarray]] = []
        for k in range(0, len(args), 2):
            op_name = args[k]
            site = args[k + 1]
            if not isinstance(op_name, str):
                raise TypeError(
                    f"Expected operator name (str) at position {k}, got {type(op_name).__name__}."
                )
            if op_name not in self._site_ops:
                raise KeyError(
                    f"Operator '{op_name}' not in site_ops. "
                    f"Available: {sorted(self._site_ops)}"
                )
            if not isinstance(site, (int, np.integer)) or not (0 <= site < self.L):
                raise ValueError(f"Site {site!r} out of range [0, {self.L}).")
            pairs.append((int(site), self._site_ops[op_name]))

        pairs.sort(key=lambda x: x[0])
        sites = [s for s, _ in pairs]
        if len(sites) != len(set(sites)):
            raise ValueError(f"Duplicate sites in term: {sites}")

        self._terms.append(HamiltonianTerm(coefficient=coeff, ops=tuple(pairs)))

    def __iadd__(self, args: tuple) -> AutoMPO:
        """Convenience operator: ``auto_mpo += (coeff, op1, site1, ...)``."""
        self.add_term(args[0], *args[1:])
        return self

    # ------------------------------------------------------------------
    # MPO construction
    # ------------------------------------------------------------------

    def to_mpo(
        self,
        compress: bool = False,
        compress_tol: float = 1e-12,
        dtype: Any = None,
        name: str = "AutoMPO",
    ) -> TensorNetwork:
        """Build and return the MPO as a TensorNetwork.

        Args:
            compress:     Apply a left-to-right SVD compression pass to
                          reduce bond dimension.
            compress_tol: Relative singular-value threshold for compression.
            dtype:        JAX dtype for the MPO tensors (inferred if None).
            name:         TensorNetwork name.

        Returns:
            TensorNetwork with L site tensors compatible with ``dmrg()``.

        Raises:
            ValueError: If no terms have been added.
        """
        if not self._terms:
            raise ValueError("No terms; call add_term() before to_mpo().")

        identity = np.eye(self.d, dtype=np.float64)
        bond_states = _assign_bond_states(self._terms, self.L)
        w_mats = _build_w_matrices(
            self._terms, bond_states, self.L, self.d, identity
        )

        if compress and self.L > 1:
            for j in range(self.L - 1):
                w_mats[j], w_mats[j + 1] = _compress_mpo_bond(
                    w_mats[j], w_mats[j + 1], tol=compress_tol
                )

        return _w_matrices_to_mpo(w_mats, self.d, dtype=dtype, name=name)

    # ------------------------------------------------------------------
    # Inspection helpers
    # ------------------------------------------------------------------

    def bond_dims(self) -> list[int]:
        """Return the (uncompressed) MPO bond dimensions at each internal bond."""
        bond_states = _assign_bond_states(self._terms, self.L)
        return [len(bs) + 2 for bs in bond_states]

    def n_terms(self) -> int:
        """Number of Hamiltonian terms added so far."""
        return len(self._terms)


# ---------------------------------------------------------------------------
# Functional API
# ---------------------------------------------------------------------------


def build_auto_mpo(
    terms_spec: list[tuple],
    L: int,
    d: int = 2,
    site_ops: dict[str, np.ndarray] | None = None,
    compress: bool = False,
    compress_tol: float = 1e-12,
    dtype: Any = None,
) -> TensorNetwork:
    """Build an MPO from a list of term specifications.

    Args:
        terms_spec: List of tuples ``(coeff, op1, site1, op2, site2, ...)``.
        L:          Chain length (number of sites).
        d:          Local Hilbert-space dimension (2 for spin-1/2).
        site_ops:   Operator name → matrix dict.
        compress:   Apply left-to-right SVD compression.
        compress_tol: Relative singular-value threshold for compression.
        dtype:      JAX dtype for MPO tensors.
    """
    auto = AutoMPO(L=L, d=d, site_ops=site_ops)
    for term in terms_spec:
        auto.add_term(term[0], *term[1:])
    return auto.to_mpo(compress=compress, compress_tol=compress_tol, dtype=dtype)


def heisenberg_terms(L: int, J: float = 1.0) -> list[tuple]:
    """Coupling terms of the open nearest-neighbour Heisenberg chain.

    H = sum_i [ J/2 (S+_i S-_{i+1} + S-_i S+_{i+1}) + J Sz_i Sz_{i+1} ]
    """
    terms = []
    for i in range(L - 1):
        terms.append((J / 2, "Sp", i, "Sm", i + 1))
        terms.append((J / 2, "Sm", i, "Sp", i + 1))
        terms.append((J, "Sz", i, "Sz", i + 1))
    return terms


def build_heisenberg_mpo(L: int, J: float = 1.0, d: int = 2) -> TensorNetwork:
    """Build the exact MPO of the open Heisenberg chain.

    Args:
        L: Chain length; at least two sites are needed for a bond.
        J: Exchange coupling.
        d: Local dimension (2 for spin-1/2, 3 for spin-1).

    Returns:
        MPO TensorNetwork with bond dimension 5 on every internal bond.

    Raises:
        ConfigurationError: If ``L < 2``.
    """
    if L < 2:
        raise ConfigurationError(
            f"L must be >= 2 for a nearest-neighbour chain, got L={L}"
        )
    auto = AutoMPO(L=L, d=d)
    for term in heisenberg_terms(L, J):
        auto.add_term(term[0], *term[1:])
    return auto.to_mpo(name=f"Heisenberg_MPO_L{L}")


def mpo_to_matrix(mpo: TensorNetwork) -> np.ndarray:
    """Contract an MPO into its dense ``(d^L, d^L)`` matrix.

    Rows are the out (bra) indices, columns the in (ket) indices, site 0
    being the most significant digit as in ``np.kron``.  Materializes the
    full operator; only meant for testing on short chains.
    """
    L = mpo.n_nodes()
    top = [f"mpo_top_{i}" for i in range(L)]
    bot = [f"mpo_bot_{i}" for i in range(L)]
    dense = np.asarray(mpo.contract(output_labels=top + bot).todense())
    dim = int(np.prod(dense.shape[:L]))
    return dense.reshape(dim, dim)
