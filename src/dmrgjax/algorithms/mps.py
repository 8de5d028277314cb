"""Matrix Product State construction and inspection.

Every site tensor is a uniform 3-leg tensor::

    legs  = (v_left, p{i}, v_right)
    shape = (chi_l, d, chi_r)

The outer boundary legs are labelled ``"v_left"`` (site 0) and ``"v_right"``
(site L-1) and always have dimension 1; internal bonds are ``"v{i}_{i+1}"``.
Keeping the boundary legs avoids special-casing the end sites in the sweep
code and in the environment contractions.

Product-state initializers pick a basis configuration inside a fixed
total-Sz sector: ``product_mps`` puts the first ``nup`` sites up, while
``random_product_mps`` draws a uniformly random ``nup``-subset of sites.
"""

from __future__ import annotations

from collections.abc import Sequence

import jax
import jax.numpy as jnp
import numpy as np

from dmrgjax.contraction.contractor import qr_decompose
from dmrgjax.core.errors import ConfigurationError
from dmrgjax.core.index import FlowDirection, TensorIndex
from dmrgjax.core.symmetry import U1Symmetry
from dmrgjax.core.tensor import DenseTensor, Tensor
from dmrgjax.network.network import TensorNetwork, build_chain


def bond_labels(site: int, L: int) -> tuple[str, str]:
    """Return the (left, right) virtual bond labels of site ``site``."""
    left = "v_left" if site == 0 else f"v{site - 1}_{site}"
    right = "v_right" if site == L - 1 else f"v{site}_{site + 1}"
    return left, right


def _virtual_index(
    dim: int,
    flow: FlowDirection,
    label: str,
    charges: np.ndarray | None = None,
) -> TensorIndex:
    if charges is None:
        charges = np.zeros(dim, dtype=np.int32)
    return TensorIndex(U1Symmetry(), np.asarray(charges), flow, label=label)


def make_site_tensor(
    data: jax.Array,
    site_index: TensorIndex,
    site: int,
    L: int,
    left_charges: np.ndarray | None = None,
    right_charges: np.ndarray | None = None,
) -> DenseTensor:
    """Wrap a ``(chi_l, d, chi_r)`` array as the MPS tensor of one site.

    The virtual legs carry ``left_charges`` and ``right_charges`` when given
    (the fused ``2*Sz`` of the sites to the left of each bond) and trivial
    charges otherwise.

    Raises:
        ValueError: If ``data`` is not 3-dimensional or its physical
            dimension does not match ``site_index``.
    """
    if data.ndim != 3:
        raise ValueError(f"MPS site data must be 3-D (chi_l, d, chi_r), got shape {data.shape}")
    left, right = bond_labels(site, L)
    indices = (
        _virtual_index(data.shape[0], FlowDirection.IN, left, left_charges),
        site_index,
        _virtual_index(data.shape[2], FlowDirection.OUT, right, right_charges),
    )
    return DenseTensor(data, indices)


# ------------------------------------------------------------------ #
# Product-state initializers                                          #
# ------------------------------------------------------------------ #


def _check_nup(sites: Sequence[TensorIndex], nup: int) -> None:
    L = len(sites)
    if L < 1:
        raise ConfigurationError(f"sites must be non-empty, got L={L}")
    if not 0 <= nup <= L:
        raise ConfigurationError(f"nup must lie in [0, {L}], got nup={nup}")


def total_charge(sites: Sequence[TensorIndex], up_sites: Sequence[int]) -> int:
    """Total ``2*Sz`` charge of the basis configuration with ``up_sites`` up.

    The up state is basis index 0 and the down state is the last basis
    index of each site, so for spin-1/2 the result is ``n_up - n_down``.
    """
    up = set(int(s) for s in up_sites)
    picked = [
        site.charges[0:1] if i in up else site.charges[-1:]
        for i, site in enumerate(sites)
    ]
    return int(sites[0].symmetry.fuse_many(picked)[0])


def basis_configuration(
    sites: Sequence[TensorIndex],
    up_sites: Sequence[int],
    dtype=jnp.float64,
) -> TensorNetwork:
    """Build the bond-dimension-1 MPS of a single basis configuration.

    Args:
        sites:    Physical site indices from ``site_indices()``.
        up_sites: Positions set to the up state; all others are down.
        dtype:    JAX dtype of the site tensors.

    Returns:
        Normalized product-state MPS.  Each bond carries the fused ``2*Sz``
        charge of the sites to its left, so the last bond holds the total
        charge of the configuration, which the network name also records.

    Raises:
        ValueError: If an entry of ``up_sites`` is not a valid site.
    """
    L = len(sites)
    up = set(int(s) for s in up_sites)
    bad = sorted(s for s in up if not 0 <= s < L)
    if bad:
        raise ValueError(f"up_sites {bad} out of range [0, {L})")

    sym = sites[0].symmetry
    left_charge = np.array([sym.identity()], dtype=np.int32)
    tensors = []
    for i, site in enumerate(sites):
        state = 0 if i in up else site.dim - 1
        local = np.zeros((1, site.dim, 1))
        local[0, state, 0] = 1.0
        right_charge = sym.fuse(left_charge, site.charges[state : state + 1])
        tensors.append(
            make_site_tensor(
                jnp.asarray(local, dtype=dtype), site, i, L, left_charge, right_charge
            )
        )
        left_charge = right_charge

    return build_chain(tensors, name=f"product_MPS_2Sz={total_charge(sites, sorted(up))}")


def product_mps(
    sites: Sequence[TensorIndex],
    nup: int,
    dtype=jnp.float64,
) -> TensorNetwork:
    """Fixed-assignment initializer: the first ``nup`` sites up, the rest down.

    The state has bond dimension 1 and lies exactly in the sector with
    total ``Sz = (nup - (L - nup)) / 2``.

    Raises:
        ConfigurationError: If ``nup`` is outside ``[0, L]``.
    """
    _check_nup(sites, nup)
    return basis_configuration(sites, range(nup), dtype=dtype)


def random_product_mps(
    sites: Sequence[TensorIndex],
    nup: int,
    key: jax.Array,
    dtype=jnp.float64,
) -> TensorNetwork:
    """Randomized initializer: a uniformly random ``nup``-subset of sites up.

    Sites are drawn without replacement from ``jax.random.permutation``, so
    the same key always yields the same configuration.

    Raises:
        ConfigurationError: If ``nup`` is outside ``[0, L]``.
    """
    _check_nup(sites, nup)
    perm = np.asarray(jax.random.permutation(key, len(sites)))
    return basis_configuration(sites, perm[:nup].tolist(), dtype=dtype)


def random_mps(
    sites: Sequence[TensorIndex],
    bond_dim: int,
    key: jax.Array,
    dtype=jnp.float64,
) -> TensorNetwork:
    """Random dense MPS with bond dimensions capped at ``bond_dim``.

    Bond ``i`` gets ``min(bond_dim, d**(i+1), d**(L-i-1))`` states.  The
    state is not confined to any magnetization sector, so its bonds carry
    trivial charges and decompositions treat it as a dense tensor.
    """
    if bond_dim < 1:
        raise ConfigurationError(f"bond_dim must be >= 1, got {bond_dim}")
    L = len(sites)
    d = sites[0].dim
    chis = [1] + [min(bond_dim, d ** (i + 1), d ** (L - i - 1)) for i in range(L - 1)] + [1]

    tensors = []
    for i, site in enumerate(sites):
        key, sub = jax.random.split(key)
        data = jax.random.normal(sub, (chis[i], site.dim, chis[i + 1]), dtype=dtype)
        tensors.append(make_site_tensor(data, site, i, L))
    return build_chain(tensors, name="random_MPS")


# ------------------------------------------------------------------ #
# Conversion helpers                                                  #
# ------------------------------------------------------------------ #


def mps_site_tensors(mps: TensorNetwork) -> list[Tensor]:
    """Return the site tensors of an MPS ordered by site."""
    return [mps.get_tensor(i) for i in range(mps.n_nodes())]


def mps_from_tensors(tensors: Sequence[Tensor], name: str = "MPS") -> TensorNetwork:
    """Assemble site tensors back into an MPS TensorNetwork."""
    return build_chain(list(tensors), name=name)


def site_index_of(tensor: Tensor) -> TensorIndex:
    """Return the physical leg of a 3-leg MPS site tensor."""
    return tensor.indices[1]


def orthogonalize(tensors: Sequence[Tensor], center: int) -> list[DenseTensor]:
    """Move the orthogonality center of an MPS to site ``center``.

    Sites left of ``center`` are made left-canonical and sites right of it
    right-canonical by QR decompositions swept in from both ends; the
    remaining factors are absorbed into the center tensor.  The input list
    and its tensors are left untouched and the represented vector does not
    change.  A charge-conserving MPS stays charge conserving: every new bond
    state carries the charge of the QR block it came from.

    Args:
        tensors: MPS site tensors ordered by site.
        center:  Target site of the orthogonality center.

    Returns:
        New list of site tensors in mixed-canonical form.

    Raises:
        ValueError: If ``center`` is not a valid site.
    """
    L = len(tensors)
    if not 0 <= center < L:
        raise ValueError(f"center must lie in [0, {L}), got {center}")

    out = [
        t if isinstance(t, DenseTensor) else DenseTensor(t.todense(), t.indices)
        for t in tensors
    ]

    # ---------- left part: A = Q R, push R to the right ----------
    for i in range(center):
        left, phys, right = out[i].labels()
        Q, R = qr_decompose(out[i], [left, phys], [right], new_bond_label="qr")
        bond = Q.indices[-1].charges
        nxt = jnp.einsum("ab,bpc->apc", R.todense(), out[i + 1].todense())
        out[i] = make_site_tensor(
            Q.todense(), site_index_of(out[i]), i, L, out[i].indices[0].charges, bond
        )
        out[i + 1] = make_site_tensor(
            nxt, site_index_of(out[i + 1]), i + 1, L, bond, out[i + 1].indices[2].charges
        )

    # ---------- right part: A^T = Q R, push R^T to the left ----------
    for i in range(L - 1, center, -1):
        left, phys, right = out[i].labels()
        Q, R = qr_decompose(out[i], [phys, right], [left], new_bond_label="qr")
        # the QR bond points the other way, so the new left charges are dual
        bond = Q.indices[-1].symmetry.dual(Q.indices[-1].charges)
        site = jnp.transpose(Q.todense(), (2, 0, 1))
        prev = jnp.einsum("apb,cb->apc", out[i - 1].todense(), R.todense())
        out[i] = make_site_tensor(
            site, site_index_of(out[i]), i, L, bond, out[i].indices[2].charges
        )
        out[i - 1] = make_site_tensor(
            prev, site_index_of(out[i - 1]), i - 1, L, out[i - 1].indices[0].charges, bond
        )

    return out


def bond_dims(mps: TensorNetwork) -> list[int]:
    """Dimensions of the L-1 internal bonds, left to right."""
    tensors = mps_site_tensors(mps)
    return [t.indices[2].dim for t in tensors[:-1]]


def mps_to_vector(mps: TensorNetwork) -> np.ndarray:
    """Contract an MPS into its dense ``d**L`` state vector.

    Site 0 is the most significant digit of the basis index.  Only usable
    for short chains.
    """
    L = mps.n_nodes()
    phys = [f"p{i}" for i in range(L)]
    dense = mps.contract(output_labels=phys, cache=False).todense()
    return np.asarray(dense).ravel()
