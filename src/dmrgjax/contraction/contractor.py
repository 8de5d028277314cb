r"""Tensor contraction engine with label-based API.

Primary API::

    contract(\*tensors, output_labels=None, optimize="auto") -> Tensor

Labels drive contraction: legs with the same label across different tensors
are contracted (summed over). Free labels (unique to one tensor) become
output legs.

Under the hood, labels are translated to einsum subscript strings which
are fed to opt_einsum for contraction path finding, then executed with the
JAX backend.

Lower-level API::

    contract_with_subscripts(tensors, subscripts, output_indices, optimize) -> Tensor
    truncated_svd(tensor, left_labels, right_labels, ...) -> (U, s, Vh, s_full)
    qr_decompose(tensor, left_labels, right_labels, ...) -> (Q, R)
"""

from __future__ import annotations

import functools
import string
from collections import Counter
from collections.abc import Sequence

import jax
import jax.numpy as jnp
import numpy as np
import opt_einsum

from dmrgjax.core.index import FlowDirection, Label, TensorIndex
from dmrgjax.core.symmetry import U1Symmetry
from dmrgjax.core.tensor import (
    DenseTensor,
    Tensor,
    conserved_charge_mask,
    fused_charges,
)

# ---------- Label → Subscript Translation ----------


def _labels_to_subscripts(
    tensors: Sequence[Tensor],
    output_labels: Sequence[Label] | None = None,
) -> tuple[str, tuple[TensorIndex, ...]]:
    """Build an einsum subscript string from tensor labels.

    Algorithm:
    1. Count how many times each label appears across all tensors.
    2. Labels appearing twice are contracted (summed over).
    3. Labels appearing exactly once are free (output) legs.
    4. Assign a unique letter from the alphabet to each unique label.
    5. Build the subscript string "legs_t0,legs_t1,...->output_legs".

    Args:
        tensors:       Sequence of Tensor objects.
        output_labels: Explicit ordering of free labels in the output.
                       If None, uses the order: free labels of t0, t1, ...

    Returns:
        (subscripts, output_indices) where output_indices are TensorIndex
        objects for the output legs in output_labels order.

    Raises:
        ValueError: If a label appears more than 2 times (ambiguous).
        ValueError: If output_labels contains a label not present as a free label.
    """
    label_counts: Counter[Label] = Counter()
    label_to_index: dict[Label, TensorIndex] = {}

    for tensor in tensors:
        for idx in tensor.indices:
            label_counts[idx.label] += 1
            # Keep the first-seen index metadata for each label
            if idx.label not in label_to_index:
                label_to_index[idx.label] = idx

    for label, count in label_counts.items():
        if count > 2:
            raise ValueError(
                f"Label {label!r} appears {count} times across tensors. "
                f"Labels must appear at most 2 times (one per tensor to contract)."
            )

    free_labels = [lbl for lbl, cnt in label_counts.items() if cnt == 1]

    # einsum accepts single characters only: at most 52 unique labels
    all_labels = sorted(label_counts.keys(), key=str)
    if len(all_labels) > 52:
        raise ValueError(
            f"Too many unique labels ({len(all_labels)}) for einsum encoding. "
            f"Maximum supported is 52 (a-z + A-Z)."
        )

    available_chars = string.ascii_lowercase + string.ascii_uppercase
    label_to_char: dict[Label, str] = {
        lbl: available_chars[i] for i, lbl in enumerate(all_labels)
    }

    tensor_subscripts = [
        "".join(label_to_char[idx.label] for idx in tensor.indices)
        for tensor in tensors
    ]

    if output_labels is None:
        # Default: free labels in the order they appear across tensors
        free_set = set(free_labels)
        output_labels = [
            idx.label
            for tensor in tensors
            for idx in tensor.indices
            if idx.label in free_set
        ]
    else:
        free_set = set(free_labels)
        for lbl in output_labels:
            if lbl not in free_set:
                raise ValueError(
                    f"output_labels contains {lbl!r} which is not a free label. "
                    f"Free labels are: {free_labels}"
                )

    output_subs = "".join(label_to_char[lbl] for lbl in output_labels)
    subscripts = ",".join(tensor_subscripts) + "->" + output_subs
    output_indices = tuple(label_to_index[lbl] for lbl in output_labels)

    return subscripts, output_indices


# ---------- Dense contraction ----------


@functools.lru_cache(maxsize=1024)
def _cached_contraction_path(
    subscripts: str,
    shapes: tuple[tuple[int, ...], ...],
    optimize: str,
) -> tuple[tuple[int, ...], ...]:
    """Find (and memoize) the opt_einsum path for a subscript/shape pair.

    Sweeps repeat the same handful of contraction shapes many times, so the
    pure-Python path search is done once per shape signature.
    """
    path, _ = opt_einsum.contract_path(
        subscripts, *shapes, optimize=optimize, shapes=True
    )
    return tuple(tuple(step) for step in path)


def _contract_dense(
    tensors: Sequence[DenseTensor],
    subscripts: str,
    output_indices: tuple[TensorIndex, ...],
    optimize: str = "auto",
) -> DenseTensor:
    """Contract dense tensors using opt_einsum with JAX backend.

    Args:
        tensors:        Sequence of DenseTensor.
        subscripts:     Einsum subscript string (e.g., "ij,jk->ik").
        output_indices: TensorIndex metadata for the output legs.
        optimize:       opt_einsum optimizer ('auto', 'greedy', 'dp', etc.).

    Returns:
        Contracted DenseTensor.
    """
    arrays = [t.todense() for t in tensors]
    shapes = tuple(tuple(a.shape) for a in arrays)
    path = _cached_contraction_path(subscripts, shapes, optimize)

    result = opt_einsum.contract(
        subscripts, *arrays, optimize=list(path), backend="jax"
    )

    return DenseTensor(result, output_indices)


# ---------- Public API ----------


def contract(
    *tensors: Tensor,
    output_labels: Sequence[Label] | None = None,
    optimize: str = "auto",
) -> Tensor:
    """Contract tensors by matching shared labels.

    Legs with the same label across different tensors are automatically
    contracted (summed over). Legs with unique labels become output legs.

    Args:
        *tensors:       One or more Tensor objects to contract.
        output_labels:  Explicit ordering of output legs by label.
                        If None, uses the natural order (free labels of the
                        first tensor, then the second, etc.).
        optimize:       opt_einsum path optimizer strategy.

    Returns:
        Contracted Tensor with indices corresponding to free labels.

    Raises:
        ValueError: If no tensors are given or a label appears more than
            2 times (ambiguous contraction).

    Example:
        >>> # A has labels ('i', 'j', 'k'), B has labels ('k', 'l', 'm')
        >>> result = contract(A, B)
        >>> result.labels()
        ('i', 'j', 'l', 'm')
    """
    if not tensors:
        raise ValueError("contract() requires at least one tensor")

    subscripts, output_indices = _labels_to_subscripts(tensors, output_labels)

    # A single tensor with no contraction or permutation is returned as-is
    if len(tensors) == 1:
        lhs, rhs = subscripts.split("->")
        if lhs == rhs:
            return tensors[0]

    return contract_with_subscripts(tensors, subscripts, output_indices, optimize)


def contract_with_subscripts(
    tensors: Sequence[Tensor],
    subscripts: str,
    output_indices: tuple[TensorIndex, ...],
    optimize: str = "auto",
) -> Tensor:
    """Contract tensors using an explicit einsum subscript string.

    The output_indices must provide TensorIndex metadata for each output leg.

    Raises:
        TypeError: If any tensor is not a DenseTensor.
    """
    if not all(isinstance(t, DenseTensor) for t in tensors):
        types = [type(t).__name__ for t in tensors]
        raise TypeError(f"Only DenseTensor contraction is supported, got types: {types}")
    return _contract_dense(list(tensors), subscripts, output_indices, optimize)  # type: ignore[arg-type]


# ---------- Helpers shared by the decompositions ----------


def _matricize(
    tensor: Tensor,
    left_labels: Sequence[Label],
    right_labels: Sequence[Label],
) -> tuple[jax.Array, tuple[TensorIndex, ...], tuple[TensorIndex, ...]]:
    """Group left_labels as rows and right_labels as columns of a matrix."""
    all_labels = tensor.labels()
    left_set = set(left_labels)
    right_set = set(right_labels)

    if left_set | right_set != set(all_labels):
        raise ValueError(
            f"left_labels {list(left_labels)} + right_labels {list(right_labels)} "
            f"must cover all tensor labels {list(all_labels)}"
        )
    if left_set & right_set:
        raise ValueError(
            f"left_labels and right_labels must be disjoint, "
            f"got overlap: {left_set & right_set}"
        )

    label_to_axis = {lbl: i for i, lbl in enumerate(all_labels)}
    left_axes = [label_to_axis[lbl] for lbl in left_labels]
    right_axes = [label_to_axis[lbl] for lbl in right_labels]

    dense_perm = jnp.transpose(tensor.todense(), left_axes + right_axes)

    left_indices = tuple(tensor.indices[i] for i in left_axes)
    right_indices = tuple(tensor.indices[i] for i in right_axes)
    left_dim = int(np.prod([idx.dim for idx in left_indices]))
    right_dim = int(np.prod([idx.dim for idx in right_indices]))

    return dense_perm.reshape(left_dim, right_dim), left_indices, right_indices


def _bond_pair(
    template: tuple[TensorIndex, ...],
    charges: np.ndarray,
    label: Label,
) -> tuple[TensorIndex, TensorIndex]:
    """Build the (OUT, IN) ends of a new virtual bond with the given charges."""
    sym = template[0].symmetry if template else U1Symmetry()
    return (
        TensorIndex(sym, charges, FlowDirection.OUT, label=label),
        TensorIndex(sym, charges, FlowDirection.IN, label=label),
    )


def _charge_blocks(
    tensor: Tensor,
    left_indices: tuple[TensorIndex, ...],
    right_indices: tuple[TensorIndex, ...],
) -> list[tuple[int, np.ndarray, np.ndarray]] | None:
    """Split the matricized tensor into its charge blocks.

    Row ``r`` carries the fused charge of the left legs and column ``c`` the
    dual of the fused charge of the right legs; a charge-conserving tensor
    only couples rows and columns of equal charge.

    Returns:
        ``(charge, rows, cols)`` per block in ascending charge order, or None
        if the tensor is not charge conserving.
    """
    if conserved_charge_mask(tensor) is None:
        return None
    sym = (left_indices or right_indices)[0].symmetry
    row_charges = fused_charges(left_indices)
    col_charges = sym.dual(fused_charges(right_indices))
    return [
        (int(q), np.flatnonzero(row_charges == q), np.flatnonzero(col_charges == q))
        for q in np.intersect1d(row_charges, col_charges)
    ]


def _truncation_rank(
    s: np.ndarray,
    max_singular_values: int | None,
    cutoff: float | None,
) -> int:
    """Number of leading singular values kept out of a descending spectrum."""
    n_keep = len(s)

    if cutoff is not None:
        weights = s**2
        total = float(weights.sum())
        if total > 0.0:
            # tail[k] = relative weight discarded when keeping k values
            tail = np.append(np.cumsum(weights[::-1])[::-1], 0.0) / total
            n_keep = int(np.argmax(tail <= cutoff))

    if max_singular_values is not None:
        n_keep = min(n_keep, max_singular_values)

    return max(1, n_keep)


# ---------- Truncated SVD ----------


def _block_svd(
    matrix: jax.Array,
    blocks: list[tuple[int, np.ndarray, np.ndarray]],
    max_singular_values: int | None,
    cutoff: float | None,
) -> tuple[jax.Array, jax.Array, jax.Array, jax.Array, np.ndarray]:
    """SVD of a block-diagonal matrix, one charge block at a time.

    The spectra of all blocks are merged and sorted in descending order
    before truncation, so the kept values are the globally largest ones.
    Every kept bond state inherits the charge of its block.
    """
    spectra = []
    for _, rows, cols in blocks:
        U_q, s_q, Vh_q = jnp.linalg.svd(matrix[np.ix_(rows, cols)], full_matrices=False)
        spectra.append((U_q, s_q, Vh_q))

    s_all = jnp.concatenate([s_q for _, s_q, _ in spectra])
    owner = np.concatenate([np.full(len(s_q), b) for b, (_, s_q, _) in enumerate(spectra)])
    position = np.concatenate([np.arange(len(s_q)) for _, s_q, _ in spectra])

    # stable sort keeps ties in ascending charge order
    order = np.argsort(-np.asarray(s_all), kind="stable")
    s_full = s_all[order]
    n_keep = _truncation_rank(np.asarray(s_full), max_singular_values, cutoff)
    kept = order[:n_keep]

    U = jnp.zeros((matrix.shape[0], n_keep), dtype=matrix.dtype)
    Vh = jnp.zeros((n_keep, matrix.shape[1]), dtype=matrix.dtype)
    charges = np.zeros(n_keep, dtype=np.int32)
    for b, ((q, rows, cols), (U_q, _, Vh_q)) in enumerate(zip(blocks, spectra)):
        slots = np.flatnonzero(owner[kept] == b)
        if not len(slots):
            continue
        cols_q = position[kept[slots]]
        U = U.at[np.ix_(rows, slots)].set(U_q[:, cols_q].astype(matrix.dtype))
        Vh = Vh.at[np.ix_(slots, cols)].set(Vh_q[cols_q, :].astype(matrix.dtype))
        charges[slots] = q

    return U, s_full[:n_keep], Vh, s_full, charges


def truncated_svd(
    tensor: Tensor,
    left_labels: Sequence[Label],
    right_labels: Sequence[Label],
    new_bond_label: Label = "bond",
    max_singular_values: int | None = None,
    cutoff: float | None = None,
    normalize: bool = False,
) -> tuple[DenseTensor, jax.Array, DenseTensor, jax.Array]:
    """Reshape tensor into matrix, compute SVD, truncate, reshape back.

    The truncation keeps the smallest number of singular values ``n`` such
    that the discarded relative weight ``sum(s[n:]**2) / sum(s**2)`` does
    not exceed ``cutoff``, then caps ``n`` at ``max_singular_values``.  At
    least one singular value is always kept.

    A charge-conserving tensor (see
    :func:`~dmrgjax.core.tensor.conserved_charge_mask`) is decomposed one
    charge block at a time: each new bond state has the charge of its block,
    and degenerate singular values of different blocks are never mixed.
    Any other tensor gets a dense SVD and a bond with trivial charges.

    Output labels::

        U:  (left_labels..., new_bond_label)
        Vh: (new_bond_label, right_labels...)

    Note:
        This function is not JIT-able as a whole because the truncation
        rank is determined dynamically from the singular values.

    Args:
        tensor:               Tensor to decompose.
        left_labels:          Labels forming the "left" (U) factor.
        right_labels:         Labels forming the "right" (Vh) factor.
        new_bond_label:       Label for the new virtual bond.
        max_singular_values:  Hard cap on bond dimension after truncation.
        cutoff:               Largest discarded relative weight allowed.
        normalize:            Rescale kept singular values to unit 2-norm.

    Returns:
        ``(U_tensor, s, Vh_tensor, s_full)`` where ``s`` holds the kept
        singular values and ``s_full`` the complete spectrum, both in
        descending order.

    Raises:
        ValueError: If left_labels + right_labels don't cover all tensor
            labels, or overlap.
    """
    matrix, left_indices, right_indices = _matricize(tensor, left_labels, right_labels)
    blocks = _charge_blocks(tensor, left_indices, right_indices)

    if blocks is None:
        U, s_full, Vh = jnp.linalg.svd(matrix, full_matrices=False)
        n_keep = _truncation_rank(np.asarray(s_full), max_singular_values, cutoff)
        U = U[:, :n_keep]
        s = s_full[:n_keep]
        Vh = Vh[:n_keep, :]
        charges = np.zeros(n_keep, dtype=np.int32)
    else:
        U, s, Vh, s_full, charges = _block_svd(matrix, blocks, max_singular_values, cutoff)
        n_keep = len(charges)

    if normalize:
        s = s / jnp.linalg.norm(s)

    left_shape = tuple(idx.dim for idx in left_indices)
    right_shape = tuple(idx.dim for idx in right_indices)
    bond_out, bond_in = _bond_pair(left_indices or right_indices, charges, new_bond_label)

    U_tensor = DenseTensor(U.reshape(left_shape + (n_keep,)), left_indices + (bond_out,))
    Vh_tensor = DenseTensor(Vh.reshape((n_keep,) + right_shape), (bond_in,) + right_indices)

    return U_tensor, s, Vh_tensor, s_full


# ---------- QR Decomposition ----------


def _block_qr(
    matrix: jax.Array,
    blocks: list[tuple[int, np.ndarray, np.ndarray]],
) -> tuple[jax.Array, jax.Array, np.ndarray]:
    """Reduced QR of a block-diagonal matrix, one charge block at a time."""
    factors = [
        (q, rows, cols, *jnp.linalg.qr(matrix[np.ix_(rows, cols)]))
        for q, rows, cols in blocks
    ]
    bond_dim = sum(Q_q.shape[1] for _, _, _, Q_q, _ in factors)

    Q = jnp.zeros((matrix.shape[0], bond_dim), dtype=matrix.dtype)
    R = jnp.zeros((bond_dim, matrix.shape[1]), dtype=matrix.dtype)
    charges = np.zeros(bond_dim, dtype=np.int32)
    start = 0
    for q, rows, cols, Q_q, R_q in factors:
        slots = np.arange(start, start + Q_q.shape[1])
        Q = Q.at[np.ix_(rows, slots)].set(Q_q)
        R = R.at[np.ix_(slots, cols)].set(R_q)
        charges[slots] = q
        start += Q_q.shape[1]

    return Q, R, charges


def qr_decompose(
    tensor: Tensor,
    left_labels: Sequence[Label],
    right_labels: Sequence[Label],
    new_bond_label: Label = "bond",
) -> tuple[DenseTensor, DenseTensor]:
    """QR decomposition of a tensor for canonical-form moves.

    Charge-conserving tensors are factorized block by block like
    :func:`truncated_svd`, so the new bond carries definite charges.

    Output labels::

        Q: (left_labels..., new_bond_label)
        R: (new_bond_label, right_labels...)

    Args:
        tensor:          Tensor to decompose.
        left_labels:     Labels forming the Q (isometric) factor.
        right_labels:    Labels forming the R (upper triangular) factor.
        new_bond_label:  Label for the new virtual bond.

    Returns:
        (Q_tensor, R_tensor) where Q is isometric (Q^dag Q = I).
    """
    matrix, left_indices, right_indices = _matricize(tensor, left_labels, right_labels)
    blocks = _charge_blocks(tensor, left_indices, right_indices)

    if blocks is None:
        Q, R = jnp.linalg.qr(matrix)
        charges = np.zeros(Q.shape[1], dtype=np.int32)
    else:
        Q, R, charges = _block_qr(matrix, blocks)

    bond_dim = Q.shape[1]
    left_shape = tuple(idx.dim for idx in left_indices)
    right_shape = tuple(idx.dim for idx in right_indices)
    bond_out, bond_in = _bond_pair(left_indices or right_indices, charges, new_bond_label)

    Q_tensor = DenseTensor(Q.reshape(left_shape + (bond_dim,)), left_indices + (bond_out,))
    R_tensor = DenseTensor(R.reshape((bond_dim,) + right_shape), (bond_in,) + right_indices)

    return Q_tensor, R_tensor
