"""Tensor storage: a dense JAX array plus per-leg index metadata.

DenseTensor is registered as a JAX pytree node, making it compatible with
jax.jit, jax.grad, jax.vmap, etc.  The data array is the single pytree leaf;
the index metadata is static aux data, so jit recompiles only when leg
dimensions change (i.e. after an SVD truncation changes a bond dimension).
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import jax
import jax.numpy as jnp
import numpy as np

from dmrgjax.core.index import FlowDirection, Label, TensorIndex


# ---------- Charge sectors ----------


def fused_charges(indices: Sequence[TensorIndex]) -> np.ndarray:
    """Flow-weighted fused charge of every entry of a group of legs.

    Each leg contributes its charges as-is when it flows IN and their dual
    when it flows OUT.  The result is flattened in C order, so entry ``k``
    belongs to row ``k`` of the legs reshaped into a single axis.

    Args:
        indices: Legs to fuse; an empty group fuses to the identity.

    Returns:
        Integer array of length ``prod(idx.dim for idx in indices)``.
    """
    if not indices:
        return np.zeros(1, dtype=np.int32)
    sym = indices[0].symmetry
    total = np.full((1,) * len(indices), sym.identity(), dtype=np.int32)
    for axis, idx in enumerate(indices):
        charges = idx.charges if idx.flow == FlowDirection.IN else sym.dual(idx.charges)
        shape = [1] * len(indices)
        shape[axis] = idx.dim
        total = sym.fuse(total, charges.reshape(shape))
    return total.ravel()


def charge_sector_mask(indices: Sequence[TensorIndex]) -> np.ndarray:
    """Boolean mask of the entries allowed by charge conservation.

    An entry is allowed when the flow-weighted charges of its legs fuse to
    the identity of the symmetry group.
    """
    sym = indices[0].symmetry
    shape = tuple(idx.dim for idx in indices)
    return (fused_charges(indices) == sym.identity()).reshape(shape)


def conserved_charge_mask(tensor: Tensor, tol: float = 1e-12) -> np.ndarray | None:
    """Return the charge-sector mask of a tensor whose data respects it.

    A tensor is charge conserving when every entry outside the allowed
    sectors is zero within ``tol``.  Such a tensor is block diagonal once
    its legs are grouped into rows and columns, one block per charge.

    Returns:
        The boolean mask from :func:`charge_sector_mask`, or None if the
        tensor has non-zero entries outside it or no sector is allowed.
    """
    mask = charge_sector_mask(tensor.indices)
    if not mask.any():
        return None
    outside = np.asarray(tensor.todense())[~mask]
    if outside.size and float(np.max(np.abs(outside))) > tol:
        return None
    return mask


# ---------- Tensor Protocol ----------


class Tensor:
    """Structural base class (duck-typed protocol) for tensor objects.

    Users should type-hint with Tensor for polymorphic code.
    """

    @property
    def indices(self) -> tuple[TensorIndex, ...]:
        raise NotImplementedError

    @property
    def ndim(self) -> int:
        raise NotImplementedError

    @property
    def dtype(self) -> Any:
        raise NotImplementedError

    def todense(self) -> jax.Array:
        raise NotImplementedError

    def conj(self) -> Tensor:
        raise NotImplementedError

    def norm(self) -> jax.Array:
        raise NotImplementedError

    def labels(self) -> tuple[Label, ...]:
        """Return the label of each leg in order."""
        return tuple(idx.label for idx in self.indices)

    def relabel(self, old: Label, new: Label) -> Tensor:
        raise NotImplementedError

    def relabels(self, mapping: dict[Label, Label]) -> Tensor:
        raise NotImplementedError


# ---------- DenseTensor ----------


@jax.tree_util.register_pytree_node_class
class DenseTensor(Tensor):
    """A tensor stored as a plain JAX array with index metadata.

    Pytree structure:
        Leaves:     (data_array,)
        Aux data:   indices tuple (static, not traced by JAX)

    Args:
        data:    JAX array of shape matching the dimension of each index.
        indices: Tuple of TensorIndex objects, one per leg.

    Raises:
        ValueError: If the number or dimensions of the indices do not match
            the data array.
    """

    def __init__(
        self,
        data: jax.Array,
        indices: tuple[TensorIndex, ...],
    ) -> None:
        if data.ndim != len(indices):
            raise ValueError(
                f"data has {data.ndim} dims but {len(indices)} indices given"
            )
        for i, (dim, idx) in enumerate(zip(data.shape, indices)):
            if dim != idx.dim:
                raise ValueError(
                    f"data.shape[{i}]={dim} but indices[{i}].dim={idx.dim}"
                )
        self._data = data
        self._indices = tuple(indices)

    # --- Pytree interface (JAX jit/vmap/grad compatibility) ---

    def tree_flatten(self) -> tuple[tuple[jax.Array], tuple[TensorIndex, ...]]:
        return (self._data,), self._indices

    @classmethod
    def tree_unflatten(
        cls,
        aux: tuple[TensorIndex, ...],
        children: tuple[jax.Array],
    ) -> DenseTensor:
        # Leaves may be tracers or placeholders; shapes were checked on creation
        obj = object.__new__(cls)
        obj._data = children[0]
        obj._indices = aux
        return obj

    # --- Tensor interface ---

    @property
    def indices(self) -> tuple[TensorIndex, ...]:
        return self._indices

    @property
    def ndim(self) -> int:
        return self._data.ndim

    @property
    def shape(self) -> tuple[int, ...]:
        return tuple(self._data.shape)

    @property
    def dtype(self) -> Any:
        return self._data.dtype

    def todense(self) -> jax.Array:
        return self._data

    def conj(self) -> DenseTensor:
        return DenseTensor(jnp.conj(self._data), self._indices)

    def transpose(self, axes: tuple[int, ...]) -> DenseTensor:
        """Permute tensor legs.

        Args:
            axes: New ordering of leg indices.

        Returns:
            New DenseTensor with permuted data and reordered indices.
        """
        return DenseTensor(
            jnp.transpose(self._data, axes),
            tuple(self._indices[i] for i in axes),
        )

    def norm(self) -> jax.Array:
        """Frobenius norm."""
        return jnp.linalg.norm(self._data.ravel())

    def with_data(self, data: jax.Array) -> DenseTensor:
        """Return a tensor with the same legs and new data of equal shape."""
        return DenseTensor(data, self._indices)

    def relabel(self, old: Label, new: Label) -> DenseTensor:
        """Return a copy with one leg label renamed.

        Raises:
            KeyError: If *old* is not found among the tensor's labels.
        """
        found = False
        new_indices = []
        for idx in self._indices:
            if idx.label == old:
                new_indices.append(idx.relabel(new))
                found = True
            else:
                new_indices.append(idx)
        if not found:
            raise KeyError(f"Label {old!r} not found in tensor with labels {self.labels()}")
        return DenseTensor(self._data, tuple(new_indices))

    def relabels(self, mapping: dict[Label, Label]) -> DenseTensor:
        """Return a copy with multiple leg labels renamed at once.

        Labels not present in the mapping are left unchanged.
        """
        new_indices = tuple(
            idx.relabel(mapping[idx.label]) if idx.label in mapping else idx
            for idx in self._indices
        )
        return DenseTensor(self._data, new_indices)

    def __repr__(self) -> str:
        return (
            f"DenseTensor(shape={self._data.shape}, dtype={self.dtype}, "
            f"labels={self.labels()})"
        )
