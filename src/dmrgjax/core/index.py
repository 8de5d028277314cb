"""Tensor index (leg) metadata with labels and charge information.

Each leg of a tensor is described by a TensorIndex, which carries:
- The symmetry group governing charges on this leg
- The charge of each basis state along this leg
- The flow direction (incoming/outgoing)
- A label (string or integer) for identification and label-based contraction

Labels are the primary user-facing API for specifying contractions.
Two legs with the same label on different tensors will be automatically
contracted when contract() or TensorNetwork.contract() is called.

Physical site legs of a chain are created once per run by site_indices();
their labels ``"p0" .. "p{L-1}"`` give every site a unique identity even
though all sites are physically equivalent.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

import numpy as np

from dmrgjax.core.errors import ConfigurationError
from dmrgjax.core.symmetry import BaseSymmetry, U1Symmetry

# Label type: strings (descriptive) or integers (positional)
Label = str | int


class FlowDirection(IntEnum):
    """Flow direction of a tensor leg.

    IN (+1):  Incoming leg, corresponds to a "ket" index, arrow pointing
              into the tensor.
    OUT (-1): Outgoing leg, corresponds to a "bra" index, arrow pointing
              out of the tensor.
    """

    IN = 1
    OUT = -1


@dataclass(frozen=True, slots=True)
class TensorIndex:
    """Metadata for one leg (index) of a tensor.

    Attributes:
        symmetry:  The symmetry group governing charges on this leg.
        charges:   1-D numpy int32 array of length D (bond dimension).
                   charges[i] is the charge of basis state i.
        flow:      Whether this leg is incoming (IN) or outgoing (OUT).
        label:     Human-readable or integer identifier for this leg.
                   Shared labels across tensors drive automatic contraction.

    Example:
        >>> u1 = U1Symmetry()
        >>> idx = TensorIndex(u1, np.array([1, -1], dtype=np.int32), FlowDirection.IN, label="p0")
        >>> idx.dim
        2
        >>> idx.dual().flow
        <FlowDirection.OUT: -1>
    """

    symmetry: BaseSymmetry
    charges: np.ndarray  # shape (D,), dtype int32
    flow: FlowDirection
    label: Label = ""

    def __post_init__(self) -> None:
        if self.charges.ndim != 1:
            raise ValueError(
                f"charges must be 1-D, got shape {self.charges.shape}"
            )
        # Coerce to int32 if needed (use object.__setattr__ since frozen)
        if self.charges.dtype != np.int32:
            object.__setattr__(self, "charges", self.charges.astype(np.int32))

    @property
    def dim(self) -> int:
        """Dimension of this leg (number of basis states)."""
        return len(self.charges)

    def dual(self) -> TensorIndex:
        """Return a new TensorIndex with flipped flow and dual charges."""
        return TensorIndex(
            symmetry=self.symmetry,
            charges=self.symmetry.dual(self.charges),
            flow=FlowDirection(-int(self.flow)),
            label=self.label,
        )

    def relabel(self, new_label: Label) -> TensorIndex:
        """Return a new TensorIndex with a different label, otherwise identical."""
        return TensorIndex(
            symmetry=self.symmetry,
            charges=self.charges,
            flow=self.flow,
            label=new_label,
        )

    def compatible_with(self, other: TensorIndex) -> bool:
        """Check if this index can be connected to other in a network.

        Requires same symmetry type, same dimension, and opposite flows.
        Charges are not compared: a random dense MPS carries trivial bond
        charges while a charge-conserving one carries block charges.
        """
        return (
            type(self.symmetry) is type(other.symmetry)
            and self.dim == other.dim
            and self.flow != other.flow
        )

    def __hash__(self) -> int:
        return hash((self.symmetry, self.charges.tobytes(), int(self.flow), self.label))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TensorIndex):
            return NotImplemented
        return (
            type(self.symmetry) is type(other.symmetry)
            and self.symmetry == other.symmetry
            and np.array_equal(self.charges, other.charges)
            and self.flow == other.flow
            and self.label == other.label
        )

    def __repr__(self) -> str:
        return (
            f"TensorIndex(sym={self.symmetry!r}, dim={self.dim}, "
            f"flow={self.flow.name}, label={self.label!r})"
        )


def site_indices(L: int, d: int = 2) -> tuple[TensorIndex, ...]:
    """Create the physical legs of an L-site spin chain.

    Site ``i`` gets label ``"p{i}"`` and charges ``2*m`` for the local basis
    ``m = S, S-1, ..., -S`` with ``S = (d-1)/2``; for spin-1/2 that is
    ``[+1, -1]`` (basis order up, down).

    Args:
        L: Number of sites (>= 1).
        d: Local Hilbert-space dimension (>= 2).

    Returns:
        Tuple of L incoming TensorIndex objects.

    Raises:
        ConfigurationError: If L < 1 or d < 2.
    """
    if L < 1:
        raise ConfigurationError(f"L must be >= 1, got {L}")
    if d < 2:
        raise ConfigurationError(f"d must be >= 2, got {d}")
    sym = U1Symmetry()
    charges = np.arange(d - 1, -d, -2, dtype=np.int32)
    return tuple(
        TensorIndex(sym, charges, FlowDirection.IN, label=f"p{i}")
        for i in range(L)
    )
