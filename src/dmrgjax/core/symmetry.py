"""Abelian charge bookkeeping for spin-chain tensor legs.

Physical legs carry the ``2*Sz`` quantum number of each local basis state.
Virtual legs of a charge-conserving MPS carry the fused ``2*Sz`` of the
block to their left, so every bond basis state has one definite charge and
the SVD and QR of a site tensor can be done one charge block at a time.
Dense states built without charge bookkeeping carry trivial bond charges.

No JAX dependency: pure Python and numpy arithmetic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import numpy as np


class BaseSymmetry(ABC):
    """Abstract base for Abelian groups governing tensor index charges.

    Concrete subclasses must implement fuse, dual and identity, and should
    implement __eq__ and __hash__ so they can be compared for compatibility
    checks between legs.
    """

    @abstractmethod
    def fuse(self, charges_a: np.ndarray, charges_b: np.ndarray) -> np.ndarray:
        """Fuse two charge arrays element-wise under the group operation.

        Args:
            charges_a: Integer charge array of shape (D,).
            charges_b: Integer charge array of shape (D,).

        Returns:
            Fused charge array of shape (D,).
        """

    @abstractmethod
    def dual(self, charges: np.ndarray) -> np.ndarray:
        """Return the group inverse (dual) of each charge."""

    @abstractmethod
    def identity(self) -> int:
        """Return the identity element (neutral charge, typically 0)."""

    def fuse_many(self, charge_list: list[np.ndarray]) -> np.ndarray:
        """Fuse a list of charge arrays left-to-right via repeated fuse().

        Args:
            charge_list: Non-empty list of integer charge arrays, all shape (D,).

        Returns:
            Fully fused charge array of shape (D,).

        Raises:
            ValueError: If ``charge_list`` is empty.
        """
        if not charge_list:
            raise ValueError("charge_list must be non-empty")
        result = charge_list[0]
        for c in charge_list[1:]:
            result = self.fuse(result, c)
        return result


class U1Symmetry(BaseSymmetry):
    """U(1) symmetry: integer charges, fusion by addition.

    Used for total-Sz conservation.  Spin-1/2 site legs carry ``[+1, -1]``
    (twice the Sz eigenvalue of the up and down basis states), so the fused
    charge of a product configuration is ``n_up - n_down``.

    Example:
        >>> sym = U1Symmetry()
        >>> sym.fuse_many([np.array([1]), np.array([1]), np.array([-1])])
        array([1])
    """

    def fuse(self, charges_a: np.ndarray, charges_b: np.ndarray) -> np.ndarray:
        return charges_a + charges_b

    def dual(self, charges: np.ndarray) -> np.ndarray:
        return -charges

    def identity(self) -> int:
        return 0

    def __eq__(self, other: object) -> bool:
        return isinstance(other, U1Symmetry)

    def __hash__(self) -> int:
        return hash("U1Symmetry")

    def __repr__(self) -> str:
        return "U1Symmetry()"
