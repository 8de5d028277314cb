"""Core tensor, index and error classes."""

from dmrgjax.core.errors import (
    ConfigurationError,
    ImaginaryResidueWarning,
    NumericalBreakdownError,
)
from dmrgjax.core.index import FlowDirection, Label, TensorIndex, site_indices
from dmrgjax.core.symmetry import BaseSymmetry, U1Symmetry
from dmrgjax.core.tensor import DenseTensor, Tensor


__all__ = [
    "BaseSymmetry",
    "U1Symmetry",
    "FlowDirection",
    "Label",
    "TensorIndex",
    "site_indices",
    "Tensor",
    "DenseTensor",
    "ConfigurationError",
    "NumericalBreakdownError",
    "ImaginaryResidueWarning",
]
