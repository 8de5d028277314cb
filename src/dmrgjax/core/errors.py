"""Error and warning kinds raised by the solver stack.

Configuration errors are raised before any optimizer work starts; numerical
breakdown is a distinct kind so the restart search can discard a failed
trial while still letting genuine misuse propagate.
"""

from __future__ import annotations


class ConfigurationError(ValueError):
    """An input parameter is out of range (chain length, nup, bond dim, ...)."""


class NumericalBreakdownError(ArithmeticError):
    """The state norm collapsed or an energy/expectation became NaN or Inf."""


class ImaginaryResidueWarning(RuntimeWarning):
    """A local expectation value has a non-negligible imaginary part."""
