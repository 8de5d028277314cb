"""dmrgjax: JAX-based DMRG for one-dimensional quantum spin chains.

Label-based contraction (Cytnx-style):
    Tensor legs carry string or integer labels. Two legs with the same label
    across different tensors are automatically contracted when contract() is called.

.. note::
    Importing ``dmrgjax`` enables JAX 64-bit mode (``jax_enable_x64``).
    All tensors and algorithms default to ``float64``.

Quick start::

    from dmrgjax import (
        DMRGConfig, build_heisenberg_mpo, dmrg, local_profile,
        product_mps, site_indices,
    )

    L = 10
    sites = site_indices(L)
    mpo = build_heisenberg_mpo(L, J=1.0)
    result = dmrg(mpo, product_mps(sites, L // 2), DMRGConfig(num_sweeps=20))
    print(result.energy)                         # approx -4.258035
    print(local_profile(result.mps, "Sz").sum())  # approx 0
"""

import jax

jax.config.update("jax_enable_x64", True)

from dmrgjax.algorithms.auto_mpo import (
    AutoMPO,
    HamiltonianTerm,
    build_auto_mpo,
    build_heisenberg_mpo,
    heisenberg_terms,
    mpo_to_matrix,
    spin_half_ops,
    spin_one_ops,
)
from dmrgjax.algorithms.dmrg import DMRGConfig, DMRGResult, SweepSchedule, dmrg
from dmrgjax.algorithms.excited import (
    ExcitedStateConfig,
    ExcitedStateResult,
    find_excited,
)
from dmrgjax.algorithms.heisenberg import (
    HeisenbergChainConfig,
    HeisenbergChainResult,
    run_heisenberg_chain,
)
from dmrgjax.algorithms.mps import (
    basis_configuration,
    bond_dims,
    mps_from_tensors,
    mps_site_tensors,
    mps_to_vector,
    product_mps,
    random_mps,
    random_product_mps,
    total_charge,
)
from dmrgjax.algorithms.observables import (
    energy_variance,
    entanglement_entropy,
    local_profile,
    mpo_expectation,
    mps_norm,
    orthogonalize,
    overlap,
)
from dmrgjax.contraction.contractor import (
    contract,
    contract_with_subscripts,
    qr_decompose,
    truncated_svd,
)
from dmrgjax.core.errors import (
    ConfigurationError,
    ImaginaryResidueWarning,
    NumericalBreakdownError,
)
from dmrgjax.core.index import FlowDirection, Label, TensorIndex, site_indices
from dmrgjax.core.symmetry import BaseSymmetry, U1Symmetry
from dmrgjax.core.tensor import DenseTensor, Tensor
from dmrgjax.network.network import TensorNetwork, build_chain

__version__ = "0.1.0"

__all__ = [
    # Version
    "__version__",
    # Symmetries
    "BaseSymmetry",
    "U1Symmetry",
    # Index
    "FlowDirection",
    "Label",
    "TensorIndex",
    "site_indices",
    # Tensors
    "Tensor",
    "DenseTensor",
    # Errors
    "ConfigurationError",
    "NumericalBreakdownError",
    "ImaginaryResidueWarning",
    # Contraction
    "contract",
    "contract_with_subscripts",
    "truncated_svd",
    "qr_decompose",
    # Network
    "TensorNetwork",
    "build_chain",
    # AutoMPO
    "AutoMPO",
    "HamiltonianTerm",
    "build_auto_mpo",
    "build_heisenberg_mpo",
    "heisenberg_terms",
    "mpo_to_matrix",
    "spin_half_ops",
    "spin_one_ops",
    # MPS
    "basis_configuration",
    "bond_dims",
    "mps_from_tensors",
    "mps_site_tensors",
    "mps_to_vector",
    "product_mps",
    "random_mps",
    "random_product_mps",
    "total_charge",
    # DMRG
    "SweepSchedule",
    "DMRGConfig",
    "DMRGResult",
    "dmrg",
    # Restart search
    "ExcitedStateConfig",
    "ExcitedStateResult",
    "find_excited",
    # Observables
    "orthogonalize",
    "local_profile",
    "mpo_expectation",
    "energy_variance",
    "overlap",
    "mps_norm",
    "entanglement_entropy",
    # End-to-end
    "HeisenbergChainConfig",
    "HeisenbergChainResult",
    "run_heisenberg_chain",
]
