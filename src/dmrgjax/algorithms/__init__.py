"""Spin-chain algorithms: AutoMPO, MPS initializers, DMRG, restarts, observables."""

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
from dmrgjax.algorithms.dmrg import (
    DMRGConfig,
    DMRGResult,
    SweepSchedule,
    dmrg,
)
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

__all__ = [
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
