"""Excited-state search by randomized DMRG restarts.

The ground state of the Heisenberg chain lives in the half-filled sector
``nup = L // 2``.  Moving ``nup_offset`` spins up selects a different total-Sz
sector whose lowest state is, by construction, orthogonal to and distinct
from the ground state.  Inside that sector DMRG is restarted from many random
product configurations and the lowest energy found is kept.

Trials are independent: trial ``t`` draws its configuration from
``jax.random.fold_in(PRNGKey(seed), t)``, so the outcome does not depend on
the order in which trials finish.  They run serially or on a thread pool;
either way the per-trial results are merged in trial order at the end, the
strictly lowest energy winning and ties keeping the earliest trial.
"""

from __future__ import annotations

from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import NamedTuple

import jax
from tqdm import tqdm

from dmrgjax.algorithms.dmrg import DMRGConfig, dmrg
from dmrgjax.algorithms.mps import random_product_mps
from dmrgjax.core.errors import ConfigurationError, NumericalBreakdownError
from dmrgjax.core.index import TensorIndex
from dmrgjax.network.network import TensorNetwork


@dataclass
class ExcitedStateConfig:
    """Configuration for the restart search.

    Attributes:
        num_trials:     Number of independent DMRG restarts.
        seed:           Base PRNG seed; trial ``t`` uses ``fold_in(seed, t)``.
        nup_offset:     Up spins added to the half-filled sector ``L // 2``.
        max_workers:    Worker threads; 1 runs the trials serially.
        show_progress:  Display a tqdm progress bar over trials.
    """

    num_trials: int = 100
    seed: int = 0
    nup_offset: int = 1
    max_workers: int = 1
    show_progress: bool = False

    def sector(self, L: int) -> int:
        """Return the number of up spins searched on an ``L``-site chain.

        Raises:
            ConfigurationError: If the trial or worker count is not
                positive, or ``L // 2 + nup_offset`` is outside ``[0, L]``.
        """
        if self.num_trials < 1:
            raise ConfigurationError(f"num_trials must be >= 1, got {self.num_trials}")
        if self.max_workers < 1:
            raise ConfigurationError(f"max_workers must be >= 1, got {self.max_workers}")
        nup = L // 2 + self.nup_offset
        if not 0 <= nup <= L:
            raise ConfigurationError(
                f"nup = L // 2 + nup_offset = {nup} is outside [0, {L}] "
                f"(nup_offset={self.nup_offset})"
            )
        return nup


class ExcitedStateResult(NamedTuple):
    """Best-of-trials outcome of the restart search.

    Attributes:
        energy:          Lowest energy over all successful trials.
        mps:             MPS of the winning trial.
        trial_index:     Index of the winning trial.
        trial_energies:  Energy of every trial in trial order (None where the
                         trial broke down numerically).
        failed_trials:   Indices of trials discarded after a numerical
                         breakdown.
    """

    energy: float
    mps: TensorNetwork
    trial_index: int
    trial_energies: list[float | None]
    failed_trials: list[int]


def trial_key(seed: int, trial: int) -> jax.Array:
    """PRNG key of restart ``trial``."""
    return jax.random.fold_in(jax.random.PRNGKey(seed), trial)


def find_excited(
    hamiltonian: TensorNetwork,
    sites: Sequence[TensorIndex],
    dmrg_config: DMRGConfig,
    config: ExcitedStateConfig | None = None,
) -> ExcitedStateResult:
    """Lowest state in the sector ``nup = L // 2 + nup_offset`` by restarts.

    Args:
        hamiltonian:  MPO of the Hamiltonian.
        sites:        Physical site indices of the chain.
        dmrg_config:  Sweep configuration used for every trial.
        config:       Restart-search parameters.

    Returns:
        ExcitedStateResult of the best trial.

    Raises:
        ConfigurationError:      Invalid trial count, worker count or sector.
        NumericalBreakdownError: If every trial broke down.
    """
    if config is None:
        config = ExcitedStateConfig()
    nup = config.sector(len(sites))
    # Validate sweep parameters once instead of failing inside every trial
    dmrg_config.sweep_schedule()

    def run_trial(t: int):
        psi0 = random_product_mps(sites, nup, trial_key(config.seed, t))
        return dmrg(hamiltonian, psi0, dmrg_config)

    outcomes: dict[int, tuple[float, TensorNetwork] | None] = {}
    with tqdm(
        total=config.num_trials,
        desc="Excited-state trials",
        ncols=80,
        disable=not config.show_progress,
    ) as pbar:
        if config.max_workers == 1:
            for t in range(config.num_trials):
                try:
                    result = run_trial(t)
                    outcomes[t] = (result.energy, result.mps)
                except NumericalBreakdownError:
                    outcomes[t] = None
                pbar.update(1)
        else:
            with ThreadPoolExecutor(max_workers=config.max_workers) as ex:
                futures = {ex.submit(run_trial, t): t for t in range(config.num_trials)}
                for fut in as_completed(futures):
                    t = futures[fut]
                    try:
                        result = fut.result()
                        outcomes[t] = (result.energy, result.mps)
                    except NumericalBreakdownError:
                        outcomes[t] = None
                    pbar.update(1)

    return _merge_trials(outcomes, config.num_trials, dmrg_config.verbose)


def _merge_trials(
    outcomes: dict[int, tuple[float, TensorNetwork] | None],
    num_trials: int,
    verbose: bool = False,
) -> ExcitedStateResult:
    """Reduce per-trial outcomes in trial order; strict ``<`` keeps ties first."""
    best: tuple[int, float, TensorNetwork] | None = None
    trial_energies: list[float | None] = []
    failed: list[int] = []

    for t in range(num_trials):
        outcome = outcomes[t]
        if outcome is None:
            failed.append(t)
            trial_energies.append(None)
            continue
        energy, mps = outcome
        trial_energies.append(energy)
        if best is None or energy < best[1]:
            best = (t, energy, mps)

    if best is None:
        raise NumericalBreakdownError(
            f"all {num_trials} excited-state trials broke down; no candidate state found"
        )

    if verbose:
        print(
            f"Best trial {best[0]}: E = {best[1]:.10f} "
            f"({len(failed)} of {num_trials} trials failed)"
        )

    return ExcitedStateResult(
        energy=best[1],
        mps=best[2],
        trial_index=best[0],
        trial_energies=trial_energies,
        failed_trials=failed,
    )
