#!/usr/bin/env python3
"""Ground and excited state of the open spin-1/2 Heisenberg chain via DMRG.

The Hamiltonian is

    H = J * sum_i (Sz_i Sz_{i+1} + 0.5 * (S+_i S-_{i+1} + S-_i S+_{i+1}))

The ground state is searched in the half-filled sector ``nup = L // 2``; the
excited state is the best of ``--trials`` random restarts in the sector with
``--nup-offset`` more up spins.  The script prints both energies, the gap and
the sums of the two Sz profiles, and optionally the profiles themselves.

Usage::

    uv run python examples/heisenberg_chain.py
    uv run python examples/heisenberg_chain.py -L 20 --maxdim 64 --trials 10 --workers 4
"""

from __future__ import annotations

import argparse
import time

import numpy as np

from dmrgjax import HeisenbergChainConfig, run_heisenberg_chain


def _parse_args() -> argparse.Namespace:
    defaults = HeisenbergChainConfig()
    parser = argparse.ArgumentParser(
        description="DMRG ground and excited state of the Heisenberg chain",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-L", type=int, default=defaults.L, help=f"Chain length (default: {defaults.L})")
    parser.add_argument("-J", type=float, default=defaults.J, help=f"Exchange coupling (default: {defaults.J})")
    parser.add_argument(
        "--maxdim", type=int, default=defaults.max_bond_dim,
        help=f"Maximum bond dimension (default: {defaults.max_bond_dim})",
    )
    parser.add_argument(
        "--sweeps", type=int, default=defaults.num_sweeps,
        help=f"Sweeps per DMRG run (default: {defaults.num_sweeps})",
    )
    parser.add_argument(
        "--cutoff", type=float, default=defaults.cutoff,
        help=f"Truncation cutoff (default: {defaults.cutoff})",
    )
    parser.add_argument(
        "--trials", "-n", type=int, default=defaults.num_trials,
        help=f"Excited-state restarts (default: {defaults.num_trials})",
    )
    parser.add_argument("--seed", type=int, default=defaults.seed, help=f"PRNG seed (default: {defaults.seed})")
    parser.add_argument(
        "--nup-offset", type=int, default=defaults.nup_offset,
        help=f"Extra up spins in the excited sector (default: {defaults.nup_offset})",
    )
    parser.add_argument(
        "--workers", type=int, default=defaults.max_workers,
        help=f"Worker threads for the restarts (default: {defaults.max_workers})",
    )
    parser.add_argument(
        "--tol", type=float, default=None,
        help="Stop a DMRG run early once the sweep energy changes by less than this",
    )
    parser.add_argument("--profiles", action="store_true", help="Print the Sz profiles")
    parser.add_argument("--progress", action="store_true", help="Show a progress bar over restarts")
    parser.add_argument("--verbose", "-v", action="store_true", help="Print per-sweep energies")
    return parser.parse_args()


def main() -> None:
    args = _parse_args()
    config = HeisenbergChainConfig(
        L=args.L,
        J=args.J,
        max_bond_dim=args.maxdim,
        num_sweeps=args.sweeps,
        cutoff=args.cutoff,
        num_trials=args.trials,
        seed=args.seed,
        nup_offset=args.nup_offset,
        max_workers=args.workers,
        convergence_tol=args.tol,
        verbose=args.verbose,
        show_progress=args.progress,
    )

    print("=" * 60)
    print(f"Heisenberg chain: L={config.L}, J={config.J}")
    print(f"  max_bond_dim={config.max_bond_dim}, sweeps={config.num_sweeps}, cutoff={config.cutoff}")
    print(f"  excited-state trials={config.num_trials}, seed={config.seed}")
    print("=" * 60)

    t0 = time.perf_counter()
    result = run_heisenberg_chain(config)
    elapsed = time.perf_counter() - t0

    print(result.summary())
    if args.profiles:
        np.set_printoptions(precision=6, suppress=True)
        print(f"Ground Sz profile:  {result.ground_profile}")
        print(f"Excited Sz profile: {result.excited_profile}")
    print(f"Time: {elapsed:.1f}s")


if __name__ == "__main__":
    main()
