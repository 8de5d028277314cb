"""Two-site Density Matrix Renormalization Group (DMRG).

DMRG minimizes the energy of a Matrix Product State against a Hamiltonian
given as a Matrix Product Operator by sweeping over neighbouring site pairs,
solving the local eigenvalue problem and recompressing the pair with a
truncated SVD.

Architecture decisions:

- The outer sweep loop is a Python for-loop (not ``jax.lax.scan``) because bond
  dimensions change after each SVD truncation, preventing JIT across sweeps.
- The effective Hamiltonian matvec is ``@jax.jit`` compiled; it recompiles
  only when the two-site shape changes.
- The Lanczos eigensolver keeps the full Krylov basis and reorthogonalizes
  every new vector against it, so it stays reliable for small subspaces and
  nearly converged states.
- A charge-conserving MPS (bond legs carrying the fused ``2*Sz`` of the
  sites to their left) is kept in its total-Sz sector exactly: each Lanczos
  vector is projected onto the allowed charge sectors of theta and the SVD
  runs one charge block at a time, so no bond state mixes two charges.
- Environment blocks are stored as raw arrays of shape
  ``(chi_ket, D_w, chi_bra)``; the trivial boundary block is ``ones((1,1,1))``.

Label conventions::

    MPS site tensors:    legs = ("v{i-1}_{i}", "p{i}", "v{i}_{i+1}")
                         outer legs "v_left" / "v_right" have dimension 1
    MPO site tensors:    legs = ("w{i-1}_{i}", "mpo_top_{i}", "mpo_bot_{i}", "w{i}_{i+1}")
                         top = out (bra), bot = in (ket)
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass
from typing import NamedTuple

import jax
import jax.numpy as jnp
import numpy as np

from dmrgjax.algorithms.mps import (
    make_site_tensor,
    mps_from_tensors,
    mps_site_tensors,
    orthogonalize,
)
from dmrgjax.contraction.contractor import truncated_svd
from dmrgjax.core.errors import ConfigurationError, NumericalBreakdownError
from dmrgjax.core.tensor import DenseTensor, Tensor, conserved_charge_mask
from dmrgjax.network.network import TensorNetwork

# Sweep-to-sweep energy change below which a run is reported as converged
# when no explicit convergence_tol is configured.
DEFAULT_CONVERGENCE_CHECK = 1e-10

_NORM_FLOOR = 1e-300


# ------------------------------------------------------------------ #
# Configuration                                                       #
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class SweepSchedule:
    """Per-sweep truncation parameters, consumed in order.

    Attributes:
        max_bond_dims: Maximum bond dimension allowed in each sweep.
        cutoffs:       Largest discarded relative weight per SVD in each sweep.
    """

    max_bond_dims: tuple[int, ...]
    cutoffs: tuple[float, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "max_bond_dims", tuple(int(m) for m in self.max_bond_dims))
        object.__setattr__(self, "cutoffs", tuple(float(c) for c in self.cutoffs))
        if len(self.max_bond_dims) == 0:
            raise ConfigurationError("num_sweeps must be >= 1, got an empty schedule")
        if len(self.max_bond_dims) != len(self.cutoffs):
            raise ConfigurationError(
                f"max_bond_dims ({len(self.max_bond_dims)} entries) and cutoffs "
                f"({len(self.cutoffs)} entries) must have equal length"
            )
        for m in self.max_bond_dims:
            if m < 1:
                raise ConfigurationError(f"max_bond_dim must be >= 1, got {m}")
        for c in self.cutoffs:
            if not c >= 0.0:
                raise ConfigurationError(f"cutoff must be >= 0, got {c}")

    @classmethod
    def uniform(cls, num_sweeps: int, max_bond_dim: int, cutoff: float = 0.0) -> SweepSchedule:
        """Same bond-dimension cap and cutoff for every sweep."""
        if num_sweeps < 1:
            raise ConfigurationError(f"num_sweeps must be >= 1, got {num_sweeps}")
        return cls((max_bond_dim,) * num_sweeps, (cutoff,) * num_sweeps)

    @classmethod
    def from_values(
        cls,
        num_sweeps: int,
        max_bond_dims: Sequence[int],
        cutoffs: Sequence[float] = (0.0,),
    ) -> SweepSchedule:
        """Build a schedule from short value lists.

        The last listed value is repeated until ``num_sweeps`` entries exist,
        so ``from_values(5, [10, 20, 100])`` gives ``10, 20, 100, 100, 100``.
        """
        if num_sweeps < 1:
            raise ConfigurationError(f"num_sweeps must be >= 1, got {num_sweeps}")
        if not max_bond_dims or not cutoffs:
            raise ConfigurationError("max_bond_dims and cutoffs must be non-empty")

        def _extend(values: Sequence) -> tuple:
            values = tuple(values)[:num_sweeps]
            return values + (values[-1],) * (num_sweeps - len(values))

        return cls(_extend(max_bond_dims), _extend(cutoffs))

    def prefix(self, num_sweeps: int) -> SweepSchedule:
        """The first ``num_sweeps`` entries of this schedule."""
        if not 1 <= num_sweeps <= len(self):
            raise ConfigurationError(
                f"prefix length must lie in [1, {len(self)}], got {num_sweeps}"
            )
        return SweepSchedule(
            self.max_bond_dims[:num_sweeps], self.cutoffs[:num_sweeps]
        )

    def __len__(self) -> int:
        return len(self.max_bond_dims)

    def __iter__(self) -> Iterator[tuple[int, float]]:
        return iter(zip(self.max_bond_dims, self.cutoffs))


@dataclass
class DMRGConfig:
    """Configuration for a DMRG run.

    Attributes:
        max_bond_dim:       Maximum allowed bond dimension (chi).
        num_sweeps:         Number of full left-right sweep cycles.
        cutoff:             Largest discarded relative weight per SVD.
        schedule:           Explicit per-sweep schedule; overrides
                            ``max_bond_dim``, ``num_sweeps`` and ``cutoff``.
        lanczos_max_iter:   Maximum Lanczos iterations for eigenvalue solve.
        lanczos_tol:        Convergence tolerance for Lanczos.
        convergence_tol:    Stop early once the energy changes by less than
                            this between sweeps (None: run every sweep).
        max_wall_time:      Wall-clock budget in seconds; checked after
                            every sweep (None: unbounded).
        verbose:            Print energy at each sweep.
    """

    max_bond_dim: int = 100
    num_sweeps: int = 10
    cutoff: float = 1e-10
    schedule: SweepSchedule | None = None
    lanczos_max_iter: int = 50
    lanczos_tol: float = 1e-12
    convergence_tol: float | None = None
    max_wall_time: float | None = None
    verbose: bool = False

    def sweep_schedule(self) -> SweepSchedule:
        """Return the schedule this configuration describes.

        Raises:
            ConfigurationError: If any parameter is out of range.
        """
        if self.lanczos_max_iter < 1:
            raise ConfigurationError(
                f"lanczos_max_iter must be >= 1, got {self.lanczos_max_iter}"
            )
        if self.schedule is not None:
            return self.schedule
        return SweepSchedule.uniform(self.num_sweeps, self.max_bond_dim, self.cutoff)


class DMRGResult(NamedTuple):
    """Result of a DMRG run.

    Attributes:
        energy:                   ``<psi|H|psi> / <psi|psi>`` of the final MPS.
        energies_per_sweep:       Lanczos energy at the end of each sweep.
        mps:                      TensorNetwork representing the optimized MPS.
        truncation_errors:        Discarded weight at each bond update step.
        converged:                True if the last sweep-to-sweep energy
                                  change was below the convergence tolerance.
        max_bond_dims_per_sweep:  Largest bond dimension after each sweep.
    """

    energy: float
    energies_per_sweep: list[float]
    mps: TensorNetwork
    truncation_errors: list[float]
    converged: bool
    max_bond_dims_per_sweep: list[int]


# ------------------------------------------------------------------ #
# Driver                                                              #
# ------------------------------------------------------------------ #


def dmrg(
    hamiltonian: TensorNetwork,
    initial_mps: TensorNetwork,
    config: DMRGConfig,
) -> DMRGResult:
    """Run two-site DMRG to find the ground state of an MPO Hamiltonian.

    The initial MPS is not modified.  When it is charge conserving, as the
    product states of :mod:`dmrgjax.algorithms.mps` are, every update stays
    inside its total-Sz sector, provided the Hamiltonian conserves total Sz.

    Args:
        hamiltonian:  MPO representation of the Hamiltonian.
        initial_mps:  Starting MPS TensorNetwork.
        config:       DMRGConfig parameters.

    Returns:
        DMRGResult with energy, sweep history, optimized MPS, and diagnostics.

    Raises:
        ConfigurationError:      Inconsistent chain lengths or invalid
                                 schedule parameters.
        NumericalBreakdownError: Norm collapse or a non-finite energy.
    """
    schedule = config.sweep_schedule()
    L = hamiltonian.n_nodes()
    if L < 2:
        raise ConfigurationError(f"two-site DMRG needs L >= 2, got L={L}")
    if initial_mps.n_nodes() != L:
        raise ConfigurationError(
            f"MPS has {initial_mps.n_nodes()} sites but the MPO has L={L}"
        )

    mpo_arrays = [hamiltonian.get_tensor(i).todense() for i in range(L)]
    dtype = jnp.result_type(
        initial_mps.get_tensor(0).dtype, *(w.dtype for w in mpo_arrays)
    )
    mps_tensors = [
        DenseTensor(t.todense().astype(dtype), t.indices)
        for t in mps_site_tensors(initial_mps)
    ]
    mps_tensors = _right_canonicalize(mps_tensors)

    left_envs: list[jax.Array | None] = [None] * L
    left_envs[0] = _trivial_env(dtype)
    right_envs = _build_right_environments_list(mps_tensors, mpo_arrays)

    energies_per_sweep: list[float] = []
    truncation_errors: list[float] = []
    max_bond_dims_per_sweep: list[int] = []
    energy = 0.0
    converged = False
    start = time.monotonic()

    for sweep, (max_bond_dim, cutoff) in enumerate(schedule):
        sweep_errors: list[float] = []

        # Left-to-right sweep
        for i in range(L - 1):
            theta, energy = _two_site_update(
                mps_tensors[i],
                mps_tensors[i + 1],
                left_envs[i],
                mpo_arrays[i],
                mpo_arrays[i + 1],
                right_envs[i + 1],
                config,
            )
            A, B, trunc_err = _svd_and_truncate_site(
                theta, i, L, max_bond_dim, cutoff, sweep_right=True
            )
            mps_tensors[i] = A
            mps_tensors[i + 1] = B
            sweep_errors.append(trunc_err)
            left_envs[i + 1] = _update_left_env(left_envs[i], A.todense(), mpo_arrays[i])

        # Right-to-left sweep
        for i in range(L - 2, -1, -1):
            theta, energy = _two_site_update(
                mps_tensors[i],
                mps_tensors[i + 1],
                left_envs[i],
                mpo_arrays[i],
                mpo_arrays[i + 1],
                right_envs[i + 1],
                config,
            )
            A, B, trunc_err = _svd_and_truncate_site(
                theta, i, L, max_bond_dim, cutoff, sweep_right=False
            )
            mps_tensors[i] = A
            mps_tensors[i + 1] = B
            sweep_errors.append(trunc_err)
            right_envs[i] = _update_right_env(right_envs[i + 1], B.todense(), mpo_arrays[i + 1])

        if not np.isfinite(energy):
            raise NumericalBreakdownError(f"energy became {energy} in sweep {sweep + 1}")

        truncation_errors.extend(sweep_errors)
        energies_per_sweep.append(energy)
        chi = max(t.indices[2].dim for t in mps_tensors)
        max_bond_dims_per_sweep.append(chi)

        if config.verbose:
            print(
                f"Sweep {sweep + 1}/{len(schedule)}: E = {energy:.10f}  "
                f"maxdim = {chi}  trunc = {max(sweep_errors):.2e}"
            )

        if len(energies_per_sweep) > 1:
            delta = abs(energies_per_sweep[-1] - energies_per_sweep[-2])
            tol = (
                config.convergence_tol
                if config.convergence_tol is not None
                else DEFAULT_CONVERGENCE_CHECK
            )
            converged = delta < tol
            if converged and config.convergence_tol is not None:
                if config.verbose:
                    print(f"Converged at sweep {sweep + 1}")
                break

        if config.max_wall_time is not None and time.monotonic() - start > config.max_wall_time:
            if config.verbose:
                print(f"Wall-time budget of {config.max_wall_time}s reached after sweep {sweep + 1}")
            break

    final_energy = expectation_value(mps_tensors, mpo_arrays)

    return DMRGResult(
        energy=final_energy,
        energies_per_sweep=energies_per_sweep,
        mps=mps_from_tensors(mps_tensors, name="DMRG_MPS"),
        truncation_errors=truncation_errors,
        converged=converged,
        max_bond_dims_per_sweep=max_bond_dims_per_sweep,
    )


def _right_canonicalize(mps_tensors: list[Tensor]) -> list[DenseTensor]:
    """Right-canonicalize the MPS and normalize the center at site 0.

    Raises:
        NumericalBreakdownError: If the state has zero or non-finite norm.
    """
    tensors = orthogonalize(mps_tensors, 0)
    norm = float(tensors[0].norm())
    if not np.isfinite(norm) or norm < _NORM_FLOOR:
        raise NumericalBreakdownError(f"initial MPS has norm {norm}")
    tensors[0] = tensors[0].with_data(tensors[0].todense() / norm)
    return tensors


# ------------------------------------------------------------------ #
# Environments                                                        #
# ------------------------------------------------------------------ #


def _trivial_env(dtype=jnp.float64) -> jax.Array:
    """Trivial (1x1x1) boundary environment."""
    return jnp.ones((1, 1, 1), dtype=dtype)


def _build_right_environments_list(
    mps_tensors: list[Tensor],
    mpo_arrays: list[jax.Array],
) -> list[jax.Array | None]:
    """Build all right environment blocks by sweeping right to left.

    ``envs[i]`` is the contraction of sites ``i+1 .. L-1``; ``envs[L-1]``
    is trivial.  ``envs[0]`` is never needed and stays None.
    """
    L = len(mps_tensors)
    dtype = mps_tensors[0].dtype
    envs: list[jax.Array | None] = [None] * L
    envs[L - 1] = _trivial_env(dtype)
    for i in range(L - 1, 0, -1):
        envs[i - 1] = _update_right_env(envs[i], mps_tensors[i].todense(), mpo_arrays[i])
    return envs


def _update_left_env(
    left_env: jax.Array,
    A: jax.Array,
    W: jax.Array,
) -> jax.Array:
    """Absorb one MPS/MPO site into a left environment block.

    new_L[d, e, f] = L[a, b, c] * A[a, p, d] * W[b, x, p, e] * A*[c, x, f]

    a/d: ket bonds, b/e: MPO bonds, c/f: bra bonds, p: ket physical,
    x: bra physical.
    """
    return jnp.einsum("abc,apd,bxpe,cxf->def", left_env, A, W, jnp.conj(A))


def _update_right_env(
    right_env: jax.Array,
    B: jax.Array,
    W: jax.Array,
) -> jax.Array:
    """Absorb one MPS/MPO site into a right environment block.

    new_R[a, b, c] = B[a, p, d] * W[b, x, p, e] * B*[c, x, f] * R[d, e, f]
    """
    return jnp.einsum("apd,bxpe,cxf,def->abc", B, W, jnp.conj(B), right_env)


def expectation_value(
    mps_tensors: Sequence[Tensor],
    mpo_arrays: Sequence[jax.Array],
) -> float:
    """Exact ``<psi|H|psi> / <psi|psi>`` by a full left-to-right contraction.

    Raises:
        NumericalBreakdownError: If the norm vanishes or the result is not
            finite.
    """
    dtype = jnp.result_type(mps_tensors[0].dtype, mpo_arrays[0].dtype)
    env = _trivial_env(dtype)
    norm_env = jnp.ones((1, 1), dtype=dtype)
    for tensor, W in zip(mps_tensors, mpo_arrays):
        A = tensor.todense()
        env = _update_left_env(env, A, W)
        norm_env = jnp.einsum("ac,apd,cpf->df", norm_env, A, jnp.conj(A))

    norm_sq = float(jnp.real(norm_env[0, 0]))
    if not np.isfinite(norm_sq) or norm_sq < _NORM_FLOOR:
        raise NumericalBreakdownError(f"MPS norm collapsed: <psi|psi> = {norm_sq}")
    energy = float(jnp.real(env[0, 0, 0])) / norm_sq
    if not np.isfinite(energy):
        raise NumericalBreakdownError(f"expectation value is {energy}")
    return energy


# ------------------------------------------------------------------ #
# Local update                                                        #
# ------------------------------------------------------------------ #


def _effective_hamiltonian_matvec(
    theta_flat: jax.Array,
    theta_shape: tuple[int, ...],
    L_env: jax.Array,
    W_l: jax.Array,
    W_r: jax.Array,
    R_env: jax.Array,
) -> jax.Array:
    """Apply the two-site effective Hamiltonian to a flattened theta.

    Contract: L[a,b,c] * theta[a,p,q,d] * W_l[b,x,p,e] * W_r[e,y,q,g] * R[d,g,f]
    -> result[c,x,y,f]

    Args:
        theta_flat:  Flattened 2-site wavefunction.
        theta_shape: Shape tuple (chi_l, d_l, d_r, chi_r) for reshaping.
        L_env:       Left environment, shape (chi_l, D_w_l, chi_l).
        W_l:         Left MPO site, shape (D_w_l, d_l, d_l, D_w_m).
        W_r:         Right MPO site, shape (D_w_m, d_r, d_r, D_w_r).
        R_env:       Right environment, shape (chi_r, D_w_r, chi_r).

    Returns:
        Flattened result of H_eff @ theta.
    """
    theta = theta_flat.reshape(theta_shape)
    result = jnp.einsum(
        "abc,apqd,bxpe,eyqg,dgf->cxyf",
        L_env,
        theta,
        W_l,
        W_r,
        R_env,
    )
    return result.ravel()


_matvec_jit = jax.jit(_effective_hamiltonian_matvec, static_argnums=(1,))


def _two_site_update(
    site_l: DenseTensor,
    site_r: DenseTensor,
    left_env: jax.Array,
    mpo_l: jax.Array,
    mpo_r: jax.Array,
    right_env: jax.Array,
    config: DMRGConfig,
) -> tuple[DenseTensor, float]:
    """Contract the pair into theta and replace it by the local ground state.

    Returns:
        (theta_opt, energy) where theta_opt has legs
        (v_left_of_l, p_l, p_r, v_right_of_r).
    """
    theta_dense = jnp.einsum("apd,dqf->apqf", site_l.todense(), site_r.todense())
    theta_indices = (
        site_l.indices[0],
        site_l.indices[1],
        site_r.indices[1],
        site_r.indices[2],
    )
    theta_shape = tuple(theta_dense.shape)
    start = theta_dense.ravel()
    mask = conserved_charge_mask(DenseTensor(theta_dense, theta_indices))

    if mask is None:

        def matvec(v: jax.Array) -> jax.Array:
            return _matvec_jit(v, theta_shape, left_env, mpo_l, mpo_r, right_env)

    else:
        sector = jnp.asarray(mask.ravel(), dtype=theta_dense.dtype)
        start = start * sector

        def matvec(v: jax.Array) -> jax.Array:
            return _matvec_jit(v, theta_shape, left_env, mpo_l, mpo_r, right_env) * sector

    energy, theta_opt_flat = _lanczos_solve(
        matvec, start, config.lanczos_max_iter, config.lanczos_tol
    )
    return DenseTensor(theta_opt_flat.reshape(theta_shape), theta_indices), energy


def _lanczos_solve(
    matvec: Callable[[jax.Array], jax.Array],
    initial_vector: jax.Array,
    num_steps: int,
    tol: float,
) -> tuple[float, jax.Array]:
    """Lanczos eigensolver for the smallest eigenvalue.

    Every new Krylov vector is orthogonalized twice against the whole basis
    (full reorthogonalization), which removes the ghost eigenvalues of plain
    three-term Lanczos.  The iteration stops when the residual norm drops
    below ``tol``, when the lowest Ritz value changes by less than ``tol``,
    or when the Krylov space spans the whole local space.

    Args:
        matvec:         Function applying the effective Hamiltonian.
        initial_vector: Starting vector (will be normalized).
        num_steps:      Maximum number of Lanczos steps.
        tol:            Convergence tolerance on residual and Ritz value.

    Returns:
        (eigenvalue, eigenvector) for the ground state.

    Raises:
        NumericalBreakdownError: If the starting vector has zero or
            non-finite norm, or the iteration produces non-finite numbers.
    """
    norm0 = float(jnp.linalg.norm(initial_vector))
    if not np.isfinite(norm0) or norm0 < _NORM_FLOOR:
        raise NumericalBreakdownError(f"Lanczos start vector has norm {norm0}")

    num_steps = min(num_steps, initial_vector.size)
    basis = [initial_vector / norm0]
    alphas: list[float] = []
    betas: list[float] = []
    ritz_prev = np.inf

    for _ in range(num_steps):
        w = matvec(basis[-1])
        alphas.append(float(jnp.real(jnp.vdot(basis[-1], w))))

        V = jnp.stack(basis)
        w = w - V.T @ (V.conj() @ w)
        w = w - V.T @ (V.conj() @ w)
        beta = float(jnp.linalg.norm(w))
        if not np.isfinite(beta) or not np.isfinite(alphas[-1]):
            raise NumericalBreakdownError("Lanczos produced a non-finite Krylov vector")

        T = np.diag(alphas) + np.diag(betas, k=1) + np.diag(betas, k=-1)
        ritz = np.linalg.eigvalsh(T)[0]
        if beta < tol or abs(ritz - ritz_prev) < tol or len(alphas) == num_steps:
            break
        ritz_prev = ritz

        betas.append(beta)
        basis.append(w / beta)

    n = len(alphas)
    T = np.diag(alphas) + np.diag(betas[: n - 1], k=1) + np.diag(betas[: n - 1], k=-1)
    eigvals, eigvecs = np.linalg.eigh(T)
    eigenvalue = float(eigvals[0])

    coefs = jnp.asarray(eigvecs[:, 0], dtype=basis[0].dtype)
    eigenvector = jnp.tensordot(coefs, jnp.stack(basis[:n]), axes=1)
    vec_norm = float(jnp.linalg.norm(eigenvector))
    if not np.isfinite(eigenvalue) or not np.isfinite(vec_norm) or vec_norm < _NORM_FLOOR:
        raise NumericalBreakdownError(
            f"Lanczos breakdown: eigenvalue={eigenvalue}, |v|={vec_norm}"
        )

    return eigenvalue, eigenvector / vec_norm


def _svd_and_truncate_site(
    theta: DenseTensor,
    site: int,
    L: int,
    max_bond_dim: int,
    cutoff: float,
    sweep_right: bool = True,
) -> tuple[DenseTensor, DenseTensor, float]:
    """Split a two-site tensor by truncated SVD.

    The kept singular values are renormalized to unit 2-norm and absorbed
    into the tensor on the side the sweep is moving to, so the MPS stays in
    mixed-canonical form with the center on that tensor.

    Args:
        theta:        2-site wavefunction tensor.
        site:         Left site index.
        L:            Chain length.
        max_bond_dim: Bond-dimension cap of the current sweep.
        cutoff:       Discarded-weight cutoff of the current sweep.
        sweep_right:  If True, the left site becomes left-canonical and the
                      right site carries the singular values; if False, the
                      reverse.

    Returns:
        (A_tensor, B_tensor, truncation_error) where the truncation error
        is the discarded relative weight ``sum(s_discarded**2) / sum(s**2)``.
    """
    left_virt, left_phys, right_phys, right_virt = theta.labels()
    U, s, Vh, s_full = truncated_svd(
        theta,
        left_labels=[left_virt, left_phys],
        right_labels=[right_phys, right_virt],
        new_bond_label="svd_bond",
        max_singular_values=max_bond_dim,
        cutoff=cutoff,
        normalize=True,
    )

    weights = np.asarray(s_full) ** 2
    total = float(weights.sum())
    trunc_err = float(weights[len(s):].sum() / total) if total > 0.0 else 0.0

    U_data = U.todense()
    Vh_data = Vh.todense()
    if sweep_right:
        Vh_data = s[:, None, None] * Vh_data
    else:
        U_data = U_data * s[None, None, :]

    bond = U.indices[-1].charges
    A = make_site_tensor(U_data, theta.indices[1], site, L, theta.indices[0].charges, bond)
    B = make_site_tensor(Vh_data, theta.indices[2], site + 1, L, bond, theta.indices[3].charges)
    return A, B, trunc_err
