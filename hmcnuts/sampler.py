"""
Description:
    MCMC samplers: fixed length HMC, NUTS and random walk Metropolis-Hastings,
    plus the chain driver.
    USE THE CORRECT ENVIRONMENT:  hmcnuts

Author: John Gallagher
Created: 2026-10-17
Last Modified: 2026-10-17
Version: 0.2
"""
import logging
import math
import numbers
import warnings
from typing import Mapping, Optional, Tuple

import jax
import jax.numpy as jnp
import jax.random as jr
import numpy as np

from hmcnuts.adaptation import da_final, da_init, da_update
from hmcnuts.datatypes import (
    HMCConfig,
    IntegratorState,
    Kernel,
    MetropolisConfig,
    NUTSConfig,
    Trace,
    TransitionInfo,
)
from hmcnuts.errors import ConfigurationError, DivergentTransitionWarning
from hmcnuts.hamiltonian import Hamiltonian, state_energy
from hmcnuts.integrator import gen_integrator, gen_leapfrog
from hmcnuts.potential import ParameterLayout, Potential
from hmcnuts.tree import build_trajectory

logger = logging.getLogger(__name__)

# Pure jnp, so compilable whatever the potential
_energy = jax.jit(state_energy)

def draw_momentum(state: IntegratorState, key: jax.random.PRNGKey) -> IntegratorState:
    """
    Resample momentum from standard Gaussian.

    Keeps position q and its cached potential, resamples p ~ N(0, I)

    Args:
        state: Current state
        key: JAX random key

    Returns:
        State with fresh momentum
    """
    p_new = jr.normal(key, shape=state.q.shape, dtype=state.q.dtype)
    return state._replace(p=p_new)

def acceptance_probability(delta_H: float) -> float:
    """
    Metropolis acceptance probability min(1, exp(delta_H)).

    Computed as exp(min(0, delta_H)) so it never overflows. NaN (e.g. inf - inf)
    gives 0.

    Args:
        delta_H: Energy difference (H_current - H_proposed)
    """
    if math.isnan(delta_H):
        return 0.0
    return math.exp(min(0.0, delta_H))

def accept_reject(alpha: float, key: jax.random.PRNGKey) -> bool:
    """
    Metropolis-Hastings accept/reject step.

    Args:
        alpha: Acceptance probability
        key: Random key

    Returns:
        True if accepted, False otherwise
    """
    u = float(jr.uniform(key, shape=()))
    return u < alpha

def gen_hmc_kernel(
    potential: Potential,
    N: int
) -> Kernel:
    """
    Generate HMC kernel using leapfrog integrator.

    Args:
        potential: Target potential
        N: Number of integration steps

    Returns:
        HMC kernel function (state, key, step_size) -> (state, info)
    """
    integrator = gen_integrator(potential, N)

    def hmc_kernel(state: IntegratorState, key: jax.random.PRNGKey, step_size: float):
        key_momentum, key_accept = jr.split(key)

        # Resample momentum
        state0 = draw_momentum(state, key_momentum)
        H_current = float(_energy(state0))

        # Integrate
        state_star, H_proposed = integrator(state0, step_size)
        H_proposed = float(H_proposed)

        # Accept/reject
        alpha = acceptance_probability(H_current - H_proposed)
        is_accepted = accept_reject(alpha, key_accept)

        state_out = state_star if is_accepted else state0
        info = TransitionInfo(
            accept_stat=alpha,
            accepted=is_accepted,
            diverging=not math.isfinite(H_proposed),
            tree_depth=0,
            num_steps=N,
            energy=H_proposed if is_accepted else H_current,
        )
        return state_out, info

    return hmc_kernel

def gen_rwm_kernel(
    potential: Potential,
    proposal_std: float
) -> Kernel:
    """
    Generate random walk Metropolis kernel.

    Proposes q* = q + proposal_std * N(0, I) and accepts with probability
    min(1, pi(q*) / pi(q)). The step_size argument of the kernel is ignored.

    Args:
        potential: Target potential
        proposal_std: Standard deviation of the Gaussian proposal

    Returns:
        RWM kernel function (state, key, step_size) -> (state, info)
    """
    logdensity_and_grad = potential.logdensity_and_grad

    def rwm_kernel(state: IntegratorState, key: jax.random.PRNGKey, step_size: float):
        key_proposal, key_accept = jr.split(key)

        noise = jr.normal(key_proposal, shape=state.q.shape, dtype=state.q.dtype)
        q_star = state.q + proposal_std * noise
        logdensity, grad = logdensity_and_grad(q_star)
        state_star = state._replace(q=q_star, logdensity=logdensity, logdensity_grad=grad)

        alpha = acceptance_probability(float(logdensity) - float(state.logdensity))
        is_accepted = accept_reject(alpha, key_accept)

        state_out = state_star if is_accepted else state
        info = TransitionInfo(
            accept_stat=alpha,
            accepted=is_accepted,
            diverging=False,
            tree_depth=0,
            num_steps=0,
            energy=-float(state_out.logdensity),
        )
        return state_out, info

    return rwm_kernel

def gen_nuts_kernel(
    potential: Potential,
    max_tree_depth: int = 10,
    delta_max: float = 1000.0
) -> Kernel:
    """
    Generate NUTS kernel.

    One outer iteration: draw momentum, compute H0, draw the slice variable
    u ~ U(0, exp(-H0)) in log space, run the doubling loop, move to its
    candidate. accept_stat is alpha / max(n_alpha, 1) over the trajectory.

    Args:
        potential: Target potential
        max_tree_depth: Maximum number of doublings
        delta_max: Energy error threshold for divergence

    Returns:
        NUTS kernel function (state, key, step_size) -> (state, info)
    """
    leapfrog = gen_leapfrog(potential)

    def nuts_kernel(state: IntegratorState, key: jax.random.PRNGKey, step_size: float):
        key_momentum, key_slice, key_tree = jr.split(key, 3)

        state0 = draw_momentum(state, key_momentum)
        H0 = float(_energy(state0))
        log_u = float(jnp.log(jr.uniform(key_slice))) - H0

        trajectory, depth = build_trajectory(
            leapfrog, state0, log_u, H0, step_size, key_tree, max_tree_depth, delta_max
        )

        state_out = trajectory.proposal
        info = TransitionInfo(
            accept_stat=trajectory.alpha / max(trajectory.n_alpha, 1),
            accepted=state_out is not state0,
            diverging=trajectory.diverging,
            tree_depth=depth,
            num_steps=trajectory.n_steps,
            energy=float(_energy(state_out)),
        )
        return state_out, info

    return nuts_kernel

def _is_real(value) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)

def _check_integer(value, name: str, minimum: int) -> int:
    if not (_is_real(value) and math.isfinite(value) and value == int(value) and value >= minimum):
        raise ConfigurationError(f"{name} must be an integer >= {minimum}, got {value!r}")
    return int(value)

def _check_positive(value, name: str) -> float:
    if not (_is_real(value) and math.isfinite(value) and value > 0):
        raise ConfigurationError(f"{name} must be a positive finite number, got {value!r}")
    return float(value)

def _check_run_lengths(n_samples: int, n_warmup: int, thin: int) -> Tuple[int, int, int]:
    return (
        _check_integer(n_samples, "n_samples", 1),
        _check_integer(n_warmup, "warmup/burn-in", 0),
        _check_integer(thin, "thin", 1),
    )

def sample_chain(
    kernel: Kernel,
    state: IntegratorState,
    key: jax.random.PRNGKey,
    step_size: float,
    n_samples: int,
    n_warmup: int,
    thin: int,
    layout: ParameterLayout,
    adaptation: Optional[NUTSConfig] = None,
    acceptance: str = "accept_stat",
    label: str = "MCMC"
) -> Trace:
    """
    Run one chain of n_warmup + n_samples * thin outer iterations.

    Iteration i keeps the current position when i >= n_warmup and
    (i - n_warmup) % thin == 0. With adaptation set, the step size follows
    dual averaging during warmup and is frozen at the smoothed value after
    the last warmup iteration.

    Args:
        kernel: Transition (state, key, step_size) -> (state, info)
        state: Initial state (potential already evaluated)
        key: Random key for the whole chain
        step_size: Initial step size
        n_samples: Retained samples
        n_warmup: Warmup / burn-in iterations
        thin: Thinning interval
        layout: Maps flat positions back to names
        adaptation: Dual averaging settings, None for a fixed step size
        acceptance: Stat averaged over post-warmup iterations for
            Trace.acceptance_rate ("accept_stat" or "accepted")
        label: Sampler name used in log messages

    Returns:
        Trace
    """
    n_samples, n_warmup, thin = _check_run_lengths(n_samples, n_warmup, thin)
    total = n_warmup + n_samples * thin
    keys = jr.split(key, total)
    da_state = da_init(step_size) if adaptation is not None else None

    kept = []
    stats = {name: [] for name in TransitionInfo._fields}
    stats["step_size"] = []
    report_every = max(1, total // 10)

    logger.info("Starting %s sampling...", label)
    logger.info("Warmup: %d, Samples: %d, Thin: %d", n_warmup, n_samples, thin)
    logger.info("Total iterations: %d", total)

    for i in range(total):
        state, info = kernel(state, keys[i], step_size)
        for name, value in zip(TransitionInfo._fields, info):
            stats[name].append(value)
        stats["step_size"].append(step_size)

        if da_state is not None and i < n_warmup:
            da_state = da_update(
                da_state,
                info.accept_stat,
                adaptation.target_acceptance,
                adaptation.gamma,
                adaptation.t0,
                adaptation.kappa,
            )
            step_size = da_state.step_size
            if i == n_warmup - 1:
                step_size = da_final(da_state)
                logger.info("Warmup complete. Final step size: %.6f", step_size)

        if i >= n_warmup and (i - n_warmup) % thin == 0:
            kept.append(np.asarray(state.q))

        if (i + 1) % report_every == 0:
            phase = "Warmup" if i < n_warmup else "Sampling"
            logger.info(
                "Progress: %d%% | %s | Step size: %.6f | Avg accept: %.1f%%",
                round(100 * (i + 1) / total),
                phase,
                step_size,
                100 * float(np.mean(stats[acceptance])),
            )

    stats = {name: np.asarray(values) for name, values in stats.items()}
    acceptance_rate = float(np.mean(stats[acceptance][n_warmup:]))

    n_divergent = int(np.sum(stats["diverging"][n_warmup:]))
    if n_divergent:
        logger.warning("%d divergent transitions after warmup", n_divergent)
        warnings.warn(
            f"{n_divergent} divergent transitions after warmup",
            DivergentTransitionWarning,
            stacklevel=3,
        )

    logger.info("Sampling complete! Acceptance rate: %.1f%%", 100 * acceptance_rate)

    return Trace(
        samples=layout.split_samples(np.stack(kept)),
        final_step_size=float(step_size),
        acceptance_rate=acceptance_rate,
        n_samples=len(kept),
        stats=stats,
    )

def _initial_state(potential: Potential, initial_values: Mapping) -> IntegratorState:
    q0 = potential.layout.flatten(initial_values)
    return Hamiltonian(potential).init_state(q0, jnp.zeros_like(q0))

class NUTS:
    """
    No-U-Turn Sampler with dual averaging step size adaptation.

    The instance owns its random key and its step size. The key advances with
    every call to sample; after a run the step size is the one frozen at the
    end of warmup, and the next run starts adapting from it.

    Args:
        step_size: Initial leapfrog step size (adapted during warmup)
        max_tree_depth: Maximum number of doublings (2**depth - 1 steps)
        target_acceptance: Target of the adaptation statistic, in (0, 1)
        delta_max: Energy error above which a leaf is divergent
        seed: Seed for jax.random.PRNGKey, ignored when key is given
        key: Explicit PRNG key
    """

    def __init__(
            self,
            step_size: float = 0.01,
            max_tree_depth: int = 10,
            target_acceptance: float = 0.8,
            delta_max: float = 1000.0,
            seed: int = 0,
            key: Optional[jax.random.PRNGKey] = None
    ):
        step_size = _check_positive(step_size, "step_size")
        max_tree_depth = _check_integer(max_tree_depth, "max_tree_depth", 1)
        if not (_is_real(target_acceptance) and 0.0 < target_acceptance < 1.0):
            raise ConfigurationError(f"target_acceptance must be in (0, 1), got {target_acceptance!r}")
        delta_max = _check_positive(delta_max, "delta_max")

        self.config = NUTSConfig(
            step_size=step_size,
            max_tree_depth=max_tree_depth,
            target_acceptance=float(target_acceptance),
            delta_max=delta_max,
        )
        self.step_size = step_size
        self._key = jr.PRNGKey(seed) if key is None else key

    def sample(
            self,
            potential: Potential,
            initial_values: Mapping,
            n_samples: int = 1000,
            n_warmup: int = 500,
            thin: int = 1
    ) -> Trace:
        """
        Run NUTS.

        Args:
            potential: Target potential
            initial_values: name -> initial value, same names as the potential
            n_samples: Retained samples
            n_warmup: Adaptation iterations (discarded)
            thin: Keep every thin-th post-warmup iteration

        Returns:
            Trace
        """
        _check_run_lengths(n_samples, n_warmup, thin)
        state = _initial_state(potential, initial_values)
        self._key, key = jr.split(self._key)
        kernel = gen_nuts_kernel(potential, self.config.max_tree_depth, self.config.delta_max)

        logger.info(
            "Max tree depth: %d (up to %d leapfrog steps)",
            self.config.max_tree_depth,
            2 ** self.config.max_tree_depth - 1,
        )
        trace = sample_chain(
            kernel,
            state,
            key,
            self.step_size,
            n_samples,
            n_warmup,
            thin,
            potential.layout,
            adaptation=self.config,
            acceptance="accept_stat",
            label="NUTS",
        )
        self.step_size = trace.final_step_size
        return trace

class HMC:
    """
    Hamiltonian Monte Carlo with a fixed number of leapfrog steps.

    Args:
        step_size: Leapfrog step size
        n_steps: Leapfrog steps per proposal
        seed: Seed for jax.random.PRNGKey, ignored when key is given
        key: Explicit PRNG key
    """

    def __init__(
            self,
            step_size: float = 0.01,
            n_steps: int = 10,
            seed: int = 0,
            key: Optional[jax.random.PRNGKey] = None
    ):
        step_size = _check_positive(step_size, "step_size")
        n_steps = _check_integer(n_steps, "n_steps", 1)
        self.config = HMCConfig(step_size=step_size, n_steps=n_steps)
        self._key = jr.PRNGKey(seed) if key is None else key

    def sample(
            self,
            potential: Potential,
            initial_values: Mapping,
            n_samples: int = 1000,
            burn_in: int = 500,
            thin: int = 1
    ) -> Trace:
        """
        Run HMC.

        Args:
            potential: Target potential
            initial_values: name -> initial value, same names as the potential
            n_samples: Retained samples
            burn_in: Iterations discarded before sampling
            thin: Keep every thin-th post burn-in iteration

        Returns:
            Trace
        """
        _check_run_lengths(n_samples, burn_in, thin)
        state = _initial_state(potential, initial_values)
        self._key, key = jr.split(self._key)
        kernel = gen_hmc_kernel(potential, self.config.n_steps)

        logger.info("Step size: %s, Steps: %d", self.config.step_size, self.config.n_steps)
        return sample_chain(
            kernel,
            state,
            key,
            self.config.step_size,
            n_samples,
            burn_in,
            thin,
            potential.layout,
            adaptation=None,
            acceptance="accepted",
            label="Hamiltonian Monte Carlo",
        )

class MetropolisHastings:
    """
    Random walk Metropolis-Hastings with a Gaussian proposal.

    Trace.final_step_size and the step_size stat carry the proposal std.

    Args:
        proposal_std: Standard deviation of the proposal, per component
        seed: Seed for jax.random.PRNGKey, ignored when key is given
        key: Explicit PRNG key
    """

    def __init__(
            self,
            proposal_std: float = 0.1,
            seed: int = 0,
            key: Optional[jax.random.PRNGKey] = None
    ):
        proposal_std = _check_positive(proposal_std, "proposal_std")
        self.config = MetropolisConfig(proposal_std=proposal_std)
        self._key = jr.PRNGKey(seed) if key is None else key

    @property
    def proposal_std(self) -> float:
        return self.config.proposal_std

    def tune_proposal(self, acceptance_rate: float) -> float:
        """
        Scale the proposal std by 1.1 above config.target_acceptance, else 0.9.

        Returns:
            The new proposal std
        """
        factor = 1.1 if acceptance_rate > self.config.target_acceptance else 0.9
        self.config = self.config._replace(proposal_std=self.config.proposal_std * factor)
        return self.config.proposal_std

    def sample(
            self,
            potential: Potential,
            initial_values: Mapping,
            n_samples: int = 1000,
            burn_in: int = 500,
            thin: int = 1
    ) -> Trace:
        """
        Run random walk Metropolis-Hastings.

        Args:
            potential: Target potential
            initial_values: name -> initial value, same names as the potential
            n_samples: Retained samples
            burn_in: Iterations discarded before sampling
            thin: Keep every thin-th post burn-in iteration

        Returns:
            Trace
        """
        _check_run_lengths(n_samples, burn_in, thin)
        state = _initial_state(potential, initial_values)
        self._key, key = jr.split(self._key)
        kernel = gen_rwm_kernel(potential, self.config.proposal_std)

        logger.info("Proposal std: %s", self.config.proposal_std)
        return sample_chain(
            kernel,
            state,
            key,
            self.config.proposal_std,
            n_samples,
            burn_in,
            thin,
            potential.layout,
            adaptation=None,
            acceptance="accepted",
            label="Metropolis-Hastings",
        )
