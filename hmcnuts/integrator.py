"""
Description:
    Leapfrog integrator for Hamiltonian dynamics.
    USE THE CORRECT ENVIRONMENT:  hmcnuts

Author: John Gallagher
Created: 2026-10-17
Last Modified: 2026-10-17
Version: 0.2
"""
import jax
from typing import Callable, Tuple
from hmcnuts.datatypes import IntegratorState, LogDensityAndGrad
from hmcnuts.hamiltonian import state_energy
from hmcnuts.potential import Potential

def lf_step(
        state: IntegratorState,
        logdensity_and_grad: LogDensityAndGrad,
        τ: float
) -> IntegratorState:
    """
    Single lf integration step.

    Does p-first. The sign of τ is the direction of integration.
    The gradient at the starting point is taken from the state, so the
    potential is evaluated exactly once per step.
    """
    # Half step momentum
    p_half = state.p + 0.5 * τ * state.logdensity_grad

    # Full step position
    q_new = state.q + τ * p_half

    # Half step momentum
    logdensity, grad = logdensity_and_grad(q_new)
    p_new = p_half + 0.5 * τ * grad

    return IntegratorState(q=q_new, p=p_new, logdensity=logdensity, logdensity_grad=grad)

def lf_integrate(
    state: IntegratorState,
    logdensity_and_grad: LogDensityAndGrad,
    τ: float,
    N: int,
    traceable: bool = True
) -> IntegratorState:
    """
    LF integration of N steps.

    Args:
        state: Initial state
        logdensity_and_grad: Flat log-density and gradient
        τ: Step size
        N: Number of steps
        traceable: False for potentials jax cannot trace (plain loop)

    Returns:
        Final state after N steps
    """
    if not traceable:
        for _ in range(N):
            state = lf_step(state, logdensity_and_grad, τ)
        return state

    def body_fn(carry, _):
        return lf_step(carry, logdensity_and_grad, τ), None

    state_final, _ = jax.lax.scan(body_fn, state, None, length=N)
    return state_final

def gen_leapfrog(
    potential: Potential
) -> Callable[[IntegratorState, float], Tuple[IntegratorState, float]]:
    """
    Generate a single leapfrog step that also returns the new energy.

    Used by the NUTS tree builder, one call per leaf.
    """
    def leapfrog(state: IntegratorState, τ: float):
        state_new = lf_step(state, potential.logdensity_and_grad, τ)
        return state_new, state_energy(state_new)

    return jax.jit(leapfrog) if potential.jittable else leapfrog

def gen_integrator(
    potential: Potential,
    N: int
) -> Callable[[IntegratorState, float], Tuple[IntegratorState, float]]:
    """
    Generate a fixed length (N steps) integrator returning the final energy.

    Used by fixed trajectory length HMC.
    """
    def integrate(state: IntegratorState, τ: float):
        state_new = lf_integrate(state, potential.logdensity_and_grad, τ, N, potential.jittable)
        return state_new, state_energy(state_new)

    return jax.jit(integrate) if potential.jittable else integrate
