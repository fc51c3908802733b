"""
Description:
    Hamiltonian energy for unit mass HMC.
    USE THE CORRECT ENVIRONMENT:  hmcnuts

Author: John Gallagher
Created: 2026-10-17
Last Modified: 2026-10-17
Version: 0.2
"""
from typing import NamedTuple
import jax.numpy as jnp
from hmcnuts.datatypes import QP, IntegratorState
from hmcnuts.potential import Potential

def kinetic_energy(p: jnp.ndarray) -> float:
    """K(p) = 0.5 * sum(p_i^2) over every scalar component"""
    return 0.5 * jnp.sum(jnp.square(p))

def hamiltonian(logdensity: float, p: jnp.ndarray) -> float:
    """H = U(q) + K(p) with U(q) = -log pi(q)"""
    return -logdensity + kinetic_energy(p)

def state_energy(state: IntegratorState) -> float:
    """
    H at an integrator state, using its cached log-density.

    A NaN energy, an infinite energy, or a non-finite gradient all come back
    as +inf so that callers only have one divergence test to make.
    """
    H = hamiltonian(state.logdensity, state.p)
    finite = jnp.isfinite(H) & jnp.all(jnp.isfinite(state.logdensity_grad))
    return jnp.where(finite, H, jnp.inf)

class Hamiltonian(NamedTuple):
    """
    Hamiltonian(q,p) = U(q) + K(p)
    For standard HMC:
        U(q) = -log π(q)
        K(p) = 0.5 * p.T@p
    """
    potential: Potential

    def energy(self, qp: QP) -> float:
        """total energy H(q,p) = U(q) + K(p)"""
        logdensity, _ = self.potential.logdensity_and_grad(qp.q)
        return hamiltonian(logdensity, qp.p)

    def init_state(self, q: jnp.ndarray, p: jnp.ndarray) -> IntegratorState:
        """Evaluate the potential once and cache it alongside (q,p)"""
        logdensity, grad = self.potential.logdensity_and_grad(q)
        return IntegratorState(q=q, p=p, logdensity=logdensity, logdensity_grad=grad)
