"""
Description:
    Core data structures for hmcnuts.
    USE THE CORRECT ENVIRONMENT:  hmcnuts

Author: John Gallagher
Created: 2026-10-17
Last Modified: 2026-10-17
Version: 0.2

All modules import from here to ensure type consistency and avoid indexing bugs.
"""
from typing import NamedTuple, Callable, Dict, Tuple
import jax.numpy as jnp
import numpy as np

class QP(NamedTuple):
    """Phase space state(q,p)"""
    q: jnp.ndarray # position
    p: jnp.ndarray # momentum

    def to_array(self) -> jnp.ndarray:
        """Convert to flat array [q,p]"""
        return jnp.concatenate([self.q, self.p])
    @classmethod
    def from_array(cls, arr: jnp.ndarray):
        """Convert from flat array[q,p]"""
        dim = arr.shape[0]//2
        return cls(q=arr[:dim], p=arr[dim:])

class IntegratorState(NamedTuple):
    """Phase space point with the log-density and gradient cached at q"""
    q: jnp.ndarray
    p: jnp.ndarray
    logdensity: float
    logdensity_grad: jnp.ndarray

    @property
    def qp(self) -> QP:
        return QP(q=self.q, p=self.p)

class TreeState(NamedTuple):
    """
    Contiguous sub-trajectory built by NUTS doubling.

    left/right are the minus/plus edges regardless of the direction the
    tree was grown in. proposal is the candidate drawn from the valid leaves.
    """
    left: IntegratorState
    right: IntegratorState
    proposal: IntegratorState
    n_valid: int
    stop: bool
    diverging: bool
    alpha: float # sum of min(1, exp(H0 - H)) over leaves
    n_alpha: int
    n_steps: int # leapfrog evaluations spent on this subtree

class TransitionInfo(NamedTuple):
    """Per outer iteration diagnostics"""
    accept_stat: float
    accepted: bool
    diverging: bool
    tree_depth: int
    num_steps: int
    energy: float

class Trace(NamedTuple):
    samples: Dict[str, np.ndarray] # name -> (n_samples, *shape)
    final_step_size: float
    acceptance_rate: float
    n_samples: int
    stats: Dict[str, np.ndarray] # name -> (n_iterations,), warmup included

class NUTSConfig(NamedTuple):
    """Configuration for NUTS and its dual averaging warmup"""
    step_size: float = 0.01
    max_tree_depth: int = 10
    target_acceptance: float = 0.8
    delta_max: float = 1000.0
    gamma: float = 0.05
    t0: float = 10.0
    kappa: float = 0.75

class HMCConfig(NamedTuple):
    """Configuration for fixed trajectory length HMC"""
    step_size: float = 0.01
    n_steps: int = 10

class MetropolisConfig(NamedTuple):
    """Configuration for random walk Metropolis-Hastings"""
    proposal_std: float = 0.1
    target_acceptance: float = 0.234 # used by tune_proposal only

# Type aliases for clarity
LogDensityFn = Callable[[Dict[str, jnp.ndarray]], float]
LogDensityAndGrad = Callable[[jnp.ndarray], Tuple[float, jnp.ndarray]]
Shape = Tuple[int, ...]
Kernel = Callable[..., Tuple[IntegratorState, TransitionInfo]]
PrecisionMatrix = jnp.ndarray
