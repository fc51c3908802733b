"""
Description:
    Dual averaging step size adaptation (Hoffman & Gelman 2014, Alg. 5).
    USE THE CORRECT ENVIRONMENT:  hmcnuts

Author: John Gallagher
Created: 2026-10-17
Last Modified: 2026-10-17
Version: 0.2

The state is an immutable value threaded through the warmup loop. The driver
stops calling da_update once warmup ends and freezes the step size at
da_final(state).
"""
import math
from typing import NamedTuple

class DualAveragingState(NamedTuple):
    """State for step-wise dual averaging."""
    log_step_size: float       # Current log(step_size)
    log_step_size_bar: float   # Smoothed log(step_size)
    h_bar: float               # Running average of (target - accept_stat)
    mu: float                  # Shrinkage point, log(10 * eps0)
    count: int                 # Warmup iterations seen

    @property
    def step_size(self) -> float:
        return math.exp(self.log_step_size)

def da_init(initial_step_size: float) -> DualAveragingState:
    """Initialize dual averaging state."""
    return DualAveragingState(
        log_step_size=math.log(initial_step_size),
        log_step_size_bar=0.0,
        h_bar=0.0,
        mu=math.log(10.0 * initial_step_size),
        count=0,
    )

def da_update(
        state: DualAveragingState,
        accept_stat: float,
        target_acceptance: float = 0.8,
        gamma: float = 0.05,
        t0: float = 10.0,
        kappa: float = 0.75
) -> DualAveragingState:
    """
    One dual averaging update after warmup iteration state.count.

    Returns the updated state. The step size for the next iteration is
    state.step_size.
    """
    t = state.count + 1
    eta = 1.0 / (t + t0)
    h_bar = (1.0 - eta) * state.h_bar + eta * (target_acceptance - accept_stat)
    log_step_size = state.mu - (math.sqrt(t) / gamma) * h_bar
    w = t ** (-kappa)
    log_step_size_bar = w * log_step_size + (1.0 - w) * state.log_step_size_bar
    return state._replace(
        log_step_size=log_step_size,
        log_step_size_bar=log_step_size_bar,
        h_bar=h_bar,
        count=t,
    )

def da_final(state: DualAveragingState) -> float:
    """Step size to freeze at the end of warmup"""
    if state.count == 0:
        # No warmup iterations ran, keep the initial step size
        return state.step_size
    return math.exp(state.log_step_size_bar)
