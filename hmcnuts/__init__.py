"""
Description:
    Hamiltonian Monte Carlo, the No-U-Turn Sampler and random walk
    Metropolis-Hastings in JAX.
    USE THE CORRECT ENVIRONMENT:  hmcnuts

Author: John Gallagher
Created: 2026-10-17
Last Modified: 2026-10-17
Version: 0.2
"""
from hmcnuts.datatypes import (
    QP,
    IntegratorState,
    TreeState,
    Trace,
    NUTSConfig,
    HMCConfig,
    MetropolisConfig,
)
from hmcnuts.errors import (
    SamplerError,
    ConfigurationError,
    ModelMismatchError,
    DivergentTransitionWarning,
)
from hmcnuts.potential import (
    ParameterLayout,
    Potential,
    potential_from_logdensity,
    potential_from_functions,
)
from hmcnuts.hamiltonian import Hamiltonian, hamiltonian, kinetic_energy
from hmcnuts.integrator import lf_step, lf_integrate
from hmcnuts.tree import is_u_turn, build_tree, build_trajectory
from hmcnuts.sampler import HMC, NUTS, MetropolisHastings, sample_chain
from hmcnuts.metrics import summarize, effective_sample_size, gelman_rubin, print_summary

__version__ = "0.2.0"
