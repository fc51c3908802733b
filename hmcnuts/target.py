"""
Description:
    Target distribution generators.
    USE THE CORRECT ENVIRONMENT:  hmcnuts

Author: John Gallagher
Created: 2026-10-17
Last Modified: 2026-10-17
Version: 0.2
"""
from typing import Sequence
import jax.numpy as jnp
from hmcnuts.datatypes import PrecisionMatrix
from hmcnuts.potential import Potential, potential_from_logdensity

def gen_gaussian(
        dim: int = 2,
        precision_matrix: PrecisionMatrix = None,
        cov: jnp.ndarray = None,
        name: str = "x"
) -> Potential:
    """Zero mean Gaussian over one vector variable of shape (dim,)"""
    if precision_matrix is not None and cov is not None:
        raise ValueError(
            "Please supply either a precision_matrix or a cov, not both"
        )

    if precision_matrix is None and cov is not None:
        precision_matrix = jnp.linalg.inv(cov)

    if precision_matrix is None and cov is None:
        precision_matrix = jnp.eye(dim)
    dim = precision_matrix.shape[0]

    def logdensity(position) -> float:
        """Gaussian log density (unnormalized)"""
        q = position[name]
        return -0.5 * jnp.dot(q, precision_matrix @ q)

    return potential_from_logdensity(logdensity, {name: (dim,)})

def gen_standard_normal(names: Sequence[str] = ("x",)) -> Potential:
    """Independent N(0,1) scalars, one per name"""
    def logdensity(position) -> float:
        return sum(-0.5 * jnp.square(position[n]) for n in names)

    return potential_from_logdensity(logdensity, {n: () for n in names})

def gen_impossible(names: Sequence[str] = ("x",)) -> Potential:
    """log density -inf everywhere. Every leapfrog step diverges."""
    def logdensity(position) -> float:
        return sum(0.0 * position[n] for n in names) - jnp.inf

    return potential_from_logdensity(logdensity, {n: () for n in names})

def gen_perturb_precision(
        dim: int = 2,
        perturbation: float = 0.05
) -> PrecisionMatrix:
    prec = jnp.diag(jnp.ones(dim))
    prec += perturbation * jnp.diag(jnp.ones(dim-1), k=-1 )
    prec += perturbation * jnp.diag(jnp.ones(dim-1), k=1 )
    return prec
