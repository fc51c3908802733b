"""
Description:
    Potential interface: log-density and gradient over named free variables.
    USE THE CORRECT ENVIRONMENT:  hmcnuts

Author: John Gallagher
Created: 2026-10-17
Last Modified: 2026-10-17
Version: 0.2

Names are resolved to fixed slots of one flat vector when the potential is
built. Everything downstream (integrator, tree builder, samplers) works on the
flat vector only; names come back when the trace is assembled.
"""
from typing import NamedTuple, Callable, Dict, Mapping, Tuple
import jax
import jax.numpy as jnp
import numpy as np

from hmcnuts.datatypes import LogDensityAndGrad, LogDensityFn, Shape
from hmcnuts.errors import ModelMismatchError

def _as_shape(declared) -> Shape:
    """A tuple is a shape, anything else is an example value"""
    if isinstance(declared, tuple):
        return tuple(int(d) for d in declared)
    return tuple(np.shape(declared))

class ParameterLayout(NamedTuple):
    """Fixed name -> slot mapping for a flat parameter vector"""
    names: Tuple[str, ...]
    shapes: Tuple[Shape, ...]
    offsets: Tuple[int, ...]
    size: int

    @classmethod
    def from_free_variables(cls, free_variables: Mapping):
        """
        Build a layout from {name: shape or example value}.

        Slots follow the mapping's insertion order.
        """
        if not free_variables:
            raise ModelMismatchError("A potential needs at least one free variable")
        names, shapes, offsets = [], [], []
        offset = 0
        for name, declared in free_variables.items():
            shape = _as_shape(declared)
            names.append(str(name))
            shapes.append(shape)
            offsets.append(offset)
            offset += int(np.prod(shape, dtype=int))
        return cls(tuple(names), tuple(shapes), tuple(offsets), offset)

    def slot(self, name: str) -> slice:
        i = self.names.index(name)
        start = self.offsets[i]
        return slice(start, start + int(np.prod(self.shapes[i], dtype=int)))

    def check_names(self, values: Mapping, what: str = "initial values") -> None:
        """Raise ModelMismatchError unless values has exactly the free variable names"""
        expected = set(self.names)
        given = set(values)
        if given == expected:
            return
        missing = [n for n in self.names if n not in given]
        unexpected = sorted(str(n) for n in given - expected)
        parts = []
        if missing:
            parts.append(f"missing free variables {missing}")
        if unexpected:
            parts.append(f"unexpected names {unexpected}")
        raise ModelMismatchError(f"{what}: " + " and ".join(parts))

    def flatten(self, values: Mapping, what: str = "initial values") -> jnp.ndarray:
        """Pack {name: value} into the flat vector"""
        self.check_names(values, what)
        dtype = jnp.result_type(float)
        pieces = []
        for name, shape in zip(self.names, self.shapes):
            value = jnp.asarray(values[name], dtype=dtype)
            if value.shape != shape:
                raise ModelMismatchError(
                    f"{what}: '{name}' has shape {value.shape}, expected {shape}"
                )
            pieces.append(jnp.ravel(value))
        return jnp.concatenate(pieces)

    def unflatten(self, flat: jnp.ndarray) -> Dict[str, jnp.ndarray]:
        """Inverse of flatten. Static slicing, so safe under jit."""
        out = {}
        for name, shape, start in zip(self.names, self.shapes, self.offsets):
            n = int(np.prod(shape, dtype=int))
            out[name] = jnp.reshape(flat[start:start + n], shape)
        return out

    def split_samples(self, samples: np.ndarray) -> Dict[str, np.ndarray]:
        """(n, size) flat draws -> {name: (n, *shape)}"""
        samples = np.asarray(samples)
        n = samples.shape[0]
        out = {}
        for name, shape in zip(self.names, self.shapes):
            out[name] = samples[:, self.slot(name)].reshape((n,) + shape)
        return out

class Potential(NamedTuple):
    """
    Log-density collaborator consumed by the samplers.

    logdensity_and_grad maps the flat position to (log pi(q), grad log pi(q)).
    It must be a pure function of q. jittable marks whether it can be traced
    by jax; external (non jax) callables run eagerly.
    """
    layout: ParameterLayout
    logdensity_and_grad: LogDensityAndGrad
    jittable: bool = True

    @property
    def free_variable_names(self) -> Tuple[str, ...]:
        return self.layout.names

    def log_density(self, position: Mapping) -> float:
        logdensity, _ = self.logdensity_and_grad(self.layout.flatten(position, "position"))
        return float(logdensity)

    def gradient(self, position: Mapping) -> Dict[str, jnp.ndarray]:
        _, grad = self.logdensity_and_grad(self.layout.flatten(position, "position"))
        return self.layout.unflatten(grad)

def potential_from_logdensity(
        logdensity_fn: LogDensityFn,
        free_variables: Mapping
) -> Potential:
    """
    Potential from a jax-traceable log-density over {name: value}.

    The gradient comes from jax.value_and_grad and the pair is jit compiled.

    Args:
        logdensity_fn: log pi as a function of a name -> array mapping
        free_variables: name -> shape tuple, or name -> example value

    Returns:
        Potential
    """
    layout = ParameterLayout.from_free_variables(free_variables)

    def flat_logdensity(q: jnp.ndarray) -> float:
        return logdensity_fn(layout.unflatten(q))

    return Potential(
        layout=layout,
        logdensity_and_grad=jax.jit(jax.value_and_grad(flat_logdensity)),
        jittable=True,
    )

def potential_from_functions(
        log_density: Callable[[Dict[str, jnp.ndarray]], float],
        gradient: Callable[[Dict[str, jnp.ndarray]], Mapping],
        free_variables: Mapping
) -> Potential:
    """
    Potential from an external log-density and gradient pair.

    The gradient must return the same key set as the free variables. These
    callables are not traced, so the integrator runs eagerly.
    """
    layout = ParameterLayout.from_free_variables(free_variables)

    def logdensity_and_grad(q: jnp.ndarray) -> Tuple[float, jnp.ndarray]:
        position = layout.unflatten(q)
        logdensity = jnp.asarray(log_density(position), dtype=q.dtype)
        grad = layout.flatten(gradient(position), what="gradient")
        return logdensity, grad.astype(q.dtype)

    return Potential(layout=layout, logdensity_and_grad=logdensity_and_grad, jittable=False)
