"""
Description:
    Exceptions and warnings raised by the samplers.
    USE THE CORRECT ENVIRONMENT:  hmcnuts

Author: John Gallagher
Created: 2026-10-17
Last Modified: 2026-10-17
Version: 0.2
"""

class SamplerError(Exception):
    """Base class for sampler errors"""

class ConfigurationError(SamplerError, ValueError):
    """Invalid sampler configuration or run length. Raised before sampling starts."""

class ModelMismatchError(SamplerError, KeyError):
    """Parameter names or shapes do not match the potential's free variables"""

    def __str__(self):
        # KeyError repr-quotes its message
        return str(self.args[0]) if self.args else ""

class DivergentTransitionWarning(UserWarning):
    """Divergent transitions were observed after warmup"""
