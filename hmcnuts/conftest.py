import jax
import jax.random as jr
import pytest

# Enable 64-bit precision
jax.config.update("jax_enable_x64", True)

@pytest.fixture
def key():
    return jr.PRNGKey(1)
