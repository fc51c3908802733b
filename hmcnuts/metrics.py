"""
Description:
    MCMC diagnostics and metrics.
    USE THE CORRECT ENVIRONMENT:  hmcnuts

Author: John Gallagher
Created: 2026-10-17
Last Modified: 2026-10-17
Version: 0.2
"""
import jax.numpy as jnp
import numpy as np
from typing import Dict, Sequence
from hmcnuts.datatypes import Trace

def cov(X):
    Xμ = jnp.mean(X, axis = 0)
    n=X.shape[0]
    return (X - Xμ).T@(X-Xμ)/(n-1)

def maxdiagdiff(X,Y):
    x = np.diag(X)
    y = np.diag(Y)
    return np.max(np.abs(x-y))

def summarize(samples: np.ndarray) -> Dict[str, np.ndarray]:
    """
    Summary statistics along the sample axis (axis 0).

    std and variance are population (1/n) moments. The interval bounds are
    the empirical 2.5% and 97.5% order statistics.
    """
    x = np.asarray(samples, dtype=float)
    n = x.shape[0]
    ordered = np.sort(x, axis=0)
    mean = np.mean(x, axis=0)
    variance = np.mean((x - mean) ** 2, axis=0)
    return {
        "mean": mean,
        "median": ordered[n // 2],
        "std": np.sqrt(variance),
        "variance": variance,
        "hdi_2_5": ordered[int(np.floor(n * 0.025))],
        "hdi_97_5": ordered[int(np.floor(n * 0.975))],
        "n": n,
    }

def _ess_1d(x: np.ndarray, max_lag: int) -> float:
    n = x.shape[0]
    centred = x - np.mean(x)
    variance = np.mean(centred ** 2)
    if variance == 0:
        return float(n)
    rho_sum = 0.0
    for lag in range(1, min(n // 2, max_lag) + 1):
        rho = np.dot(centred[:-lag], centred[lag:]) / ((n - lag) * variance)
        rho_sum += rho
        # Truncate at the first negative autocorrelation
        if rho < 0:
            break
    return float(n / (1.0 + 2.0 * rho_sum))

def effective_sample_size(samples: np.ndarray, max_lag: int = 100) -> np.ndarray:
    """
    Autocorrelation based ESS, n / (1 + 2 sum rho_k).

    Sums lags 1..min(n/2, max_lag), stopping after the first negative one.
    Vector valued samples get one ESS per component.
    """
    x = np.asarray(samples, dtype=float)
    if x.ndim == 1:
        return _ess_1d(x, max_lag)
    flat = x.reshape(x.shape[0], -1)
    ess = np.array([_ess_1d(flat[:, j], max_lag) for j in range(flat.shape[1])])
    return ess.reshape(x.shape[1:])

def gelman_rubin(chains: Sequence[np.ndarray]) -> float:
    """
    Gelman-Rubin potential scale reduction factor R-hat.

    Args:
        chains: m >= 2 chains of equal length n of a scalar quantity

    Returns:
        sqrt(V / W) with V = (n-1)/n W + B/n
    """
    x = np.asarray([np.asarray(c, dtype=float) for c in chains])
    if x.ndim != 2 or x.shape[0] < 2:
        raise ValueError("gelman_rubin needs at least two chains of equal length")
    m, n = x.shape
    chain_means = np.mean(x, axis=1)
    B = n * np.sum((chain_means - np.mean(chain_means)) ** 2) / (m - 1)
    W = np.mean(np.var(x, axis=1, ddof=1))
    V = (n - 1) / n * W + B / n
    return float(np.sqrt(V / W))

def print_summary(trace: Trace) -> None:
    """Print mean, std, 95% interval and ESS for every variable"""
    print("\n=== Trace Summary ===\n")
    for name, samples in trace.samples.items():
        stats = summarize(samples)
        ess = effective_sample_size(samples)
        print(f"{name}:")
        print(f"  Mean: {np.array2string(np.asarray(stats['mean']), precision=4)}")
        print(f"  Std: {np.array2string(np.asarray(stats['std']), precision=4)}")
        print(f"  HDI 95%: [{np.array2string(np.asarray(stats['hdi_2_5']), precision=4)}, "
              f"{np.array2string(np.asarray(stats['hdi_97_5']), precision=4)}]")
        print(f"  ESS: {np.array2string(np.asarray(ess), precision=0)}")
        print()
    print(f"Acceptance Rate: {trace.acceptance_rate * 100:.1f}%")
    print(f"Step size: {trace.final_step_size:.6f}")
