"""Statistical primitives shared by the 1-D and 3-D engines.

Provides the standard normal CDF, distribution sampling keyed on a
tolerance band and sigma level, variance-share sensitivity, and helpers
for resolving an injected random generator into independent streams.
"""

from __future__ import annotations

import math
from typing import Optional, Sequence

import numpy as np

from tolerance_core.models import Distribution


# Hastings rational approximation (Abramowitz & Stegun 26.2.17)
_B0 = 0.2316419
_B1 = 0.319381530
_B2 = -0.356563782
_B3 = 1.781477937
_B4 = -1.821255978
_B5 = 1.330274429
_INV_SQRT_2PI = 1.0 / math.sqrt(2.0 * math.pi)

CDF_CLAMP = 8.0


def normal_cdf(z: float) -> float:
    """Probability that a standard normal variable is <= z.

    Absolute error is below 7.5e-8. Returns exactly 1.0 for z >= 8,
    exactly 0.0 for z <= -8, and exactly 0.5 for z == 0 or NaN.
    """
    if math.isnan(z) or z == 0.0:
        return 0.5
    if z >= CDF_CLAMP:
        return 1.0
    if z <= -CDF_CLAMP:
        return 0.0
    if z < 0.0:
        return 1.0 - normal_cdf(-z)

    t = 1.0 / (1.0 + _B0 * z)
    pdf = _INV_SQRT_2PI * math.exp(-0.5 * z * z)
    poly = t * (_B1 + t * (_B2 + t * (_B3 + t * (_B4 + t * _B5))))
    return 1.0 - pdf * poly


# ---------------------------------------------------------------------------
# Sampling
# ---------------------------------------------------------------------------

def sample_normal(
    rng: np.random.Generator,
    center: float,
    band: float,
    sigma_level: float,
    size: int,
) -> np.ndarray:
    """Box-Muller samples with sigma = band / sigma_level."""
    sigma = band / sigma_level
    # 1 - U lies in (0, 1], keeping log() finite
    u1 = 1.0 - rng.random(size)
    u2 = rng.random(size)
    z = np.sqrt(-2.0 * np.log(u1)) * np.cos(2.0 * np.pi * u2)
    return center + sigma * z


def sample_uniform(
    rng: np.random.Generator,
    center: float,
    band: float,
    size: int,
) -> np.ndarray:
    """Uniform samples over [center - band/2, center + band/2]."""
    half = band / 2.0
    return (center - half) + band * rng.random(size)


def sample_triangular(
    rng: np.random.Generator,
    center: float,
    band: float,
    size: int,
) -> np.ndarray:
    """Triangular samples with apex at center, by inverse-CDF transform."""
    lo = center - band / 2.0
    hi = center + band / 2.0
    u = rng.random(size)
    width = hi - lo
    fc = (center - lo) / width
    below = lo + np.sqrt(u * width * (center - lo))
    above = hi - np.sqrt((1.0 - u) * width * (hi - center))
    return np.where(u < fc, below, above)


def sample_distribution(
    rng: np.random.Generator,
    distribution: Distribution,
    center: float,
    band: float,
    sigma_level: float,
    size: int,
) -> np.ndarray:
    """Draw ``size`` samples for a toleranced value.

    A zero band returns the center exactly without consuming randomness.
    """
    if band <= 0.0:
        return np.full(size, center, dtype=float)
    if distribution == Distribution.NORMAL:
        return sample_normal(rng, center, band, sigma_level, size)
    if distribution == Distribution.UNIFORM:
        return sample_uniform(rng, center, band, size)
    if distribution == Distribution.TRIANGULAR:
        return sample_triangular(rng, center, band, size)
    raise ValueError(f"Unknown distribution: {distribution}")


# ---------------------------------------------------------------------------
# Sensitivity
# ---------------------------------------------------------------------------

def variance_shares(variances: Sequence[float]) -> list[float]:
    """Percentage of the total variance carried by each entry.

    Returns an empty list when the total variance is exactly zero.
    """
    total = float(sum(variances))
    if total == 0.0:
        return []
    return [100.0 * v / total for v in variances]


# ---------------------------------------------------------------------------
# Random streams
# ---------------------------------------------------------------------------

def make_rng(
    rng: Optional[np.random.Generator] = None,
    seed: Optional[int] = None,
) -> np.random.Generator:
    """Resolve an injected generator, or build one from ``seed``."""
    if rng is not None:
        if seed is not None:
            raise ValueError("Pass either rng or seed, not both")
        return rng
    return np.random.default_rng(seed)


def spawn_streams(rng: np.random.Generator, n: int) -> list[np.random.Generator]:
    """Derive ``n`` independent child generators from ``rng``."""
    if n < 1:
        raise ValueError(f"Stream count must be at least 1, got {n}")
    return rng.spawn(n)
