"""Hole/shaft fit analysis.

Worst-case clearance limits and fit classification for a mated pair of
toleranced dimensions, with an optional RSS layer that estimates the
probability of interference.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

from tolerance_core.errors import MateError
from tolerance_core.models import DEFAULT_SIGMA_LEVEL, Dimension
from tolerance_core.statistics import normal_cdf


class FitResult(Enum):
    """Fit classification of a hole/shaft pair."""
    CLEARANCE = "clearance"
    INTERFERENCE = "interference"
    TRANSITION = "transition"


def classify_fit(min_clearance: float, max_clearance: float) -> FitResult:
    """Clearance if the smallest gap is positive, interference if the largest is negative."""
    if min_clearance > 0.0:
        return FitResult.CLEARANCE
    if max_clearance < 0.0:
        return FitResult.INTERFERENCE
    return FitResult.TRANSITION


def split_hole_shaft(dim_a: Dimension, dim_b: Dimension) -> tuple[Dimension, Dimension]:
    """Return (hole, shaft) from two dimensions in either order.

    Raises:
        MateError: If both dimensions are internal or both are external.
    """
    if dim_a.internal and not dim_b.internal:
        return dim_a, dim_b
    if dim_b.internal and not dim_a.internal:
        return dim_b, dim_a
    kind = "internal" if dim_a.internal else "external"
    raise MateError(
        f"A mate requires one internal and one external feature (both are {kind})")


@dataclass
class StatisticalFit:
    """RSS clearance distribution for a hole/shaft pair.

    Attributes:
        mean_clearance: Hole process mean minus shaft process mean.
        sigma_clearance: RSS of the hole and shaft sigmas.
        clearance_3sigma_min: mean - 3 sigma.
        clearance_3sigma_max: mean + 3 sigma.
        probability_interference: Percent chance of negative clearance.
        fit_result_3sigma: Classification of the 3-sigma clearance band.
    """
    mean_clearance: float
    sigma_clearance: float
    clearance_3sigma_min: float
    clearance_3sigma_max: float
    probability_interference: float
    fit_result_3sigma: FitResult

    @classmethod
    def from_dimensions(
        cls,
        dim_a: Dimension,
        dim_b: Dimension,
        sigma_level: float = DEFAULT_SIGMA_LEVEL,
    ) -> StatisticalFit:
        """Detect hole and shaft, then compute the statistical fit."""
        hole, shaft = split_hole_shaft(dim_a, dim_b)
        return statistical_fit(hole, shaft, sigma_level)

    def summary(self) -> str:
        return "\n".join([
            "=== Statistical Fit ===",
            f"  Mean clearance:   {self.mean_clearance:+.6f}",
            f"  Sigma:            {self.sigma_clearance:.6f}",
            f"  3-sigma range:    [{self.clearance_3sigma_min:+.6f}, "
            f"{self.clearance_3sigma_max:+.6f}]",
            f"  P(interference):  {self.probability_interference:.4f}%",
            f"  3-sigma fit:      {self.fit_result_3sigma.value}",
        ])


def statistical_fit(
    hole: Dimension,
    shaft: Dimension,
    sigma_level: float = DEFAULT_SIGMA_LEVEL,
) -> StatisticalFit:
    """Compute the RSS clearance distribution of a hole and a shaft.

    Process means sit at the center of each tolerance band, and each band
    spans ``sigma_level`` standard deviations.
    """
    if not hole.internal:
        raise MateError(f"Hole dimension {hole.name!r} must be internal")
    if shaft.internal:
        raise MateError(f"Shaft dimension {shaft.name!r} must be external")
    if not sigma_level > 0.0:
        raise ValueError(f"sigma_level must be positive, got {sigma_level}")

    hole_mean = hole.nominal + hole.midpoint_shift
    shaft_mean = shaft.nominal + shaft.midpoint_shift
    mean = hole_mean - shaft_mean

    hole_sigma = hole.tolerance_band / sigma_level
    shaft_sigma = shaft.tolerance_band / sigma_level
    sigma = math.hypot(hole_sigma, shaft_sigma)

    if sigma > 0.0:
        z = -mean / sigma
    else:
        z = -math.inf if mean >= 0.0 else math.inf

    lo = mean - 3.0 * sigma
    hi = mean + 3.0 * sigma
    return StatisticalFit(
        mean_clearance=mean,
        sigma_clearance=sigma,
        clearance_3sigma_min=lo,
        clearance_3sigma_max=hi,
        probability_interference=normal_cdf(z) * 100.0,
        fit_result_3sigma=classify_fit(lo, hi),
    )


@dataclass
class FitAnalysis:
    """Worst-case fit of a hole and a shaft.

    Attributes:
        worst_case_min_clearance: hole_min - shaft_max (negative = interference).
        worst_case_max_clearance: hole_max - shaft_min.
        fit_result: Worst-case classification.
        statistical: Optional RSS layer.
    """
    worst_case_min_clearance: float
    worst_case_max_clearance: float
    fit_result: FitResult
    statistical: Optional[StatisticalFit] = None

    @property
    def is_clearance(self) -> bool:
        return self.fit_result == FitResult.CLEARANCE

    @property
    def is_interference(self) -> bool:
        return self.fit_result == FitResult.INTERFERENCE

    def with_statistical(
        self,
        dim_a: Dimension,
        dim_b: Dimension,
        sigma_level: float = DEFAULT_SIGMA_LEVEL,
    ) -> FitAnalysis:
        """Return a copy carrying the statistical fit of the same pair."""
        return replace(self, statistical=StatisticalFit.from_dimensions(dim_a, dim_b, sigma_level))

    def summary(self) -> str:
        lines = [
            "=== Fit Analysis ===",
            f"  Min clearance:  {self.worst_case_min_clearance:+.6f}",
            f"  Max clearance:  {self.worst_case_max_clearance:+.6f}",
            f"  Fit:            {self.fit_result.value}",
        ]
        text = "\n".join(lines)
        if self.statistical is not None:
            text += "\n\n" + self.statistical.summary()
        return text


def fit_from_limits(
    hole: tuple[float, float, float],
    shaft: tuple[float, float, float],
) -> FitAnalysis:
    """Worst-case fit from (nominal, plus_tol, minus_tol) tuples."""
    hole_nom, hole_plus, hole_minus = hole
    shaft_nom, shaft_plus, shaft_minus = shaft
    min_clearance = (hole_nom - hole_minus) - (shaft_nom + shaft_plus)
    max_clearance = (hole_nom + hole_plus) - (shaft_nom - shaft_minus)
    return FitAnalysis(
        worst_case_min_clearance=min_clearance,
        worst_case_max_clearance=max_clearance,
        fit_result=classify_fit(min_clearance, max_clearance),
    )


def fit_from_dimensions(dim_a: Dimension, dim_b: Dimension) -> FitAnalysis:
    """Worst-case fit of two dimensions, detecting which is the hole.

    Raises:
        MateError: If both dimensions are internal or both are external.
    """
    hole, shaft = split_hole_shaft(dim_a, dim_b)
    return fit_from_limits(
        (hole.nominal, hole.plus_tol, hole.minus_tol),
        (shaft.nominal, shaft.plus_tol, shaft.minus_tol),
    )
