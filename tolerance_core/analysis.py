"""1-D stack-up analysis engine supporting WC, RSS, and Monte Carlo."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import numpy as np

from tolerance_core.models import DEFAULT_MC_ITERATIONS, Stackup
from tolerance_core.statistics import (
    make_rng,
    normal_cdf,
    sample_distribution,
    variance_shares,
)


MARGINAL_FRACTION = 0.1


class AnalysisResult(Enum):
    """Worst-case verdict against the target window."""
    PASS = "pass"
    MARGINAL = "marginal"
    FAIL = "fail"


@dataclass
class WorstCaseResult:
    """Worst-case (min/max) result.

    Attributes:
        min: Smallest achievable stack value.
        max: Largest achievable stack value.
        margin: Distance from the nearer limit (negative when outside).
        result: PASS / MARGINAL / FAIL classification.
        nominal: Stack value with every contributor at nominal.
    """
    min: float
    max: float
    margin: float
    result: AnalysisResult
    nominal: float = 0.0

    def summary(self) -> str:
        return "\n".join([
            "=== Worst-Case Analysis ===",
            f"  Nominal:  {self.nominal:+.6f}",
            f"  Range:    [{self.min:+.6f}, {self.max:+.6f}]",
            f"  Margin:   {self.margin:+.6f}",
            f"  Result:   {self.result.value.upper()}",
        ])


@dataclass
class RssResult:
    """RSS statistical result.

    Attributes:
        mean: Chain mean from the centered process means.
        sigma: Chain standard deviation.
        sigma_3: Three-sigma spread.
        margin: Distance of the 3-sigma band from the nearer limit.
        cp: Target window width over 6 sigma (inf for sigma = 0).
        cpk: Capability index using the (optionally shifted) mean.
        yield_percent: Estimated yield from the unshifted mean.
        sensitivity: Percent variance share per contributor, empty
            when the total variance is zero.
        shifted_mean: Mean used for Cpk when a mean shift applies.
    """
    mean: float
    sigma: float
    sigma_3: float
    margin: float
    cp: float
    cpk: float
    yield_percent: float
    sensitivity: list[float] = field(default_factory=list)
    shifted_mean: Optional[float] = None

    def summary(self) -> str:
        lines = [
            "=== RSS Analysis ===",
            f"  Mean:         {self.mean:+.6f}",
            f"  Sigma:        {self.sigma:.6f}",
            f"  3-sigma:      {self.sigma_3:.6f}",
            f"  Margin:       {self.margin:+.6f}",
            f"  Cp:           {self.cp:.4f}",
            f"  Cpk:          {self.cpk:.4f}",
            f"  Est. yield:   {self.yield_percent:.4f}%",
        ]
        if self.shifted_mean is not None:
            lines.append(f"  Shifted mean: {self.shifted_mean:+.6f}")
        if self.sensitivity:
            lines.append("  Sensitivity (% of variance):")
            for i, pct in enumerate(self.sensitivity):
                lines.append(f"    [{i}] {pct:6.2f}%")
        return "\n".join(lines)


@dataclass
class MonteCarloResult:
    """Monte Carlo simulation result.

    Attributes:
        iterations: Number of simulated assemblies.
        mean: Sample mean.
        std_dev: Sample standard deviation (ddof=1).
        min: Smallest simulated value.
        max: Largest simulated value.
        yield_percent: Percent of samples inside the target window.
        percentile_2_5: 2.5th percentile.
        percentile_97_5: 97.5th percentile.
        pp: Performance index, None when the spread is zero.
        ppk: Centered performance index, None when the spread is zero.
        samples: Sorted simulated values.
    """
    iterations: int
    mean: float
    std_dev: float
    min: float
    max: float
    yield_percent: float
    percentile_2_5: float
    percentile_97_5: float
    pp: Optional[float] = None
    ppk: Optional[float] = None
    samples: Optional[np.ndarray] = None

    def summary(self) -> str:
        lines = [
            "=== Monte Carlo Analysis ===",
            f"  Iterations:   {self.iterations}",
            f"  Mean:         {self.mean:+.6f}",
            f"  Std dev:      {self.std_dev:.6f}",
            f"  Range:        [{self.min:+.6f}, {self.max:+.6f}]",
            f"  95% interval: [{self.percentile_2_5:+.6f}, {self.percentile_97_5:+.6f}]",
            f"  Yield:        {self.yield_percent:.4f}%",
        ]
        if self.pp is not None:
            lines.append(f"  Pp:           {self.pp:.4f}")
            lines.append(f"  Ppk:          {self.ppk:.4f}")
        return "\n".join(lines)


@dataclass
class AnalysisResults:
    """Results of the methods requested from ``analyze_stack``."""
    worst_case: Optional[WorstCaseResult] = None
    rss: Optional[RssResult] = None
    monte_carlo: Optional[MonteCarloResult] = None

    def summary(self) -> str:
        parts = [r.summary() for r in (self.worst_case, self.rss, self.monte_carlo)
                 if r is not None]
        return "\n\n".join(parts)


# ---------------------------------------------------------------------------
# Worst-Case analysis
# ---------------------------------------------------------------------------

def classify_margin(margin: float, spec_range: float) -> AnalysisResult:
    """PASS above 10% of the window, MARGINAL above zero, else FAIL."""
    if margin > MARGINAL_FRACTION * spec_range:
        return AnalysisResult.PASS
    if margin > 0.0:
        return AnalysisResult.MARGINAL
    return AnalysisResult.FAIL


def worst_case(stackup: Stackup) -> WorstCaseResult:
    """Perform worst-case (min/max) stack-up analysis.

    Every contributor is assumed to sit at its extreme limit simultaneously.
    """
    lo = 0.0
    hi = 0.0
    for c in stackup.contributors:
        c_lo, c_hi = c.signed_range()
        lo += c_lo
        hi += c_hi

    target = stackup.target
    margin = min(target.upper_limit - hi, lo - target.lower_limit)
    return WorstCaseResult(
        min=lo,
        max=hi,
        margin=margin,
        result=classify_margin(margin, target.spec_range),
        nominal=stackup.nominal,
    )


# ---------------------------------------------------------------------------
# RSS analysis
# ---------------------------------------------------------------------------

def rss(stackup: Stackup) -> RssResult:
    """Perform RSS statistical stack-up analysis.

    Each contributor's band spans ``sigma_level`` standard deviations.
    With ``mean_shift_k > 0`` the mean used for Cpk is moved toward the
    nearer limit by k*sigma; the yield always uses the unshifted mean.
    """
    target = stackup.target
    mean = 0.0
    variances = []
    for c in stackup.contributors:
        mean += c.sign * c.process_mean
        band = c.effective_band(stackup.include_gdt)
        variances.append((band / stackup.sigma_level) ** 2)

    sigma = math.sqrt(sum(variances))
    sensitivity = variance_shares(variances)

    shifted_mean = None
    cpk_mean = mean
    if stackup.mean_shift_k > 0.0 and sigma > 0.0:
        shift = stackup.mean_shift_k * sigma
        if target.upper_limit - mean < mean - target.lower_limit:
            shifted_mean = mean + shift
        else:
            shifted_mean = mean - shift
        cpk_mean = shifted_mean

    if sigma > 0.0:
        cp = target.spec_range / (6.0 * sigma)
        cpk = min(target.upper_limit - cpk_mean, cpk_mean - target.lower_limit) / (3.0 * sigma)
        z_upper = (target.upper_limit - mean) / sigma
        z_lower = (target.lower_limit - mean) / sigma
    else:
        cp = math.inf
        cpk = math.inf
        z_upper = math.inf
        z_lower = -math.inf

    # normal_cdf clamps +/-inf to exactly 1.0 / 0.0
    yield_percent = (normal_cdf(z_upper) - normal_cdf(z_lower)) * 100.0

    sigma_3 = 3.0 * sigma
    margin = min(target.upper_limit - (mean + sigma_3), (mean - sigma_3) - target.lower_limit)

    return RssResult(
        mean=mean,
        sigma=sigma,
        sigma_3=sigma_3,
        margin=margin,
        cp=cp,
        cpk=cpk,
        yield_percent=yield_percent,
        sensitivity=sensitivity,
        shifted_mean=shifted_mean,
    )


# ---------------------------------------------------------------------------
# Monte Carlo analysis
# ---------------------------------------------------------------------------

def monte_carlo(
    stackup: Stackup,
    iterations: int = DEFAULT_MC_ITERATIONS,
    rng: Optional[np.random.Generator] = None,
    seed: Optional[int] = None,
) -> MonteCarloResult:
    """Perform Monte Carlo stack-up analysis.

    Each contributor is sampled around its process mean with the same
    effective band as RSS, and the signed samples are summed per iteration.
    """
    if iterations < 1:
        raise ValueError(f"iterations must be at least 1, got {iterations}")
    rng = make_rng(rng, seed)

    totals = np.zeros(iterations)
    for c in stackup.contributors:
        samples = sample_distribution(
            rng,
            c.effective_distribution,
            center=c.process_mean,
            band=c.effective_band(stackup.include_gdt),
            sigma_level=stackup.sigma_level,
            size=iterations,
        )
        totals += c.sign * samples

    totals.sort()
    target = stackup.target
    mean = float(np.mean(totals))
    std_dev = float(np.std(totals, ddof=1)) if iterations > 1 else 0.0
    inside = np.count_nonzero((totals >= target.lower_limit) & (totals <= target.upper_limit))

    lo_idx = int(iterations * 0.025)
    hi_idx = int(iterations * 0.975)
    p_lo = float(totals[lo_idx]) if lo_idx < iterations else float(totals[0])
    p_hi = float(totals[hi_idx]) if hi_idx < iterations else float(totals[-1])

    pp = None
    ppk = None
    if std_dev > 0.0:
        pp = target.spec_range / (6.0 * std_dev)
        ppk = min(target.upper_limit - mean, mean - target.lower_limit) / (3.0 * std_dev)

    return MonteCarloResult(
        iterations=iterations,
        mean=mean,
        std_dev=std_dev,
        min=float(totals[0]),
        max=float(totals[-1]),
        yield_percent=100.0 * inside / iterations,
        percentile_2_5=p_lo,
        percentile_97_5=p_hi,
        pp=pp,
        ppk=ppk,
        samples=totals,
    )


# ---------------------------------------------------------------------------
# Convenience dispatcher
# ---------------------------------------------------------------------------

def analyze_stack(
    stackup: Stackup,
    methods: Optional[list[str]] = None,
    iterations: int = DEFAULT_MC_ITERATIONS,
    rng: Optional[np.random.Generator] = None,
    seed: Optional[int] = None,
) -> AnalysisResults:
    """Run one or more analysis methods on a stack-up.

    Args:
        stackup: The stack-up to analyze.
        methods: List of method names ("wc", "rss", "mc"). Defaults to all.
        iterations: Number of Monte Carlo iterations.
        rng: Random generator for Monte Carlo.
        seed: Seed used when no generator is given.

    Returns:
        AnalysisResults with the requested methods populated.
    """
    if methods is None:
        methods = ["wc", "rss", "mc"]

    results = AnalysisResults()
    for m in methods:
        key = m.lower().strip()
        if key in ("wc", "worst-case", "worst_case"):
            results.worst_case = worst_case(stackup)
        elif key == "rss":
            results.rss = rss(stackup)
        elif key in ("mc", "monte-carlo", "monte_carlo"):
            results.monte_carlo = monte_carlo(stackup, iterations=iterations, rng=rng, seed=seed)
        else:
            raise ValueError(f"Unknown analysis method: {m!r}")
    return results
