"""3-D chain analysis combining GD&T bounds with torsor propagation.

Resolves each stack-up contributor to a ChainContributor3D (bounds from
its feature's GD&T, or derived from its dimensional tolerance), runs the
worst-case / RSS / Monte Carlo propagation, and projects the result
torsor onto the stack-up's functional direction.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Mapping, Optional, Sequence

import numpy as np

from tolerance_core.analysis import AnalysisResult
from tolerance_core.gdt import (
    DatumFeature,
    Feature,
    compute_torsor_bounds,
    datum_features_from,
    tolerance_dofs,
)
from tolerance_core.models import DEFAULT_MC_ITERATIONS, DEFAULT_SIGMA_LEVEL, Contributor, Stackup, Target
from tolerance_core.statistics import normal_cdf
from tolerance_core.torsor import (
    DOF_NAMES,
    DOF_ALPHA,
    ChainContributor3D,
    GeometryClass,
    ResultTorsor,
    TorsorBounds,
    build_projection_vector,
    constrained_dof,
    merge_mc_into_result,
    merge_wc_into_result,
    monte_carlo_3d,
    propagate_rss,
    propagate_worst_case,
)


DERIVED_REFERENCE_LENGTH = 50.0
DEFAULT_FUNCTIONAL_DIRECTION = (1.0, 0.0, 0.0)


@dataclass
class Chain3DResult:
    """Combined output of a 3-D chain analysis.

    Attributes:
        wc_bounds: Worst-case bounds at the chain origin.
        result: RSS result with worst-case (and Monte Carlo) merged in.
        mc_stats: Raw Monte Carlo torsor, if Monte Carlo ran.
        sensitivity: Per contributor, percent variance share per DOF.
    """
    wc_bounds: TorsorBounds
    result: ResultTorsor
    mc_stats: Optional[ResultTorsor] = None
    sensitivity: list[tuple[float, ...]] = field(default_factory=list)


@dataclass
class Sensitivity3DEntry:
    """Variance share of one contributor in each output DOF."""
    name: str
    contribution_pct: tuple[float, ...]
    feature_id: Optional[str] = None


@dataclass
class FunctionalProjection:
    """The result torsor reduced to a scalar along a functional direction.

    Deviations are relative to the target nominal.

    Attributes:
        direction: Normalized functional direction.
        wc_range: Projected worst-case (min, max) deviation.
        rss_mean: Projected RSS mean deviation.
        rss_3sigma: Projected RSS 3-sigma spread.
        mc_mean: Projected Monte Carlo mean, if available.
        mc_std_dev: Projected Monte Carlo standard deviation, if available.
        cp: Capability index, None for zero spread.
        cpk: Centered capability index, None for zero spread.
        yield_percent: Yield estimated from Cpk, None without Cpk.
        wc_result: PASS if the worst-case range lies in the deviation window.
    """
    direction: tuple[float, float, float]
    wc_range: tuple[float, float]
    rss_mean: float
    rss_3sigma: float
    mc_mean: Optional[float] = None
    mc_std_dev: Optional[float] = None
    cp: Optional[float] = None
    cpk: Optional[float] = None
    yield_percent: Optional[float] = None
    wc_result: AnalysisResult = AnalysisResult.PASS

    def summary(self) -> str:
        lines = [
            "=== Functional Projection ===",
            f"  Direction:    ({self.direction[0]:.4f}, {self.direction[1]:.4f}, "
            f"{self.direction[2]:.4f})",
            f"  WC range:     [{self.wc_range[0]:+.6f}, {self.wc_range[1]:+.6f}]"
            f"  {self.wc_result.value.upper()}",
            f"  RSS mean:     {self.rss_mean:+.6f}",
            f"  RSS 3-sigma:  {self.rss_3sigma:.6f}",
        ]
        if self.mc_mean is not None:
            lines.append(f"  MC mean:      {self.mc_mean:+.6f}")
            lines.append(f"  MC std dev:   {self.mc_std_dev:.6f}")
        if self.cp is not None:
            lines.append(f"  Cp:           {self.cp:.4f}")
            lines.append(f"  Cpk:          {self.cpk:.4f}")
            lines.append(f"  Est. yield:   {self.yield_percent:.4f}%")
        return "\n".join(lines)


@dataclass
class Analysis3DResults:
    """3-D analysis of a stack-up.

    Attributes:
        result_torsor: Combined result torsor.
        functional: Projection onto the functional direction.
        sensitivity: Per-contributor variance shares.
        contributors: Resolved chain contributors.
        warnings: Notes about missing features, geometry, or bounds.
    """
    result_torsor: ResultTorsor
    functional: FunctionalProjection
    sensitivity: list[Sensitivity3DEntry] = field(default_factory=list)
    contributors: list[ChainContributor3D] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def summary(self) -> str:
        lines = [self.result_torsor.summary(), "", self.functional.summary()]
        if self.sensitivity:
            lines.append("")
            lines.append("=== 3D Sensitivity (% of variance) ===")
            header = "".join(f"{n:>9s}" for n in DOF_NAMES)
            lines.append(f"  {'Contributor':24s}{header}")
            for e in self.sensitivity:
                row = "".join(f"{p:9.2f}" for p in e.contribution_pct)
                lines.append(f"  {e.name:24s}{row}")
        if self.warnings:
            lines.append("")
            lines.append("Warnings:")
            lines.extend(f"  - {w}" for w in self.warnings)
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Chain analysis
# ---------------------------------------------------------------------------

def analyze_chain_3d(
    contributors: Sequence[ChainContributor3D],
    run_monte_carlo: bool = False,
    iterations: int = DEFAULT_MC_ITERATIONS,
    rng: Optional[np.random.Generator] = None,
    seed: Optional[int] = None,
) -> Chain3DResult:
    """Worst-case, RSS, and optionally Monte Carlo analysis of a 3-D chain.

    Monte Carlo is skipped for an empty chain.
    """
    wc_bounds = propagate_worst_case(contributors)
    rss_result, sensitivity = propagate_rss(contributors)
    result = merge_wc_into_result(rss_result, wc_bounds)

    mc_stats = None
    if run_monte_carlo and contributors:
        mc_stats = monte_carlo_3d(contributors, iterations, rng=rng, seed=seed)
        result = merge_mc_into_result(result, mc_stats)

    return Chain3DResult(
        wc_bounds=wc_bounds,
        result=result,
        mc_stats=mc_stats,
        sensitivity=sensitivity,
    )


def sensitivity_entries(
    contributors: Sequence[ChainContributor3D],
    sensitivity: Sequence[Sequence[float]],
) -> list[Sensitivity3DEntry]:
    """Pair each contributor with its per-DOF variance shares."""
    return [
        Sensitivity3DEntry(name=c.name, contribution_pct=tuple(s), feature_id=c.feature_id)
        for c, s in zip(contributors, sensitivity)
    ]


# ---------------------------------------------------------------------------
# Contributor resolution
# ---------------------------------------------------------------------------

def bounds_for_dofs(
    half_tol: float,
    dofs: Sequence[int],
    reference_length: float = DERIVED_REFERENCE_LENGTH,
) -> TorsorBounds:
    """Symmetric bounds on the given DOFs from a linear half tolerance.

    Rotational DOFs take half_tol / reference_length radians.
    """
    angular = half_tol / reference_length
    bounds = TorsorBounds()
    for d in dofs:
        half = angular if d >= DOF_ALPHA else half_tol
        bounds = bounds.with_dof(d, (-half, half))
    return bounds


def contributor_from_feature(
    contributor: Contributor,
    feature: Optional[Feature],
    datum_features: Optional[Mapping[str, DatumFeature]] = None,
    sigma_level: float = DEFAULT_SIGMA_LEVEL,
) -> tuple[ChainContributor3D, list[str]]:
    """Resolve a stack-up contributor into a 3-D chain contributor.

    Bounds come from the feature's GD&T controls when they produce any;
    otherwise they are derived from the contributor's tolerance band on
    the DOFs the tolerance applies to (datum-aware when the first control
    names datums). Returns the contributor and any warnings.
    """
    warnings: list[str] = []
    datum_features = datum_features or {}

    if feature is None:
        geometry_class = GeometryClass.COMPLEX
        position = (0.0, 0.0, 0.0)
        datum_refs: Sequence[str] = ()
        if contributor.feature_id is not None:
            warnings.append(
                f"{contributor.name}: feature {contributor.feature_id!r} not found")
    else:
        geometry_class = feature.geometry_class or GeometryClass.COMPLEX
        if feature.geometry is not None:
            position = feature.geometry.origin
        else:
            position = (0.0, 0.0, 0.0)
            warnings.append(f"{contributor.name}: no 3D geometry, using origin")
        datum_refs = feature.controls[0].datum_refs if feature.controls else ()

    bounds = None
    if feature is not None and feature.controls:
        actual_size = None
        if contributor.gdt_position is not None:
            actual_size = contributor.gdt_position.actual_size
        gdt = compute_torsor_bounds(feature, actual_size)
        warnings.extend(f"{contributor.name}: {w}" for w in gdt.warnings)
        if gdt.bounds.is_empty:
            warnings.append(f"{contributor.name}: GD&T produced no bounds, using derived bounds")
        else:
            bounds = gdt.bounds

    if bounds is None:
        if datum_refs and datum_features:
            dofs = tolerance_dofs(datum_refs, datum_features, geometry_class)
        else:
            dofs = constrained_dof(geometry_class)
        bounds = bounds_for_dofs(contributor.tolerance_band / 2.0, dofs)
        if bounds.is_empty:
            warnings.append(f"{contributor.name}: no deviating DOFs, contributes nothing in 3D")

    chain_contributor = ChainContributor3D(
        name=contributor.name,
        geometry_class=geometry_class,
        position=tuple(position),
        bounds=bounds,
        distribution=contributor.effective_distribution,
        sigma_level=sigma_level,
        feature_id=contributor.feature_id,
    )
    return chain_contributor, warnings


# ---------------------------------------------------------------------------
# Functional projection
# ---------------------------------------------------------------------------

def functional_projection(
    result: ResultTorsor,
    direction: Sequence[float],
    target: Target,
    sigma_level: float = DEFAULT_SIGMA_LEVEL,
) -> FunctionalProjection:
    """Project the translational part of a result torsor onto ``direction``.

    Capability indices compare the projected deviation with the target
    window expressed as deviations from the target nominal.
    """
    p = build_projection_vector(direction)[:3]
    stats = result.stats()[:3]

    wc_min = float(sum(w * s.wc_min for w, s in zip(p, stats)))
    wc_max = float(sum(w * s.wc_max for w, s in zip(p, stats)))
    mean = float(sum(w * s.rss_mean for w, s in zip(p, stats)))
    sigma = math.sqrt(sum((w * s.rss_3sigma / 3.0) ** 2 for w, s in zip(p, stats)))

    mc_mean = None
    mc_std = None
    if stats[0].mc_mean is not None:
        mc_mean = float(sum(w * (s.mc_mean or 0.0) for w, s in zip(p, stats)))
        mc_std = math.sqrt(sum((w * (s.mc_std_dev or 0.0)) ** 2 for w, s in zip(p, stats)))

    dev_lsl = target.lower_limit - target.nominal
    dev_usl = target.upper_limit - target.nominal

    cp = cpk = yield_percent = None
    if sigma > 0.0:
        cp = (dev_usl - dev_lsl) / (sigma_level * sigma)
        half_span = sigma_level / 2.0 * sigma
        cpk = min((dev_usl - mean) / half_span, (mean - dev_lsl) / half_span)
        yield_percent = (2.0 * normal_cdf(3.0 * cpk) - 1.0) * 100.0

    inside = dev_lsl <= wc_min and wc_max <= dev_usl
    return FunctionalProjection(
        direction=(float(p[0]), float(p[1]), float(p[2])),
        wc_range=(wc_min, wc_max),
        rss_mean=mean,
        rss_3sigma=3.0 * sigma,
        mc_mean=mc_mean,
        mc_std_dev=mc_std,
        cp=cp,
        cpk=cpk,
        yield_percent=yield_percent,
        wc_result=AnalysisResult.PASS if inside else AnalysisResult.FAIL,
    )


# ---------------------------------------------------------------------------
# Stack-up level
# ---------------------------------------------------------------------------

def analyze_stackup_3d(
    stackup: Stackup,
    features: Mapping[str, Feature],
    datum_features: Optional[Mapping[str, DatumFeature]] = None,
    rng: Optional[np.random.Generator] = None,
    seed: Optional[int] = None,
) -> Optional[Analysis3DResults]:
    """Run the 3-D analysis configured on a stack-up.

    Args:
        stackup: Stack-up whose ``analysis_3d`` config is enabled.
        features: Features keyed by the contributors' ``feature_id``.
        datum_features: Datum features by label; defaults to every
            feature in ``features`` carrying a datum label.
        rng: Random generator for Monte Carlo.
        seed: Seed used when no generator is given.

    Returns:
        Analysis3DResults, or None when 3-D analysis is not enabled or
        the stack-up has no contributors.
    """
    config = stackup.analysis_3d
    if config is None or not config.enabled or not stackup.contributors:
        return None

    if datum_features is None:
        datum_features = datum_features_from(features.values())

    contributors = []
    warnings = []
    for c in stackup.contributors:
        feature = features.get(c.feature_id) if c.feature_id is not None else None
        chain_c, notes = contributor_from_feature(c, feature, datum_features, stackup.sigma_level)
        contributors.append(chain_c)
        warnings.extend(notes)

    chain = analyze_chain_3d(
        contributors,
        run_monte_carlo=config.run_monte_carlo,
        iterations=config.monte_carlo_iterations,
        rng=rng,
        seed=seed,
    )
    projection = functional_projection(
        chain.result,
        stackup.functional_direction or DEFAULT_FUNCTIONAL_DIRECTION,
        stackup.target,
        stackup.sigma_level,
    )
    return Analysis3DResults(
        result_torsor=chain.result,
        functional=projection,
        sensitivity=sensitivity_entries(contributors, chain.sensitivity),
        contributors=contributors,
        warnings=warnings,
    )
