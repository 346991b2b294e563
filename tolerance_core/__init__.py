"""Dimensional Tolerance Analysis Core.

Supports Worst-Case, RSS, and Monte Carlo analysis methods for:
- 1-D tolerance stack-ups with Cp/Cpk, Pp/Ppk, yield, and sensitivity
- Hole/shaft mate fits (worst-case and statistical)
- 3-D chains propagated as small-displacement torsors

Additional capabilities:
- GD&T to torsor bounds (position, orientation, form, runout, profile, MMC/LMC bonus)
- Datum reference frames per the 3-2-1 rule
- Bender mean-shift on Cpk
- Reproducible Monte Carlo from an injected random generator
"""

from tolerance_core.errors import MateError, ToleranceError
from tolerance_core.models import (
    Analysis3DConfig, Contributor, Dimension, Direction, Distribution,
    GdtContribution, MaterialCondition, Stackup, Target,
)
from tolerance_core.statistics import normal_cdf, sample_distribution, variance_shares
from tolerance_core.analysis import (
    AnalysisResult, AnalysisResults, MonteCarloResult, RssResult, WorstCaseResult,
    analyze_stack, monte_carlo, rss, worst_case,
)
from tolerance_core.mate import (
    FitAnalysis, FitResult, StatisticalFit,
    fit_from_dimensions, fit_from_limits, statistical_fit,
)
from tolerance_core.torsor import (
    DOF_U, DOF_V, DOF_W, DOF_ALPHA, DOF_BETA, DOF_GAMMA, DOF_NAMES,
    ChainContributor3D, GeometryClass, ResultTorsor, TorsorBounds, TorsorStats,
    build_jacobian, build_projection_vector, constrained_dof, free_dof,
    monte_carlo_3d, propagate_rss, propagate_worst_case,
)
from tolerance_core.gdt import (
    DatumFeature, DatumReferenceFrame, Feature, FeatureGeometry,
    GdtBoundsResult, GdtControl, GdtSymbol,
    bounds_approx_equal, build_drf, check_stale_bounds, compute_torsor_bounds,
    merge_bounds, tolerance_dofs,
)
from tolerance_core.chain import (
    Analysis3DResults, Chain3DResult, FunctionalProjection, Sensitivity3DEntry,
    analyze_chain_3d, analyze_stackup_3d, functional_projection,
)

__all__ = [
    # Errors
    "MateError", "ToleranceError",
    # Core models
    "Analysis3DConfig", "Contributor", "Dimension", "Direction", "Distribution",
    "GdtContribution", "MaterialCondition", "Stackup", "Target",
    # Statistics
    "normal_cdf", "sample_distribution", "variance_shares",
    # 1-D analysis
    "AnalysisResult", "AnalysisResults", "MonteCarloResult", "RssResult",
    "WorstCaseResult", "analyze_stack", "monte_carlo", "rss", "worst_case",
    # Mates
    "FitAnalysis", "FitResult", "StatisticalFit",
    "fit_from_dimensions", "fit_from_limits", "statistical_fit",
    # Torsors
    "DOF_U", "DOF_V", "DOF_W", "DOF_ALPHA", "DOF_BETA", "DOF_GAMMA", "DOF_NAMES",
    "ChainContributor3D", "GeometryClass", "ResultTorsor", "TorsorBounds", "TorsorStats",
    "build_jacobian", "build_projection_vector", "constrained_dof", "free_dof",
    "monte_carlo_3d", "propagate_rss", "propagate_worst_case",
    # GD&T
    "DatumFeature", "DatumReferenceFrame", "Feature", "FeatureGeometry",
    "GdtBoundsResult", "GdtControl", "GdtSymbol",
    "bounds_approx_equal", "build_drf", "check_stale_bounds", "compute_torsor_bounds",
    "merge_bounds", "tolerance_dofs",
    # 3-D chains
    "Analysis3DResults", "Chain3DResult", "FunctionalProjection", "Sensitivity3DEntry",
    "analyze_chain_3d", "analyze_stackup_3d", "functional_projection",
]
__version__ = "0.1.0"
