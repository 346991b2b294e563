"""Data models for 1-D tolerance stack-ups and toleranced dimensions."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import numpy as np


DEFAULT_SIGMA_LEVEL = 6.0
DEFAULT_MC_ITERATIONS = 10_000


class Distribution(Enum):
    """Statistical distribution assumed for a toleranced value."""
    NORMAL = "normal"
    UNIFORM = "uniform"
    TRIANGULAR = "triangular"


class Direction(Enum):
    """Whether a contributor adds to or subtracts from the stack."""
    POSITIVE = "positive"
    NEGATIVE = "negative"

    @property
    def sign(self) -> int:
        return 1 if self is Direction.POSITIVE else -1


class MaterialCondition(Enum):
    """Material condition modifiers."""
    RFS = "rfs"             # Regardless of Feature Size
    MMC = "mmc"             # Maximum Material Condition
    LMC = "lmc"             # Least Material Condition


def _check_sigma_level(sigma_level: float) -> None:
    if not sigma_level > 0.0 or not math.isfinite(sigma_level):
        raise ValueError(f"sigma_level must be a positive number, got {sigma_level}")


@dataclass(frozen=True)
class Dimension:
    """A toleranced length on a feature.

    Attributes:
        name: Dimension name (e.g. "diameter", "length").
        nominal: Nominal value.
        plus_tol: Upper tolerance (non-negative).
        minus_tol: Lower tolerance (non-negative, subtracted from nominal).
        internal: True for internal features (hole, slot), False for
            external features (shaft, boss).
        distribution: Distribution used when the dimension is sampled.
        units: Length units.
    """
    name: str
    nominal: float
    plus_tol: float
    minus_tol: float
    internal: bool = False
    distribution: Distribution = Distribution.NORMAL
    units: str = "mm"

    def __post_init__(self) -> None:
        if self.plus_tol < 0 or self.minus_tol < 0:
            raise ValueError(
                f"Tolerances must be non-negative, got +{self.plus_tol}/-{self.minus_tol}"
                f" on {self.name!r}")

    @property
    def tolerance_band(self) -> float:
        """Total tolerance band (plus + minus)."""
        return self.plus_tol + self.minus_tol

    @property
    def midpoint_shift(self) -> float:
        """Shift of the band center from nominal for asymmetric tolerances."""
        return (self.plus_tol - self.minus_tol) / 2.0

    @property
    def lower(self) -> float:
        return self.nominal - self.minus_tol

    @property
    def upper(self) -> float:
        return self.nominal + self.plus_tol

    @property
    def mmc(self) -> float:
        """Maximum material size: smallest hole, largest shaft."""
        return self.lower if self.internal else self.upper

    @property
    def lmc(self) -> float:
        """Least material size: largest hole, smallest shaft."""
        return self.upper if self.internal else self.lower

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "nominal": self.nominal,
            "plus_tol": self.plus_tol,
            "minus_tol": self.minus_tol,
            "internal": self.internal,
            "distribution": self.distribution.value,
            "units": self.units,
        }

    @classmethod
    def from_dict(cls, d: dict) -> Dimension:
        return cls(
            name=d.get("name", ""),
            nominal=d["nominal"],
            plus_tol=d["plus_tol"],
            minus_tol=d["minus_tol"],
            internal=d.get("internal", False),
            distribution=Distribution(d.get("distribution", "normal")),
            units=d.get("units", "mm"),
        )


@dataclass(frozen=True)
class GdtContribution:
    """A GD&T position tolerance folded into a 1-D contributor.

    In 1-D analysis the position zone diameter widens the contributor's
    tolerance band. With MMC/LMC and a known actual size, the departure
    from the material-condition size is added as bonus tolerance.

    Attributes:
        position_tolerance: Position tolerance zone diameter.
        actual_size: Actual feature size for the bonus calculation.
        material_condition: Modifier on the position tolerance.
    """
    position_tolerance: float
    actual_size: Optional[float] = None
    material_condition: MaterialCondition = MaterialCondition.MMC

    def __post_init__(self) -> None:
        if self.position_tolerance < 0:
            raise ValueError(
                f"position_tolerance must be non-negative, got {self.position_tolerance}")

    def bonus(self, dimension: Dimension) -> float:
        """Bonus tolerance: |actual_size - MMC| (or LMC), zero without an actual size."""
        if self.actual_size is None:
            return 0.0
        if self.material_condition == MaterialCondition.MMC:
            return abs(self.actual_size - dimension.mmc)
        if self.material_condition == MaterialCondition.LMC:
            return abs(self.actual_size - dimension.lmc)
        return 0.0

    def effective(self, dimension: Dimension) -> float:
        """Position zone diameter including bonus."""
        return self.position_tolerance + self.bonus(dimension)


@dataclass
class Contributor:
    """A named, signed entry in a 1-D stack-up.

    Attributes:
        name: Descriptive name.
        dimension: The toleranced dimension contributing to the chain.
        direction: POSITIVE if it adds to the stack, NEGATIVE if it subtracts.
        distribution: Optional override of the dimension's distribution.
        gdt_position: Optional GD&T position contribution.
        feature_id: Optional reference to the owning feature record.
        source: Optional drawing/source reference.
    """
    name: str
    dimension: Dimension
    direction: Direction = Direction.POSITIVE
    distribution: Optional[Distribution] = None
    gdt_position: Optional[GdtContribution] = None
    feature_id: Optional[str] = None
    source: Optional[str] = None

    @property
    def nominal(self) -> float:
        return self.dimension.nominal

    @property
    def plus_tol(self) -> float:
        return self.dimension.plus_tol

    @property
    def minus_tol(self) -> float:
        return self.dimension.minus_tol

    @property
    def sign(self) -> int:
        return self.direction.sign

    @property
    def effective_distribution(self) -> Distribution:
        return self.distribution or self.dimension.distribution

    @property
    def tolerance_band(self) -> float:
        """Dimensional tolerance band only."""
        return self.dimension.tolerance_band

    @property
    def total_tolerance_band(self) -> float:
        """Tolerance band widened by the GD&T position zone (with bonus)."""
        if self.gdt_position is None:
            return self.tolerance_band
        return self.tolerance_band + self.gdt_position.effective(self.dimension)

    def effective_band(self, include_gdt: bool) -> float:
        return self.total_tolerance_band if include_gdt else self.tolerance_band

    @property
    def process_mean(self) -> float:
        """Unsigned process mean: nominal shifted to the center of the band."""
        return self.nominal + self.dimension.midpoint_shift

    def signed_range(self) -> tuple[float, float]:
        """Worst-case (min, max) contribution to the stack."""
        if self.direction is Direction.POSITIVE:
            return self.dimension.lower, self.dimension.upper
        return -self.dimension.upper, -self.dimension.lower

    def to_dict(self) -> dict:
        d = {
            "name": self.name,
            "dimension": self.dimension.to_dict(),
            "direction": self.direction.value,
        }
        if self.distribution is not None:
            d["distribution"] = self.distribution.value
        if self.gdt_position is not None:
            d["gdt_position"] = {
                "position_tolerance": self.gdt_position.position_tolerance,
                "actual_size": self.gdt_position.actual_size,
                "material_condition": self.gdt_position.material_condition.value,
            }
        if self.feature_id is not None:
            d["feature_id"] = self.feature_id
        if self.source is not None:
            d["source"] = self.source
        return d

    @classmethod
    def from_dict(cls, d: dict) -> Contributor:
        gdt = d.get("gdt_position")
        return cls(
            name=d["name"],
            dimension=Dimension.from_dict(d["dimension"]),
            direction=Direction(d.get("direction", "positive")),
            distribution=Distribution(d["distribution"]) if d.get("distribution") else None,
            gdt_position=GdtContribution(
                position_tolerance=gdt["position_tolerance"],
                actual_size=gdt.get("actual_size"),
                material_condition=MaterialCondition(gdt.get("material_condition", "mmc")),
            ) if gdt else None,
            feature_id=d.get("feature_id"),
            source=d.get("source"),
        )


@dataclass(frozen=True)
class Target:
    """Specification window for the stack-up result.

    Attributes:
        name: Name of the target gap/dimension.
        nominal: Nominal value.
        lower_limit: Lower specification limit.
        upper_limit: Upper specification limit.
        units: Units.
        critical: Whether this is a critical characteristic.
    """
    name: str
    nominal: float
    lower_limit: float
    upper_limit: float
    units: str = "mm"
    critical: bool = False

    def __post_init__(self) -> None:
        if self.lower_limit > self.upper_limit:
            raise ValueError(
                f"lower_limit ({self.lower_limit}) exceeds upper_limit ({self.upper_limit})")

    @property
    def spec_range(self) -> float:
        return self.upper_limit - self.lower_limit


MONTE_CARLO_3D = "monte_carlo_3d"
JACOBIAN_TORSOR = "jacobian_torsor"


@dataclass
class Analysis3DConfig:
    """3-D analysis configuration.

    Attributes:
        enabled: Run the 3-D chain analysis for this stack-up.
        method: "jacobian_torsor" (worst-case + RSS) or "monte_carlo_3d"
            (worst-case + RSS + Monte Carlo).
        monte_carlo_iterations: Monte Carlo iteration count.
    """
    enabled: bool = False
    method: str = JACOBIAN_TORSOR
    monte_carlo_iterations: int = DEFAULT_MC_ITERATIONS

    def __post_init__(self) -> None:
        if self.method not in (JACOBIAN_TORSOR, MONTE_CARLO_3D):
            raise ValueError(f"Unknown 3D analysis method: {self.method!r}")
        if self.monte_carlo_iterations < 1:
            raise ValueError(
                f"monte_carlo_iterations must be at least 1, got {self.monte_carlo_iterations}")

    @property
    def run_monte_carlo(self) -> bool:
        return self.method == MONTE_CARLO_3D


@dataclass
class Stackup:
    """A 1-D tolerance chain against a target window.

    Attributes:
        name: Descriptive name.
        target: Specification window for the result.
        contributors: Ordered chain of contributors.
        sigma_level: Number of sigma spanned by each tolerance band
            (6.0 means the band is +/-3 sigma).
        mean_shift_k: Bender k-factor; shifts the Cpk mean toward the
            nearer limit by k*sigma when > 0.
        include_gdt: Fold GD&T position contributions into the band.
        functional_direction: Direction the 3-D result is projected onto.
        analysis_3d: Optional 3-D analysis configuration.
    """
    name: str
    target: Target
    contributors: list[Contributor] = field(default_factory=list)
    sigma_level: float = DEFAULT_SIGMA_LEVEL
    mean_shift_k: float = 0.0
    include_gdt: bool = False
    functional_direction: Optional[tuple[float, float, float]] = None
    analysis_3d: Optional[Analysis3DConfig] = None

    def __post_init__(self) -> None:
        _check_sigma_level(self.sigma_level)
        if self.mean_shift_k < 0:
            raise ValueError(f"mean_shift_k must be non-negative, got {self.mean_shift_k}")
        if self.functional_direction is not None:
            d = np.array(self.functional_direction, dtype=float)
            if np.linalg.norm(d) < 1e-12:
                raise ValueError("functional_direction must be non-zero")

    def add(self, contributor: Contributor) -> None:
        """Add a contributor to the chain."""
        self.contributors.append(contributor)

    @property
    def nominal(self) -> float:
        """Signed sum of contributor nominals."""
        return sum(c.sign * c.nominal for c in self.contributors)
