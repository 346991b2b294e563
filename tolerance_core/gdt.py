"""GD&T callouts mapped onto torsor bounds, per ASME Y14.5 / ISO 1101.

Provides GD&T symbols and controls, feature geometry, datum reference
frames built with the 3-2-1 rule, and the conversion of a feature's
controls (or, failing that, its dimensional tolerance) into per-DOF
torsor bounds with bonus tolerance.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from functools import reduce
from typing import Iterable, Mapping, Optional, Sequence

from tolerance_core.models import Dimension, MaterialCondition
from tolerance_core.torsor import (
    ALL_DOFS,
    DOF_ALPHA,
    DOF_BETA,
    DOF_GAMMA,
    DOF_U,
    DOF_V,
    DOF_W,
    Bound,
    GeometryClass,
    TorsorBounds,
    constrained_dof,
)


DEFAULT_CHARACTERISTIC_LENGTH = 10.0
STALE_EPSILON = 1e-9


# ---------------------------------------------------------------------------
# GD&T controls and features
# ---------------------------------------------------------------------------

class GdtSymbol(Enum):
    """GD&T tolerance symbols per ASME Y14.5."""
    # Location
    POSITION = "position"
    CONCENTRICITY = "concentricity"
    SYMMETRY = "symmetry"

    # Orientation
    PERPENDICULARITY = "perpendicularity"
    PARALLELISM = "parallelism"
    ANGULARITY = "angularity"

    # Form
    FLATNESS = "flatness"
    CIRCULARITY = "circularity"
    CYLINDRICITY = "cylindricity"
    STRAIGHTNESS = "straightness"

    # Runout
    RUNOUT = "runout"
    TOTAL_RUNOUT = "total_runout"

    # Profile
    PROFILE_SURFACE = "profile_surface"
    PROFILE_LINE = "profile_line"


@dataclass(frozen=True)
class GdtControl:
    """A single GD&T callout on a feature.

    Attributes:
        symbol: Tolerance symbol.
        value: Tolerance zone value (diameter for position).
        material_condition: Modifier on the tolerance value.
        datum_refs: Ordered datum labels, e.g. ("A", "B", "C").
        units: Length units.
    """
    symbol: GdtSymbol
    value: float
    material_condition: MaterialCondition = MaterialCondition.RFS
    datum_refs: tuple[str, ...] = ()
    units: str = "mm"

    def __post_init__(self) -> None:
        if self.value < 0:
            raise ValueError(f"GD&T value must be non-negative, got {self.value}")
        object.__setattr__(self, "datum_refs", tuple(self.datum_refs))

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol.value,
            "value": self.value,
            "material_condition": self.material_condition.value,
            "datum_refs": list(self.datum_refs),
            "units": self.units,
        }

    @classmethod
    def from_dict(cls, d: dict) -> GdtControl:
        return cls(
            symbol=GdtSymbol(d["symbol"]),
            value=d["value"],
            material_condition=MaterialCondition(d.get("material_condition", "rfs")),
            datum_refs=tuple(d.get("datum_refs", ())),
            units=d.get("units", "mm"),
        )


@dataclass(frozen=True)
class FeatureGeometry:
    """Placement of a feature in assembly coordinates.

    Attributes:
        origin: Feature location.
        axis: Feature axis (or plane normal).
        length: Characteristic length for converting linear orientation
            tolerances into angles (axis length, plane extent).
    """
    origin: tuple[float, float, float] = (0.0, 0.0, 0.0)
    axis: tuple[float, float, float] = (0.0, 0.0, 1.0)
    length: Optional[float] = None

    def __post_init__(self) -> None:
        if self.length is not None and not self.length > 0.0:
            raise ValueError(f"Characteristic length must be positive, got {self.length}")


@dataclass
class Feature:
    """A toleranced feature on a component.

    Attributes:
        name: Feature name.
        geometry_class: Nominal geometry; COMPLEX when unknown.
        dimensions: Size dimensions; the first is the primary dimension.
        controls: GD&T callouts.
        geometry: Optional placement and characteristic length.
        datum_label: Datum letter if this feature is a datum feature.
    """
    name: str
    geometry_class: Optional[GeometryClass] = None
    dimensions: list[Dimension] = field(default_factory=list)
    controls: list[GdtControl] = field(default_factory=list)
    geometry: Optional[FeatureGeometry] = None
    datum_label: Optional[str] = None

    @property
    def primary_dimension(self) -> Optional[Dimension]:
        return self.dimensions[0] if self.dimensions else None

    def as_datum(self) -> Optional[DatumFeature]:
        """DatumFeature for this feature, or None if it is not a datum."""
        if self.datum_label is None:
            return None
        return DatumFeature(
            label=self.datum_label,
            geometry_class=self.geometry_class or GeometryClass.COMPLEX,
            position=self.geometry.origin if self.geometry else (0.0, 0.0, 0.0),
            axis=self.geometry.axis if self.geometry else None,
        )


@dataclass
class GdtBoundsResult:
    """Bounds computed for a feature or a single control.

    Attributes:
        bounds: Merged torsor bounds.
        warnings: Non-fatal notes about incomplete input.
        has_bonus: True if any control picked up bonus tolerance.
    """
    bounds: TorsorBounds = field(default_factory=TorsorBounds)
    warnings: list[str] = field(default_factory=list)
    has_bonus: bool = False


# ---------------------------------------------------------------------------
# Datum Reference Frame (3-2-1 rule)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DatumFeature:
    """A feature designated as a datum.

    Attributes:
        label: Datum letter (A, B, C, ...).
        geometry_class: Nominal geometry of the datum feature.
        position: Location in assembly coordinates.
        axis: Axis direction for cylinders, cones, and lines.
    """
    label: str
    geometry_class: GeometryClass
    position: tuple[float, float, float] = (0.0, 0.0, 0.0)
    axis: Optional[tuple[float, float, float]] = None


_PRIMARY_DOFS = {
    GeometryClass.PLANE: (DOF_W, DOF_ALPHA, DOF_BETA),
    GeometryClass.CYLINDER: (DOF_U, DOF_V, DOF_ALPHA),
    GeometryClass.SPHERE: (DOF_U, DOF_V, DOF_W),
    GeometryClass.POINT: (DOF_U, DOF_V, DOF_W),
    GeometryClass.CONE: (DOF_U, DOF_V, DOF_ALPHA),
    GeometryClass.LINE: (DOF_U, DOF_V, DOF_ALPHA),
    GeometryClass.COMPLEX: (DOF_W, DOF_ALPHA, DOF_BETA),
}

_SECONDARY_DOFS = {
    GeometryClass.PLANE: (DOF_U, DOF_GAMMA),
    GeometryClass.CYLINDER: (DOF_U, DOF_V, DOF_GAMMA),
    GeometryClass.LINE: (DOF_U, DOF_V),
    GeometryClass.POINT: (DOF_U, DOF_V, DOF_W),
    GeometryClass.SPHERE: (DOF_U, DOF_V, DOF_W),
    GeometryClass.CONE: (DOF_U, DOF_V),
    GeometryClass.COMPLEX: (DOF_U, DOF_GAMMA),
}

_TERTIARY_DOFS = {
    GeometryClass.PLANE: (DOF_V, DOF_U, DOF_GAMMA),
    GeometryClass.POINT: (DOF_U, DOF_V, DOF_W),
    GeometryClass.CYLINDER: (DOF_U, DOF_V, DOF_W),
    GeometryClass.LINE: (DOF_U, DOF_V),
}
_TERTIARY_DEFAULT = (DOF_U, DOF_V, DOF_W, DOF_GAMMA)


def _take_free(candidates: Sequence[int], constrained: Sequence[int], count: int) -> tuple[int, ...]:
    return tuple([d for d in candidates if d not in constrained][:count])


@dataclass(frozen=True)
class DatumReferenceFrame:
    """A datum reference frame built from up to three datum features.

    Primary datum: constrains 3 DOF (a plane locks w, alpha, beta).
    Secondary datum: constrains up to 2 DOF not already constrained.
    Tertiary datum: constrains the next remaining DOF.

    Attributes:
        primary: Primary datum feature.
        secondary: Secondary datum feature.
        tertiary: Tertiary datum feature.
        constrained_dofs: DOFs locked so far, in the order they were added.
    """
    primary: Optional[DatumFeature] = None
    secondary: Optional[DatumFeature] = None
    tertiary: Optional[DatumFeature] = None
    constrained_dofs: tuple[int, ...] = ()

    def with_primary(self, datum: DatumFeature) -> DatumReferenceFrame:
        dofs = _PRIMARY_DOFS[datum.geometry_class]
        return replace(self, primary=datum, constrained_dofs=self.constrained_dofs + dofs)

    def with_secondary(self, datum: DatumFeature) -> DatumReferenceFrame:
        dofs = _take_free(_SECONDARY_DOFS[datum.geometry_class], self.constrained_dofs, 2)
        return replace(self, secondary=datum, constrained_dofs=self.constrained_dofs + dofs)

    def with_tertiary(self, datum: DatumFeature) -> DatumReferenceFrame:
        candidates = _TERTIARY_DOFS.get(datum.geometry_class, _TERTIARY_DEFAULT)
        dofs = _take_free(candidates, self.constrained_dofs, 1)
        return replace(self, tertiary=datum, constrained_dofs=self.constrained_dofs + dofs)

    def free_dofs(self) -> list[int]:
        return [d for d in ALL_DOFS if d not in self.constrained_dofs]

    def is_constrained(self, dof: int) -> bool:
        return dof in self.constrained_dofs

    @property
    def datum_count(self) -> int:
        return sum(d is not None for d in (self.primary, self.secondary, self.tertiary))


def build_drf(
    datum_refs: Sequence[str],
    datum_features: Mapping[str, DatumFeature],
) -> DatumReferenceFrame:
    """Build a DRF from ordered datum labels.

    Labels missing from ``datum_features`` and references past the
    third are ignored.
    """
    drf = DatumReferenceFrame()
    steps = (DatumReferenceFrame.with_primary, DatumReferenceFrame.with_secondary,
             DatumReferenceFrame.with_tertiary)
    for step, label in zip(steps, datum_refs):
        datum = datum_features.get(label)
        if datum is not None:
            drf = step(drf, datum)
    return drf


def datum_features_from(features: Iterable[Feature]) -> dict[str, DatumFeature]:
    """Map datum labels to DatumFeatures for every labelled feature."""
    datums = (f.as_datum() for f in features)
    return {d.label: d for d in datums if d is not None}


def tolerance_dofs(
    datum_refs: Sequence[str],
    datum_features: Mapping[str, DatumFeature],
    geometry_class: GeometryClass,
) -> list[int]:
    """DOFs a tolerance limits: free in the DRF and relevant to the geometry.

    Without datum references this is every DOF the geometry can deviate in.
    """
    feature_dofs = constrained_dof(geometry_class)
    if not datum_refs:
        return feature_dofs
    drf = build_drf(datum_refs, datum_features)
    return [d for d in drf.free_dofs() if d in feature_dofs]


# ---------------------------------------------------------------------------
# Merging and validation
# ---------------------------------------------------------------------------

def merge_dof(a: Optional[Bound], b: Optional[Bound]) -> Optional[Bound]:
    """Widened union of two optional bounds; a present bound dominates."""
    if a is None:
        return b
    if b is None:
        return a
    return (min(a[0], b[0]), max(a[1], b[1]))


def merge_bounds(a: TorsorBounds, b: TorsorBounds) -> TorsorBounds:
    """Per-DOF widened union of two bound sets."""
    return TorsorBounds.from_sequence([merge_dof(x, y) for x, y in zip(a.as_tuple(), b.as_tuple())])


def merge_all(bounds: Iterable[TorsorBounds]) -> TorsorBounds:
    """Fold ``merge_bounds`` over any number of bound sets."""
    return reduce(merge_bounds, bounds, TorsorBounds())


def validate_bounds_for_geometry(bounds: TorsorBounds, geometry_class: GeometryClass) -> list[str]:
    """Warn when populated DOFs do not suit the geometry class."""
    warnings = []
    if geometry_class == GeometryClass.CYLINDER:
        if bounds.u is None or bounds.v is None:
            warnings.append("Cylinder feature missing radial (u, v) bounds")
    elif geometry_class == GeometryClass.PLANE:
        if bounds.w is None and bounds.alpha is None and bounds.beta is None:
            warnings.append("Plane feature has no bounds - expected w, alpha, or beta")
    elif geometry_class in (GeometryClass.SPHERE, GeometryClass.POINT):
        if bounds.u is None and bounds.v is None and bounds.w is None:
            warnings.append("Point/Sphere feature missing positional (u, v, w) bounds")
    return warnings


def _dof_approx_equal(a: Optional[Bound], b: Optional[Bound], epsilon: float) -> bool:
    if a is None or b is None:
        return a is None and b is None
    return abs(a[0] - b[0]) < epsilon and abs(a[1] - b[1]) < epsilon


def bounds_approx_equal(a: TorsorBounds, b: TorsorBounds, epsilon: float = STALE_EPSILON) -> bool:
    """True if both sets populate the same DOFs with limits within ``epsilon``."""
    return all(_dof_approx_equal(x, y, epsilon) for x, y in zip(a.as_tuple(), b.as_tuple()))


def check_stale_bounds(
    stored: Optional[TorsorBounds],
    computed: TorsorBounds,
    epsilon: float = STALE_EPSILON,
) -> Optional[str]:
    """Describe how stored bounds disagree with freshly computed ones.

    Returns None when they agree, or when nothing is stored and nothing
    can be computed.
    """
    if stored is not None:
        if bounds_approx_equal(stored, computed, epsilon):
            return None
        return "stored torsor bounds differs from computed bounds"
    if not computed.is_empty:
        return "torsor bounds not set but can be computed from GD&T"
    return None


# ---------------------------------------------------------------------------
# GD&T to bounds
# ---------------------------------------------------------------------------

_ANGULAR_SYMBOLS = (
    GdtSymbol.PERPENDICULARITY, GdtSymbol.PARALLELISM, GdtSymbol.ANGULARITY,
)
_RUNOUT_LIKE = (GdtSymbol.RUNOUT, GdtSymbol.TOTAL_RUNOUT, GdtSymbol.CYLINDRICITY)


def effective_tolerance(
    control: GdtControl,
    dimension: Optional[Dimension],
    actual_size: Optional[float],
) -> tuple[float, bool]:
    """Control value plus bonus; returns (effective, has_bonus).

    Bonus is the departure of the actual size from the MMC (or LMC)
    size, and applies only with a dimension and an actual size.
    """
    if dimension is None or actual_size is None:
        return control.value, False
    if control.material_condition == MaterialCondition.MMC:
        bonus = abs(actual_size - dimension.mmc)
    elif control.material_condition == MaterialCondition.LMC:
        bonus = abs(actual_size - dimension.lmc)
    else:
        return control.value, False
    return control.value + bonus, bonus > 0.0


def _symmetric(half: float) -> Bound:
    return (-half, half)


def _angular_bound(
    control: GdtControl,
    effective: float,
    geometry: Optional[FeatureGeometry],
    warnings: list[str],
) -> Optional[Bound]:
    """Angular bound effective/length, or None when no geometry is known."""
    label = control.symbol.value.replace("_", " ").capitalize()
    if geometry is None:
        warnings.append(
            f"{label} GD&T requires feature geometry length for angular bound "
            "calculation; angular bound skipped")
        return None
    length = geometry.length
    if length is None:
        length = DEFAULT_CHARACTERISTIC_LENGTH
        warnings.append(
            f"{label} GD&T has no characteristic length; "
            f"using default {DEFAULT_CHARACTERISTIC_LENGTH:g} mm")
    return _symmetric(effective / length)


def bounds_for_control(
    control: GdtControl,
    geometry_class: GeometryClass,
    geometry: Optional[FeatureGeometry] = None,
    dimension: Optional[Dimension] = None,
    actual_size: Optional[float] = None,
) -> GdtBoundsResult:
    """Torsor bounds implied by a single GD&T control.

    Linear zones map to +/- half the effective tolerance on translational
    DOFs; orientation zones map to +/- effective/length on alpha and beta.
    """
    eff, has_bonus = effective_tolerance(control, dimension, actual_size)
    half = _symmetric(eff / 2.0)
    warnings: list[str] = []
    dofs: dict[int, Bound] = {}
    symbol = control.symbol

    def radial():
        dofs[DOF_U] = half
        dofs[DOF_V] = half

    def spatial():
        radial()
        dofs[DOF_W] = half

    def angular():
        b = _angular_bound(control, eff, geometry, warnings)
        if b is not None:
            dofs[DOF_ALPHA] = b
            dofs[DOF_BETA] = b

    if symbol == GdtSymbol.POSITION:
        if geometry_class in (GeometryClass.SPHERE, GeometryClass.POINT, GeometryClass.COMPLEX):
            spatial()
        else:
            radial()
    elif symbol in _ANGULAR_SYMBOLS:
        angular()
    elif symbol == GdtSymbol.FLATNESS:
        dofs[DOF_W] = half
    elif symbol in (GdtSymbol.CONCENTRICITY, GdtSymbol.CIRCULARITY, GdtSymbol.PROFILE_LINE):
        radial()
    elif symbol in _RUNOUT_LIKE:
        if symbol == GdtSymbol.TOTAL_RUNOUT:
            spatial()
        else:
            radial()
        angular()
    elif symbol == GdtSymbol.PROFILE_SURFACE:
        if geometry_class == GeometryClass.PLANE:
            dofs[DOF_W] = half
        elif geometry_class in (GeometryClass.CYLINDER, GeometryClass.CONE):
            radial()
        else:
            spatial()
    elif symbol == GdtSymbol.STRAIGHTNESS:
        if geometry_class in (GeometryClass.CYLINDER, GeometryClass.LINE):
            angular()
        else:
            dofs[DOF_W] = half
    elif symbol == GdtSymbol.SYMMETRY:
        dofs[DOF_U] = half
    else:
        raise ValueError(f"Unknown GD&T symbol: {symbol}")

    bounds = TorsorBounds.from_sequence([dofs.get(d) for d in ALL_DOFS])
    return GdtBoundsResult(bounds=bounds, warnings=warnings, has_bonus=has_bonus)


def bounds_from_dimension(
    dimension: Dimension,
    geometry_class: GeometryClass,
    geometry: Optional[FeatureGeometry] = None,
) -> TorsorBounds:
    """Bounds derived from a plain dimensional tolerance band.

    Diametral features (cylinder, cone, sphere, point, line) take the
    radius of half the band; planes take half the band along w.
    """
    half_band = dimension.tolerance_band / 2.0
    radius = _symmetric(half_band / 2.0)
    full = _symmetric(half_band)
    if geometry_class in (GeometryClass.CYLINDER, GeometryClass.CONE, GeometryClass.LINE):
        return TorsorBounds(u=radius, v=radius)
    if geometry_class in (GeometryClass.SPHERE, GeometryClass.POINT):
        return TorsorBounds(u=radius, v=radius, w=radius)
    if geometry_class == GeometryClass.PLANE:
        return TorsorBounds(w=full)
    if geometry is not None:
        return TorsorBounds(w=full)
    return TorsorBounds(u=full, v=full, w=full)


def compute_torsor_bounds(feature: Feature, actual_size: Optional[float] = None) -> GdtBoundsResult:
    """Merge the bounds of every control on a feature.

    Without controls the primary dimension's tolerance band is used, with
    a warning. The merged bounds are then checked against the geometry.
    """
    geometry_class = feature.geometry_class or GeometryClass.COMPLEX
    dimension = feature.primary_dimension

    per_control = [
        bounds_for_control(c, geometry_class, feature.geometry, dimension, actual_size)
        for c in feature.controls
    ]
    bounds = merge_all(r.bounds for r in per_control)
    warnings = [w for r in per_control for w in r.warnings]
    has_bonus = any(r.has_bonus for r in per_control)

    if not feature.controls and dimension is not None:
        bounds = merge_bounds(bounds, bounds_from_dimension(dimension, geometry_class, feature.geometry))
        warnings.append("Torsor bounds computed from dimensional tolerance (no GD&T)")

    warnings.extend(validate_bounds_for_geometry(bounds, geometry_class))
    return GdtBoundsResult(bounds=bounds, warnings=warnings, has_bonus=has_bonus)
