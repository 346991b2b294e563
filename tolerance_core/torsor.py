"""Small-displacement torsor (SDT) propagation through 3-D chains.

A torsor is the six-component deviation [u, v, w, alpha, beta, gamma]
of a feature: three translations and three small rotations (radians).
Each chain contributor carries per-DOF bounds that are carried to the
assembly origin through a 6x6 Jacobian and combined by worst-case, RSS,
or Monte Carlo propagation.

Invariance classes follow the usual SDT convention: a feature's nominal
geometry constrains some DOFs (a plane fixes w, alpha, beta) and leaves
the rest free (a plane may slide in u, v and spin in gamma).
"""

from __future__ import annotations

import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, Sequence

import numpy as np

from tolerance_core.models import DEFAULT_MC_ITERATIONS, DEFAULT_SIGMA_LEVEL, Distribution
from tolerance_core.statistics import make_rng, sample_distribution, spawn_streams


DOF_U = 0
DOF_V = 1
DOF_W = 2
DOF_ALPHA = 3
DOF_BETA = 4
DOF_GAMMA = 5

DOF_NAMES = ("u", "v", "w", "alpha", "beta", "gamma")
ALL_DOFS = (DOF_U, DOF_V, DOF_W, DOF_ALPHA, DOF_BETA, DOF_GAMMA)

Bound = tuple[float, float]


class GeometryClass(Enum):
    """Nominal feature geometry, which determines its invariance class."""
    PLANE = "plane"
    CYLINDER = "cylinder"
    CONE = "cone"
    SPHERE = "sphere"
    POINT = "point"
    LINE = "line"
    COMPLEX = "complex"


_CONSTRAINED_DOF: dict[GeometryClass, tuple[int, ...]] = {
    GeometryClass.PLANE: (DOF_W, DOF_ALPHA, DOF_BETA),
    GeometryClass.CYLINDER: (DOF_U, DOF_V, DOF_ALPHA, DOF_BETA),
    GeometryClass.SPHERE: (DOF_U, DOF_V, DOF_W),
    GeometryClass.CONE: (DOF_U, DOF_V, DOF_W, DOF_ALPHA, DOF_BETA),
    GeometryClass.POINT: (DOF_U, DOF_V, DOF_W),
    GeometryClass.LINE: (DOF_U, DOF_V),
    GeometryClass.COMPLEX: (),
}


def constrained_dof(geometry_class: GeometryClass) -> list[int]:
    """DOFs in which a feature of this class can deviate (and be toleranced)."""
    return list(_CONSTRAINED_DOF[geometry_class])


def free_dof(geometry_class: GeometryClass) -> list[int]:
    """DOFs that leave the feature geometry invariant."""
    constrained = _CONSTRAINED_DOF[geometry_class]
    return [d for d in ALL_DOFS if d not in constrained]


# ---------------------------------------------------------------------------
# Bounds
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TorsorBounds:
    """Optional [min, max] bound per DOF.

    An absent bound (None) means the DOF is unconstrained by this source.
    It is distinct from a present (0.0, 0.0) bound.
    """
    u: Optional[Bound] = None
    v: Optional[Bound] = None
    w: Optional[Bound] = None
    alpha: Optional[Bound] = None
    beta: Optional[Bound] = None
    gamma: Optional[Bound] = None

    def __post_init__(self) -> None:
        for name in DOF_NAMES:
            b = getattr(self, name)
            if b is None:
                continue
            lo, hi = float(b[0]), float(b[1])
            if lo > hi:
                raise ValueError(f"Bound on {name} has min {lo} > max {hi}")
            object.__setattr__(self, name, (lo, hi))

    @classmethod
    def from_sequence(cls, bounds: Sequence[Optional[Bound]]) -> TorsorBounds:
        """Build from six optional bounds in DOF order."""
        if len(bounds) != 6:
            raise ValueError(f"Expected 6 bounds, got {len(bounds)}")
        return cls(**dict(zip(DOF_NAMES, bounds)))

    def get(self, dof: int) -> Optional[Bound]:
        return getattr(self, DOF_NAMES[dof])

    def with_dof(self, dof: int, bound: Optional[Bound]) -> TorsorBounds:
        return replace(self, **{DOF_NAMES[dof]: bound})

    def as_tuple(self) -> tuple[Optional[Bound], ...]:
        return tuple(self.get(d) for d in ALL_DOFS)

    def present_dofs(self) -> list[int]:
        return [d for d in ALL_DOFS if self.get(d) is not None]

    @property
    def is_empty(self) -> bool:
        return not self.present_dofs()

    def as_array(self) -> np.ndarray:
        """(6, 2) array of [min, max]; absent DOFs contribute [0, 0]."""
        arr = np.zeros((6, 2))
        for d in ALL_DOFS:
            b = self.get(d)
            if b is not None:
                arr[d] = b
        return arr

    def to_dict(self) -> dict:
        return {name: list(b) for name, b in zip(DOF_NAMES, self.as_tuple()) if b is not None}

    @classmethod
    def from_dict(cls, d: dict) -> TorsorBounds:
        return cls(**{name: tuple(d[name]) for name in DOF_NAMES if d.get(name) is not None})

    def __str__(self) -> str:
        parts = [f"{name}=[{b[0]:+.6g}, {b[1]:+.6g}]"
                 for name, b in zip(DOF_NAMES, self.as_tuple()) if b is not None]
        return "TorsorBounds(" + ", ".join(parts) + ")"


# ---------------------------------------------------------------------------
# Chain contributors and results
# ---------------------------------------------------------------------------

@dataclass
class ChainContributor3D:
    """A node in a 3-D tolerance chain.

    Attributes:
        name: Contributor name.
        geometry_class: Nominal geometry of the feature.
        position: Feature location in assembly coordinates.
        bounds: Resolved torsor bounds.
        distribution: Distribution used for Monte Carlo sampling.
        sigma_level: Sigma span of each bound range.
        feature_id: Optional reference to the feature record.
    """
    name: str
    geometry_class: GeometryClass
    position: tuple[float, float, float] = (0.0, 0.0, 0.0)
    bounds: TorsorBounds = field(default_factory=TorsorBounds)
    distribution: Distribution = Distribution.NORMAL
    sigma_level: float = DEFAULT_SIGMA_LEVEL
    feature_id: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.sigma_level > 0.0:
            raise ValueError(f"sigma_level must be positive, got {self.sigma_level}")
        if len(self.position) != 3:
            raise ValueError(f"position must have 3 components, got {len(self.position)}")


@dataclass(frozen=True)
class TorsorStats:
    """Statistics of one result DOF."""
    wc_min: float = 0.0
    wc_max: float = 0.0
    rss_mean: float = 0.0
    rss_3sigma: float = 0.0
    mc_mean: Optional[float] = None
    mc_std_dev: Optional[float] = None


@dataclass(frozen=True)
class ResultTorsor:
    """Per-DOF statistics of a propagated chain."""
    u: TorsorStats = field(default_factory=TorsorStats)
    v: TorsorStats = field(default_factory=TorsorStats)
    w: TorsorStats = field(default_factory=TorsorStats)
    alpha: TorsorStats = field(default_factory=TorsorStats)
    beta: TorsorStats = field(default_factory=TorsorStats)
    gamma: TorsorStats = field(default_factory=TorsorStats)

    @classmethod
    def from_stats(cls, stats: Sequence[TorsorStats]) -> ResultTorsor:
        return cls(**dict(zip(DOF_NAMES, stats)))

    def __getitem__(self, dof: int) -> TorsorStats:
        return getattr(self, DOF_NAMES[dof])

    def stats(self) -> list[TorsorStats]:
        return [self[d] for d in ALL_DOFS]

    def summary(self) -> str:
        lines = [
            "=== 3D Result Torsor ===",
            f"  {'DOF':6s} {'WC min':>12s} {'WC max':>12s} {'RSS mean':>12s} "
            f"{'RSS 3s':>12s} {'MC mean':>12s} {'MC std':>12s}",
        ]
        for name, s in zip(DOF_NAMES, self.stats()):
            mc_mean = f"{s.mc_mean:12.6g}" if s.mc_mean is not None else f"{'-':>12s}"
            mc_std = f"{s.mc_std_dev:12.6g}" if s.mc_std_dev is not None else f"{'-':>12s}"
            lines.append(
                f"  {name:6s} {s.wc_min:12.6g} {s.wc_max:12.6g} {s.rss_mean:12.6g} "
                f"{s.rss_3sigma:12.6g} {mc_mean} {mc_std}")
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Jacobian
# ---------------------------------------------------------------------------

def build_jacobian(position: Sequence[float]) -> np.ndarray:
    """6x6 transform carrying a torsor at ``position`` to the origin.

    Identity except for the upper-right skew block coupling rotation
    into translation at the lever arm [x, y, z].
    """
    x, y, z = (float(p) for p in position)
    j = np.eye(6)
    j[0, 4] = z
    j[0, 5] = -y
    j[1, 3] = -z
    j[1, 5] = x
    j[2, 3] = y
    j[2, 4] = -x
    return j


def build_projection_vector(direction: Sequence[float]) -> np.ndarray:
    """Row vector projecting a torsor onto a 3-D functional direction.

    Translation weights are the normalized direction and rotation
    weights are zero. A zero direction falls back to +X.
    """
    d = np.asarray(direction, dtype=float)
    norm = float(np.linalg.norm(d))
    if norm < 1e-12:
        d = np.array([1.0, 0.0, 0.0])
    else:
        d = d / norm
    return np.concatenate([d, np.zeros(3)])


# ---------------------------------------------------------------------------
# Worst-case propagation
# ---------------------------------------------------------------------------

def propagate_worst_case(contributors: Sequence[ChainContributor3D]) -> TorsorBounds:
    """Interval sum of every contributor's bounds through its Jacobian.

    Absent input bounds contribute nothing. Every output DOF is present.
    """
    lo = np.zeros(6)
    hi = np.zeros(6)
    for c in contributors:
        j = build_jacobian(c.position)
        b = c.bounds.as_array()
        a = j * b[:, 0]
        bb = j * b[:, 1]
        lo += np.minimum(a, bb).sum(axis=1)
        hi += np.maximum(a, bb).sum(axis=1)
    return TorsorBounds.from_sequence([(float(lo[d]), float(hi[d])) for d in ALL_DOFS])


# ---------------------------------------------------------------------------
# RSS propagation
# ---------------------------------------------------------------------------

def propagate_rss(
    contributors: Sequence[ChainContributor3D],
) -> tuple[ResultTorsor, list[tuple[float, ...]]]:
    """Statistical propagation of bound centers and variances.

    Each bound range spans ``sigma_level`` standard deviations. Returns
    the result torsor (RSS fields filled) and, per contributor, the
    percent variance share of each output DOF (0 where the total is 0).
    """
    mean = np.zeros(6)
    per_contributor = []
    for c in contributors:
        j = build_jacobian(c.position)
        b = c.bounds.as_array()
        center = b.mean(axis=1)
        sigma = (b[:, 1] - b[:, 0]) / c.sigma_level
        mean += j @ center
        per_contributor.append((j ** 2) @ (sigma ** 2))

    variance = np.sum(per_contributor, axis=0) if per_contributor else np.zeros(6)
    result = ResultTorsor.from_stats([
        TorsorStats(rss_mean=float(mean[d]), rss_3sigma=3.0 * math.sqrt(variance[d]))
        for d in ALL_DOFS
    ])

    sensitivity = []
    for var in per_contributor:
        pct = np.divide(var * 100.0, variance, out=np.zeros(6), where=variance > 0.0)
        sensitivity.append(tuple(float(p) for p in pct))
    return result, sensitivity


# ---------------------------------------------------------------------------
# Monte Carlo propagation
# ---------------------------------------------------------------------------

def _sample_torsors(
    rng: np.random.Generator,
    contributor: ChainContributor3D,
    size: int,
) -> np.ndarray:
    """(size, 6) sampled torsors; absent DOFs are fixed at zero."""
    b = contributor.bounds.as_array()
    out = np.empty((size, 6))
    for d in ALL_DOFS:
        lo, hi = b[d]
        out[:, d] = sample_distribution(
            rng, contributor.distribution,
            center=(lo + hi) / 2.0,
            band=hi - lo,
            sigma_level=contributor.sigma_level,
            size=size,
        )
    return out


def _run_chunk(
    contributors: Sequence[ChainContributor3D],
    rng: np.random.Generator,
    size: int,
) -> tuple[int, np.ndarray, np.ndarray]:
    """Simulate ``size`` assemblies; return (count, mean, sum of squared deviations)."""
    totals = np.zeros((size, 6))
    for c in contributors:
        j = build_jacobian(c.position)
        totals += _sample_torsors(rng, c, size) @ j.T
    if size == 0:
        return 0, np.zeros(6), np.zeros(6)
    mean = totals.mean(axis=0)
    m2 = ((totals - mean) ** 2).sum(axis=0)
    return size, mean, m2


def _merge_chunks(
    chunks: Sequence[tuple[int, np.ndarray, np.ndarray]],
) -> tuple[int, np.ndarray, np.ndarray]:
    """Pairwise-update merge of chunk moments, in chunk order."""
    n = 0
    mean = np.zeros(6)
    m2 = np.zeros(6)
    for nb, mean_b, m2_b in chunks:
        if nb == 0:
            continue
        total = n + nb
        delta = mean_b - mean
        mean = mean + delta * (nb / total)
        m2 = m2 + m2_b + delta ** 2 * (n * nb / total)
        n = total
    return n, mean, m2


def monte_carlo_3d(
    contributors: Sequence[ChainContributor3D],
    iterations: int = DEFAULT_MC_ITERATIONS,
    rng: Optional[np.random.Generator] = None,
    seed: Optional[int] = None,
    streams: int = 1,
    max_workers: Optional[int] = None,
) -> ResultTorsor:
    """Monte Carlo propagation of sampled torsors through the chain.

    Args:
        contributors: Chain contributors.
        iterations: Number of simulated assemblies.
        rng: Random generator.
        seed: Seed used when no generator is given.
        streams: Number of chunks, each drawing from its own child
            generator. Moments are merged in chunk order, so a given
            seed and stream count always reproduce the same result.
        max_workers: Run chunks on a thread pool when > 1.

    Returns:
        ResultTorsor with ``mc_mean`` and ``mc_std_dev`` (population
        standard deviation) filled for every DOF.
    """
    if iterations < 1:
        raise ValueError(f"iterations must be at least 1, got {iterations}")
    rng = make_rng(rng, seed)

    if streams == 1:
        chunks = [_run_chunk(contributors, rng, iterations)]
    else:
        children = spawn_streams(rng, streams)
        base, extra = divmod(iterations, streams)
        sizes = [base + (1 if i < extra else 0) for i in range(streams)]
        if max_workers is not None and max_workers > 1:
            with ThreadPoolExecutor(max_workers=max_workers) as ex:
                chunks = list(ex.map(
                    lambda args: _run_chunk(contributors, *args), zip(children, sizes)))
        else:
            chunks = [_run_chunk(contributors, g, s) for g, s in zip(children, sizes)]

    n, mean, m2 = _merge_chunks(chunks)
    std = np.sqrt(m2 / n)
    return ResultTorsor.from_stats([
        TorsorStats(mc_mean=float(mean[d]), mc_std_dev=float(std[d])) for d in ALL_DOFS
    ])


# ---------------------------------------------------------------------------
# Result merging
# ---------------------------------------------------------------------------

def merge_wc_into_result(result: ResultTorsor, wc: TorsorBounds) -> ResultTorsor:
    """Copy of ``result`` with worst-case limits from every present bound."""
    stats = result.stats()
    for d in ALL_DOFS:
        b = wc.get(d)
        if b is not None:
            stats[d] = replace(stats[d], wc_min=b[0], wc_max=b[1])
    return ResultTorsor.from_stats(stats)


def merge_mc_into_result(result: ResultTorsor, mc: ResultTorsor) -> ResultTorsor:
    """Copy of ``result`` with the Monte Carlo fields of ``mc``."""
    return ResultTorsor.from_stats([
        replace(s, mc_mean=m.mc_mean, mc_std_dev=m.mc_std_dev)
        for s, m in zip(result.stats(), mc.stats())
    ])
