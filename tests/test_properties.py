"""Property-based tests for numerical invariants of the analyses."""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from tolerance_core.analysis import rss, worst_case
from tolerance_core.gdt import merge_bounds
from tolerance_core.models import Contributor, Dimension, Direction, Stackup, Target
from tolerance_core.statistics import normal_cdf, variance_shares
from tolerance_core.torsor import (
    ALL_DOFS,
    ChainContributor3D,
    GeometryClass,
    TorsorBounds,
    propagate_rss,
    propagate_worst_case,
)

EPS = 1e-9

# Values on a 1 micron grid keep variances clear of float underflow
finite = st.integers(min_value=-1000, max_value=1000).map(lambda i: i / 1000.0)
tol = st.integers(min_value=0, max_value=500).map(lambda i: i / 1000.0)


@st.composite
def bounds(draw):
    def one():
        return st.one_of(st.none(), st.tuples(finite, finite).map(lambda t: (min(t), max(t))))
    return TorsorBounds(*[draw(one()) for _ in ALL_DOFS])


@st.composite
def contributors(draw):
    dim = Dimension(
        "d",
        draw(st.floats(min_value=-50.0, max_value=50.0, allow_nan=False)),
        draw(tol),
        draw(tol),
    )
    direction = draw(st.sampled_from(list(Direction)))
    return Contributor("c", dim, direction)


@st.composite
def chain_contributors(draw):
    position = draw(st.tuples(finite, finite, finite).map(lambda p: tuple(10.0 * x for x in p)))
    return ChainContributor3D("c", GeometryClass.COMPLEX, position=position, bounds=draw(bounds()))


class TestMergeProperties:
    @given(bounds(), bounds())
    def test_commutative(self, a, b):
        assert merge_bounds(a, b) == merge_bounds(b, a)

    @given(bounds(), bounds(), bounds())
    def test_associative(self, a, b, c):
        assert merge_bounds(merge_bounds(a, b), c) == merge_bounds(a, merge_bounds(b, c))

    @given(bounds())
    def test_idempotent(self, a):
        assert merge_bounds(a, a) == a

    @given(bounds())
    def test_empty_is_identity(self, a):
        assert merge_bounds(TorsorBounds(), a) == a

    @given(bounds(), bounds())
    def test_contains_both(self, a, b):
        m = merge_bounds(a, b)
        for d in ALL_DOFS:
            for src in (a.get(d), b.get(d)):
                if src is not None:
                    assert m.get(d)[0] <= src[0]
                    assert m.get(d)[1] >= src[1]


class TestNormalCdfProperties:
    @given(st.floats(min_value=-20.0, max_value=20.0, allow_nan=False))
    def test_symmetry(self, z):
        assert normal_cdf(z) + normal_cdf(-z) == pytest.approx(1.0, abs=1e-12)

    @given(st.floats(allow_nan=False))
    def test_range(self, z):
        assert 0.0 <= normal_cdf(z) <= 1.0


class TestStackProperties:
    @settings(max_examples=50)
    @given(st.lists(contributors(), min_size=1, max_size=6))
    def test_rss_mean_within_worst_case(self, items):
        stackup = Stackup("s", Target("t", 0.0, -1000.0, 1000.0), items)
        wc = worst_case(stackup)
        r = rss(stackup)
        assert wc.min - EPS <= r.mean <= wc.max + EPS
        assert r.sigma_3 <= (wc.max - wc.min) / 2.0 + EPS

    @given(st.lists(st.integers(min_value=0, max_value=10_000).map(float), min_size=1))
    def test_variance_shares_sum(self, variances):
        shares = variance_shares(variances)
        if sum(variances) > 0.0:
            assert sum(shares) == pytest.approx(100.0)
        else:
            assert shares == []


class TestChainProperties:
    @settings(max_examples=50)
    @given(st.lists(chain_contributors(), min_size=1, max_size=4))
    def test_rss_mean_within_worst_case(self, chain):
        wc = propagate_worst_case(chain)
        result, sensitivity = propagate_rss(chain)
        for d in ALL_DOFS:
            lo, hi = wc.get(d) or (0.0, 0.0)
            assert lo - EPS <= result[d].rss_mean <= hi + EPS
        for d in ALL_DOFS:
            total = sum(s[d] for s in sensitivity)
            assert total == pytest.approx(100.0) or total == 0.0
