"""Tests for the 1-D stack-up analysis engine."""

import math

import numpy as np
import pytest

from tolerance_core.analysis import (
    AnalysisResult,
    analyze_stack,
    classify_margin,
    monte_carlo,
    rss,
    worst_case,
)
from tolerance_core.models import (
    Contributor,
    Dimension,
    Direction,
    Distribution,
    GdtContribution,
    Stackup,
    Target,
)


def _dim(nominal, plus, minus, **kw) -> Dimension:
    return Dimension(name="d", nominal=nominal, plus_tol=plus, minus_tol=minus, **kw)


def _simple_stack(lower=0.7, upper=1.3) -> Stackup:
    """Two-part stack: housing minus shaft = gap."""
    stack = Stackup(name="Simple", target=Target("Gap", 1.0, lower, upper))
    stack.add(Contributor("Housing", _dim(10.0, 0.1, 0.1)))
    stack.add(Contributor("Shaft", _dim(9.0, 0.05, 0.05), direction=Direction.NEGATIVE))
    return stack


def _pin_in_hole(hole_plus=0.015) -> Stackup:
    """H7 hole over an f7 pin."""
    stack = Stackup(name="Pin in hole", target=Target("Gap", 2.0, 0.0, 3.0))
    stack.add(Contributor("Hole", _dim(10.0, hole_plus, 0.0, internal=True)))
    stack.add(Contributor("Pin", _dim(8.0, 0.0, 0.009), direction=Direction.NEGATIVE))
    return stack


class TestWorstCase:
    def test_simple_range(self):
        r = worst_case(_simple_stack())
        # 1.0 -/+ (0.1 + 0.05)
        assert r.min == pytest.approx(0.85)
        assert r.max == pytest.approx(1.15)
        assert r.margin == pytest.approx(0.15)
        assert r.result == AnalysisResult.PASS

    def test_asymmetric_tolerance(self):
        stack = Stackup(name="Asym", target=Target("T", 10.0, 9.0, 11.0))
        stack.add(Contributor("Part", _dim(10.0, 0.2, 0.1)))
        r = worst_case(stack)
        assert r.min == pytest.approx(9.9)
        assert r.max == pytest.approx(10.2)

    def test_negative_direction_swaps_limits(self):
        stack = Stackup(name="Neg", target=Target("T", -10.0, -11.0, -9.0))
        stack.add(Contributor("Part", _dim(10.0, 0.2, 0.1), direction=Direction.NEGATIVE))
        r = worst_case(stack)
        assert r.min == pytest.approx(-10.2)
        assert r.max == pytest.approx(-9.9)

    def test_marginal(self):
        r = worst_case(_simple_stack(lower=0.82, upper=1.2))
        # margin 0.03 <= 10% of 0.38
        assert r.margin == pytest.approx(0.03)
        assert r.result == AnalysisResult.MARGINAL

    def test_fail(self):
        r = worst_case(_simple_stack(lower=0.9, upper=1.1))
        assert r.margin == pytest.approx(-0.05)
        assert r.result == AnalysisResult.FAIL

    def test_classify_zero_margin_fails(self):
        assert classify_margin(0.0, 1.0) == AnalysisResult.FAIL
        assert classify_margin(0.1, 1.0) == AnalysisResult.MARGINAL
        assert classify_margin(0.11, 1.0) == AnalysisResult.PASS

    def test_pin_in_hole(self):
        r = worst_case(_pin_in_hole())
        assert r.min == pytest.approx(2.0)
        assert r.max == pytest.approx(2.024)
        assert r.result == AnalysisResult.PASS

    def test_pin_in_exact_hole(self):
        r = worst_case(_pin_in_hole(hole_plus=0.0))
        assert r.min == pytest.approx(2.0)
        assert r.max == pytest.approx(2.009)
        assert r.result == AnalysisResult.PASS

    def test_nominal(self):
        assert _simple_stack().nominal == pytest.approx(1.0)
        assert worst_case(_simple_stack()).nominal == pytest.approx(1.0)
        assert worst_case(_pin_in_hole()).nominal == pytest.approx(2.0)

    def test_summary(self):
        text = worst_case(_simple_stack()).summary()
        assert "Nominal:  +1.000000" in text
        assert "Worst-Case" in text
        assert "PASS" in text


class TestRSS:
    def test_simple(self):
        r = rss(_simple_stack())
        var = (0.2 / 6.0) ** 2 + (0.1 / 6.0) ** 2
        assert r.mean == pytest.approx(1.0)
        assert r.sigma == pytest.approx(math.sqrt(var))
        assert r.sigma_3 == pytest.approx(3.0 * math.sqrt(var))
        assert r.cp == pytest.approx(0.6 / (6.0 * math.sqrt(var)))
        assert r.cpk == pytest.approx(r.cp)
        assert r.shifted_mean is None

    def test_pin_in_hole(self):
        # (10 + 0.0075) - (8 - 0.0045)
        r = rss(_pin_in_hole())
        assert r.mean == pytest.approx(2.012)
        assert r.yield_percent > 99.0

    def test_sensitivity(self):
        r = rss(_simple_stack())
        assert r.sensitivity == pytest.approx([80.0, 20.0])
        assert sum(r.sensitivity) == pytest.approx(100.0)

    def test_equal_variances_share_equally(self):
        stack = Stackup(name="Eq", target=Target("T", 4.0, 3.0, 5.0))
        for i in range(4):
            stack.add(Contributor(f"P{i}", _dim(1.0, 0.05, 0.05)))
        r = rss(stack)
        for pct in r.sensitivity:
            assert pct == pytest.approx(25.0, abs=0.1)

    def test_yield_centered(self):
        r = rss(_simple_stack())
        assert r.yield_percent == pytest.approx(100.0, abs=1e-6)

    def test_yield_matches_normal(self):
        # Single part, sigma = 0.1, window +/- 1 sigma
        stack = Stackup(name="Y", target=Target("T", 1.0, 0.9, 1.1))
        stack.add(Contributor("P", _dim(1.0, 0.3, 0.3)))
        r = rss(stack)
        assert r.sigma == pytest.approx(0.1)
        assert r.yield_percent == pytest.approx(68.27, abs=0.01)
        assert r.margin == pytest.approx(0.1 - 0.3)

    def test_asymmetric_process_mean(self):
        stack = Stackup(name="Asym", target=Target("T", 10.0, 9.0, 11.0))
        stack.add(Contributor("Part", _dim(10.0, 0.2, 0.0)))
        r = rss(stack)
        assert r.mean == pytest.approx(10.1)

    def test_negative_direction_mean(self):
        stack = Stackup(name="Neg", target=Target("T", -10.0, -11.0, -9.0))
        stack.add(Contributor("Part", _dim(10.0, 0.2, 0.0), direction=Direction.NEGATIVE))
        assert rss(stack).mean == pytest.approx(-10.1)

    def test_zero_variance(self):
        stack = Stackup(name="Zero", target=Target("T", 1.0, 0.0, 2.0))
        stack.add(Contributor("P", _dim(1.0, 0.0, 0.0)))
        r = rss(stack)
        assert r.sigma == 0.0
        assert math.isinf(r.cp) and r.cp > 0
        assert math.isinf(r.cpk) and r.cpk > 0
        assert r.sensitivity == []
        assert r.yield_percent == pytest.approx(100.0)

    def test_gdt_widens_band(self):
        stack = Stackup(name="GDT", target=Target("T", 10.0, 9.0, 11.0), include_gdt=True)
        stack.add(Contributor(
            "Hole", _dim(10.0, 0.1, 0.1, internal=True),
            gdt_position=GdtContribution(position_tolerance=0.1),
        ))
        r = rss(stack)
        assert r.sigma == pytest.approx(0.3 / 6.0)

    def test_gdt_ignored_without_flag(self):
        stack = Stackup(name="GDT", target=Target("T", 10.0, 9.0, 11.0))
        stack.add(Contributor(
            "Hole", _dim(10.0, 0.1, 0.1, internal=True),
            gdt_position=GdtContribution(position_tolerance=0.1),
        ))
        assert rss(stack).sigma == pytest.approx(0.2 / 6.0)

    def test_gdt_bonus(self):
        stack = Stackup(name="Bonus", target=Target("T", 10.0, 9.0, 11.0), include_gdt=True)
        stack.add(Contributor(
            "Hole", _dim(10.0, 0.1, 0.0, internal=True),
            gdt_position=GdtContribution(position_tolerance=0.1, actual_size=10.05),
        ))
        # band 0.1 + position 0.1 + bonus 0.05
        assert rss(stack).sigma == pytest.approx(0.25 / 6.0)

    def test_sigma_level(self):
        stack = _simple_stack()
        stack.sigma_level = 4.0
        var = (0.2 / 4.0) ** 2 + (0.1 / 4.0) ** 2
        assert rss(stack).sigma == pytest.approx(math.sqrt(var))


class TestMeanShift:
    def _stack(self, k: float) -> Stackup:
        # sigma = 0.6 / 6 = 0.1, mean 0.7 sits nearer the lower limit
        stack = Stackup(name="Shift", target=Target("T", 1.0, 0.0, 2.0), mean_shift_k=k)
        stack.add(Contributor("P", _dim(0.7, 0.3, 0.3)))
        return stack

    def test_default_no_shift(self):
        r = rss(self._stack(0.0))
        assert r.shifted_mean is None
        assert r.cpk == pytest.approx(0.7 / 0.3)

    def test_shift_toward_nearest_limit(self):
        r = rss(self._stack(1.0))
        assert r.shifted_mean == pytest.approx(0.6)
        assert r.shifted_mean < r.mean

    def test_shift_toward_upper_limit(self):
        stack = Stackup(name="Up", target=Target("T", 1.0, 0.0, 2.0), mean_shift_k=1.0)
        stack.add(Contributor("P", _dim(1.3, 0.3, 0.3)))
        r = rss(stack)
        assert r.shifted_mean == pytest.approx(1.4)

    def test_shift_reduces_cpk(self):
        plain = rss(self._stack(0.0))
        shifted = rss(self._stack(1.5))
        assert shifted.cpk < plain.cpk
        assert shifted.cpk == pytest.approx((0.7 - 0.15) / 0.3)

    def test_yield_uses_unshifted_mean(self):
        plain = rss(self._stack(0.0))
        shifted = rss(self._stack(1.5))
        assert shifted.mean == pytest.approx(plain.mean)
        assert shifted.yield_percent == pytest.approx(plain.yield_percent)
        assert shifted.cp == pytest.approx(plain.cp)

    def test_negative_k_rejected(self):
        with pytest.raises(ValueError, match="mean_shift_k"):
            self._stack(-1.0)


class TestMonteCarlo:
    def test_pin_in_hole(self):
        r = monte_carlo(_pin_in_hole(), iterations=10_000, seed=42)
        assert r.mean == pytest.approx(2.012, abs=0.1)
        assert r.yield_percent > 99.0

    def test_statistics(self):
        r = monte_carlo(_simple_stack(), iterations=50_000, seed=1)
        expected_sigma = math.sqrt((0.2 / 6.0) ** 2 + (0.1 / 6.0) ** 2)
        assert r.mean == pytest.approx(1.0, abs=0.002)
        assert r.std_dev == pytest.approx(expected_sigma, rel=0.03)
        assert r.min <= r.percentile_2_5 <= r.mean <= r.percentile_97_5 <= r.max
        assert r.pp == pytest.approx(0.6 / (6.0 * r.std_dev))
        assert r.ppk == pytest.approx(min(1.3 - r.mean, r.mean - 0.7) / (3.0 * r.std_dev))

    def test_sample_std(self):
        r = monte_carlo(_simple_stack(), iterations=1_000, seed=3)
        assert r.std_dev == pytest.approx(float(np.std(r.samples, ddof=1)))

    def test_percentile_rule(self):
        r = monte_carlo(_simple_stack(), iterations=1_000, seed=3)
        assert r.percentile_2_5 == r.samples[25]
        assert r.percentile_97_5 == r.samples[975]

    def test_reproducible(self):
        a = monte_carlo(_simple_stack(), iterations=500, seed=9)
        b = monte_carlo(_simple_stack(), iterations=500, rng=np.random.default_rng(9))
        assert a.mean == b.mean
        np.testing.assert_array_equal(a.samples, b.samples)

    def test_zero_spread(self):
        stack = Stackup(name="Zero", target=Target("T", 1.0, 0.0, 2.0))
        stack.add(Contributor("P", _dim(1.0, 0.0, 0.0)))
        r = monte_carlo(stack, iterations=100, seed=0)
        assert r.std_dev == 0.0
        assert r.pp is None
        assert r.ppk is None
        assert r.yield_percent == 100.0

    def test_uniform_distribution(self):
        stack = Stackup(name="U", target=Target("T", 1.0, 0.0, 2.0))
        stack.add(Contributor("P", _dim(1.0, 0.1, 0.1), distribution=Distribution.UNIFORM))
        r = monte_carlo(stack, iterations=10_000, seed=2)
        assert r.min >= 0.9
        assert r.max <= 1.1

    def test_distribution_override(self):
        stack = Stackup(name="T", target=Target("T", 1.0, 0.0, 2.0))
        dim = _dim(1.0, 0.1, 0.1, distribution=Distribution.UNIFORM)
        stack.add(Contributor("P", dim, distribution=Distribution.TRIANGULAR))
        r = monte_carlo(stack, iterations=20_000, seed=2)
        assert r.std_dev == pytest.approx(0.2 / math.sqrt(24.0), rel=0.03)

    def test_rejects_zero_iterations(self):
        with pytest.raises(ValueError, match="iterations"):
            monte_carlo(_simple_stack(), iterations=0)


class TestAnalyzeStack:
    def test_all_methods(self):
        results = analyze_stack(_simple_stack(), iterations=1_000, seed=0)
        assert results.worst_case is not None
        assert results.rss is not None
        assert results.monte_carlo is not None
        assert "Monte Carlo" in results.summary()

    def test_selected_methods(self):
        results = analyze_stack(_simple_stack(), methods=["worst-case", "RSS"])
        assert results.worst_case is not None
        assert results.rss is not None
        assert results.monte_carlo is None

    def test_unknown_method(self):
        with pytest.raises(ValueError, match="Unknown analysis method"):
            analyze_stack(_simple_stack(), methods=["taguchi"])
