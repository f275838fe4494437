"""
Tests for Intervals and Directed Rounding
"""

import numpy as np
import pytest
from rademacher_prover.bounds.interval import Interval, round_down, round_up, sum_down, sum_up


class TestRounding:
    """Test directed rounding primitives."""

    def test_round_down_is_below(self):
        """round_down moves one ulp towards -inf."""
        assert round_down(1.0) < 1.0
        assert round_down(1.0) == np.nextafter(1.0, -np.inf)

    def test_round_up_is_above(self):
        """round_up moves one ulp towards +inf."""
        assert round_up(1.0) > 1.0
        assert round_up(0.0) > 0.0

    def test_scalars_stay_python_floats(self):
        """Scalar input gives a plain float."""
        assert isinstance(round_up(0.5), float)
        assert isinstance(round_down(0.5), float)

    def test_vectorised(self):
        """Arrays are rounded elementwise."""
        values = np.array([0.0, 0.5, 1.0])
        up = round_up(values)
        down = round_down(values)
        assert up.shape == (3,)
        assert np.all(up > values)
        assert np.all(down < values)


class TestRoundedSums:
    """Test the rounded sums shared by propagation and search."""

    def test_encloses_exact_sum(self):
        """Ten copies of 0.1 straddle 1."""
        values = [0.1] * 10
        assert sum_down(values) <= 1.0 <= sum_up(values)

    def test_empty_sum(self):
        """The empty sum is exactly zero."""
        assert sum_down([]) == 0.0
        assert sum_up([]) == 0.0

    def test_numpy_slices(self):
        """Array slices are accepted and give plain floats."""
        values = np.array([0.5, 0.25, 0.125])
        assert isinstance(sum_up(values[:2]), float)
        assert sum_down(values[1:]) <= 0.375 <= sum_up(values[1:])

    def test_rounds_every_step(self):
        """Each addition moves the bound, even when the sum is exact."""
        assert sum_down([0.5, 0.25]) < 0.75
        assert sum_up([0.5, 0.25]) > 0.75


class TestInterval:
    """Test basic interval operations."""

    def test_creation(self):
        """Test interval creation."""
        iv = Interval(1.0, 2.0)
        assert iv.lo == 1.0
        assert iv.hi == 2.0

    def test_invalid(self):
        """lo > hi is rejected unless it is the canonical empty interval."""
        with pytest.raises(ValueError):
            Interval(2.0, 1.0)

    def test_empty_interval(self):
        """Test empty interval."""
        assert Interval.empty().is_empty
        assert not Interval(0.5, 0.5).is_empty

    def test_contains(self):
        """Test containment (closed ends)."""
        iv = Interval(1.0, 3.0)
        assert iv.contains(1.0)
        assert iv.contains(3.0)
        assert not iv.contains(0.0)

    def test_intersect_exact(self):
        """Intersection never rounds."""
        a = Interval(0.0, 0.5)
        b = Interval(0.25, 1.0)
        assert a.intersect(b) == Interval(0.25, 0.5)

    def test_intersect_disjoint(self):
        """Disjoint intervals intersect to the empty interval."""
        assert Interval(0.0, 0.25).intersect(Interval(0.5, 1.0)).is_empty

    def test_canonical(self):
        """Canonical form is a plain dict."""
        assert Interval(0.25, 0.5).to_canonical() == {"lo": 0.25, "hi": 0.5}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
