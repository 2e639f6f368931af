"""
Tests for angle utilities.

Tests covering:
1. Wrapping into [0, 2π)
2. Nearest equivalent angle
3. Wrapped differences of state vectors
"""

import numpy as np
from hypothesis import given, strategies as st

from beliefscp.utils import (
    TWO_PI,
    angle_difference,
    nearest_angle_from_to,
    state_difference,
    wrap_angle,
)

angles = st.floats(min_value=-1e3, max_value=1e3, allow_nan=False, allow_infinity=False)


class TestWrapAngle:
    """Test wrap_angle."""

    @given(angles)
    def test_range(self, a):
        """Wrapped angle lies in [0, 2π]."""
        w = wrap_angle(a)
        assert -1e-9 <= w <= TWO_PI + 1e-9

    @given(angles)
    def test_same_direction(self, a):
        """Wrapping preserves the direction."""
        w = wrap_angle(a)
        assert np.isclose(np.cos(w), np.cos(a), atol=1e-9)
        assert np.isclose(np.sin(w), np.sin(a), atol=1e-9)

    def test_values(self):
        """Known values."""
        assert wrap_angle(0.0) == 0.0
        assert np.isclose(wrap_angle(-np.pi / 2), 1.5 * np.pi)
        assert np.isclose(wrap_angle(5 * np.pi), np.pi)

    def test_array(self):
        """Works elementwise on arrays."""
        out = wrap_angle(np.array([-np.pi, 3 * np.pi]))
        np.testing.assert_allclose(out, [np.pi, np.pi])


class TestNearestAngle:
    """Test nearest_angle_from_to."""

    @given(angles, angles)
    def test_within_pi_of_reference(self, ref, a):
        """Result is at most π away from the reference."""
        out = nearest_angle_from_to(ref, a)
        assert abs(out - ref) <= np.pi + 1e-9

    @given(angles, angles)
    def test_equivalent_angle(self, ref, a):
        """Result differs from the input by a multiple of 2π."""
        out = nearest_angle_from_to(ref, a)
        assert np.isclose(np.cos(out), np.cos(a), atol=1e-8)
        assert np.isclose(np.sin(out), np.sin(a), atol=1e-8)

    def test_crossing_zero(self):
        """An angle just below 2π is moved next to a small reference."""
        out = nearest_angle_from_to(0.1, TWO_PI - 0.1)
        assert np.isclose(out, -0.1)

    def test_already_nearest(self):
        """A nearby angle is returned unchanged."""
        assert np.isclose(nearest_angle_from_to(1.0, 1.2), 1.2)


class TestDifferences:
    """Test angle_difference and state_difference."""

    @given(angles, angles)
    def test_difference_range(self, a, b):
        """Signed difference lies in [-π, π]."""
        d = angle_difference(a, b)
        assert -np.pi - 1e-9 <= d <= np.pi + 1e-9

    def test_difference_across_wrap(self):
        """Difference across the 0/2π seam is small."""
        assert np.isclose(angle_difference(0.05, TWO_PI - 0.05), 0.1)

    def test_state_difference_wraps_selected(self):
        """Only the listed components are wrapped."""
        a = np.array([10.0, 0.05])
        b = np.array([0.0, TWO_PI - 0.05])
        d = state_difference(a, b, angle_indices=[1])
        np.testing.assert_allclose(d, [10.0, 0.1], atol=1e-12)

    def test_state_difference_without_angles(self):
        """Without angle indices the difference is plain subtraction."""
        a = np.array([10.0, 0.05])
        b = np.array([0.0, TWO_PI - 0.05])
        np.testing.assert_allclose(state_difference(a, b), a - b)

    def test_state_difference_batched(self):
        """Works on stacked states."""
        a = np.array([[0.0, 0.1], [1.0, 0.2]])
        b = np.array([[0.0, TWO_PI], [0.0, 0.0]])
        d = state_difference(a, b, angle_indices=(1,))
        np.testing.assert_allclose(d, [[0.0, 0.1], [1.0, 0.2]], atol=1e-12)
