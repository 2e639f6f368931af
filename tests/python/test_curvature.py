"""
Tests for the damped BFGS curvature approximation.
"""

import pytest
import numpy as np
from hypothesis import given, settings, strategies as st
from hypothesis.extra.numpy import arrays

from beliefscp.exceptions import DimensionError
from beliefscp.planning import CurvatureTracker

vectors = arrays(np.float64, 3, elements=st.floats(min_value=-10.0, max_value=10.0))


class TestCurvatureTracker:
    """Test CurvatureTracker class."""

    def test_initial(self):
        """Starts from the given diagonal."""
        tracker = CurvatureTracker(3, initial=[0.0, 2.0, 1.0])
        np.testing.assert_array_equal(tracker.diagonal(), [0.0, 2.0, 1.0])
        np.testing.assert_array_equal(CurvatureTracker(2).diagonal(), [1.0, 1.0])

    def test_initial_dimension(self):
        """Diagonal must match n."""
        with pytest.raises(DimensionError):
            CurvatureTracker(3, initial=[1.0, 2.0])

    def test_exact_curvature_unchanged(self):
        """Steps consistent with B leave B unchanged."""
        B = np.diag([1.0, 2.0, 3.0])
        tracker = CurvatureTracker(3, initial=np.diag(B))
        s = np.array([0.5, -1.0, 2.0])

        assert tracker.update(s, B @ s)
        np.testing.assert_allclose(tracker.B, B, atol=1e-12)
        assert tracker.n_damped == 0

    def test_secant_condition(self):
        """After an undamped update B s = y."""
        tracker = CurvatureTracker(2)
        s = np.array([1.0, 0.5])
        y = np.array([3.0, 1.0])

        assert tracker.update(s, y)
        np.testing.assert_allclose(tracker.B @ s, y, atol=1e-12)

    def test_damping_on_negative_curvature(self):
        """s'y < 0 triggers damping and keeps s'Bs positive."""
        tracker = CurvatureTracker(2)
        s = np.array([1.0, 0.0])

        assert tracker.update(s, -s)
        assert tracker.n_damped == 1
        assert s @ tracker.B @ s > 0
        assert np.all(np.linalg.eigvalsh(tracker.B) > 0)

    @settings(max_examples=50)
    @given(vectors, vectors)
    def test_stays_positive_definite(self, s, y):
        """Damped updates preserve positive definiteness of an identity start."""
        tracker = CurvatureTracker(3)
        tracker.update(s, y)
        eigvals = np.linalg.eigvalsh(tracker.B)
        assert np.all(eigvals > -1e-8 * max(1.0, np.abs(eigvals).max()))
        np.testing.assert_allclose(tracker.B, tracker.B.T)

    def test_zero_step_skipped(self):
        """A zero step carries no information."""
        tracker = CurvatureTracker(2)
        assert not tracker.update(np.zeros(2), np.ones(2))
        assert tracker.n_skipped == 1
        np.testing.assert_array_equal(tracker.B, np.eye(2))

    def test_step_outside_curvature_skipped(self):
        """Steps in the null space of a singular B are skipped."""
        tracker = CurvatureTracker(2, initial=[0.0, 1.0])
        assert not tracker.update(np.array([1.0, 0.0]), np.array([5.0, 0.0]))
        assert tracker.n_updates == 0

    def test_diagonal_clamped(self):
        """Negative diagonal entries are clamped to zero."""
        tracker = CurvatureTracker(2)
        tracker.B = np.array([[-1.0, 0.0], [0.0, 2.0]])
        np.testing.assert_array_equal(tracker.diagonal(), [0.0, 2.0])

    def test_reset(self):
        """Reset restores the initial approximation and counters."""
        tracker = CurvatureTracker(2, initial=0.5)
        tracker.update(np.array([1.0, 0.0]), np.array([4.0, 0.0]))
        assert tracker.n_updates == 1

        tracker.reset()
        np.testing.assert_array_equal(tracker.B, 0.5 * np.eye(2))
        assert tracker.n_updates == 0

    def test_dimension_checked(self):
        """Update vectors must have length n."""
        with pytest.raises(DimensionError):
            CurvatureTracker(2).update(np.ones(3), np.ones(3))
