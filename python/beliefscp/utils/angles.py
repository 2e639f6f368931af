"""Angle helpers for wrap-aware state differencing."""

from typing import Sequence

import numpy as np

TWO_PI = 2.0 * np.pi


def wrap_angle(angle):
    """Map an angle (or array of angles) into [0, 2π)."""
    return angle - TWO_PI * np.floor(angle / TWO_PI)


def nearest_angle_from_to(reference: float, angle: float) -> float:
    """
    Return the representative of ``angle`` (mod 2π) closest to ``reference``.

    Ties resolve toward the representative above ``reference``.
    """
    delta = angle - reference
    delta -= TWO_PI * np.floor((delta + np.pi) / TWO_PI)
    return float(reference + delta)


def angle_difference(a, b):
    """Signed difference ``a - b`` wrapped into [-π, π)."""
    d = np.asarray(a, dtype=np.float64) - np.asarray(b, dtype=np.float64)
    return d - TWO_PI * np.floor((d + np.pi) / TWO_PI)


def state_difference(
    a: np.ndarray,
    b: np.ndarray,
    angle_indices: Sequence[int] = (),
) -> np.ndarray:
    """``a - b`` with the components in ``angle_indices`` wrapped to [-π, π)."""
    d = np.asarray(a, dtype=np.float64) - np.asarray(b, dtype=np.float64)
    if len(angle_indices):
        idx = np.asarray(angle_indices, dtype=int)
        d[..., idx] = angle_difference(d[..., idx], 0.0)
    return d
