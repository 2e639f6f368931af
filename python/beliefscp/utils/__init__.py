"""Internal helpers."""

from .angles import TWO_PI, angle_difference, nearest_angle_from_to, state_difference, wrap_angle
from .validation import as_vector, check_finite

__all__ = [
    "TWO_PI",
    "angle_difference",
    "nearest_angle_from_to",
    "state_difference",
    "wrap_angle",
    "as_vector",
    "check_finite",
]
