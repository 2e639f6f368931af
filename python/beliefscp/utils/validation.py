"""Input validation utilities."""

from typing import Optional

import numpy as np

from ..exceptions import DimensionError, InvalidInputError


def as_vector(value, dim: Optional[int] = None, name: str = "vector") -> np.ndarray:
    """
    Convert ``value`` to a 1-D float array, broadcasting scalars to ``dim``.

    Raises:
        DimensionError: if the length does not match ``dim``
    """
    if np.isscalar(value):
        if dim is None:
            raise InvalidInputError(f"{name}: dim required when value is scalar")
        return np.full(dim, float(value))

    arr = np.asarray(value, dtype=np.float64).ravel()
    if dim is not None and arr.shape != (dim,):
        raise DimensionError(f"{name} has {arr.size} elements, expected {dim}")
    return arr


def check_finite(arr: np.ndarray, name: str) -> np.ndarray:
    """Raise InvalidInputError if ``arr`` contains NaN or inf."""
    if not np.all(np.isfinite(arr)):
        raise InvalidInputError(f"{name} contains NaN or infinite values")
    return arr
