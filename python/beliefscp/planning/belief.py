"""
Belief States
=============

Gaussian belief over the system state: a mean and a covariance.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from ..exceptions import DimensionError, InvalidInputError
from ..utils import check_finite

# Relative slack for round-off in propagated covariances.
PSD_TOLERANCE = 1e-9


@dataclass
class Belief:
    """
    Gaussian belief (mean, covariance).

    Args:
        mean: State mean (n_x,)
        cov: State covariance (n_x, n_x), symmetric positive semi-definite

    Example:
        >>> b = Belief(mean=np.zeros(2), cov=0.1 * np.eye(2))
        >>> b.trace()
        0.2
        >>> Belief.from_vector(b.to_vector(), x_dim=2).cov
        array([[0.1, 0. ],
               [0. , 0.1]])
    """
    mean: np.ndarray
    cov: np.ndarray

    def __post_init__(self):
        """Validate and symmetrize."""
        self.mean = np.atleast_1d(np.asarray(self.mean, dtype=np.float64)).ravel()
        n = self.mean.size
        self.cov = np.atleast_2d(np.asarray(self.cov, dtype=np.float64))
        if self.cov.shape != (n, n):
            raise DimensionError(f"covariance has shape {self.cov.shape}, expected ({n}, {n})")
        check_finite(self.mean, "belief mean")
        check_finite(self.cov, "belief covariance")
        if not np.allclose(self.cov, self.cov.T, atol=1e-9):
            raise InvalidInputError("covariance must be symmetric")
        self.cov = 0.5 * (self.cov + self.cov.T)
        eigvals = np.linalg.eigvalsh(self.cov)
        if eigvals[0] < -PSD_TOLERANCE * max(1.0, eigvals[-1]):
            raise InvalidInputError(
                f"covariance must be positive semi-definite, smallest eigenvalue {eigvals[0]:.3e}"
            )

    @property
    def x_dim(self) -> int:
        """State dimension."""
        return self.mean.size

    @staticmethod
    def vector_dim(x_dim: int) -> int:
        """Length of the packed belief vector for a state of size ``x_dim``."""
        return x_dim + x_dim * (x_dim + 1) // 2

    def trace(self) -> float:
        """Trace of the covariance."""
        return float(np.trace(self.cov))

    def to_vector(self) -> np.ndarray:
        """Pack the mean and the upper triangle of the covariance."""
        rows, cols = np.triu_indices(self.x_dim)
        return np.concatenate([self.mean, self.cov[rows, cols]])

    @classmethod
    def from_vector(cls, b: np.ndarray, x_dim: int) -> "Belief":
        """Inverse of :meth:`to_vector`."""
        b = np.asarray(b, dtype=np.float64).ravel()
        if b.size != cls.vector_dim(x_dim):
            raise DimensionError(
                f"belief vector has {b.size} elements, expected {cls.vector_dim(x_dim)}"
            )
        rows, cols = np.triu_indices(x_dim)
        cov = np.zeros((x_dim, x_dim))
        cov[rows, cols] = b[x_dim:]
        cov[cols, rows] = b[x_dim:]
        return cls(mean=b[:x_dim].copy(), cov=cov)

    def copy(self) -> "Belief":
        return Belief(mean=self.mean.copy(), cov=self.cov.copy())

    def __repr__(self) -> str:
        return f"Belief(mean={np.array2string(self.mean, precision=4)}, trace={self.trace():.4g})"
