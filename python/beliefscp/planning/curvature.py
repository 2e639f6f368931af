"""
Curvature Approximation
=======================

Damped BFGS approximation of the cost Hessian over the stacked decision
vector. Only the (non-negative part of the) diagonal feeds the QP stages.
"""

from __future__ import annotations

import logging
from typing import Union

import numpy as np

from ..exceptions import DimensionError

logger = logging.getLogger(__name__)

_TINY = 1e-12


class CurvatureTracker:
    """
    Symmetric curvature approximation B updated on accepted steps.

    The update uses Powell damping: when ``sᵀy < 0.2 sᵀBs`` the gradient
    change is blended with ``Bs`` so that the update keeps B positive
    definite along ``s``::

        θ = 1                               if sᵀy >= 0.2 sᵀBs
        θ = 0.8 sᵀBs / (sᵀBs - sᵀy)         otherwise
        r = θ y + (1 - θ) B s
        B ← B - (Bs)(Bs)ᵀ / sᵀBs + r rᵀ / sᵀr

    Args:
        n: Size of the decision vector
        initial: Scalar or diagonal of the initial approximation

    Example:
        >>> tracker = CurvatureTracker(4, initial=1.0)
        >>> tracker.update(s, y)
        True
        >>> H = tracker.diagonal()
    """

    def __init__(self, n: int, initial: Union[float, np.ndarray] = 1.0) -> None:
        self.n = n
        initial = np.asarray(initial, dtype=np.float64)
        self._initial = np.full(n, float(initial)) if initial.ndim == 0 else initial.ravel().copy()
        if self._initial.shape != (n,):
            raise DimensionError(f"initial curvature has {self._initial.size} entries, expected {n}")
        self.reset()

    def reset(self) -> None:
        """Restore the initial diagonal approximation."""
        self.B = np.diag(self._initial)
        self.n_updates = 0
        self.n_damped = 0
        self.n_skipped = 0

    def diagonal(self) -> np.ndarray:
        """Diagonal of B clamped to be non-negative."""
        return np.maximum(np.diag(self.B), 0.0)

    def update(self, s: np.ndarray, y: np.ndarray) -> bool:
        """
        Apply one damped BFGS update.

        Args:
            s: Step z_new - z_old
            y: Gradient change g(z_new) - g(z_old)

        Returns:
            True if B changed, False if the update was skipped because the
            step carried no curvature information
        """
        s = np.asarray(s, dtype=np.float64).ravel()
        y = np.asarray(y, dtype=np.float64).ravel()
        if s.shape != (self.n,) or y.shape != (self.n,):
            raise DimensionError(f"update vectors must have shape ({self.n},)")

        Bs = self.B @ s
        sBs = float(s @ Bs)
        sy = float(s @ y)
        if sBs <= _TINY:
            self.n_skipped += 1
            logger.debug("curvature update skipped: s'Bs = %.3e", sBs)
            return False

        if sy >= 0.2 * sBs:
            theta = 1.0
        else:
            theta = 0.8 * sBs / (sBs - sy)
            self.n_damped += 1

        r = theta * y + (1.0 - theta) * Bs
        sr = float(s @ r)
        if sr <= _TINY:
            self.n_skipped += 1
            logger.debug("curvature update skipped: s'r = %.3e", sr)
            return False

        B = self.B - np.outer(Bs, Bs) / sBs + np.outer(r, r) / sr
        self.B = 0.5 * (B + B.T)
        self.n_updates += 1
        logger.debug("curvature update %d: theta=%.4f s'y=%.4e s'Bs=%.4e",
                     self.n_updates, theta, sy, sBs)
        return True
