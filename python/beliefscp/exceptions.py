"""
beliefscp Exception Classes
===========================

Custom exceptions for belief-space SCP error handling.
"""

from typing import Any, Optional


class BeliefSCPError(Exception):
    """Base exception for all beliefscp errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class NumericalSingularityError(BeliefSCPError):
    """
    Raised when the innovation covariance cannot be inverted.

    This happens during belief propagation when ``H Σ Hᵀ + N Nᵀ`` is
    singular while the predicted covariance is not zero. Regularize the
    observation noise to avoid it.
    """

    def __init__(
        self,
        message: str = "Innovation covariance is singular",
        timestep: Optional[int] = None,
    ) -> None:
        self.timestep = timestep
        if timestep is not None:
            message = f"{message} (timestep {timestep})"
        super().__init__(message)


class InvalidLinearizationError(BeliefSCPError):
    """
    Raised when the convex model predicts the merit gets worse.

    The quadratic model evaluated at its own optimum should never be worse
    than the current point. If it is, either the convexification is wrong to
    zeroth order or the problem is in numerical trouble.
    """

    def __init__(self, approx_improve: float) -> None:
        self.approx_improve = approx_improve
        super().__init__(
            f"Approximate merit function got worse: {approx_improve:.6g}"
        )


class SolverFailureError(BeliefSCPError):
    """
    Raised when the QP solver reports an infeasible or failed subproblem.
    """

    def __init__(
        self,
        message: str = "QP solver failed",
        status: Optional[Any] = None,
    ) -> None:
        self.status = status
        if status is not None:
            message = f"{message}: {status}"
        super().__init__(message)


class SolverTimeoutError(SolverFailureError):
    """
    Raised when a single QP solve exceeds its time limit.
    """

    def __init__(
        self,
        message: str = "QP solver time limit exceeded",
        status: Optional[Any] = None,
        iterations: Optional[int] = None,
    ) -> None:
        self.iterations = iterations
        super().__init__(message, status)


class DimensionError(BeliefSCPError):
    """
    Raised when vector/matrix dimensions are incompatible.
    """

    def __init__(self, message: str) -> None:
        super().__init__(f"Dimension mismatch: {message}")


class InvalidInputError(BeliefSCPError):
    """
    Raised when input data is invalid.

    Examples: NaN values, non-positive trust region sizes, an empty trajectory.
    """

    def __init__(self, message: str) -> None:
        super().__init__(f"Invalid input: {message}")
