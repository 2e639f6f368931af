"""
beliefscp Result Classes
========================

Data classes for QP subproblem results and status.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List

import numpy as np


class Status(Enum):
    """
    QP solver status codes.

    Attributes:
        OPTIMAL: Solution found within tolerance
        PRIMAL_INFEASIBLE: Subproblem has no feasible solution
        MAX_ITERATIONS: Iteration limit reached with a usable iterate
        TIME_LIMIT: Time limit exceeded
        NUMERICAL_ERROR: Numerical issues encountered
        INVALID_INPUT: Stage data was malformed (NaN, inverted bounds)
        UNSOLVED: Problem not yet solved
    """
    OPTIMAL = "optimal"
    PRIMAL_INFEASIBLE = "primal_infeasible"
    MAX_ITERATIONS = "max_iterations"
    TIME_LIMIT = "time_limit"
    NUMERICAL_ERROR = "numerical_error"
    INVALID_INPUT = "invalid_input"
    UNSOLVED = "unsolved"

    def __str__(self) -> str:
        return self.value

    @property
    def is_successful(self) -> bool:
        """True if an optimal solution was found."""
        return self == Status.OPTIMAL

    @property
    def has_solution(self) -> bool:
        """True if a (possibly suboptimal) solution is available."""
        return self in (
            Status.OPTIMAL,
            Status.MAX_ITERATIONS,
        )


@dataclass
class QPResult:
    """
    Result of solving one structured QP subproblem.

    Attributes:
        status: Solver status
        objective: Objective value at the returned point
        x: Stacked primal solution over all stages
        stage_solutions: Per-stage slices of ``x``
        iterations: Number of solver iterations performed
        solve_time: Wall clock time in seconds
        primal_residual: Max absolute equality-constraint residual

    Example:
        >>> result = solver.solve(stages)
        >>> if result.status.has_solution:
        ...     z_terminal = result.stage_solutions[-1]
    """

    status: Status
    objective: float
    x: np.ndarray
    stage_solutions: List[np.ndarray]
    iterations: int
    solve_time: float

    primal_residual: float = 0.0
    problem_info: Dict[str, Any] = field(default_factory=dict)

    def __repr__(self) -> str:
        return (
            f"QPResult(status={self.status}, "
            f"objective={self.objective:.6g}, "
            f"iterations={self.iterations}, "
            f"time={self.solve_time:.4f}s)"
        )

    def summary(self) -> str:
        """Return a formatted summary of the solve result."""
        lines = [
            "=" * 50,
            "QP Subproblem Summary",
            "=" * 50,
            f"Status:           {self.status}",
            f"Objective:        {self.objective:.10g}",
            f"Iterations:       {self.iterations}",
            f"Solve time:       {self.solve_time:.4f} s",
            f"Stages:           {len(self.stage_solutions)}",
            "-" * 50,
            f"Primal residual:  {self.primal_residual:.6e}",
            "=" * 50,
        ]
        return "\n".join(lines)
