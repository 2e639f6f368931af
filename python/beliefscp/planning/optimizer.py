"""
Belief-Space SCP Optimizer
==========================

Penalty-method sequential convex programming over belief trajectories.

The outer (penalty) loop repeats the trust-region loop with an increasing
penalty coefficient until the dynamics violation of the returned
trajectory, measured with the true nonlinear dynamics, is within
tolerance or the number of allowed increases is exhausted. In the latter
case the least-violating trajectory is returned with status
``CONSTRAINT_TOLERANCE_NOT_MET``; fatal numerical problems raise.
"""

from __future__ import annotations

import logging
import time
import warnings
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

import numpy as np

from ..exceptions import DimensionError, InvalidInputError
from ..solver import QPSolver
from ..utils import check_finite
from .belief import Belief
from .config import SCPConfig
from .costs import BeliefCost, CostFunction, GradientFunction, TrajectoryObjective
from .dynamics import BeliefSystem
from .stages import GoalRegion, StageBuilder
from .trajectory import Trajectory
from .trust_region import TrustRegionController, TrustRegionOutcome
from .visualization import Visualizer

logger = logging.getLogger(__name__)


class SCPStatus(Enum):
    """
    Outcome of a belief-space optimization.

    Attributes:
        CONVERGED: Dynamics violation within tolerance
        CONSTRAINT_TOLERANCE_NOT_MET: Penalty cap reached; the trajectory
            is usable but violates the dynamics by more than the tolerance
    """
    CONVERGED = "converged"
    CONSTRAINT_TOLERANCE_NOT_MET = "constraint_tolerance_not_met"

    def __str__(self) -> str:
        return self.value

    @property
    def is_successful(self) -> bool:
        return self == SCPStatus.CONVERGED

    @property
    def has_solution(self) -> bool:
        return True


@dataclass
class BeliefProblem:
    """
    Belief-space trajectory optimization problem.

    Args:
        system: Belief system
        belief0: Initial belief (its mean is the fixed initial state)
        T: Number of timesteps (T beliefs, T-1 controls)
        cost: ``cost(states, controls, covariances) -> float``
        goal: Goal region enforced at the horizon boundary
        x_min, x_max: State limits
        u_min, u_max: Control limits
        gradient: Optional exact cost gradient over the stacked vector
        horizon: Number of active timesteps (default: T); later
            timesteps stay at the boundary's bounds with zero controls

    Example:
        >>> problem = BeliefProblem(
        ...     system=point_light_dark(),
        ...     belief0=Belief(mean=[-3.5, 2.0], cov=np.eye(2)),
        ...     T=15,
        ...     goal=GoalRegion(center=[-3.5, -2.0], radius=0.1),
        ...     u_min=-1.0, u_max=1.0,
        ... )
    """
    system: BeliefSystem
    belief0: Belief
    T: int
    cost: CostFunction = field(default_factory=BeliefCost)
    goal: Optional[GoalRegion] = None
    x_min: Union[float, np.ndarray] = -np.inf
    x_max: Union[float, np.ndarray] = np.inf
    u_min: Union[float, np.ndarray] = -np.inf
    u_max: Union[float, np.ndarray] = np.inf
    gradient: Optional[GradientFunction] = None
    horizon: Optional[int] = None

    def __post_init__(self):
        """Validate problem."""
        if self.T < 2:
            raise InvalidInputError(f"T must be at least 2, got {self.T}")
        if self.belief0.x_dim != self.system.x_dim:
            raise DimensionError(
                f"initial belief has {self.belief0.x_dim} states, system has {self.system.x_dim}"
            )

    @property
    def active_horizon(self) -> int:
        return self.T if self.horizon is None else self.horizon

    def initial_trajectory(self) -> Trajectory:
        """
        Default initial guess.

        With a goal, states move in a straight line to the goal over the
        active horizon (free goal components stay at their initial value)
        and then hold; without a goal, zero controls are rolled out.
        Controls are zero in both cases.
        """
        x0 = self.belief0.mean
        u_dim = self.system.u_dim
        if self.goal is None:
            return Trajectory.rollout(self.system, self.belief0, np.zeros((self.T - 1, u_dim)))

        target = np.where(self.goal.constrained, self.goal.center, x0)
        H = self.active_horizon
        ramp = Trajectory.interpolate(self.belief0, target, H, u_dim, self.system.angle_indices)
        states = np.vstack([ramp.states, np.tile(ramp.states[-1], (self.T - H, 1))])
        return Trajectory(states=states, controls=np.zeros((self.T - 1, u_dim)))


@dataclass
class OptimizationResult:
    """
    Result of a belief-space optimization.

    Attributes:
        trajectory: Optimized trajectory with covariances
        cost: True cost of the trajectory
        violation: Total absolute dynamics violation
        status: SCPStatus
        penalty_coeff: Penalty coefficient of the returned trajectory
        penalty_iterations: Penalty levels run
        sqp_iterations: Linearizations over all penalty levels
        accepted_steps: Accepted trust-region steps
        rejected_steps: Rejected trust-region steps
        qp_solves: QP subproblems solved
        cost_evaluations: True cost evaluations, finite-difference gradients included
        termination: How the last trust-region run ended
        solve_time: Wall clock time in seconds

    Example:
        >>> result = optimizer.solve()
        >>> if not result.constraint_satisfied:
        ...     print(result.summary())
        >>> u_apply = result.optimal_control
    """
    trajectory: Trajectory
    cost: float
    violation: float
    status: SCPStatus
    penalty_coeff: float
    penalty_iterations: int
    sqp_iterations: int
    accepted_steps: int
    rejected_steps: int
    qp_solves: int
    cost_evaluations: int
    termination: TrustRegionOutcome
    solve_time: float

    @property
    def states(self) -> np.ndarray:
        return self.trajectory.states

    @property
    def controls(self) -> np.ndarray:
        return self.trajectory.controls

    @property
    def covariances(self) -> np.ndarray:
        return self.trajectory.covariances

    @property
    def constraint_satisfied(self) -> bool:
        """Whether the dynamics violation is within tolerance."""
        return self.status == SCPStatus.CONVERGED

    @property
    def optimal_control(self) -> np.ndarray:
        """First control to apply."""
        return self.trajectory.controls[0]

    def __repr__(self) -> str:
        return (
            f"OptimizationResult(status={self.status}, "
            f"cost={self.cost:.6g}, "
            f"violation={self.violation:.3e}, "
            f"time={self.solve_time:.3f}s)"
        )

    def summary(self) -> str:
        """Return a formatted summary of the optimization."""
        lines = [
            "=" * 50,
            "Belief-Space SCP Summary",
            "=" * 50,
            f"Status:             {self.status}",
            f"Cost:               {self.cost:.10g}",
            f"Violation:          {self.violation:.6e}",
            f"Penalty coeff:      {self.penalty_coeff:.6g}",
            f"Solve time:         {self.solve_time:.4f} s",
            "-" * 50,
            f"Penalty iterations: {self.penalty_iterations}",
            f"SQP iterations:     {self.sqp_iterations}",
            f"Accepted steps:     {self.accepted_steps}",
            f"Rejected steps:     {self.rejected_steps}",
            f"QP solves:          {self.qp_solves}",
            f"Cost evaluations:   {self.cost_evaluations}",
            f"Termination:        {self.termination}",
            "=" * 50,
        ]
        return "\n".join(lines)


class BeliefSpaceOptimizer:
    """
    Penalty / trust-region SCP optimizer session.

    All mutable optimizer state (trust region, penalty, curvature, QP
    session) lives in this object; one instance can be solved repeatedly.

    Args:
        problem: Problem definition
        config: Optimizer settings (default: SCPConfig())
        visualizer: Receives every accepted trajectory
        solver: QP solver session (default: built from ``config.qp_params``)

    Example:
        >>> optimizer = BeliefSpaceOptimizer(problem, SCPConfig(cnt_tolerance=1e-3))
        >>> result = optimizer.solve()
        >>> result.status
        <SCPStatus.CONVERGED: 'converged'>
    """

    def __init__(
        self,
        problem: BeliefProblem,
        config: Optional[SCPConfig] = None,
        visualizer: Optional[Visualizer] = None,
        solver: Optional[QPSolver] = None,
    ) -> None:
        self.problem = problem
        self.config = SCPConfig() if config is None else config
        self.objective = TrajectoryObjective(
            problem.system,
            problem.cost,
            problem.belief0.cov,
            problem.T,
            gradient=problem.gradient,
            eps=self.config.finite_difference_step,
        )
        self.builder = StageBuilder(
            self.objective,
            problem.belief0.mean,
            x_min=problem.x_min,
            x_max=problem.x_max,
            u_min=problem.u_min,
            u_max=problem.u_max,
            goal=problem.goal,
            horizon=problem.horizon,
        )
        self.controller = TrustRegionController(
            self.builder, self.config, solver=solver, visualizer=visualizer
        )

    def _initial_vector(self, initial: Union[None, Trajectory, np.ndarray]) -> np.ndarray:
        problem = self.problem
        if initial is None:
            traj = problem.initial_trajectory()
        elif isinstance(initial, Trajectory):
            traj = initial
        else:
            traj = Trajectory.rollout(problem.system, problem.belief0, initial)

        if traj.T != problem.T or traj.x_dim != problem.system.x_dim or traj.u_dim != problem.system.u_dim:
            raise DimensionError(
                f"initial trajectory is {traj!r}, expected T={problem.T}, "
                f"x_dim={problem.system.x_dim}, u_dim={problem.system.u_dim}"
            )
        z = traj.to_vector()
        check_finite(z, "initial trajectory")
        return self.builder.project(z)

    def solve(self, initial: Union[None, Trajectory, np.ndarray] = None) -> OptimizationResult:
        """
        Optimize the belief trajectory.

        Args:
            initial: Initial trajectory, or a control sequence (T-1, n_u)
                to roll out; default: :meth:`BeliefProblem.initial_trajectory`

        Returns:
            OptimizationResult

        Raises:
            NumericalSingularityError: belief propagation hit a singular
                innovation covariance
            InvalidLinearizationError: the convex model predicted a worse merit
            SolverFailureError: a QP subproblem failed (SolverTimeoutError
                on time limit)
        """
        cfg = self.config
        obj = self.objective
        start_time = time.perf_counter()
        evaluations_before = obj.n_evaluations

        z = self._initial_vector(initial)
        penalty = cfg.initial_penalty_coeff
        increases = 0
        totals = {"sqp": 0, "accepted": 0, "rejected": 0, "qp": 0}
        best = None

        while True:
            logger.debug("penalty iteration %d: penalty=%.6g", increases + 1, penalty)
            run = self.controller.run(z, penalty)
            z = run.z
            totals["sqp"] += run.sqp_iterations
            totals["accepted"] += run.accepted_steps
            totals["rejected"] += run.rejected_steps
            totals["qp"] += run.qp_solves

            violation = obj.violation(z)
            logger.debug("  constraint violation: %.6e (%s)", violation, run.outcome)
            if best is None or violation <= best[1]:
                best = (z, violation, penalty, run.outcome)

            if violation < cfg.cnt_tolerance:
                status = SCPStatus.CONVERGED
                break
            if increases >= cfg.max_penalty_coeff_increases:
                status = SCPStatus.CONSTRAINT_TOLERANCE_NOT_MET
                break
            penalty *= cfg.penalty_coeff_increase_ratio
            increases += 1

        z, violation, penalty, outcome = best
        covs = obj.covariances(z)
        trajectory = Trajectory.from_vector(
            z, obj.T, obj.system.x_dim, obj.system.u_dim, covariances=covs
        )
        states, controls = obj.unstack(z)
        result = OptimizationResult(
            trajectory=trajectory,
            cost=float(obj.cost_fn(states, controls, covs)),
            violation=violation,
            status=status,
            penalty_coeff=penalty,
            penalty_iterations=increases + 1,
            sqp_iterations=totals["sqp"],
            accepted_steps=totals["accepted"],
            rejected_steps=totals["rejected"],
            qp_solves=totals["qp"],
            cost_evaluations=obj.n_evaluations - evaluations_before,
            termination=outcome,
            solve_time=time.perf_counter() - start_time,
        )

        if status == SCPStatus.CONSTRAINT_TOLERANCE_NOT_MET:
            logger.warning(
                "constraint tolerance %.3g not met after %d penalty increases (violation %.3e)",
                cfg.cnt_tolerance, increases, violation,
            )
            warnings.warn(
                f"Dynamics violation {violation:.3e} exceeds tolerance {cfg.cnt_tolerance:.3g}. "
                "The returned trajectory is a best-effort result.",
                RuntimeWarning,
                stacklevel=2,
            )
        logger.info(
            "%s: status=%s cost=%.6g violation=%.3e penalty=%.3g sqp=%d qp=%d time=%.3fs",
            obj.system.name, status, result.cost, violation, penalty,
            totals["sqp"], totals["qp"], result.solve_time,
        )
        return result


def optimize(
    problem: BeliefProblem,
    config: Optional[SCPConfig] = None,
    initial: Union[None, Trajectory, np.ndarray] = None,
    visualizer: Optional[Visualizer] = None,
) -> OptimizationResult:
    """
    Solve a belief-space problem with a one-off optimizer.

    Example:
        >>> result = optimize(problem, SCPConfig(max_sqp_iterations=20))
        >>> result.controls.shape
        (14, 2)
    """
    return BeliefSpaceOptimizer(problem, config, visualizer=visualizer).solve(initial)
