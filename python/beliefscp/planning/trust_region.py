"""
Trust-Region Control
====================

Inner loop of the penalty SCP method.

Each SQP iteration linearizes the problem once and then cycles

    BUILD → SOLVE → EVALUATE → {ACCEPT, SHRINK, FAIL, CONVERGED}

with the improvement ratio of the true merit to the model merit deciding
whether the QP step is taken and how the trust region is resized.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

import numpy as np

from ..exceptions import (
    InvalidLinearizationError,
    InvalidInputError,
    SolverFailureError,
    SolverTimeoutError,
)
from ..result import Status
from ..solver import QPSolver
from .config import CONTROL, STATE, SCPConfig, TrustRegionGroup
from .costs import TrajectoryObjective
from .curvature import CurvatureTracker
from .stages import StageBuilder
from .trajectory import Trajectory
from .visualization import NullVisualizer, Visualizer

logger = logging.getLogger(__name__)


class TrustRegionState:
    """
    Per-group trust-region half-widths.

    Args:
        groups: Groups covering every state and control component once
        x_dim: State dimension
        u_dim: Control dimension
        max_size: Upper clamp applied on expansion
    """

    def __init__(
        self,
        groups: List[TrustRegionGroup],
        x_dim: int,
        u_dim: int,
        max_size: float = np.inf,
    ) -> None:
        self.groups = list(groups)
        self.x_dim = x_dim
        self.u_dim = u_dim
        self.max_size = max_size
        self.reset()

    def reset(self) -> None:
        """Restore the initial sizes."""
        self.sizes: Dict[str, float] = {g.name: float(g.initial_size) for g in self.groups}

    def shrink(self, ratio: float) -> None:
        for name in self.sizes:
            self.sizes[name] *= ratio
        self._check()

    def expand(self, ratio: float) -> None:
        for name in self.sizes:
            self.sizes[name] = min(self.sizes[name] * ratio, self.max_size)
        self._check()

    def _check(self) -> None:
        for name, size in self.sizes.items():
            if not size > 0:
                raise InvalidInputError(f"trust region '{name}' collapsed to {size}")

    def all_below(self, threshold: float) -> bool:
        """True if every group is below ``threshold``."""
        return all(size < threshold for size in self.sizes.values())

    def radii(self, kind: str) -> np.ndarray:
        """Half-widths per component of the state (``"state"``) or control."""
        radii = np.zeros(self.x_dim if kind == STATE else self.u_dim)
        for g in self.groups:
            if g.kind == kind:
                radii[list(g.indices)] = self.sizes[g.name]
        return radii

    @property
    def state_radii(self) -> np.ndarray:
        return self.radii(STATE)

    @property
    def control_radii(self) -> np.ndarray:
        return self.radii(CONTROL)

    def __repr__(self) -> str:
        sizes = ", ".join(f"{k}={v:.4g}" for k, v in self.sizes.items())
        return f"TrustRegionState({sizes})"


class TrustRegionOutcome(Enum):
    """How a trust-region run ended."""
    MODEL_CONVERGED = "model_converged"
    TRUST_REGION_CONVERGED = "trust_region_converged"
    MAX_ITERATIONS = "max_iterations"

    def __str__(self) -> str:
        return self.value


@dataclass
class TrustRegionRun:
    """
    Result of one trust-region run at a fixed penalty.

    Attributes:
        z: Final stacked decision vector
        merit: Merit of ``z`` at the run's penalty
        outcome: Termination reason
        sqp_iterations: Number of linearizations
        accepted_steps: Accepted QP steps
        rejected_steps: Rejected QP steps (trust-region shrinks)
        qp_solves: QP subproblems solved
    """
    z: np.ndarray
    merit: float
    outcome: TrustRegionOutcome
    sqp_iterations: int = 0
    accepted_steps: int = 0
    rejected_steps: int = 0
    qp_solves: int = 0


class TrustRegionController:
    """
    Trust-region loop at a fixed penalty coefficient.

    Owns the QP solver session, the trust-region state and the curvature
    approximation for one optimize call.

    Args:
        builder: Stage builder of the problem
        config: Optimizer settings
        solver: QP solver session (default: one built from ``config.qp_params``)
        visualizer: Receives every accepted trajectory
    """

    def __init__(
        self,
        builder: StageBuilder,
        config: SCPConfig,
        solver: Optional[QPSolver] = None,
        visualizer: Optional[Visualizer] = None,
    ) -> None:
        self.builder = builder
        self.objective: TrajectoryObjective = builder.objective
        self.config = config
        self.solver = QPSolver(config.qp_params) if solver is None else solver
        self.visualizer = NullVisualizer() if visualizer is None else visualizer

        system = builder.system
        self.trust = TrustRegionState(
            config.resolve_groups(system.x_dim, system.u_dim),
            system.x_dim,
            system.u_dim,
            max_size=config.max_trust_box_size,
        )
        n = self.objective.n_vars
        self.curvature = CurvatureTracker(n, config.curvature_diagonal(n))

    def _solve_qp(self, stages, warm_start):
        result = self.solver.solve(stages, warm_start=warm_start)
        if result.status == Status.TIME_LIMIT:
            raise SolverTimeoutError(status=result.status, iterations=result.iterations)
        if not result.status.has_solution:
            raise SolverFailureError(status=result.status)
        return result

    def run(self, z: np.ndarray, penalty: float) -> TrustRegionRun:
        """
        Minimize the merit at ``penalty`` starting from ``z``.

        Trust-region sizes and the curvature approximation are reset first.

        Raises:
            InvalidLinearizationError: the model predicts the merit gets worse
            SolverFailureError: a QP subproblem failed
            NumericalSingularityError: belief propagation failed
        """
        cfg = self.config
        obj = self.objective
        self.trust.reset()
        self.curvature.reset()

        z = np.array(z, dtype=np.float64)
        cost = obj.cost(z)
        merit = cost + penalty * obj.violation(z)
        grad = obj.gradient(z)
        run = TrustRegionRun(z=z, merit=merit, outcome=TrustRegionOutcome.MAX_ITERATIONS)

        while run.sqp_iterations < cfg.max_sqp_iterations:
            run.sqp_iterations += 1
            model = self.builder.linearize(z, self.curvature.diagonal(), cost=cost, gradient=grad)
            constant = model.constant
            warm_start = self.builder.warm_start(model)
            logger.debug("  sqp iteration %d: merit=%.10g cost=%.10g",
                         run.sqp_iterations, merit, cost)

            while True:
                logger.debug("    %r", self.trust)
                stages = self.builder.build(
                    model, self.trust.state_radii, self.trust.control_radii, penalty
                )
                qp = self._solve_qp(stages, warm_start)
                run.qp_solves += 1

                z_new = self.builder.extract(qp.stage_solutions)
                new_cost = obj.cost(z_new)
                new_merit = new_cost + penalty * obj.violation(z_new)
                model_merit = qp.objective + constant

                approx_improve = merit - model_merit
                exact_improve = merit - new_merit
                ratio = exact_improve / approx_improve if approx_improve != 0 else np.nan
                logger.debug(
                    "    model_merit=%.10g new_merit=%.10g approx_improve=%.6g "
                    "exact_improve=%.6g ratio=%.6g",
                    model_merit, new_merit, approx_improve, exact_improve, ratio,
                )

                if approx_improve < -cfg.invalid_improve_threshold:
                    raise InvalidLinearizationError(approx_improve)

                if approx_improve < cfg.min_approx_improve:
                    logger.debug("    converged: improvement small enough")
                    run.z, run.merit = z_new, new_merit
                    run.outcome = TrustRegionOutcome.MODEL_CONVERGED
                    return run

                if exact_improve < 0 or ratio < cfg.improve_ratio_threshold:
                    self.trust.shrink(cfg.trust_shrink_ratio)
                    run.rejected_steps += 1
                    logger.debug("    rejected, shrinking trust region")
                else:
                    self.trust.expand(cfg.trust_expand_ratio)
                    new_grad = obj.gradient(z_new)
                    self.curvature.update(z_new - z, new_grad - grad)
                    z, cost, merit, grad = z_new, new_cost, new_merit, new_grad
                    run.z, run.merit = z, merit
                    run.accepted_steps += 1
                    logger.debug("    accepted, expanding trust region")
                    self.visualizer.show(
                        Trajectory.from_vector(
                            z, obj.T, obj.system.x_dim, obj.system.u_dim,
                            covariances=obj.covariances(z),
                        ),
                        merit=merit,
                        penalty=penalty,
                    )
                    break

                if self.trust.all_below(cfg.min_trust_box_size):
                    logger.debug("    converged: trust region below %.3g", cfg.min_trust_box_size)
                    run.outcome = TrustRegionOutcome.TRUST_REGION_CONVERGED
                    return run

        return run
