"""
Receding-Horizon Execution
==========================

Closed-loop belief-space planning: at every step the SCP problem is
re-solved from the current belief, the first control is applied to the
true system, a noisy measurement updates the belief, and the remaining
control sequence is shifted to warm-start the next solve.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Union

import numpy as np

from ..exceptions import InvalidInputError
from .belief import Belief
from .config import SCPConfig
from .costs import BeliefCost, CostFunction
from .dynamics import BeliefSystem
from .optimizer import BeliefProblem, BeliefSpaceOptimizer
from .propagation import BeliefPropagator, execute_control_step
from .stages import GoalRegion
from .visualization import Visualizer

logger = logging.getLogger(__name__)


class RecedingHorizonPlanner:
    """
    Receding-horizon belief-space controller.

    Args:
        system: Belief system
        T: Planning length (timesteps)
        cost: Trajectory cost (default: BeliefCost())
        goal: Goal region
        x_min, x_max, u_min, u_max: Limits
        config: Optimizer settings
        shrink_horizon: Shrink the active horizon by one each step so the
            goal is reached at a fixed time; otherwise plan over T each step
        visualizer: Receives accepted trajectories of every solve

    Example:
        >>> planner = RecedingHorizonPlanner(point_light_dark(), T=15, goal=goal)
        >>> history = planner.run(x_true0, belief0, n_steps=10, rng=0)
        >>> history["x"].shape
        (11, 2)
    """

    def __init__(
        self,
        system: BeliefSystem,
        T: int,
        cost: Optional[CostFunction] = None,
        goal: Optional[GoalRegion] = None,
        x_min=-np.inf,
        x_max=np.inf,
        u_min=-np.inf,
        u_max=np.inf,
        config: Optional[SCPConfig] = None,
        shrink_horizon: bool = True,
        visualizer: Optional[Visualizer] = None,
    ) -> None:
        if T < 2:
            raise InvalidInputError(f"T must be at least 2, got {T}")
        self.system = system
        self.T = T
        self.cost = BeliefCost() if cost is None else cost
        self.goal = goal
        self.limits = dict(x_min=x_min, x_max=x_max, u_min=u_min, u_max=u_max)
        self.config = SCPConfig() if config is None else config
        self.shrink_horizon = shrink_horizon
        self.visualizer = visualizer
        self.propagator = BeliefPropagator(system)

    def horizon_at(self, step: int) -> int:
        """Active horizon at closed-loop step ``step``."""
        return self.T - step if self.shrink_horizon else self.T

    def plan(
        self,
        belief: Belief,
        horizon: Optional[int] = None,
        controls: Optional[np.ndarray] = None,
    ):
        """
        Solve one SCP problem from ``belief``.

        Args:
            belief: Current belief
            horizon: Active horizon (default: T)
            controls: Warm-start control sequence (T-1, n_u)

        Returns:
            OptimizationResult
        """
        problem = BeliefProblem(
            system=self.system,
            belief0=belief,
            T=self.T,
            cost=self.cost,
            goal=self.goal,
            horizon=horizon,
            **self.limits,
        )
        optimizer = BeliefSpaceOptimizer(problem, self.config, visualizer=self.visualizer)
        return optimizer.solve(controls)

    def run(
        self,
        x_true0: np.ndarray,
        belief0: Belief,
        n_steps: Optional[int] = None,
        rng: Union[None, int, np.random.Generator] = None,
    ) -> Dict[str, Any]:
        """
        Simulate closed-loop execution.

        Args:
            x_true0: Initial true state
            belief0: Initial belief
            n_steps: Number of executed controls (default and maximum with a
                shrinking horizon: T-1)
            rng: Seed or generator for process and measurement noise

        Returns:
            Dictionary with 'x' (true states), 'u' (applied controls),
            'belief_means', 'covariances', 'cost' (planned cost per step)
            and 'results' (OptimizationResult per step)
        """
        max_steps = self.T - 1 if self.shrink_horizon else None
        if n_steps is None:
            if max_steps is None:
                raise InvalidInputError("n_steps is required without a shrinking horizon")
            n_steps = max_steps
        if n_steps < 1 or (max_steps is not None and n_steps > max_steps):
            raise InvalidInputError(f"n_steps must be in [1, {max_steps or 'inf'}], got {n_steps}")
        if not isinstance(rng, np.random.Generator):
            rng = np.random.default_rng(rng)

        nx, nu = self.system.x_dim, self.system.u_dim
        x = np.zeros((n_steps + 1, nx))
        u = np.zeros((n_steps, nu))
        means = np.zeros((n_steps + 1, nx))
        covs = np.zeros((n_steps + 1, nx, nx))
        costs = np.zeros(n_steps)
        results = []

        x[0] = x_true0
        belief = belief0
        means[0], covs[0] = belief.mean, belief.cov
        controls = None

        for k in range(n_steps):
            horizon = self.horizon_at(k)
            result = self.plan(belief, horizon=horizon, controls=controls)
            results.append(result)

            u[k] = result.optimal_control
            costs[k] = result.cost
            x[k + 1], belief = execute_control_step(
                self.system, x[k], belief, u[k], rng, propagator=self.propagator
            )
            means[k + 1], covs[k + 1] = belief.mean, belief.cov

            controls = result.trajectory.shifted().controls
            logger.info(
                "step %d/%d: horizon=%d u=%s cost=%.6g status=%s",
                k + 1, n_steps, horizon, np.array2string(u[k], precision=4),
                result.cost, result.status,
            )

        return {
            "x": x,
            "u": u,
            "belief_means": means,
            "covariances": covs,
            "cost": costs,
            "results": results,
        }
