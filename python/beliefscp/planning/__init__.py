"""
beliefscp Belief-Space Planning
===============================

Trajectory optimization over Gaussian beliefs with a penalty-method SCP
optimizer and trust-region control.

Quick Start
-----------
>>> from beliefscp.planning import (
...     Belief, BeliefProblem, BeliefSpaceOptimizer, GoalRegion, point_light_dark,
... )
>>>
>>> problem = BeliefProblem(
...     system=point_light_dark(),
...     belief0=Belief(mean=[-3.5, 2.0], cov=np.eye(2)),
...     T=15,
...     goal=GoalRegion(center=[-3.5, -2.0], radius=0.1),
...     u_min=-1.0, u_max=1.0,
... )
>>> result = BeliefSpaceOptimizer(problem).solve()
>>> u_apply = result.optimal_control

Closed Loop
-----------
>>> from beliefscp.planning import RecedingHorizonPlanner
>>>
>>> planner = RecedingHorizonPlanner(system, T=15, goal=goal, u_min=-1.0, u_max=1.0)
>>> history = planner.run(x_true0, belief0, rng=0)

Classes
-------
BeliefSystem
    Dynamics, observation and noise models with finite-difference Jacobians
BeliefPropagator
    EKF belief dynamics
StageBuilder
    QP stages from a linearized trajectory
CurvatureTracker
    Damped BFGS curvature approximation
TrustRegionController
    Inner trust-region loop
BeliefSpaceOptimizer
    Outer penalty loop
RecedingHorizonPlanner
    Closed-loop re-planning

Theory
------
Over the stacked vector z = [x_0, u_0, ..., x_{T-1}] the optimizer minimizes

    merit(z) = cost(z) + penalty * Σ_t |x_{t+1} - f(x_t, u_t)|_1

where cost(z) charges the covariances rolled out along z. Each QP uses a
first-order model of the dynamics, a diagonal quadratic model of the cost
and slack variables for the dynamics residual, restricted to a trust box.
"""

from .belief import Belief
from .config import SCPConfig, TrustRegionGroup, planar_car_trust_groups
from .costs import BeliefCost, TrajectoryObjective
from .curvature import CurvatureTracker
from .dynamics import (
    BeliefSystem,
    LinearizationResult,
    linear_belief_system,
    numerical_gradient,
    numerical_jacobian,
    planar_car,
    point_light_dark,
    single_integrator,
)
from .optimizer import (
    BeliefProblem,
    BeliefSpaceOptimizer,
    OptimizationResult,
    SCPStatus,
    optimize,
)
from .propagation import BeliefPropagator, execute_control_step, propagate_beliefs
from .receding import RecedingHorizonPlanner
from .stages import GoalRegion, LinearModel, StageBuilder
from .trajectory import Trajectory
from .trust_region import (
    TrustRegionController,
    TrustRegionOutcome,
    TrustRegionRun,
    TrustRegionState,
)
from .visualization import HistoryRecorder, NullVisualizer, Visualizer

__all__ = [
    # Optimizer
    "BeliefProblem",
    "BeliefSpaceOptimizer",
    "OptimizationResult",
    "SCPStatus",
    "SCPConfig",
    "optimize",
    # Beliefs
    "Belief",
    "Trajectory",
    "BeliefPropagator",
    "execute_control_step",
    "propagate_beliefs",
    # Systems
    "BeliefSystem",
    "LinearizationResult",
    "linear_belief_system",
    "single_integrator",
    "point_light_dark",
    "planar_car",
    "numerical_jacobian",
    "numerical_gradient",
    # Costs
    "BeliefCost",
    "TrajectoryObjective",
    # Internals
    "StageBuilder",
    "LinearModel",
    "GoalRegion",
    "CurvatureTracker",
    "TrustRegionController",
    "TrustRegionGroup",
    "TrustRegionOutcome",
    "TrustRegionRun",
    "TrustRegionState",
    "planar_car_trust_groups",
    # Closed loop
    "RecedingHorizonPlanner",
    # Telemetry
    "Visualizer",
    "NullVisualizer",
    "HistoryRecorder",
]
