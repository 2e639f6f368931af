"""
beliefscp: Belief-Space Sequential Convex Programming
=====================================================

beliefscp plans control trajectories for systems with process and sensing
uncertainty. It optimizes the joint evolution of the state mean and
covariance with a penalty-method SCP optimizer, trust-region step control
and a damped BFGS curvature model, solving one structured QP per step.

Quick Start
-----------
>>> import numpy as np
>>> import beliefscp
>>> system = beliefscp.single_integrator(dim=1, dt=1.0)
>>> problem = beliefscp.BeliefProblem(
...     system=system,
...     belief0=beliefscp.Belief(mean=[0.0], cov=[[0.0]]),
...     T=2,
...     goal=beliefscp.GoalRegion(center=[10.0], radius=0.0),
... )
>>> result = beliefscp.optimize(problem)
>>> print(result.status, result.controls[0])
converged [10.]

The structured QP solver can also be used on its own:

>>> result = beliefscp.solve_stages(stages)
>>> result.stage_solutions[-1]
"""

__version__ = "0.1.0"
__author__ = "beliefscp Contributors"

# Import public API
from .stage import QPStage, StageKind
from .solver import QPSolver, solve_stages
from .result import QPResult, Status
from .exceptions import (
    BeliefSCPError,
    NumericalSingularityError,
    InvalidLinearizationError,
    SolverFailureError,
    SolverTimeoutError,
    DimensionError,
    InvalidInputError,
)
from .planning import (
    Belief,
    BeliefCost,
    BeliefProblem,
    BeliefPropagator,
    BeliefSpaceOptimizer,
    BeliefSystem,
    GoalRegion,
    HistoryRecorder,
    NullVisualizer,
    OptimizationResult,
    RecedingHorizonPlanner,
    SCPConfig,
    SCPStatus,
    Trajectory,
    TrustRegionGroup,
    execute_control_step,
    linear_belief_system,
    optimize,
    planar_car,
    point_light_dark,
    single_integrator,
)

__all__ = [
    # Version
    "__version__",

    # Optimization
    "optimize",
    "BeliefProblem",
    "BeliefSpaceOptimizer",
    "OptimizationResult",
    "SCPStatus",
    "SCPConfig",
    "TrustRegionGroup",
    "GoalRegion",
    "RecedingHorizonPlanner",

    # Beliefs and systems
    "Belief",
    "Trajectory",
    "BeliefSystem",
    "BeliefPropagator",
    "BeliefCost",
    "execute_control_step",
    "linear_belief_system",
    "single_integrator",
    "point_light_dark",
    "planar_car",

    # Telemetry
    "NullVisualizer",
    "HistoryRecorder",

    # QP subproblems
    "QPStage",
    "StageKind",
    "QPSolver",
    "solve_stages",
    "QPResult",
    "Status",

    # Exceptions
    "BeliefSCPError",
    "NumericalSingularityError",
    "InvalidLinearizationError",
    "SolverFailureError",
    "SolverTimeoutError",
    "DimensionError",
    "InvalidInputError",
]


def info() -> str:
    """Return information about the beliefscp installation."""
    import platform

    import numpy
    import scipy

    lines = [
        f"beliefscp version: {__version__}",
        f"Python version: {platform.python_version()}",
        f"Platform: {platform.platform()}",
        f"NumPy version: {numpy.__version__}",
        f"SciPy version: {scipy.__version__}",
    ]
    return "\n".join(lines)
