"""
Stage Builder
=============

Turns the current trajectory, its linearization and the curvature
approximation into the QP stages of one trust-region pass.

For timestep t < T-1 the stage variables are ``[x_t, u_t, s⁺_t, s⁻_t]``:

    cost        (1/2) Σ H_i z_i² + (g - H z̄)ᵀ z + penalty Σ (s⁺ + s⁻)
    dynamics    F_t x_t + G_t u_t + s⁺_t - s⁻_t - x_{t+1}
                    = F_t x̄_t + G_t ū_t - f̃(x̄_t, ū_t)
    bounds      limits ∩ trust window, slacks >= 0

where ``f̃`` is the nominal propagated state with angle components moved
to the representative nearest to ``x̄_{t+1}``. At the horizon boundary the
goal region replaces the trust window for the goal-constrained
components; later stages keep the boundary's state bounds and zero
controls.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

import numpy as np

from ..exceptions import DimensionError, InvalidInputError
from ..stage import QPStage, StageKind, successor_coupling
from ..utils.angles import nearest_angle_from_to
from ..utils.validation import as_vector
from .costs import TrajectoryObjective
from .trajectory import control_index, stack, state_index


@dataclass
class GoalRegion:
    """
    Box around a goal state.

    Args:
        center: Goal state (n_x,)
        radius: Half-width per component (scalar or (n_x,)); ``inf``
            leaves a component free

    Example:
        >>> GoalRegion(center=[10.0, 0.0, 0.0], radius=[0.1, 0.1, np.inf])
    """
    center: np.ndarray
    radius: Union[float, np.ndarray] = 0.0

    def __post_init__(self):
        self.center = np.atleast_1d(np.asarray(self.center, dtype=np.float64)).ravel()
        self.radius = as_vector(self.radius, self.center.size, name="goal radius")
        if np.any(self.radius < 0) or np.any(np.isnan(self.radius)):
            raise InvalidInputError("goal radius must be non-negative")

    @property
    def constrained(self) -> np.ndarray:
        """Mask of components with a finite radius."""
        return np.isfinite(self.radius)

    def bounds(self, reference: np.ndarray, angle_indices=()) -> Tuple[np.ndarray, np.ndarray]:
        """
        Goal box, with angle centers moved next to ``reference``.

        Unconstrained components get infinite bounds.
        """
        center = self.center.copy()
        for i in angle_indices:
            center[i] = nearest_angle_from_to(reference[i], center[i])
        lb = np.where(self.constrained, center - self.radius, -np.inf)
        ub = np.where(self.constrained, center + self.radius, np.inf)
        return lb, ub

    def contains(self, x: np.ndarray, angle_indices=(), tol: float = 1e-9) -> bool:
        lb, ub = self.bounds(x, angle_indices)
        return bool(np.all(x >= lb - tol) and np.all(x <= ub + tol))


@dataclass
class LinearModel:
    """
    Convexification of the problem at one point.

    Attributes:
        z: Linearization point (stacked)
        states: States at z (T, n_x)
        controls: Controls at z (T-1, n_u)
        cost: True cost at z
        gradient: Cost gradient at z
        hessian: Clamped curvature diagonal over z
        F: Dynamics state Jacobians (T-1, n_x, n_x)
        G: Dynamics control Jacobians (T-1, n_x, n_u)
        residuals: Wrapped dynamics residuals at z (T-1, n_x)
        e: Dynamics right-hand sides (T-1, n_x)
    """
    z: np.ndarray
    states: np.ndarray
    controls: np.ndarray
    cost: float
    gradient: np.ndarray
    hessian: np.ndarray
    F: np.ndarray
    G: np.ndarray
    residuals: np.ndarray
    e: np.ndarray

    @property
    def constant(self) -> float:
        """Offset making the QP objective equal the model merit."""
        return float(
            0.5 * self.z @ (self.hessian * self.z) - self.gradient @ self.z + self.cost
        )


class StageBuilder:
    """
    Builds QP stages for the belief-space SCP problem.

    Args:
        objective: Trajectory objective (system, cost, initial covariance)
        x0: Fixed initial state mean
        x_min, x_max: State limits (scalar or (n_x,))
        u_min, u_max: Control limits (scalar or (n_u,))
        goal: Optional goal region enforced at the horizon boundary
        horizon: Number of active timesteps (default: T)
    """

    def __init__(
        self,
        objective: TrajectoryObjective,
        x0: np.ndarray,
        x_min=-np.inf,
        x_max=np.inf,
        u_min=-np.inf,
        u_max=np.inf,
        goal: Optional[GoalRegion] = None,
        horizon: Optional[int] = None,
    ) -> None:
        self.objective = objective
        self.system = objective.system
        self.T = objective.T
        nx, nu = self.system.x_dim, self.system.u_dim
        self.x0 = as_vector(x0, nx, name="x0")
        self.x_min = as_vector(x_min, nx, name="x_min")
        self.x_max = as_vector(x_max, nx, name="x_max")
        self.u_min = as_vector(u_min, nu, name="u_min")
        self.u_max = as_vector(u_max, nu, name="u_max")
        if np.any(self.x_min > self.x_max) or np.any(self.u_min > self.u_max):
            raise InvalidInputError("lower limits exceed upper limits")

        if goal is not None and goal.center.size != nx:
            raise DimensionError(f"goal has {goal.center.size} components, expected {nx}")
        self.goal = goal

        self.horizon = self.T if horizon is None else int(horizon)
        if not 2 <= self.horizon <= self.T:
            raise InvalidInputError(f"horizon must be in [2, {self.T}], got {self.horizon}")

    @property
    def boundary(self) -> int:
        """Index of the last active timestep."""
        return self.horizon - 1

    def linearize(
        self,
        z: np.ndarray,
        hessian: np.ndarray,
        cost: Optional[float] = None,
        gradient: Optional[np.ndarray] = None,
    ) -> LinearModel:
        """
        Linearize dynamics and cost at ``z``.

        ``cost`` and ``gradient`` may be passed when already known.
        """
        obj = self.objective
        states, controls = obj.unstack(z)
        nx, nu = self.system.x_dim, self.system.u_dim

        F = np.zeros((self.T - 1, nx, nx))
        G = np.zeros((self.T - 1, nx, nu))
        for t in range(self.T - 1):
            F[t], G[t], _ = self.system.linearize_dynamics(states[t], controls[t])

        residuals = obj.dynamics_residuals(z)
        # f̃ = x̄_{t+1} - residual keeps angle components next to x̄_{t+1}
        nominal = states[1:] - residuals
        e = np.einsum("tij,tj->ti", F, states[:-1]) + np.einsum("tij,tj->ti", G, controls) - nominal

        return LinearModel(
            z=np.array(z, dtype=np.float64),
            states=states,
            controls=controls,
            cost=obj.cost(z) if cost is None else cost,
            gradient=obj.gradient(z) if gradient is None else gradient,
            hessian=np.maximum(hessian, 0.0),
            F=F,
            G=G,
            residuals=residuals,
            e=e,
        )

    def box(
        self,
        states: np.ndarray,
        controls: np.ndarray,
        x_radii: Optional[np.ndarray] = None,
        u_radii: Optional[np.ndarray] = None,
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        """
        State and control bounds for every timestep.

        Without radii only the limits, goal and horizon are applied.

        Returns:
            (x_lb, x_ub, u_lb, u_ub) of shapes (T, n_x) and (T-1, n_u)
        """
        nx = self.system.x_dim
        x_radii = np.full(nx, np.inf) if x_radii is None else x_radii
        u_radii = np.full(self.system.u_dim, np.inf) if u_radii is None else u_radii

        x_lb = np.maximum(self.x_min, states - x_radii)
        x_ub = np.minimum(self.x_max, states + x_radii)
        u_lb = np.maximum(self.u_min, controls - u_radii)
        u_ub = np.minimum(self.u_max, controls + u_radii)

        x_lb[0] = self.x0
        x_ub[0] = self.x0

        b = self.boundary
        if self.goal is not None:
            g_lb, g_ub = self.goal.bounds(states[b], self.system.angle_indices)
            mask = self.goal.constrained
            x_lb[b, mask] = np.maximum(self.x_min[mask], g_lb[mask])
            x_ub[b, mask] = np.minimum(self.x_max[mask], g_ub[mask])

        x_lb[b + 1:] = x_lb[b]
        x_ub[b + 1:] = x_ub[b]
        u_lb[b:] = 0.0
        u_ub[b:] = 0.0
        return x_lb, x_ub, u_lb, u_ub

    def project(self, z: np.ndarray) -> np.ndarray:
        """Clip ``z`` into the limits, goal region and horizon bounds."""
        states, controls = self.objective.unstack(z)
        x_lb, x_ub, u_lb, u_ub = self.box(states, controls)
        return stack(np.clip(states, x_lb, x_ub), np.clip(controls, u_lb, u_ub))

    def build(
        self,
        model: LinearModel,
        x_radii: np.ndarray,
        u_radii: np.ndarray,
        penalty: float,
    ) -> List[QPStage]:
        """
        QP stages for one trust-region pass.

        Args:
            model: Linearization of the current point
            x_radii: Trust half-widths per state component
            u_radii: Trust half-widths per control component
            penalty: Penalty coefficient on the slacks
        """
        nx, nu = self.system.x_dim, self.system.u_dim
        T = self.T
        x_lb, x_ub, u_lb, u_ub = self.box(model.states, model.controls, x_radii, u_radii)

        H = model.hessian
        f = model.gradient - H * model.z
        eye = np.eye(nx)

        stages = []
        for t in range(T - 1):
            xs, us = state_index(t, nx, nu), control_index(t, nx, nu)
            n_z = 3 * nx + nu
            stages.append(QPStage(
                kind=StageKind.INTERIOR,
                index=t,
                x_dim=nx,
                u_dim=nu,
                H=np.concatenate([H[xs], H[us], np.zeros(2 * nx)]),
                f=np.concatenate([f[xs], f[us], np.full(2 * nx, penalty)]),
                lb=np.concatenate([x_lb[t], u_lb[t], np.zeros(2 * nx)]),
                ub=np.concatenate([x_ub[t], u_ub[t], np.full(2 * nx, np.inf)]),
                C=np.hstack([model.F[t], model.G[t], eye, -eye]),
                e=model.e[t],
                D=successor_coupling(nx, n_z) if t > 0 else None,
            ))

        xs = state_index(T - 1, nx, nu)
        stages.append(QPStage(
            kind=StageKind.TERMINAL,
            index=T - 1,
            x_dim=nx,
            u_dim=0,
            H=H[xs],
            f=f[xs],
            lb=x_lb[T - 1],
            ub=x_ub[T - 1],
            D=successor_coupling(nx, nx),
        ))
        return stages

    def warm_start(self, model: LinearModel) -> np.ndarray:
        """Stacked QP point equal to the linearization point with exact slacks."""
        parts = []
        for t in range(self.T - 1):
            r = model.residuals[t]
            parts.extend([model.states[t], model.controls[t], np.maximum(r, 0.0), np.maximum(-r, 0.0)])
        parts.append(model.states[-1])
        return np.concatenate(parts)

    def extract(self, stage_solutions: List[np.ndarray]) -> np.ndarray:
        """Stacked decision vector (states and controls) from a QP solution."""
        nx, nu = self.system.x_dim, self.system.u_dim
        parts = []
        for sol in stage_solutions[:-1]:
            parts.append(sol[:nx + nu])
        parts.append(stage_solutions[-1][:nx])
        return np.concatenate(parts)
