"""
Belief Trajectories
===================

Trajectories of T state means, T-1 controls and (optionally) T
covariances, plus the stacked decision-vector layout used by the optimizer:

    z = [x_0, u_0, x_1, u_1, ..., x_{T-2}, u_{T-2}, x_{T-1}]
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ..exceptions import DimensionError, InvalidInputError
from ..utils.angles import nearest_angle_from_to
from .belief import Belief
from .dynamics import BeliefSystem
from .propagation import BeliefPropagator


def stack(states: np.ndarray, controls: np.ndarray) -> np.ndarray:
    """Interleave states (T, n_x) and controls (T-1, n_u) into one vector."""
    parts = []
    for t in range(len(controls)):
        parts.append(states[t])
        parts.append(controls[t])
    parts.append(states[-1])
    return np.concatenate(parts)


def unstack(z: np.ndarray, T: int, x_dim: int, u_dim: int) -> Tuple[np.ndarray, np.ndarray]:
    """Inverse of :func:`stack`."""
    z = np.asarray(z, dtype=np.float64).ravel()
    stride = x_dim + u_dim
    if z.size != T * x_dim + (T - 1) * u_dim:
        raise DimensionError(
            f"decision vector has {z.size} elements, expected {T * x_dim + (T - 1) * u_dim}"
        )
    states = np.array([z[t * stride:t * stride + x_dim] for t in range(T)])
    controls = np.array(
        [z[t * stride + x_dim:(t + 1) * stride] for t in range(T - 1)]
    ).reshape(T - 1, u_dim)
    return states, controls


def state_index(t: int, x_dim: int, u_dim: int) -> slice:
    """Slice of state ``t`` inside the stacked vector."""
    start = t * (x_dim + u_dim)
    return slice(start, start + x_dim)


def control_index(t: int, x_dim: int, u_dim: int) -> slice:
    """Slice of control ``t`` inside the stacked vector."""
    start = t * (x_dim + u_dim) + x_dim
    return slice(start, start + u_dim)


@dataclass
class Trajectory:
    """
    Belief trajectory.

    ``states[0]`` is the boundary condition and is never changed by the
    optimizer; the length T is constant for one optimization call.

    Args:
        states: State means (T, n_x)
        controls: Controls (T-1, n_u)
        covariances: Covariances (T, n_x, n_x), optional

    Example:
        >>> traj = Trajectory.interpolate(b0, x_goal=np.array([10.0]), T=5, u_dim=1)
        >>> traj.T
        5
        >>> z = traj.to_vector()
    """
    states: np.ndarray
    controls: np.ndarray
    covariances: Optional[np.ndarray] = None

    def __post_init__(self):
        """Validate trajectory."""
        self.states = np.asarray(self.states, dtype=np.float64)
        if self.states.ndim == 1:
            self.states = self.states.reshape(-1, 1)
        if len(self.states) < 2:
            raise InvalidInputError(f"trajectory needs at least 2 timesteps, got {len(self.states)}")

        self.controls = np.asarray(self.controls, dtype=np.float64)
        if self.controls.ndim == 1:
            self.controls = self.controls.reshape(len(self.states) - 1, -1)
        if len(self.controls) != len(self.states) - 1:
            raise DimensionError(
                f"{len(self.states)} states require {len(self.states) - 1} controls, "
                f"got {len(self.controls)}"
            )

        if self.covariances is not None:
            self.covariances = np.asarray(self.covariances, dtype=np.float64)
            n = self.x_dim
            if self.covariances.shape != (self.T, n, n):
                raise DimensionError(
                    f"covariances have shape {self.covariances.shape}, "
                    f"expected ({self.T}, {n}, {n})"
                )

    @property
    def T(self) -> int:
        """Number of timesteps."""
        return len(self.states)

    @property
    def x_dim(self) -> int:
        return self.states.shape[1]

    @property
    def u_dim(self) -> int:
        return self.controls.shape[1]

    @property
    def beliefs(self) -> List[Belief]:
        """Beliefs at every timestep (requires covariances)."""
        if self.covariances is None:
            raise InvalidInputError("trajectory has no covariances")
        return [Belief(mean=x, cov=c) for x, c in zip(self.states, self.covariances)]

    def to_vector(self) -> np.ndarray:
        """Stacked decision vector."""
        return stack(self.states, self.controls)

    @classmethod
    def from_vector(
        cls,
        z: np.ndarray,
        T: int,
        x_dim: int,
        u_dim: int,
        covariances: Optional[np.ndarray] = None,
    ) -> "Trajectory":
        states, controls = unstack(z, T, x_dim, u_dim)
        return cls(states=states, controls=controls, covariances=covariances)

    def copy(self) -> "Trajectory":
        return Trajectory(
            states=self.states.copy(),
            controls=self.controls.copy(),
            covariances=None if self.covariances is None else self.covariances.copy(),
        )

    def shifted(self) -> "Trajectory":
        """
        Controls shifted one step left with the last control repeated.

        States are dropped to the same length; the result is meant to be
        re-rolled from a new initial belief.
        """
        controls = np.vstack([self.controls[1:], self.controls[-1:]])
        states = np.vstack([self.states[1:], self.states[-1:]])
        return Trajectory(states=states, controls=controls)

    @classmethod
    def rollout(
        cls,
        system: BeliefSystem,
        belief0: Belief,
        controls: np.ndarray,
        propagator: Optional[BeliefPropagator] = None,
    ) -> "Trajectory":
        """
        Trajectory obtained by propagating ``belief0`` through ``controls``.
        """
        propagator = BeliefPropagator(system) if propagator is None else propagator
        controls = np.asarray(controls, dtype=np.float64).reshape(-1, system.u_dim)
        beliefs = propagator.rollout(belief0, controls)
        return cls(
            states=np.array([b.mean for b in beliefs]),
            controls=controls,
            covariances=np.array([b.cov for b in beliefs]),
        )

    @classmethod
    def interpolate(
        cls,
        belief0: Belief,
        x_goal: np.ndarray,
        T: int,
        u_dim: int,
        angle_indices: Sequence[int] = (),
    ) -> "Trajectory":
        """
        Straight-line states from ``belief0.mean`` to ``x_goal`` with zero controls.

        Angle components travel along the shorter arc.
        """
        x0 = belief0.mean
        x_goal = np.asarray(x_goal, dtype=np.float64).ravel().copy()
        if x_goal.shape != x0.shape:
            raise DimensionError(f"goal has shape {x_goal.shape}, expected {x0.shape}")
        for i in angle_indices:
            x_goal[i] = nearest_angle_from_to(x0[i], x_goal[i])

        alphas = np.linspace(0.0, 1.0, T)[:, None]
        states = (1.0 - alphas) * x0 + alphas * x_goal
        return cls(states=states, controls=np.zeros((T - 1, u_dim)))

    def __repr__(self) -> str:
        return f"Trajectory(T={self.T}, x_dim={self.x_dim}, u_dim={self.u_dim})"
