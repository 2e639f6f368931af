"""
Belief-Space Costs and Merit
============================

Costs over belief trajectories and the penalized merit function
minimized by the SCP optimizer:

    merit(z) = cost(z) + penalty * Σ_t |x_{t+1} - f(x_t, u_t)|_1

where the covariances inside ``cost`` are rolled out along the states of
the decision vector ``z`` and angular components of the dynamics
residual are wrapped to the nearest equivalent angle.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

from ..exceptions import DimensionError, InvalidInputError
from ..utils.angles import state_difference
from .dynamics import BeliefSystem, numerical_gradient
from .propagation import BeliefPropagator
from .trajectory import unstack

CostFunction = Callable[[np.ndarray, np.ndarray, np.ndarray], float]
GradientFunction = Callable[[np.ndarray], np.ndarray]


@dataclass
class BeliefCost:
    """
    Uncertainty-plus-effort cost.

        Σ_{t<T-1} [alpha_belief tr(W Σ_t) + alpha_control |u_t|²]
            + alpha_final_belief tr(W Σ_{T-1})

    Args:
        alpha_belief: Weight of the running uncertainty
        alpha_control: Weight of the control effort
        alpha_final_belief: Weight of the final uncertainty
        state_weights: Diagonal of W (default: all ones). Zero entries
            drop components from the trace, e.g. to penalize joint
            uncertainty but not parameter uncertainty.
    """
    alpha_belief: float = 10.0
    alpha_control: float = 1.0
    alpha_final_belief: float = 10.0
    state_weights: Optional[np.ndarray] = None

    def __post_init__(self):
        for name in ("alpha_belief", "alpha_control", "alpha_final_belief"):
            if getattr(self, name) < 0:
                raise InvalidInputError(f"{name} must be non-negative, got {getattr(self, name)}")
        if self.state_weights is not None:
            self.state_weights = np.asarray(self.state_weights, dtype=np.float64).ravel()

    def _trace(self, cov: np.ndarray) -> float:
        if self.state_weights is None:
            return float(np.trace(cov))
        if self.state_weights.size != cov.shape[0]:
            raise DimensionError(
                f"state_weights has {self.state_weights.size} entries, expected {cov.shape[0]}"
            )
        return float(self.state_weights @ np.diag(cov))

    def stage_cost(self, cov: np.ndarray, u: np.ndarray) -> float:
        """Running cost of one timestep."""
        return self.alpha_belief * self._trace(cov) + self.alpha_control * float(u @ u)

    def final_cost(self, cov: np.ndarray) -> float:
        """Terminal cost."""
        return self.alpha_final_belief * self._trace(cov)

    def __call__(self, states: np.ndarray, controls: np.ndarray, covariances: np.ndarray) -> float:
        total = 0.0
        for t in range(len(controls)):
            total += self.stage_cost(covariances[t], controls[t])
        return total + self.final_cost(covariances[-1])


class TrajectoryObjective:
    """
    Cost, gradient, dynamics residual and merit over the stacked vector.

    Args:
        system: Belief system
        cost: Callable ``cost(states, controls, covariances) -> float``
        cov0: Initial covariance
        T: Number of timesteps
        gradient: Optional exact gradient ``gradient(z) -> (n_z,)``; by
            default central differences of ``cost`` are used
        eps: Finite-difference step for the default gradient
    """

    def __init__(
        self,
        system: BeliefSystem,
        cost: CostFunction,
        cov0: np.ndarray,
        T: int,
        gradient: Optional[GradientFunction] = None,
        eps: Optional[float] = None,
    ) -> None:
        self.system = system
        self.cost_fn = cost
        self.cov0 = np.asarray(cov0, dtype=np.float64)
        self.T = T
        self.gradient_fn = gradient
        self.eps = system.eps if eps is None else eps
        self.propagator = BeliefPropagator(system)
        self.n_evaluations = 0

    @property
    def n_vars(self) -> int:
        return self.T * self.system.x_dim + (self.T - 1) * self.system.u_dim

    def unstack(self, z: np.ndarray):
        return unstack(z, self.T, self.system.x_dim, self.system.u_dim)

    def covariances(self, z: np.ndarray) -> np.ndarray:
        """Covariances rolled out along the states of ``z``."""
        states, controls = self.unstack(z)
        return self.propagator.rollout_covariances(states, controls, self.cov0)

    def cost(self, z: np.ndarray) -> float:
        """True nonlinear cost at ``z``."""
        self.n_evaluations += 1
        states, controls = self.unstack(z)
        covs = self.propagator.rollout_covariances(states, controls, self.cov0)
        return float(self.cost_fn(states, controls, covs))

    def gradient(self, z: np.ndarray) -> np.ndarray:
        """Cost gradient at ``z``."""
        if self.gradient_fn is not None:
            grad = np.asarray(self.gradient_fn(z), dtype=np.float64).ravel()
            if grad.shape != (self.n_vars,):
                raise DimensionError(f"gradient has shape {grad.shape}, expected ({self.n_vars},)")
            return grad
        return numerical_gradient(self.cost, z, self.eps)

    def dynamics_residuals(self, z: np.ndarray) -> np.ndarray:
        """
        Residuals ``x_{t+1} - f(x_t, u_t)`` with angle wrapping, shape (T-1, n_x).
        """
        states, controls = self.unstack(z)
        residuals = np.zeros((self.T - 1, self.system.x_dim))
        for t in range(self.T - 1):
            residuals[t] = state_difference(
                states[t + 1],
                self.system.step(states[t], controls[t]),
                self.system.angle_indices,
            )
        return residuals

    def violation(self, z: np.ndarray) -> float:
        """Total absolute dynamics violation."""
        return float(np.abs(self.dynamics_residuals(z)).sum())

    def merit(self, z: np.ndarray, penalty: float) -> float:
        """Cost plus penalized dynamics violation."""
        return self.cost(z) + penalty * self.violation(z)
