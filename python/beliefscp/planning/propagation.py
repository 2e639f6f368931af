"""
Belief Propagation
==================

Extended-Kalman-filter belief dynamics.

During planning no measurement is available, so the propagator performs
the EKF predict step followed by the covariance part of the update (the
mean is the noiseless prediction). For closed-loop execution
:meth:`BeliefPropagator.update` performs the full update with the
measurement innovation.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np

from ..exceptions import DimensionError, NumericalSingularityError
from .belief import Belief
from .dynamics import BeliefSystem, LinearizationResult

logger = logging.getLogger(__name__)


class BeliefPropagator:
    """
    One-step EKF belief dynamics for a :class:`BeliefSystem`.

    Args:
        system: Belief system providing dynamics, observation and noise

    Example:
        >>> propagator = BeliefPropagator(system)
        >>> b1 = propagator.propagate(b0, u0)
    """

    def __init__(self, system: BeliefSystem) -> None:
        self.system = system

    def _gain(
        self,
        lin: LinearizationResult,
        cov_pred: np.ndarray,
        timestep: Optional[int],
    ) -> Optional[np.ndarray]:
        """Kalman gain, or None when the prediction carries no uncertainty."""
        if not np.any(cov_pred):
            return None

        H, N = lin.H, lin.N
        S = H @ cov_pred @ H.T + N @ N.T
        if S.size == 0:
            return None
        if np.linalg.matrix_rank(S) < S.shape[0]:
            raise NumericalSingularityError(timestep=timestep)
        try:
            return np.linalg.solve(S, H @ cov_pred).T
        except np.linalg.LinAlgError as exc:
            raise NumericalSingularityError(str(exc), timestep=timestep) from exc

    def step(
        self,
        x: np.ndarray,
        u: np.ndarray,
        cov: np.ndarray,
        timestep: Optional[int] = None,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Propagate a covariance along the nominal pair ``(x, u)``.

        Returns:
            (mean', cov'') where mean' = f(x, u)

        Raises:
            NumericalSingularityError: if the innovation covariance is
                singular while the predicted covariance is not zero
        """
        lin = self.system.linearize(x, u)
        cov_pred = lin.A @ cov @ lin.A.T + lin.M @ lin.M.T

        K = self._gain(lin, cov_pred, timestep)
        if K is None:
            return lin.c, cov_pred

        cov_new = (np.eye(self.system.x_dim) - K @ lin.H) @ cov_pred
        return lin.c, 0.5 * (cov_new + cov_new.T)

    def propagate(
        self,
        belief: Belief,
        control: np.ndarray,
        timestep: Optional[int] = None,
    ) -> Belief:
        """Open-loop belief propagation (no measurement innovation)."""
        mean, cov = self.step(belief.mean, np.asarray(control, dtype=np.float64), belief.cov, timestep)
        return Belief(mean=mean, cov=cov)

    def update(
        self,
        belief: Belief,
        control: np.ndarray,
        measurement: np.ndarray,
    ) -> Belief:
        """
        Full EKF step using a real measurement.

        Args:
            belief: Current belief
            control: Applied control
            measurement: Observation received after applying ``control``

        Returns:
            Posterior belief
        """
        control = np.asarray(control, dtype=np.float64)
        measurement = np.atleast_1d(np.asarray(measurement, dtype=np.float64))
        if measurement.shape != (self.system.z_dim,):
            raise DimensionError(
                f"measurement has shape {measurement.shape}, expected ({self.system.z_dim},)"
            )

        lin = self.system.linearize(belief.mean, control)
        cov_pred = lin.A @ belief.cov @ lin.A.T + lin.M @ lin.M.T

        K = self._gain(lin, cov_pred, None)
        if K is None:
            return Belief(mean=lin.c, cov=cov_pred)

        innovation = measurement - self.system.observe(lin.c)
        mean = lin.c + K @ innovation
        cov = (np.eye(self.system.x_dim) - K @ lin.H) @ cov_pred
        return Belief(mean=mean, cov=0.5 * (cov + cov.T))

    def rollout(self, belief0: Belief, controls: np.ndarray) -> List[Belief]:
        """Propagate ``belief0`` through a control sequence (T-1, n_u)."""
        controls = np.asarray(controls, dtype=np.float64).reshape(-1, self.system.u_dim)
        beliefs = [belief0]
        for t, u in enumerate(controls):
            beliefs.append(self.propagate(beliefs[-1], u, timestep=t))
        return beliefs

    def rollout_covariances(
        self,
        states: np.ndarray,
        controls: np.ndarray,
        cov0: np.ndarray,
    ) -> np.ndarray:
        """
        Covariances along a given (possibly dynamically infeasible) state path.

        Each step is linearized at ``(states[t], controls[t])`` rather than
        at the propagated mean, so the covariances are a function of the
        decision variables of the optimizer.

        Returns:
            Covariances (T, n_x, n_x)
        """
        T = len(states)
        covs = np.zeros((T, self.system.x_dim, self.system.x_dim))
        covs[0] = cov0
        for t in range(T - 1):
            _, covs[t + 1] = self.step(states[t], controls[t], covs[t], timestep=t)
        return covs


def execute_control_step(
    system: BeliefSystem,
    x_true: np.ndarray,
    belief: Belief,
    control: np.ndarray,
    rng: Union[None, int, np.random.Generator] = None,
    propagator: Optional[BeliefPropagator] = None,
) -> Tuple[np.ndarray, Belief]:
    """
    Apply ``control`` to the true system and filter the resulting measurement.

    The true state advances with sampled process noise, a noisy measurement
    is drawn at the new true state and the belief is updated with it.

    Args:
        system: Belief system
        x_true: True (hidden) state
        belief: Current belief
        control: Control to apply
        rng: Seed or ``numpy.random.Generator``
        propagator: Propagator to reuse (default: a new one for ``system``)

    Returns:
        (x_true', belief')
    """
    if not isinstance(rng, np.random.Generator):
        rng = np.random.default_rng(rng)
    propagator = BeliefPropagator(system) if propagator is None else propagator
    x_true = np.asarray(x_true, dtype=np.float64)
    control = np.asarray(control, dtype=np.float64)

    M = system.process_noise_shaping(x_true, control)
    x_next = system.step(x_true, control) + M @ rng.standard_normal(M.shape[1])

    N = system.observation_noise_shaping(x_next)
    z = system.observe(x_next) + N @ rng.standard_normal(N.shape[1])

    belief_next = propagator.update(belief, control, z)
    logger.debug(
        "executed control %s: true state %s, belief mean %s",
        control, x_next, belief_next.mean,
    )
    return x_next, belief_next


def propagate_beliefs(
    system: BeliefSystem,
    belief0: Belief,
    controls: Sequence[np.ndarray],
) -> List[Belief]:
    """Convenience wrapper around :meth:`BeliefPropagator.rollout`."""
    return BeliefPropagator(system).rollout(belief0, np.asarray(controls))
