"""
Belief System Models
====================

Dynamics/observation models and their finite-difference linearization.

A belief system is defined by

- dynamics:    x_{t+1} = f(x_t, u_t)
- observation: z_t     = h(x_t)
- process-noise shaping M(x, u) so that process covariance is M Mᵀ
- observation-noise shaping N(x) so that observation covariance is N Nᵀ

Jacobians are computed by central differences, which are exact (up to
rounding) for affine functions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence, Union

import numpy as np

from ..exceptions import DimensionError, InvalidInputError

# 2^-7 * 2^-7
DEFAULT_FD_STEP = 0.0078125 * 0.0078125

NoiseModel = Union[None, np.ndarray, Callable[..., np.ndarray]]


def numerical_jacobian(
    fun: Callable[[np.ndarray], np.ndarray],
    x: np.ndarray,
    eps: float = DEFAULT_FD_STEP,
) -> np.ndarray:
    """
    Central-difference Jacobian of ``fun`` at ``x``.

    Column i is ``(fun(x + eps e_i) - fun(x - eps e_i)) / (2 eps)``.

    Args:
        fun: Vector function of a vector argument
        x: Nominal point (n,)
        eps: Perturbation size

    Returns:
        Jacobian (m, n)
    """
    x = np.asarray(x, dtype=np.float64)
    xr = x.copy()
    xl = x.copy()
    columns = []
    for i in range(x.size):
        xr[i] += eps
        xl[i] -= eps
        columns.append(
            (np.asarray(fun(xr), dtype=np.float64) - np.asarray(fun(xl), dtype=np.float64))
            / (2.0 * eps)
        )
        xr[i] = x[i]
        xl[i] = x[i]
    if not columns:
        return np.zeros((np.asarray(fun(x)).size, 0))
    return np.column_stack(columns)


def numerical_gradient(
    fun: Callable[[np.ndarray], float],
    z: np.ndarray,
    eps: float = DEFAULT_FD_STEP,
) -> np.ndarray:
    """Central-difference gradient of a scalar function."""
    z = np.asarray(z, dtype=np.float64)
    zr = z.copy()
    zl = z.copy()
    grad = np.zeros_like(z)
    for i in range(z.size):
        zr[i] += eps
        zl[i] -= eps
        grad[i] = (fun(zr) - fun(zl)) / (2.0 * eps)
        zr[i] = z[i]
        zl[i] = z[i]
    return grad


@dataclass
class LinearizationResult:
    """
    Linearization of a belief system around one (state, control) pair.

    Attributes:
        A: ∂f/∂x (n_x, n_x)
        B: ∂f/∂u (n_x, n_u)
        M: Process-noise shaping at (x, u)
        H: ∂h/∂x at the predicted mean c (n_z, n_x)
        N: Observation-noise shaping at c
        c: Nominal propagated state f(x, u)
    """
    A: np.ndarray
    B: np.ndarray
    M: np.ndarray
    H: np.ndarray
    N: np.ndarray
    c: np.ndarray


@dataclass
class BeliefSystem:
    """
    Discrete-time system with process and sensing uncertainty.

    Args:
        dynamics: f(x, u) -> x'
        observation: h(x) -> z
        x_dim: State dimension
        u_dim: Control dimension
        process_noise: M as a constant matrix or a callable M(x, u);
            None means no process noise
        observation_noise: N as a constant matrix or a callable N(x);
            None means no observation noise
        angle_indices: State components that are angles (wrap-aware
            differencing)
        eps: Finite-difference step for the linearizer
        name: Label used in logs

    Example:
        >>> dt = 0.5
        >>> system = BeliefSystem(
        ...     dynamics=lambda x, u: x + dt * u,
        ...     observation=lambda x: x,
        ...     x_dim=2, u_dim=2,
        ...     process_noise=0.1 * np.eye(2),
        ...     observation_noise=0.2 * np.eye(2),
        ... )
        >>> lin = system.linearize(np.zeros(2), np.ones(2))
        >>> lin.B
        array([[0.5, 0. ],
               [0. , 0.5]])
    """
    dynamics: Callable[[np.ndarray, np.ndarray], np.ndarray]
    observation: Callable[[np.ndarray], np.ndarray]
    x_dim: int
    u_dim: int
    process_noise: NoiseModel = None
    observation_noise: NoiseModel = None
    angle_indices: Sequence[int] = field(default_factory=tuple)
    eps: float = DEFAULT_FD_STEP
    name: str = "system"

    def __post_init__(self):
        """Validate dimensions."""
        if self.x_dim <= 0:
            raise InvalidInputError(f"x_dim must be positive, got {self.x_dim}")
        if self.u_dim < 0:
            raise InvalidInputError(f"u_dim must be non-negative, got {self.u_dim}")
        if self.eps <= 0:
            raise InvalidInputError(f"eps must be positive, got {self.eps}")

        self.angle_indices = tuple(int(i) for i in self.angle_indices)
        for i in self.angle_indices:
            if not 0 <= i < self.x_dim:
                raise DimensionError(f"angle index {i} outside state of size {self.x_dim}")

        x = np.zeros(self.x_dim)
        u = np.zeros(self.u_dim)
        x_next = self.step(x, u)
        if x_next.shape != (self.x_dim,):
            raise DimensionError(
                f"dynamics returned shape {x_next.shape}, expected ({self.x_dim},)"
            )
        self.z_dim = self.observe(x).size

        if self.process_noise is not None and not callable(self.process_noise):
            self.process_noise = np.atleast_2d(np.asarray(self.process_noise, dtype=np.float64))
            if self.process_noise.shape[0] != self.x_dim:
                raise DimensionError(
                    f"process noise rows ({self.process_noise.shape[0]}) must match x_dim ({self.x_dim})"
                )
        if self.observation_noise is not None and not callable(self.observation_noise):
            self.observation_noise = np.atleast_2d(
                np.asarray(self.observation_noise, dtype=np.float64)
            )
            if self.observation_noise.shape[0] != self.z_dim:
                raise DimensionError(
                    f"observation noise rows ({self.observation_noise.shape[0]}) "
                    f"must match z_dim ({self.z_dim})"
                )

    @property
    def n_states(self) -> int:
        """Number of states."""
        return self.x_dim

    @property
    def n_inputs(self) -> int:
        """Number of inputs."""
        return self.u_dim

    def step(self, x: np.ndarray, u: np.ndarray) -> np.ndarray:
        """Evaluate the noiseless dynamics f(x, u)."""
        return np.asarray(self.dynamics(x, u), dtype=np.float64).ravel()

    def observe(self, x: np.ndarray) -> np.ndarray:
        """Evaluate the noiseless observation h(x)."""
        return np.atleast_1d(np.asarray(self.observation(x), dtype=np.float64)).ravel()

    def process_noise_shaping(self, x: np.ndarray, u: np.ndarray) -> np.ndarray:
        """Process-noise shaping M(x, u)."""
        if self.process_noise is None:
            return np.zeros((self.x_dim, self.x_dim))
        if callable(self.process_noise):
            return np.atleast_2d(np.asarray(self.process_noise(x, u), dtype=np.float64))
        return self.process_noise

    def observation_noise_shaping(self, x: np.ndarray) -> np.ndarray:
        """Observation-noise shaping N(x)."""
        if self.observation_noise is None:
            return np.zeros((self.z_dim, self.z_dim))
        if callable(self.observation_noise):
            return np.atleast_2d(np.asarray(self.observation_noise(x), dtype=np.float64))
        return self.observation_noise

    def linearize_dynamics(self, x: np.ndarray, u: np.ndarray):
        """
        Central-difference linearization of the dynamics.

        Returns:
            (A, B, c) with A = ∂f/∂x, B = ∂f/∂u and c = f(x, u)
        """
        x = np.asarray(x, dtype=np.float64)
        u = np.asarray(u, dtype=np.float64)
        A = numerical_jacobian(lambda xv: self.step(xv, u), x, self.eps)
        B = numerical_jacobian(lambda uv: self.step(x, uv), u, self.eps)
        if B.size == 0:
            B = np.zeros((self.x_dim, self.u_dim))
        return A, B, self.step(x, u)

    def linearize_observation(self, x: np.ndarray) -> np.ndarray:
        """Central-difference observation Jacobian ∂h/∂x."""
        return numerical_jacobian(self.observe, np.asarray(x, dtype=np.float64), self.eps)

    def linearize(self, x: np.ndarray, u: np.ndarray) -> LinearizationResult:
        """
        Full linearization for one belief-propagation step.

        The observation is linearized at the predicted mean ``f(x, u)``.
        """
        A, B, c = self.linearize_dynamics(x, u)
        return LinearizationResult(
            A=A,
            B=B,
            M=self.process_noise_shaping(x, u),
            H=self.linearize_observation(c),
            N=self.observation_noise_shaping(c),
            c=c,
        )

    def simulate(self, x0: np.ndarray, u_sequence: np.ndarray) -> np.ndarray:
        """
        Noiseless rollout over a sequence of inputs.

        Returns:
            State trajectory (N+1, n_x) including the initial state
        """
        u_sequence = np.asarray(u_sequence, dtype=np.float64).reshape(-1, self.u_dim)
        N = len(u_sequence)
        trajectory = np.zeros((N + 1, self.x_dim))
        trajectory[0] = x0
        for k in range(N):
            trajectory[k + 1] = self.step(trajectory[k], u_sequence[k])
        return trajectory


def linear_belief_system(
    A: np.ndarray,
    B: np.ndarray,
    C: Optional[np.ndarray] = None,
    c: Optional[np.ndarray] = None,
    M: NoiseModel = None,
    N: NoiseModel = None,
    angle_indices: Sequence[int] = (),
    name: str = "linear",
) -> BeliefSystem:
    """
    Affine belief system x' = A x + B u + c, z = C x.

    Args:
        A: State transition matrix (n_x, n_x)
        B: Input matrix (n_x, n_u)
        C: Output matrix (default: identity)
        c: Constant offset (default: zero)
        M: Process-noise shaping
        N: Observation-noise shaping
    """
    A = np.atleast_2d(np.asarray(A, dtype=np.float64))
    B = np.atleast_2d(np.asarray(B, dtype=np.float64))
    n_x = A.shape[0]
    if A.shape != (n_x, n_x):
        raise DimensionError(f"A must be square, got shape {A.shape}")
    if B.shape[0] != n_x:
        raise DimensionError(f"B rows ({B.shape[0]}) must match A ({n_x})")
    C = np.eye(n_x) if C is None else np.atleast_2d(np.asarray(C, dtype=np.float64))
    if C.shape[1] != n_x:
        raise DimensionError(f"C columns must match state dim {n_x}")
    c = np.zeros(n_x) if c is None else np.asarray(c, dtype=np.float64)

    return BeliefSystem(
        dynamics=lambda x, u: A @ x + B @ u + c,
        observation=lambda x: C @ x,
        x_dim=n_x,
        u_dim=B.shape[1],
        process_noise=M,
        observation_noise=N,
        angle_indices=angle_indices,
        name=name,
    )


def single_integrator(
    dim: int = 1,
    dt: float = 1.0,
    process_std: float = 0.0,
    observation_std: float = 0.0,
) -> BeliefSystem:
    """
    Fully observed single integrator x' = x + u dt.

    Args:
        dim: Number of position components (controls are velocities)
        dt: Sampling time
        process_std: Standard deviation of the process noise per axis
        observation_std: Standard deviation of the position measurement
    """
    I = np.eye(dim)
    return linear_belief_system(
        A=I,
        B=dt * I,
        M=process_std * I,
        N=observation_std * I,
        name="single_integrator",
    )


def point_light_dark(
    dt: float = 1.0,
    light_x: float = 0.0,
    process_std: float = 0.1,
) -> BeliefSystem:
    """
    Planar point robot in the light-dark domain.

    The robot observes its own position; the observation noise grows with
    the horizontal distance from the light at ``x = light_x``, so reducing
    uncertainty requires detouring toward the light.

    States: [x, y]; Inputs: [vx, vy]
    """
    def observation_noise(x):
        intensity = np.sqrt((0.5 * (x[0] - light_x)) ** 2 + 1e-6)
        return intensity * np.eye(2)

    return BeliefSystem(
        dynamics=lambda x, u: x + u * dt,
        observation=lambda x: np.array([x[0], x[1]]),
        x_dim=2,
        u_dim=2,
        process_noise=process_std * np.eye(2),
        observation_noise=observation_noise,
        name="point_light_dark",
    )


def planar_car(
    dt: float = 0.5,
    wheelbase: float = 4.0,
    landmarks: Optional[np.ndarray] = None,
    process_std: Sequence[float] = (0.05, 0.05, 0.01),
    range_std: float = 0.1,
    range_std_scale: float = 0.05,
    heading_std: float = 0.05,
) -> BeliefSystem:
    """
    Kinematic car observing ranges to fixed landmarks and its heading.

    States: [x, y, heading]; Inputs: [velocity, steering angle]. The heading
    (index 2) is an angle.

    Args:
        dt: Sampling time
        wheelbase: Distance between axles
        landmarks: Landmark positions (n_l, 2)
        process_std: Per-state process-noise standard deviation
        range_std: Base range-measurement noise
        range_std_scale: Range noise growth per unit distance
        heading_std: Heading-measurement noise
    """
    if landmarks is None:
        landmarks = np.array([[0.0, 5.0], [10.0, 5.0]])
    landmarks = np.atleast_2d(np.asarray(landmarks, dtype=np.float64))

    def dynamics(x, u):
        v, phi = u[0], u[1]
        return np.array([
            x[0] + v * dt * np.cos(x[2]),
            x[1] + v * dt * np.sin(x[2]),
            x[2] + v * dt * np.tan(phi) / wheelbase,
        ])

    def ranges(x):
        return np.sqrt(np.sum((landmarks - x[:2]) ** 2, axis=1))

    def observation(x):
        return np.concatenate([ranges(x), [x[2]]])

    def observation_noise(x):
        std = np.concatenate([range_std + range_std_scale * ranges(x), [heading_std]])
        return np.diag(std)

    return BeliefSystem(
        dynamics=dynamics,
        observation=observation,
        x_dim=3,
        u_dim=2,
        process_noise=np.diag(np.asarray(process_std, dtype=np.float64)),
        observation_noise=observation_noise,
        angle_indices=(2,),
        name="planar_car",
    )
