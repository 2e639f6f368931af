"""
Optimizer Configuration
=======================

Settings of the penalty / trust-region SCP loop.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np

from ..exceptions import DimensionError, InvalidInputError

STATE = "state"
CONTROL = "control"


@dataclass
class TrustRegionGroup:
    """
    Trust-region limit shared by a group of state or control components.

    Args:
        name: Group label (used in logs)
        kind: ``"state"`` or ``"control"``
        indices: Component indices inside the state or control vector
        initial_size: Initial half-width of the trust box

    Example:
        >>> TrustRegionGroup("heading", "state", [2], initial_size=np.pi / 6)
    """
    name: str
    kind: str
    indices: Sequence[int]
    initial_size: float

    def __post_init__(self):
        if self.kind not in (STATE, CONTROL):
            raise InvalidInputError(f"group kind must be 'state' or 'control', got {self.kind!r}")
        if not self.initial_size > 0:
            raise InvalidInputError(
                f"trust region '{self.name}' must start positive, got {self.initial_size}"
            )
        self.indices = tuple(int(i) for i in self.indices)


@dataclass
class SCPConfig:
    """
    Configuration of the belief-space SCP optimizer.

    Trust region:
        improve_ratio_threshold: Minimum exact/approximate improvement ratio
            for a step to be accepted
        min_approx_improve: Predicted improvement below which the inner
            loop has converged
        invalid_improve_threshold: Predicted improvement below ``-threshold``
            signals an invalid convexification
        min_trust_box_size: The inner loop stops once every limit is below it
        max_trust_box_size: Upper clamp applied on expansion
        initial_trust_box_size: Size of the default state/control groups
        trust_shrink_ratio: Multiplier on rejection
        trust_expand_ratio: Multiplier on acceptance
        trust_region_groups: Per-group limits; components not covered by a
            group fall into default ``state``/``control`` groups

    Penalty:
        cnt_tolerance: Acceptable total dynamics violation
        initial_penalty_coeff: Starting penalty coefficient
        penalty_coeff_increase_ratio: Multiplier applied per increase
        max_penalty_coeff_increases: Number of allowed increases
        max_sqp_iterations: Linearizations per penalty level

    Model:
        initial_curvature: Scalar or diagonal used to seed the curvature
            approximation
        finite_difference_step: Step for the cost gradient (default: the
            system's linearization step)
        qp_params: Parameters forwarded to :class:`~beliefscp.QPSolver`

    Example:
        >>> config = SCPConfig(max_penalty_coeff_increases=3, qp_params={"time_limit": 5.0})
    """
    improve_ratio_threshold: float = 0.1
    min_approx_improve: float = 1e-3
    invalid_improve_threshold: float = 1e-5
    min_trust_box_size: float = 1e-2
    max_trust_box_size: float = 1e3
    initial_trust_box_size: float = 1.0
    trust_shrink_ratio: float = 0.5
    trust_expand_ratio: float = 1.2
    trust_region_groups: List[TrustRegionGroup] = field(default_factory=list)

    cnt_tolerance: float = 1e-2
    initial_penalty_coeff: float = 5.0
    penalty_coeff_increase_ratio: float = 5.0
    max_penalty_coeff_increases: int = 8
    max_sqp_iterations: int = 50

    initial_curvature: Union[float, np.ndarray] = 1.0
    finite_difference_step: Optional[float] = None
    qp_params: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """Validate settings."""
        positive = (
            "min_approx_improve", "min_trust_box_size", "max_trust_box_size",
            "initial_trust_box_size", "cnt_tolerance", "initial_penalty_coeff",
        )
        for name in positive:
            if not getattr(self, name) > 0:
                raise InvalidInputError(f"{name} must be positive, got {getattr(self, name)}")
        if self.invalid_improve_threshold < 0:
            raise InvalidInputError("invalid_improve_threshold must be non-negative")
        if not 0 < self.trust_shrink_ratio < 1:
            raise InvalidInputError(f"trust_shrink_ratio must be in (0, 1), got {self.trust_shrink_ratio}")
        if not self.trust_expand_ratio >= 1:
            raise InvalidInputError(f"trust_expand_ratio must be >= 1, got {self.trust_expand_ratio}")
        if not self.penalty_coeff_increase_ratio > 1:
            raise InvalidInputError(
                f"penalty_coeff_increase_ratio must be > 1, got {self.penalty_coeff_increase_ratio}"
            )
        if self.max_penalty_coeff_increases < 0:
            raise InvalidInputError("max_penalty_coeff_increases must be non-negative")
        if self.max_sqp_iterations < 1:
            raise InvalidInputError("max_sqp_iterations must be at least 1")
        if self.min_trust_box_size > self.max_trust_box_size:
            raise InvalidInputError("min_trust_box_size exceeds max_trust_box_size")
        if self.finite_difference_step is not None and not self.finite_difference_step > 0:
            raise InvalidInputError("finite_difference_step must be positive")
        if np.any(np.asarray(self.initial_curvature) < 0):
            raise InvalidInputError("initial_curvature must be non-negative")

    def replace(self, **changes) -> "SCPConfig":
        """Copy with some fields changed."""
        return dataclasses.replace(self, **changes)

    def resolve_groups(self, x_dim: int, u_dim: int) -> List[TrustRegionGroup]:
        """
        Trust-region groups covering every state and control component once.
        """
        covered = {STATE: set(), CONTROL: set()}
        dims = {STATE: x_dim, CONTROL: u_dim}
        for group in self.trust_region_groups:
            for i in group.indices:
                if not 0 <= i < dims[group.kind]:
                    raise DimensionError(
                        f"trust region '{group.name}' index {i} outside {group.kind} of size {dims[group.kind]}"
                    )
                if i in covered[group.kind]:
                    raise InvalidInputError(
                        f"{group.kind} component {i} belongs to more than one trust region group"
                    )
                covered[group.kind].add(i)

        groups = list(self.trust_region_groups)
        for kind in (STATE, CONTROL):
            rest = [i for i in range(dims[kind]) if i not in covered[kind]]
            if rest:
                groups.append(TrustRegionGroup(kind, kind, rest, self.initial_trust_box_size))
        return groups

    def curvature_diagonal(self, n: int) -> np.ndarray:
        """Initial curvature diagonal of length ``n``."""
        diag = np.asarray(self.initial_curvature, dtype=np.float64)
        if diag.ndim == 0:
            return np.full(n, float(diag))
        diag = diag.ravel()
        if diag.size != n:
            raise DimensionError(f"initial_curvature has {diag.size} entries, expected {n}")
        return diag.copy()


def planar_car_trust_groups() -> List[TrustRegionGroup]:
    """
    Trust-region groups for :func:`~beliefscp.planning.dynamics.planar_car`.

    Position, heading, velocity and steering each get their own limit.
    """
    return [
        TrustRegionGroup("position", STATE, [0, 1], 1.0),
        TrustRegionGroup("heading", STATE, [2], np.pi / 6),
        TrustRegionGroup("velocity", CONTROL, [0], 1.0),
        TrustRegionGroup("steering", CONTROL, [1], np.pi / 8),
    ]
