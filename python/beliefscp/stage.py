"""
QP Stage Data
=============

Per-timestep blocks of the structured QP solved at every trust-region pass.

Each stage owns its decision variables ``z_t`` and contributes

    minimize    (1/2) z_t' diag(H_t) z_t + f_t' z_t
    subject to  C_t z_t + D_{t+1} z_{t+1} = e_t     (interior stages)
                lb_t <= z_t <= ub_t

so the equality constraints are block tri-diagonal: each stage couples only
to its immediate successor.

Interior stage layout: ``z_t = [x_t, u_t, s⁺_t, s⁻_t]`` where the slacks
absorb the dynamics residual. Terminal stage layout: ``z_T = [x_T]``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np

from .exceptions import DimensionError


class StageKind(Enum):
    """Stage variant: interior stages carry controls, slacks and dynamics."""
    INTERIOR = "interior"
    TERMINAL = "terminal"

    def __str__(self) -> str:
        return self.value


@dataclass
class QPStage:
    """
    Matrices of one QP stage.

    Attributes:
        kind: StageKind of this stage
        index: Timestep index t
        x_dim: State dimension
        u_dim: Control dimension (0 for terminal stages)
        H: Diagonal of the quadratic cost (n_z,)
        f: Linear cost (n_z,)
        lb: Lower bounds (n_z,)
        ub: Upper bounds (n_z,)
        C: Coupling of this stage into the dynamics block (x_dim, n_z),
           interior stages only
        e: Right-hand side of the dynamics block (x_dim,), interior only
        D: Coupling of this stage into its predecessor's dynamics block
           (x_dim, n_z), every stage except the first
    """
    kind: StageKind
    index: int
    x_dim: int
    u_dim: int
    H: np.ndarray
    f: np.ndarray
    lb: np.ndarray
    ub: np.ndarray
    C: Optional[np.ndarray] = None
    e: Optional[np.ndarray] = None
    D: Optional[np.ndarray] = None

    def __post_init__(self):
        """Validate dimensions."""
        self.H = np.asarray(self.H, dtype=np.float64)
        self.f = np.asarray(self.f, dtype=np.float64)
        self.lb = np.asarray(self.lb, dtype=np.float64)
        self.ub = np.asarray(self.ub, dtype=np.float64)

        n_z = self.n_vars
        for name in ("H", "f", "lb", "ub"):
            arr = getattr(self, name)
            if arr.shape != (n_z,):
                raise DimensionError(
                    f"stage {self.index} {name} has shape {arr.shape}, expected ({n_z},)"
                )

        if self.kind == StageKind.INTERIOR:
            if self.C is None or self.e is None:
                raise DimensionError(f"interior stage {self.index} requires C and e")
            self.C = np.asarray(self.C, dtype=np.float64)
            self.e = np.asarray(self.e, dtype=np.float64)
            if self.C.shape != (self.x_dim, n_z):
                raise DimensionError(
                    f"stage {self.index} C has shape {self.C.shape}, "
                    f"expected ({self.x_dim}, {n_z})"
                )
            if self.e.shape != (self.x_dim,):
                raise DimensionError(
                    f"stage {self.index} e has shape {self.e.shape}, expected ({self.x_dim},)"
                )

        if self.D is not None:
            self.D = np.asarray(self.D, dtype=np.float64)
            if self.D.shape[1] != n_z:
                raise DimensionError(
                    f"stage {self.index} D has {self.D.shape[1]} columns, expected {n_z}"
                )

    @property
    def n_vars(self) -> int:
        """Number of decision variables in this stage."""
        if self.kind == StageKind.TERMINAL:
            return self.x_dim
        return 3 * self.x_dim + self.u_dim

    @property
    def n_eq(self) -> int:
        """Number of equality rows this stage opens (its dynamics block)."""
        return self.x_dim if self.kind == StageKind.INTERIOR else 0

    @property
    def x_slice(self) -> slice:
        return slice(0, self.x_dim)

    @property
    def u_slice(self) -> slice:
        return slice(self.x_dim, self.x_dim + self.u_dim)

    @property
    def slack_pos_slice(self) -> slice:
        start = self.x_dim + self.u_dim
        return slice(start, start + self.x_dim)

    @property
    def slack_neg_slice(self) -> slice:
        start = 2 * self.x_dim + self.u_dim
        return slice(start, start + self.x_dim)

    def objective(self, z: np.ndarray) -> float:
        """Evaluate this stage's QP objective at ``z``."""
        return float(0.5 * z @ (self.H * z) + self.f @ z)

    def __repr__(self) -> str:
        return (
            f"QPStage(kind={self.kind}, index={self.index}, "
            f"n_vars={self.n_vars}, n_eq={self.n_eq})"
        )


def successor_coupling(x_dim: int, n_vars: int) -> np.ndarray:
    """
    Coupling ``D`` that subtracts the next stage's state from a dynamics block.

    Returns ``[-I, 0]`` of shape (x_dim, n_vars).
    """
    D = np.zeros((x_dim, n_vars))
    D[:, :x_dim] = -np.eye(x_dim)
    return D
