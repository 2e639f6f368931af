"""beliefscp QP Solver Interface."""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
from scipy import sparse
from scipy.optimize import Bounds, minimize

from .exceptions import DimensionError
from .result import QPResult, Status
from .stage import QPStage

logger = logging.getLogger(__name__)

# SLSQP exit modes
_SLSQP_SUCCESS = 0
_SLSQP_INCOMPATIBLE = 4
_SLSQP_LINESEARCH = 8
_SLSQP_MAXITER = 9


class _TimeLimitReached(Exception):
    def __init__(self, x: np.ndarray, iterations: int) -> None:
        self.x = x
        self.iterations = iterations
        super().__init__("time limit reached")


def assemble(stages: Sequence[QPStage]):
    """
    Stack per-stage data into one sparse QP.

    Returns:
        (h, f, lb, ub, A_eq, b_eq, offsets) where ``h`` is the diagonal of
        the quadratic term, ``A_eq`` is the block tri-diagonal equality
        matrix (CSR) and ``offsets[t]`` is the start of stage t in the
        stacked vector.
    """
    if not stages:
        raise DimensionError("at least one stage is required")

    sizes = [s.n_vars for s in stages]
    offsets = np.concatenate([[0], np.cumsum(sizes)]).astype(int)

    h = np.concatenate([s.H for s in stages])
    f = np.concatenate([s.f for s in stages])
    lb = np.concatenate([s.lb for s in stages])
    ub = np.concatenate([s.ub for s in stages])

    eq_stages = [t for t, s in enumerate(stages) if s.n_eq > 0]
    blocks: List[List[Optional[sparse.spmatrix]]] = []
    rhs = []
    for t in eq_stages:
        if t + 1 >= len(stages):
            raise DimensionError(f"stage {t} opens a dynamics block but has no successor")
        nxt = stages[t + 1]
        if nxt.D is None:
            raise DimensionError(f"stage {t + 1} is missing its coupling matrix D")
        if nxt.D.shape[0] != stages[t].n_eq:
            raise DimensionError(
                f"stage {t + 1} D has {nxt.D.shape[0]} rows, "
                f"expected {stages[t].n_eq}"
            )
        row: List[Optional[sparse.spmatrix]] = [None] * len(stages)
        row[t] = sparse.csr_matrix(stages[t].C)
        row[t + 1] = sparse.csr_matrix(nxt.D)
        blocks.append(row)
        rhs.append(stages[t].e)

    n = int(offsets[-1])
    if blocks:
        # bmat needs every column block to be sized at least once
        for j, size in enumerate(sizes):
            if all(row[j] is None for row in blocks):
                blocks[0][j] = sparse.csr_matrix((blocks[0][eq_stages[0]].shape[0], size))
        A_eq = sparse.bmat(blocks, format="csr")
        b_eq = np.concatenate(rhs)
    else:
        A_eq = sparse.csr_matrix((0, n))
        b_eq = np.zeros(0)

    return h, f, lb, ub, A_eq, b_eq, offsets


class QPSolver:
    """
    Solver session for the structured stage QP.

    One session is created per optimize call and reused for every
    trust-region pass. The QP is solved with SciPy's SLSQP using the exact
    objective gradient and constraint Jacobian; variables pinned by
    ``lb == ub`` are eliminated first.

    Args:
        params: Solver parameters
            - max_iterations: SLSQP iteration limit (default 500)
            - tolerance: SLSQP ``ftol`` (default 1e-10)
            - feasibility_tolerance: accepted equality residual (default 1e-6)
            - time_limit: wall-clock seconds per solve, None for no limit
            - verbose: log SLSQP progress

    Example:
        >>> solver = QPSolver({"max_iterations": 200})
        >>> result = solver.solve(stages)
        >>> result.status.has_solution
        True
    """

    def __init__(self, params: Optional[Dict[str, Any]] = None) -> None:
        params = params or {}
        self.max_iters = int(params.get("max_iterations", params.get("max_iters", 500)))
        self.tol = float(params.get("tolerance", params.get("tol", 1e-10)))
        self.feas_tol = float(params.get("feasibility_tolerance", 1e-6))
        self.time_limit = params.get("time_limit")
        self.verbose = bool(params.get("verbose", False))
        self.n_solves = 0
        self.total_time = 0.0

    def solve(
        self,
        stages: Sequence[QPStage],
        warm_start: Optional[np.ndarray] = None,
    ) -> QPResult:
        """
        Solve the QP defined by ``stages``.

        Args:
            stages: Stage list ordered by timestep
            warm_start: Stacked initial guess (clipped into the bounds)

        Returns:
            QPResult with per-stage solution slices
        """
        start_time = time.perf_counter()
        h, f, lb, ub, A_eq, b_eq, offsets = assemble(stages)
        n = len(h)

        result = self._solve_stacked(h, f, lb, ub, A_eq, b_eq, warm_start)
        result.stage_solutions = [
            result.x[offsets[t]:offsets[t + 1]] for t in range(len(stages))
        ]
        result.solve_time = time.perf_counter() - start_time
        result.problem_info = {"n_vars": n, "n_eq": A_eq.shape[0], "n_stages": len(stages)}

        self.n_solves += 1
        self.total_time += result.solve_time
        logger.debug(
            "QP solve %d: status=%s objective=%.10g iterations=%d residual=%.3e",
            self.n_solves, result.status, result.objective,
            result.iterations, result.primal_residual,
        )
        return result

    def _solve_stacked(self, h, f, lb, ub, A_eq, b_eq, warm_start) -> QPResult:
        n = len(h)

        def _failed(status: Status) -> QPResult:
            return QPResult(status=status, objective=float("nan"), x=np.zeros(n),
                            stage_solutions=[], iterations=0, solve_time=0.0)

        data = [h, f, b_eq, lb[np.isfinite(lb)], ub[np.isfinite(ub)]]
        if any(np.isnan(d).any() for d in data) or np.isnan(A_eq.data).any():
            return _failed(Status.INVALID_INPUT)
        if np.any(lb > ub + 1e-12):
            return _failed(Status.PRIMAL_INFEASIBLE)

        fixed = np.isfinite(lb) & np.isfinite(ub) & (ub - lb <= 1e-12)
        free = ~fixed
        x_full = np.zeros(n)
        x_full[fixed] = lb[fixed]

        A_free = A_eq[:, free].toarray()
        b_free = b_eq - A_eq[:, fixed] @ x_full[fixed]
        h_free, f_free = h[free], f[free]
        lb_free, ub_free = lb[free], ub[free]

        if warm_start is not None:
            x0 = np.asarray(warm_start, dtype=np.float64).ravel()[free]
        else:
            x0 = np.zeros(int(free.sum()))
        x0 = np.clip(x0, lb_free, ub_free)

        status = Status.OPTIMAL
        iterations = 0
        if free.any():
            deadline = (
                time.perf_counter() + float(self.time_limit)
                if self.time_limit is not None else None
            )
            iters = [0]

            def _callback(xk):
                iters[0] += 1
                if deadline is not None and time.perf_counter() > deadline:
                    raise _TimeLimitReached(np.array(xk, copy=True), iters[0])

            constraints = []
            if A_free.shape[0] > 0:
                constraints.append({
                    "type": "eq",
                    "fun": lambda x, A=A_free, b=b_free: A @ x - b,
                    "jac": lambda x, A=A_free: A,
                })

            try:
                res = minimize(
                    lambda x: 0.5 * x @ (h_free * x) + f_free @ x,
                    x0,
                    jac=lambda x: h_free * x + f_free,
                    method="SLSQP",
                    bounds=Bounds(lb_free, ub_free),
                    constraints=constraints,
                    callback=_callback,
                    options={"maxiter": self.max_iters, "ftol": self.tol, "disp": self.verbose},
                )
            except _TimeLimitReached as exc:
                x_full[free] = np.clip(exc.x, lb_free, ub_free)
                return self._package(Status.TIME_LIMIT, h, f, A_eq, b_eq, x_full, exc.iterations)

            x_full[free] = np.clip(res.x, lb_free, ub_free)
            iterations = int(getattr(res, "nit", 0))
            status = self._map_status(res.status)
            if self.verbose and status != Status.OPTIMAL:
                logger.info("SLSQP exit %d: %s", res.status, res.message)

        feas_limit = self.feas_tol * max(1.0, float(np.abs(b_eq).max(initial=0.0)))
        result = self._package(status, h, f, A_eq, b_eq, x_full, iterations)
        if result.primal_residual > feas_limit:
            if result.status == Status.PRIMAL_INFEASIBLE or not free.any():
                result.status = Status.PRIMAL_INFEASIBLE
            else:
                result.status = Status.NUMERICAL_ERROR
        elif result.status == Status.PRIMAL_INFEASIBLE:
            # SLSQP reports incompatible linearizations spuriously near degenerate vertices
            result.status = Status.MAX_ITERATIONS

        if warm_start is not None and result.status.has_solution:
            x_ws = x_full.copy()
            x_ws[free] = x0
            start = self._package(result.status, h, f, A_eq, b_eq, x_ws, iterations)
            # never return a point worse than a feasible starting point
            if start.primal_residual <= feas_limit and start.objective < result.objective:
                logger.debug(
                    "QP iterate %.10g worse than warm start %.10g, keeping warm start",
                    result.objective, start.objective,
                )
                return start
        return result

    @staticmethod
    def _map_status(code: int) -> Status:
        if code == _SLSQP_SUCCESS:
            return Status.OPTIMAL
        if code == _SLSQP_INCOMPATIBLE:
            return Status.PRIMAL_INFEASIBLE
        if code in (_SLSQP_MAXITER, _SLSQP_LINESEARCH):
            return Status.MAX_ITERATIONS
        return Status.NUMERICAL_ERROR

    @staticmethod
    def _package(status, h, f, A_eq, b_eq, x, iterations) -> QPResult:
        residual = float(np.abs(A_eq @ x - b_eq).max(initial=0.0))
        objective = float(0.5 * x @ (h * x) + f @ x)
        return QPResult(status=status, objective=objective, x=x, stage_solutions=[],
                        iterations=iterations, solve_time=0.0, primal_residual=residual)


def solve_stages(
    stages: Sequence[QPStage],
    params: Optional[Dict[str, Any]] = None,
    warm_start: Optional[np.ndarray] = None,
) -> QPResult:
    """Solve a stage list with a one-off solver session."""
    return QPSolver(params).solve(stages, warm_start=warm_start)
