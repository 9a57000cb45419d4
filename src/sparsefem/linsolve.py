"""Linear solver contract: ConstrainedSystem -> Solution.

The factorisation and Krylov iterations are scipy's; this module maps their
failure modes onto `SingularSystemError` / `SolverDivergedError` and enforces
the iteration and wall-clock budgets.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

import numpy as np
import scipy.sparse.linalg as spla
from numpy.typing import NDArray

from .constraints import ConstrainedSystem
from .datastructures import SolveMetrics, SolverParameters
from .errors import SingularSystemError, SolverDivergedError

log = logging.getLogger(__name__)

_KRYLOV = {
    "cg": spla.cg,
    "gmres": spla.gmres,
    "bicgstab": spla.bicgstab,
}

# Relative residual above which an LU solution is taken as a singular system
_DIRECT_RESIDUAL_TOL = 1e-8


@dataclass(frozen=True)
class Solution:
    """DOF values (read-only) and how they were obtained."""

    values: NDArray[np.float64]
    metrics: SolveMetrics

    def __len__(self) -> int:
        return len(self.values)


class _DeadlineExceeded(Exception):
    pass


def _relative_residual(A, x, b) -> float:
    r = np.linalg.norm(b - A @ x)
    nb = np.linalg.norm(b)
    return float(r / nb) if nb > 0 else float(r)


def _solve_direct(A, b):
    try:
        lu = spla.splu(A.tocsc())
    except RuntimeError as exc:
        # SuperLU reports "Factor is exactly singular"
        raise SingularSystemError(f"Sparse LU failed: {exc}") from exc
    return lu.solve(b), 1


def _solve_krylov(A, b, params: SolverParameters, t0: float):
    method = _KRYLOV[params.method]
    count = [0]

    def callback(_):
        count[0] += 1
        if params.deadline is not None and time.perf_counter() - t0 > params.deadline:
            raise _DeadlineExceeded

    kwargs = dict(rtol=params.tol, maxiter=params.maxiter, callback=callback)
    if params.method == "gmres":
        kwargs.update(restart=params.restart, callback_type="pr_norm")

    try:
        x, info = method(A, b, **kwargs)
    except _DeadlineExceeded:
        raise SolverDivergedError(
            f"{params.method} exceeded deadline of {params.deadline}s after {count[0]} iterations",
            iterations=count[0],
        ) from None

    if info > 0:
        residual = _relative_residual(A, x, b)
        raise SolverDivergedError(
            f"{params.method} did not reach rtol={params.tol} in {count[0]} iterations "
            f"(residual {residual:.3e})",
            iterations=count[0],
            residual=residual,
        )
    if info < 0:
        raise SingularSystemError(
            f"{params.method} broke down (info={info})", iterations=count[0]
        )
    return x, count[0]


def solve(system: ConstrainedSystem, params: SolverParameters | None = None, **kwargs) -> Solution:
    """
    Solve the constrained system.

    Parameters
    ----------
    system : ConstrainedSystem
    params : SolverParameters, optional
        If not provided, kwargs are used to create params.

    Returns
    -------
    Solution

    Raises
    ------
    SingularSystemError
        Singular factorisation, Krylov breakdown, non-finite result or an
        LU solution that does not satisfy the system.
    SolverDivergedError
        Iteration budget or deadline exceeded.
    """
    if params is None:
        params = SolverParameters(**kwargs)
    if params.method != "direct" and params.method not in _KRYLOV:
        raise ValueError(f"Unknown solver method '{params.method}'")

    A, b = system.matrix, system.rhs
    t0 = time.perf_counter()

    if params.method == "direct":
        x, iterations = _solve_direct(A, b)
    else:
        x, iterations = _solve_krylov(A, b, params, t0)

    if not np.all(np.isfinite(x)):
        raise SingularSystemError(
            f"{params.method} produced non-finite values; the system is singular",
            iterations=iterations,
        )

    residual = _relative_residual(A, x, b)
    if params.method == "direct" and residual > max(params.tol, _DIRECT_RESIDUAL_TOL):
        # Round-off can hide a zero pivot from SuperLU
        raise SingularSystemError(
            f"Sparse LU solution has relative residual {residual:.3e}; the system is singular",
            iterations=iterations,
            residual=residual,
        )
    metrics = SolveMetrics(
        method=params.method,
        n_dofs=len(b),
        iterations=iterations,
        converged=True,
        residual=residual,
        wall_time_seconds=time.perf_counter() - t0,
    )
    log.info(
        f"Solved {len(b)} DOFs with {params.method}: {iterations} iterations, "
        f"residual={residual:.3e}, {metrics.wall_time_seconds:.3f}s"
    )

    x = np.asarray(x, dtype=np.float64)
    x.setflags(write=False)
    return Solution(x, metrics)
