"""Data structures for solver configuration and results.

             Params (input/config)          Metrics (output/results)
             ─────────────────────          ────────────────────────
Linear       SolverParameters               SolveMetrics
solve        method, tol, maxiter...        iterations, residual, wall_time...

Problem      ProblemParameters              -
             order, n_workers, ...
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class SolverParameters:
    """Linear solver configuration."""

    method: str = "direct"  # direct | cg | gmres | bicgstab
    tol: float = 1e-12
    maxiter: int | None = None
    restart: int = 50  # gmres only
    deadline: float | None = None  # seconds, Krylov methods only

    def to_mlflow(self) -> dict:
        """Convert to MLflow-compatible params dict."""
        return {k: ("none" if v is None else v) for k, v in self.__dict__.items()}


@dataclass
class ProblemParameters:
    """Discretisation and assembly configuration."""

    order: int = 1
    quadrature_degree: int | None = None
    n_workers: int = 1
    chunk_size: int | None = None
    solver: SolverParameters = field(default_factory=SolverParameters)

    def to_mlflow(self) -> dict:
        params = {k: ("none" if v is None else v) for k, v in self.__dict__.items() if k != "solver"}
        params.update({f"solver_{k}": v for k, v in self.solver.to_mlflow().items()})
        return params


@dataclass
class SolveMetrics:
    """Linear solve metrics - output results computed during/after solving."""

    method: str = ""
    n_dofs: int = 0
    iterations: int = 0
    converged: bool = False
    residual: float = float("inf")
    wall_time_seconds: float = 0.0

    def to_mlflow(self) -> dict:
        """Convert to MLflow-compatible dict (bools as int, skip inf, skip strings)."""
        return {
            k: (int(v) if isinstance(v, bool) else v)
            for k, v in self.__dict__.items()
            if not isinstance(v, str) and v != float("inf")
        }
