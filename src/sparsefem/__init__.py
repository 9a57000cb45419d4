"""Sparse finite element assembly and solve engine.

Solves scalar elliptic problems -div(nu grad u) + c u = f on unstructured
simplex meshes with Lagrange P1/P2 elements.

Main components:
- quadrature: reference elements (quadrature rules, basis functions)
- Mesh, DofMap: mesh data (with meshio adapter) and DOF numbering
- ElementEvaluator: local stiffness/mass/load integration
- build_pattern, assemble: CSR pattern and (threaded) global assembly
- ConstraintSet, apply: Dirichlet elimination with group priorities
- solve: direct/Krylov linear solve with error mapping
- FieldReconstructor: per-element gradients/fluxes
- Problem, solve_problem: assemble-and-solve in one call

Example
-------
>>> from sparsefem import line_mesh, solve_problem, LEFT, RIGHT
>>> mesh = line_mesh(0.0, 1.0, 10)
>>> result = solve_problem(mesh, lambda g: 1.0, lambda g: 0.0, {LEFT: 0.0, RIGHT: 1.0})
>>> result.u  # linear ramp
"""

from .errors import (
    FEMError,
    UnsupportedOrderOrShape,
    InvertedElementError,
    ConflictingConstraintError,
    SolverError,
    SingularSystemError,
    SolverDivergedError,
)
from .quadrature import ElementShape, ReferenceElement, quadrature_rule, reference_element
from .mesh import Mesh, line_mesh, rectangle_mesh, BOTTOM, RIGHT, TOP, LEFT
from .dofmap import DofMap
from .elements import ElementEvaluator
from .assembly import SparsityPattern, GlobalSystem, build_pattern, assemble, assemble_mass
from .constraints import ConstraintSet, ConstrainedSystem, apply, apply_neumann
from .datastructures import SolverParameters, ProblemParameters, SolveMetrics
from .linsolve import Solution, solve
from .fields import FieldReconstructor, l2_error, linf_nodal_error
from .problem import Problem, ProblemResult, solve_problem

__all__ = [
    # Errors
    "FEMError",
    "UnsupportedOrderOrShape",
    "InvertedElementError",
    "ConflictingConstraintError",
    "SolverError",
    "SingularSystemError",
    "SolverDivergedError",
    # Reference elements
    "ElementShape",
    "ReferenceElement",
    "quadrature_rule",
    "reference_element",
    # Mesh
    "Mesh",
    "line_mesh",
    "rectangle_mesh",
    "BOTTOM",
    "RIGHT",
    "TOP",
    "LEFT",
    "DofMap",
    # Assembly
    "ElementEvaluator",
    "SparsityPattern",
    "GlobalSystem",
    "build_pattern",
    "assemble",
    "assemble_mass",
    # Boundary conditions
    "ConstraintSet",
    "ConstrainedSystem",
    "apply",
    "apply_neumann",
    # Solvers
    "SolverParameters",
    "ProblemParameters",
    "SolveMetrics",
    "Solution",
    "solve",
    # Post-processing
    "FieldReconstructor",
    "l2_error",
    "linf_nodal_error",
    "Problem",
    "ProblemResult",
    "solve_problem",
]
