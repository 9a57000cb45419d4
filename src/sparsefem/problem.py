"""Assemble-and-solve driver for -div(nu grad u) + c u = f.

`Problem` builds the element evaluator, DOF map and sparsity pattern once for
a mesh; `Problem.solve` can then be called repeatedly with new material,
source and boundary data against the same pattern.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Mapping

from .assembly import GlobalSystem, SparsityPattern, assemble, build_pattern
from .constraints import ConstrainedSystem, ConstraintSet, Prescription, apply, apply_neumann
from .datastructures import ProblemParameters
from .dofmap import DofMap
from .elements import ElementEvaluator
from .fields import FieldReconstructor
from .linsolve import Solution, solve
from .mesh import Mesh

log = logging.getLogger(__name__)


@dataclass
class ProblemResult:
    """Everything produced by one solve."""

    dof_map: DofMap
    evaluator: ElementEvaluator
    system: GlobalSystem
    constrained: ConstrainedSystem
    solution: Solution

    @property
    def u(self):
        return self.solution.values

    def field(self, material: Callable[[int], object] | None = None) -> FieldReconstructor:
        """Per-element -grad u (or flux with `material`)."""
        return FieldReconstructor(self.dof_map, self.evaluator, self.solution, material)


class Problem:
    """
    Scalar elliptic problem on a fixed mesh.

    Parameters
    ----------
    mesh : Mesh
    params : ProblemParameters, optional
        If not provided, kwargs are used to create params.
    """

    def __init__(self, mesh: Mesh, params: ProblemParameters | None = None, **kwargs):
        if params is None:
            params = ProblemParameters(**kwargs)
        self.mesh = mesh
        self.params = params
        # Rejects unsupported (shape, order) before any assembly work
        self.evaluator = ElementEvaluator(mesh.shape, params.order, params.quadrature_degree)
        self.dof_map = DofMap.build(mesh, params.order)
        self.pattern: SparsityPattern = build_pattern(mesh, self.dof_map)

    def assemble(
        self,
        material: Callable[[int], object],
        source: Callable[[int], object],
        reaction: Callable[[int], float] | None = None,
        element_order=None,
    ) -> GlobalSystem:
        return assemble(
            self.mesh,
            self.dof_map,
            self.pattern,
            self.evaluator,
            material,
            source,
            reaction=reaction,
            n_workers=self.params.n_workers,
            chunk_size=self.params.chunk_size,
            element_order=element_order,
        )

    def constraints(
        self,
        dirichlet: Mapping[int, Prescription],
        priority: Mapping[int, int] | None = None,
    ) -> ConstraintSet:
        return ConstraintSet.from_groups(self.dof_map, dirichlet, priority)

    def solve(
        self,
        material: Callable[[int], object],
        source: Callable[[int], object],
        dirichlet: Mapping[int, Prescription] | ConstraintSet,
        neumann: Mapping[int, Prescription] | None = None,
        priority: Mapping[int, int] | None = None,
        reaction: Callable[[int], float] | None = None,
    ) -> ProblemResult:
        """
        Assemble, constrain and solve.

        Parameters
        ----------
        material, source, reaction : callable
            group id -> coefficient / source value.
        dirichlet : dict or ConstraintSet
            Boundary group id -> prescribed value (constant or g(x)), or a
            ready-made ConstraintSet.
        neumann : dict, optional
            Boundary group id -> outward normal flux nu du/dn.
        priority : dict, optional
            Boundary group id -> priority for DOFs shared between groups.

        Raises
        ------
        FEMError
            Any engine error; nothing partial is returned.
        """
        t0 = time.perf_counter()
        system = self.assemble(material, source, reaction)
        for group, flux in (neumann or {}).items():
            system = apply_neumann(system, self.dof_map, group, flux)

        if isinstance(dirichlet, ConstraintSet):
            constraints = dirichlet
        else:
            constraints = self.constraints(dirichlet, priority)
        constrained = apply(system, constraints)
        solution = solve(constrained, self.params.solver)

        log.info(f"Problem solved in {time.perf_counter() - t0:.3f}s")
        return ProblemResult(self.dof_map, self.evaluator, system, constrained, solution)


def solve_problem(
    mesh: Mesh,
    material: Callable[[int], object],
    source: Callable[[int], object],
    dirichlet: Mapping[int, Prescription] | ConstraintSet,
    neumann: Mapping[int, Prescription] | None = None,
    priority: Mapping[int, int] | None = None,
    reaction: Callable[[int], float] | None = None,
    params: ProblemParameters | None = None,
    **kwargs,
) -> ProblemResult:
    """One-shot assemble-and-solve; see `Problem.solve`."""
    problem = Problem(mesh, params, **kwargs)
    return problem.solve(material, source, dirichlet, neumann, priority, reaction)
