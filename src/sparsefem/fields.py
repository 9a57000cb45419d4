"""Post-processing of a solution: per-element gradients/fluxes and error norms."""

from __future__ import annotations

from typing import Callable, Iterator

import numpy as np
from numpy.typing import NDArray

from .dofmap import DofMap
from .elements import ElementEvaluator


def _values(solution) -> NDArray[np.float64]:
    return np.asarray(getattr(solution, "values", solution), dtype=np.float64)


class FieldReconstructor:
    """
    Per-element derived field of a solution.

    Iterating yields, element by element, the quadrature-averaged negative
    gradient -grad u, or the flux -nu grad u when `material` is given. Nothing
    is cached: every iteration recomputes from the solution vector.

    Parameters
    ----------
    dof_map : DofMap
    evaluator : ElementEvaluator
        Must match the DOF map's shape and order.
    solution : Solution or ndarray (n_dofs,)
    material : callable, optional
        group id -> diffusion coefficient (scalar or dim x dim tensor).
    """

    def __init__(
        self,
        dof_map: DofMap,
        evaluator: ElementEvaluator,
        solution,
        material: Callable[[int], object] | None = None,
    ):
        self.dof_map = dof_map
        self.mesh = dof_map.mesh
        self.evaluator = evaluator
        self.u = _values(solution)
        self.material = material
        if len(self.u) != dof_map.n_dofs:
            raise ValueError(f"Solution has {len(self.u)} values for {dof_map.n_dofs} DOFs")

    def __len__(self) -> int:
        return self.mesh.n_elem

    def gradient_at_quadrature(self, e: int) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """grad u at each quadrature point of element e (n_qp, dim), and detJ."""
        grads, detJ = self.evaluator.physical_gradients(self.mesh.element_coords(e), e)
        u_e = self.u[self.dof_map.cell_dofs[e]]
        return np.einsum("qbk,b->qk", grads, u_e), detJ

    def element_value(self, e: int) -> NDArray[np.float64]:
        """Averaged -grad u (or -nu grad u) over element e."""
        grad_q, detJ = self.gradient_at_quadrature(e)
        w = self.evaluator.ref.weights * detJ
        grad = w @ grad_q / w.sum()
        if self.material is None:
            return -grad
        nu = self.material(int(self.mesh.cell_groups[e]))
        return -(np.asarray(nu, dtype=float) @ grad) if np.ndim(nu) else -nu * grad

    def __iter__(self) -> Iterator[NDArray[np.float64]]:
        for e in range(self.mesh.n_elem):
            yield self.element_value(e)

    def to_array(self) -> NDArray[np.float64]:
        """Collect all element values into (n_elem, dim)."""
        return np.array(list(self)).reshape(self.mesh.n_elem, self.mesh.dim)


def l2_error(
    dof_map: DofMap,
    evaluator: ElementEvaluator,
    solution,
    u_exact: Callable[[NDArray[np.float64]], NDArray[np.float64]],
) -> float:
    """L2 norm of u_h - u_exact by element quadrature."""
    u = _values(solution)
    mesh = dof_map.mesh
    ref = evaluator.ref
    error_sq = 0.0
    for e in range(mesh.n_elem):
        coords = mesh.element_coords(e)
        _, detJ, _ = evaluator.jacobians(coords, e)
        u_h = ref.values @ u[dof_map.cell_dofs[e]]
        diff = u_h - np.asarray(u_exact(evaluator.quadrature_points(coords)))
        error_sq += np.sum(ref.weights * detJ * diff**2)
    return float(np.sqrt(error_sq))


def linf_nodal_error(
    dof_map: DofMap,
    solution,
    u_exact: Callable[[NDArray[np.float64]], NDArray[np.float64]],
) -> float:
    """max |u_h - u_exact| over the DOF nodal points."""
    return float(np.max(np.abs(_values(solution) - u_exact(dof_map.dof_coords))))
