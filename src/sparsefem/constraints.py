"""Essential (Dirichlet) and natural (Neumann) boundary conditions.

Priority rule for a DOF claimed by more than one prescription:

* equal values (to 1e-12 relative) never conflict; the entry with the higher
  priority is kept,
* different values conflict unless *both* entries carry a priority; then the
  higher priority wins and, on a tie, the later entry wins,
* otherwise `ConflictingConstraintError` is raised.

Each new prescription is checked against every earlier claim on the DOF,
not only the current winner, so the outcome does not depend on group order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Mapping, NamedTuple, Union

import numpy as np
from numpy.typing import NDArray
from scipy.sparse import csr_matrix

from .assembly import GlobalSystem
from .dofmap import DofMap
from .errors import ConflictingConstraintError
from .quadrature import EDGE_VERTICES, ElementShape, reference_element

log = logging.getLogger(__name__)

# A boundary value: constant, or g(x) evaluated at DOF coordinates (n, dim) -> (n,)
Prescription = Union[float, Callable[[NDArray[np.float64]], NDArray[np.float64]]]


class _Entry(NamedTuple):
    value: float
    group: int | None
    priority: int | None


def _same(a: float, b: float) -> bool:
    return bool(np.isclose(a, b, rtol=1e-12, atol=1e-14))


class ConstraintSet:
    """Mapping from global DOF index to its prescribed value."""

    def __init__(self):
        self._entries: dict[int, _Entry] = {}
        # every claim per DOF, in arrival order
        self._claims: dict[int, list[_Entry]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, dof) -> bool:
        return int(dof) in self._entries

    def __repr__(self) -> str:
        return f"ConstraintSet({len(self)} DOFs)"

    def value(self, dof: int) -> float:
        return self._entries[int(dof)].value

    @property
    def dofs(self) -> NDArray[np.int64]:
        """Constrained DOFs in ascending order."""
        return np.array(sorted(self._entries), dtype=np.int64)

    @property
    def values(self) -> NDArray[np.float64]:
        """Prescribed values, aligned with `dofs`."""
        return np.array([self._entries[d].value for d in sorted(self._entries)], dtype=np.float64)

    def _resolve(self, dof: int, new: _Entry) -> _Entry:
        claims = self._claims.setdefault(dof, [])
        for old in claims:
            if not _same(old.value, new.value) and (old.priority is None or new.priority is None):
                raise ConflictingConstraintError(
                    dof, (old.value, new.value), (old.group, new.group)
                )
        claims.append(new)

        ranked = [c for c in claims if c.priority is not None]
        if not ranked:
            return new
        # max keeps the first maximum, so scan latest first for the tie rule
        winner = max(reversed(ranked), key=lambda c: c.priority)
        overridden = [c.group for c in claims if not _same(c.value, winner.value)]
        if overridden:
            log.debug(
                f"DOF {dof}: group {winner.group} (priority {winner.priority}) "
                f"overrides values from groups {overridden}"
            )
        return winner

    def add(
        self,
        dofs,
        values,
        group: int | None = None,
        priority: int | None = None,
    ) -> ConstraintSet:
        """
        Prescribe values on DOFs.

        Parameters
        ----------
        dofs : int or array-like
            Global DOF indices.
        values : float or array-like
            One value, or one per DOF.
        group : int, optional
            Physical group the prescription comes from (for error reports).
        priority : int, optional
            Rank used when another prescription claims the same DOF.

        Raises
        ------
        ConflictingConstraintError
            See module docstring for the priority rule.
        """
        dofs = np.atleast_1d(np.asarray(dofs, dtype=np.int64))
        values = np.broadcast_to(np.asarray(values, dtype=np.float64), dofs.shape)
        if np.any(dofs < 0):
            raise ValueError(f"Negative DOF index in constraint: {dofs[dofs < 0][0]}")

        for dof, val in zip(dofs.tolist(), values.tolist()):
            new = _Entry(val, group, priority)
            self._entries[dof] = self._resolve(dof, new)
        return self

    @classmethod
    def from_groups(
        cls,
        dof_map: DofMap,
        prescriptions: Mapping[int, Prescription],
        priority: Mapping[int, int] | None = None,
    ) -> ConstraintSet:
        """
        Build constraints from boundary groups of the mesh.

        Parameters
        ----------
        dof_map : DofMap
        prescriptions : dict
            group id -> constant value or g(x) evaluated at the DOF coordinates.
            Groups are applied in mapping order.
        priority : dict, optional
            group id -> priority. Groups missing here have no priority.
        """
        constraints = cls()
        for group, g in prescriptions.items():
            dofs = dof_map.boundary_dofs(group)
            vals = g(dof_map.dof_coords[dofs]) if callable(g) else g
            constraints.add(dofs, vals, group=group, priority=(priority or {}).get(group))
        return constraints


@dataclass
class ConstrainedSystem:
    """Linear system with the essential conditions eliminated."""

    matrix: csr_matrix
    rhs: NDArray[np.float64]
    dofs: NDArray[np.int64]
    values: NDArray[np.float64]

    @property
    def n_dofs(self) -> int:
        return len(self.rhs)

    @property
    def free_dofs(self) -> NDArray[np.int64]:
        mask = np.ones(self.n_dofs, dtype=bool)
        mask[self.dofs] = False
        return np.flatnonzero(mask)


def apply(system: GlobalSystem, constraints: ConstraintSet) -> ConstrainedSystem:
    """
    Impose Dirichlet conditions by row/column elimination.

    Constrained rows and columns are zeroed with a unit diagonal; the known
    column contributions are moved to the right-hand side, which then holds
    the prescribed values at constrained rows. `system` is left untouched.
    """
    n = system.n_dofs
    bnodes = constraints.dofs
    f = constraints.values
    if len(bnodes) and bnodes[-1] >= n:
        raise IndexError(f"Constraint on DOF {bnodes[-1]} outside system of size {n}")

    A_csr = system.matrix.tocsr()
    b = system.rhs.copy()

    # A[:, bnodes] @ f == A @ f_full where f_full is zero except at bnodes
    f_full = np.zeros(n)
    f_full[bnodes] = f
    b -= A_csr @ f_full
    b[bnodes] = f

    # Zero boundary rows/cols and set diagonal to 1
    scale = np.ones(n)
    scale[bnodes] = 0
    row_scale = np.repeat(scale, np.diff(A_csr.indptr))
    col_scale = scale[A_csr.indices]

    A_new = A_csr.copy()
    A_new.data *= row_scale * col_scale
    diag = A_new.diagonal()
    diag[bnodes] = 1.0
    A_new.setdiag(diag)

    log.info(f"Eliminated {len(bnodes)} Dirichlet DOFs of {n}")
    return ConstrainedSystem(A_new, b, bnodes, f)


def apply_neumann(
    system: GlobalSystem,
    dof_map: DofMap,
    group: int,
    flux: Prescription,
) -> GlobalSystem:
    """
    Add a natural boundary term rhs_i += ∫_Γ g v_i ds on a boundary group.

    `g` is the outward normal flux nu ∂u/∂n, constant or g(x) evaluated at the
    facet quadrature points. Returns a new system sharing the matrix.
    """
    mesh = dof_map.mesh
    entities = mesh.boundary_groups.get(group)
    if entities is None:
        raise KeyError(f"Unknown boundary group {group}; have {sorted(mesh.boundary_groups)}")

    rhs = system.rhs.copy()

    if mesh.shape is ElementShape.LINE:
        nodes = np.unique(entities)
        g = flux(mesh.points[nodes]) if callable(flux) else flux
        np.add.at(rhs, dof_map.node_dofs[nodes], np.broadcast_to(g, nodes.shape))
        return GlobalSystem(system.matrix, rhs)

    if entities.ndim != 2:
        raise ValueError(f"Neumann group {group} must hold boundary facets, not nodes")

    facet_shape = ElementShape.LINE if mesh.dim == 2 else ElementShape.TRIANGLE
    ref = reference_element(facet_shape, dof_map.order)
    local_edges = EDGE_VERTICES[facet_shape]

    for facet in entities:
        X = mesh.points[facet]
        T = (X[1:] - X[0]).T  # (dim, k) tangents
        measure = np.sqrt(np.linalg.det(T.T @ T))
        dofs = dof_map.node_dofs[facet]
        if dof_map.order == 2:
            edge = dof_map.edge_dofs(facet[local_edges])
            if len(edge) != len(local_edges):
                raise ValueError(f"Facet {facet.tolist()} of group {group} is not a mesh facet")
            dofs = np.concatenate([dofs, edge])

        if callable(flux):
            g_q = np.asarray(flux(ref.geometry_values @ X), dtype=float)
        else:
            g_q = np.full(ref.n_qp, float(flux))
        np.add.at(rhs, dofs, measure * np.einsum("q,q,qi->i", g_q, ref.weights, ref.values))

    return GlobalSystem(system.matrix, rhs)
