"""Local-to-global degree-of-freedom numbering.

Vertex DOFs come first (numbered in node order, skipping nodes no cell uses),
followed for order 2 by one DOF per unique mesh edge. Local DOF ordering inside
each cell matches the reference basis of `quadrature.reference_element`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from itertools import combinations

import numpy as np
from numpy.typing import NDArray

from .mesh import Mesh
from .quadrature import EDGE_VERTICES, reference_element

log = logging.getLogger(__name__)


def _frozen(a: NDArray) -> NDArray:
    a.setflags(write=False)
    return a


@dataclass(frozen=True)
class DofMap:
    """
    DOF numbering for one (mesh, order) pair. Immutable.

    Attributes
    ----------
    mesh : Mesh
    order : int
    cell_dofs : ndarray (n_elem, n_basis)
        Global DOF of each local basis function.
    node_dofs : ndarray (n_nodes,)
        Vertex DOF of each mesh node, -1 for nodes outside every cell.
    edges : ndarray (n_edges, 2)
        Sorted vertex pairs of the edge DOFs (empty for order 1).
    dof_coords : ndarray (n_dofs, dim)
        Nodal point of each DOF.
    """

    mesh: Mesh = field(repr=False)
    order: int
    cell_dofs: NDArray[np.int64] = field(repr=False)
    node_dofs: NDArray[np.int64] = field(repr=False)
    edges: NDArray[np.int64] = field(repr=False)
    dof_coords: NDArray[np.float64] = field(repr=False)

    @property
    def n_dofs(self) -> int:
        return len(self.dof_coords)

    @property
    def n_basis(self) -> int:
        return self.cell_dofs.shape[1]

    @property
    def n_vertex_dofs(self) -> int:
        return self.n_dofs - len(self.edges)

    @classmethod
    def build(cls, mesh: Mesh, order: int = 1) -> DofMap:
        """Number the DOFs induced by Lagrange order `order` on `mesh`."""
        reference_element(mesh.shape, order)  # rejects unsupported (shape, order) early

        used = np.unique(mesh.cells)
        node_dofs = np.full(mesh.n_nodes, -1, dtype=np.int64)
        node_dofs[used] = np.arange(len(used))
        vertex_dofs = node_dofs[mesh.cells]
        coords = mesh.points[used]

        if order == 1:
            edges = np.empty((0, 2), dtype=np.int64)
            cell_dofs = vertex_dofs
        else:
            local = EDGE_VERTICES[mesh.shape]
            # (n_elem, n_edges, 2) global vertex pairs, orientation-free
            cell_edges = np.sort(mesh.cells[:, local], axis=2)
            edges, edge_ids = np.unique(
                cell_edges.reshape(-1, 2), axis=0, return_inverse=True
            )
            edge_ids = edge_ids.reshape(mesh.n_elem, len(local))
            cell_dofs = np.hstack([vertex_dofs, len(used) + edge_ids])
            midpoints = 0.5 * (mesh.points[edges[:, 0]] + mesh.points[edges[:, 1]])
            coords = np.vstack([coords, midpoints])

        log.info(
            f"DofMap: {mesh.shape.value} P{order}, {len(coords)} DOFs "
            f"({len(used)} vertex, {len(edges)} edge)"
        )
        return cls(
            mesh=mesh,
            order=order,
            cell_dofs=_frozen(np.ascontiguousarray(cell_dofs, dtype=np.int64)),
            node_dofs=_frozen(node_dofs),
            edges=_frozen(np.asarray(edges, dtype=np.int64)),
            dof_coords=_frozen(np.asarray(coords, dtype=np.float64)),
        )

    def edge_dofs(self, pairs: NDArray[np.int64]) -> NDArray[np.int64]:
        """Edge DOFs of the given vertex pairs (pairs that are not mesh edges are dropped)."""
        if len(self.edges) == 0 or len(pairs) == 0:
            return np.empty(0, dtype=np.int64)
        index = {tuple(e): k for k, e in enumerate(self.edges)}
        ids = [index[p] for p in map(tuple, np.sort(pairs, axis=1)) if p in index]
        return self.n_vertex_dofs + np.asarray(ids, dtype=np.int64)

    def boundary_dofs(self, group: int) -> NDArray[np.int64]:
        """
        DOFs lying on a boundary group of the mesh.

        Node groups contribute their vertex DOFs plus every edge DOF whose two
        endpoints are both in the group; facet groups contribute the vertex
        and edge DOFs of their facets.
        """
        entities = self.mesh.boundary_groups.get(group)
        if entities is None:
            raise KeyError(
                f"Unknown boundary group {group}; have {sorted(self.mesh.boundary_groups)}"
            )
        nodes = np.unique(entities)
        vertex = self.node_dofs[nodes]
        if np.any(vertex < 0):
            raise ValueError(f"Boundary group {group} contains nodes not attached to any cell")

        if entities.ndim == 1:
            both = np.isin(self.edges, nodes).all(axis=1) if len(self.edges) else np.zeros(0, bool)
            edge = self.n_vertex_dofs + np.flatnonzero(both)
        else:
            pairs = np.array(
                [p for facet in entities for p in combinations(facet, 2)], dtype=np.int64
            ).reshape(-1, 2)
            edge = self.edge_dofs(pairs)

        return np.unique(np.concatenate([vertex, edge]))
