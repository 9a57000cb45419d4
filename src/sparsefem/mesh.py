"""Unstructured simplex meshes and the meshio adapter.

The mesh is produced once (by the builders below or by an external mesher
through `Mesh.from_meshio`) and is read-only afterwards.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray

from .quadrature import ElementShape, as_shape

if TYPE_CHECKING:
    import meshio

log = logging.getLogger(__name__)

# Boundary group ids used by the structured builders (gmsh tag convention)
BOTTOM, RIGHT, TOP, LEFT = 1, 2, 3, 4

# Default physical group for cells without a tag
DEFAULT_GROUP = 1

# meshio cell type of the boundary facets of each shape
_FACET_TYPE = {
    ElementShape.LINE: "vertex",
    ElementShape.TRIANGLE: "line",
    ElementShape.TETRAHEDRON: "triangle",
}


def _frozen(a: NDArray) -> NDArray:
    a.setflags(write=False)
    return a


@dataclass(frozen=True)
class Mesh:
    """
    Simplex mesh with physical groups.

    Attributes
    ----------
    points : ndarray (n_nodes, dim)
        Node coordinates.
    cells : ndarray (n_elem, n_vertices)
        Element-to-vertex connectivity (0-based).
    shape : ElementShape
        Cell type; all cells share it.
    cell_groups : ndarray (n_elem,)
        Physical group id of each element (material regions).
    boundary_groups : Mapping[int, ndarray]
        Group id -> node indices (1D) or boundary facets (n_facets, dim).
        Read-only view.
    """

    points: NDArray[np.float64]
    cells: NDArray[np.int64]
    shape: ElementShape = ElementShape.TRIANGLE
    cell_groups: NDArray[np.int64] | None = None
    boundary_groups: Mapping[int, NDArray[np.int64]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "shape", as_shape(self.shape))
        points = np.array(self.points, dtype=np.float64)
        if points.ndim == 1:
            points = points[:, None]
        cells = np.array(self.cells, dtype=np.int64)

        dim, nv = self.shape.dim, self.shape.n_vertices
        if points.ndim != 2 or points.shape[1] != dim:
            raise ValueError(
                f"{self.shape.value} mesh needs points of shape (n, {dim}), got {points.shape}"
            )
        if cells.ndim != 2 or cells.shape[1] != nv:
            raise ValueError(
                f"{self.shape.value} cells need {nv} vertices each, got shape {cells.shape}"
            )
        if cells.size and (cells.min() < 0 or cells.max() >= len(points)):
            raise IndexError(
                f"Cell connectivity references nodes outside [0, {len(points) - 1}]"
            )

        if self.cell_groups is None:
            groups = np.full(len(cells), DEFAULT_GROUP, dtype=np.int64)
        else:
            groups = np.array(self.cell_groups, dtype=np.int64).ravel()
            if len(groups) != len(cells):
                raise ValueError(
                    f"cell_groups has {len(groups)} entries for {len(cells)} cells"
                )

        boundary = {}
        for gid, entities in self.boundary_groups.items():
            ent = np.array(entities, dtype=np.int64)
            if ent.ndim == 2 and ent.shape[1] != dim:
                raise ValueError(
                    f"Boundary group {gid}: facets need {dim} vertices, got {ent.shape[1]}"
                )
            if ent.ndim not in (1, 2):
                raise ValueError(f"Boundary group {gid}: expected 1D nodes or 2D facets")
            if ent.size and (ent.min() < 0 or ent.max() >= len(points)):
                raise IndexError(f"Boundary group {gid} references nodes out of range")
            boundary[int(gid)] = _frozen(ent)

        # frozen dataclass: normalised fields are set once here
        object.__setattr__(self, "points", _frozen(points))
        object.__setattr__(self, "cells", _frozen(cells))
        object.__setattr__(self, "cell_groups", _frozen(groups))
        object.__setattr__(self, "boundary_groups", MappingProxyType(boundary))

    @property
    def n_nodes(self) -> int:
        return len(self.points)

    @property
    def n_elem(self) -> int:
        return len(self.cells)

    @property
    def dim(self) -> int:
        return self.shape.dim

    def element_coords(self, e: int) -> NDArray[np.float64]:
        """Vertex coordinates (n_vertices, dim) of element e."""
        return self.points[self.cells[e]]

    def group_nodes(self, group: int) -> NDArray[np.int64]:
        """Unique node indices of a boundary group."""
        if group not in self.boundary_groups:
            raise KeyError(f"Unknown boundary group {group}; have {sorted(self.boundary_groups)}")
        return np.unique(self.boundary_groups[group])

    @classmethod
    def from_meshio(cls, mesh: meshio.Mesh | str | Path) -> Mesh:
        """
        Create a Mesh from a meshio mesh or mesh file.

        The highest-dimensional supported cell type is taken as the domain;
        `gmsh:physical` tags on those cells become `cell_groups`, tags on the
        facet cells become `boundary_groups`.

        Parameters
        ----------
        mesh : meshio.Mesh or str or Path
            Either a meshio Mesh object or path to a mesh file.

        Returns
        -------
        Mesh
        """
        import meshio as mio

        if isinstance(mesh, (str, Path)):
            mesh = mio.read(mesh)

        shape = None
        for candidate in (ElementShape.TETRAHEDRON, ElementShape.TRIANGLE, ElementShape.LINE):
            if candidate.value in mesh.cells_dict:
                shape = candidate
                break
        if shape is None:
            raise ValueError(
                f"No line, triangle or tetra cells found in mesh (have {list(mesh.cells_dict)})"
            )

        physical = mesh.cell_data_dict.get("gmsh:physical", {})

        cells = mesh.cells_dict[shape.value].astype(np.int64)
        cell_groups = physical.get(shape.value)

        boundary_groups: dict[int, NDArray[np.int64]] = {}
        facet_type = _FACET_TYPE[shape]
        if facet_type in mesh.cells_dict and facet_type in physical:
            facets = mesh.cells_dict[facet_type].astype(np.int64)
            tags = np.asarray(physical[facet_type], dtype=np.int64)
            for tag in np.unique(tags):
                selected = facets[tags == tag]
                boundary_groups[int(tag)] = selected.ravel() if shape is ElementShape.LINE else selected

        log.info(
            f"Read {shape.value} mesh: {len(mesh.points)} nodes, {len(cells)} cells, "
            f"boundary groups {sorted(boundary_groups)}"
        )
        return cls(
            points=mesh.points[:, : shape.dim],
            cells=cells,
            shape=shape,
            cell_groups=cell_groups,
            boundary_groups=boundary_groups,
        )


def line_mesh(a: float, b: float, n_elem: int) -> Mesh:
    """Uniform 1D mesh on [a, b]; boundary groups LEFT (x=a) and RIGHT (x=b)."""
    VX = np.linspace(a, b, n_elem + 1)
    EToV = np.column_stack([np.arange(n_elem), np.arange(1, n_elem + 1)])
    return Mesh(
        VX[:, None],
        EToV,
        shape=ElementShape.LINE,
        boundary_groups={LEFT: [0], RIGHT: [n_elem]},
    )


def rectangle_mesh(
    x0: float,
    y0: float,
    L1: float,
    L2: float,
    noelms1: int,
    noelms2: int,
) -> Mesh:
    """
    Structured triangle mesh of [x0, x0+L1] x [y0, y0+L2].

    Each of the noelms1 x noelms2 rectangles is split into two counter-clockwise
    triangles. Boundary groups BOTTOM, RIGHT, TOP, LEFT hold the boundary edges.
    """
    nonodes1, nonodes2 = noelms1 + 1, noelms2 + 1
    temp_x = np.linspace(x0, x0 + L1, nonodes1)
    temp_y = np.linspace(y0, y0 + L2, nonodes2)
    XX, YY = np.meshgrid(temp_x, temp_y)
    points = np.column_stack([XX.ravel(), YY.ravel()])

    def node(i, j):
        return j * nonodes1 + i

    col, row = np.meshgrid(np.arange(noelms1), np.arange(noelms2))
    col, row = col.ravel(), row.ravel()
    LL = node(col, row)
    LR = LL + 1
    UL = LL + nonodes1
    UR = UL + 1

    EToV = np.empty((2 * len(LL), 3), dtype=np.int64)
    EToV[0::2] = np.column_stack([LL, LR, UR])
    EToV[1::2] = np.column_stack([LL, UR, UL])

    i1, i2 = np.arange(noelms1), np.arange(noelms2)
    boundary_groups = {
        BOTTOM: np.column_stack([node(i1, 0), node(i1 + 1, 0)]),
        RIGHT: np.column_stack([node(noelms1, i2), node(noelms1, i2 + 1)]),
        TOP: np.column_stack([node(i1 + 1, noelms2), node(i1, noelms2)]),
        LEFT: np.column_stack([node(0, i2 + 1), node(0, i2)]),
    }
    return Mesh(points, EToV, shape=ElementShape.TRIANGLE, boundary_groups=boundary_groups)
