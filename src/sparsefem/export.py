"""meshio export of solutions (vertex values + per-element fields)."""

from __future__ import annotations

import logging
from pathlib import Path

import meshio
import numpy as np
from numpy.typing import NDArray

from .dofmap import DofMap

log = logging.getLogger(__name__)


def _pad3(a: NDArray[np.float64]) -> NDArray[np.float64]:
    """Pad (n, dim) coordinates/vectors to (n, 3)."""
    a = np.asarray(a, dtype=np.float64)
    if a.ndim == 1 or a.shape[1] == 3:
        return a
    return np.column_stack([a, np.zeros((len(a), 3 - a.shape[1]))])


def to_meshio(
    dof_map: DofMap,
    u,
    cell_fields: dict[str, NDArray[np.float64]] | None = None,
    name: str = "u",
) -> meshio.Mesh:
    """
    Build a meshio mesh carrying the solution.

    Vertex DOF values become point data (higher-order DOFs are dropped, the
    cells stay linear); `cell_fields` arrays of shape (n_elem,) or
    (n_elem, dim) become cell data.
    """
    mesh = dof_map.mesh
    values = np.asarray(getattr(u, "values", u), dtype=np.float64)
    point_values = np.zeros(mesh.n_nodes)
    attached = dof_map.node_dofs >= 0
    point_values[attached] = values[dof_map.node_dofs[attached]]

    cell_data = {"gmsh:physical": [np.asarray(mesh.cell_groups)]}
    for key, arr in (cell_fields or {}).items():
        cell_data[key] = [_pad3(arr)]

    return meshio.Mesh(
        _pad3(mesh.points),
        [(mesh.shape.value, np.asarray(mesh.cells))],
        point_data={name: point_values},
        cell_data=cell_data,
    )


def write_solution(
    path: str | Path,
    dof_map: DofMap,
    u,
    cell_fields: dict[str, NDArray[np.float64]] | None = None,
    name: str = "u",
) -> Path:
    """Write the solution to any meshio-supported file (format from suffix)."""
    path = Path(path)
    meshio.write(path, to_meshio(dof_map, u, cell_fields, name))
    log.info(f"Saved solution to {path}")
    return path
