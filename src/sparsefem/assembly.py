"""Global sparse assembly over a precomputed CSR pattern.

The pattern is built once per (mesh, DofMap) and maps every local matrix entry
of every element straight to its slot in the CSR data array, so re-assembly
with new coefficients is a single scatter-add with no sparse-matrix algebra.

Element evaluation is independent per element. Elements are split into
chunks; each chunk accumulates into private buffers (optionally on a worker
thread) and the buffers are summed in chunk order afterwards. The result is
therefore independent of thread scheduling. Changing the element traversal
order changes the floating-point summation order, so values then agree only
up to round-off.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable

import numpy as np
from numba import njit
from numpy.typing import NDArray
from scipy.sparse import csr_matrix

from .dofmap import DofMap
from .elements import ElementEvaluator
from .mesh import Mesh

log = logging.getLogger(__name__)

Coefficient = Callable[[int], object]


@dataclass(frozen=True)
class SparsityPattern:
    """
    CSR structure of the global matrix plus the element scatter map.

    Attributes
    ----------
    indptr : ndarray (n_dofs + 1,)
    indices : ndarray (nnz,)
        Column indices, sorted within each row.
    data_map : ndarray (n_elem, n_basis**2)
        Position in the CSR data array of each local entry (row-major).
    """

    n_dofs: int
    indptr: NDArray[np.int64]
    indices: NDArray[np.int64]
    data_map: NDArray[np.int64]

    @property
    def nnz(self) -> int:
        return len(self.indices)

    def rows_cols(self) -> tuple[NDArray[np.int64], NDArray[np.int64]]:
        """(row, col) index pairs of every stored entry."""
        rows = np.repeat(np.arange(self.n_dofs), np.diff(self.indptr))
        return rows, self.indices


@dataclass
class GlobalSystem:
    """Assembled matrix (CSR on the pattern) and right-hand side."""

    matrix: csr_matrix
    rhs: NDArray[np.float64]

    @property
    def n_dofs(self) -> int:
        return len(self.rhs)


def build_pattern(mesh: Mesh, dof_map: DofMap) -> SparsityPattern:
    """Compute the CSR sparsity pattern and element scatter map."""
    if dof_map.mesh is not mesh:
        raise ValueError("DofMap was built for a different mesh")
    t0 = time.perf_counter()

    nodes = dof_map.cell_dofs
    n = dof_map.n_basis
    # Build (row, col) pairs for all element matrix entries
    rows = np.repeat(nodes, n, axis=1).ravel()
    cols = np.tile(nodes, n).ravel()
    n_entries = len(rows)

    # Sort by (row, col) to group duplicates and build CSR structure
    sort_order = np.lexsort((cols, rows))
    sorted_rows = rows[sort_order]
    sorted_cols = cols[sort_order]

    # Find boundaries between unique (row, col) pairs
    row_diff = np.diff(sorted_rows, prepend=-1)
    col_diff = np.diff(sorted_cols, prepend=-1)
    is_new_pair = (row_diff != 0) | (col_diff != 0)

    unique_rows = sorted_rows[is_new_pair]
    unique_cols = sorted_cols[is_new_pair]

    # indptr: cumulative count of entries per row
    indptr = np.zeros(dof_map.n_dofs + 1, dtype=np.int64)
    np.add.at(indptr, unique_rows + 1, 1)
    np.cumsum(indptr, out=indptr)

    # Map each original entry to its position in CSR data array
    pair_indices = np.cumsum(is_new_pair) - 1
    data_map = np.empty(n_entries, dtype=np.int64)
    data_map[sort_order] = pair_indices
    data_map = data_map.reshape(mesh.n_elem, n * n)

    for a in (indptr, unique_cols, data_map):
        a.setflags(write=False)

    log.info(
        f"Sparsity pattern: {dof_map.n_dofs} DOFs, nnz={len(unique_cols)} "
        f"({time.perf_counter() - t0:.3f}s)"
    )
    return SparsityPattern(dof_map.n_dofs, indptr, np.ascontiguousarray(unique_cols), data_map)


@njit
def _scatter_add(data, rhs, Ke_flat, fe_all, elems, data_map, cell_dofs):
    """Accumulate element matrices/vectors into CSR data and the rhs."""
    n_local = Ke_flat.shape[1]
    n_basis = fe_all.shape[1]
    for k in range(len(elems)):
        e = elems[k]
        for m in range(n_local):
            data[data_map[e, m]] += Ke_flat[k, m]
        for i in range(n_basis):
            rhs[cell_dofs[e, i]] += fe_all[k, i]


def _check_inputs(mesh, dof_map, pattern, evaluator) -> None:
    if dof_map.mesh is not mesh:
        raise ValueError("DofMap was built for a different mesh")
    if evaluator.shape is not mesh.shape or evaluator.order != dof_map.order:
        raise ValueError(
            f"{evaluator!r} does not match {mesh.shape.value} P{dof_map.order} DOF map"
        )
    if pattern.n_dofs != dof_map.n_dofs or pattern.data_map.shape != (
        mesh.n_elem,
        dof_map.n_basis**2,
    ):
        raise ValueError("Sparsity pattern was built for a different DOF map")


def _traversal(n_elem: int, element_order) -> NDArray[np.int64]:
    if element_order is None:
        return np.arange(n_elem, dtype=np.int64)
    order = np.asarray(element_order, dtype=np.int64)
    if order.shape != (n_elem,) or not np.array_equal(np.sort(order), np.arange(n_elem)):
        raise ValueError("element_order must be a permutation of the element indices")
    return order


def _split(elems: NDArray[np.int64], n_workers: int, chunk_size: int | None) -> list[NDArray[np.int64]]:
    if chunk_size is None:
        n_chunks = max(1, n_workers)
    else:
        n_chunks = max(1, -(-len(elems) // max(1, chunk_size)))
    return [c for c in np.array_split(elems, n_chunks) if len(c)]


def assemble(
    mesh: Mesh,
    dof_map: DofMap,
    pattern: SparsityPattern,
    evaluator: ElementEvaluator,
    material: Coefficient,
    source: Coefficient,
    reaction: Coefficient | None = None,
    n_workers: int = 1,
    chunk_size: int | None = None,
    element_order=None,
) -> GlobalSystem:
    """
    Assemble the global matrix and load vector.

    Parameters
    ----------
    mesh, dof_map, pattern, evaluator
        Topology, numbering, precomputed pattern and element integrator.
    material : callable
        group id -> diffusion coefficient (scalar or dim x dim tensor).
    source : callable
        group id -> source value (scalar or f(x) callable).
    reaction : callable, optional
        group id -> reaction coefficient.
    n_workers : int
        Worker threads for element evaluation (1 = serial).
    chunk_size : int, optional
        Elements per private accumulator (default: one chunk per worker).
    element_order : array-like, optional
        Permutation of element indices giving the traversal order.

    Returns
    -------
    GlobalSystem

    Raises
    ------
    InvertedElementError
        From the first offending element; no system is returned.
    """
    _check_inputs(mesh, dof_map, pattern, evaluator)
    t0 = time.perf_counter()

    groups = np.unique(mesh.cell_groups)
    nu = {int(g): material(int(g)) for g in groups}
    f = {int(g): source(int(g)) for g in groups}
    c = {int(g): (reaction(int(g)) if reaction is not None else 0.0) for g in groups}

    nb = dof_map.n_basis
    cell_dofs = dof_map.cell_dofs

    def accumulate(elems: NDArray[np.int64]) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        Ke_flat = np.empty((len(elems), nb * nb))
        fe_all = np.empty((len(elems), nb))
        for k, e in enumerate(elems):
            g = int(mesh.cell_groups[e])
            Ke, fe = evaluator.evaluate(mesh.element_coords(e), nu[g], f[g], c[g], index=int(e))
            Ke_flat[k] = Ke.ravel()
            fe_all[k] = fe
        data = np.zeros(pattern.nnz)
        rhs = np.zeros(dof_map.n_dofs)
        _scatter_add(data, rhs, Ke_flat, fe_all, elems, pattern.data_map, cell_dofs)
        log.debug(f"Chunk of {len(elems)} elements starting at {elems[0]} accumulated")
        return data, rhs

    chunks = _split(_traversal(mesh.n_elem, element_order), n_workers, chunk_size)

    if n_workers > 1 and len(chunks) > 1:
        with ThreadPoolExecutor(max_workers=n_workers) as executor:
            futures = [executor.submit(accumulate, chunk) for chunk in chunks]
            try:
                partials = [fut.result() for fut in futures]
            except BaseException:
                for fut in futures:
                    fut.cancel()
                raise
    else:
        partials = [accumulate(chunk) for chunk in chunks]

    # Merge private accumulators in chunk order
    data = np.zeros(pattern.nnz)
    rhs = np.zeros(dof_map.n_dofs)
    for part_data, part_rhs in partials:
        data += part_data
        rhs += part_rhs

    matrix = csr_matrix(
        (data, pattern.indices.copy(), pattern.indptr.copy()),
        shape=(dof_map.n_dofs, dof_map.n_dofs),
    )
    log.info(
        f"Assembled {mesh.n_elem} elements into {dof_map.n_dofs} DOFs "
        f"({len(chunks)} chunks, {n_workers} workers, {time.perf_counter() - t0:.3f}s)"
    )
    return GlobalSystem(matrix, rhs)


def assemble_mass(
    mesh: Mesh,
    dof_map: DofMap,
    pattern: SparsityPattern,
    evaluator: ElementEvaluator,
    coeff: Coefficient | None = None,
) -> csr_matrix:
    """Assemble the (consistent) mass matrix M_ij = ∫ coeff v_i v_j on the same pattern."""
    _check_inputs(mesh, dof_map, pattern, evaluator)
    nb = dof_map.n_basis
    Ke_flat = np.empty((mesh.n_elem, nb * nb))
    for e in range(mesh.n_elem):
        g = int(mesh.cell_groups[e])
        scale = 1.0 if coeff is None else coeff(g)
        Ke_flat[e] = evaluator.mass(mesh.element_coords(e), scale, index=e).ravel()

    data = np.zeros(pattern.nnz)
    _scatter_add(
        data,
        np.zeros(dof_map.n_dofs),
        Ke_flat,
        np.zeros((mesh.n_elem, nb)),
        np.arange(mesh.n_elem, dtype=np.int64),
        pattern.data_map,
        dof_map.cell_dofs,
    )
    return csr_matrix(
        (data, pattern.indices.copy(), pattern.indptr.copy()),
        shape=(dof_map.n_dofs, dof_map.n_dofs),
    )
