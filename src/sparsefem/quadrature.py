"""Reference elements: quadrature rules and Lagrange bases.

Reference cells
---------------
LINE         [0, 1]                              vertices 0, 1
TRIANGLE     (0,0), (1,0), (0,1)                  edges (0,1), (1,2), (2,0)
TETRAHEDRON  (0,0,0), (1,0,0), (0,1,0), (0,0,1)

P2 bases append one node per edge after the vertices, in the edge order above
(for LINE the single edge is the cell itself).

Everything here is a pure function of (shape, order, degree); results are
memoized and their arrays are read-only so they can be shared across threads.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Callable

import numpy as np
from numpy.polynomial.legendre import leggauss
from numpy.typing import NDArray

from .errors import UnsupportedOrderOrShape


class ElementShape(Enum):
    LINE = "line"
    TRIANGLE = "triangle"
    TETRAHEDRON = "tetra"

    @property
    def dim(self) -> int:
        return _DIM[self]

    @property
    def n_vertices(self) -> int:
        return self.dim + 1


_DIM = {ElementShape.LINE: 1, ElementShape.TRIANGLE: 2, ElementShape.TETRAHEDRON: 3}

# Local vertex pairs spanning each edge
EDGE_VERTICES = {
    ElementShape.LINE: np.array([[0, 1]]),
    ElementShape.TRIANGLE: np.array([[0, 1], [1, 2], [2, 0]]),
    ElementShape.TETRAHEDRON: np.array([[0, 1], [1, 2], [2, 0], [0, 3], [1, 3], [2, 3]]),
}


# =============================================================================
# Quadrature
# =============================================================================
def _triangle_orbit(a: float) -> list[tuple[float, float]]:
    """Three points (a, a), (1-2a, a), (a, 1-2a)."""
    b = 1.0 - 2.0 * a
    return [(a, a), (b, a), (a, b)]


def _triangle_rule(orbits: list[tuple[float, float]], centroid: float = 0.0):
    """Build a symmetric rule from (a, w) orbits; weights normalised to area 1."""
    pts, wts = [], []
    if centroid:
        pts.append((1 / 3, 1 / 3))
        wts.append(centroid)
    for a, w in orbits:
        pts.extend(_triangle_orbit(a))
        wts.extend([w] * 3)
    return np.array(pts), 0.5 * np.array(wts)


# Symmetric triangle rules (Strang-Fix / Dunavant), keyed by exactness degree
_TRIANGLE_QUAD = {
    1: (np.array([[1 / 3, 1 / 3]]), np.array([0.5])),
    2: _triangle_rule([(1 / 6, 1 / 3)]),
    4: _triangle_rule([
        (0.445948490915965, 0.223381589678011),
        (0.091576213509771, 0.109951743655322),
    ]),
    5: _triangle_rule(
        [
            (0.470142064105115, 0.132394152788506),
            (0.101286507323456, 0.125939180544827),
        ],
        centroid=0.225,
    ),
}

_TET_A = 0.1381966011250105
_TET_B = 0.5854101966249685
_TETRA_QUAD = {
    1: (np.array([[0.25, 0.25, 0.25]]), np.array([1 / 6])),
    2: (
        np.array([
            [_TET_A, _TET_A, _TET_A],
            [_TET_B, _TET_A, _TET_A],
            [_TET_A, _TET_B, _TET_A],
            [_TET_A, _TET_A, _TET_B],
        ]),
        np.full(4, 1 / 24),
    ),
}


def as_shape(shape) -> ElementShape:
    """Coerce an ElementShape or its meshio cell-type name."""
    try:
        return ElementShape(shape)
    except ValueError:
        raise UnsupportedOrderOrShape(shape, None, what="element shape") from None


def _pick(table: dict, shape: ElementShape, degree: int):
    for d in sorted(table):
        if d >= degree:
            return table[d]
    raise UnsupportedOrderOrShape(shape, degree, what="quadrature degree")


def quadrature_rule(shape: ElementShape, degree: int) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """
    Quadrature points and weights exact for polynomials up to `degree`.

    Parameters
    ----------
    shape : ElementShape
        Reference cell.
    degree : int
        Polynomial degree to integrate exactly (>= 0).

    Returns
    -------
    points : ndarray (n_qp, dim)
        Points in reference coordinates.
    weights : ndarray (n_qp,)
        Weights; they sum to the reference cell measure.
    """
    if degree < 0:
        raise UnsupportedOrderOrShape(shape, degree, what="quadrature degree")
    shape = as_shape(shape)
    if shape is ElementShape.LINE:
        # Gauss-Legendre mapped from [-1, 1] to [0, 1]
        n = max(1, (degree + 2) // 2)
        xi, w = leggauss(n)
        return (0.5 * (xi + 1.0))[:, None], 0.5 * w
    if shape is ElementShape.TRIANGLE:
        pts, wts = _pick(_TRIANGLE_QUAD, shape, max(degree, 1))
    else:
        pts, wts = _pick(_TETRA_QUAD, shape, max(degree, 1))
    return pts.copy(), wts.copy()


# =============================================================================
# Lagrange bases
# =============================================================================
def _barycentric(xi: NDArray, dim: int) -> tuple[NDArray, NDArray]:
    """Barycentric coordinates (n, dim+1) and their constant gradients (dim+1, dim)."""
    lam = np.empty((xi.shape[0], dim + 1))
    lam[:, 0] = 1.0 - xi.sum(axis=1)
    lam[:, 1:] = xi
    dlam = np.vstack([-np.ones(dim), np.eye(dim)])
    return lam, dlam


def _p1(dim: int):
    def values(xi):
        return _barycentric(xi, dim)[0]

    def grads(xi):
        _, dlam = _barycentric(xi, dim)
        return np.broadcast_to(dlam, (xi.shape[0],) + dlam.shape).copy()

    return values, grads


def _p2(shape: ElementShape):
    dim = shape.dim
    edges = EDGE_VERTICES[shape]

    def values(xi):
        lam, _ = _barycentric(xi, dim)
        vert = lam * (2.0 * lam - 1.0)
        edge = 4.0 * lam[:, edges[:, 0]] * lam[:, edges[:, 1]]
        return np.hstack([vert, edge])

    def grads(xi):
        lam, dlam = _barycentric(xi, dim)
        # d[L(2L-1)] = (4L-1) dL
        vert = (4.0 * lam - 1.0)[:, :, None] * dlam[None, :, :]
        i, j = edges[:, 0], edges[:, 1]
        # d[4 Li Lj] = 4 (Lj dLi + Li dLj)
        edge = 4.0 * (lam[:, j, None] * dlam[None, i, :] + lam[:, i, None] * dlam[None, j, :])
        return np.concatenate([vert, edge], axis=1)

    return values, grads


def _p1_nodes(dim: int) -> NDArray:
    return np.vstack([np.zeros(dim), np.eye(dim)])


def _p2_nodes(shape: ElementShape) -> NDArray:
    verts = _p1_nodes(shape.dim)
    edges = EDGE_VERTICES[shape]
    return np.vstack([verts, 0.5 * (verts[edges[:, 0]] + verts[edges[:, 1]])])


# (shape, order) -> (values, gradients, nodal points); resolved once per lookup
_BASES: dict[tuple[ElementShape, int], tuple[Callable, Callable, NDArray]] = {
    (ElementShape.LINE, 1): (*_p1(1), _p1_nodes(1)),
    (ElementShape.LINE, 2): (*_p2(ElementShape.LINE), _p2_nodes(ElementShape.LINE)),
    (ElementShape.TRIANGLE, 1): (*_p1(2), _p1_nodes(2)),
    (ElementShape.TRIANGLE, 2): (*_p2(ElementShape.TRIANGLE), _p2_nodes(ElementShape.TRIANGLE)),
    (ElementShape.TETRAHEDRON, 1): (*_p1(3), _p1_nodes(3)),
}


def supported() -> list[tuple[ElementShape, int]]:
    """All implemented (shape, order) pairs."""
    return list(_BASES)


def _readonly(a: NDArray) -> NDArray:
    a = np.ascontiguousarray(a, dtype=np.float64)
    a.setflags(write=False)
    return a


@dataclass(frozen=True)
class ReferenceElement:
    """Quadrature and basis data on one reference cell."""

    shape: ElementShape
    order: int
    points: NDArray[np.float64]  # (n_qp, dim)
    weights: NDArray[np.float64]  # (n_qp,)
    values: NDArray[np.float64]  # (n_qp, n_basis)
    gradients: NDArray[np.float64]  # (n_qp, n_basis, dim)
    geometry_values: NDArray[np.float64]  # (n_qp, n_vertices)
    geometry_gradients: NDArray[np.float64]  # (n_qp, n_vertices, dim)
    nodes: NDArray[np.float64]  # (n_basis, dim)

    @property
    def dim(self) -> int:
        return self.shape.dim

    @property
    def n_basis(self) -> int:
        return self.values.shape[1]

    @property
    def n_qp(self) -> int:
        return len(self.weights)

    def basis(self, xi: NDArray) -> NDArray[np.float64]:
        """Basis values at arbitrary reference points (n, dim) -> (n, n_basis)."""
        return _BASES[(self.shape, self.order)][0](np.atleast_2d(xi))

    def basis_gradients(self, xi: NDArray) -> NDArray[np.float64]:
        """Reference gradients at arbitrary points (n, dim) -> (n, n_basis, dim)."""
        return _BASES[(self.shape, self.order)][1](np.atleast_2d(xi))


@lru_cache(maxsize=None)
def reference_element(shape: ElementShape, order: int, degree: int | None = None) -> ReferenceElement:
    """
    Memoized reference element for (shape, order).

    Parameters
    ----------
    shape : ElementShape
    order : int
        Lagrange interpolation order.
    degree : int, optional
        Quadrature exactness degree. Defaults to 2*order, exact for the mass
        and stiffness terms on straight-sided cells.

    Raises
    ------
    UnsupportedOrderOrShape
        If the (shape, order) pair or the quadrature degree is not implemented.
    """
    shape = as_shape(shape)
    key = (shape, order)
    if key not in _BASES:
        raise UnsupportedOrderOrShape(shape.value, order)
    values_fn, grads_fn, nodes = _BASES[key]
    pts, wts = quadrature_rule(shape, 2 * order if degree is None else degree)
    geom_values, geom_grads = _p1(shape.dim)

    return ReferenceElement(
        shape=shape,
        order=order,
        points=_readonly(pts),
        weights=_readonly(wts),
        values=_readonly(values_fn(pts)),
        gradients=_readonly(grads_fn(pts)),
        geometry_values=_readonly(geom_values(pts)),
        geometry_gradients=_readonly(geom_grads(pts)),
        nodes=_readonly(nodes),
    )
