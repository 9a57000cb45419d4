"""Element-level matrices for -div(nu grad u) + c u = f.

`ElementEvaluator` integrates one element at a time with the quadrature and
basis data of its reference element.
"""

from __future__ import annotations

from typing import Callable, Union

import numpy as np
from numpy.typing import NDArray

from .errors import InvertedElementError
from .quadrature import ElementShape, ReferenceElement, as_shape, reference_element

# A source value: constant, or f(x) evaluated at physical points (n_qp, dim) -> (n_qp,)
Source = Union[float, Callable[[NDArray[np.float64]], NDArray[np.float64]]]


class ElementEvaluator:
    """
    Local stiffness/mass/load integration for one (shape, order) pair.

    The reference element is resolved once here, so per-element calls only do
    the geometry mapping and the quadrature sums.

    Parameters
    ----------
    shape : ElementShape
    order : int
        Lagrange interpolation order.
    degree : int, optional
        Quadrature exactness degree (default 2*order).
    """

    def __init__(self, shape: ElementShape, order: int = 1, degree: int | None = None):
        self.shape = as_shape(shape)
        self.order = order
        self.ref: ReferenceElement = reference_element(self.shape, order, degree)

    def __repr__(self) -> str:
        return f"ElementEvaluator({self.shape.value}, P{self.order}, {self.ref.n_qp} qp)"

    @property
    def n_basis(self) -> int:
        return self.ref.n_basis

    def jacobians(
        self, coords: NDArray[np.float64], index: int = -1
    ) -> tuple[NDArray[np.float64], NDArray[np.float64], NDArray[np.float64]]:
        """
        Geometry mapping at each quadrature point.

        Parameters
        ----------
        coords : ndarray (n_vertices, dim)
            Vertex coordinates of the element.
        index : int
            Element index, reported if the element is inverted.

        Returns
        -------
        J : ndarray (n_qp, dim, dim)
            dx_i / dxi_j
        detJ : ndarray (n_qp,)
        invJ : ndarray (n_qp, dim, dim)

        Raises
        ------
        InvertedElementError
            If any detJ <= 0.
        """
        J = np.einsum("ai,qaj->qij", coords, self.ref.geometry_gradients)
        detJ = np.linalg.det(J)
        if np.any(detJ <= 0.0):
            raise InvertedElementError(index, float(detJ.min()))
        return J, detJ, np.linalg.inv(J)

    def physical_gradients(
        self, coords: NDArray[np.float64], index: int = -1
    ) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """Basis gradients in physical coordinates (n_qp, n_basis, dim) and detJ."""
        _, detJ, invJ = self.jacobians(coords, index)
        # grad_x v = grad_xi v @ J^{-1}
        grads = np.einsum("qbj,qjk->qbk", self.ref.gradients, invJ)
        return grads, detJ

    def quadrature_points(self, coords: NDArray[np.float64]) -> NDArray[np.float64]:
        """Physical coordinates (n_qp, dim) of the quadrature points."""
        return self.ref.geometry_values @ coords

    def evaluate(
        self,
        coords: NDArray[np.float64],
        nu,
        f: Source = 0.0,
        reaction: float = 0.0,
        index: int = -1,
    ) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """
        Local matrix and load vector of one element.

            Ke_ij = sum_q (grad v_i . nu grad v_j + c v_i v_j) detJ w
            fe_i  = sum_q f v_i detJ w

        Parameters
        ----------
        coords : ndarray (n_vertices, dim)
        nu : float or ndarray (dim, dim)
            Diffusion coefficient (scalar or anisotropic tensor).
        f : float or callable
            Source; a callable receives the physical quadrature points.
        reaction : float
            Reaction coefficient c.
        index : int
            Element index for error reporting.

        Returns
        -------
        Ke : ndarray (n_basis, n_basis)
        fe : ndarray (n_basis,)
        """
        grads, detJ = self.physical_gradients(coords, index)
        wdet = self.ref.weights * detJ
        values = self.ref.values

        if np.ndim(nu) == 0:
            Ke = nu * np.einsum("q,qik,qjk->ij", wdet, grads, grads)
        else:
            Ke = np.einsum("q,qik,kl,qjl->ij", wdet, grads, np.asarray(nu, dtype=float), grads)

        if reaction:
            Ke += reaction * np.einsum("q,qi,qj->ij", wdet, values, values)

        if callable(f):
            f_q = np.asarray(f(self.quadrature_points(coords)), dtype=float)
            fe = np.einsum("q,q,qi->i", f_q, wdet, values)
        else:
            fe = f * (wdet @ values)

        return Ke, fe

    def mass(self, coords: NDArray[np.float64], coeff: float = 1.0, index: int = -1) -> NDArray[np.float64]:
        """Local mass matrix coeff * int v_i v_j."""
        _, detJ, _ = self.jacobians(coords, index)
        wdet = self.ref.weights * detJ
        return coeff * np.einsum("q,qi,qj->ij", wdet, self.ref.values, self.ref.values)

