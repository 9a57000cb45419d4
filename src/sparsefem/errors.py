"""Exception hierarchy for the FEM engine.

FEMError
├── UnsupportedOrderOrShape   (configuration, raised before assembly)
├── InvertedElementError      (corrupt element geometry, aborts assembly)
├── ConflictingConstraintError
└── SolverError
    ├── SingularSystemError
    └── SolverDivergedError
"""

from __future__ import annotations


class FEMError(Exception):
    """Base class for all engine errors."""


class UnsupportedOrderOrShape(FEMError, ValueError):
    """Requested (shape, order) or quadrature degree is not implemented."""

    def __init__(self, shape, order, what: str = "interpolation order"):
        self.shape = shape
        self.order = order
        if order is None:
            super().__init__(f"Unsupported {what} {shape!r}")
        else:
            super().__init__(f"Unsupported {what} {order} for element shape {shape}")


class InvertedElementError(FEMError):
    """Element with a non-positive Jacobian determinant."""

    def __init__(self, element: int, det: float):
        self.element = element
        self.det = det
        super().__init__(
            f"Element {element} has non-positive Jacobian determinant {det:.6e} "
            "(inverted or degenerate)"
        )


class ConflictingConstraintError(FEMError):
    """Two different prescribed values for one DOF without a priority rule."""

    def __init__(self, dof: int, values, groups):
        self.dof = dof
        self.values = tuple(values)
        self.groups = tuple(groups)
        super().__init__(
            f"DOF {dof} prescribed as {self.values[0]!r} (group {self.groups[0]}) "
            f"and {self.values[1]!r} (group {self.groups[1]}) with no priority"
        )


class SolverError(FEMError):
    """Base class for linear solver failures."""

    def __init__(self, message: str, iterations: int | None = None, residual: float | None = None):
        self.iterations = iterations
        self.residual = residual
        super().__init__(message)


class SingularSystemError(SolverError):
    """Matrix is numerically singular or the solver broke down."""


class SolverDivergedError(SolverError):
    """Iterative solver exceeded its iteration, tolerance or time budget."""
