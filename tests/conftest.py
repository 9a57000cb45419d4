"""Shared meshes for the test suite."""

from itertools import permutations, product

import numpy as np
import pytest

from sparsefem import ElementShape, Mesh, line_mesh, rectangle_mesh

# Boundary group id holding every boundary node of `cube_mesh`
CUBE_BOUNDARY = 7


def cube_mesh(n: int) -> Mesh:
    """Unit cube split into n^3 cubes of 6 Kuhn tetrahedra each."""
    x = np.linspace(0.0, 1.0, n + 1)
    X, Y, Z = np.meshgrid(x, x, x, indexing="ij")
    points = np.column_stack([X.ravel(), Y.ravel(), Z.ravel()])

    def node(idx):
        i, j, k = idx
        return (i * (n + 1) + j) * (n + 1) + k

    cells = []
    for corner in product(range(n), repeat=3):
        for perm in permutations(range(3)):
            idx = list(corner)
            verts = [node(idx)]
            for axis in perm:
                idx[axis] += 1
                verts.append(node(idx))
            cells.append(verts)
    cells = np.array(cells)

    # Orient every tetrahedron positively
    edges = np.stack([points[cells[:, a]] - points[cells[:, 0]] for a in (1, 2, 3)], axis=2)
    flip = np.linalg.det(edges) < 0
    cells[flip, 1:3] = cells[flip][:, [2, 1]]

    boundary = np.flatnonzero(np.any((points == 0.0) | (points == 1.0), axis=1))
    return Mesh(
        points,
        cells,
        shape=ElementShape.TETRAHEDRON,
        boundary_groups={CUBE_BOUNDARY: boundary},
    )


@pytest.fixture
def unit_line():
    """[0, 1] with 8 elements."""
    return line_mesh(0.0, 1.0, 8)


@pytest.fixture
def unit_square():
    """[0, 1]^2 with 4x4 rectangles (32 triangles)."""
    return rectangle_mesh(0.0, 0.0, 1.0, 1.0, 4, 4)


@pytest.fixture
def unit_cube():
    """[0, 1]^3 with 2x2x2 cubes (48 tetrahedra)."""
    return cube_mesh(2)
