"""Tests for meshes, the meshio adapter and DOF numbering."""

import dataclasses

import meshio
import numpy as np
import pytest

from sparsefem import (
    BOTTOM,
    LEFT,
    RIGHT,
    TOP,
    DofMap,
    ElementEvaluator,
    ElementShape,
    Mesh,
    UnsupportedOrderOrShape,
    line_mesh,
    rectangle_mesh,
)


def sorted_rows(a):
    return a[np.lexsort(a.T[::-1])]


class TestMesh:
    """Test mesh construction and validation."""

    def test_rectangle_counts(self):
        mesh = rectangle_mesh(0.0, 0.0, 3.0, 2.0, 3, 2)
        assert mesh.n_nodes == 12
        assert mesh.n_elem == 12
        assert mesh.dim == 2
        assert np.all(mesh.cell_groups == 1)

    def test_rectangle_orientation(self, unit_square):
        """All generated triangles are counter-clockwise."""
        evaluator = ElementEvaluator(ElementShape.TRIANGLE, 1)
        for e in range(unit_square.n_elem):
            _, detJ, _ = evaluator.jacobians(unit_square.element_coords(e), e)
            assert np.all(detJ > 0)

    def test_rectangle_boundary_groups(self, unit_square):
        pts = unit_square.points
        assert np.allclose(pts[unit_square.group_nodes(LEFT), 0], 0.0)
        assert np.allclose(pts[unit_square.group_nodes(RIGHT), 0], 1.0)
        assert np.allclose(pts[unit_square.group_nodes(BOTTOM), 1], 0.0)
        assert np.allclose(pts[unit_square.group_nodes(TOP), 1], 1.0)
        assert len(unit_square.group_nodes(LEFT)) == 5
        assert unit_square.boundary_groups[LEFT].shape == (4, 2)

    def test_line_mesh(self, unit_line):
        assert unit_line.points.shape == (9, 1)
        assert unit_line.shape is ElementShape.LINE
        assert unit_line.group_nodes(LEFT).tolist() == [0]
        assert unit_line.group_nodes(RIGHT).tolist() == [8]

    def test_arrays_read_only(self, unit_square):
        with pytest.raises(ValueError):
            unit_square.points[0, 0] = 5.0
        with pytest.raises(ValueError):
            unit_square.cells[0, 0] = 1

    def test_fields_frozen(self, unit_square):
        with pytest.raises(dataclasses.FrozenInstanceError):
            unit_square.cells = np.zeros((1, 3), dtype=np.int64)
        with pytest.raises(dataclasses.FrozenInstanceError):
            unit_square.shape = ElementShape.LINE

    def test_boundary_groups_read_only(self, unit_square):
        """Groups cannot be added or replaced after construction."""
        with pytest.raises(TypeError):
            unit_square.boundary_groups[5] = np.array([0])
        with pytest.raises(TypeError):
            del unit_square.boundary_groups[LEFT]
        assert LEFT in unit_square.boundary_groups

    def test_one_dimensional_points_accepted(self):
        mesh = Mesh([0.0, 0.5, 1.0], [[0, 1], [1, 2]], shape="line")
        assert mesh.points.shape == (3, 1)

    def test_node_index_out_of_range(self):
        with pytest.raises(IndexError):
            Mesh([[0, 0], [1, 0], [0, 1]], [[0, 1, 3]])

    def test_wrong_vertex_count(self):
        with pytest.raises(ValueError):
            Mesh([[0, 0], [1, 0], [0, 1]], [[0, 1]])

    def test_wrong_point_dimension(self):
        with pytest.raises(ValueError):
            Mesh([[0, 0, 0], [1, 0, 0], [0, 1, 0]], [[0, 1, 2]])

    def test_cell_group_length(self):
        with pytest.raises(ValueError):
            Mesh([[0, 0], [1, 0], [0, 1]], [[0, 1, 2]], cell_groups=[1, 2])

    def test_bad_boundary_group(self):
        with pytest.raises(IndexError):
            Mesh([[0, 0], [1, 0], [0, 1]], [[0, 1, 2]], boundary_groups={1: [[0, 5]]})
        with pytest.raises(ValueError):
            Mesh([[0, 0], [1, 0], [0, 1]], [[0, 1, 2]], boundary_groups={1: [[0, 1, 2]]})

    def test_unknown_group(self, unit_square):
        with pytest.raises(KeyError):
            unit_square.group_nodes(99)


class TestMeshioAdapter:
    """Test reading meshes through meshio."""

    @pytest.fixture
    def two_triangles(self):
        points = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [1.0, 1.0, 0.0], [0.0, 1.0, 0.0]])
        lines = np.array([[0, 1], [1, 2], [2, 3], [3, 0]])
        triangles = np.array([[0, 1, 2], [0, 2, 3]])
        return meshio.Mesh(
            points,
            [("line", lines), ("triangle", triangles)],
            cell_data={"gmsh:physical": [np.array([1, 2, 3, 4]), np.array([7, 8])]},
        )

    def test_physical_groups(self, two_triangles):
        mesh = Mesh.from_meshio(two_triangles)
        assert mesh.shape is ElementShape.TRIANGLE
        assert mesh.points.shape == (4, 2)
        assert mesh.cell_groups.tolist() == [7, 8]
        assert sorted(mesh.boundary_groups) == [1, 2, 3, 4]
        assert mesh.boundary_groups[RIGHT].tolist() == [[1, 2]]

    def test_read_from_file(self, two_triangles, tmp_path):
        path = tmp_path / "square.vtu"
        meshio.write(path, two_triangles)
        mesh = Mesh.from_meshio(path)
        assert mesh.n_elem == 2
        assert mesh.cell_groups.tolist() == [7, 8]

    def test_line_facets_become_nodes(self):
        points = np.array([[0.0, 0.0, 0.0], [0.5, 0.0, 0.0], [1.0, 0.0, 0.0]])
        mio = meshio.Mesh(
            points,
            [("vertex", np.array([[0], [2]])), ("line", np.array([[0, 1], [1, 2]]))],
            cell_data={"gmsh:physical": [np.array([4, 2]), np.array([1, 1])]},
        )
        mesh = Mesh.from_meshio(mio)
        assert mesh.shape is ElementShape.LINE
        assert mesh.boundary_groups[LEFT].tolist() == [0]
        assert mesh.boundary_groups[RIGHT].tolist() == [2]

    def test_tetra_preferred(self, unit_cube):
        mio = meshio.Mesh(
            unit_cube.points,
            [("triangle", np.array([[0, 1, 2]])), ("tetra", np.asarray(unit_cube.cells))],
        )
        mesh = Mesh.from_meshio(mio)
        assert mesh.shape is ElementShape.TETRAHEDRON
        assert mesh.n_elem == 48

    def test_no_supported_cells(self):
        mio = meshio.Mesh(np.zeros((4, 3)), [("quad", np.array([[0, 1, 2, 3]]))])
        with pytest.raises(ValueError):
            Mesh.from_meshio(mio)


class TestDofMap:
    """Test global DOF numbering."""

    def test_p1_follows_nodes(self, unit_square):
        dof_map = DofMap.build(unit_square, 1)
        assert dof_map.n_dofs == unit_square.n_nodes
        assert np.array_equal(dof_map.cell_dofs, unit_square.cells)
        assert np.allclose(dof_map.dof_coords, unit_square.points)

    def test_p2_line(self):
        dof_map = DofMap.build(line_mesh(0.0, 1.0, 4), 2)
        assert dof_map.n_dofs == 9
        assert dof_map.n_basis == 3
        assert np.allclose(np.sort(dof_map.dof_coords[:, 0]), np.linspace(0.0, 1.0, 9))

    def test_p2_triangle(self, unit_square):
        """P2 on an n x n grid has (2n+1)^2 DOFs on the refined grid."""
        dof_map = DofMap.build(unit_square, 2)
        assert dof_map.n_dofs == 81
        assert dof_map.n_vertex_dofs == 25
        x = np.linspace(0.0, 1.0, 9)
        X, Y = np.meshgrid(x, x)
        grid = np.column_stack([X.ravel(), Y.ravel()])
        assert np.allclose(sorted_rows(dof_map.dof_coords), sorted_rows(grid))

    def test_shared_edges_share_dofs(self, unit_square):
        """Every interior edge DOF appears in exactly two cells."""
        dof_map = DofMap.build(unit_square, 2)
        counts = np.bincount(dof_map.cell_dofs[:, 3:].ravel(), minlength=dof_map.n_dofs)
        edge_counts = counts[dof_map.n_vertex_dofs:]
        assert set(edge_counts.tolist()) == {1, 2}
        assert np.sum(edge_counts == 1) == 16  # boundary edges

    def test_local_edge_dofs_at_midpoints(self, unit_square):
        dof_map = DofMap.build(unit_square, 2)
        for e in (0, 5, 17):
            coords = unit_square.element_coords(e)
            midpoints = 0.5 * (coords[[0, 1, 2]] + coords[[1, 2, 0]])
            assert np.allclose(dof_map.dof_coords[dof_map.cell_dofs[e, 3:]], midpoints)

    def test_boundary_dofs_facets(self, unit_square):
        for order, count in ((1, 5), (2, 9)):
            dof_map = DofMap.build(unit_square, order)
            dofs = dof_map.boundary_dofs(LEFT)
            assert len(dofs) == count
            assert np.allclose(dof_map.dof_coords[dofs, 0], 0.0)

    def test_boundary_dofs_nodes(self, unit_cube):
        dof_map = DofMap.build(unit_cube, 1)
        dofs = dof_map.boundary_dofs(7)
        assert len(dofs) == 26  # all but the centre node

    def test_unused_node_has_no_dof(self):
        mesh = Mesh([[0, 0], [1, 0], [0, 1], [5, 5]], [[0, 1, 2]])
        dof_map = DofMap.build(mesh, 1)
        assert dof_map.n_dofs == 3
        assert dof_map.node_dofs[3] == -1

    def test_boundary_group_off_mesh(self):
        mesh = Mesh([[0, 0], [1, 0], [0, 1], [5, 5]], [[0, 1, 2]], boundary_groups={1: [3]})
        with pytest.raises(ValueError):
            DofMap.build(mesh, 1).boundary_dofs(1)

    def test_unsupported_order(self, unit_cube):
        with pytest.raises(UnsupportedOrderOrShape):
            DofMap.build(unit_cube, 2)
