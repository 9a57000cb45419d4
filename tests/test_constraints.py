"""Tests for Dirichlet constraints, elimination and Neumann loads."""

import numpy as np
import pytest
from scipy.sparse import csr_matrix
from scipy.sparse.linalg import spsolve

from sparsefem import (
    BOTTOM,
    LEFT,
    RIGHT,
    TOP,
    ConflictingConstraintError,
    ConstraintSet,
    DofMap,
    ElementEvaluator,
    GlobalSystem,
    Mesh,
    apply,
    apply_neumann,
    assemble,
    build_pattern,
    line_mesh,
)


@pytest.fixture
def shared_node_map():
    """1D mesh whose node 0 belongs to boundary groups 10, 11 and 13."""
    base = line_mesh(0.0, 1.0, 4)
    mesh = Mesh(
        base.points, base.cells, shape="line", boundary_groups={10: [0], 11: [0], 12: [4], 13: [0]}
    )
    return DofMap.build(mesh, 1)


def poisson_system(mesh, order=1, f=1.0):
    dof_map = DofMap.build(mesh, order)
    pattern = build_pattern(mesh, dof_map)
    evaluator = ElementEvaluator(mesh.shape, order)
    return dof_map, assemble(mesh, dof_map, pattern, evaluator, lambda g: 1.0, lambda g: f)


class TestConstraintSet:
    """Test collecting prescribed values and the priority rule."""

    def test_add_and_lookup(self):
        constraints = ConstraintSet().add([4, 1], [2.0, 3.0]).add(7, 0.5)
        assert len(constraints) == 3
        assert 4 in constraints and 5 not in constraints
        assert constraints.dofs.tolist() == [1, 4, 7]
        assert constraints.values.tolist() == [3.0, 2.0, 0.5]
        assert constraints.value(7) == 0.5

    def test_negative_dof(self):
        with pytest.raises(ValueError):
            ConstraintSet().add([-1], 0.0)

    def test_conflict_without_priority(self, shared_node_map):
        """Two groups prescribe different values on one DOF."""
        with pytest.raises(ConflictingConstraintError) as exc_info:
            ConstraintSet.from_groups(shared_node_map, {10: 0.0, 11: 1.0})
        err = exc_info.value
        assert err.dof == 0
        assert err.groups == (10, 11)
        assert err.values == (0.0, 1.0)

    def test_equal_values_do_not_conflict(self, shared_node_map):
        constraints = ConstraintSet.from_groups(shared_node_map, {10: 2.0, 11: 2.0, 12: 1.0})
        assert constraints.value(0) == 2.0
        assert len(constraints) == 2

    def test_single_priority_still_conflicts(self, shared_node_map):
        with pytest.raises(ConflictingConstraintError):
            ConstraintSet.from_groups(shared_node_map, {10: 0.0, 11: 1.0}, priority={10: 5})

    @pytest.mark.parametrize(
        "priority, expected",
        [
            ({10: 2, 11: 1}, 0.0),
            ({10: 1, 11: 2}, 1.0),
            ({10: 1, 11: 1}, 1.0),  # tie: later group wins
        ],
    )
    def test_priority_resolves_conflict(self, shared_node_map, priority, expected):
        constraints = ConstraintSet.from_groups(shared_node_map, {10: 0.0, 11: 1.0}, priority)
        assert constraints.value(0) == expected

    @pytest.mark.parametrize(
        "prescriptions",
        [
            {10: 1.0, 11: 1.0, 13: 2.0},
            {11: 1.0, 10: 1.0, 13: 2.0},
            {13: 2.0, 11: 1.0, 10: 1.0},
        ],
    )
    def test_unprioritised_claim_checked_against_all(self, shared_node_map, prescriptions):
        """A value without priority conflicts even after a prioritised group took over."""
        with pytest.raises(ConflictingConstraintError) as exc_info:
            ConstraintSet.from_groups(shared_node_map, prescriptions, priority={11: 5, 13: 3})
        assert set(exc_info.value.groups) == {10, 13}

    def test_highest_priority_among_three(self, shared_node_map):
        constraints = ConstraintSet.from_groups(
            shared_node_map, {10: 1.0, 11: 1.0, 13: 2.0}, priority={10: 1, 11: 5, 13: 3}
        )
        assert constraints.value(0) == 1.0

    def test_callable_prescription(self, unit_square):
        dof_map = DofMap.build(unit_square, 2)
        constraints = ConstraintSet.from_groups(dof_map, {TOP: lambda x: x[:, 0] ** 2})
        x = dof_map.dof_coords[constraints.dofs, 0]
        assert len(constraints) == 9
        assert np.allclose(constraints.values, x**2)

    def test_unknown_group(self, unit_square):
        with pytest.raises(KeyError):
            ConstraintSet.from_groups(DofMap.build(unit_square, 1), {42: 0.0})


class TestElimination:
    """Test row/column elimination of constrained DOFs."""

    def test_input_untouched(self, unit_square):
        _, system = poisson_system(unit_square)
        data, rhs = system.matrix.data.copy(), system.rhs.copy()
        apply(system, ConstraintSet().add([0, 1, 2], [1.0, 2.0, 3.0]))
        assert np.array_equal(system.matrix.data, data)
        assert np.array_equal(system.rhs, rhs)

    def test_identity_rows_and_columns(self, unit_square):
        _, system = poisson_system(unit_square)
        constrained = apply(system, ConstraintSet().add([0, 5], [1.0, -2.0]))
        A = constrained.matrix.toarray()
        for d, value in ((0, 1.0), (5, -2.0)):
            expected = np.zeros(len(A))
            expected[d] = 1.0
            assert np.allclose(A[d], expected)
            assert np.allclose(A[:, d], expected)
            assert constrained.rhs[d] == value
        assert np.allclose(A, A.T)
        assert 0 not in constrained.free_dofs and 5 not in constrained.free_dofs

    def test_matches_reduced_system(self, unit_square):
        """Eliminated system has the solution of the reduced free-DOF system."""
        dof_map, system = poisson_system(unit_square)
        constraints = ConstraintSet.from_groups(dof_map, {LEFT: 1.0, RIGHT: 0.0})
        constrained = apply(system, constraints)
        u = spsolve(constrained.matrix.tocsc(), constrained.rhs)

        A = system.matrix.toarray()
        c, g = constraints.dofs, constraints.values
        free = constrained.free_dofs
        u_free = np.linalg.solve(A[np.ix_(free, free)], system.rhs[free] - A[np.ix_(free, c)] @ g)
        assert np.allclose(u[free], u_free)
        assert np.allclose(u[c], g)

    def test_constraint_outside_system(self):
        system = GlobalSystem(csr_matrix(np.eye(3)), np.zeros(3))
        with pytest.raises(IndexError):
            apply(system, ConstraintSet().add(3, 0.0))

    def test_no_constraints(self):
        system = GlobalSystem(csr_matrix(np.eye(3)), np.ones(3))
        constrained = apply(system, ConstraintSet())
        assert len(constrained.free_dofs) == 3
        assert np.array_equal(constrained.rhs, np.ones(3))


class TestNeumann:
    """Test natural boundary loads."""

    def test_point_flux_1d(self):
        mesh = line_mesh(0.0, 1.0, 4)
        dof_map, system = poisson_system(mesh, f=0.0)
        loaded = apply_neumann(system, dof_map, RIGHT, 2.0)
        assert loaded.rhs[4] == 2.0
        assert np.all(loaded.rhs[:4] == 0.0)
        assert np.all(system.rhs == 0.0)

    @pytest.mark.parametrize("order", [1, 2])
    def test_constant_flux_total(self, unit_square, order):
        dof_map, system = poisson_system(unit_square, order, f=0.0)
        loaded = apply_neumann(system, dof_map, RIGHT, 2.0)
        assert np.isclose(loaded.rhs.sum(), 2.0)
        on_edge = np.isclose(dof_map.dof_coords[:, 0], 1.0)
        assert np.allclose(loaded.rhs[~on_edge], 0.0)

    def test_callable_flux(self, unit_square):
        """int_0^1 y dy on the right edge."""
        dof_map, system = poisson_system(unit_square, 2, f=0.0)
        loaded = apply_neumann(system, dof_map, RIGHT, lambda x: x[:, 1])
        assert np.isclose(loaded.rhs.sum(), 0.5)

    def test_flux_on_face(self, unit_cube):
        """Triangle facets of a tetrahedral mesh."""
        faces = np.array([[0, 2, 8], [0, 8, 6]])  # x = 0 face of the unit cube
        mesh = Mesh(unit_cube.points, unit_cube.cells, shape="tetra", boundary_groups={1: faces})
        dof_map, system = poisson_system(mesh, f=0.0)
        loaded = apply_neumann(system, dof_map, 1, 3.0)
        assert np.isclose(loaded.rhs.sum(), 3.0)

    def test_node_group_rejected_in_2d(self, unit_square):
        mesh = Mesh(unit_square.points, unit_square.cells, boundary_groups={BOTTOM: [0, 1]})
        dof_map, system = poisson_system(mesh)
        with pytest.raises(ValueError):
            apply_neumann(system, dof_map, BOTTOM, 1.0)

    def test_unknown_group(self, unit_square):
        dof_map, system = poisson_system(unit_square)
        with pytest.raises(KeyError):
            apply_neumann(system, dof_map, 99, 1.0)
