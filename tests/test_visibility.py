"""Tests for fields of view, field data, contours and ephemeris aggregates.

Validates the visible hemisphere of a sphere seen from far above the
north pole, the fast (line-of-sight seeded) search against the full
scan, and the contour chaining on hand-built triangle sets.
"""

from __future__ import annotations

import math

import numpy as np
import pytest

from facet_engine.body_shape import FacetBodyShape
from facet_engine.mesh import Triangle, Vertex
from facet_engine.visibility import (
    CircularField,
    FieldData,
    ObserverState,
    OmnidirectionalField,
    extract_contour_loops,
)

R = 10_000.0
ABOVE_NORTH_POLE = np.array([0.0, 0.0, 2e7])
SENSOR_Z = np.array([0.0, 0.0, 1.0])


# ===================================================================
# FIXTURES
# ===================================================================


@pytest.fixture
def square_vertices() -> dict[int, Vertex]:
    """Unit square corners (ids 1-4) plus a fifth vertex at (-1, -1)."""
    return {
        1: Vertex(1, np.array([0.0, 0.0, 0.0])),
        2: Vertex(2, np.array([1.0, 0.0, 0.0])),
        3: Vertex(3, np.array([1.0, 1.0, 0.0])),
        4: Vertex(4, np.array([0.0, 1.0, 0.0])),
        5: Vertex(5, np.array([-1.0, -1.0, 0.0])),
    }


def _triangle(index: int, vertices: dict[int, Vertex], a: int, b: int, c: int) -> Triangle:
    return Triangle(index + 1, vertices[a], vertices[b], vertices[c], index=index)


@pytest.fixture(scope="module")
def polar_field_data(sphere_body: FacetBodyShape) -> FieldData:
    """Hemisphere seen from 2e7 m above the north pole."""
    state = ObserverState.body_center_pointing(0, ABOVE_NORTH_POLE)
    return sphere_body.get_field_data(state, CircularField(math.pi / 2.0), SENSOR_Z)


# ===================================================================
# FIELDS OF VIEW
# ===================================================================


class TestFieldOfView:
    """Circular and omnidirectional acceptance regions."""

    def test_circular_field_is_strict(self) -> None:
        field = CircularField(math.radians(10.0))

        assert field.is_in_field(np.array([0.0, 0.0, 1.0]))
        assert field.is_in_field(np.array([math.tan(math.radians(9.9)), 0.0, 1.0]))
        assert not field.is_in_field(np.array([math.tan(math.radians(10.1)), 0.0, 1.0]))
        assert not field.is_in_field(np.array([0.0, 0.0, -1.0]))

    def test_tiny_aperture_is_resolved(self) -> None:
        field = CircularField(1e-12)

        assert field.is_in_field(np.array([1e-13, 0.0, 1.0]))
        assert not field.is_in_field(np.array([1e-11, 0.0, 1.0]))

    def test_vectorised_matches_scalar(self) -> None:
        field = CircularField(0.3, main_direction=[1.0, 1.0, 0.0])
        directions = np.random.default_rng(3).normal(size=(200, 3))

        expected = [field.is_in_field(d) for d in directions]

        np.testing.assert_array_equal(field.are_in_field(directions), expected)

    def test_angular_distance_sign(self) -> None:
        field = CircularField(0.5)

        assert field.angular_distance(np.array([0.0, 0.0, 1.0])) == pytest.approx(0.5)
        assert field.angular_distance(np.array([1.0, 0.0, 0.0])) == pytest.approx(0.5 - math.pi / 2)

    @pytest.mark.parametrize("half_angle", [0.0, -0.1, 4.0])
    def test_invalid_half_angle(self, half_angle: float) -> None:
        with pytest.raises(ValueError, match="Half-angle"):
            CircularField(half_angle)

    def test_omnidirectional(self) -> None:
        field = OmnidirectionalField()

        assert field.is_in_field(np.array([0.0, 0.0, -1.0]))
        assert field.are_in_field(np.zeros((5, 3))).all()


# ===================================================================
# OBSERVER STATE
# ===================================================================


class TestObserverState:
    """Attitude conventions."""

    def test_center_pointing_boresight(self) -> None:
        state = ObserverState.body_center_pointing(0, [3e4, -4e4, 1e4])

        to_center = -state.position / np.linalg.norm(state.position)
        np.testing.assert_allclose(state.to_sensor_frame(to_center), SENSOR_Z, atol=1e-12)
        np.testing.assert_allclose(state.to_body_frame(SENSOR_Z), to_center, atol=1e-12)

    def test_frame_round_trip_on_batches(self) -> None:
        state = ObserverState.body_center_pointing(0, [1.0, 2.0, 3.0])
        vectors = np.random.default_rng(5).normal(size=(10, 3))

        np.testing.assert_allclose(
            state.to_body_frame(state.to_sensor_frame(vectors)), vectors, atol=1e-12
        )

    def test_identity_without_attitude(self) -> None:
        state = ObserverState(0, [1.0, 2.0, 3.0])

        np.testing.assert_array_equal(state.to_sensor_frame(SENSOR_Z), SENSOR_Z)

    def test_bad_attitude_shape(self) -> None:
        with pytest.raises(ValueError, match="3x3"):
            ObserverState(0, [1.0, 2.0, 3.0], np.eye(2))


# ===================================================================
# FIELD DATA
# ===================================================================


class TestFieldData:
    """Visible hemisphere and its equatorial contour."""

    def test_visible_hemisphere(self, polar_field_data: FieldData, sphere_body: FacetBodyShape) -> None:
        assert len(polar_field_data.visible_triangles) == 4900
        assert polar_field_data.visible_surface == pytest.approx(
            0.5 * sphere_body.surface_area, rel=1e-9
        )
        assert polar_field_data.visible_surface == pytest.approx(2.0 * math.pi * R**2, rel=5e-3)

    def test_contour_is_equator(self, polar_field_data: FieldData) -> None:
        loops = polar_field_data.contour_vertex_ids

        assert len(loops) == 1
        assert polar_field_data.contour == polar_field_data.contour_loops[0]
        assert sorted(loops[0]) == list(range(2402, 2502))
        for point, vertex_id in zip(polar_field_data.contour, loops[0]):
            assert point.latitude == pytest.approx(0.0, abs=1e-9)
            assert abs(point.height) < 1e-2
            assert point.name == f"point_{vertex_id}"

    def test_contour_loop_is_chained(self, polar_field_data: FieldData, sphere_body: FacetBodyShape) -> None:
        loop = polar_field_data.contour_vertex_ids[0]
        edges = {
            frozenset(pair)
            for tri in polar_field_data.visible_triangles
            for pair in zip(tri.vertex_ids, tri.vertex_ids[1:] + tri.vertex_ids[:1])
        }

        for a, b in zip(loop, loop[1:] + loop[:1]):
            assert frozenset((a, b)) in edges, f"Consecutive contour vertices {a}, {b} not on an edge"

    def test_fast_search_matches_full_scan(self, sphere_body: FacetBodyShape) -> None:
        state = ObserverState.body_center_pointing(0, ABOVE_NORTH_POLE)
        field = CircularField(math.atan(4000.0 / 2e7))

        fast = sphere_body.get_field_data(state, field, SENSOR_Z)
        full = sphere_body.get_field_data(state, field)

        assert 0 < len(full.visible_triangles) < 4900
        assert sorted(t.index for t in fast.visible_triangles) == sorted(
            t.index for t in full.visible_triangles
        )
        assert fast.visible_surface == pytest.approx(full.visible_surface)

    def test_missing_line_of_sight_falls_back(self, sphere_body: FacetBodyShape) -> None:
        state = ObserverState.body_center_pointing(0, ABOVE_NORTH_POLE)
        field = CircularField(math.pi / 2.0)

        away = sphere_body.get_field_data(state, field, -SENSOR_Z)

        assert len(away.visible_triangles) == 4900

    def test_tiny_field_sees_nothing(self, sphere_body: FacetBodyShape) -> None:
        state = ObserverState.body_center_pointing(0, ABOVE_NORTH_POLE)

        field_data = sphere_body.get_field_data(state, CircularField(1e-13))

        assert field_data.visible_triangles == ()
        assert field_data.visible_surface == 0.0
        assert field_data.contour == []

    def test_omnidirectional_complement(self, sphere_body: FacetBodyShape) -> None:
        """Seen and back-facing triangles partition the body from an off-axis observer."""
        position = np.array([1.2e7, -0.7e7, 0.9e7])
        state = ObserverState.body_center_pointing(0, position)

        field_data = sphere_body.get_field_data(state, OmnidirectionalField())
        visible = {t.index for t in field_data.visible_triangles}
        back_facing = {t.index for t in sphere_body.triangles if not t.is_visible(position)}

        assert visible.isdisjoint(back_facing)
        assert visible | back_facing == set(range(sphere_body.num_triangles))
        assert len(field_data.contour_loops) == 1

    def test_field_data_without_body(self, square_vertices: dict) -> None:
        tri = _triangle(0, square_vertices, 1, 2, 3)

        field_data = FieldData("t0", [tri])

        assert field_data.date == "t0"
        assert field_data.visible_surface == pytest.approx(0.5)
        assert [p.name for p in field_data.contour] == ["point_1", "point_2", "point_3"]
        assert all(math.isnan(p.height) for p in field_data.contour)


# ===================================================================
# CONTOUR CHAINING
# ===================================================================


class TestContourLoops:
    """Boundary-edge chaining on small triangle sets."""

    def test_square_from_diagonal_2_4(self, square_vertices: dict) -> None:
        triangles = [
            _triangle(0, square_vertices, 2, 3, 4),
            _triangle(1, square_vertices, 2, 1, 4),
        ]

        loops = extract_contour_loops(triangles)

        assert [[v.id for v in loop] for loop in loops] == [[2, 3, 4, 1]]

    def test_square_from_diagonal_1_3(self, square_vertices: dict) -> None:
        triangles = [
            _triangle(0, square_vertices, 1, 2, 3),
            _triangle(1, square_vertices, 1, 3, 4),
        ]

        loops = extract_contour_loops(triangles)

        assert [[v.id for v in loop] for loop in loops] == [[1, 2, 3, 4]]

    def test_bowtie_gives_two_loops(self, square_vertices: dict) -> None:
        """Two triangles touching at one vertex form two separate loops."""
        triangles = [
            _triangle(0, square_vertices, 2, 3, 1),
            _triangle(1, square_vertices, 1, 4, 5),
        ]

        loops = extract_contour_loops(triangles)

        assert [[v.id for v in loop] for loop in loops] == [[2, 3, 1], [1, 4, 5]]

    def test_pinched_hexagon_fan(self) -> None:
        """A fan missing one blade pinches at its center into two loops."""
        center = Vertex(100, np.array([0.0, 0.0, 0.0]))
        ring = {
            k: Vertex(k, np.array([math.cos(math.radians(60 * (k - 1))),
                                   math.sin(math.radians(60 * (k - 1))), 0.0]))
            for k in range(1, 7)
        }
        fan = [
            Triangle(k + 1, ring[k + 1], ring[(k + 1) % 6 + 1], center, index=k)
            for k in range(6)
        ]

        loops = extract_contour_loops([fan[k] for k in (0, 1, 2, 4)])

        assert [[v.id for v in loop] for loop in loops] == [[1, 2, 3, 4, 100], [5, 6, 100]]

    def test_empty_set(self) -> None:
        assert extract_contour_loops([]) == []


# ===================================================================
# VISIBILITY PREDICATES AND AGGREGATES
# ===================================================================


class TestVisibilityAggregates:
    """Masking and ephemeris-wide triangle sets."""

    def test_masking(self, sphere_body: FacetBodyShape) -> None:
        south = sphere_body.triangles[0]
        north = sphere_body.triangles[-1]

        assert sphere_body.is_masked(south, ABOVE_NORTH_POLE)
        assert not sphere_body.is_masked(north, ABOVE_NORTH_POLE)

    def test_is_visible(self, sphere_body: FacetBodyShape) -> None:
        north = sphere_body.triangles[-1]
        south = sphere_body.triangles[0]
        state = ObserverState.body_center_pointing(0, ABOVE_NORTH_POLE)
        field = CircularField(math.pi / 2.0)

        assert sphere_body.is_visible(north, ABOVE_NORTH_POLE, field, state.attitude, True)
        assert not sphere_body.is_visible(south, ABOVE_NORTH_POLE)

    def test_never_visible(self, sphere_body: FacetBodyShape) -> None:
        above = ObserverState.body_center_pointing(0, ABOVE_NORTH_POLE)
        below = ObserverState.body_center_pointing(1, -ABOVE_NORTH_POLE)

        assert len(sphere_body.get_never_visible_triangles([above])) == 4900
        assert sphere_body.get_never_visible_triangles([above, below]) == []

    def test_never_enlightened(self, sphere_body: FacetBodyShape) -> None:
        def sun(date: int) -> np.ndarray:
            return np.array([0.0, 0.0, 1.5e11 * (1 - 2 * date)])

        assert len(sphere_body.get_never_enlightened_triangles([0], sun)) == 4900
        assert sphere_body.get_never_enlightened_triangles([0, 1], sun) == []

    def test_visible_and_enlightened(self, sphere_body: FacetBodyShape) -> None:
        state = ObserverState.body_center_pointing(0, ABOVE_NORTH_POLE)

        same_side = sphere_body.get_visible_and_enlightened_triangles(
            [state], lambda date: np.array([0.0, 0.0, 1.5e11])
        )
        opposite = sphere_body.get_visible_and_enlightened_triangles(
            [state], lambda date: np.array([0.0, 0.0, -1.5e11])
        )

        assert len(same_side) == 4900
        assert opposite == []
