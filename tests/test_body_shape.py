"""Tests for facet body construction and line queries.

Uses latitude/longitude spheres and ellipsoids whose intersections,
distances and limbs are known in closed form.
"""

from __future__ import annotations

import math

import numpy as np
import pytest

from facet_engine.body_shape import FacetBodyShape
from facet_engine.errors import AltitudeIntersectionError, ConvergenceError, MeshLoadError
from facet_engine.geometry import Line

R = 10_000.0


# ===================================================================
# FIXTURES
# ===================================================================


@pytest.fixture(scope="module")
def flipped_tetrahedron() -> FacetBodyShape:
    """Tetrahedron whose first face is wound inward."""
    vertices = np.array([
        [1.0, 1.0, 1.0],
        [1.0, -1.0, -1.0],
        [-1.0, 1.0, -1.0],
        [-1.0, -1.0, 1.0],
    ])
    triangles = np.array([
        [1, 3, 2],
        [1, 4, 2],
        [1, 3, 4],
        [2, 4, 3],
    ])
    return FacetBodyShape("tetrahedron", vertices, triangles)


# ===================================================================
# CONSTRUCTION
# ===================================================================


class TestConstruction:
    """Derived body properties."""

    def test_counts_and_arena(self, sphere_body: FacetBodyShape, sphere_mesh) -> None:
        assert sphere_body.num_triangles == 9800
        assert len(sphere_body.vertices) == 2 + 49 * 100
        for k in (0, 17, 9799):
            assert sphere_body.triangles[k].index == k
            assert sphere_body.triangles[k].id == k + 1
        np.testing.assert_array_equal(sphere_body.triangle_vertex_ids, sphere_mesh.triangles)

    def test_surface_area(self, sphere_body: FacetBodyShape) -> None:
        assert sphere_body.surface_area == pytest.approx(4.0 * math.pi * R**2, rel=5e-3)

    def test_norm_bounds(self, sphere_body: FacetBodyShape, oblate_body: FacetBodyShape) -> None:
        assert sphere_body.min_norm == pytest.approx(R)
        assert sphere_body.max_norm == pytest.approx(R)
        assert oblate_body.min_norm == pytest.approx(8000.0)
        assert oblate_body.max_norm == pytest.approx(R)

    def test_arrays_are_read_only(self, sphere_body: FacetBodyShape) -> None:
        with pytest.raises(ValueError):
            sphere_body.vertex_positions[0, 0] = 1.0

    def test_triangle_arena_is_immutable(self, sphere_body: FacetBodyShape) -> None:
        arena = sphere_body.triangles

        assert isinstance(arena, tuple)
        with pytest.raises(TypeError):
            arena[0] = arena[1]
        with pytest.raises(AttributeError):
            arena.append(arena[0])
        assert sphere_body.triangles[0].index == 0, "Arena order survives the attempts"

    def test_slopes_of_a_convex_body(self, sphere_body: FacetBodyShape) -> None:
        assert sphere_body.slopes.shape == (9800,)
        assert sphere_body.max_slope < math.radians(5.0)

    def test_invalid_mesh_propagates(self) -> None:
        with pytest.raises(MeshLoadError):
            FacetBodyShape("bad", np.eye(3), [[1, 2, 4]])

    def test_repr(self, coarse_sphere: FacetBodyShape) -> None:
        assert "coarse" in repr(coarse_sphere)
        assert "360 triangles" in repr(coarse_sphere)


# ===================================================================
# INTERSECTIONS
# ===================================================================


class TestIntersections:
    """First hit, all hits and hit selection."""

    def test_polar_line_hits_both_poles(self, sphere_body: FacetBodyShape) -> None:
        line = Line([0.0, 0.0, -2 * R], [0.0, 0.0, 2 * R])

        points = sphere_body.get_intersection_points(line)

        assert len(points) == 2, f"Shared pole vertex must be reported once, got {len(points)}"
        np.testing.assert_allclose(points[0], [0.0, 0.0, -R], atol=1e-6)
        np.testing.assert_allclose(points[1], [0.0, 0.0, R], atol=1e-6)

    def test_first_intersection_follows_direction(self, sphere_body: FacetBodyShape) -> None:
        line = Line([2 * R, 0.0, 0.0], [0.0, 0.0, 0.0])

        intersection = sphere_body.get_intersection(line)

        assert intersection is not None
        np.testing.assert_allclose(intersection.point, [R, 0.0, 0.0], atol=1e-6)
        assert intersection.triangle.distance_to(intersection.point) == pytest.approx(0.0, abs=1e-6)

    def test_close_point_selects_hit(self, sphere_body: FacetBodyShape) -> None:
        line = Line([2 * R, 0.0, 0.0], [0.0, 0.0, 0.0])

        intersection = sphere_body.get_intersection(line, close=[-2 * R, 0.0, 0.0])

        np.testing.assert_allclose(intersection.point, [-R, 0.0, 0.0], atol=1e-6)

    def test_tangent_line_counts_once(self, sphere_body: FacetBodyShape) -> None:
        line = Line([0.0, -5 * R, R], [0.0, 5 * R, R])

        points = sphere_body.get_intersection_points(line)

        assert len(points) == 1
        np.testing.assert_allclose(points[0], [0.0, 0.0, R], atol=1e-6)

    def test_miss_returns_empty(self, sphere_body: FacetBodyShape) -> None:
        line = Line([R + 1.0, 0.0, 0.0], [R + 1.0, 1.0, 0.0])

        assert sphere_body.get_intersection_points(line) == []
        assert sphere_body.get_intersection(line) is None

    def test_half_line_pointing_away(self, sphere_body: FacetBodyShape) -> None:
        line = Line.half_line([2 * R, 0.0, 0.0], [3 * R, 0.0, 0.0])

        assert sphere_body.get_intersection_points(line) == []

    def test_half_line_from_center(self, sphere_body: FacetBodyShape) -> None:
        line = Line.half_line([0.0, 0.0, 0.0], [1.0, 0.0, 0.0])

        points = sphere_body.get_intersection_points(line)

        assert len(points) == 1
        np.testing.assert_allclose(points[0], [R, 0.0, 0.0], atol=1e-6)

    def test_points_sorted_by_abscissa(self, sphere_body: FacetBodyShape) -> None:
        line = Line([-3e4, 1234.0, -567.0], [3e4, -890.0, 2100.0])

        points = sphere_body.get_intersection_points(line)
        abscissas = [line.abscissa(p) for p in points]

        assert len(points) == 2
        assert abscissas == sorted(abscissas)
        for p in points:
            assert np.linalg.norm(p) == pytest.approx(R, rel=2e-3)

    def test_intersection_point_is_named(self, sphere_body: FacetBodyShape) -> None:
        line = Line([2 * R, 0.0, 0.0], [0.0, 0.0, 0.0])

        point = sphere_body.get_intersection_point(line, name="sub-observer")

        assert point.name == "sub-observer"
        assert point.latitude == pytest.approx(0.0, abs=1e-9)
        assert point.longitude == pytest.approx(0.0, abs=1e-9)


# ===================================================================
# ALTITUDE QUERIES
# ===================================================================


class TestAltitude:
    """Offset-surface intersections and local altitude."""

    def test_point_at_altitude(self, sphere_body: FacetBodyShape) -> None:
        line = Line([3e4, 2e4, 1e4], [0.0, 1e3, -2e3])
        tolerance = sphere_body.config.altitude_search.tolerance_m

        point = sphere_body.get_intersection_point(line, altitude=100.0)

        assert point is not None
        assert line.contains(point.position, tolerance=1e-6)
        assert sphere_body.radial_height(point.position) == pytest.approx(
            100.0, abs=tolerance * 1.01
        )

    def test_negative_altitude(self, sphere_body: FacetBodyShape) -> None:
        line = Line([3e4, 2e4, 1e4], [0.0, 0.0, 0.0])
        tolerance = sphere_body.config.altitude_search.tolerance_m

        point = sphere_body.get_intersection_point(line, altitude=-500.0)

        assert point is not None
        assert sphere_body.radial_height(point.position) == pytest.approx(
            -500.0, abs=tolerance * 1.01
        )

    def test_altitude_miss_returns_none(self, sphere_body: FacetBodyShape) -> None:
        line = Line([2 * R, 0.0, 0.0], [2 * R, 1.0, 0.0])

        assert sphere_body.get_intersection_point(line, altitude=100.0) is None

    def test_altitude_below_center_raises(self, sphere_body: FacetBodyShape) -> None:
        line = Line([2 * R, 0.0, 0.0], [0.0, 0.0, 0.0])

        with pytest.raises(AltitudeIntersectionError):
            sphere_body.get_intersection_point(line, altitude=-2 * R)

    def test_radial_height_at_center_raises(self, sphere_body: FacetBodyShape) -> None:
        with pytest.raises(AltitudeIntersectionError):
            sphere_body.radial_height([0.0, 0.0, 0.0])

    def test_local_altitude_on_vertex(self, sphere_body: FacetBodyShape) -> None:
        assert sphere_body.get_local_altitude_at(0.0, 0.0) == pytest.approx(0.0, abs=1e-2)
        assert sphere_body.get_local_altitude([5.0, 0.0, 0.0]) == pytest.approx(0.0, abs=1e-2)

    def test_local_altitude_inside_facet(self, sphere_body: FacetBodyShape) -> None:
        """Facet interiors lie below the circumscribed sphere."""
        altitude = sphere_body.get_local_altitude_at(math.pi / 100.0, math.pi / 100.0)

        assert altitude < 0.0
        assert altitude > -0.01 * R


# ===================================================================
# DISTANCES
# ===================================================================


class TestDistances:
    """Line-to-body distance and closest points."""

    def test_distance_of_line_above_pole(self, sphere_body: FacetBodyShape) -> None:
        line = Line([0.0, -1.0, 2 * R], [0.0, 1.0, 2 * R])

        assert sphere_body.distance_to(line) == pytest.approx(R, abs=1e-6)

    def test_distance_of_crossing_line(self, sphere_body: FacetBodyShape) -> None:
        line = Line([0.0, 0.0, 0.0], [1.0, 1.0, 1.0])

        assert sphere_body.distance_to(line) == 0.0

    def test_closest_point_of_half_line(self, sphere_body: FacetBodyShape) -> None:
        line = Line.half_line([0.0, 0.0, 2 * R], [0.0, 0.0, 3 * R])

        on_line, on_body = sphere_body.closest_point_to(line)

        np.testing.assert_allclose(on_line, [0.0, 0.0, 2 * R], atol=1e-6)
        np.testing.assert_allclose(on_body, [0.0, 0.0, R], atol=1e-6)


# ===================================================================
# ECLIPSE
# ===================================================================


class TestEclipse:
    """Body occultation of the Sun."""

    @staticmethod
    def sun(date) -> np.ndarray:
        return np.array([1.5e11, 0.0, 0.0])

    def test_behind_body(self, sphere_body: FacetBodyShape) -> None:
        assert sphere_body.is_in_eclipse(None, [-2 * R, 0.0, 0.0], self.sun)

    def test_beyond_sun(self, sphere_body: FacetBodyShape) -> None:
        assert not sphere_body.is_in_eclipse(None, [1.5e11 + 1.0, 0.0, 0.0], self.sun)

    def test_between_body_and_sun(self, sphere_body: FacetBodyShape) -> None:
        assert not sphere_body.is_in_eclipse(None, [0.75e11, 0.0, 0.0], self.sun)

    def test_beside_body(self, sphere_body: FacetBodyShape) -> None:
        assert not sphere_body.is_in_eclipse(None, [-2 * R, 2 * R, 0.0], self.sun)


# ===================================================================
# SLOPES
# ===================================================================


class TestSteepFacets:
    """Facets whose normal points toward the body center."""

    def test_convex_body_has_none(self, sphere_body: FacetBodyShape) -> None:
        assert sphere_body.get_over_perpendicular_steep_facets() == []

    def test_flipped_face_is_reported(self, flipped_tetrahedron: FacetBodyShape) -> None:
        steep = flipped_tetrahedron.get_over_perpendicular_steep_facets()

        assert [t.index for t in steep] == [0]
        assert flipped_tetrahedron.max_slope == pytest.approx(math.pi)


# ===================================================================
# APPARENT RADIUS
# ===================================================================


class TestApparentRadius:
    """Limb bisection on an oblate body seen from the equatorial plane."""

    observer = np.array([2e7, 0.0, 0.0])

    def test_equatorial_limb(self, oblate_body: FacetBodyShape) -> None:
        radius = oblate_body.get_apparent_radius(self.observer, [0.0, 1e9, 0.0])

        assert radius == pytest.approx(R, abs=0.1)

    def test_polar_limb(self, oblate_body: FacetBodyShape) -> None:
        radius = oblate_body.get_apparent_radius(self.observer, [0.0, 0.0, 1e9])

        assert radius == pytest.approx(8000.0, abs=0.1)

    def test_aligned_points(self, oblate_body: FacetBodyShape) -> None:
        radius = oblate_body.get_apparent_radius(self.observer, [-1e9, 0.0, 0.0])

        assert radius == oblate_body.min_norm

    def test_budget_exhausted(self, oblate_body: FacetBodyShape) -> None:
        with pytest.raises(ConvergenceError):
            oblate_body.get_apparent_radius(
                self.observer, [0.0, 1e9, 0.0], threshold=1e-9, max_steps=1
            )

    def test_observer_inside_outer_sphere(self, oblate_body: FacetBodyShape) -> None:
        with pytest.raises(ValueError, match="outer sphere"):
            oblate_body.get_apparent_radius([9000.0, 0.0, 0.0], [0.0, 1e9, 0.0])
