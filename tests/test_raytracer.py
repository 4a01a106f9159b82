"""Tests for the BVH line-query raytracer.

Validates the two-sided Möller-Trumbore kernel, the slab test and the
consistency of BVH traversal with a brute-force scan.
"""

from __future__ import annotations

import numpy as np
import pytest

from facet_engine.raytracer import (
    _INF,
    build_bvh,
    find_line_hits,
    intersect_all_triangles,
    line_aabb_intersect,
    line_triangle_intersection,
)
from mesh_ingestion.synthetic_body import generate_synthetic_body


# ===================================================================
# FIXTURES
# ===================================================================


@pytest.fixture
def simple_triangle() -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """A triangle in the XY plane at z=0."""
    v0 = np.array([0.0, 0.0, 0.0], dtype=np.float64)
    v1 = np.array([1.0, 0.0, 0.0], dtype=np.float64)
    v2 = np.array([0.0, 1.0, 0.0], dtype=np.float64)
    return v0, v1, v2


@pytest.fixture
def epsilon() -> float:
    """Default intersection epsilon."""
    return 1e-10


@pytest.fixture(scope="module")
def sphere_tri_verts() -> np.ndarray:
    """Triangle vertices of a coarse 1 km sphere (760 triangles)."""
    mesh = generate_synthetic_body(21, 20, 1000.0, 0.0)
    return np.ascontiguousarray(mesh.vertices[mesh.triangles - 1])


# ===================================================================
# MÖLLER-TRUMBORE INTERSECTION TESTS
# ===================================================================


class TestLineTriangleIntersection:
    """Test suite for the two-sided line-triangle kernel."""

    def test_direct_hit_center(self, simple_triangle: tuple, epsilon: float) -> None:
        v0, v1, v2 = simple_triangle
        origin = np.array([0.25, 0.25, 1.0])
        direction = np.array([0.0, 0.0, -1.0])

        hit, t = line_triangle_intersection(origin, direction, v0, v1, v2, epsilon)

        assert hit, "Should hit the triangle"
        assert abs(t - 1.0) < 1e-12, f"Expected t=1.0, got t={t}"

    def test_hit_behind_origin_is_reported(self, simple_triangle: tuple, epsilon: float) -> None:
        """Lines are two-sided: a hit behind the reference point has t < 0."""
        v0, v1, v2 = simple_triangle
        origin = np.array([0.25, 0.25, 1.0])
        direction = np.array([0.0, 0.0, 1.0])

        hit, t = line_triangle_intersection(origin, direction, v0, v1, v2, epsilon)

        assert hit
        assert abs(t + 1.0) < 1e-12, f"Expected t=-1.0, got t={t}"

    def test_back_face_hit(self, simple_triangle: tuple, epsilon: float) -> None:
        v0, v1, v2 = simple_triangle
        origin = np.array([0.25, 0.25, -2.0])
        direction = np.array([0.0, 0.0, 1.0])

        hit, t = line_triangle_intersection(origin, direction, v0, v1, v2, epsilon)

        assert hit and abs(t - 2.0) < 1e-12

    def test_vertex_hit_counts(self, simple_triangle: tuple, epsilon: float) -> None:
        """The closed triangle includes its vertices."""
        v0, v1, v2 = simple_triangle
        origin = np.array([1.0, 0.0, 3.0])
        direction = np.array([0.0, 0.0, -1.0])

        hit, t = line_triangle_intersection(origin, direction, v0, v1, v2, epsilon)

        assert hit, "Vertex hit must be reported"
        assert abs(t - 3.0) < 1e-12

    def test_shared_edge_hits_both(self, epsilon: float) -> None:
        """A line through a shared edge crosses both triangles."""
        v0 = np.array([0.0, 0.0, 0.0])
        v1 = np.array([1.0, 0.0, 0.0])
        v2a = np.array([0.5, 1.0, 0.0])
        v2b = np.array([0.5, -1.0, 0.0])
        origin = np.array([0.5, 0.0, 1.0])
        direction = np.array([0.0, 0.0, -1.0])

        hit_a, _ = line_triangle_intersection(origin, direction, v0, v1, v2a, epsilon)
        hit_b, _ = line_triangle_intersection(origin, direction, v0, v2b, v1, epsilon)

        assert hit_a and hit_b, "Edge leakage detected"

    def test_miss_outside_triangle(self, simple_triangle: tuple, epsilon: float) -> None:
        v0, v1, v2 = simple_triangle
        origin = np.array([2.0, 2.0, 1.0])
        direction = np.array([0.0, 0.0, -1.0])

        hit, _ = line_triangle_intersection(origin, direction, v0, v1, v2, epsilon)

        assert not hit, "Should miss the triangle entirely"

    def test_parallel_line(self, simple_triangle: tuple, epsilon: float) -> None:
        v0, v1, v2 = simple_triangle
        origin = np.array([0.25, 0.25, 1.0])
        direction = np.array([1.0, 0.0, 0.0])

        hit, _ = line_triangle_intersection(origin, direction, v0, v1, v2, epsilon)

        assert not hit, "Parallel line should not intersect"

    def test_parallel_test_is_scale_free(self, epsilon: float) -> None:
        """A millimetre triangle is still hit by a steep line."""
        scale = 1e-3
        v0 = np.array([0.0, 0.0, 0.0])
        v1 = np.array([scale, 0.0, 0.0])
        v2 = np.array([0.0, scale, 0.0])
        origin = np.array([0.25 * scale, 0.25 * scale, 1.0])
        direction = np.array([0.0, 1e-6, -1.0]) / np.linalg.norm([0.0, 1e-6, -1.0])

        hit, _ = line_triangle_intersection(origin, direction, v0, v1, v2, epsilon)

        assert hit

    def test_degenerate_triangle(self, epsilon: float) -> None:
        v0 = np.array([0.0, 0.0, 0.0])
        v1 = np.array([1.0, 0.0, 0.0])
        v2 = np.array([0.5, 0.0, 0.0])
        origin = np.array([0.25, 0.0, 1.0])
        direction = np.array([0.0, 0.0, -1.0])

        hit, _ = line_triangle_intersection(origin, direction, v0, v1, v2, epsilon)

        assert not hit, "Degenerate triangle should not intersect"


# ===================================================================
# SLAB TEST
# ===================================================================


class TestLineAABB:
    """Test the slab-based line-box predicate."""

    def test_line_through_box(self) -> None:
        origin = np.array([-5.0, 0.5, 0.5])
        inv_dir = np.array([1.0, _INF, _INF])

        assert line_aabb_intersect(
            origin, inv_dir, np.zeros(3), np.ones(3), -_INF, _INF
        )

    def test_axis_parallel_line_outside_slab(self) -> None:
        origin = np.array([-5.0, 2.0, 0.5])
        inv_dir = np.array([1.0, _INF, _INF])

        assert not line_aabb_intersect(
            origin, inv_dir, np.zeros(3), np.ones(3), -_INF, _INF
        )

    def test_axis_parallel_line_on_box_face(self) -> None:
        """An origin on a face plane does not clamp the interval to t = 0."""
        origin = np.array([-5.0, 0.0, 0.5])
        inv_dir = np.array([1.0, _INF, _INF])

        assert line_aabb_intersect(
            origin, inv_dir, np.zeros(3), np.ones(3), -_INF, _INF
        )

    def test_lower_bound_prunes(self) -> None:
        origin = np.array([5.0, 0.5, 0.5])
        inv_dir = np.array([1.0, _INF, _INF])

        assert not line_aabb_intersect(
            origin, inv_dir, np.zeros(3), np.ones(3), 0.0, _INF
        ), "Box lies behind the lower bound"
        assert line_aabb_intersect(
            origin, inv_dir, np.zeros(3), np.ones(3), -10.0, _INF
        )


# ===================================================================
# BVH TESTS
# ===================================================================


class TestBVH:
    """BVH traversal must find exactly the brute-force hits."""

    def test_bvh_node_layout(self, sphere_tri_verts: np.ndarray) -> None:
        bvh_nodes, tri_verts, ordered = build_bvh(sphere_tri_verts)

        assert bvh_nodes.size % 8 == 0
        assert tri_verts.shape == sphere_tri_verts.shape
        assert sorted(ordered.tolist()) == list(range(sphere_tri_verts.shape[0]))

    def test_empty_input_rejected(self) -> None:
        with pytest.raises(ValueError):
            build_bvh(np.zeros((0, 3, 3)))

    @pytest.mark.parametrize("seed", [0, 1, 2])
    def test_bvh_matches_brute_force(self, sphere_tri_verts: np.ndarray, seed: int) -> None:
        rng = np.random.default_rng(seed)
        bvh = build_bvh(sphere_tri_verts, max_leaf_triangles=2)

        for _ in range(25):
            origin = rng.uniform(-1500.0, 1500.0, size=3)
            direction = rng.normal(size=3)
            direction /= np.linalg.norm(direction)

            bvh_idx, bvh_t = find_line_hits(bvh, origin, direction)
            hits, abscissas = intersect_all_triangles(origin, direction, sphere_tri_verts, 1e-10)

            assert sorted(bvh_idx.tolist()) == np.flatnonzero(hits).tolist()
            order = np.argsort(bvh_idx)
            np.testing.assert_allclose(
                bvh_t[order], abscissas[hits], rtol=0.0, atol=1e-9,
            )

    def test_axis_aligned_line_through_center(self, sphere_tri_verts: np.ndarray) -> None:
        """Lines lying in box face planes still reach every leaf they cross."""
        bvh = build_bvh(sphere_tri_verts)
        origin = np.zeros(3)

        for axis in range(3):
            direction = np.zeros(3)
            direction[axis] = 1.0
            bvh_idx, bvh_t = find_line_hits(bvh, origin, direction)
            hits, _ = intersect_all_triangles(origin, direction, sphere_tri_verts, 1e-10)

            assert sorted(bvh_idx.tolist()) == np.flatnonzero(hits).tolist()
            assert np.any(bvh_t > 0.0) and np.any(bvh_t < 0.0), "Both sides of the body are hit"

    def test_lower_bound_keeps_forward_hits(self, sphere_tri_verts: np.ndarray) -> None:
        bvh = build_bvh(sphere_tri_verts)
        origin = np.array([0.0, 0.0, 0.0])
        direction = np.array([0.6, 0.0, 0.8])

        _, t_all = find_line_hits(bvh, origin, direction)
        _, t_forward = find_line_hits(bvh, origin, direction, t_lower=0.0)

        assert np.all(t_forward > 0.0)
        assert np.sum(t_all > 0.0) == t_forward.size

    def test_brute_force_marks_misses_nan(self, sphere_tri_verts: np.ndarray) -> None:
        hits, abscissas = intersect_all_triangles(
            np.array([5000.0, 0.0, 0.0]), np.array([0.0, 1.0, 0.0]), sphere_tri_verts, 1e-10
        )

        assert not hits.any()
        assert np.all(np.isnan(abscissas))
