"""Vertices, triangles, and triangle-mesh construction.

Converts raw vertex positions and 1-based vertex-id triples into a
validated triangle mesh with computed face normals, face areas, face
centroids and edge adjacency.

Notes
-----
Triangles live in a flat arena: a triangle's ``index`` is its slot in the
body's triangle list, and neighbor sets are stored as tuples of those
indices. Vertex and triangle ids are 1-based and follow input order.

Normals follow the right-hand rule on the vertex winding:

    n = (v2 - v1) × (v3 - v1) / |(v2 - v1) × (v3 - v1)|

A closed body whose triangles are wound counter-clockwise when seen from
outside therefore has outward normals.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass

import numpy as np

from facet_engine.errors import MeshLoadError
from facet_engine.geometry import Line
from facet_engine.raytracer import line_triangle_intersection

logger = logging.getLogger(__name__)

_DEGENERATE_AREA = 1e-20


@dataclass(frozen=True, eq=False)
class Vertex:
    """A mesh vertex.

    Attributes
    ----------
    id : int
        1-based vertex identifier.
    position : np.ndarray
        Position [m] in the body frame. Shape: (3,).
    """

    id: int
    position: np.ndarray

    def __repr__(self) -> str:
        return f"Vertex({self.id}, {self.position.tolist()})"


class Triangle:
    """A mesh facet with its cached geometric properties.

    Parameters
    ----------
    triangle_id : int
        1-based triangle identifier.
    v1, v2, v3 : Vertex
        Vertices in winding order.
    index : int, optional
        Slot of the triangle in its body's arena. Standalone triangles use
        ``triangle_id - 1``.
    normal, center, area : optional
        Precomputed properties. Computed from the vertices when omitted.
    """

    __slots__ = (
        "id", "index", "vertices", "normal", "center", "area",
        "sphere_radius", "_neighbors",
    )

    def __init__(
        self,
        triangle_id: int,
        v1: Vertex,
        v2: Vertex,
        v3: Vertex,
        index: int | None = None,
        normal: np.ndarray | None = None,
        center: np.ndarray | None = None,
        area: float | None = None,
    ) -> None:
        self.id = int(triangle_id)
        self.index = self.id - 1 if index is None else int(index)
        self.vertices = (v1, v2, v3)

        positions = self.positions
        if normal is None or center is None or area is None:
            normals, areas, centers = compute_face_properties(
                positions, np.array([[0, 1, 2]], dtype=np.int64)
            )
            normal, area, center = normals[0], float(areas[0]), centers[0]
        self.normal = np.asarray(normal, dtype=np.float64)
        self.center = np.asarray(center, dtype=np.float64)
        self.area = float(area)
        self.sphere_radius = float(np.linalg.norm(positions - self.center, axis=1).max())
        self._neighbors: tuple[int, ...] = ()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def positions(self) -> np.ndarray:
        """Vertex positions in winding order. Shape: (3, 3)."""
        return np.array([v.position for v in self.vertices], dtype=np.float64)

    @property
    def vertex_ids(self) -> tuple[int, int, int]:
        return tuple(v.id for v in self.vertices)

    @property
    def neighbors(self) -> tuple[int, ...]:
        """Arena indices of the triangles sharing an edge with this one."""
        return self._neighbors

    def _set_neighbors(self, indices) -> None:
        self._neighbors = tuple(sorted(indices))

    # ------------------------------------------------------------------
    # Predicates
    # ------------------------------------------------------------------

    def intersection_abscissa(self, line: Line, epsilon: float = 1e-10) -> float | None:
        """Abscissa of the admissible intersection with ``line``, if any."""
        v0, v1, v2 = self.positions
        hit, t_hit = line_triangle_intersection(
            line.origin, line.direction, v0, v1, v2, epsilon
        )
        if not hit or not line.accepts(t_hit):
            return None
        return float(t_hit)

    def intersect(self, line: Line, epsilon: float = 1e-10) -> np.ndarray | None:
        """Intersection point of ``line`` with the closed triangle.

        Returns None when the line is parallel to the plane, misses the
        triangle, or crosses it below the line's minimum abscissa.
        """
        t_hit = self.intersection_abscissa(line, epsilon)
        if t_hit is None:
            return None
        return line.point_at(t_hit)

    def is_visible(self, position) -> bool:
        """Whether the front face is seen from ``position``.

        A position in the triangle's plane is not a viewer of it.
        """
        return float(self.normal @ (np.asarray(position, dtype=np.float64) - self.center)) > 0.0

    def is_neighbor_by_vertex_id(self, other: Triangle) -> bool:
        """Whether ``other`` shares exactly two vertex ids with this triangle."""
        if other is self:
            return False
        return len(set(self.vertex_ids) & set(other.vertex_ids)) == 2

    def closest_point(self, point) -> np.ndarray:
        """Closest point of the triangle to ``point``."""
        a, b, c = self.positions
        return _closest_point_on_triangle(np.asarray(point, dtype=np.float64), a, b, c)

    def distance_to(self, point) -> float:
        """Distance between ``point`` and the triangle."""
        point = np.asarray(point, dtype=np.float64)
        return float(np.linalg.norm(point - self.closest_point(point)))

    def closest_point_to(
        self,
        line: Line,
        epsilon: float = 1e-10,
    ) -> tuple[np.ndarray, np.ndarray]:
        """Closest pair between the admissible line and the triangle.

        Returns
        -------
        point_on_line : np.ndarray
            Point of the line.
        point_on_triangle : np.ndarray
            Point of the triangle. Equal to ``point_on_line`` when the
            line crosses the triangle.
        """
        hit = self.intersect(line, epsilon)
        if hit is not None:
            return hit, hit.copy()

        candidates: list[tuple[np.ndarray, np.ndarray]] = []
        start = line.start_point
        if start is not None:
            candidates.append((start, self.closest_point(start)))

        a, b, c = self.positions
        for edge_start, edge_end in ((a, b), (b, c), (c, a)):
            candidates.append(line.closest_points_to_segment(edge_start, edge_end))

        return min(candidates, key=lambda pair: float(np.linalg.norm(pair[0] - pair[1])))

    def distance_to_line(self, line: Line, epsilon: float = 1e-10) -> float:
        """Distance between the admissible line and the triangle."""
        on_line, on_triangle = self.closest_point_to(line, epsilon)
        return float(np.linalg.norm(on_line - on_triangle))

    def __repr__(self) -> str:
        return f"Triangle({self.id}, vertices={self.vertex_ids})"


def _closest_point_on_triangle(
    p: np.ndarray,
    a: np.ndarray,
    b: np.ndarray,
    c: np.ndarray,
) -> np.ndarray:
    """Closest point on triangle ``abc`` by Voronoi-region classification.

    Ericson, C. (2005). Real-Time Collision Detection, §5.1.5.
    """
    ab = b - a
    ac = c - a
    ap = p - a
    d1 = ab @ ap
    d2 = ac @ ap
    if d1 <= 0.0 and d2 <= 0.0:
        return a.copy()

    bp = p - b
    d3 = ab @ bp
    d4 = ac @ bp
    if d3 >= 0.0 and d4 <= d3:
        return b.copy()

    vc = d1 * d4 - d3 * d2
    if vc <= 0.0 and d1 >= 0.0 and d3 <= 0.0:
        return a + (d1 / (d1 - d3)) * ab

    cp = p - c
    d5 = ab @ cp
    d6 = ac @ cp
    if d6 >= 0.0 and d5 <= d6:
        return c.copy()

    vb = d5 * d2 - d1 * d6
    if vb <= 0.0 and d2 >= 0.0 and d6 <= 0.0:
        return a + (d2 / (d2 - d6)) * ac

    va = d3 * d6 - d5 * d4
    if va <= 0.0 and (d4 - d3) >= 0.0 and (d5 - d6) >= 0.0:
        return b + ((d4 - d3) / ((d4 - d3) + (d5 - d6))) * (c - b)

    total = va + vb + vc
    if total == 0.0:
        return a.copy()
    return a + ab * (vb / total) + ac * (vc / total)


# ---------------------------------------------------------------------------
# Mesh Construction
# ---------------------------------------------------------------------------


@dataclass
class TriangleMesh:
    """Validated triangle mesh arrays.

    Attributes
    ----------
    vertices : np.ndarray
        Vertex positions [m]. Shape: (num_vertices, 3), dtype: float64.
        Row ``k`` holds vertex id ``k + 1``.
    triangles : np.ndarray
        Triangle vertex indices (0-based rows of ``vertices``).
        Shape: (num_triangles, 3), dtype: int64.
    face_normals : np.ndarray
        Unit normals from the winding order (zero for degenerate faces).
        Shape: (num_triangles, 3), dtype: float64.
    face_areas : np.ndarray
        Area of each triangle face [m²]. Shape: (num_triangles,), dtype: float64.
    face_centroids : np.ndarray
        Centroid of each triangle face [m]. Shape: (num_triangles, 3), dtype: float64.
    metadata : dict
        Mesh statistics.
    """

    vertices: np.ndarray
    triangles: np.ndarray
    face_normals: np.ndarray
    face_areas: np.ndarray
    face_centroids: np.ndarray
    metadata: dict

    @property
    def tri_verts(self) -> np.ndarray:
        """Per-triangle vertex positions. Shape: (num_triangles, 3, 3)."""
        return self.vertices[self.triangles]


def build_triangle_mesh(vertex_positions, triangle_vertex_ids) -> TriangleMesh:
    """Validate raw input and compute per-face properties.

    Parameters
    ----------
    vertex_positions : array-like
        Vertex positions [m]. Shape: (num_vertices, 3).
    triangle_vertex_ids : array-like
        1-based vertex ids of each triangle. Shape: (num_triangles, 3).

    Returns
    -------
    TriangleMesh
        Mesh with 0-based triangle indices, normals, areas, and centroids.

    Raises
    ------
    MeshLoadError
        If shapes are wrong, coordinates are not finite, the mesh is empty
        or a triangle references a vertex id outside [1, num_vertices].
    """
    try:
        vertices = np.array(vertex_positions, dtype=np.float64)
        ids = np.array(triangle_vertex_ids)
    except (TypeError, ValueError) as exc:
        raise MeshLoadError(f"Mesh arrays are malformed: {exc}") from exc

    if vertices.ndim != 2 or vertices.shape[1] != 3 or vertices.shape[0] == 0:
        raise MeshLoadError(f"Vertex array must have shape (N, 3), got {vertices.shape}")
    if not np.all(np.isfinite(vertices)):
        raise MeshLoadError("Vertex coordinates must be finite.")
    if ids.ndim != 2 or ids.shape[1] != 3 or ids.shape[0] == 0:
        raise MeshLoadError(f"Triangle array must have shape (M, 3), got {ids.shape}")
    if not np.issubdtype(ids.dtype, np.integer):
        if not np.all(np.mod(ids, 1) == 0):
            raise MeshLoadError("Triangle vertex ids must be integers.")
    ids = ids.astype(np.int64)

    num_vertices = vertices.shape[0]
    out_of_range = (ids < 1) | (ids > num_vertices)
    if np.any(out_of_range):
        row, col = np.argwhere(out_of_range)[0]
        raise MeshLoadError(
            f"Triangle {row + 1} references vertex id {ids[row, col]} "
            f"outside [1, {num_vertices}]"
        )

    triangles = ids - 1
    face_normals, face_areas, face_centroids = compute_face_properties(vertices, triangles)

    degenerate_count = int(np.sum(face_areas < _DEGENERATE_AREA))
    if degenerate_count > 0:
        logger.warning(
            "  %d degenerate triangles detected (area < %.0e m²)",
            degenerate_count, _DEGENERATE_AREA,
        )

    norms = np.linalg.norm(vertices, axis=1)
    metadata = {
        "num_vertices": num_vertices,
        "num_triangles": int(triangles.shape[0]),
        "degenerate_triangles": degenerate_count,
        "total_surface_area_m2": float(face_areas.sum()),
        "min_norm_m": float(norms.min()),
        "max_norm_m": float(norms.max()),
    }

    logger.info(
        "Mesh created: %d vertices, %d triangles, %.4e m² surface area",
        num_vertices,
        metadata["num_triangles"],
        metadata["total_surface_area_m2"],
    )

    return TriangleMesh(
        vertices=vertices,
        triangles=triangles,
        face_normals=face_normals,
        face_areas=face_areas,
        face_centroids=face_centroids,
        metadata=metadata,
    )


def compute_face_properties(
    vertices: np.ndarray,
    triangles: np.ndarray,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Compute face normals, areas, and centroids for all triangles.

    Parameters
    ----------
    vertices : np.ndarray
        Vertex positions, shape (num_vertices, 3).
    triangles : np.ndarray
        Triangle vertex indices, shape (num_triangles, 3).

    Returns
    -------
    normals : np.ndarray
        Unit normals following the winding order, shape (num_triangles, 3).
    areas : np.ndarray
        Triangle areas [m²], shape (num_triangles,).
    centroids : np.ndarray
        Triangle centroids [m], shape (num_triangles, 3).
    """
    v0 = vertices[triangles[:, 0]]  # (N, 3)
    v1 = vertices[triangles[:, 1]]  # (N, 3)
    v2 = vertices[triangles[:, 2]]  # (N, 3)

    # Cross product gives normal direction with magnitude = 2 * area
    cross = np.cross(v1 - v0, v2 - v0)
    norms = np.linalg.norm(cross, axis=1, keepdims=True)

    # Degenerate triangles keep a zero normal and are never visible
    safe_norms = np.where(norms > 1e-30, norms, 1.0)
    normals = np.where(norms > 1e-30, cross / safe_norms, 0.0)

    areas = 0.5 * norms.ravel()
    centroids = (v0 + v1 + v2) / 3.0

    return normals, areas, centroids


def build_triangles(mesh: TriangleMesh) -> tuple[list[Vertex], list[Triangle]]:
    """Create the vertex and triangle arenas of a mesh and link them.

    Returns
    -------
    vertices : list[Vertex]
        Vertex ``k`` has id ``k + 1``.
    triangles : list[Triangle]
        Triangle ``k`` has id ``k + 1`` and arena index ``k``.
    """
    vertices = [Vertex(k + 1, mesh.vertices[k]) for k in range(mesh.vertices.shape[0])]
    triangles = [
        Triangle(
            k + 1,
            vertices[i0], vertices[i1], vertices[i2],
            index=k,
            normal=mesh.face_normals[k],
            center=mesh.face_centroids[k],
            area=mesh.face_areas[k],
        )
        for k, (i0, i1, i2) in enumerate(mesh.triangles.tolist())
    ]
    open_edges = link_triangles(triangles)
    if open_edges:
        logger.warning("Mesh is not closed: %d edges belong to a single triangle", open_edges)
    return vertices, triangles


def link_triangles(triangles: list[Triangle]) -> int:
    """Populate neighbor sets by shared edges.

    Parameters
    ----------
    triangles : list[Triangle]
        Triangle arena; ``triangles[k].index`` must equal ``k``.

    Returns
    -------
    int
        Number of edges owned by a single triangle (0 for a closed mesh).
    """
    edge_owners: dict[tuple[int, int], list[int]] = defaultdict(list)
    for tri in triangles:
        a, b, c = tri.vertex_ids
        for p, q in ((a, b), (b, c), (c, a)):
            if p != q:
                edge_owners[(min(p, q), max(p, q))].append(tri.index)

    neighbor_sets: list[set[int]] = [set() for _ in triangles]
    open_edges = 0
    for owners in edge_owners.values():
        if len(owners) == 1:
            open_edges += 1
            continue
        for i, first in enumerate(owners):
            for second in owners[i + 1:]:
                if triangles[first].is_neighbor_by_vertex_id(triangles[second]):
                    neighbor_sets[first].add(second)
                    neighbor_sets[second].add(first)

    for tri, neighbor_set in zip(triangles, neighbor_sets):
        tri._set_neighbors(neighbor_set)

    logger.debug("Linked %d triangles over %d edges", len(triangles), len(edge_owners))
    return open_edges
