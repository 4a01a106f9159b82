"""Visibility engine — field-of-view culling, illumination and contours.

This module is the "conductor" that connects observer states, fields of
view and the Sun position to the facet body, producing per-state
visible-triangle sets, their silhouette contour, and ephemeris-wide
aggregates (never visible, never enlightened, visible and enlightened).

Pipeline
--------
1. Receive an observer state (date, position, optional attitude).
2. Back-face cull: keep triangles whose normal faces the observer.
3. Field-of-view test on the observer→center direction, expressed in
   the sensor frame.
4. Optional masking test (all three vertices hidden by the body).
5. Build :class:`FieldData` (visible surface, contour loops).

Notes
-----
A triangle is visible iff ``normal · (observer − center) > 0``: an
observer in the triangle's plane does not see it. Without masking, every
triangle is therefore either visible or back-facing for an
omnidirectional field, never both.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Iterable, Sequence

import numpy as np

from facet_engine.geometry import Line, as_point, rotation_z_to_direction
from facet_engine.mesh import Triangle, Vertex
from facet_engine.points import FacetPoint

if TYPE_CHECKING:
    from facet_engine.body_shape import FacetBodyShape

logger = logging.getLogger(__name__)

PositionProvider = Callable[[Any], Any]


# ---------------------------------------------------------------------------
# Fields of View
# ---------------------------------------------------------------------------


class FieldOfView(ABC):
    """Angular acceptance region, queried with sensor-frame directions."""

    name: str = ""

    @abstractmethod
    def is_in_field(self, direction: np.ndarray) -> bool:
        """Whether the direction (need not be unit) is inside the field."""

    def are_in_field(self, directions: np.ndarray) -> np.ndarray:
        """Vectorised :meth:`is_in_field` over an ``(N, 3)`` array."""
        return np.array([self.is_in_field(d) for d in directions], dtype=bool)


class OmnidirectionalField(FieldOfView):
    """Field of view accepting every direction."""

    def __init__(self, name: str = "omnidirectional") -> None:
        self.name = name

    def is_in_field(self, direction: np.ndarray) -> bool:
        return True

    def are_in_field(self, directions: np.ndarray) -> np.ndarray:
        return np.ones(len(directions), dtype=bool)


class CircularField(FieldOfView):
    """Circular cone around a main direction.

    Parameters
    ----------
    half_angle : float
        Half-aperture of the cone [rad], in (0, π].
    main_direction : array-like
        Boresight in the sensor frame. Default: +Z.
    name : str
        Field label.

    Notes
    -----
    A direction is in the field iff its angle to the boresight is strictly
    lower than the half-aperture. Angles are computed with ``atan2`` so
    that apertures down to 1e-13 rad are resolved.
    """

    def __init__(
        self,
        half_angle: float,
        main_direction=(0.0, 0.0, 1.0),
        name: str = "circular",
    ) -> None:
        if not (0.0 < half_angle <= np.pi):
            raise ValueError(f"Half-angle must be in (0, pi], got {half_angle}")
        direction = as_point(main_direction)
        norm = np.linalg.norm(direction)
        if norm == 0.0:
            raise ValueError("Main direction must be non-zero.")
        self.half_angle = float(half_angle)
        self.main_direction = direction / norm
        self.name = name

    def angular_distance(self, direction: np.ndarray) -> float:
        """Half-aperture minus the angle to the boresight (positive inside)."""
        return self.half_angle - float(self._angles(np.asarray(direction, dtype=np.float64)[None, :])[0])

    def is_in_field(self, direction: np.ndarray) -> bool:
        return self.angular_distance(direction) > 0.0

    def are_in_field(self, directions: np.ndarray) -> np.ndarray:
        return self._angles(np.asarray(directions, dtype=np.float64)) < self.half_angle

    def _angles(self, directions: np.ndarray) -> np.ndarray:
        cross = np.linalg.norm(np.cross(directions, self.main_direction), axis=1)
        dot = directions @ self.main_direction
        return np.arctan2(cross, dot)


# ---------------------------------------------------------------------------
# Observer State
# ---------------------------------------------------------------------------


@dataclass(frozen=True, eq=False)
class ObserverState:
    """Observer sample of an ephemeris.

    Attributes
    ----------
    date : Any
        Opaque timestamp forwarded to position providers.
    position : np.ndarray
        Observer position in the body frame [m]. Shape: (3,).
    attitude : np.ndarray or None
        Rotation matrix mapping body-frame vectors to the sensor frame.
        None means the sensor frame is the body frame.
    """

    date: Any
    position: np.ndarray
    attitude: np.ndarray | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "position", as_point(self.position))
        if self.attitude is not None:
            attitude = np.asarray(self.attitude, dtype=np.float64)
            if attitude.shape != (3, 3):
                raise ValueError(f"Attitude must be a 3x3 matrix, got {attitude.shape}")
            object.__setattr__(self, "attitude", attitude)

    @classmethod
    def body_center_pointing(cls, date: Any, position) -> ObserverState:
        """State whose sensor +Z axis points at the body center."""
        position = as_point(position)
        sensor_to_body = rotation_z_to_direction(-position)
        return cls(date, position, sensor_to_body.T)

    def to_sensor_frame(self, vectors: np.ndarray) -> np.ndarray:
        """Express body-frame vectors (shape (3,) or (N, 3)) in the sensor frame."""
        if self.attitude is None:
            return vectors
        return vectors @ self.attitude.T

    def to_body_frame(self, vectors: np.ndarray) -> np.ndarray:
        """Express sensor-frame vectors in the body frame."""
        if self.attitude is None:
            return vectors
        return vectors @ self.attitude


# ---------------------------------------------------------------------------
# Field Data
# ---------------------------------------------------------------------------


class FieldData:
    """Visible triangles of one observation and their silhouette.

    Parameters
    ----------
    date : Any
        Observation date.
    visible_triangles : sequence of Triangle
        Triangles seen at that date.
    body : FacetBodyShape, optional
        Body used to express contour points on its reference ellipsoid.
    """

    def __init__(
        self,
        date: Any,
        visible_triangles: Sequence[Triangle],
        body: FacetBodyShape | None = None,
    ) -> None:
        self._date = date
        self._visible_triangles = tuple(visible_triangles)
        self._visible_surface = float(sum(t.area for t in self._visible_triangles))

        loops = extract_contour_loops(self._visible_triangles)
        self._contour_vertex_ids = [[v.id for v in loop] for loop in loops]
        self._contour_loops = [
            [_contour_point(v, body) for v in loop] for loop in loops
        ]

    @property
    def date(self) -> Any:
        return self._date

    @property
    def visible_triangles(self) -> tuple[Triangle, ...]:
        return self._visible_triangles

    @property
    def visible_surface(self) -> float:
        """Sum of the visible triangle areas [m²]."""
        return self._visible_surface

    @property
    def contour(self) -> list[FacetPoint]:
        """All contour points, loop after loop."""
        return [p for loop in self._contour_loops for p in loop]

    @property
    def contour_loops(self) -> list[list[FacetPoint]]:
        return [list(loop) for loop in self._contour_loops]

    @property
    def contour_vertex_ids(self) -> list[list[int]]:
        return [list(ids) for ids in self._contour_vertex_ids]


def _contour_point(vertex: Vertex, body: FacetBodyShape | None) -> FacetPoint:
    name = f"point_{vertex.id}"
    if body is None:
        return FacetPoint.from_position(vertex.position, name)
    return body.build_point(vertex.position, name)


def extract_contour_loops(triangles: Sequence[Triangle]) -> list[list[Vertex]]:
    """Chain the boundary edges of a triangle set into closed loops.

    An edge is on the boundary iff exactly one triangle of the set owns
    it. Each loop starts on the first unused boundary edge (in triangle
    order) and follows that triangle's winding. At a vertex with several
    unused boundary edges, the next edge is found by turning around the
    vertex through the covered fan, starting from the triangle of the
    incoming edge and crossing interior edges until a boundary edge is
    reached.

    Parameters
    ----------
    triangles : sequence of Triangle
        Covered triangles.

    Returns
    -------
    list[list[Vertex]]
        Loops of vertices; the closing vertex is not repeated.
    """
    edge_owners: dict[tuple[int, int], list[int]] = defaultdict(list)
    directed: dict[tuple[int, int], tuple[int, int]] = {}
    vertex_by_id: dict[int, Vertex] = {}
    triangle_edges: list[list[tuple[int, int]]] = []

    for k, tri in enumerate(triangles):
        for v in tri.vertices:
            vertex_by_id[v.id] = v
        a, b, c = tri.vertex_ids
        keys = []
        for p, q in ((a, b), (b, c), (c, a)):
            if p == q:
                continue
            key = (min(p, q), max(p, q))
            edge_owners[key].append(k)
            directed.setdefault(key, (p, q))
            keys.append(key)
        triangle_edges.append(keys)

    boundary = [key for key, owners in edge_owners.items() if len(owners) == 1]
    boundary_set = set(boundary)
    incident: dict[int, list[tuple[int, int]]] = defaultdict(list)
    for key in boundary:
        incident[key[0]].append(key)
        incident[key[1]].append(key)

    used: set[tuple[int, int]] = set()

    def _next_edge(vertex: int, incoming: tuple[int, int]) -> tuple[int, int] | None:
        candidates = [e for e in incident[vertex] if e not in used]
        if len(candidates) <= 1:
            return candidates[0] if candidates else None
        # Turn through the covered fan around the vertex
        tri_k = edge_owners[incoming][0]
        edge = incoming
        for _ in range(len(triangles)):
            other = next(
                (e for e in triangle_edges[tri_k] if vertex in e and e != edge), None
            )
            if other is None:
                break
            if other in boundary_set:
                if other not in used:
                    return other
                break
            next_k = next((k for k in edge_owners[other] if k != tri_k), None)
            if next_k is None:
                break
            edge, tri_k = other, next_k
        return candidates[0]

    loops: list[list[Vertex]] = []
    for first in boundary:
        if first in used:
            continue
        used.add(first)
        start, current = directed[first]
        loop_ids = [start]
        incoming = first
        while current != start:
            loop_ids.append(current)
            nxt = _next_edge(current, incoming)
            if nxt is None:
                logger.warning("Open contour at vertex %d", current)
                break
            used.add(nxt)
            current = nxt[1] if nxt[0] == current else nxt[0]
            incoming = nxt
        loops.append([vertex_by_id[i] for i in loop_ids])

    return loops


# ---------------------------------------------------------------------------
# Visibility Engine
# ---------------------------------------------------------------------------


class VisibilityEngine:
    """Orchestrates visibility and illumination queries on a facet body.

    Parameters
    ----------
    body : FacetBodyShape
        The body whose triangles are classified.
    """

    def __init__(self, body: FacetBodyShape) -> None:
        self._body = body

    # ------------------------------------------------------------------
    # Per-triangle predicates
    # ------------------------------------------------------------------

    def is_masked(self, triangle: Triangle, position) -> bool:
        """Whether every vertex of ``triangle`` is hidden by the body.

        A vertex is hidden when the line from ``position`` to it crosses
        the body strictly between the two.
        """
        position = as_point(position)
        threshold = self._body.config.geometry.duplicate_distance_sq
        for vertex in triangle.vertices:
            offset = vertex.position - position
            if float(offset @ offset) <= threshold:
                return False
            line = Line(position, vertex.position)
            hidden = False
            for point in self._body.get_intersection_points(line):
                to_vertex = vertex.position - point
                if float(to_vertex @ to_vertex) > threshold:
                    hidden |= float(to_vertex @ (position - point)) < 0.0
            if not hidden:
                return False
        return True

    def is_visible(
        self,
        triangle: Triangle,
        position,
        field_of_view: FieldOfView | None = None,
        attitude: np.ndarray | None = None,
        check_masking: bool = False,
    ) -> bool:
        """Whether ``triangle`` is seen from ``position``.

        Parameters
        ----------
        triangle : Triangle
            Triangle to classify.
        position : array-like
            Observer position [m].
        field_of_view : FieldOfView, optional
            Sensor field; None accepts every direction.
        attitude : np.ndarray, optional
            Body→sensor rotation applied before the field test.
        check_masking : bool
            Also reject triangles hidden behind the body.
        """
        position = as_point(position)
        if not triangle.is_visible(position):
            return False
        if field_of_view is not None:
            direction = triangle.center - position
            if attitude is not None:
                direction = attitude @ direction
            if not field_of_view.is_in_field(direction):
                return False
        if check_masking and self.is_masked(triangle, position):
            return False
        return True

    def visible_mask(
        self,
        position,
        field_of_view: FieldOfView | None = None,
        attitude: np.ndarray | None = None,
        check_masking: bool = False,
    ) -> np.ndarray:
        """Vectorised visibility of every triangle. Shape: (num_triangles,)."""
        position = as_point(position)
        centers = self._body.face_centroids
        mask = np.einsum("ij,ij->i", self._body.face_normals, position - centers) > 0.0

        if field_of_view is not None:
            idx = np.flatnonzero(mask)
            directions = centers[idx] - position
            if attitude is not None:
                directions = directions @ np.asarray(attitude).T
            mask[idx] = field_of_view.are_in_field(directions)

        if check_masking:
            triangles = self._body.triangles
            for i in np.flatnonzero(mask):
                if self.is_masked(triangles[i], position):
                    mask[i] = False

        return mask

    # ------------------------------------------------------------------
    # Field data
    # ------------------------------------------------------------------

    def get_field_data(
        self,
        state: ObserverState,
        field_of_view: FieldOfView | None = None,
        line_of_sight: np.ndarray | None = None,
        check_masking: bool = False,
    ) -> FieldData:
        """Visible triangles and contour for one observer state.

        Parameters
        ----------
        state : ObserverState
            Observer date, position and attitude.
        field_of_view : FieldOfView, optional
            Sensor field; None accepts every direction.
        line_of_sight : array-like, optional
            Sensor-frame direction expected to hit the body inside the
            field. When it does, triangles are collected by a breadth-first
            search from the hit triangle instead of a full scan.
        check_masking : bool
            Also reject triangles hidden behind the body.

        Returns
        -------
        FieldData
            Visible triangles, visible surface, and contour.
        """
        body = self._body
        position = state.position
        start = None
        if line_of_sight is not None:
            direction = state.to_body_frame(as_point(line_of_sight))
            intersection = body.get_intersection(Line.half_line(position, position + direction))
            if intersection is not None:
                start = intersection.triangle

        if start is not None:
            visible = self._fast_visible_triangles(
                start, position, field_of_view, state.attitude, check_masking
            )
            mode = "fast"
        else:
            mask = self.visible_mask(position, field_of_view, state.attitude, check_masking)
            visible = [body.triangles[i] for i in np.flatnonzero(mask)]
            mode = "full"

        field_data = FieldData(state.date, visible, body)
        logger.info(
            "Field data computed (%s): %d visible triangles, surface=%.4e m², contour=%d points",
            mode,
            len(field_data.visible_triangles),
            field_data.visible_surface,
            len(field_data.contour),
        )
        return field_data

    def _fast_visible_triangles(
        self,
        start: Triangle,
        position: np.ndarray,
        field_of_view: FieldOfView | None,
        attitude: np.ndarray | None,
        check_masking: bool,
    ) -> list[Triangle]:
        """Breadth-first growth of the visible region from ``start``."""
        triangles = self._body.triangles
        handled = {start.index}
        queue = deque([start.index])
        visible: list[Triangle] = []
        while queue:
            triangle = triangles[queue.popleft()]
            if not self.is_visible(triangle, position, field_of_view, attitude, check_masking):
                continue
            visible.append(triangle)
            for neighbor in triangle.neighbors:
                if neighbor not in handled:
                    handled.add(neighbor)
                    queue.append(neighbor)
        return visible

    # ------------------------------------------------------------------
    # Ephemeris aggregates
    # ------------------------------------------------------------------

    def get_never_visible_triangles(
        self,
        states: Iterable[ObserverState],
        field_of_view: FieldOfView | None = None,
        check_masking: bool = False,
    ) -> list[Triangle]:
        """Triangles invisible at every state, in arena order."""
        never = np.ones(self._body.num_triangles, dtype=bool)
        num_states = 0
        for state in states:
            never &= ~self.visible_mask(state.position, field_of_view, state.attitude, check_masking)
            num_states += 1
        result = [self._body.triangles[i] for i in np.flatnonzero(never)]
        logger.info("Never visible over %d states: %d triangles", num_states, len(result))
        return result

    def get_never_enlightened_triangles(
        self,
        dates: Iterable[Any],
        sun: PositionProvider,
        check_masking: bool = False,
    ) -> list[Triangle]:
        """Triangles facing away from the Sun at every date, in arena order."""
        never = np.ones(self._body.num_triangles, dtype=bool)
        num_dates = 0
        for date in dates:
            never &= ~self.visible_mask(as_point(sun(date)), check_masking=check_masking)
            num_dates += 1
        result = [self._body.triangles[i] for i in np.flatnonzero(never)]
        logger.info("Never enlightened over %d dates: %d triangles", num_dates, len(result))
        return result

    def get_visible_and_enlightened_triangles(
        self,
        states: Iterable[ObserverState],
        sun: PositionProvider,
        field_of_view: FieldOfView | None = None,
        check_masking: bool = False,
    ) -> list[Triangle]:
        """Triangles both seen and lit at one state at least, in arena order."""
        union = np.zeros(self._body.num_triangles, dtype=bool)
        for state in states:
            seen = self.visible_mask(state.position, field_of_view, state.attitude, check_masking)
            lit = self.visible_mask(as_point(sun(state.date)), check_masking=check_masking)
            union |= seen & lit
        result = [self._body.triangles[i] for i in np.flatnonzero(union)]
        logger.info("Visible and enlightened: %d triangles", len(result))
        return result
