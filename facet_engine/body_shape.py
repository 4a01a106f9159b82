"""Facet body shape — triangulated celestial body geometry.

A :class:`FacetBodyShape` owns an immutable triangle mesh centered on its
own frame origin, and answers geometric queries against it:

- line intersections (first hit, all hits, hit at a given altitude);
- distance and closest points between a line and the body;
- triangle neighborhoods by distance and by edge-hop order;
- geodetic conversions on a selectable reference ellipsoid;
- visibility, illumination and eclipse predicates;
- apparent radius of the limb seen from an observer;
- resized copies (radial distance margin or scale factor).

Pipeline
--------
1. Validate the raw mesh and compute face properties.
2. Build the vertex and triangle arenas and link edge neighbors.
3. Build the line-query BVH and a k-d tree on the triangle centers.
4. Compute min/max vertex norms, facet slopes and reference ellipsoids.

Notes
-----
The body is frame agnostic: every position handed to it is expressed in
the body frame. Date-dependent inputs (Sun, observer ephemeris) are
queried through caller-supplied callables.
"""

from __future__ import annotations

import logging
import math
import sys
from collections import deque
from typing import Any, Callable, Iterable, Sequence

import numpy as np
from scipy.spatial import cKDTree

from facet_engine.constants import EngineConfig
from facet_engine.ellipsoid import (
    EllipsoidFitter,
    EllipsoidType,
    GeodeticPoint,
    ReferenceEllipsoid,
    build_reference_ellipsoids,
    fit_ellipsoid,
)
from facet_engine.errors import AltitudeIntersectionError, ConvergenceError
from facet_engine.geometry import Line, angle_between, as_point, rotation_about_axis
from facet_engine.margin import MarginType
from facet_engine.mesh import Triangle, Vertex, build_triangle_mesh, build_triangles
from facet_engine.points import FacetPoint, Intersection
from facet_engine.raytracer import build_bvh, find_line_hits, intersect_all_triangles
from facet_engine.visibility import FieldData, FieldOfView, ObserverState, VisibilityEngine

logger = logging.getLogger(__name__)

_ORIGIN = np.zeros(3, dtype=np.float64)
# Relative slack on the bounding sphere and on BVH pruning bounds
_BOUND_SLACK = 1e-9

PositionProvider = Callable[[Any], Any]


class FacetBodyShape:
    """Triangulated body shape.

    Parameters
    ----------
    name : str
        Body name.
    vertex_positions : array-like
        Vertex positions [m] in the body frame. Shape: (num_vertices, 3).
        Row ``k`` is vertex id ``k + 1``.
    triangle_vertex_ids : array-like
        1-based vertex ids of each triangle, counter-clockwise seen from
        outside. Shape: (num_triangles, 3).
    ellipsoid_type : EllipsoidType
        Reference ellipsoid used by geodetic conversions.
    config : EngineConfig, optional
        Tolerances and solver settings. Defaults to :class:`EngineConfig()`.
    reference_ellipsoids : dict, optional
        Precomputed ellipsoids, skipping the fit.
    fitter : callable
        Ellipsoid fitting strategy.

    Raises
    ------
    MeshLoadError
        If the mesh arrays are invalid.
    """

    def __init__(
        self,
        name: str,
        vertex_positions,
        triangle_vertex_ids,
        ellipsoid_type: EllipsoidType = EllipsoidType.FITTED_ELLIPSOID,
        config: EngineConfig | None = None,
        reference_ellipsoids: dict[EllipsoidType, ReferenceEllipsoid] | None = None,
        fitter: EllipsoidFitter = fit_ellipsoid,
    ) -> None:
        self._name = name
        self._config = config if config is not None else EngineConfig()
        self._epsilon = self._config.geometry.epsilon
        self._fitter = fitter

        logger.info("Building facet body '%s'", name)
        self._mesh = build_triangle_mesh(vertex_positions, triangle_vertex_ids)
        for array in (
            self._mesh.vertices, self._mesh.triangles, self._mesh.face_normals,
            self._mesh.face_areas, self._mesh.face_centroids,
        ):
            array.flags.writeable = False

        vertices, triangles = build_triangles(self._mesh)
        self._vertices = tuple(vertices)
        self._triangles = tuple(triangles)

        rt_cfg = self._config.raytracer
        self._bvh_data = build_bvh(
            self._mesh.tri_verts,
            max_leaf_triangles=rt_cfg.max_leaf_triangles,
            sah_num_bins=rt_cfg.sah_num_bins,
            epsilon=self._epsilon,
        )
        self._center_tree = cKDTree(self._mesh.face_centroids)
        self._sphere_radii = np.array([t.sphere_radius for t in self._triangles])

        self._min_norm = self._mesh.metadata["min_norm_m"]
        self._max_norm = self._mesh.metadata["max_norm_m"]

        normals = self._mesh.face_normals
        centers = self._mesh.face_centroids
        self._slopes = np.arctan2(
            np.linalg.norm(np.cross(normals, centers), axis=1),
            np.einsum("ij,ij->i", normals, centers),
        )
        self._max_slope = float(self._slopes.max())

        if reference_ellipsoids is None:
            reference_ellipsoids = build_reference_ellipsoids(
                self._mesh.vertices, self._config.ellipsoid_fit, fitter
            )
        self._ellipsoids = dict(reference_ellipsoids)
        self._ellipsoid_type = EllipsoidType(ellipsoid_type)

        self._visibility = VisibilityEngine(self)

        logger.info(
            "Facet body '%s' ready: %d triangles, norms [%.3f, %.3f] m, max slope %.2f deg",
            name, len(self._triangles), self._min_norm, self._max_norm,
            math.degrees(self._max_slope),
        )

    @classmethod
    def from_mesh_data(cls, name: str, mesh_data, **kwargs) -> FacetBodyShape:
        """Build a body from loaded mesh data (``vertices``, ``triangles``)."""
        return cls(name, mesh_data.vertices, mesh_data.triangles, **kwargs)

    # ==================================================================
    # Properties
    # ==================================================================

    @property
    def name(self) -> str:
        return self._name

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def vertices(self) -> list[Vertex]:
        return list(self._vertices)

    @property
    def triangles(self) -> tuple[Triangle, ...]:
        """Triangle arena; ``triangles[k].index == k``. Read-only."""
        return self._triangles

    @property
    def num_triangles(self) -> int:
        return len(self._triangles)

    @property
    def vertex_positions(self) -> np.ndarray:
        """Read-only vertex positions [m]. Shape: (num_vertices, 3)."""
        return self._mesh.vertices

    @property
    def triangle_vertex_ids(self) -> np.ndarray:
        """1-based vertex ids per triangle. Shape: (num_triangles, 3)."""
        return self._mesh.triangles + 1

    @property
    def face_normals(self) -> np.ndarray:
        return self._mesh.face_normals

    @property
    def face_areas(self) -> np.ndarray:
        return self._mesh.face_areas

    @property
    def face_centroids(self) -> np.ndarray:
        return self._mesh.face_centroids

    @property
    def surface_area(self) -> float:
        """Total surface [m²]."""
        return float(self._mesh.face_areas.sum())

    @property
    def min_norm(self) -> float:
        """Smallest vertex distance to the body center [m]."""
        return self._min_norm

    @property
    def max_norm(self) -> float:
        """Largest vertex distance to the body center [m]."""
        return self._max_norm

    @property
    def max_slope(self) -> float:
        """Largest angle between a facet normal and its center direction [rad]."""
        return self._max_slope

    @property
    def slopes(self) -> np.ndarray:
        """Per-triangle normal/center angle [rad]. Shape: (num_triangles,)."""
        return self._slopes

    @property
    def ellipsoid_type(self) -> EllipsoidType:
        return self._ellipsoid_type

    @property
    def transform_ellipsoid(self) -> ReferenceEllipsoid:
        """Ellipsoid used by geodetic conversions."""
        return self._ellipsoids[self._ellipsoid_type]

    def get_ellipsoid(self, ellipsoid_type: EllipsoidType) -> ReferenceEllipsoid:
        return self._ellipsoids[EllipsoidType(ellipsoid_type)]

    @property
    def inner_sphere(self) -> ReferenceEllipsoid:
        return self._ellipsoids[EllipsoidType.INNER_SPHERE]

    @property
    def outer_sphere(self) -> ReferenceEllipsoid:
        return self._ellipsoids[EllipsoidType.OUTER_SPHERE]

    @property
    def inner_ellipsoid(self) -> ReferenceEllipsoid:
        return self._ellipsoids[EllipsoidType.INNER_ELLIPSOID]

    @property
    def outer_ellipsoid(self) -> ReferenceEllipsoid:
        return self._ellipsoids[EllipsoidType.OUTER_ELLIPSOID]

    @property
    def fitted_ellipsoid(self) -> ReferenceEllipsoid:
        return self._ellipsoids[EllipsoidType.FITTED_ELLIPSOID]

    # ==================================================================
    # Line Queries
    # ==================================================================

    def _line_hits(self, line: Line) -> list[tuple[float, int]]:
        """Admissible ``(abscissa, triangle index)`` hits, sorted by abscissa."""
        if line.distance(_ORIGIN) > self._max_norm * (1.0 + _BOUND_SLACK):
            return []

        t_lower = line.min_abscissa
        if line.is_semi_finite:
            t_lower -= self._max_norm * _BOUND_SLACK

        indices, abscissas = find_line_hits(
            self._bvh_data, line.origin, line.direction, t_lower, self._epsilon
        )
        keep = abscissas >= line.min_abscissa
        indices = indices[keep]
        abscissas = abscissas[keep]
        order = np.argsort(abscissas, kind="stable")
        return list(zip(abscissas[order].tolist(), indices[order].tolist()))

    def get_intersection(self, line: Line, close=None) -> Intersection | None:
        """Intersection of a line with the body.

        Parameters
        ----------
        line : Line
            Query line; its minimum abscissa is honored.
        close : array-like, optional
            When given, the hit closest to this point is returned; otherwise
            the hit with the smallest admissible abscissa.

        Returns
        -------
        Intersection or None
            Hit point and its triangle, or None if the line misses.
        """
        hits = self._line_hits(line)
        if not hits:
            return None
        if close is None:
            t_hit, index = hits[0]
        else:
            close = as_point(close)
            t_hit, index = min(
                hits, key=lambda hit: float(np.linalg.norm(line.point_at(hit[0]) - close))
            )
        return Intersection(line.point_at(t_hit), self._triangles[index])

    def get_intersection_points(self, line: Line) -> list[np.ndarray]:
        """All distinct intersection points, sorted by abscissa.

        Points closer than ``sqrt(duplicate_distance_sq)`` (shared edges
        and vertices) are reported once.
        """
        threshold = self._config.geometry.duplicate_distance_sq
        points: list[np.ndarray] = []
        for t_hit, _ in self._line_hits(line):
            point = line.point_at(t_hit)
            if any(float((point - q) @ (point - q)) < threshold for q in points):
                continue
            points.append(point)
        return points

    def get_intersection_point(
        self,
        line: Line,
        close=None,
        altitude: float = 0.0,
        name: str = "",
    ) -> FacetPoint | None:
        """Intersection point at a given altitude above the surface.

        Parameters
        ----------
        line : Line
            Query line.
        close : array-like, optional
            Preferred hit neighborhood (see :meth:`get_intersection`).
        altitude : float
            Radial altitude above the mesh [m]. Values below
            ``geometry.altitude_epsilon`` in magnitude query the surface.
        name : str
            Label of the returned point.

        Returns
        -------
        FacetPoint or None
            None if the line misses the (offset) surface.

        Raises
        ------
        AltitudeIntersectionError
            If the altitude reaches the body center or the offset search
            does not converge.
        """
        if abs(altitude) < self._config.geometry.altitude_epsilon:
            intersection = self.get_intersection(line, close)
            if intersection is None:
                return None
            return self.build_point(intersection.point, name)
        return self._intersection_at_altitude(line, close, float(altitude), name)

    def _intersection_at_altitude(
        self,
        line: Line,
        close,
        altitude: float,
        name: str,
    ) -> FacetPoint | None:
        """Intersect a radially offset copy of the mesh, correcting the offset."""
        if altitude <= -self._min_norm:
            raise AltitudeIntersectionError(
                f"Altitude {altitude} m reaches the body center (min norm {self._min_norm} m)"
            )

        cfg = self._config.altitude_search
        if close is not None:
            close = as_point(close)
        triangles = self._mesh.triangles
        offset = altitude

        for iteration in range(cfg.max_iterations):
            if offset <= -self._min_norm:
                raise AltitudeIntersectionError(
                    f"Offset {offset} m collapsed the body while searching altitude {altitude} m"
                )
            positions = MarginType.DISTANCE.apply(self._mesh.vertices, offset)
            tri_verts = np.ascontiguousarray(positions[triangles])
            hit_mask, abscissas = intersect_all_triangles(
                line.origin, line.direction, tri_verts, self._epsilon
            )
            candidates = abscissas[hit_mask & (abscissas >= line.min_abscissa)]
            if candidates.size == 0:
                return None

            if close is None:
                t_hit = float(candidates.min())
            else:
                points = line.origin + candidates[:, None] * line.direction
                t_hit = float(candidates[np.argmin(np.linalg.norm(points - close, axis=1))])
            point = line.point_at(t_hit)

            error = altitude - self.radial_height(point)
            logger.debug(
                "Altitude search iteration %d: offset=%.6f m, error=%.3e m",
                iteration, offset, error,
            )
            if abs(error) <= cfg.tolerance_m:
                return self.build_point(point, name)
            offset += error

        raise AltitudeIntersectionError(
            f"Altitude {altitude} m not reached within {cfg.max_iterations} iterations"
        )

    def radial_height(self, position) -> float:
        """Height of ``position`` above the outermost surface along its direction [m].

        Raises
        ------
        AltitudeIntersectionError
            If the position is the body center or its direction misses the mesh.
        """
        position = as_point(position)
        norm = float(np.linalg.norm(position))
        if norm == 0.0:
            raise AltitudeIntersectionError("Radial height is undefined at the body center.")
        hits = self._line_hits(Line.half_line(_ORIGIN, position))
        if not hits:
            raise AltitudeIntersectionError(f"Direction of {position} does not cross the surface.")
        return norm - hits[-1][0]

    def distance_to(self, line: Line) -> float:
        """Distance between the admissible line and the body (0 if they cross)."""
        on_line, on_body = self.closest_point_to(line)
        return float(np.linalg.norm(on_line - on_body))

    def closest_point_to(self, line: Line) -> tuple[np.ndarray, np.ndarray]:
        """Closest pair between the admissible line and the body.

        Returns
        -------
        point_on_line : np.ndarray
            Point of the line.
        point_on_body : np.ndarray
            Point of the mesh. When the line crosses the body, both are the
            first admissible intersection.
        """
        hits = self._line_hits(line)
        if hits:
            point = line.point_at(hits[0][0])
            return point, point.copy()

        # Bounding spheres give a lower bound of each triangle distance
        lower_bounds = line.distances(self._mesh.face_centroids) - self._sphere_radii
        best: tuple[np.ndarray, np.ndarray] | None = None
        best_distance = math.inf
        for index in np.argsort(lower_bounds):
            if lower_bounds[index] > best_distance:
                break
            on_line, on_triangle = self._triangles[index].closest_point_to(line, self._epsilon)
            distance = float(np.linalg.norm(on_line - on_triangle))
            if distance < best_distance or (
                distance == best_distance and line.abscissa(on_line) < line.abscissa(best[0])
            ):
                best = (on_line, on_triangle)
                best_distance = distance
        return best

    # ==================================================================
    # Eclipse
    # ==================================================================

    def is_in_eclipse(self, date: Any, position, sun: PositionProvider) -> bool:
        """Whether the body hides the Sun from ``position`` at ``date``.

        Parameters
        ----------
        date : Any
            Date forwarded to ``sun``.
        position : array-like
            Observer position [m].
        sun : callable
            ``date -> Sun position`` in the body frame [m].
        """
        position = as_point(position)
        sun_position = as_point(sun(date))
        if np.array_equal(position, sun_position):
            return False

        line = Line.half_line(position, sun_position)
        t_observer = line.abscissa(position)
        t_sun = line.abscissa(sun_position)
        return any(t_observer < t_hit < t_sun for t_hit, _ in self._line_hits(line))

    # ==================================================================
    # Neighborhoods
    # ==================================================================

    def _resolve_seed(self, seed) -> tuple[Triangle, np.ndarray]:
        """Start triangle and reference position of a neighborhood query."""
        if isinstance(seed, Triangle):
            if not 0 <= seed.index < len(self._triangles):
                raise ValueError(f"{seed!r} does not belong to body '{self._name}'")
            triangle = self._triangles[seed.index]
            return triangle, triangle.center

        if isinstance(seed, FacetPoint):
            reference = as_point(seed.position)
        elif isinstance(seed, GeodeticPoint):
            reference = self.transform_geodetic(seed)
        else:
            reference = as_point(seed)
        _, index = self._center_tree.query(reference)
        return self._triangles[int(index)], reference

    def get_neighbors(
        self,
        seed,
        max_distance: float = math.inf,
        order: int = sys.maxsize,
    ) -> list[Triangle]:
        """Breadth-first neighborhood of a triangle or a point.

        Parameters
        ----------
        seed : Triangle, FacetPoint, GeodeticPoint or array-like
            A triangle, or a point whose nearest triangle (by center)
            starts the search.
        max_distance : float
            Keep triangles whose center lies within this distance of the
            seed triangle center, or of the seed point [m].
        order : int
            Keep triangles at most this many edge hops from the start.

        Returns
        -------
        list[Triangle]
            Triangles in breadth-first order; the start comes first when
            it passes the distance test.
        """
        start, reference = self._resolve_seed(seed)
        max_distance_sq = max_distance * max_distance if max_distance >= 0.0 else -1.0

        neighbors: list[Triangle] = []
        handled = {start.index}
        queue = deque([(start.index, 0)])
        while queue:
            index, depth = queue.popleft()
            triangle = self._triangles[index]
            offset = triangle.center - reference
            if depth > order or float(offset @ offset) > max_distance_sq:
                continue
            neighbors.append(triangle)
            for neighbor in triangle.neighbors:
                if neighbor not in handled:
                    handled.add(neighbor)
                    queue.append((neighbor, depth + 1))
        return neighbors

    def get_neighbors_by_distance(self, seed, max_distance: float) -> list[Triangle]:
        """Connected triangles whose center is within ``max_distance`` [m]."""
        return self.get_neighbors(seed, max_distance=float(max_distance))

    def get_neighbors_by_order(self, seed, order: int) -> list[Triangle]:
        """Triangles at most ``order`` edge hops away (order 0 is the seed)."""
        if int(order) != order or order < 0:
            raise ValueError(f"Neighbor order must be a non-negative integer, got {order}")
        return self.get_neighbors(seed, order=int(order))

    # ==================================================================
    # Geodetic Conversions
    # ==================================================================

    def transform(self, position) -> GeodeticPoint:
        """Geodetic coordinates of a position on the transform ellipsoid."""
        return self.transform_ellipsoid.to_geodetic(as_point(position))

    def transform_geodetic(self, point: GeodeticPoint) -> np.ndarray:
        """Cartesian position of geodetic coordinates on the transform ellipsoid."""
        return self.transform_ellipsoid.to_cartesian(point)

    def build_point(self, position, name: str = "") -> FacetPoint:
        """Named point carrying its transform-ellipsoid coordinates."""
        position = as_point(position)
        return FacetPoint.from_geodetic(position, self.transform(position), name)

    def get_local_altitude_at(self, latitude: float, longitude: float) -> float:
        """Signed distance between the ellipsoid and the mesh at (lat, lon) [m].

        The line from the ellipsoid point toward the body center is
        intersected with the mesh; the result is positive when the mesh
        point lies farther from the center than the ellipsoid point.

        Raises
        ------
        AltitudeIntersectionError
            If the line misses the mesh.
        """
        on_ellipsoid = self.transform_geodetic(GeodeticPoint(latitude, longitude, 0.0))
        intersection = self.get_intersection(Line(on_ellipsoid, _ORIGIN), close=on_ellipsoid)
        if intersection is None:
            raise AltitudeIntersectionError(
                f"No surface point below latitude {latitude} rad, longitude {longitude} rad"
            )
        distance = float(np.linalg.norm(intersection.point - on_ellipsoid))
        if float(intersection.point @ intersection.point) > float(on_ellipsoid @ on_ellipsoid):
            return distance
        return -distance

    def get_local_altitude(self, direction) -> float:
        """Local altitude at the geodetic coordinates of ``direction``."""
        geodetic = self.transform(direction)
        return self.get_local_altitude_at(geodetic.latitude, geodetic.longitude)

    # ==================================================================
    # Slopes
    # ==================================================================

    def get_over_perpendicular_steep_facets(self) -> list[Triangle]:
        """Triangles whose normal makes at least 90° with their center direction."""
        if self._max_slope < math.pi / 2.0:
            return []
        return [self._triangles[i] for i in np.flatnonzero(self._slopes >= math.pi / 2.0)]

    # ==================================================================
    # Apparent Radius
    # ==================================================================

    def get_apparent_radius(
        self,
        observer,
        occulted,
        threshold: float | None = None,
        max_steps: int | None = None,
    ) -> float:
        """Apparent radius of the body limb seen from ``observer`` [m].

        The limb is searched in the plane holding the observer, the
        occulted body and the body center, by bisection on the angle
        between the observer→center direction and a tangent half-line.

        Parameters
        ----------
        observer : array-like
            Observer position [m]. Must lie outside the outer sphere.
        occulted : array-like
            Occulted body position [m].
        threshold : float, optional
            Convergence threshold [m]. Default: ``apparent_radius.threshold_m``.
        max_steps : int, optional
            Bisection budget. Default: ``apparent_radius.max_steps``.

        Returns
        -------
        float
            Distance from the center to the tangent half-line [m]; the
            inner-sphere radius when the three points are aligned.

        Raises
        ------
        ValueError
            If the observer is inside the outer sphere.
        ConvergenceError
            If the budget runs out above the threshold.
        """
        cfg = self._config.apparent_radius
        threshold = cfg.threshold_m if threshold is None else float(threshold)
        max_steps = cfg.max_steps if max_steps is None else int(max_steps)

        observer = as_point(observer)
        occulted = as_point(occulted)
        to_center = _ORIGIN - observer
        distance = float(np.linalg.norm(to_center))
        if distance <= self._max_norm:
            raise ValueError(
                f"Observer at {distance} m is inside the outer sphere ({self._max_norm} m)"
            )

        to_occulted = occulted - observer
        if angle_between(to_center, to_occulted) == 0.0:
            return self._min_norm

        normal = np.cross(to_occulted, to_center)
        normal /= np.linalg.norm(normal)

        min_angle = math.asin(self._min_norm / distance)
        max_angle = math.asin(self._max_norm / distance)
        new_radius = 0.5 * (self._min_norm + self._max_norm)
        current_angle = math.asin(new_radius / distance)
        error = new_radius - self._min_norm

        steps = 0
        while steps < max_steps and abs(error) > threshold:
            old_radius = new_radius
            direction = rotation_about_axis(normal, -current_angle) @ to_center
            if self.get_intersection_points(Line.half_line(observer, observer + direction)):
                min_angle = current_angle
            else:
                max_angle = current_angle
            current_angle = 0.5 * (min_angle + max_angle)
            new_radius = distance * abs(math.sin(current_angle))
            error = new_radius - old_radius
            steps += 1

        if abs(error) > threshold:
            raise ConvergenceError(
                f"Apparent radius not converged after {max_steps} steps (error {error:.3e} m)"
            )
        logger.debug("Apparent radius %.6f m after %d steps", new_radius, steps)
        return new_radius

    # ==================================================================
    # Visibility
    # ==================================================================

    def is_masked(self, triangle: Triangle, position) -> bool:
        return self._visibility.is_masked(triangle, position)

    def is_visible(
        self,
        triangle: Triangle,
        position,
        field_of_view: FieldOfView | None = None,
        attitude: np.ndarray | None = None,
        check_masking: bool = False,
    ) -> bool:
        return self._visibility.is_visible(
            triangle, position, field_of_view, attitude, check_masking
        )

    def get_field_data(
        self,
        state: ObserverState,
        field_of_view: FieldOfView | None = None,
        line_of_sight=None,
        check_masking: bool = False,
    ) -> FieldData:
        return self._visibility.get_field_data(state, field_of_view, line_of_sight, check_masking)

    def get_never_visible_triangles(
        self,
        states: Iterable[ObserverState],
        field_of_view: FieldOfView | None = None,
        check_masking: bool = False,
    ) -> list[Triangle]:
        return self._visibility.get_never_visible_triangles(states, field_of_view, check_masking)

    def get_never_enlightened_triangles(
        self,
        dates: Iterable[Any],
        sun: PositionProvider,
        check_masking: bool = False,
    ) -> list[Triangle]:
        return self._visibility.get_never_enlightened_triangles(dates, sun, check_masking)

    def get_visible_and_enlightened_triangles(
        self,
        states: Sequence[ObserverState],
        sun: PositionProvider,
        field_of_view: FieldOfView | None = None,
        check_masking: bool = False,
    ) -> list[Triangle]:
        return self._visibility.get_visible_and_enlightened_triangles(
            states, sun, field_of_view, check_masking
        )

    # ==================================================================
    # Resizing
    # ==================================================================

    def resize(self, margin_type: MarginType, value: float) -> FacetBodyShape:
        """Return a resized copy of the body.

        Parameters
        ----------
        margin_type : MarginType
            DISTANCE moves vertices radially by ``value`` [m];
            SCALE_FACTOR multiplies positions by ``value``.
        value : float
            Margin value.

        Raises
        ------
        InvalidMarginError
            If the margin would collapse or invert the body.
        """
        margin_type = MarginType(margin_type)
        margin_type.check_value(value, self._min_norm)
        positions = margin_type.apply(self._mesh.vertices, value)

        ellipsoids = None
        if margin_type is MarginType.SCALE_FACTOR:
            ellipsoids = {k: e.scaled(value) for k, e in self._ellipsoids.items()}

        logger.info("Resizing body '%s' (%s, %g)", self._name, margin_type.value, value)
        return FacetBodyShape(
            self._name,
            positions,
            self._mesh.triangles + 1,
            ellipsoid_type=self._ellipsoid_type,
            config=self._config,
            reference_ellipsoids=ellipsoids,
            fitter=self._fitter,
        )

    def __repr__(self) -> str:
        return (
            f"FacetBodyShape({self._name!r}, {len(self._vertices)} vertices, "
            f"{len(self._triangles)} triangles)"
        )
