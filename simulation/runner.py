"""Coverage Runner — ephemeris sweep of visibility and illumination.

Orchestrates the full coverage pipeline:
1. Generate / load body mesh → facet body (BVH, neighbors, ellipsoids)
2. Build the observer ephemeris (circular polar orbit) and the Sun
3. Time loop: observer state → field data (visible set, contour)
4. Aggregate never-visible, never-enlightened and visible-and-enlightened sets
5. Return results for visualization

Notes
-----
The observer moves on a circular polar orbit in the body X-Z plane,

    p(k) = r (cos θ_k, 0, sin θ_k),   θ_k = 2π k / n

and always points its sensor +Z axis at the body center. The Sun moves
along the body equator,

    s(t) = d (cos λ(t), sin λ(t), 0),   λ(t) = 2π ρ (t − t₀) / (n Δt)

with ρ the number of Sun revolutions over the sweep.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from pathlib import Path

import numpy as np

from facet_engine.body_shape import FacetBodyShape
from facet_engine.constants import EngineConfig, hash_array
from facet_engine.visibility import CircularField, ObserverState
from mesh_ingestion.synthetic_body import generate_from_config

logger = logging.getLogger(__name__)

_SENSOR_BORESIGHT = np.array([0.0, 0.0, 1.0])


# ---------------------------------------------------------------------------
# Result Container
# ---------------------------------------------------------------------------


@dataclass
class CoverageResults:
    """Container for coverage output data.

    Attributes
    ----------
    times : list[datetime]
        UTC timestamps of the observer states.
    observer_positions : np.ndarray
        Observer positions [m]. Shape: (num_steps, 3).
    sun_positions : np.ndarray
        Sun positions [m]. Shape: (num_steps, 3).
    visibility_maps : list[np.ndarray]
        Per-state boolean visibility of each triangle. Each: (num_triangles,).
    visible_surfaces : list[float]
        Visible surface per state [m²].
    contour_sizes : list[int]
        Number of contour points per state.
    last_contour : np.ndarray
        Contour of the final state as (latitude, longitude) [deg].
        Shape: (num_points, 2).
    never_visible : np.ndarray
        Arena indices of triangles never seen.
    never_enlightened : np.ndarray
        Arena indices of triangles never lit.
    visible_and_enlightened : np.ndarray
        Arena indices of triangles seen while lit at least once.
    face_centroids : np.ndarray
        Triangle centers [m]. Shape: (num_triangles, 3).
    face_areas : np.ndarray
        Triangle areas [m²]. Shape: (num_triangles,).
    metadata : dict
        Run metadata (config, timing, etc.).
    """

    times: list[datetime] = field(default_factory=list)
    observer_positions: np.ndarray = field(default_factory=lambda: np.zeros((0, 3)))
    sun_positions: np.ndarray = field(default_factory=lambda: np.zeros((0, 3)))
    visibility_maps: list[np.ndarray] = field(default_factory=list)
    visible_surfaces: list[float] = field(default_factory=list)
    contour_sizes: list[int] = field(default_factory=list)
    last_contour: np.ndarray = field(default_factory=lambda: np.zeros((0, 2)))
    never_visible: np.ndarray = field(default_factory=lambda: np.array([], dtype=np.int64))
    never_enlightened: np.ndarray = field(default_factory=lambda: np.array([], dtype=np.int64))
    visible_and_enlightened: np.ndarray = field(
        default_factory=lambda: np.array([], dtype=np.int64)
    )
    face_centroids: np.ndarray = field(default_factory=lambda: np.array([]))
    face_areas: np.ndarray = field(default_factory=lambda: np.array([]))
    metadata: dict = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Ephemerides
# ---------------------------------------------------------------------------


class EquatorialSun:
    """Sun moving uniformly along the body equator.

    Parameters
    ----------
    start_time : datetime
        Epoch of longitude zero.
    distance_m : float
        Sun distance from the body center [m].
    period_s : float
        Time for one full revolution [s].
    """

    def __init__(self, start_time: datetime, distance_m: float, period_s: float) -> None:
        self._start_time = start_time
        self._distance_m = distance_m
        self._period_s = period_s

    def __call__(self, date: datetime) -> np.ndarray:
        elapsed = (date - self._start_time).total_seconds()
        longitude = 2.0 * math.pi * elapsed / self._period_s
        return self._distance_m * np.array(
            [math.cos(longitude), math.sin(longitude), 0.0], dtype=np.float64
        )


def polar_orbit_states(
    start_time: datetime,
    orbit_radius_m: float,
    num_steps: int,
    step_s: float,
) -> list[ObserverState]:
    """Body-center pointing states evenly spread over one polar revolution."""
    states = []
    for k in range(num_steps):
        theta = 2.0 * math.pi * k / num_steps
        position = orbit_radius_m * np.array([math.cos(theta), 0.0, math.sin(theta)])
        date = start_time + timedelta(seconds=k * step_s)
        states.append(ObserverState.body_center_pointing(date, position))
    return states


# ---------------------------------------------------------------------------
# Coverage Runner
# ---------------------------------------------------------------------------


class CoverageRunner:
    """Main runner sweeping an observer ephemeris over a facet body.

    Parameters
    ----------
    config : EngineConfig
        Full engine configuration loaded from YAML.
    radius_m : float, optional
        Override synthetic body radius [m]. If None, uses config value.
    fov_half_angle_deg : float, optional
        Override sensor half-aperture [deg]. If None, uses config value.
    """

    def __init__(
        self,
        config: EngineConfig,
        radius_m: float | None = None,
        fov_half_angle_deg: float | None = None,
    ) -> None:
        scenario = config.scenario
        if radius_m is not None:
            scenario = replace(scenario, radius_m=radius_m)
        if fov_half_angle_deg is not None:
            scenario = replace(scenario, fov_half_angle_deg=fov_half_angle_deg)
        self._config = replace(config, scenario=scenario)
        self._scenario = scenario

        logger.info(
            "CoverageRunner initialized: body a=%.1f m, orbit r=%.3e m, FOV=%.2f°",
            scenario.radius_m, scenario.orbit_radius_m, scenario.fov_half_angle_deg,
        )

    @property
    def config(self) -> EngineConfig:
        return self._config

    def run(
        self,
        num_steps: int | None = None,
        save_data: bool = True,
        output_dir: Path | str = "output",
        external_mesh=None,
    ) -> CoverageResults:
        """Execute the coverage sweep.

        Parameters
        ----------
        num_steps : int, optional
            Override number of observer states. Default: from config.
        save_data : bool
            Persist raw arrays under ``output_dir``.
        output_dir : Path or str
            Output directory.
        external_mesh : MeshData, optional
            Body mesh to use instead of the synthetic body.

        Returns
        -------
        CoverageResults
            All output data.
        """
        scenario = self._scenario
        if num_steps is None:
            num_steps = scenario.num_steps
        if num_steps < 1:
            raise ValueError(f"num_steps must be >= 1, got {num_steps}")

        start_time = datetime.fromisoformat(scenario.start_time)
        logger.info(
            "Starting coverage sweep: %s, %d states every %.0fs",
            start_time.isoformat(), num_steps, scenario.step_s,
        )

        # Step 1: Generate or load the body
        wall_start = time.perf_counter()
        if external_mesh is not None:
            logger.info("Step 1/4: Using external mesh (%s)...",
                        external_mesh.metadata.get("source", "unknown"))
            mesh_data = external_mesh
        else:
            logger.info("Step 1/4: Generating synthetic body...")
            mesh_data = generate_from_config(scenario)
        body = FacetBodyShape.from_mesh_data("body", mesh_data, config=self._config)

        # Step 2: Ephemerides
        logger.info("Step 2/4: Building observer and Sun ephemerides...")
        states = polar_orbit_states(
            start_time, scenario.orbit_radius_m, num_steps, scenario.step_s
        )
        sweep_s = num_steps * scenario.step_s
        sun_period_s = sweep_s / scenario.sun_revolutions if scenario.sun_revolutions else math.inf
        sun = EquatorialSun(start_time, scenario.sun_distance_m, sun_period_s)
        field_of_view = CircularField(math.radians(scenario.fov_half_angle_deg))

        results = CoverageResults(
            times=[s.date for s in states],
            observer_positions=np.array([s.position for s in states]),
            sun_positions=np.array([sun(s.date) for s in states]),
            face_centroids=np.array(body.face_centroids),
            face_areas=np.array(body.face_areas),
            metadata={
                "body_radius_m": scenario.radius_m,
                "body_flattening": scenario.flattening,
                "num_triangles": body.num_triangles,
                "vertices_sha256": hash_array(mesh_data.vertices),
                "surface_area_m2": body.surface_area,
                "orbit_radius_m": scenario.orbit_radius_m,
                "fov_half_angle_deg": scenario.fov_half_angle_deg,
                "num_steps": num_steps,
                "step_s": scenario.step_s,
                "start_time": start_time.isoformat(),
                "sun_revolutions": scenario.sun_revolutions,
            },
        )

        # Step 3: Time loop
        logger.info("Step 3/4: Computing field data (%d states)...", num_steps)
        field_data = None
        for step_i, state in enumerate(states):
            field_data = body.get_field_data(state, field_of_view, line_of_sight=_SENSOR_BORESIGHT)

            visible = np.zeros(body.num_triangles, dtype=bool)
            visible[[t.index for t in field_data.visible_triangles]] = True
            results.visibility_maps.append(visible)
            results.visible_surfaces.append(field_data.visible_surface)
            results.contour_sizes.append(len(field_data.contour))

            if step_i % max(1, num_steps // 10) == 0:
                logger.info(
                    "  Step %d/%d: %d visible triangles (%.1f%% of surface), %d contour points",
                    step_i, num_steps, int(visible.sum()),
                    100.0 * field_data.visible_surface / body.surface_area,
                    len(field_data.contour),
                )

        results.last_contour = np.array(
            [[math.degrees(p.latitude), math.degrees(p.longitude)] for p in field_data.contour]
        ).reshape(-1, 2)

        # Step 4: Aggregates
        logger.info("Step 4/4: Aggregating triangle sets...")
        results.never_visible = _indices(body.get_never_visible_triangles(states, field_of_view))
        results.never_enlightened = _indices(
            body.get_never_enlightened_triangles(results.times, sun)
        )
        results.visible_and_enlightened = _indices(
            body.get_visible_and_enlightened_triangles(states, sun, field_of_view)
        )

        wall_elapsed = time.perf_counter() - wall_start
        results.metadata["wall_time_s"] = wall_elapsed
        results.metadata["never_visible_count"] = int(results.never_visible.size)
        results.metadata["never_enlightened_count"] = int(results.never_enlightened.size)
        results.metadata["visible_and_enlightened_count"] = int(
            results.visible_and_enlightened.size
        )

        logger.info(
            "Coverage complete: %.1f seconds wall time, %d never visible, "
            "%d never enlightened, %d visible and enlightened",
            wall_elapsed,
            results.never_visible.size,
            results.never_enlightened.size,
            results.visible_and_enlightened.size,
        )

        # Save raw data for re-rendering
        if save_data:
            from simulation.io_manager import save_results

            save_results(
                output_dir=output_dir,
                visibility_maps=np.array(results.visibility_maps),
                face_centroids=results.face_centroids,
                face_areas=results.face_areas,
                observer_positions=results.observer_positions,
                sun_positions=results.sun_positions,
                visible_surfaces=results.visible_surfaces,
                last_contour=results.last_contour,
                triangle_sets={
                    "never_visible": results.never_visible,
                    "never_enlightened": results.never_enlightened,
                    "visible_and_enlightened": results.visible_and_enlightened,
                },
                metadata=results.metadata,
            )

        return results


def _indices(triangles) -> np.ndarray:
    return np.array([t.index for t in triangles], dtype=np.int64)
