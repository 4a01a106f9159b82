"""Numerical tolerances, scenario parameters, and configuration loader.

Tolerances and iteration budgets are read from YAML configuration files
and exposed through frozen dataclasses. The dataclass defaults mirror
``config/default_config.yaml`` so that library users can build a body
without touching the filesystem.

References
----------
- Möller, T. & Trumbore, B. (1997) for the intersection tolerance.
- Wald, I. (2007) for the SAH binning parameters.
"""

from __future__ import annotations

import hashlib
import logging
import platform
import sys
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

import numpy as np
import yaml

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration Data Classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GeometryConfig:
    """Geometric tolerances shared by every query.

    Attributes
    ----------
    epsilon : float
        Relative tolerance of the barycentric inside test and of the
        parallel-line test [-].
    duplicate_distance_sq : float
        Two intersection points closer than the square root of this value
        are reported once [m²].
    altitude_epsilon : float
        Altitudes below this magnitude are treated as surface queries [m].
    """

    epsilon: float = 1e-10
    duplicate_distance_sq: float = 1e-12
    altitude_epsilon: float = 1e-6


@dataclass(frozen=True)
class RaytracerConfig:
    """BVH raytracer configuration.

    Attributes
    ----------
    max_leaf_triangles : int
        Maximum triangles per BVH leaf node.
    sah_num_bins : int
        Number of bins for SAH cost sweep.
    """

    max_leaf_triangles: int = 4
    sah_num_bins: int = 16


@dataclass(frozen=True)
class EllipsoidFitConfig:
    """Least-squares ellipsoid fitting settings.

    Attributes
    ----------
    eps_optimizer : float
        Convergence tolerance on parameters and cost.
    max_evaluations : int
        Maximum number of cost evaluations.
    first_guess_flattening : float
        Initial flattening of the fit [-].
    """

    eps_optimizer: float = 1e-8
    max_evaluations: int = 1000
    first_guess_flattening: float = 0.1


@dataclass(frozen=True)
class AltitudeSearchConfig:
    """Offset-surface intersection settings.

    Attributes
    ----------
    tolerance_m : float
        Accepted altitude error of the returned point [m].
    max_iterations : int
        Maximum offset corrections.
    """

    tolerance_m: float = 1e-3
    max_iterations: int = 20


@dataclass(frozen=True)
class ApparentRadiusConfig:
    """Limb bisection settings.

    Attributes
    ----------
    threshold_m : float
        Convergence threshold on the apparent radius [m].
    max_steps : int
        Maximum bisection steps.
    """

    threshold_m: float = 1e-2
    max_steps: int = 100


@dataclass(frozen=True)
class ScenarioConfig:
    """Coverage scenario used by the CLI and the simulation runner.

    Attributes
    ----------
    latitude_number : int
        Number of latitude samples of the synthetic body (poles included).
    longitude_number : int
        Number of longitude samples per ring.
    radius_m : float
        Equatorial radius of the synthetic body [m].
    flattening : float
        Flattening of the synthetic body [-].
    orbit_radius_m : float
        Radius of the circular polar observer orbit [m].
    num_steps : int
        Number of observer states sampled along one revolution.
    fov_half_angle_deg : float
        Half-aperture of the circular sensor field [deg].
    sun_distance_m : float
        Distance of the Sun from the body center [m].
    sun_revolutions : float
        Sun longitude revolutions over the sweep.
    start_time : str
        ISO-8601 UTC start epoch.
    step_s : float
        Time between consecutive states [s].
    """

    latitude_number: int = 51
    longitude_number: int = 100
    radius_m: float = 10_000.0
    flattening: float = 0.0
    orbit_radius_m: float = 2.0e7
    num_steps: int = 12
    fov_half_angle_deg: float = 90.0
    sun_distance_m: float = 1.496e11
    sun_revolutions: float = 0.25
    start_time: str = "2026-01-01T12:00:00+00:00"
    step_s: float = 3600.0


@dataclass
class EngineConfig:
    """Top-level configuration loaded from YAML.

    Attributes
    ----------
    geometry : GeometryConfig
        Shared geometric tolerances.
    raytracer : RaytracerConfig
        BVH construction parameters.
    ellipsoid_fit : EllipsoidFitConfig
        Fitted ellipsoid optimizer settings.
    altitude_search : AltitudeSearchConfig
        Offset-surface intersection settings.
    apparent_radius : ApparentRadiusConfig
        Limb bisection settings.
    scenario : ScenarioConfig
        Coverage scenario parameters.
    """

    geometry: GeometryConfig = field(default_factory=GeometryConfig)
    raytracer: RaytracerConfig = field(default_factory=RaytracerConfig)
    ellipsoid_fit: EllipsoidFitConfig = field(default_factory=EllipsoidFitConfig)
    altitude_search: AltitudeSearchConfig = field(default_factory=AltitudeSearchConfig)
    apparent_radius: ApparentRadiusConfig = field(default_factory=ApparentRadiusConfig)
    scenario: ScenarioConfig = field(default_factory=ScenarioConfig)


# ---------------------------------------------------------------------------
# Configuration Loader
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path) -> EngineConfig:
    """Load and validate an engine configuration from a YAML file.

    Sections or keys absent from the file keep their default values.

    Parameters
    ----------
    config_path : str or Path
        Path to the YAML configuration file.

    Returns
    -------
    EngineConfig
        Fully populated, typed configuration object.

    Raises
    ------
    FileNotFoundError
        If the configuration file does not exist.
    ValueError
        If the file is not a mapping or a value is invalid.
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        raw: dict[str, Any] | None = yaml.safe_load(f)

    logger.info("Loading configuration from: %s", config_path)

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValueError(f"Configuration root must be a mapping, got {type(raw).__name__}")

    # --- Parse geometric tolerances ---
    geo = raw.get("geometry", {})
    defaults = GeometryConfig()
    geometry = GeometryConfig(
        epsilon=float(geo.get("epsilon", defaults.epsilon)),
        duplicate_distance_sq=float(
            geo.get("duplicate_distance_sq", defaults.duplicate_distance_sq)
        ),
        altitude_epsilon=float(geo.get("altitude_epsilon", defaults.altitude_epsilon)),
    )

    # --- Parse raytracer config ---
    bvh_cfg = raw.get("raytracer", {}).get("bvh", {})
    rt_defaults = RaytracerConfig()
    raytracer = RaytracerConfig(
        max_leaf_triangles=int(
            bvh_cfg.get("max_leaf_triangles", rt_defaults.max_leaf_triangles)
        ),
        sah_num_bins=int(bvh_cfg.get("sah_num_bins", rt_defaults.sah_num_bins)),
    )

    # --- Parse ellipsoid fit ---
    fit = raw.get("ellipsoid_fit", {})
    fit_defaults = EllipsoidFitConfig()
    ellipsoid_fit = EllipsoidFitConfig(
        eps_optimizer=float(fit.get("eps_optimizer", fit_defaults.eps_optimizer)),
        max_evaluations=int(fit.get("max_evaluations", fit_defaults.max_evaluations)),
        first_guess_flattening=float(
            fit.get("first_guess_flattening", fit_defaults.first_guess_flattening)
        ),
    )

    # --- Parse iterative searches ---
    alt = raw.get("altitude_search", {})
    alt_defaults = AltitudeSearchConfig()
    altitude_search = AltitudeSearchConfig(
        tolerance_m=float(alt.get("tolerance_m", alt_defaults.tolerance_m)),
        max_iterations=int(alt.get("max_iterations", alt_defaults.max_iterations)),
    )

    app = raw.get("apparent_radius", {})
    app_defaults = ApparentRadiusConfig()
    apparent_radius = ApparentRadiusConfig(
        threshold_m=float(app.get("threshold_m", app_defaults.threshold_m)),
        max_steps=int(app.get("max_steps", app_defaults.max_steps)),
    )

    # --- Parse scenario ---
    scn = raw.get("scenario", {})
    body = scn.get("body", {})
    obs = scn.get("observer", {})
    sun = scn.get("sun", {})
    tm = scn.get("time", {})
    scn_defaults = ScenarioConfig()
    scenario = ScenarioConfig(
        latitude_number=int(body.get("latitude_number", scn_defaults.latitude_number)),
        longitude_number=int(body.get("longitude_number", scn_defaults.longitude_number)),
        radius_m=float(body.get("radius_m", scn_defaults.radius_m)),
        flattening=float(body.get("flattening", scn_defaults.flattening)),
        orbit_radius_m=float(obs.get("orbit_radius_m", scn_defaults.orbit_radius_m)),
        num_steps=int(obs.get("num_steps", scn_defaults.num_steps)),
        fov_half_angle_deg=float(
            obs.get("fov_half_angle_deg", scn_defaults.fov_half_angle_deg)
        ),
        sun_distance_m=float(sun.get("distance_m", scn_defaults.sun_distance_m)),
        sun_revolutions=float(sun.get("revolutions", scn_defaults.sun_revolutions)),
        start_time=str(tm.get("start", scn_defaults.start_time)),
        step_s=float(tm.get("step_s", scn_defaults.step_s)),
    )

    config = EngineConfig(
        geometry=geometry,
        raytracer=raytracer,
        ellipsoid_fit=ellipsoid_fit,
        altitude_search=altitude_search,
        apparent_radius=apparent_radius,
        scenario=scenario,
    )

    _validate_config(config)
    logger.info("Configuration loaded successfully.")

    return config


def _validate_config(config: EngineConfig) -> None:
    """Validate numerical constraints on configuration values.

    Parameters
    ----------
    config : EngineConfig
        Configuration to validate.

    Raises
    ------
    ValueError
        If any value is invalid.
    """
    if config.geometry.epsilon <= 0:
        raise ValueError("Geometry epsilon must be positive.")
    if config.geometry.duplicate_distance_sq < 0:
        raise ValueError("Duplicate distance threshold cannot be negative.")
    if config.geometry.altitude_epsilon <= 0:
        raise ValueError("Altitude epsilon must be positive.")
    if config.raytracer.max_leaf_triangles < 1:
        raise ValueError("BVH leaves must hold at least one triangle.")
    if config.raytracer.sah_num_bins < 2:
        raise ValueError("SAH needs at least two bins.")
    if config.ellipsoid_fit.eps_optimizer <= 0:
        raise ValueError("Optimizer tolerance must be positive.")
    if config.ellipsoid_fit.max_evaluations < 1:
        raise ValueError("Optimizer evaluation budget must be >= 1.")
    if not (0.0 <= config.ellipsoid_fit.first_guess_flattening < 1.0):
        raise ValueError(
            "First-guess flattening must be in [0, 1), got "
            f"{config.ellipsoid_fit.first_guess_flattening}"
        )
    if config.altitude_search.tolerance_m <= 0:
        raise ValueError("Altitude tolerance must be positive.")
    if config.altitude_search.max_iterations < 1:
        raise ValueError("Altitude search needs at least one iteration.")
    if config.apparent_radius.threshold_m <= 0:
        raise ValueError("Apparent radius threshold must be positive.")
    if config.apparent_radius.max_steps < 1:
        raise ValueError("Apparent radius search needs at least one step.")

    scn = config.scenario
    if scn.latitude_number < 3 or scn.longitude_number < 3:
        raise ValueError("Synthetic body needs >= 3 latitude and longitude samples.")
    if scn.latitude_number % 2 == 0:
        raise ValueError(f"Latitude samples must be odd, got {scn.latitude_number}")
    if scn.radius_m <= 0:
        raise ValueError("Body radius must be positive.")
    if not (0.0 <= scn.flattening < 1.0):
        raise ValueError(f"Flattening must be in [0, 1), got {scn.flattening}")
    if scn.orbit_radius_m <= scn.radius_m:
        raise ValueError("Observer orbit must lie outside the body.")
    if scn.num_steps < 1:
        raise ValueError("Scenario needs at least one step.")
    if not (0.0 < scn.fov_half_angle_deg <= 180.0):
        raise ValueError("Field half-angle must be in (0, 180] deg.")
    if scn.step_s <= 0:
        raise ValueError("Scenario time step must be positive.")
    if scn.sun_distance_m <= scn.radius_m:
        raise ValueError("Sun must lie outside the body.")
    if scn.sun_revolutions < 0:
        raise ValueError("Sun revolutions cannot be negative.")
    try:
        datetime.fromisoformat(scn.start_time)
    except ValueError as exc:
        raise ValueError(f"Invalid scenario start time {scn.start_time!r}") from exc

    logger.debug("Configuration validation passed.")


def log_platform_info() -> None:
    """Log platform and library version information for reproducibility."""
    logger.info("=" * 70)
    logger.info("PLATFORM INFORMATION (for reproducibility)")
    logger.info("=" * 70)
    logger.info("  Python:    %s", sys.version)
    logger.info("  Platform:  %s", platform.platform())
    logger.info("  Processor: %s", platform.processor())
    logger.info("  NumPy:     %s", np.__version__)
    logger.info("  Float64 eps: %e", np.finfo(np.float64).eps)
    logger.info("=" * 70)


def hash_array(arr: np.ndarray) -> str:
    """Compute SHA-256 hash of a NumPy array for reproducibility verification.

    Parameters
    ----------
    arr : np.ndarray
        Array to hash.

    Returns
    -------
    str
        Hex digest of the SHA-256 hash.
    """
    return hashlib.sha256(np.ascontiguousarray(arr).tobytes()).hexdigest()
