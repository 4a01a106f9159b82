"""Reference ellipsoids derived from a facet body.

Five ellipsoids of revolution (about the body +Z axis) are attached to
every body:

- inner / outer sphere: radius = min / max vertex norm;
- fitted ellipsoid: least-squares fit of equatorial radius ``a`` and
  flattening ``f`` to the vertex set;
- inner / outer ellipsoid: flattening of the fitted ellipsoid, with the
  largest / smallest equatorial radius such that every vertex lies
  outside / inside.

Notes
-----
The fit minimises, over all vertices of body-centric latitude φ,

    Σ (r_th(φ) − |v|)²,   r_th(φ) = b / sqrt(1 − e² cos² φ)

with b = a (1 − f) and e² = f (2 − f): r_th is the ellipsoid radius in the
direction of the vertex. The solver sits behind :data:`EllipsoidFitter`
so that another optimizer can be plugged in.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Callable

import numpy as np
from scipy.optimize import least_squares

from facet_engine.constants import EllipsoidFitConfig

logger = logging.getLogger(__name__)

EPS_OPTIMIZER: float = 1e-8
_MAX_FLATTENING: float = 1.0 - 1e-6
_GEODETIC_MAX_ITER: int = 30


class EllipsoidType(Enum):
    """Selector of a body's reference ellipsoid."""

    INNER_SPHERE = "inner_sphere"
    OUTER_SPHERE = "outer_sphere"
    INNER_ELLIPSOID = "inner_ellipsoid"
    OUTER_ELLIPSOID = "outer_ellipsoid"
    FITTED_ELLIPSOID = "fitted_ellipsoid"


@dataclass(frozen=True)
class GeodeticPoint:
    """Geodetic coordinates relative to a reference ellipsoid.

    Attributes
    ----------
    latitude : float
        Geodetic latitude [rad].
    longitude : float
        Longitude [rad].
    height : float
        Height above the ellipsoid along its normal [m].
    """

    latitude: float
    longitude: float
    height: float = 0.0


@dataclass(frozen=True)
class ReferenceEllipsoid:
    """Oblate ellipsoid of revolution about +Z.

    Attributes
    ----------
    equatorial_radius : float
        Semi-major axis ``a`` [m].
    flattening : float
        Flattening ``f = (a − c) / a`` [-].
    name : str
        Label used in logs.
    """

    equatorial_radius: float
    flattening: float
    name: str = ""

    @property
    def polar_radius(self) -> float:
        return self.equatorial_radius * (1.0 - self.flattening)

    @property
    def eccentricity_sq(self) -> float:
        return self.flattening * (2.0 - self.flattening)

    def scaled(self, factor: float) -> ReferenceEllipsoid:
        """Same shape with every radius multiplied by ``factor``."""
        return ReferenceEllipsoid(self.equatorial_radius * factor, self.flattening, self.name)

    def radius_along(self, directions: np.ndarray) -> np.ndarray:
        """Distance from the center to the surface along unit ``directions``.

        Parameters
        ----------
        directions : np.ndarray
            Unit vectors. Shape: (N, 3) or (3,).
        """
        directions = np.asarray(directions, dtype=np.float64)
        cos2 = 1.0 - directions[..., 2] ** 2
        return self.polar_radius / np.sqrt(1.0 - self.eccentricity_sq * cos2)

    def to_cartesian(self, point: GeodeticPoint) -> np.ndarray:
        """Cartesian position of a geodetic point."""
        a = self.equatorial_radius
        e2 = self.eccentricity_sq
        sin_lat = math.sin(point.latitude)
        cos_lat = math.cos(point.latitude)
        n = a / math.sqrt(1.0 - e2 * sin_lat * sin_lat)
        return np.array([
            (n + point.height) * cos_lat * math.cos(point.longitude),
            (n + point.height) * cos_lat * math.sin(point.longitude),
            (n * (1.0 - e2) + point.height) * sin_lat,
        ], dtype=np.float64)

    def to_geodetic(self, position) -> GeodeticPoint:
        """Geodetic coordinates of a cartesian position (fixed-point iteration)."""
        x, y, z = (float(c) for c in np.asarray(position, dtype=np.float64))
        a = self.equatorial_radius
        e2 = self.eccentricity_sq
        p = math.hypot(x, y)
        lon = math.atan2(y, x)

        if p < 1e-12 * a:
            lat = math.copysign(math.pi / 2.0, z) if z != 0.0 else 0.0
        else:
            lat = math.atan2(z, p * (1.0 - e2))
            for _ in range(_GEODETIC_MAX_ITER):
                sin_lat = math.sin(lat)
                n = a / math.sqrt(1.0 - e2 * sin_lat * sin_lat)
                h = p / math.cos(lat) - n
                new_lat = math.atan2(z, p * (1.0 - e2 * n / (n + h)))
                if abs(new_lat - lat) < 1e-15:
                    lat = new_lat
                    break
                lat = new_lat

        sin_lat = math.sin(lat)
        height = (
            p * math.cos(lat) + z * sin_lat
            - a * math.sqrt(1.0 - e2 * sin_lat * sin_lat)
        )
        return GeodeticPoint(lat, lon, height)


# ---------------------------------------------------------------------------
# Fitting
# ---------------------------------------------------------------------------


@dataclass
class EllipsoidFit:
    """Outcome of an ellipsoid fit.

    Attributes
    ----------
    equatorial_radius : float
        Fitted ``a`` [m].
    flattening : float
        Fitted ``f`` [-].
    rms_residual_m : float
        Root-mean-square radial residual [m].
    num_evaluations : int
        Cost evaluations spent.
    converged : bool
        False when the evaluation budget ran out first.
    """

    equatorial_radius: float
    flattening: float
    rms_residual_m: float
    num_evaluations: int
    converged: bool


EllipsoidFitter = Callable[[np.ndarray, EllipsoidFitConfig], EllipsoidFit]


def fit_ellipsoid(
    vertices: np.ndarray,
    config: EllipsoidFitConfig | None = None,
) -> EllipsoidFit:
    """Least-squares fit of an oblate ellipsoid to vertex positions.

    Parameters
    ----------
    vertices : np.ndarray
        Vertex positions [m]. Shape: (N, 3).
    config : EllipsoidFitConfig, optional
        Optimizer settings. Defaults to :class:`EllipsoidFitConfig()`.

    Returns
    -------
    EllipsoidFit
        Fitted parameters. ``a`` is bounded by [min_norm, max_norm] and
        ``f`` by [0, 1).
    """
    if config is None:
        config = EllipsoidFitConfig()

    norms = np.linalg.norm(vertices, axis=1)
    usable = norms > 0.0
    norms = norms[usable]
    units_z = vertices[usable, 2] / norms
    cos2 = 1.0 - units_z ** 2

    min_norm = float(norms.min())
    max_norm = float(norms.max())
    scale = max_norm

    def _residuals(x: np.ndarray) -> np.ndarray:
        a = x[0] * scale
        f = x[1]
        b = a * (1.0 - f)
        e2 = f * (2.0 - f)
        return (b / np.sqrt(1.0 - e2 * cos2) - norms) / scale

    lower_a = min_norm / scale
    if lower_a >= 1.0:
        lower_a = 1.0 - EPS_OPTIMIZER
    x0 = np.array([0.5 * (min_norm + max_norm) / scale, config.first_guess_flattening])
    x0[0] = min(max(x0[0], lower_a), 1.0)

    # A perfect fit zeroes the cost, and trf's reduction ratio becomes 0/0
    with np.errstate(invalid="ignore", divide="ignore"):
        result = least_squares(
            _residuals,
            x0,
            bounds=([lower_a, 0.0], [1.0, _MAX_FLATTENING]),
            method="trf",
            xtol=config.eps_optimizer,
            ftol=config.eps_optimizer,
            gtol=config.eps_optimizer,
            max_nfev=config.max_evaluations,
        )

    converged = result.status > 0
    if not converged:
        logger.warning(
            "Ellipsoid fit stopped after %d evaluations without converging: %s",
            result.nfev, result.message,
        )

    fit = EllipsoidFit(
        equatorial_radius=float(result.x[0] * scale),
        flattening=float(result.x[1]),
        rms_residual_m=float(np.sqrt(np.mean(result.fun ** 2)) * scale),
        num_evaluations=int(result.nfev),
        converged=converged,
    )
    logger.debug(
        "Fitted ellipsoid: a=%.6f m, f=%.3e, rms=%.3e m (%d evaluations)",
        fit.equatorial_radius, fit.flattening, fit.rms_residual_m, fit.num_evaluations,
    )
    return fit


def build_reference_ellipsoids(
    vertices: np.ndarray,
    config: EllipsoidFitConfig | None = None,
    fitter: EllipsoidFitter = fit_ellipsoid,
) -> dict[EllipsoidType, ReferenceEllipsoid]:
    """Compute the five reference ellipsoids of a vertex set.

    Parameters
    ----------
    vertices : np.ndarray
        Vertex positions [m]. Shape: (N, 3).
    config : EllipsoidFitConfig, optional
        Optimizer settings for the fitted ellipsoid.
    fitter : callable
        Fitting strategy ``(vertices, config) -> EllipsoidFit``.

    Returns
    -------
    dict[EllipsoidType, ReferenceEllipsoid]
        One ellipsoid per type.
    """
    if config is None:
        config = EllipsoidFitConfig()

    norms = np.linalg.norm(vertices, axis=1)
    min_norm = float(norms.min())
    max_norm = float(norms.max())

    fit = fitter(vertices, config)
    f = fit.flattening

    dilated = vertices.copy()
    dilated[:, 2] /= (1.0 - f)
    dilated_norms = np.linalg.norm(dilated, axis=1)

    ellipsoids = {
        EllipsoidType.INNER_SPHERE: ReferenceEllipsoid(min_norm, 0.0, "inner sphere"),
        EllipsoidType.OUTER_SPHERE: ReferenceEllipsoid(max_norm, 0.0, "outer sphere"),
        EllipsoidType.FITTED_ELLIPSOID: ReferenceEllipsoid(
            fit.equatorial_radius, f, "fitted ellipsoid"
        ),
        EllipsoidType.INNER_ELLIPSOID: ReferenceEllipsoid(
            float(dilated_norms.min()), f, "inner ellipsoid"
        ),
        EllipsoidType.OUTER_ELLIPSOID: ReferenceEllipsoid(
            float(dilated_norms.max()), f, "outer ellipsoid"
        ),
    }

    logger.info(
        "Reference ellipsoids: spheres [%.3f, %.3f] m, fitted a=%.3f m f=%.4f",
        min_norm, max_norm, fit.equatorial_radius, f,
    )
    return ellipsoids
