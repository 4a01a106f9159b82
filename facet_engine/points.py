"""Transient query results: intersections and surface points."""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

from facet_engine.ellipsoid import GeodeticPoint
from facet_engine.mesh import Triangle


@dataclass(frozen=True, eq=False)
class Intersection:
    """A line hit on the mesh.

    Attributes
    ----------
    point : np.ndarray
        Intersection position [m]. Shape: (3,).
    triangle : Triangle
        Triangle carrying the point.
    """

    point: np.ndarray
    triangle: Triangle


@dataclass(frozen=True, eq=False)
class FacetPoint:
    """A named point with its coordinates on a reference ellipsoid.

    Attributes
    ----------
    position : np.ndarray
        Cartesian position [m]. Shape: (3,).
    latitude : float
        Geodetic latitude [rad].
    longitude : float
        Longitude [rad].
    height : float
        Height above the reference ellipsoid [m]; NaN when the point was
        built without a body.
    name : str
        Point label.
    """

    position: np.ndarray
    latitude: float
    longitude: float
    height: float
    name: str = ""

    @classmethod
    def from_geodetic(cls, position: np.ndarray, geodetic: GeodeticPoint, name: str = "") -> FacetPoint:
        return cls(position, geodetic.latitude, geodetic.longitude, geodetic.height, name)

    @classmethod
    def from_position(cls, position, name: str = "") -> FacetPoint:
        """Body-centric latitude and longitude of a bare position."""
        position = np.asarray(position, dtype=np.float64)
        x, y, z = (float(c) for c in position)
        return cls(position, math.atan2(z, math.hypot(x, y)), math.atan2(y, x), math.nan, name)

    @property
    def geodetic(self) -> GeodeticPoint:
        return GeodeticPoint(self.latitude, self.longitude, self.height)
