"""Synthetic body generator for facet engine validation.

Generates latitude/longitude triangulations of spheres and oblate
ellipsoids of revolution, used to test intersections, neighborhoods,
visibility and ellipsoid fitting against closed-form expectations.

Notes
-----
For ``latitude_number = L`` (odd) and ``longitude_number = M`` the body has
two poles plus ``L - 2`` rings of ``M`` vertices:

    vertex 1               south pole (0, 0, -R (1 - f))
    vertex 2 + k M + j     ring k, meridian j
    vertex 2 + (L - 2) M   north pole (0, 0, +R (1 - f))

Ring ``k`` sits at latitude ``φ = i / h · π/2`` with ``i = k - (h - 1)`` and
``h = (L - 1) / 2``; meridian ``j`` at longitude ``λ = 2π j / M``. Positions
are

    (R cos φ cos λ, R cos φ sin λ, R (1 - f) sin φ)

Triangles are wound counter-clockwise seen from outside (outward normals):
a fan of ``M`` triangles per pole and two triangles per ring quad, for a
total of ``2 M (L - 2)`` triangles.
"""

from __future__ import annotations

import logging

import numpy as np

from facet_engine.constants import ScenarioConfig
from mesh_ingestion.obj_loader import MeshData

logger = logging.getLogger(__name__)


def generate_synthetic_body(
    latitude_number: int = 51,
    longitude_number: int = 100,
    radius_m: float = 10_000.0,
    flattening: float = 0.0,
) -> MeshData:
    """Generate a triangulated ellipsoid of revolution about +Z.

    Parameters
    ----------
    latitude_number : int
        Number of latitude samples, poles included. Must be odd and >= 3.
    longitude_number : int
        Number of vertices per ring. Must be >= 3.
    radius_m : float
        Equatorial radius [m].
    flattening : float
        Flattening ``(a - c) / a`` in [0, 1).

    Returns
    -------
    MeshData
        Vertex positions and 1-based triangle vertex ids.

    Raises
    ------
    ValueError
        If a parameter is out of range.
    """
    if latitude_number < 3 or latitude_number % 2 == 0:
        raise ValueError(f"latitude_number must be odd and >= 3, got {latitude_number}")
    if longitude_number < 3:
        raise ValueError(f"longitude_number must be >= 3, got {longitude_number}")
    if radius_m <= 0.0:
        raise ValueError(f"radius_m must be positive, got {radius_m}")
    if not (0.0 <= flattening < 1.0):
        raise ValueError(f"flattening must be in [0, 1), got {flattening}")

    M = longitude_number
    half = (latitude_number - 1) // 2
    num_rings = latitude_number - 2
    polar = radius_m * (1.0 - flattening)

    # Ring vertices, ring-major
    ring_index = np.arange(num_rings) - (half - 1)
    lat = ring_index / half * (np.pi / 2.0)
    lon = np.arange(M) / M * (2.0 * np.pi)
    lat_grid, lon_grid = np.meshgrid(lat, lon, indexing="ij")
    rings = np.stack([
        radius_m * np.cos(lat_grid) * np.cos(lon_grid),
        radius_m * np.cos(lat_grid) * np.sin(lon_grid),
        polar * np.sin(lat_grid),
    ], axis=-1).reshape(-1, 3)

    vertices = np.vstack([
        [0.0, 0.0, -polar],
        rings,
        [0.0, 0.0, polar],
    ])
    north = vertices.shape[0]

    j = np.arange(M)
    j_next = (j + 1) % M

    # South fan: pole, next meridian, current meridian (ring 0)
    south = np.column_stack([np.ones(M, dtype=np.int64), 2 + j_next, 2 + j])

    # Ring quads split in two triangles
    bands = []
    for k in range(num_rings - 1):
        a = 2 + k * M + j
        a_next = 2 + k * M + j_next
        b = 2 + (k + 1) * M + j
        b_next = 2 + (k + 1) * M + j_next
        quad = np.empty((2 * M, 3), dtype=np.int64)
        quad[0::2] = np.column_stack([a, a_next, b])
        quad[1::2] = np.column_stack([a_next, b_next, b])
        bands.append(quad)

    # North fan: pole, current meridian, next meridian (last ring), walked westward
    last = 2 + (num_rings - 1) * M
    order = np.r_[np.arange(M - 2, -1, -1), M - 1]
    north_fan = np.column_stack([
        np.full(M, north, dtype=np.int64), last + j[order], last + j_next[order],
    ])

    triangles = np.vstack([south, *bands, north_fan]).astype(np.int64)

    logger.info(
        "Synthetic body generated: %d vertices, %d triangles, a=%.1f m, f=%.4f",
        vertices.shape[0], triangles.shape[0], radius_m, flattening,
    )

    return MeshData(
        vertices=vertices,
        triangles=triangles,
        metadata={
            "source": "synthetic",
            "latitude_number": latitude_number,
            "longitude_number": longitude_number,
            "radius_m": radius_m,
            "flattening": flattening,
        },
    )


def generate_from_config(config: ScenarioConfig) -> MeshData:
    """Generate the scenario body."""
    return generate_synthetic_body(
        latitude_number=config.latitude_number,
        longitude_number=config.longitude_number,
        radius_m=config.radius_m,
        flattening=config.flattening,
    )
