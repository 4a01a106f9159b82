"""Pytest configuration and shared fixtures for FacetEngine tests."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import pytest


# Add project root to path so imports work
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from facet_engine.body_shape import FacetBodyShape  # noqa: E402
from mesh_ingestion.obj_loader import MeshData  # noqa: E402
from mesh_ingestion.synthetic_body import generate_synthetic_body  # noqa: E402


def pytest_configure(config: pytest.Config) -> None:
    """Configure logging for tests."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s [%(levelname)s] %(message)s",
    )


# ===================================================================
# SHARED BODIES
# ===================================================================


@pytest.fixture(scope="session")
def sphere_mesh() -> MeshData:
    """51 x 100 latitude/longitude sphere of radius 10 km (9800 triangles)."""
    return generate_synthetic_body(51, 100, 10_000.0, 0.0)


@pytest.fixture(scope="session")
def sphere_body(sphere_mesh: MeshData) -> FacetBodyShape:
    """Facet body built on the 10 km sphere."""
    return FacetBodyShape.from_mesh_data("sphere", sphere_mesh)


@pytest.fixture(scope="session")
def oblate_body() -> FacetBodyShape:
    """51 x 100 ellipsoid with a = 10 km and c = 8 km (f = 0.2)."""
    mesh = generate_synthetic_body(51, 100, 10_000.0, 0.2)
    return FacetBodyShape.from_mesh_data("oblate", mesh)


@pytest.fixture(scope="session")
def coarse_sphere() -> FacetBodyShape:
    """Coarse 11 x 20 sphere of radius 10 km, for expensive operations."""
    mesh = generate_synthetic_body(11, 20, 10_000.0, 0.0)
    return FacetBodyShape.from_mesh_data("coarse", mesh)
