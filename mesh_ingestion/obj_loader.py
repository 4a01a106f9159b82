"""Wavefront OBJ loader — ingest triangulated body shape models.

Reads and writes the geometric subset of the OBJ format used by small-body
shape models (PDS, DAMIT, ESA PSA) through ``meshio``. Only the vertex
positions and the face cells are kept; texture and normal references are
dropped. Polygon cells with more than three vertices are fan-triangulated.

Key concerns:
- Vertex ids are 1-based and follow file order, as in the OBJ format.
- Negative (relative) face indices are resolved against the full vertex
  list, which matches files that declare every vertex before the faces.
- Coordinates are multiplied by ``scale`` (e.g. 1000 for km models).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

import meshio
import numpy as np

from facet_engine.errors import MeshLoadError

logger = logging.getLogger(__name__)


@dataclass
class MeshData:
    """Container for raw body-shape mesh arrays.

    Attributes
    ----------
    vertices : np.ndarray
        Vertex positions [m]. Shape: (num_vertices, 3). dtype: float64.
    triangles : np.ndarray
        1-based vertex ids per triangle. Shape: (num_triangles, 3). dtype: int64.
    metadata : dict
        Source description (file, generator parameters, ...).
    """

    vertices: np.ndarray
    triangles: np.ndarray
    metadata: dict = field(default_factory=dict)


def load_obj(file_path: str | Path, scale: float = 1.0) -> MeshData:
    """Load a triangulated body from a Wavefront OBJ file.

    Parameters
    ----------
    file_path : str or Path
        Path to the ``.obj`` file.
    scale : float
        Factor applied to every coordinate.

    Returns
    -------
    MeshData
        Vertex positions and 1-based triangle vertex ids.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    MeshLoadError
        If a record is malformed or the file holds no vertex or face.
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"OBJ file not found: {file_path}")

    logger.info("Loading OBJ mesh: %s", file_path)

    try:
        mesh = meshio.read(file_path, file_format="obj")
    except (meshio.ReadError, ValueError, IndexError) as exc:
        raise MeshLoadError(f"{file_path}: malformed OBJ record ({exc})") from exc

    points = np.asarray(mesh.points, dtype=np.float64)
    if points.size == 0:
        raise MeshLoadError(f"{file_path}: no vertex record")
    if points.ndim != 2 or points.shape[1] < 3:
        raise MeshLoadError(f"{file_path}: every vertex needs 3 coordinates")
    points = points[:, :3]
    num_vertices = points.shape[0]

    blocks = []
    num_polygons = 0
    for cell_block in mesh.cells:
        cells = np.asarray(cell_block.data, dtype=np.int64)
        if cells.size == 0:
            continue
        if cells.shape[1] < 3:
            raise MeshLoadError(f"{file_path}: face needs 3 vertices")
        # meshio stores the raw OBJ index minus one; relative indices become <= -2
        cells = np.where(cells < -1, cells + num_vertices + 1, cells)
        if cells.min() < 0 or cells.max() >= num_vertices:
            raise MeshLoadError(
                f"{file_path}: face index out of range (file has {num_vertices} vertices)"
            )
        if cells.shape[1] > 3:
            num_polygons += cells.shape[0]
        blocks.append(_fan_triangulate(cells))

    if not blocks:
        raise MeshLoadError(f"{file_path}: no face record")

    vertex_array = points * scale
    triangle_array = np.vstack(blocks) + 1

    if num_polygons:
        logger.info("  %d polygons fan-triangulated", num_polygons)
    logger.info(
        "  Loaded %d vertices, %d triangles (scale=%g)",
        vertex_array.shape[0], triangle_array.shape[0], scale,
    )

    return MeshData(
        vertices=vertex_array,
        triangles=triangle_array.astype(np.int64),
        metadata={"source": "obj", "file": str(file_path), "scale": scale},
    )


def _fan_triangulate(cells: np.ndarray) -> np.ndarray:
    """Split (n, k) polygon cells into (n * (k - 2), 3) triangles around their first vertex."""
    k = cells.shape[1]
    fans = [cells[:, [0, j, j + 1]] for j in range(1, k - 1)]
    # Keep the triangles of one polygon contiguous
    return np.stack(fans, axis=1).reshape(-1, 3)


def save_obj(mesh_data: MeshData, file_path: str | Path) -> Path:
    """Write vertices and triangles as a Wavefront OBJ file.

    Returns
    -------
    Path
        Written file path.
    """
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    mesh = meshio.Mesh(
        np.asarray(mesh_data.vertices, dtype=np.float64),
        [("triangle", np.asarray(mesh_data.triangles, dtype=np.int64) - 1)],
    )
    meshio.write(file_path, mesh, file_format="obj")
    logger.info("Saved OBJ mesh: %s", file_path)
    return file_path
