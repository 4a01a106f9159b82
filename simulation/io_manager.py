"""Data I/O manager — persist coverage results as NumPy arrays.

Saves and loads raw coverage data (visibility maps, ephemerides, triangle
sets, contour) to allow re-rendering without re-running the sweep.

File layout under output_dir/:
    visibility_maps.npy     — Per-state visibility, shape (N_steps, N_triangles), bool
    face_centroids.npy      — Triangle centers [m], shape (N_triangles, 3)
    face_areas.npy          — Triangle areas [m²], shape (N_triangles,)
    observer_positions.npy  — Observer positions [m], shape (N_steps, 3)
    sun_positions.npy       — Sun positions [m], shape (N_steps, 3)
    visible_surfaces.npy    — Visible surface [m²] per state, shape (N_steps,)
    last_contour.npy        — Final contour (lat, lon) [deg], shape (N_points, 2)
    triangle_sets.npz       — Aggregate triangle index sets (one key per set)
    metadata.json           — Run metadata (JSON)
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

import numpy as np

logger = logging.getLogger(__name__)


def save_results(
    output_dir: Path | str,
    visibility_maps: np.ndarray,
    face_centroids: np.ndarray,
    face_areas: np.ndarray,
    observer_positions: np.ndarray,
    sun_positions: np.ndarray,
    visible_surfaces: list[float],
    last_contour: np.ndarray,
    triangle_sets: dict[str, np.ndarray],
    metadata: dict,
) -> list[Path]:
    """Save all coverage results to disk as NumPy arrays + JSON.

    Parameters
    ----------
    output_dir : Path or str
        Output directory (created if needed).
    visibility_maps : np.ndarray
        Per-state triangle visibility. Shape: (N_steps, N_triangles).
    face_centroids : np.ndarray
        Triangle centers. Shape: (N_triangles, 3).
    face_areas : np.ndarray
        Triangle areas [m²]. Shape: (N_triangles,).
    observer_positions, sun_positions : np.ndarray
        Ephemerides [m]. Shape: (N_steps, 3).
    visible_surfaces : list[float]
        Visible surface [m²] per state.
    last_contour : np.ndarray
        Final contour (lat, lon) [deg]. Shape: (N_points, 2).
    triangle_sets : dict[str, np.ndarray]
        Named arrays of triangle arena indices.
    metadata : dict
        Run metadata.

    Returns
    -------
    list[Path]
        Paths to all saved files.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    saved: list[Path] = []

    # Core arrays
    for name, arr in [
        ("visibility_maps.npy", np.asarray(visibility_maps, dtype=bool)),
        ("face_centroids.npy", face_centroids),
        ("face_areas.npy", face_areas),
        ("observer_positions.npy", observer_positions),
        ("sun_positions.npy", sun_positions),
        ("visible_surfaces.npy", np.array(visible_surfaces, dtype=np.float64)),
        ("last_contour.npy", last_contour),
    ]:
        path = output_dir / name
        np.save(path, arr)
        saved.append(path)
        logger.debug("Saved %s: shape=%s, dtype=%s", name, arr.shape, arr.dtype)

    # Triangle sets (multiple arrays in one file)
    if triangle_sets:
        sets_path = output_dir / "triangle_sets.npz"
        arrays = {k: np.asarray(v, dtype=np.int64) for k, v in triangle_sets.items()}
        np.savez_compressed(sets_path, **arrays)
        saved.append(sets_path)
        logger.debug("Saved triangle_sets.npz: %d sets", len(arrays))

    # Metadata
    meta_path = output_dir / "metadata.json"
    safe_meta = _sanitize_for_json(metadata)
    with open(meta_path, "w", encoding="utf-8") as f:
        json.dump(safe_meta, f, indent=2, ensure_ascii=False)
    saved.append(meta_path)

    logger.info(
        "Saved %d files to %s (visibility: %s)",
        len(saved), output_dir, np.shape(visibility_maps),
    )

    return saved


def load_results(
    output_dir: Path | str,
) -> dict[str, np.ndarray | dict]:
    """Load previously saved coverage results.

    Parameters
    ----------
    output_dir : Path or str
        Directory containing saved results.

    Returns
    -------
    dict
        Keys: 'visibility_maps', 'face_centroids', 'face_areas',
        'observer_positions', 'sun_positions', 'visible_surfaces',
        'last_contour', 'triangle_sets', 'metadata'.
    """
    output_dir = Path(output_dir)

    if not output_dir.exists():
        raise FileNotFoundError(f"Output directory not found: {output_dir}")

    data: dict = {}

    # Core arrays
    for key in [
        "visibility_maps",
        "face_centroids",
        "face_areas",
        "observer_positions",
        "sun_positions",
        "visible_surfaces",
        "last_contour",
    ]:
        path = output_dir / f"{key}.npy"
        if path.exists():
            data[key] = np.load(path)
            logger.debug("Loaded %s: shape=%s", key, data[key].shape)
        else:
            logger.warning("Missing file: %s", path)
            data[key] = None

    # Triangle sets
    sets_path = output_dir / "triangle_sets.npz"
    if sets_path.exists():
        with np.load(sets_path) as npz:
            data["triangle_sets"] = {k: npz[k] for k in npz.files}
        logger.debug("Loaded triangle_sets: %d sets", len(data["triangle_sets"]))
    else:
        data["triangle_sets"] = {}

    # Metadata
    meta_path = output_dir / "metadata.json"
    if meta_path.exists():
        with open(meta_path, "r", encoding="utf-8") as f:
            data["metadata"] = json.load(f)
    else:
        data["metadata"] = {}

    logger.info("Loaded results from %s (%d keys)", output_dir, len(data))

    return data


def _sanitize_for_json(obj: object) -> object:
    """Recursively convert NumPy types and other non-JSON types to Python natives."""
    if isinstance(obj, dict):
        return {k: _sanitize_for_json(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_sanitize_for_json(v) for v in obj]
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, np.bool_):
        return bool(obj)
    if isinstance(obj, float) and not np.isfinite(obj):
        return str(obj)
    return obj
