"""Visualization module for visibility and coverage maps.

Generates figures using matplotlib:
- Visibility maps on a latitude/longitude projection (grayscale)
- Coverage maps (fraction of states seeing each triangle, viridis colormap)
- Field contour overlay on the visibility map
- Visible surface vs. time series
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

import matplotlib

matplotlib.use("Agg")  # Non-interactive backend for headless rendering

import matplotlib.pyplot as plt
import numpy as np

if TYPE_CHECKING:
    from simulation.runner import CoverageResults

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Color Configuration
# ---------------------------------------------------------------------------

_VISIBILITY_CMAP = "gray"
_COVERAGE_CMAP = "viridis"
_BACKGROUND = "#1a1a2e"
_CONTOUR_COLOR = "#ff6b6b"
_DPI = 150


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def centroid_lat_lon(face_centroids: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Body-centric latitude and longitude of triangle centers [deg]."""
    x, y, z = face_centroids[:, 0], face_centroids[:, 1], face_centroids[:, 2]
    lat = np.degrees(np.arctan2(z, np.hypot(x, y)))
    lon = np.degrees(np.arctan2(y, x))
    return lat, lon


def _style_axes(fig: plt.Figure, ax: plt.Axes, title: str, xlabel: str, ylabel: str) -> None:
    ax.set_xlabel(xlabel, color="white")
    ax.set_ylabel(ylabel, color="white")
    ax.set_title(title, fontsize=14, fontweight="bold", color="white")
    ax.tick_params(colors="white")
    for spine in ax.spines.values():
        spine.set_edgecolor("#444")
    fig.tight_layout()


def _save(fig: plt.Figure, output_path: Path | str | None, dpi: int, label: str) -> None:
    if output_path is not None:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(output_path, dpi=dpi, facecolor=fig.get_facecolor())
        logger.info("%s saved: %s", label, output_path)
    plt.close(fig)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def plot_visibility_map(
    face_centroids: np.ndarray,
    visibility: np.ndarray,
    title: str = "Visibility Map",
    output_path: Path | str | None = None,
    contour_lat_lon: np.ndarray | None = None,
    dpi: int = _DPI,
) -> plt.Figure:
    """Plot per-triangle visibility on a latitude/longitude map.

    Parameters
    ----------
    face_centroids : np.ndarray
        Triangle centers (x, y, z). Shape: (N, 3).
    visibility : np.ndarray
        Per-triangle visibility (bool). Shape: (N,).
    title : str
        Figure title.
    output_path : Path or str, optional
        If provided, save figure to this path.
    contour_lat_lon : np.ndarray, optional
        Field contour (lat, lon) [deg] drawn on top. Shape: (K, 2).
    dpi : int
        Figure resolution.

    Returns
    -------
    matplotlib.figure.Figure
        The generated figure.
    """
    fig, ax = plt.subplots(1, 1, figsize=(12, 6), facecolor=_BACKGROUND)
    ax.set_facecolor(_BACKGROUND)

    lat, lon = centroid_lat_lon(face_centroids)
    ax.scatter(
        lon, lat,
        c=np.asarray(visibility, dtype=np.float64),
        cmap=_VISIBILITY_CMAP,
        s=2.0,
        vmin=0.0,
        vmax=1.0,
        edgecolors="none",
        rasterized=True,
    )

    if contour_lat_lon is not None and len(contour_lat_lon) > 0:
        ax.scatter(
            contour_lat_lon[:, 1], contour_lat_lon[:, 0],
            color=_CONTOUR_COLOR, s=6.0, label="Contour",
        )
        legend = ax.legend(facecolor=_BACKGROUND, edgecolor="#444")
        for text in legend.get_texts():
            text.set_color("white")

    ax.set_xlim(-180.0, 180.0)
    ax.set_ylim(-90.0, 90.0)
    _style_axes(fig, ax, title, "Longitude [°]", "Latitude [°]")
    _save(fig, output_path, dpi, "Visibility map")
    return fig


def plot_coverage_map(
    face_centroids: np.ndarray,
    coverage: np.ndarray,
    title: str = "Coverage Fraction",
    output_path: Path | str | None = None,
    dpi: int = _DPI,
) -> plt.Figure:
    """Plot the fraction of states from which each triangle is seen.

    Parameters
    ----------
    face_centroids : np.ndarray
        Triangle centers. Shape: (N, 3).
    coverage : np.ndarray
        Fraction in [0, 1] per triangle. Shape: (N,).
    title : str
        Figure title.
    output_path : Path or str, optional
        If provided, save figure to this path.
    dpi : int
        Figure resolution.

    Returns
    -------
    matplotlib.figure.Figure
        The generated figure.
    """
    fig, ax = plt.subplots(1, 1, figsize=(12, 6), facecolor=_BACKGROUND)
    ax.set_facecolor(_BACKGROUND)

    lat, lon = centroid_lat_lon(face_centroids)
    scatter = ax.scatter(
        lon, lat,
        c=coverage,
        cmap=_COVERAGE_CMAP,
        s=2.0,
        vmin=0.0,
        vmax=1.0,
        edgecolors="none",
        rasterized=True,
    )

    cbar = fig.colorbar(scatter, ax=ax, label="Fraction of States", shrink=0.8)
    cbar.ax.yaxis.label.set_color("white")
    cbar.ax.tick_params(colors="white")

    ax.set_xlim(-180.0, 180.0)
    ax.set_ylim(-90.0, 90.0)
    _style_axes(fig, ax, title, "Longitude [°]", "Latitude [°]")
    _save(fig, output_path, dpi, "Coverage map")
    return fig


def plot_visible_surface(
    times_hours: np.ndarray | list[float],
    visible_surfaces: list[float],
    total_surface: float,
    title: str = "Visible Surface vs. Time",
    output_path: Path | str | None = None,
    dpi: int = _DPI,
) -> plt.Figure:
    """Plot the visible fraction of the body surface vs. time.

    Parameters
    ----------
    times_hours : array-like
        Time axis in hours.
    visible_surfaces : list[float]
        Visible surface [m²] at each state.
    total_surface : float
        Body surface [m²].
    title : str
        Figure title.
    output_path : Path or str, optional
        If provided, save figure to this path.
    dpi : int
        Figure resolution.

    Returns
    -------
    matplotlib.figure.Figure
        The generated figure.
    """
    fig, ax = plt.subplots(1, 1, figsize=(12, 4), facecolor="#0f0f1a")
    ax.set_facecolor("#0f0f1a")

    fraction = 100.0 * np.asarray(visible_surfaces, dtype=np.float64) / total_surface
    ax.plot(times_hours, fraction, color="#ffd43b", linewidth=2.0, marker="o", markersize=3)
    ax.set_ylim(0.0, 100.0)
    ax.grid(True, alpha=0.2, color="white")

    _style_axes(fig, ax, title, "Time [hours]", "Visible Surface [%]")
    _save(fig, output_path, dpi, "Visible surface plot")
    return fig


def generate_all_plots(
    results: CoverageResults,
    output_dir: Path | str = "output",
    dpi: int = _DPI,
) -> list[Path]:
    """Generate all standard plots from coverage results.

    Parameters
    ----------
    results : CoverageResults
        Full coverage results.
    output_dir : Path or str
        Directory for output plots.
    dpi : int
        Figure resolution.

    Returns
    -------
    list[Path]
        Paths to all generated plot files.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    saved: list[Path] = []

    # 1. Final visibility map with its contour
    if results.visibility_maps:
        p = output_dir / "visibility_map.png"
        plot_visibility_map(
            results.face_centroids,
            results.visibility_maps[-1],
            title="Final Visibility Map",
            output_path=p,
            contour_lat_lon=results.last_contour,
            dpi=dpi,
        )
        saved.append(p)

        # 2. Coverage fraction over all states
        p = output_dir / "coverage_map.png"
        plot_coverage_map(
            results.face_centroids,
            np.mean(np.array(results.visibility_maps, dtype=np.float64), axis=0),
            title="Coverage Fraction",
            output_path=p,
            dpi=dpi,
        )
        saved.append(p)

    # 3. Visible surface time series
    if results.visible_surfaces and results.times:
        t0 = results.times[0]
        times_hours = [(t - t0).total_seconds() / 3600.0 for t in results.times]
        p = output_dir / "visible_surface.png"
        plot_visible_surface(
            times_hours,
            results.visible_surfaces,
            float(np.sum(results.face_areas)),
            output_path=p,
            dpi=dpi,
        )
        saved.append(p)

    logger.info("Generated %d plots in %s", len(saved), output_dir)
    return saved


def render_from_saved_data(
    data_dir: Path | str = "output",
    dpi: int = _DPI,
) -> list[Path]:
    """Re-render the map plots from arrays saved by a previous sweep.

    Parameters
    ----------
    data_dir : Path or str
        Directory written by :func:`simulation.io_manager.save_results`.
    dpi : int
        Figure resolution.

    Returns
    -------
    list[Path]
        Paths to the generated plot files.

    Raises
    ------
    FileNotFoundError
        If the directory or the visibility arrays are missing.
    """
    from simulation.io_manager import load_results

    data_dir = Path(data_dir)
    data = load_results(data_dir)
    if data["visibility_maps"] is None or data["face_centroids"] is None:
        raise FileNotFoundError(f"No visibility data saved in {data_dir}")

    maps = data["visibility_maps"]
    saved: list[Path] = []

    p = data_dir / "visibility_map.png"
    plot_visibility_map(
        data["face_centroids"],
        maps[-1],
        title="Final Visibility Map",
        output_path=p,
        contour_lat_lon=data["last_contour"],
        dpi=dpi,
    )
    saved.append(p)

    p = data_dir / "coverage_map.png"
    plot_coverage_map(
        data["face_centroids"],
        np.mean(maps.astype(np.float64), axis=0),
        output_path=p,
        dpi=dpi,
    )
    saved.append(p)

    logger.info("Re-rendered %d plots in %s", len(saved), data_dir)
    return saved
