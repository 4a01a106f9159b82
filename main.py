"""FacetEngine — CLI entry point.

Runs a visibility and illumination coverage sweep over a triangulated body.

Usage
-----
    python main.py --steps 24 --radius 10000 --fov 10
    python main.py --mesh data/itokawa.obj --mesh-scale 1000 --steps 12
    python main.py --render-only           # re-render plots from saved data
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

_DEFAULT_CONFIG = "config/default_config.yaml"


def setup_logging(level: str = "INFO") -> None:
    """Configure structured logging."""
    fmt = "%(name)s [%(levelname)s] %(message)s"
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=fmt,
        stream=sys.stdout,
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(
        prog="facet-engine",
        description="FacetEngine — triangulated body visibility & illumination coverage",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  python main.py --steps 24\n"
            "  python main.py --radius 5000 --fov 5 --steps 48\n"
            "  python main.py --mesh data/body.obj --mesh-scale 1000\n"
            "  python main.py --render-only --output output\n"
        ),
    )
    parser.add_argument(
        "--config",
        type=str,
        default=_DEFAULT_CONFIG,
        help="Path to engine config YAML (default: config/default_config.yaml)",
    )
    parser.add_argument(
        "--steps",
        type=int,
        default=None,
        help="Number of observer states (default: from config)",
    )
    parser.add_argument(
        "--radius",
        type=float,
        default=None,
        help="Override synthetic body radius in meters (default: from config)",
    )
    parser.add_argument(
        "--fov",
        type=float,
        default=None,
        help="Override sensor half-aperture in degrees (default: from config)",
    )
    parser.add_argument(
        "--mesh",
        type=str,
        default=None,
        help="Path to a Wavefront OBJ body. Bypasses the synthetic body.",
    )
    parser.add_argument(
        "--mesh-scale",
        type=float,
        default=1.0,
        help="Factor applied to OBJ coordinates (default: 1)",
    )
    parser.add_argument(
        "--output",
        type=str,
        default="output",
        help="Output directory for plots and data (default: output/)",
    )
    parser.add_argument(
        "--no-plots",
        action="store_true",
        default=False,
        help="Skip plot generation",
    )
    parser.add_argument(
        "--render-only",
        action="store_true",
        default=False,
        help="Skip the sweep; render plots from existing saved data",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: INFO)",
    )

    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Main coverage entry point."""
    args = parse_args(argv)
    setup_logging(args.log_level)

    logger = logging.getLogger("facet_engine")
    logger.info("=" * 60)
    logger.info("  FacetEngine — Body Coverage Sweep")
    logger.info("=" * 60)

    output_dir = Path(args.output)

    # --render-only mode: skip the sweep, just re-render from saved data
    if args.render_only:
        logger.info("Render-only mode: loading saved data from %s/", output_dir)
        from visualization.plotter import render_from_saved_data

        saved = render_from_saved_data(output_dir)
        logger.info("Rendered %d plots", len(saved))
        return 0

    from facet_engine.constants import EngineConfig, load_config, log_platform_info
    from simulation.runner import CoverageRunner
    from visualization.plotter import generate_all_plots

    log_platform_info()

    # Load configuration
    config_path = Path(args.config)
    if config_path.exists():
        logger.info("Loading config: %s", config_path)
        config = load_config(config_path)
    elif args.config == _DEFAULT_CONFIG:
        logger.warning("Default config %s not found, using built-in defaults", config_path)
        config = EngineConfig()
    else:
        logger.error("Config file not found: %s", config_path)
        return 1

    # Load external mesh if provided
    external_mesh = None
    if args.mesh:
        from mesh_ingestion.obj_loader import load_obj

        external_mesh = load_obj(args.mesh, scale=args.mesh_scale)

    runner = CoverageRunner(
        config=config,
        radius_m=args.radius,
        fov_half_angle_deg=args.fov,
    )
    results = runner.run(
        num_steps=args.steps,
        save_data=True,
        output_dir=output_dir,
        external_mesh=external_mesh,
    )

    saved: list[Path] = []
    if not args.no_plots:
        logger.info("Generating plots → %s/", output_dir)
        saved = generate_all_plots(results, output_dir=output_dir)

    # Summary
    logger.info("=" * 60)
    logger.info("  COVERAGE COMPLETE")
    logger.info("=" * 60)
    logger.info(
        "  States: %d, triangles: %d",
        results.metadata["num_steps"], results.metadata["num_triangles"],
    )
    logger.info("  Wall time: %.1f s", results.metadata.get("wall_time_s", 0))
    logger.info(
        "  Never visible: %d, never enlightened: %d, visible & enlightened: %d",
        results.never_visible.size,
        results.never_enlightened.size,
        results.visible_and_enlightened.size,
    )
    logger.info("  Plot files (%d):", len(saved))
    for p in saved:
        logger.info("    → %s", p)
    logger.info("=" * 60)

    return 0


if __name__ == "__main__":
    sys.exit(main())
