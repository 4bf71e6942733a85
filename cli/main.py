"""CLI entry point for terrain generation."""

from __future__ import annotations

import argparse
from dataclasses import replace
from datetime import datetime, timezone
import logging
from pathlib import Path
import platform
import shutil
import tempfile
import time

import numpy as np

from heightforge.biomes import class_fractions, terrain_colormap_rgb
from heightforge.config import DEFAULT_CELL_SIZE, DEFAULT_HEIGHT, DEFAULT_WIDTH, EROSION_MODELS, GeneratorConfig
from heightforge.derive import (
    basin_id_u8,
    flow_accum_u8,
    flow_dir_u8,
    height_preview_u16,
    hillshade,
    mask_u8,
)
from heightforge.errors import TerrainError
from heightforge.io import (
    move_tree_contents,
    resolve_output_dir,
    safe_clean_output_dir,
    write_height_npy,
    write_json,
    write_png_rgb,
    write_png_u16,
    write_png_u8,
)
from heightforge.pipeline import run_pipeline

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Deterministic procedural heightmap generator")
    parser.add_argument("--seed", type=int, required=True, help="Integer noise seed")
    parser.add_argument("--out", default="out", help="Output root directory")
    parser.add_argument("--w", type=int, default=DEFAULT_WIDTH, help="Grid width in cells")
    parser.add_argument("--h", type=int, default=DEFAULT_HEIGHT, help="Grid height in cells")
    parser.add_argument("--cell-size", type=float, default=DEFAULT_CELL_SIZE, help="World units per cell")
    parser.add_argument("--octaves", type=int, default=None, help="Noise octave count")
    parser.add_argument("--frequency", type=float, default=None, help="Base noise frequency (cycles per world unit)")
    parser.add_argument("--erosion-model", choices=EROSION_MODELS, default=None, help="Erosion model")
    parser.add_argument("--iterations", type=int, default=None, help="Erosion iterations (0 disables erosion)")
    parser.add_argument("--droplets", type=int, default=None, help="Droplets per particle erosion iteration")
    parser.add_argument("--overwrite", action="store_true", help="Overwrite files in existing output directory")
    parser.add_argument(
        "--json",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Write metadata JSON files",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Increase log verbosity")
    return parser


def build_config(args: argparse.Namespace) -> GeneratorConfig:
    config = GeneratorConfig()
    noise_overrides: dict[str, object] = {"seed": args.seed}
    if args.octaves is not None:
        noise_overrides["octaves"] = args.octaves
    if args.frequency is not None:
        noise_overrides["frequency"] = args.frequency
    erosion_overrides: dict[str, object] = {}
    if args.erosion_model is not None:
        erosion_overrides["model"] = args.erosion_model
    if args.droplets is not None:
        erosion_overrides["droplets_per_iteration"] = args.droplets

    config = replace(
        config,
        noise=replace(config.noise, **noise_overrides),
        erosion=replace(config.erosion, **erosion_overrides),
    )
    if args.iterations is not None:
        config = replace(config, erosion_iterations=args.iterations)
    config.validate()
    return config


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    level = logging.WARNING
    if args.verbose == 1:
        level = logging.INFO
    elif args.verbose >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        config = build_config(args)
    except TerrainError as exc:
        parser.error(str(exc))

    generation_start = time.perf_counter()
    try:
        result = run_pipeline(args.w, args.h, config, cell_size=args.cell_size)
    except TerrainError as exc:
        parser.error(str(exc))
    generation_seconds = time.perf_counter() - generation_start

    shade = hillshade(
        result.grid,
        azimuth_deg=config.render.hillshade_azimuth_deg,
        altitude_deg=config.render.hillshade_altitude_deg,
        z_factor=config.render.hillshade_z_factor,
    )
    flow = result.flow
    png_u16_outputs: dict[str, np.ndarray] = {
        "height_16.png": height_preview_u16(result.grid.elevations),
    }
    png_u8_outputs: dict[str, np.ndarray] = {
        "hillshade.png": shade,
        "lake_mask.png": mask_u8(flow.lake_mask),
        "river_mask.png": mask_u8(flow.river_mask),
        "debug_flow_accum.png": flow_accum_u8(flow.flow_accum),
        "debug_flow_dir.png": flow_dir_u8(flow.flow_dir),
        "debug_basin_id.png": basin_id_u8(flow.basin_id_map),
    }
    png_rgb_outputs: dict[str, np.ndarray] = {
        "terrain_classes.png": terrain_colormap_rgb(result.terrain_classes),
    }

    out_dir = resolve_output_dir(args.out, args.seed, args.w, args.h, overwrite=args.overwrite)
    stage_dir = Path(tempfile.mkdtemp(prefix=".staging-", dir=str(out_dir.parent)))
    try:
        write_height_npy(stage_dir / "height.npy", result.grid.elevations)
        write_height_npy(stage_dir / "height_pre_erosion.npy", result.refined.elevations)
        for name, raster in png_u16_outputs.items():
            write_png_u16(stage_dir / name, raster)
        for name, raster in png_u8_outputs.items():
            write_png_u8(stage_dir / name, raster)
        for name, raster in png_rgb_outputs.items():
            write_png_rgb(stage_dir / name, raster)
        if args.json:
            stats = result.grid.stats()
            metrics = flow.metrics
            deterministic_meta = {
                "seed": args.seed,
                "width": args.w,
                "height": args.h,
                "cell_size": args.cell_size,
                "config": config.to_dict(),
                "elevation": {
                    "min": stats.minimum,
                    "max": stats.maximum,
                    "mean": stats.mean,
                    "variance": stats.variance,
                },
                "hydrology": {
                    "sink_count": metrics.sink_count,
                    "basin_count": metrics.basin_count,
                    "lake_count": metrics.lake_count,
                    "lake_cell_count": metrics.lake_cell_count,
                    "river_cell_count": metrics.river_cell_count,
                    "filled_cell_count": metrics.filled_cell_count,
                    "max_flow_accum": metrics.max_flow_accum,
                    "mean_flow_accum": metrics.mean_flow_accum,
                },
                "erosion": result.erosion.to_dict(),
                "terrain_classes": class_fractions(result.terrain_classes),
            }
            meta = {
                **deterministic_meta,
                "generated_at_utc": datetime.now(timezone.utc).isoformat(),
                "generation_seconds": generation_seconds,
                "stage_seconds": dict(result.stage_seconds),
                "python_version": platform.python_version(),
                "numpy_version": np.__version__,
            }
            write_json(stage_dir / "deterministic_meta.json", deterministic_meta)
            write_json(stage_dir / "meta.json", meta)

        safe_clean_output_dir(
            out_dir,
            out_root=Path(args.out),
            project_root=Path.cwd(),
        )
        move_tree_contents(stage_dir, out_dir)
    finally:
        shutil.rmtree(stage_dir, ignore_errors=True)

    print(f"Generated terrain: {out_dir}")
    print(
        "Hydrology: "
        f"basins={flow.metrics.basin_count}, lakes={flow.metrics.lake_count}, "
        f"river cells={flow.metrics.river_cell_count}, max accumulation={flow.metrics.max_flow_accum:.0f}"
    )
    print(
        "Erosion: "
        f"model={result.erosion.model}, iterations={result.erosion.iterations_run}, "
        f"mean change={result.erosion.mean_elevation_change:.5f}"
    )
    print(f"Generation time: {generation_seconds:.3f} s ({args.w}x{args.h})")
    file_count = sum(1 for child in out_dir.iterdir() if child.is_file())
    print(f"Output files: {file_count}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
