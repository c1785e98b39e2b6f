"""Command-line entry points for headless grid rendering and aggregation.

Examples:
    binmap-viewer grid --units 60 --columns 4 --rows 2 4 --out grid.png
    binmap-viewer grid --units 60 --bins 3 4 --out binary.png
    binmap-viewer aggregate unit-1 unit-2 unit-3 --threshold 2
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import pathlib
from typing import List, Optional

from matplotlib import image as mimage

from binmap_viewer.aggregator import PatternState, pattern_statistics
from binmap_viewer.binarization import BinarizationSpec, bin_options
from binmap_viewer.config import DEFAULT_CONFIG, AppConfig, load_config
from binmap_viewer.grid_render import render_grid
from binmap_viewer.logger import get_logger, set_level
from binmap_viewer.raster_cache import WindowedRasterCache
from binmap_viewer.sources import FeatureStore, SyntheticSampleSource, unit_ids

LOGGER = get_logger(__name__)


def _bin_spec(values: Optional[List[int]], config: AppConfig) -> Optional[BinarizationSpec]:
    """Build a binarization spec from bin codes offered by ``config``."""
    spec = BinarizationSpec.from_values(values)
    if spec is None:
        return None
    labels = dict(bin_options(config.bin_count, config.bin_label_padding))
    unknown = sorted(v for v in spec.selected_values if v not in labels)
    if unknown:
        raise ValueError(f"Unknown bin codes {unknown} (valid: 1..{config.bin_count})")
    LOGGER.info("Binarizing on %s", ", ".join(labels[v] for v in sorted(spec.selected_values)))
    return spec


async def _render_window(args: argparse.Namespace, config: AppConfig) -> None:
    source = SyntheticSampleSource(diameter=args.diameter, delay_s=args.delay)
    cache = WindowedRasterCache(
        source.fetch_samples,
        config=config,
        unit_ids=unit_ids(args.units),
        feature_store=FeatureStore(),
    )
    cache.set_columns(args.columns or config.default_columns)
    cache.set_visible_range(args.rows[0], args.rows[1])
    spec = args.spec
    cache.set_binarization(spec)
    issued = cache.request_visible()
    LOGGER.info("Requested %d tiles", issued)
    await cache.wait_idle()
    stats = cache.stats()
    LOGGER.info("Cached %d tiles (version %d)", stats.cached, stats.version)
    rgba = render_grid(cache, spec)
    mimage.imsave(str(args.out), rgba)
    print(f"Wrote {args.out} ({rgba.shape[1]}x{rgba.shape[0]})")


async def _aggregate(args: argparse.Namespace, config: AppConfig) -> int:
    source = SyntheticSampleSource(diameter=args.diameter)
    state = PatternState()
    try:
        pattern = await state.generate(
            args.unit_ids,
            args.threshold,
            source.fetch_samples,
            args.spec,
        )
    except Exception:
        print(state.last_error)
        return 1
    stats = pattern_statistics(pattern)
    print(
        f"cells={stats.total_cells} active={stats.active_cells} "
        f"inactive={stats.inactive_cells} active%={stats.active_percentage}"
    )
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="binmap-viewer", description="Bin-map grid tools")
    parser.add_argument("--config", type=pathlib.Path, help="JSON config file")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--diameter", type=int, default=24, help="Synthetic dies across")
    sub = parser.add_subparsers(dest="command", required=True)

    grid = sub.add_parser("grid", help="Render a window of a synthetic grid to PNG")
    grid.add_argument("--units", type=int, default=60, help="Number of units in the grid")
    grid.add_argument("--columns", type=int, default=None, help="Grid columns")
    grid.add_argument(
        "--rows", type=int, nargs=2, default=(0, 1), metavar=("START", "END"),
        help="Inclusive visible row range",
    )
    grid.add_argument("--bins", type=int, nargs="*", default=None, help="Binarize on these bins")
    grid.add_argument("--delay", type=float, default=0.0, help="Artificial fetch latency (s)")
    grid.add_argument("--out", type=pathlib.Path, default=pathlib.Path("grid.png"))

    agg = sub.add_parser("aggregate", help="Aggregate units and print pattern statistics")
    agg.add_argument("unit_ids", nargs="+", help="Units to combine")
    agg.add_argument("--threshold", type=float, default=0.0)
    agg.add_argument("--bins", type=int, nargs="*", default=None, help="Binarize on these bins")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if args.verbose:
        set_level(logging.DEBUG)
    config = load_config(args.config) if args.config else DEFAULT_CONFIG
    try:
        args.spec = _bin_spec(args.bins, config)
    except ValueError as exc:
        parser.error(str(exc))
    if args.command == "grid" and args.columns is not None and args.columns not in config.column_options:
        parser.error(f"--columns must be one of {tuple(config.column_options)}")
    if args.command == "grid":
        asyncio.run(_render_window(args, config))
        return 0
    return asyncio.run(_aggregate(args, config))


if __name__ == "__main__":
    raise SystemExit(main())
