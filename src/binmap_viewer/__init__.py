"""Bin-map viewer package."""

from binmap_viewer.aggregator import AggregatedPattern, PatternState, aggregate
from binmap_viewer.binarization import BinarizationSpec
from binmap_viewer.config import AppConfig, DEFAULT_CONFIG
from binmap_viewer.errors import (
    DegenerateRangeWarning,
    EmptyInputError,
    FetchFailure,
    StaleResultDiscarded,
)
from binmap_viewer.raster_cache import CellState, WindowedRasterCache
from binmap_viewer.rasterizer import RasterResult, rasterize
from binmap_viewer.samples import Sample, SampleSet

__all__ = [
    "__version__",
    "AggregatedPattern",
    "AppConfig",
    "BinarizationSpec",
    "CellState",
    "DEFAULT_CONFIG",
    "DegenerateRangeWarning",
    "EmptyInputError",
    "FetchFailure",
    "PatternState",
    "RasterResult",
    "Sample",
    "SampleSet",
    "StaleResultDiscarded",
    "WindowedRasterCache",
    "aggregate",
    "rasterize",
]

__version__ = "1.0.0"
