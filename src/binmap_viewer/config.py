"""Application configuration for the bin-map grid and pattern pipeline.

Configuration is a frozen dataclass so a single instance can be shared by the
cache, the grid geometry and the CLI. JSON persistence tolerates missing keys
and falls back to the defaults below.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional, Tuple


@dataclass(frozen=True)
class AppConfig:
    """Settings for rasterization, concurrency and grid layout.

    Parameters
    ----------
    output_size : tuple[int, int]
        (width, height) of every rasterized tile in pixels.
    padding : int
        Empty cells added around each map before resizing.
    max_inflight : int
        Maximum simultaneous rasterizations issued by a cache instance.
    item_height, gap, overscan : int
        Virtual grid row geometry (pixels) and rows rendered beyond the viewport.
    default_columns : int
        Initial grid column count.
    column_options : tuple[int, ...]
        Column counts offered to the user.
    bin_count, bin_label_padding : int
        Number of selectable bin codes and zero padding of their labels.
    fetch_timeout_s : float, optional
        Per-fetch timeout; ``None`` waits indefinitely.
    lut : str
        Colormap name from :mod:`binmap_viewer.lut_manager`.
    max_cache_entries : int, optional
        LRU cap on committed tiles; ``None`` disables eviction.
    """

    output_size: Tuple[int, int] = (300, 300)
    padding: int = 0
    max_inflight: int = 10
    item_height: int = 300
    gap: int = 16
    overscan: int = 2
    default_columns: int = 3
    column_options: Tuple[int, ...] = field(default=(1, 2, 3, 4, 5, 6))
    bin_count: int = 699
    bin_label_padding: int = 3
    fetch_timeout_s: Optional[float] = None
    lut: str = "jet"
    max_cache_entries: Optional[int] = None


DEFAULT_CONFIG = AppConfig()


def config_to_dict(config: AppConfig) -> dict:
    """Serialize an AppConfig to JSON-compatible primitives."""
    data = asdict(config)
    data["output_size"] = list(config.output_size)
    data["column_options"] = list(config.column_options)
    return data


def config_from_dict(data: dict, fallback: Optional[AppConfig] = None) -> AppConfig:
    """Deserialize an AppConfig, filling missing keys from ``fallback``."""
    if fallback is None:
        fallback = DEFAULT_CONFIG
    timeout = data.get("fetch_timeout_s", fallback.fetch_timeout_s)
    max_entries = data.get("max_cache_entries", fallback.max_cache_entries)
    return AppConfig(
        output_size=tuple(int(v) for v in data.get("output_size", fallback.output_size)),
        padding=int(data.get("padding", fallback.padding)),
        max_inflight=max(1, int(data.get("max_inflight", fallback.max_inflight))),
        item_height=int(data.get("item_height", fallback.item_height)),
        gap=int(data.get("gap", fallback.gap)),
        overscan=int(data.get("overscan", fallback.overscan)),
        default_columns=int(data.get("default_columns", fallback.default_columns)),
        column_options=tuple(int(v) for v in data.get("column_options", fallback.column_options)),
        bin_count=int(data.get("bin_count", fallback.bin_count)),
        bin_label_padding=int(data.get("bin_label_padding", fallback.bin_label_padding)),
        fetch_timeout_s=None if timeout is None else float(timeout),
        lut=str(data.get("lut", fallback.lut)),
        max_cache_entries=None if max_entries is None else int(max_entries),
    )


def load_config(path: Path) -> AppConfig:
    """Read a JSON config file; a missing file yields the defaults."""
    path = Path(path)
    if not path.exists():
        return DEFAULT_CONFIG
    data = json.loads(path.read_text(encoding="utf-8"))
    return config_from_dict(data)


def save_config(config: AppConfig, path: Path) -> None:
    """Write a config as indented JSON."""
    Path(path).write_text(json.dumps(config_to_dict(config), indent=2), encoding="utf-8")
