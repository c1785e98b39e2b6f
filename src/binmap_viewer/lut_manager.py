"""LUT registry for tile colorization."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import List

import matplotlib
import numpy as np


@dataclass(frozen=True)
class LutSpec:
    """LUT specification for a matplotlib colormap."""

    name: str
    matplotlib_cmap_name: str
    invert_supported: bool = True


LUTS: List[LutSpec] = [
    LutSpec("jet", "jet", False),
    LutSpec("turbo", "turbo", False),
    LutSpec("viridis", "viridis", True),
    LutSpec("gray", "gray", True),
]

DEFAULT_LUT = "jet"


def lut_names() -> List[str]:
    """Return display names for all LUTs."""
    return [spec.name for spec in LUTS]


def lut_spec(name: str) -> LutSpec:
    """Look up a LUT by display name."""
    for spec in LUTS:
        if spec.name == name:
            return spec
    raise KeyError(f"Unknown LUT: {name} (available: {lut_names()})")


def cmap_for(spec: LutSpec, invert: bool = False):
    """Return a matplotlib colormap for the LUT spec."""
    cmap = matplotlib.colormaps[spec.matplotlib_cmap_name]
    if invert and spec.invert_supported:
        return cmap.reversed()
    return cmap


@lru_cache(maxsize=None)
def lut_table(name: str = DEFAULT_LUT, invert: bool = False) -> np.ndarray:
    """Return a read-only ``(256, 4)`` uint8 RGBA table for intensities 0-255.

    ``jet`` is piecewise linear, running from cool (blue) at 0 to warm (dark
    red) at 255. Alpha is always 255 here; transparency of empty cells is
    applied by the rasterizer.
    """
    cmap = cmap_for(lut_spec(name), invert)
    table = cmap(np.linspace(0.0, 1.0, 256), bytes=True).astype(np.uint8)
    table.setflags(write=False)
    return table
