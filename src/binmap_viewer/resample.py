"""Nearest-neighbor resampling for small cell grids.

Cell maps are tiny (tens of cells per side) while tiles are a few hundred
pixels, so every logical cell must become a solid rectangular block. Index
lookup keeps cell boundaries sharp and never blends neighboring colors.
"""

from __future__ import annotations

from typing import Tuple

import numpy as np


def nearest_indices(src_len: int, dst_len: int) -> np.ndarray:
    """Return source indices sampled at destination pixel centers."""
    src_len = int(max(1, src_len))
    dst_len = int(max(1, dst_len))
    centers = (np.arange(dst_len, dtype=np.float64) + 0.5) * (src_len / dst_len)
    return np.minimum(np.floor(centers).astype(np.intp), src_len - 1)


def resize_nearest(frame: np.ndarray, size: Tuple[int, int]) -> np.ndarray:
    """Resize a 2D or 2D+channels array to ``size`` using nearest neighbor.

    Parameters
    ----------
    frame : numpy.ndarray
        Array shaped (H, W) or (H, W, C).
    size : tuple[int, int]
        Target (width, height) in pixels.

    Returns
    -------
    numpy.ndarray
        Array shaped (height, width[, C]) with the input dtype.
    """
    width, height = int(size[0]), int(size[1])
    if width <= 0 or height <= 0:
        raise ValueError(f"Output size must be positive, got {size}")
    h, w = frame.shape[:2]
    if (h, w) == (height, width):
        return frame.copy()
    rows = nearest_indices(h, height)
    cols = nearest_indices(w, width)
    return frame[rows[:, None], cols[None, :]]
