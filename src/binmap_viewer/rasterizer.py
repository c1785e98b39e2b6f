"""Rasterize sparse bin-map samples into fixed-size colorized PNG tiles.

Pipeline
--------
1. Bounding box of the sample coordinates (rebased to 0, optional padding).
2. Per-sample intensity: binarization mask (0/255) or a global min/max rescale.
3. Scatter intensities into a dense scalar field (0 = no data).
4. Colorize non-zero cells through the LUT; zero cells stay fully transparent.
5. Nearest-neighbor resize to the output size and PNG encode.

Everything here is a pure function of its inputs: identical arguments yield
byte-identical PNG payloads.
"""

from __future__ import annotations

import base64
import io
import warnings
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from matplotlib import image as mimage

from binmap_viewer.binarization import BinarizationSpec, binarize_values
from binmap_viewer.errors import DegenerateRangeWarning, EmptyInputError
from binmap_viewer.logger import get_logger
from binmap_viewer.lut_manager import DEFAULT_LUT, lut_table
from binmap_viewer.resample import resize_nearest
from binmap_viewer.samples import SampleSet, samples_to_array

LOGGER = get_logger(__name__)

__all__ = [
    "RasterResult",
    "compute_intensities",
    "scatter_field",
    "colorize",
    "rasterize_rgba",
    "rasterize",
    "encode_png",
    "decode_png",
]


@dataclass(frozen=True)
class RasterResult:
    """Encoded tile ready for display.

    Attributes
    ----------
    png : bytes
        PNG payload sized exactly to ``size``.
    size : tuple[int, int]
        (width, height) in pixels.
    """

    png: bytes
    size: Tuple[int, int]

    @property
    def nbytes(self) -> int:
        return len(self.png)

    def data_url(self) -> str:
        """Return the tile as a ``data:image/png;base64,...`` URL."""
        return "data:image/png;base64," + base64.b64encode(self.png).decode("ascii")


def compute_intensities(
    values: np.ndarray,
    binarization: Optional[BinarizationSpec] = None,
    *,
    unit_id: str = "-",
) -> np.ndarray:
    """Return per-sample intensities in [0, 255] as uint8.

    With a binarization spec, selected values map to 255 and all others to 0.
    Otherwise values are rescaled linearly with the global min/max. When every
    value is equal the range is degenerate: positive values map to 255 and
    zero/negative values to 0.
    """
    values = np.asarray(values, dtype=np.int64)
    if values.size == 0:
        return np.zeros(0, dtype=np.uint8)
    if binarization is not None and binarization.selected_values:
        return binarize_values(values, binarization).astype(np.uint8)
    v_min = int(values.min())
    v_max = int(values.max())
    if v_min == v_max:
        LOGGER.warning(
            "Degenerate value range (all values == %d); using sign rule",
            v_min,
            extra={"unit_id": unit_id},
        )
        warnings.warn(
            f"All sample values equal {v_min}; intensity falls back to 0/255",
            DegenerateRangeWarning,
            stacklevel=2,
        )
        return np.full(values.shape, 255 if v_min > 0 else 0, dtype=np.uint8)
    scaled = (values - v_min).astype(np.float64) * (255.0 / (v_max - v_min))
    return np.clip(np.rint(scaled), 0, 255).astype(np.uint8)


def scatter_field(xy: np.ndarray, intensities: np.ndarray, padding: int = 0) -> np.ndarray:
    """Write intensities into a zero-initialized (rows=y, cols=x) field.

    Later samples at the same coordinate overwrite earlier ones.
    """
    padding = int(max(0, padding))
    x = xy[:, 0]
    y = xy[:, 1]
    x_min, x_max = int(x.min()), int(x.max())
    y_min, y_max = int(y.min()), int(y.max())
    width = x_max - x_min + 1 + 2 * padding
    height = y_max - y_min + 1 + 2 * padding
    field = np.zeros((height, width), dtype=np.uint8)
    # numpy fancy assignment keeps the last write for repeated indices
    field[y - y_min + padding, x - x_min + padding] = intensities
    return field


def colorize(field: np.ndarray, lut: str = DEFAULT_LUT) -> np.ndarray:
    """Map a uint8 scalar field to RGBA; zero cells become transparent."""
    rgba = lut_table(lut)[field]
    rgba[field == 0] = 0
    return rgba


def rasterize_rgba(
    samples: SampleSet,
    output_size: Tuple[int, int] = (300, 300),
    padding: int = 0,
    binarization: Optional[BinarizationSpec] = None,
    lut: str = DEFAULT_LUT,
) -> np.ndarray:
    """Rasterize samples into an ``(height, width, 4)`` uint8 RGBA array.

    Raises
    ------
    EmptyInputError
        If the sample set has no samples.
    """
    if samples.is_empty:
        raise EmptyInputError(f"Unit {samples.unit_id} has no samples to rasterize")
    arr = samples_to_array(samples)
    intensities = compute_intensities(arr[:, 2], binarization, unit_id=samples.unit_id)
    field = scatter_field(arr[:, :2], intensities, padding)
    return resize_nearest(colorize(field, lut), output_size)


def encode_png(rgba: np.ndarray) -> bytes:
    """Encode an RGBA uint8 array as PNG without extra text chunks."""
    buf = io.BytesIO()
    mimage.imsave(buf, np.ascontiguousarray(rgba), format="png", origin="upper", metadata={"Software": None})
    return buf.getvalue()


def decode_png(payload: bytes) -> np.ndarray:
    """Decode a PNG payload to an RGBA uint8 array."""
    arr = mimage.imread(io.BytesIO(payload), format="png")
    if arr.dtype != np.uint8:
        arr = np.rint(arr * 255.0).astype(np.uint8)
    if arr.ndim == 3 and arr.shape[2] == 3:
        alpha = np.full(arr.shape[:2] + (1,), 255, dtype=np.uint8)
        arr = np.concatenate([arr, alpha], axis=2)
    return arr


def rasterize(
    samples: SampleSet,
    output_size: Tuple[int, int] = (300, 300),
    padding: int = 0,
    binarization: Optional[BinarizationSpec] = None,
    lut: str = DEFAULT_LUT,
) -> RasterResult:
    """Rasterize a sample set into an encoded PNG tile.

    Parameters
    ----------
    samples : SampleSet
        One unit's samples, or an aggregated pattern converted to samples.
    output_size : tuple[int, int]
        (width, height) of the produced tile.
    padding : int
        Empty cells added around the bounding box.
    binarization : BinarizationSpec, optional
        Value-membership mask; ``None`` rescales raw values instead.
    lut : str
        Colormap name.
    """
    rgba = rasterize_rgba(samples, output_size, padding, binarization, lut)
    size = (int(output_size[0]), int(output_size[1]))
    return RasterResult(encode_png(rgba), size)
