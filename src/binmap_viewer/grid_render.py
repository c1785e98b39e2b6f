"""Render the visible window of a tile grid to an RGBA array.

The renderer only reads the cache. Cells with a committed tile show the
decoded PNG; every other visible cell shows a placeholder labelled with its
state. Nothing here triggers rasterization.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

import numpy as np
from matplotlib.backends.backend_agg import FigureCanvasAgg
from matplotlib.figure import Figure
from matplotlib.patches import Rectangle

from binmap_viewer.binarization import BinarizationSpec
from binmap_viewer.raster_cache import CellState, WindowedRasterCache
from binmap_viewer.rasterizer import RasterResult, decode_png

_PLACEHOLDER_FACE = "#e5e7eb"
_PLACEHOLDER_EDGE = "#9ca3af"


@dataclass(frozen=True)
class GridCell:
    """One visible grid slot.

    Attributes
    ----------
    index : int
        Logical index in the unit list.
    unit_id : str
        Unit shown in the slot.
    row, col : int
        Grid position.
    state : CellState, optional
        ``None`` when ``result`` holds a committed tile.
    result : RasterResult, optional
        Committed tile, if any.
    """

    index: int
    unit_id: str
    row: int
    col: int
    state: Optional[CellState]
    result: Optional[RasterResult]

    @property
    def loaded(self) -> bool:
        return self.result is not None


def visible_cells(
    cache: WindowedRasterCache, binarization: Optional[BinarizationSpec] = None
) -> List[GridCell]:
    """Snapshot the visible window; results may arrive in any order."""
    cells: List[GridCell] = []
    columns = cache.columns
    unit_ids = cache.unit_ids
    for index in cache.visible_indices():
        unit_id = unit_ids[index]
        lookup = cache.get(unit_id, binarization)
        row, col = divmod(index, columns)
        if isinstance(lookup, CellState):
            cells.append(GridCell(index, unit_id, row, col, lookup, None))
        else:
            cells.append(GridCell(index, unit_id, row, col, None, lookup))
    return cells


def render_grid(
    cache: WindowedRasterCache,
    binarization: Optional[BinarizationSpec] = None,
    *,
    tile_px: int = 96,
    gap_px: int = 4,
    dpi: int = 100,
    show_labels: bool = True,
) -> np.ndarray:
    """Draw the visible window into an ``(H, W, 4)`` uint8 array.

    Parameters
    ----------
    cache : WindowedRasterCache
        Source of tiles and of the visible window.
    binarization : BinarizationSpec, optional
        Which tile partition to show; defaults to raw tiles.
    tile_px, gap_px : int
        Cell size and spacing in output pixels.
    dpi : int
        Figure resolution used to convert pixel sizes to inches.
    show_labels : bool
        Draw unit ids under each tile.
    """
    cells = visible_cells(cache, binarization)
    columns = cache.columns
    if cells:
        first_row = cells[0].row
        n_rows = cells[-1].row - first_row + 1
    else:
        first_row, n_rows = 0, 1
    stride = tile_px + gap_px
    width_px = max(1, columns * stride + gap_px)
    height_px = max(1, n_rows * stride + gap_px)

    fig = Figure(figsize=(width_px / dpi, height_px / dpi), dpi=dpi)
    canvas = FigureCanvasAgg(fig)
    ax = fig.add_axes([0, 0, 1, 1])
    ax.set_axis_off()
    ax.set_xlim(0, width_px)
    ax.set_ylim(height_px, 0)

    for cell in cells:
        x0 = gap_px + cell.col * stride
        y0 = gap_px + (cell.row - first_row) * stride
        extent = (x0, x0 + tile_px, y0 + tile_px, y0)
        if cell.result is not None:
            ax.imshow(
                decode_png(cell.result.png), extent=extent, interpolation="nearest", aspect="auto"
            )
        else:
            ax.add_patch(
                Rectangle(
                    (x0, y0),
                    tile_px,
                    tile_px,
                    facecolor=_PLACEHOLDER_FACE,
                    edgecolor=_PLACEHOLDER_EDGE,
                    linewidth=1,
                )
            )
            ax.text(
                x0 + tile_px / 2,
                y0 + tile_px / 2,
                "loading" if cell.state is CellState.PENDING else "waiting",
                ha="center",
                va="center",
                fontsize=7,
                color="#4b5563",
            )
        if show_labels:
            ax.text(
                x0 + 2,
                y0 + tile_px - 2,
                cell.unit_id,
                ha="left",
                va="bottom",
                fontsize=6,
                color="black",
            )
    ax.set_xlim(0, width_px)
    ax.set_ylim(height_px, 0)
    canvas.draw()
    return np.asarray(canvas.buffer_rgba()).copy()
