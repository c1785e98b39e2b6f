"""Row virtualization math for a fixed-height, G-column tile grid.

Only the geometry lives here: which rows intersect the viewport (plus
overscan), where each row starts, and which logical indices a row range
covers. Visibility never depends on cache contents.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Optional, Tuple


def row_count(count: int, columns: int) -> int:
    """Number of rows needed for ``count`` tiles in ``columns`` columns."""
    if count <= 0:
        return 0
    return int(math.ceil(count / max(1, int(columns))))


def visible_indices(count: int, columns: int, row_start: int, row_end: int) -> List[int]:
    """Logical indices ``row*columns + col`` for rows in [row_start, row_end].

    Rows are inclusive and indices are clamped to ``[0, count)``.
    """
    columns = max(1, int(columns))
    row_start = max(0, int(row_start))
    row_end = int(row_end)
    if count <= 0 or row_end < row_start:
        return []
    first = row_start * columns
    last = min(count, (row_end + 1) * columns)
    return list(range(first, last)) if first < last else []


@dataclass(frozen=True)
class VirtualGrid:
    """Fixed row geometry for a virtualized grid.

    Parameters
    ----------
    item_height : int
        Tile row height in pixels.
    gap : int
        Vertical gap between rows in pixels.
    overscan : int
        Extra rows materialized above and below the viewport.
    """

    item_height: int = 300
    gap: int = 16
    overscan: int = 2

    @property
    def row_stride(self) -> int:
        return self.item_height + self.gap

    def row_offset(self, row: int) -> int:
        """Pixel offset of the top of ``row``."""
        return int(row) * self.row_stride

    def total_height(self, count: int, columns: int) -> int:
        """Scrollable content height for ``count`` tiles."""
        return row_count(count, columns) * self.row_stride

    def rows_for_scroll(
        self,
        scroll_top: float,
        viewport_height: float,
        count: int,
        columns: int,
    ) -> Optional[Tuple[int, int]]:
        """Return the inclusive (row_start, row_end) to materialize.

        Returns ``None`` when the grid is empty.
        """
        total_rows = row_count(count, columns)
        if total_rows == 0:
            return None
        stride = self.row_stride
        scroll_top = max(0.0, float(scroll_top))
        start = max(0, int(math.floor(scroll_top / stride)) - self.overscan)
        end = min(
            total_rows - 1,
            int(math.ceil((scroll_top + max(0.0, float(viewport_height))) / stride)) + self.overscan,
        )
        start = min(start, end)
        return start, end
