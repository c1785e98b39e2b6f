"""Error taxonomy for the aggregation, rasterization and cache layers."""

from __future__ import annotations

from typing import Optional

__all__ = [
    "BinmapError",
    "EmptyInputError",
    "FetchFailure",
    "StaleResultDiscarded",
    "DegenerateRangeWarning",
]


class BinmapError(Exception):
    """Base class for pipeline errors."""


class EmptyInputError(BinmapError, ValueError):
    """No samples were available to aggregate or rasterize."""


class FetchFailure(BinmapError, RuntimeError):
    """The sample source rejected or timed out for a unit.

    Parameters
    ----------
    unit_id : str
        Unit whose fetch failed.
    reason : str, optional
        Short description; defaults to the chained exception text.
    """

    def __init__(self, unit_id: str, reason: Optional[str] = None) -> None:
        self.unit_id = unit_id
        self.reason = reason or "fetch failed"
        super().__init__(f"Failed to fetch samples for {unit_id}: {self.reason}")


class StaleResultDiscarded(BinmapError):
    """A completed rasterization belongs to a superseded cache version.

    Raised and caught inside the cache layer only; never user visible.
    """

    def __init__(self, key: tuple, issued_version: int, current_version: int) -> None:
        self.key = key
        self.issued_version = issued_version
        self.current_version = current_version
        super().__init__(
            f"Result for {key} issued under version {issued_version}, "
            f"cache is at {current_version}"
        )


class DegenerateRangeWarning(UserWarning):
    """All raw values in a sample set are equal; rescale used the sign rule."""
