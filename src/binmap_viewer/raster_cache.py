"""Versioned, windowed tile cache feeding a virtualized grid.

Tiles are keyed by ``(unit_id, binarization_signature)``. Only units inside the
visible row window (plus overscan, decided by the caller) are ever requested,
so the cache holds a small working set even for grids of thousands of units.

Concurrency
-----------
All state is mutated on the event loop between suspension points. Every job
is tagged with the cache generation it was issued under; a result whose tag no
longer matches is dropped instead of committed, so a version bump can never be
undone by late results.

Lifecycle
---------
- ``request_visible`` issues at most one job per absent key.
- A committed tile is never mutated; it disappears only through
  ``bump_version``, ``clear_partition`` or the optional LRU cap.
- A failed job leaves its key absent; the next ``request_visible`` retries it.
"""

from __future__ import annotations

import enum
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Set, Tuple, Union

from binmap_viewer.binarization import BinarizationSpec, partition_of, signature
from binmap_viewer.config import DEFAULT_CONFIG, AppConfig
from binmap_viewer.errors import StaleResultDiscarded
from binmap_viewer.jobs import JobManager
from binmap_viewer.logger import get_logger, unit_logger
from binmap_viewer.rasterizer import RasterResult, rasterize
from binmap_viewer.samples import SampleSet
from binmap_viewer.sources import FetchSamples, fetch_or_fail, persist_features_quietly, with_timeout
from binmap_viewer.stale_result_guard import GenerationGuard
from binmap_viewer.virtual_grid import VirtualGrid, visible_indices

LOGGER = get_logger(__name__)

CacheKey = Tuple[str, str]
PARTITIONS = ("binary", "normal")


class CellState(enum.Enum):
    """Cache state for a key without a committed tile."""

    PENDING = "pending"
    ABSENT = "absent"


Lookup = Union[RasterResult, CellState]


@dataclass
class CacheStats:
    """Snapshot of cache occupancy for status display."""

    cached: int
    pending: int
    queued: int
    version: int


@dataclass
class CacheTelemetry:
    """Counters for cache diagnostics."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    stale_drops: int = 0
    failures: int = 0

    def hit_ratio(self) -> float:
        """Return cache hit ratio (0.0 to 1.0)."""
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def reset(self) -> None:
        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self.stale_drops = 0
        self.failures = 0


class WindowedRasterCache:
    """Tile cache for one visible grid.

    Parameters
    ----------
    fetch_samples : callable
        Coroutine function ``unit_id -> SampleSet``.
    config : AppConfig
        Output size, padding, LUT, concurrency cap, timeout and LRU cap.
    unit_ids : sequence of str, optional
        Logical unit list laid out row-major in the grid.
    feature_store : object, optional
        Receives ``persist_features(unit_id, samples)`` after each fetch.
    version : int, optional
        Initial cache version (see :class:`GenerationGuard`).
    rasterize_fn : callable, optional
        Replacement for :func:`binmap_viewer.rasterizer.rasterize`.

    Notes
    -----
    ``request_visible`` must be called from within a running event loop;
    otherwise it raises ``RuntimeError`` and leaves the cache unchanged.
    """

    def __init__(
        self,
        fetch_samples: FetchSamples,
        *,
        config: AppConfig = DEFAULT_CONFIG,
        unit_ids: Optional[Sequence[str]] = None,
        feature_store=None,
        version: Optional[int] = None,
        rasterize_fn: Optional[Callable[..., RasterResult]] = None,
    ) -> None:
        self._config = config
        self._fetch = with_timeout(fetch_samples, config.fetch_timeout_s)
        self._feature_store = feature_store
        self._rasterize = rasterize_fn or rasterize
        self._guard = GenerationGuard(version)
        self._items: "OrderedDict[CacheKey, RasterResult]" = OrderedDict()
        self._pending: Set[CacheKey] = set()
        self._jobs = JobManager(config.max_inflight)
        self._telemetry = CacheTelemetry()
        self._grid = VirtualGrid(config.item_height, config.gap, config.overscan)
        self._unit_ids: List[str] = list(unit_ids or [])
        self._columns = max(1, int(config.default_columns))
        self._row_range: Optional[Tuple[int, int]] = None
        self._binarization: Optional[BinarizationSpec] = None

    # ------------------------------------------------------------------
    # Window
    # ------------------------------------------------------------------
    @property
    def columns(self) -> int:
        return self._columns

    @property
    def unit_ids(self) -> List[str]:
        return list(self._unit_ids)

    @property
    def grid(self) -> VirtualGrid:
        return self._grid

    @property
    def row_range(self) -> Optional[Tuple[int, int]]:
        return self._row_range

    def set_units(self, unit_ids: Sequence[str]) -> None:
        """Replace the logical unit list. Cached tiles are kept."""
        self._unit_ids = list(unit_ids)

    def set_columns(self, n: int) -> None:
        """Set the column count; it must be one of ``config.column_options``."""
        n = int(n)
        if n < 1:
            raise ValueError(f"Column count must be >= 1, got {n}")
        options = self._config.column_options
        if options and n not in options:
            raise ValueError(f"Column count {n} not in {tuple(options)}")
        self._columns = n

    def set_visible_range(self, row_start: int, row_end: int) -> None:
        """Set the inclusive row window (already including any overscan)."""
        self._row_range = (int(row_start), int(row_end))

    def set_scroll(self, scroll_top: float, viewport_height: float) -> Optional[Tuple[int, int]]:
        """Derive the visible row window from a scroll position."""
        rows = self._grid.rows_for_scroll(
            scroll_top, viewport_height, len(self._unit_ids), self._columns
        )
        self._row_range = rows
        return rows

    def visible_indices(self) -> List[int]:
        if self._row_range is None:
            return []
        row_start, row_end = self._row_range
        return visible_indices(len(self._unit_ids), self._columns, row_start, row_end)

    def visible_unit_ids(self) -> List[str]:
        return [self._unit_ids[i] for i in self.visible_indices()]

    # ------------------------------------------------------------------
    # Binarization mode
    # ------------------------------------------------------------------
    @property
    def binarization(self) -> Optional[BinarizationSpec]:
        return self._binarization

    def set_binarization(self, spec: Optional[BinarizationSpec]) -> None:
        """Switch the mode used by ``request_visible``; existing tiles stay."""
        if spec is not None and not spec.selected_values:
            spec = None
        self._binarization = spec

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    @property
    def version(self) -> int:
        return self._guard.current

    def get(self, unit_id: str, binarization: Optional[BinarizationSpec] = None) -> Lookup:
        """Return the tile, ``CellState.PENDING`` or ``CellState.ABSENT``."""
        key = (unit_id, signature(binarization))
        item = self._items.get(key)
        if item is not None:
            self._telemetry.hits += 1
            self._items.move_to_end(key)
            return item
        self._telemetry.misses += 1
        if key in self._pending:
            return CellState.PENDING
        return CellState.ABSENT

    def stats(self) -> CacheStats:
        """Return counts for status display."""
        return CacheStats(
            cached=len(self._items),
            pending=len(self._pending),
            queued=self._jobs.queued_count,
            version=self._guard.current,
        )

    def telemetry(self) -> CacheTelemetry:
        return self._telemetry

    def keys(self) -> List[CacheKey]:
        return list(self._items.keys())

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------
    def request_visible(self) -> int:
        """Issue jobs for visible keys that are neither cached nor pending.

        Returns
        -------
        int
            Number of newly issued jobs.
        """
        spec = self._binarization
        sig = signature(spec)
        tag = self._guard.current
        issued = 0
        for unit_id in self.visible_unit_ids():
            key = (unit_id, sig)
            if key in self._items or key in self._pending:
                continue
            self._jobs.submit(
                self._job_for(unit_id, spec),
                name=unit_id,
                key=key,
                on_result=lambda result, key=key, tag=tag: self._on_result(key, tag, result),
                on_error=lambda exc, key=key, tag=tag: self._on_error(key, tag, exc),
                on_finished=lambda key=key, tag=tag: self._on_finished(key, tag),
            )
            # submit raises without queueing when no loop is running
            self._pending.add(key)
            issued += 1
        if issued:
            LOGGER.debug("Issued %d raster jobs (version %d)", issued, tag)
        return issued

    async def wait_idle(self) -> None:
        """Wait until every issued job has completed."""
        await self._jobs.join()

    def _job_for(self, unit_id: str, spec: Optional[BinarizationSpec]):
        config = self._config

        async def _produce() -> RasterResult:
            sample_set: SampleSet = await fetch_or_fail(self._fetch, unit_id)
            persist_features_quietly(self._feature_store, unit_id, sample_set)
            return self._rasterize(
                sample_set,
                config.output_size,
                config.padding,
                spec,
                config.lut,
            )

        return _produce

    def _commit(self, key: CacheKey, tag: int, result: RasterResult) -> None:
        if not self._guard.is_current(tag):
            raise StaleResultDiscarded(key, tag, self._guard.current)
        self._items[key] = result
        self._evict_if_needed()

    def _on_result(self, key: CacheKey, tag: int, result: RasterResult) -> None:
        try:
            self._commit(key, tag, result)
        except StaleResultDiscarded as exc:
            self._telemetry.stale_drops += 1
            unit_logger(LOGGER, *key).debug("Dropped stale tile: %s", exc)

    def _on_error(self, key: CacheKey, tag: int, exc: BaseException) -> None:
        if not self._guard.is_current(tag):
            return
        self._telemetry.failures += 1
        unit_logger(LOGGER, *key).warning("Tile failed, leaving placeholder: %s", exc)

    def _on_finished(self, key: CacheKey, tag: int) -> None:
        # pending belongs to the generation that issued the job
        if self._guard.is_current(tag):
            self._pending.discard(key)

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------
    def bump_version(self, version: Optional[int] = None) -> int:
        """Invalidate every tile; in-flight results of older versions are dropped.

        Jobs queued but not yet started are discarded; running jobs finish and
        are then ignored.
        """
        new_version = self._guard.advance(version)
        self._items = OrderedDict()
        self._pending = set()
        dropped = self._jobs.clear_queue()
        LOGGER.info("Cache version -> %d (dropped %d queued jobs)", new_version, dropped)
        return new_version

    def clear_partition(self, kind: str) -> int:
        """Remove tiles of one binarization mode (``"binary"`` or ``"normal"``).

        Returns
        -------
        int
            Number of removed tiles.
        """
        if kind not in PARTITIONS:
            raise ValueError(f"Partition must be one of {PARTITIONS}, got {kind!r}")
        doomed = [key for key in self._items if partition_of(key[1]) == kind]
        for key in doomed:
            del self._items[key]
        LOGGER.info("Cleared %d %s tiles", len(doomed), kind)
        return len(doomed)

    def _evict_if_needed(self) -> None:
        """Evict least-recently-used tiles that are not currently visible."""
        limit = self._config.max_cache_entries
        if limit is None or len(self._items) <= limit:
            return
        sig = signature(self._binarization)
        protected = {(unit_id, sig) for unit_id in self.visible_unit_ids()}
        for key in list(self._items.keys()):
            if len(self._items) <= limit:
                break
            if key in protected:
                continue
            del self._items[key]
            self._telemetry.evictions += 1
