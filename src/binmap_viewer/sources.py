"""Sample sources, fetch wrappers and the per-unit feature store.

The real data-source layer lives outside this package and is consumed as a
coroutine ``fetch_samples(unit_id) -> SampleSet``. This module supplies the
adapters around it (timeouts, error wrapping, feature persistence) and a
deterministic synthetic source used by the CLI, stress test and unit tests.
"""

from __future__ import annotations

import asyncio
import inspect
import math
import zlib
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Set, Tuple

import numpy as np

from binmap_viewer.errors import FetchFailure
from binmap_viewer.logger import get_logger, unit_logger
from binmap_viewer.samples import SampleSet, samples_to_array

LOGGER = get_logger(__name__)

FetchSamples = Callable[[str], Awaitable[SampleSet]]

# strong refs to scheduled persistence tasks until they complete
_PERSIST_TASKS: Set["asyncio.Future"] = set()

__all__ = [
    "FetchSamples",
    "FeatureStore",
    "SyntheticSampleSource",
    "fetch_or_fail",
    "pending_persist_count",
    "persist_features_quietly",
    "unit_ids",
    "with_timeout",
]


def unit_ids(count: int, prefix: str = "unit") -> List[str]:
    """Return ``count`` sequential unit ids (``unit-1`` ... ``unit-N``)."""
    return [f"{prefix}-{i + 1}" for i in range(int(max(0, count)))]


async def fetch_or_fail(fetch: FetchSamples, unit_id: str) -> SampleSet:
    """Await ``fetch(unit_id)``, converting any failure into FetchFailure."""
    try:
        result = await fetch(unit_id)
    except FetchFailure:
        raise
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        raise FetchFailure(unit_id, str(exc) or type(exc).__name__) from exc
    if result is None:
        raise FetchFailure(unit_id, "source returned no sample set")
    return result


def with_timeout(fetch: FetchSamples, seconds: Optional[float]) -> FetchSamples:
    """Wrap a fetch so a stalled call fails after ``seconds``.

    ``None`` or a non-positive value returns ``fetch`` unchanged.
    """
    if seconds is None or seconds <= 0:
        return fetch

    async def _fetch(unit_id: str) -> SampleSet:
        try:
            return await asyncio.wait_for(fetch(unit_id), timeout=seconds)
        except asyncio.TimeoutError as exc:
            raise FetchFailure(unit_id, f"timed out after {seconds:g}s") from exc

    return _fetch


class FeatureStore:
    """In-memory per-unit feature cache.

    Features are the raw ``(N, 3)`` x/y/value arrays of each unit, stored for a
    downstream consumer. Entries are replaced on re-persist.
    """

    def __init__(self) -> None:
        self._features: Dict[str, np.ndarray] = {}

    def persist_features(self, unit_id: str, samples: SampleSet) -> None:
        arr = samples_to_array(samples)
        arr.setflags(write=False)
        self._features[unit_id] = arr

    def get_cached_features(self, unit_id: str) -> Optional[np.ndarray]:
        return self._features.get(unit_id)

    def has_cached_features(self, unit_id: str) -> bool:
        return unit_id in self._features

    def status(self) -> Tuple[int, List[str]]:
        """Return (count, unit_ids) of stored features."""
        ids = sorted(self._features)
        return len(ids), ids

    def clear(self) -> None:
        self._features.clear()


def persist_features_quietly(store, unit_id: str, samples: SampleSet) -> None:
    """Push features to ``store`` without ever failing the caller.

    Synchronous stores are called inline; coroutine-returning stores are
    scheduled on the running loop. Errors are logged as warnings.
    """
    if store is None:
        return
    try:
        outcome = store.persist_features(unit_id, samples)
    except Exception as exc:
        unit_logger(LOGGER, unit_id).warning("Feature persistence failed: %s", exc)
        return
    if not inspect.isawaitable(outcome):
        return

    def _log_failure(task: "asyncio.Future") -> None:
        _PERSIST_TASKS.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            unit_logger(LOGGER, unit_id).warning("Feature persistence failed: %s", exc)

    task = asyncio.ensure_future(outcome)
    _PERSIST_TASKS.add(task)
    task.add_done_callback(_log_failure)


def pending_persist_count() -> int:
    """Number of scheduled feature persistence tasks still running."""
    return len(_PERSIST_TASKS)


class SyntheticSampleSource:
    """Deterministic bin maps on a circular die grid.

    Each unit gets a ``diameter`` x ``diameter`` grid clipped to a circle.
    Most dies report bin 1 (pass); a unit-specific arc and a radial ring
    report failing bins in ``[2, n_bins]``. The same unit id always yields
    the same samples.

    Parameters
    ----------
    diameter : int
        Dies across the wafer.
    n_bins : int
        Highest bin code emitted.
    delay_s : float
        Artificial latency per fetch.
    failing : iterable of str
        Unit ids whose fetch raises, to exercise failure paths.
    """

    def __init__(
        self,
        diameter: int = 24,
        n_bins: int = 8,
        delay_s: float = 0.0,
        failing: Iterable[str] = (),
    ) -> None:
        self.diameter = int(max(1, diameter))
        self.n_bins = int(max(2, n_bins))
        self.delay_s = float(delay_s)
        self.failing = set(failing)
        self.calls: Dict[str, int] = {}

    def build(self, unit_id: str) -> SampleSet:
        """Generate a unit's samples synchronously."""
        seed = zlib.crc32(unit_id.encode("utf-8"))
        rng = np.random.default_rng(seed)
        radius = self.diameter / 2.0
        center = (self.diameter - 1) / 2.0
        arc_start = rng.uniform(0.0, 2.0 * math.pi)
        arc_width = rng.uniform(0.3, 1.2)
        ring = rng.uniform(0.4, 0.9) * radius
        rows = []
        for y in range(self.diameter):
            for x in range(self.diameter):
                dx, dy = x - center, y - center
                dist = math.hypot(dx, dy)
                if dist > radius:
                    continue
                angle = (math.atan2(dy, dx) - arc_start) % (2.0 * math.pi)
                if angle < arc_width and dist > 0.5 * radius:
                    value = int(rng.integers(2, self.n_bins + 1))
                elif abs(dist - ring) < 0.75:
                    value = self.n_bins
                else:
                    value = 1
                rows.append((x, y, value))
        return SampleSet.from_tuples(unit_id, rows)

    async def fetch_samples(self, unit_id: str) -> SampleSet:
        self.calls[unit_id] = self.calls.get(unit_id, 0) + 1
        if self.delay_s > 0:
            await asyncio.sleep(self.delay_s)
        if unit_id in self.failing:
            raise ConnectionError(f"source unavailable for {unit_id}")
        return self.build(unit_id)

    __call__ = fetch_samples
