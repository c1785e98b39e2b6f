import asyncio
import os
from typing import Dict, Iterable, Tuple

import matplotlib
import pytest

from binmap_viewer.config import AppConfig
from binmap_viewer.samples import SampleSet

# Headless rendering for grid/PNG tests under CI
os.environ.setdefault("MPLBACKEND", "Agg")
matplotlib.use(os.environ.get("MPLBACKEND", "Agg"), force=True)


class GatedSource:
    """Fetch stub that blocks until ``release()`` and counts calls per unit."""

    def __init__(self, data: Dict[str, Iterable[Tuple[int, int, int]]]) -> None:
        self._data = {uid: SampleSet.from_tuples(uid, rows) for uid, rows in data.items()}
        self.gate = asyncio.Event()
        self.calls: Dict[str, int] = {}
        self.active = 0
        self.max_active = 0

    def release(self) -> None:
        self.gate.set()

    async def fetch_samples(self, unit_id: str) -> SampleSet:
        self.calls[unit_id] = self.calls.get(unit_id, 0) + 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await self.gate.wait()
        finally:
            self.active -= 1
        return self._data[unit_id]


def make_fetch(data: Dict[str, Iterable[Tuple[int, int, int]]]):
    """Return an async fetch serving fixed tuples per unit id."""
    sets = {uid: SampleSet.from_tuples(uid, rows) for uid, rows in data.items()}

    async def _fetch(unit_id: str) -> SampleSet:
        await asyncio.sleep(0)
        return sets[unit_id]

    return _fetch


@pytest.fixture
def small_config() -> AppConfig:
    """Config with small tiles so tests stay fast."""
    return AppConfig(output_size=(32, 32), max_inflight=4)
