"""Sample models and conversion helpers for per-unit bin maps.

A unit (e.g. one wafer) reports a sparse list of ``(x, y, value)`` samples on
an integer grid. ``value`` is a bin/measurement code, never a color.

Conventions
-----------
- Coordinates are integers and may be negative; nothing is rebased here.
- A :class:`SampleSet` is immutable and belongs to exactly one unit id.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator, Mapping, Tuple

import numpy as np
import pandas as pd

from binmap_viewer.logger import get_logger

LOGGER = get_logger(__name__)

__all__ = [
    "Sample",
    "SampleSet",
    "samples_from_records",
    "samples_to_array",
    "samples_to_dataframe",
]


@dataclass(frozen=True)
class Sample:
    """One measurement at a discrete coordinate."""

    x: int
    y: int
    value: int


@dataclass(frozen=True)
class SampleSet:
    """Samples fetched for a single unit.

    Parameters
    ----------
    unit_id : str
        Identifier of the unit that produced the samples.
    samples : tuple[Sample, ...]
        Samples in fetch order; ordering carries no meaning.
    """

    unit_id: str
    samples: Tuple[Sample, ...] = ()

    def __len__(self) -> int:
        return len(self.samples)

    def __iter__(self) -> Iterator[Sample]:
        return iter(self.samples)

    @property
    def is_empty(self) -> bool:
        return not self.samples

    @classmethod
    def from_tuples(cls, unit_id: str, rows: Iterable[Tuple[int, int, int]]) -> "SampleSet":
        """Build a set from ``(x, y, value)`` tuples."""
        return cls(unit_id, tuple(Sample(int(x), int(y), int(v)) for x, y, v in rows))


def samples_from_records(unit_id: str, records: Iterable[Mapping[str, object]]) -> SampleSet:
    """Parse API rows with ``x``, ``y`` and ``value`` keys.

    Values frequently arrive as strings (``"150"``); they are parsed as
    integers. Rows that cannot be parsed are skipped with a warning.
    """
    parsed = []
    for row in records:
        try:
            parsed.append(Sample(int(row["x"]), int(row["y"]), int(str(row["value"]).strip())))
        except (KeyError, TypeError, ValueError):
            LOGGER.warning("Skipping malformed sample row %r", row, extra={"unit_id": unit_id})
    return SampleSet(unit_id, tuple(parsed))


def samples_to_array(sample_set: SampleSet) -> np.ndarray:
    """Return samples as an ``(N, 3)`` int64 array of x, y, value."""
    if sample_set.is_empty:
        return np.zeros((0, 3), dtype=np.int64)
    return np.array([(s.x, s.y, s.value) for s in sample_set.samples], dtype=np.int64)


def samples_to_dataframe(sample_set: SampleSet) -> pd.DataFrame:
    """Convert a sample set to a DataFrame with ``x, y, value`` columns."""
    cols = ["x", "y", "value"]
    return pd.DataFrame(samples_to_array(sample_set), columns=cols)
