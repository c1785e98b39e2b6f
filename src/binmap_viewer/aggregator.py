"""Combine several units' bin maps into one thresholded pattern.

The aggregate lives in a re-based coordinate space: the minimum x and minimum
y over all contributing samples map to 0. Values at a shared coordinate are
summed. A coordinate is *selected* when any single contributing sample (after
optional binarization, before summation) is strictly above the threshold; the
summed total is not compared.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from binmap_viewer.binarization import BinarizationSpec, binarize_values
from binmap_viewer.errors import EmptyInputError
from binmap_viewer.logger import get_logger
from binmap_viewer.samples import SampleSet, samples_to_array
from binmap_viewer.sources import FetchSamples, fetch_or_fail, persist_features_quietly

LOGGER = get_logger(__name__)

Coord = Tuple[int, int]

__all__ = [
    "AggregatedPattern",
    "PatternState",
    "PatternStatistics",
    "aggregate",
    "combine_sample_sets",
    "pattern_statistics",
    "pattern_to_dataframe",
    "pattern_to_sample_set",
    "threshold_pattern",
]


@dataclass(frozen=True)
class AggregatedPattern:
    """Combined pattern over a group of units.

    Attributes
    ----------
    points : dict[tuple[int, int], int]
        Summed value per re-based coordinate.
    selected : frozenset[tuple[int, int]]
        Coordinates where at least one contributing sample exceeded the
        threshold. Always a subset of ``points``.
    """

    points: Mapping[Coord, int]
    selected: FrozenSet[Coord] = frozenset()


@dataclass(frozen=True)
class PatternStatistics:
    total_cells: int
    active_cells: int
    inactive_cells: int
    active_percentage: float


def combine_sample_sets(
    sample_sets: Sequence[SampleSet],
    threshold: float,
    binarization: Optional[BinarizationSpec] = None,
) -> AggregatedPattern:
    """Aggregate already-fetched sample sets.

    The result does not depend on the order of ``sample_sets``.

    Raises
    ------
    EmptyInputError
        If no samples are present across all sets.
    """
    arrays = [samples_to_array(s) for s in sample_sets if not s.is_empty]
    if not arrays:
        raise EmptyInputError("No samples to aggregate (empty selection or empty units)")
    stacked = np.concatenate(arrays, axis=0)
    df = pd.DataFrame(stacked, columns=["x", "y", "value"])
    if binarization is not None and binarization.selected_values:
        df["value"] = binarize_values(df["value"].to_numpy(), binarization)
    df["x"] -= df["x"].min()
    df["y"] -= df["y"].min()
    df["hit"] = df["value"] > threshold
    grouped = df.groupby(["x", "y"], sort=True).agg(value=("value", "sum"), hit=("hit", "any"))
    points: Dict[Coord, int] = {
        (int(x), int(y)): int(v) for (x, y), v in grouped["value"].items()
    }
    selected = frozenset(
        (int(x), int(y)) for (x, y), hit in grouped["hit"].items() if bool(hit)
    )
    return AggregatedPattern(points, selected)


async def aggregate(
    unit_ids: Sequence[str],
    threshold: float,
    fetch_samples: FetchSamples,
    binarization: Optional[BinarizationSpec] = None,
    *,
    feature_store=None,
) -> AggregatedPattern:
    """Fetch every unit concurrently and aggregate them into one pattern.

    Parameters
    ----------
    unit_ids : sequence of str
        Units to combine; duplicates are fetched once each time they appear.
    threshold : float
        Strict per-sample threshold for ``selected``.
    fetch_samples : callable
        Coroutine function ``unit_id -> SampleSet``.
    binarization : BinarizationSpec, optional
        Applied to every sample before aggregation.
    feature_store : object, optional
        Receives fetched samples on a best-effort basis.

    Raises
    ------
    EmptyInputError
        No unit ids, or every fetched set is empty.
    FetchFailure
        Any single fetch failed; no partial aggregate is produced.
    """
    if not unit_ids:
        raise EmptyInputError("No units selected for aggregation")
    sample_sets: List[SampleSet] = await asyncio.gather(
        *(fetch_or_fail(fetch_samples, unit_id) for unit_id in unit_ids)
    )
    for sample_set in sample_sets:
        persist_features_quietly(feature_store, sample_set.unit_id, sample_set)
    pattern = combine_sample_sets(sample_sets, threshold, binarization)
    LOGGER.info(
        "Aggregated %d units into %d cells (%d selected)",
        len(unit_ids),
        len(pattern.points),
        len(pattern.selected),
    )
    return pattern


def threshold_pattern(pattern: AggregatedPattern, threshold: float) -> Dict[Coord, int]:
    """Map summed values to 1 when ``>= threshold`` and 0 otherwise."""
    return {coord: 1 if value >= threshold else 0 for coord, value in pattern.points.items()}


def pattern_statistics(pattern: AggregatedPattern) -> PatternStatistics:
    """Summarize how many cells are selected."""
    total = len(pattern.points)
    active = len(pattern.selected)
    percentage = round(active / total * 100.0, 2) if total > 0 else 0.0
    return PatternStatistics(total, active, total - active, percentage)


def pattern_to_dataframe(pattern: AggregatedPattern) -> pd.DataFrame:
    """Return ``x, y, value, selected`` rows sorted by coordinate."""
    cols = ["x", "y", "value", "selected"]
    rows = [
        (x, y, value, (x, y) in pattern.selected)
        for (x, y), value in sorted(pattern.points.items())
    ]
    if not rows:
        return pd.DataFrame(columns=cols)
    return pd.DataFrame(rows, columns=cols)


def pattern_to_sample_set(pattern: AggregatedPattern, unit_id: str = "pattern") -> SampleSet:
    """Expose summed values as a sample set so the pattern can be rasterized."""
    return SampleSet.from_tuples(unit_id, ((x, y, v) for (x, y), v in sorted(pattern.points.items())))


@dataclass
class PatternState:
    """Current pattern shown by the pattern view.

    ``generate`` only replaces state after a successful aggregation; on failure
    the previous pattern stays and ``last_error`` holds a single message.
    """

    pattern: Optional[AggregatedPattern] = None
    threshold: float = 0.0
    source_unit_ids: List[str] = field(default_factory=list)
    binarization: Optional[BinarizationSpec] = None
    last_error: Optional[str] = None

    async def generate(
        self,
        unit_ids: Sequence[str],
        threshold: float,
        fetch_samples: FetchSamples,
        binarization: Optional[BinarizationSpec] = None,
        *,
        feature_store=None,
    ) -> AggregatedPattern:
        try:
            pattern = await aggregate(
                unit_ids, threshold, fetch_samples, binarization, feature_store=feature_store
            )
        except Exception as exc:
            self.last_error = f"Pattern generation failed: {exc}"
            LOGGER.error(self.last_error)
            raise
        self.pattern = pattern
        self.threshold = threshold
        self.source_unit_ids = list(unit_ids)
        self.binarization = binarization
        self.last_error = None
        return pattern

    def clear(self) -> None:
        self.pattern = None
        self.source_unit_ids = []
        self.binarization = None
        self.last_error = None
