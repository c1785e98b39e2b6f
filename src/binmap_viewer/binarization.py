"""Bin-value binarization and the cache-key signature derived from it."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

import numpy as np

__all__ = [
    "BinarizationSpec",
    "NO_BINARIZATION",
    "binarize_values",
    "bin_options",
    "partition_of",
    "signature",
]

# Signature used for raw (non-binarized) rasters.
NO_BINARIZATION = "none"
_BINARY_PREFIX = "bin:"


@dataclass(frozen=True)
class BinarizationSpec:
    """Membership mask over raw bin values.

    Every sample value becomes 255 when it is in ``selected_values`` and 0
    otherwise. Two specs compare equal when their value sets are equal.
    """

    selected_values: frozenset

    @classmethod
    def from_values(cls, values: Optional[Iterable[int]]) -> Optional["BinarizationSpec"]:
        """Return a spec, or ``None`` when no values are selected."""
        if values is None:
            return None
        selected = frozenset(int(v) for v in values)
        if not selected:
            return None
        return cls(selected)

    def signature(self) -> str:
        return _BINARY_PREFIX + ",".join(str(v) for v in sorted(self.selected_values))


def signature(spec: Optional[BinarizationSpec]) -> str:
    """Canonical cache-key discriminator for an optional spec."""
    if spec is None or not spec.selected_values:
        return NO_BINARIZATION
    return spec.signature()


def partition_of(sig: str) -> str:
    """Return ``"binary"`` or ``"normal"`` for a signature."""
    return "binary" if sig.startswith(_BINARY_PREFIX) else "normal"


def binarize_values(values: np.ndarray, spec: BinarizationSpec) -> np.ndarray:
    """Map raw values to 255 (selected) or 0 (not selected)."""
    values = np.asarray(values)
    selected = np.fromiter(spec.selected_values, dtype=np.int64, count=len(spec.selected_values))
    return np.where(np.isin(values, selected), 255, 0).astype(np.int64)


def bin_options(count: int = 699, padding: int = 3) -> List[Tuple[int, str]]:
    """Selectable bin codes with display labels, e.g. ``(7, "BIN007")``."""
    return [(num, f"BIN{num:0{padding}d}") for num in range(1, int(count) + 1)]
