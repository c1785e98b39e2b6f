"""Stale-result protection for asynchronous raster jobs.

A :class:`GenerationGuard` is owned by one cache instance. Work is tagged with
the generation current at issue time; when it completes, the tag is compared
with the guard before anything is committed.

Pattern:
    tag = guard.current
    result = await work()
    if not guard.is_current(tag):
        return  # Discard stale result
    commit(result)
"""

from __future__ import annotations

import time
from typing import Optional

__all__ = ["GenerationGuard"]


class GenerationGuard:
    """Monotonic generation counter with commit-time comparison.

    Parameters
    ----------
    initial : int, optional
        Starting generation; defaults to the current time in milliseconds so
        generations from separate sessions never collide.
    """

    def __init__(self, initial: Optional[int] = None) -> None:
        self._generation = int(time.time() * 1000) if initial is None else int(initial)

    @property
    def current(self) -> int:
        return self._generation

    def advance(self, to: Optional[int] = None) -> int:
        """Move to a newer generation and return it.

        Parameters
        ----------
        to : int, optional
            Explicit new generation (e.g. a view-owned version). Values that do
            not increase the counter are bumped to ``current + 1``.
        """
        if to is None or int(to) <= self._generation:
            self._generation += 1
        else:
            self._generation = int(to)
        return self._generation

    def is_current(self, tag: int) -> bool:
        """Return True if work tagged with ``tag`` may still be committed."""
        return tag == self._generation
