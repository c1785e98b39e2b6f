"""Bounded asyncio job pool for raster work.

This module provides a minimal job system on top of the running event loop.
At most ``max_inflight`` jobs execute at once; further submissions wait in a
FIFO queue and are dispatched as running jobs finish. Callbacks run on the
event loop, so callers may mutate their own state inside them without locks.
"""

from __future__ import annotations

import asyncio
import traceback
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, Hashable, Optional

from binmap_viewer.logger import get_logger

LOGGER = get_logger(__name__)


@dataclass
class JobHandle:
    """Handle returned from JobManager.submit.

    Attributes
    ----------
    name : str
        Job name used for logging (typically the unit id).
    job_id : str
        Unique identifier for job tracking and logging.
    key : hashable, optional
        Caller-defined key (e.g. a cache key).
    """

    name: str
    job_id: str
    key: Optional[Hashable] = None


@dataclass
class _QueuedJob:
    handle: JobHandle
    fn: Callable[[], Awaitable[Any]]
    on_result: Optional[Callable[[Any], None]] = None
    on_error: Optional[Callable[[BaseException], None]] = None
    on_finished: Optional[Callable[[], None]] = None


class JobManager:
    """Submit coroutine jobs with a concurrency cap.

    Invariants
    ----------
    - No more than ``max_inflight`` jobs are running at any time.
    - Queued jobs dispatch in submission order.
    - Exactly one of ``on_result``/``on_error`` fires per executed job, then
      ``on_finished``.
    """

    def __init__(self, max_inflight: int = 10) -> None:
        self._max_inflight = int(max(1, max_inflight))
        self._queue: Deque[_QueuedJob] = deque()
        self._running: Dict[str, asyncio.Task] = {}
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def max_inflight(self) -> int:
        return self._max_inflight

    @property
    def inflight_count(self) -> int:
        return len(self._running)

    @property
    def queued_count(self) -> int:
        return len(self._queue)

    def set_max_inflight(self, value: int) -> None:
        """Update the concurrency cap and dispatch if capacity grew."""
        self._max_inflight = int(max(1, value))
        self._dispatch()

    def submit(
        self,
        fn: Callable[[], Awaitable[Any]],
        *,
        name: Optional[str] = None,
        key: Optional[Hashable] = None,
        on_result: Optional[Callable[[Any], None]] = None,
        on_error: Optional[Callable[[BaseException], None]] = None,
        on_finished: Optional[Callable[[], None]] = None,
    ) -> JobHandle:
        """Queue a coroutine factory; it starts as soon as capacity allows.

        Raises
        ------
        RuntimeError
            If no event loop is running; nothing is queued in that case.
        """
        asyncio.get_running_loop()
        job_name = name or getattr(fn, "__name__", "Job")
        handle = JobHandle(job_name, f"job-{uuid.uuid4().hex[:8]}", key)
        self._queue.append(_QueuedJob(handle, fn, on_result, on_error, on_finished))
        self._idle.clear()
        self._dispatch()
        return handle

    def clear_queue(self) -> int:
        """Drop jobs that have not started yet; running jobs are unaffected."""
        dropped = len(self._queue)
        self._queue.clear()
        if not self._running:
            self._idle.set()
        return dropped

    async def join(self) -> None:
        """Wait until no job is running or queued."""
        await self._idle.wait()

    def _dispatch(self) -> None:
        while self._queue and len(self._running) < self._max_inflight:
            job = self._queue.popleft()
            task = asyncio.get_running_loop().create_task(self._run(job))
            self._running[job.handle.job_id] = task
        if not self._queue and not self._running:
            self._idle.set()

    async def _run(self, job: _QueuedJob) -> None:
        handle = job.handle
        extra = {"job_id": handle.job_id, "unit_id": handle.name}
        LOGGER.debug("Job started: %s", handle.name, extra=extra)
        try:
            result = await job.fn()
        except asyncio.CancelledError:
            LOGGER.info("Job cancelled: %s", handle.name, extra=extra)
            raise
        except Exception as exc:
            LOGGER.error(
                "Job error: %s\n%s", handle.name, traceback.format_exc(), extra=extra
            )
            if job.on_error is not None:
                job.on_error(exc)
        else:
            LOGGER.debug("Job finished: %s", handle.name, extra=extra)
            if job.on_result is not None:
                job.on_result(result)
        finally:
            self._running.pop(handle.job_id, None)
            if job.on_finished is not None:
                job.on_finished()
            self._dispatch()
