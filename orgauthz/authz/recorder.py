"""
Decision recorder.

Every evaluated permission tuple produces a DecisionEvent for audit. The
authorization path must not wait on the audit sink, so events go through a
bounded in-process queue drained by a background task:

- record() never blocks; a full queue drops the event and logs it.
- Sink failures are logged and swallowed.
- On shutdown the queue is drained (bounded by a timeout) before the worker
  is cancelled.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from typing import Protocol

from .types import DecisionEvent

logger = logging.getLogger(__name__)

DecisionSink = Callable[[DecisionEvent], Awaitable[None]]

DEFAULT_QUEUE_SIZE = 1000


class DecisionRecorder(Protocol):
    def record(self, event: DecisionEvent) -> None:
        ...


class QueueDecisionRecorder:
    def __init__(self, sink: DecisionSink, *, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        self._sink = sink
        self._queue: asyncio.Queue[DecisionEvent] = asyncio.Queue(maxsize=queue_size)
        self._worker: asyncio.Task[None] | None = None
        self.dropped = 0

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def record(self, event: DecisionEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                "Decision recorder queue full; dropping event actor=%s permission=%s:%s allowed=%s",
                event.actor_id,
                event.resource,
                event.action,
                event.allowed,
            )

    def start(self) -> None:
        if self.running:
            return
        self._worker = asyncio.create_task(self._run(), name="decision-recorder")

    async def drain(self) -> None:
        """Wait until every queued event has been handed to the sink."""
        await self._queue.join()

    async def stop(self, timeout: float = 5.0) -> None:
        if self._worker is None:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout)
        except asyncio.TimeoutError:
            logger.warning("Decision recorder stopped with %s events pending", self._queue.qsize())
        self._worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._worker
        self._worker = None

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._sink(event)
            except Exception:
                logger.exception(
                    "Decision sink failed actor=%s permission=%s:%s",
                    event.actor_id,
                    event.resource,
                    event.action,
                )
            finally:
                self._queue.task_done()
