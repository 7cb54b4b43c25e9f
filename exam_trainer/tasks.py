"""Best-effort background work.

Submitted coroutines run on the current event loop with no ordering or
delivery guarantee: they may finish in any order, are dropped on shutdown,
and a failure is only logged.  Callers that need a result must await the
work themselves.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine

_log = logging.getLogger("exam_trainer.bg")


class BestEffortTasks:
    def __init__(self):
        self._tasks: set[asyncio.Task] = set()

    def submit(self, coro: Coroutine, label: str) -> asyncio.Task:
        task = asyncio.create_task(self._run(coro, label))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        _log.info("Submitted background task: %s", label)
        return task

    @staticmethod
    async def _run(coro: Coroutine, label: str) -> None:
        try:
            await coro
            _log.info("Background task finished: %s", label)
        except asyncio.CancelledError:
            _log.info("Background task cancelled: %s", label)
        except Exception as e:
            _log.warning("Background task %s failed: %s", label, e)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for everything submitted so far (mostly useful in tests)."""
        if self._tasks:
            await asyncio.wait(list(self._tasks), timeout=timeout)

    def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()
