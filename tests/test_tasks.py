"""Tests for best-effort background tasks."""
from __future__ import annotations

import asyncio
import logging

import pytest

from exam_trainer.tasks import BestEffortTasks


class TestBestEffortTasks:
    @pytest.mark.asyncio
    async def test_runs_submitted_work(self):
        done = []

        async def work():
            done.append(True)

        bg = BestEffortTasks()
        bg.submit(work(), "work")
        await bg.drain(timeout=1)
        assert done == [True]
        assert bg.pending == 0

    @pytest.mark.asyncio
    async def test_failure_is_logged_not_raised(self, caplog):
        async def boom():
            raise RuntimeError("provider exploded")

        bg = BestEffortTasks()
        with caplog.at_level(logging.WARNING, logger="exam_trainer.bg"):
            task = bg.submit(boom(), "boom")
            await bg.drain(timeout=1)
        assert task.done()
        assert task.exception() is None
        assert "provider exploded" in caplog.text

    @pytest.mark.asyncio
    async def test_cancel_all(self):
        async def slow():
            await asyncio.sleep(10)

        bg = BestEffortTasks()
        task = bg.submit(slow(), "slow")
        await asyncio.sleep(0)
        assert bg.pending == 1
        bg.cancel_all()
        await bg.drain(timeout=1)
        assert task.done()
        assert bg.pending == 0

    @pytest.mark.asyncio
    async def test_drain_with_nothing_pending(self):
        await BestEffortTasks().drain()
