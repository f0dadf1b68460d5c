"""
Tests for the background task registry.
"""

import asyncio
import logging

import pytest

from guildsync.keepalive import BackgroundTasks


class TestBackgroundTasks:
    @pytest.mark.asyncio
    async def test_holds_reference_until_done(self):
        tasks = BackgroundTasks()
        gate = asyncio.Event()

        async def work():
            await gate.wait()
            return "done"

        task = tasks.register(work())
        assert len(tasks) == 1

        gate.set()
        assert await task == "done"
        await asyncio.sleep(0)
        assert len(tasks) == 0

    @pytest.mark.asyncio
    async def test_callable_form(self):
        tasks = BackgroundTasks()
        ran = []

        async def work():
            ran.append(True)

        tasks(work())
        await tasks.drain()

        assert ran == [True]

    @pytest.mark.asyncio
    async def test_failure_is_logged(self, caplog):
        tasks = BackgroundTasks(name="sync")

        async def boom():
            raise RuntimeError("pipeline exploded")

        with caplog.at_level(logging.ERROR, logger="guildsync.keepalive"):
            tasks.register(boom())
            await tasks.drain()
            await asyncio.sleep(0)

        assert "sync-1 failed" in caplog.text
        assert len(tasks) == 0

    @pytest.mark.asyncio
    async def test_drain_cancels_after_timeout(self):
        tasks = BackgroundTasks()
        task = tasks.register(asyncio.sleep(60))

        pending = await tasks.drain(timeout=0.01)

        assert pending == 1
        assert task.cancelled()

    @pytest.mark.asyncio
    async def test_drain_with_nothing_pending(self):
        assert await BackgroundTasks().drain() == 0
