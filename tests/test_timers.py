"""Unit tests for :mod:`notelink.session.timers`."""

from __future__ import annotations

import asyncio
import logging

import pytest

from notelink.session.timers import BackgroundTasks, CancellableTimer

from tests.helpers import ManualScheduler


class TestCancellableTimer:
    """Tests for the shared timer primitive."""

    def test_fires_after_delay(self, scheduler: ManualScheduler) -> None:
        fired: list[str] = []
        timer = CancellableTimer(scheduler)
        deadline = timer.arm(1.0, fired.append, "done")

        assert deadline == 1.0
        assert timer.armed
        scheduler.advance(0.999)
        assert fired == []
        scheduler.advance(0.001)
        assert fired == ["done"]
        assert not timer.armed
        assert timer.deadline is None

    def test_rearm_replaces_pending_callback(self, scheduler: ManualScheduler) -> None:
        fired: list[str] = []
        timer = CancellableTimer(scheduler)
        timer.arm(1.0, fired.append, "first")
        scheduler.advance(0.5)
        timer.arm(1.0, fired.append, "second")

        scheduler.advance(0.9)
        assert fired == []
        scheduler.advance(0.1)
        assert fired == ["second"]

    def test_disarm_cancels(self, scheduler: ManualScheduler) -> None:
        fired: list[str] = []
        timer = CancellableTimer(scheduler)
        timer.arm(1.0, fired.append, "x")

        assert timer.disarm() is True
        assert timer.disarm() is False
        scheduler.advance(5)
        assert fired == []

    def test_callback_errors_are_logged(self, scheduler: ManualScheduler, caplog: pytest.LogCaptureFixture) -> None:
        def _boom() -> None:
            raise RuntimeError("boom")

        timer = CancellableTimer(scheduler, name="boom-timer")
        timer.arm(0.1, _boom)
        with caplog.at_level(logging.ERROR):
            scheduler.advance(0.1)

        assert "boom-timer" in caplog.text

    @pytest.mark.asyncio
    async def test_defaults_to_running_loop(self) -> None:
        fired = asyncio.Event()
        timer = CancellableTimer()
        timer.arm(0.01, fired.set)

        await asyncio.wait_for(fired.wait(), timeout=1.0)


class TestBackgroundTasks:
    """Tests for fire-and-forget task tracking."""

    @pytest.mark.asyncio
    async def test_drain_waits_for_tasks(self) -> None:
        tasks = BackgroundTasks()
        results: list[int] = []

        async def _work(value: int) -> None:
            await asyncio.sleep(0)
            results.append(value)

        tasks.spawn(_work(1))
        tasks.spawn(_work(2))
        assert len(tasks) == 2

        await tasks.drain()

        assert sorted(results) == [1, 2]
        assert len(tasks) == 0

    @pytest.mark.asyncio
    async def test_failures_are_logged_not_raised(self, caplog: pytest.LogCaptureFixture) -> None:
        tasks = BackgroundTasks(name="unit")

        async def _fail() -> None:
            raise ValueError("nope")

        with caplog.at_level(logging.ERROR):
            tasks.spawn(_fail(), name="failing")
            await tasks.drain()

        assert "unit:failing" in caplog.text

    @pytest.mark.asyncio
    async def test_cancel_all(self) -> None:
        tasks = BackgroundTasks()
        tasks.spawn(asyncio.sleep(10))

        assert tasks.cancel_all() == 1
        await tasks.drain()
        assert len(tasks) == 0
