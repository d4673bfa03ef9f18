"""
Unit tests for the asyncio Scheduler.
"""

import asyncio

import pytest

from tinyci.system.scheduler import Scheduler


class TestScheduler:
    """Test cases for Scheduler."""

    @pytest.mark.asyncio
    async def test_runs_repeatedly_until_stopped(self):
        calls = []
        scheduler = Scheduler(0, 0.01, lambda: calls.append(1), name="test")

        scheduler.start()
        await asyncio.sleep(0.1)
        scheduler.stop()
        count = len(calls)
        await asyncio.sleep(0.05)

        assert count >= 3
        assert len(calls) == count
        assert not scheduler.is_running

    @pytest.mark.asyncio
    async def test_one_shot_with_delay(self):
        calls = []
        scheduler = Scheduler(0.02, 0, lambda: calls.append(1))

        scheduler.start()
        await asyncio.sleep(0.005)
        assert calls == []
        await asyncio.sleep(0.1)

        assert calls == [1]
        assert not scheduler.is_running

    @pytest.mark.asyncio
    async def test_stop_before_delay_cancels(self):
        calls = []
        scheduler = Scheduler(0.05, 0, lambda: calls.append(1))

        scheduler.start()
        scheduler.stop()
        await asyncio.sleep(0.1)

        assert calls == []

    @pytest.mark.asyncio
    async def test_start_twice_keeps_one_loop(self):
        calls = []
        scheduler = Scheduler(0.02, 0, lambda: calls.append(1))

        scheduler.start()
        scheduler.start()
        await asyncio.sleep(0.1)

        assert calls == [1]

    @pytest.mark.asyncio
    async def test_stop_from_inside_action_lets_action_finish(self):
        finished = []

        async def action():
            scheduler.stop()
            await asyncio.sleep(0.01)
            finished.append(1)

        scheduler = Scheduler(0, 0.01, action)
        scheduler.start()
        await asyncio.sleep(0.1)

        assert finished == [1]
        assert not scheduler.is_running

    @pytest.mark.asyncio
    async def test_restart_from_inside_action(self):
        calls = []

        def action():
            calls.append(1)
            if len(calls) == 1:
                scheduler.stop()
                scheduler.start()

        scheduler = Scheduler(0, 0.02, action)
        scheduler.start()
        await asyncio.sleep(0.01)
        scheduler.stop()
        await asyncio.sleep(0.05)

        # The restarted loop ran once immediately; the old loop exited.
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_action_errors_do_not_stop_loop(self, caplog):
        calls = []

        def action():
            calls.append(1)
            raise RuntimeError("boom")

        scheduler = Scheduler(0, 0.01, action, name="failing")
        scheduler.start()
        await asyncio.sleep(0.06)
        scheduler.stop()

        assert len(calls) >= 2
        assert "scheduled action 'failing'" in caplog.text

    def test_stop_without_start_is_noop(self):
        Scheduler(0, 1, lambda: None).stop()
