"""Unit tests for ChangeNotifier, Debouncer and PeriodicTimer."""

import asyncio

import pytest

from fee_engine.utils import ChangeNotifier, Debouncer, PeriodicTimer


class TestChangeNotifier:
    """Tests for listener management."""

    def test_listeners_are_notified_in_order(self) -> None:
        notifier = ChangeNotifier()
        seen: list[str] = []
        notifier.add_listener(lambda: seen.append("a"))
        notifier.add_listener(lambda: seen.append("b"))
        notifier.notify_listeners()
        assert seen == ["a", "b"]

    def test_removed_listener_is_not_called(self) -> None:
        notifier = ChangeNotifier()
        calls: list[int] = []

        def listener() -> None:
            calls.append(1)

        notifier.add_listener(listener)
        notifier.remove_listener(listener)
        notifier.notify_listeners()
        assert calls == []
        assert notifier.has_listeners is False

    def test_removing_unknown_listener_is_harmless(self) -> None:
        ChangeNotifier().remove_listener(lambda: None)

    def test_failing_listener_does_not_block_others(self) -> None:
        notifier = ChangeNotifier()
        seen: list[str] = []

        def broken() -> None:
            raise RuntimeError("boom")

        notifier.add_listener(broken)
        notifier.add_listener(lambda: seen.append("ok"))
        notifier.notify_listeners()
        assert seen == ["ok"]

    def test_dispose_drops_listeners(self) -> None:
        notifier = ChangeNotifier()
        notifier.add_listener(lambda: None)
        notifier.dispose()
        assert notifier.has_listeners is False


class TestDebouncer:
    """Tests for trigger coalescing."""

    @pytest.mark.asyncio
    async def test_rapid_calls_fire_once_with_last_arguments(self) -> None:
        debouncer = Debouncer(0.05)
        fired: list[int] = []
        for value in (1, 2, 3):
            debouncer.call(fired.append, value)
            await asyncio.sleep(0.01)
        assert fired == []
        await asyncio.sleep(0.1)
        assert fired == [3]
        assert debouncer.is_pending is False

    @pytest.mark.asyncio
    async def test_cancel_prevents_call(self) -> None:
        debouncer = Debouncer(0.02)
        fired: list[int] = []
        debouncer.call(fired.append, 1)
        assert debouncer.is_pending is True
        debouncer.cancel()
        await asyncio.sleep(0.05)
        assert fired == []

    def test_call_without_running_loop_raises(self) -> None:
        with pytest.raises(RuntimeError):
            Debouncer(0.01).call(lambda: None)


class TestPeriodicTimer:
    """Tests for the periodic callback timer."""

    @pytest.mark.asyncio
    async def test_ticks_until_stopped(self) -> None:
        ticks: list[int] = []
        timer = PeriodicTimer(0.01, lambda: ticks.append(1))
        timer.start()
        assert timer.is_running is True
        await asyncio.sleep(0.055)
        timer.stop()
        count = len(ticks)
        assert count >= 3
        await asyncio.sleep(0.03)
        assert len(ticks) == count
        assert timer.is_running is False

    @pytest.mark.asyncio
    async def test_failing_tick_keeps_timer_alive(self) -> None:
        ticks: list[int] = []

        def tick() -> None:
            ticks.append(1)
            raise ValueError("tick failed")

        timer = PeriodicTimer(0.01, tick)
        timer.start()
        await asyncio.sleep(0.045)
        timer.stop()
        assert len(ticks) >= 2

    @pytest.mark.asyncio
    async def test_restart_replaces_running_task(self) -> None:
        timer = PeriodicTimer(10.0, lambda: None)
        timer.start()
        first = timer._task
        timer.start()
        assert timer._task is not first
        await asyncio.sleep(0.01)
        assert first.cancelled()
        timer.stop()
