"""Tests for the Refresh Scheduler."""

import asyncio

import pytest

from trackfence.models.config import SchedulerState
from trackfence.scheduler.loop import RefreshScheduler


class _CountingCycle:
    def __init__(self, duration: float = 0.0, fail: bool = False):
        self.duration = duration
        self.fail = fail
        self.started = 0
        self.completed = 0
        self.cancelled = 0
        self.active = 0
        self.max_active = 0

    async def __call__(self):
        self.started += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.duration:
                await asyncio.sleep(self.duration)
            if self.fail:
                raise RuntimeError("cycle exploded")
            self.completed += 1
            return self.completed
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        finally:
            self.active -= 1


class TestLifecycle:
    def test_one_second_interval_runs_about_once_per_second(self):
        cycle = _CountingCycle()

        async def scenario():
            scheduler = RefreshScheduler(cycle, interval_seconds=1)
            scheduler.start()
            await asyncio.sleep(2.5)
            await scheduler.stop()
            after_stop = cycle.completed
            await asyncio.sleep(1.5)
            return scheduler, after_stop

        scheduler, after_stop = asyncio.run(scenario())
        # Immediate run plus ticks at ~1s and ~2s
        assert 2 <= after_stop <= 4
        assert cycle.completed == after_stop
        assert scheduler.state is SchedulerState.IDLE

    def test_counter_is_stable_after_stop(self):
        cycle = _CountingCycle()

        async def scenario():
            scheduler = RefreshScheduler(cycle, interval_seconds=0.05)
            scheduler.start()
            await asyncio.sleep(0.3)
            await scheduler.stop()
            stopped_at = cycle.started
            await asyncio.sleep(0.3)
            return stopped_at

        stopped_at = asyncio.run(scenario())
        assert stopped_at >= 3
        assert cycle.started == stopped_at

    def test_state_transitions(self):
        async def scenario():
            scheduler = RefreshScheduler(_CountingCycle(), interval_seconds=0.05)
            states = [scheduler.state]
            scheduler.start()
            states.append(scheduler.state)
            await scheduler.stop()
            states.append(scheduler.state)
            return states

        assert asyncio.run(scenario()) == [
            SchedulerState.IDLE,
            SchedulerState.SCHEDULED,
            SchedulerState.IDLE,
        ]

    def test_start_twice_keeps_one_driver(self):
        cycle = _CountingCycle()

        async def scenario():
            scheduler = RefreshScheduler(cycle, interval_seconds=10)
            scheduler.start()
            scheduler.start()
            await asyncio.sleep(0.05)
            await scheduler.stop()

        asyncio.run(scenario())
        assert cycle.started == 1

    def test_stop_when_idle_is_noop(self):
        async def scenario():
            scheduler = RefreshScheduler(_CountingCycle())
            await scheduler.stop()
            await scheduler.stop()
            return scheduler.state

        assert asyncio.run(scenario()) is SchedulerState.IDLE

    def test_stop_cancels_in_flight_cycle(self):
        cycle = _CountingCycle(duration=5)

        async def scenario():
            scheduler = RefreshScheduler(cycle, interval_seconds=10)
            scheduler.start()
            await asyncio.sleep(0.05)
            assert scheduler.cycle_in_flight
            await scheduler.stop()
            return scheduler

        scheduler = asyncio.run(scenario())
        assert cycle.cancelled == 1
        assert cycle.completed == 0
        assert scheduler.cycles_run == 0
        assert not scheduler.cycle_in_flight

    def test_invalid_interval(self):
        with pytest.raises(ValueError):
            RefreshScheduler(_CountingCycle(), interval_seconds=0)


class TestCoalescing:
    def test_cycles_never_overlap(self):
        cycle = _CountingCycle(duration=0.12)

        async def scenario():
            scheduler = RefreshScheduler(cycle, interval_seconds=0.05)
            scheduler.start()
            await asyncio.sleep(0.5)
            await scheduler.stop()
            return scheduler

        scheduler = asyncio.run(scenario())
        assert cycle.max_active == 1
        assert scheduler.coalesced_ticks > 0

    def test_run_now_while_in_flight_is_coalesced(self):
        cycle = _CountingCycle(duration=0.2)

        async def scenario():
            scheduler = RefreshScheduler(cycle, interval_seconds=10)
            first = asyncio.ensure_future(scheduler.run_now())
            await asyncio.sleep(0.02)
            second = await scheduler.run_now()
            return await first, second

        first, second = asyncio.run(scenario())
        assert first is True
        assert second is False
        assert cycle.started == 1

    def test_run_now_without_schedule(self):
        cycle = _CountingCycle()

        async def scenario():
            scheduler = RefreshScheduler(cycle, interval_seconds=10)
            ran = await scheduler.run_now()
            return scheduler, ran

        scheduler, ran = asyncio.run(scenario())
        assert ran is True
        assert scheduler.cycles_run == 1
        assert scheduler.last_result == 1
        assert scheduler.state is SchedulerState.IDLE

    def test_run_now_does_not_move_next_tick(self):
        cycle = _CountingCycle()

        async def scenario():
            scheduler = RefreshScheduler(cycle, interval_seconds=0.3)
            scheduler.start()
            await asyncio.sleep(0.1)        # initial cycle done
            await scheduler.run_now()       # manual cycle at ~0.1s
            await asyncio.sleep(0.3)        # scheduled tick at ~0.3s
            await scheduler.stop()

        asyncio.run(scenario())
        assert cycle.completed == 3


class TestErrorHandling:
    def test_failing_cycle_does_not_kill_driver(self):
        cycle = _CountingCycle(fail=True)

        async def scenario():
            scheduler = RefreshScheduler(cycle, interval_seconds=0.05)
            scheduler.start()
            await asyncio.sleep(0.25)
            state = scheduler.state
            await scheduler.stop()
            return scheduler, state

        scheduler, state = asyncio.run(scenario())
        assert state is SchedulerState.SCHEDULED
        assert cycle.started >= 3
        assert scheduler.cycles_run == 0
        assert "cycle exploded" in scheduler.last_error

    def test_error_clears_after_successful_cycle(self):
        cycle = _CountingCycle(fail=True)

        async def scenario():
            scheduler = RefreshScheduler(cycle, interval_seconds=10)
            await scheduler.run_now()
            error = scheduler.last_error
            cycle.fail = False
            await scheduler.run_now()
            return error, scheduler.last_error

        error, after = asyncio.run(scenario())
        assert error.startswith("RuntimeError")
        assert after is None


class TestReschedule:
    def test_reschedule_running_scheduler(self):
        cycle = _CountingCycle()

        async def scenario():
            scheduler = RefreshScheduler(cycle, interval_seconds=10)
            scheduler.start()
            await asyncio.sleep(0.05)
            await scheduler.reschedule(0.05)
            await asyncio.sleep(0.3)
            await scheduler.stop()
            return scheduler

        scheduler = asyncio.run(scenario())
        assert scheduler.interval_seconds == 0.05
        assert cycle.completed >= 4

    def test_reschedule_idle_scheduler_stays_idle(self):
        async def scenario():
            scheduler = RefreshScheduler(_CountingCycle(), interval_seconds=10)
            await scheduler.reschedule(1)
            return scheduler

        scheduler = asyncio.run(scenario())
        assert scheduler.state is SchedulerState.IDLE
        assert scheduler.interval_seconds == 1
