import asyncio

from registration.timer import AsyncioScheduler, ResendTimer, VirtualScheduler


def test_countdown_reaches_zero_and_stops(scheduler):
    ticks = []
    timer = ResendTimer(scheduler, cooldown=3, on_tick=ticks.append)
    timer.start()

    assert timer.remaining == 3
    assert not timer.can_resend

    scheduler.advance(10)

    assert ticks == [2, 1, 0]
    assert timer.can_resend
    assert not timer.running
    assert scheduler.pending == 0


def test_one_tick_pending_at_a_time(scheduler):
    timer = ResendTimer(scheduler, cooldown=60)
    timer.start()
    timer.start()

    assert scheduler.pending == 1


def test_reset_restarts_full_cooldown(scheduler):
    timer = ResendTimer(scheduler, cooldown=60)
    timer.start()
    scheduler.advance(59)
    assert timer.remaining == 1

    timer.reset()

    assert timer.remaining == 60
    assert scheduler.pending == 1


def test_cancel_stops_ticking(scheduler):
    ticks = []
    timer = ResendTimer(scheduler, cooldown=60, on_tick=ticks.append)
    timer.start()
    scheduler.advance(2)
    timer.cancel()
    scheduler.advance(100)

    assert ticks == [59, 58]
    assert timer.remaining == 58
    assert scheduler.pending == 0


def test_zero_cooldown_never_schedules():
    scheduler = VirtualScheduler()
    timer = ResendTimer(scheduler, cooldown=0)
    timer.start()

    assert timer.can_resend
    assert scheduler.pending == 0


def test_asyncio_scheduler_drives_timer():
    async def run():
        done = asyncio.Event()
        ticks = []

        def on_tick(remaining):
            ticks.append(remaining)
            if remaining == 0:
                done.set()

        timer = ResendTimer(AsyncioScheduler(), cooldown=2, interval=0.01, on_tick=on_tick)
        timer.start()
        await asyncio.wait_for(done.wait(), timeout=2)
        return ticks, timer

    ticks, timer = asyncio.run(run())

    assert ticks == [1, 0]
    assert timer.can_resend


def test_asyncio_timer_started_from_worker_thread_keeps_ticking():
    async def run():
        loop = asyncio.get_running_loop()
        done = asyncio.Event()
        ticks = []

        def on_tick(remaining):
            ticks.append(remaining)
            if remaining == 0:
                done.set()

        timer = ResendTimer(AsyncioScheduler(loop), cooldown=2, interval=0.01, on_tick=on_tick)
        await loop.run_in_executor(None, timer.start)
        await asyncio.wait_for(done.wait(), timeout=2)
        return ticks

    assert asyncio.run(run()) == [1, 0]


def test_asyncio_timer_cancelled_from_worker_thread_never_fires():
    async def run():
        loop = asyncio.get_running_loop()
        ticks = []
        timer = ResendTimer(AsyncioScheduler(loop), cooldown=5, interval=0.05, on_tick=ticks.append)
        timer.start()
        await loop.run_in_executor(None, timer.cancel)
        await asyncio.sleep(0.2)
        return ticks, timer

    ticks, timer = asyncio.run(run())

    assert ticks == []
    assert timer.remaining == 5
    assert not timer.running
