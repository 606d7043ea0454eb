import asyncio
import random

from core.progress import JobPhase, ProgressTicker, estimate_processing_time, phase_for


class StubRandom(random.Random):
    def __init__(self, value):
        super().__init__(0)
        self.value = value

    def random(self):
        return self.value


def test_phase_boundaries():
    assert phase_for(0) is JobPhase.PREPARING
    assert phase_for(15) is JobPhase.UPLOADING
    assert phase_for(30) is JobPhase.ENHANCING
    assert phase_for(70) is JobPhase.FINALIZING
    assert phase_for(100) is JobPhase.COMPLETE


def test_estimate_is_monotonic():
    sizes = [0, 512 * 1024, 5 * 1024 * 1024, 20 * 1024 * 1024, 200 * 1024 * 1024]
    scales = [2, 4, 8, 16, 32]
    for scale in scales:
        values = [estimate_processing_time(size, scale) for size in sizes]
        assert values == sorted(values)
    for size in sizes:
        values = [estimate_processing_time(size, scale) for scale in scales]
        assert values == sorted(values)


def test_step_never_passes_ceiling():
    ticks = []
    ticker = ProgressTicker(
        on_tick=lambda progress, eta, phase: ticks.append((progress, eta, phase)),
        estimated_seconds=30,
        rng=StubRandom(1.0),
        clock=lambda: 0.0,
    )

    for _ in range(20):
        ticker.step()

    progresses = [progress for progress, _, _ in ticks]
    assert progresses == sorted(progresses)
    assert progresses[0] == 20
    assert max(progresses) == 90
    assert ticker.ticks == len(ticks) == 5


def test_eta_counts_down_and_stops_at_zero():
    now = [0.0]
    etas = []
    ticker = ProgressTicker(
        on_tick=lambda progress, eta, phase: etas.append(eta),
        estimated_seconds=10,
        rng=StubRandom(0.0),
        clock=lambda: now[0],
    )
    ticker._started_at = 0.0

    ticker.step()
    now[0] = 4.2
    ticker.step()
    now[0] = 25.0
    ticker.step()

    assert etas == [10, 6, 0]


async def test_context_manager_always_stops_timer():
    ticker = ProgressTicker(on_tick=lambda *args: None, estimated_seconds=5, interval=0.01)

    try:
        with ticker:
            assert ticker.is_running
            raise RuntimeError("backend failed")
    except RuntimeError:
        pass
    await asyncio.sleep(0)

    assert not ticker.is_running
    ticker.stop()


async def test_timer_ticks_in_background():
    ticks = []
    ticker = ProgressTicker(
        on_tick=lambda progress, eta, phase: ticks.append(progress),
        estimated_seconds=5,
        interval=0.001,
        rng=StubRandom(0.5),
    )

    with ticker:
        for _ in range(50):
            if len(ticks) >= 2:
                break
            await asyncio.sleep(0.005)

    assert len(ticks) >= 2
