"""
ForgeSR - Progress Simulation
==============================
Fabricated progress and ETA for an opaque remote upscale call.

The ticker only produces UI feedback. It never reports more than the
configured ceiling (90%) and is cancelled as soon as the real call resolves.
"""

import asyncio
import math
import random
import time
from enum import Enum
from typing import Callable, Optional


class JobPhase(str, Enum):
    """Textual phase labels keyed by progress."""
    QUEUED = "queued"
    PREPARING = "preparing"
    UPLOADING = "uploading"
    ENHANCING = "enhancing"
    FINALIZING = "finalizing"
    COMPLETE = "complete"
    FAILED = "failed"


PHASE_MESSAGES = {
    JobPhase.QUEUED: "Waiting for the current upscale to finish...",
    JobPhase.PREPARING: "Preparing image for AI processing...",
    JobPhase.UPLOADING: "Uploading to AI service...",
    JobPhase.ENHANCING: "AI is enhancing your image...",
    JobPhase.FINALIZING: "Applying final enhancements...",
    JobPhase.COMPLETE: "Upscaling complete!",
    JobPhase.FAILED: "Upscaling failed",
}


def phase_for(progress: float) -> JobPhase:
    if progress < 15:
        return JobPhase.PREPARING
    if progress < 30:
        return JobPhase.UPLOADING
    if progress < 70:
        return JobPhase.ENHANCING
    if progress < 100:
        return JobPhase.FINALIZING
    return JobPhase.COMPLETE


def estimate_processing_time(file_size_bytes: int, scale: int) -> int:
    """
    Heuristic processing time in seconds.

    Non-decreasing in both file size and scale: 8s per MB with a 10 MB
    floor and a 60s cap, multiplied by log2(scale).
    """
    size_mb = max(0, file_size_bytes) / (1024 * 1024)
    base = min(60.0, max(10.0, size_mb) * 8)
    return round(base * math.log2(max(1, scale)))


class ProgressTicker:
    """
    Cancellable timer that advances a job's simulated progress.

    Usable as a context manager; leaving the block always stops the timer.

    Args:
        on_tick: Called with (progress, eta_seconds, phase) on every step
        estimated_seconds: Initial ETA
        start_progress: Progress at start
        interval: Seconds between ticks
        ceiling: Progress is never advanced past this value
        rng: Random source (injectable for deterministic tests)
        clock: Monotonic clock
    """

    def __init__(
        self,
        on_tick: Callable[[float, int, JobPhase], None],
        estimated_seconds: int,
        start_progress: float = 0.0,
        interval: float = 1.5,
        ceiling: float = 90.0,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.on_tick = on_tick
        self.estimated_seconds = estimated_seconds
        self.progress = start_progress
        self.interval = interval
        self.ceiling = ceiling
        self.rng = rng or random.Random()
        self.clock = clock
        self.ticks = 0
        self._started_at: Optional[float] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> "ProgressTicker":
        if self._task is None:
            self._started_at = self.clock()
            self._task = asyncio.get_running_loop().create_task(self._run())
        return self

    def stop(self) -> None:
        """Cancel the timer. Safe to call repeatedly."""
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def step(self) -> None:
        """Advance once: a bounded random walk toward the ceiling."""
        if self.progress >= self.ceiling:
            return
        self.progress = min(self.ceiling, self.progress + self.rng.random() * 15 + 5)
        elapsed = self.clock() - (self._started_at or self.clock())
        eta = max(0, round(self.estimated_seconds - elapsed))
        self.ticks += 1
        self.on_tick(self.progress, eta, phase_for(self.progress))

    async def _run(self) -> None:
        while self.progress < self.ceiling:
            await asyncio.sleep(self.interval)
            self.step()

    def __enter__(self) -> "ProgressTicker":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
