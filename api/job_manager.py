"""
ForgeSR API - Job Queue
========================
Single-flight upscale job queue.

Manages job lifecycle: pending → processing → completed | failed

At most one job is processing at any time; later submissions wait in FIFO
order and start the moment the active job reaches a terminal state.
"""

import asyncio
import random
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Deque, Dict, List, Optional, Set

from loguru import logger

from core.config import ForgeConfig
from core.errors import CANCELLED_REASON, JobStateError
from core.events import Signal
from core.history import HistoryCache, HistoryItem
from core.plans import PlanTier, QualityPreset
from core.progress import PHASE_MESSAGES, JobPhase, ProgressTicker, estimate_processing_time
from core.uploads import UploadedFile
from runtime.image_probe import ImageProbe
from runtime.upscale_client import UpscaleBackend, UpscaleRequest, UpscaleResponse
from runtime.usage_tracking import UsageStats, UsageTracker

from .schemas import JobStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(eq=False)
class Job:
    """Represents an upscale job."""
    job_id: str
    source: UploadedFile
    user_id: str
    plan: PlanTier
    requested_scale: int
    quality_preset: QualityPreset
    output_format: str = "png"
    image: bytes = field(default=b"", repr=False)
    status: JobStatus = JobStatus.PENDING
    phase: JobPhase = JobPhase.QUEUED
    progress: float = 0.0
    eta_seconds: int = 0
    estimated_seconds: int = 0
    input_url: Optional[str] = None
    result_url: Optional[str] = None
    result_width: Optional[int] = None
    result_height: Optional[int] = None
    original_width: Optional[int] = None
    original_height: Optional[int] = None
    remaining_upscales: Optional[int] = None
    error: Optional[str] = None
    cancelled: bool = False
    created_at: datetime = field(default_factory=_utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    ticker: Optional[ProgressTicker] = field(default=None, repr=False)
    task: Optional[asyncio.Task] = field(default=None, repr=False)

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)

    @property
    def current_step(self) -> str:
        if self.cancelled:
            return CANCELLED_REASON
        return PHASE_MESSAGES[self.phase]

    @property
    def file_size_bytes(self) -> int:
        return self.source.size_bytes

    def release_timer(self) -> None:
        if self.ticker is not None:
            self.ticker.stop()


class JobQueue:
    """
    In-memory single-flight job queue.

    Args:
        backend: Remote upscale service
        history: Cache that receives completed jobs
        usage: Usage-tracking collaborator (optional)
        probe: Result image decoder used when the service omits dimensions
        config: Progress interval and ceiling
        rng: Random source for progress simulation
        now: Wall clock (UTC)

    Signals:
        job_changed(Job): on every transition and progress tick
        usage_changed(UsageStats): after a completion refreshed the usage stats
    """

    def __init__(
        self,
        backend: UpscaleBackend,
        history: HistoryCache,
        usage: Optional[UsageTracker] = None,
        probe: Optional[ImageProbe] = None,
        config: Optional[ForgeConfig] = None,
        rng: Optional[random.Random] = None,
        now: Optional[Callable[[], datetime]] = None
    ):
        config = config or ForgeConfig()
        self.backend = backend
        self.history = history
        self.usage = usage
        self.probe = probe
        self.progress_interval = config.progress_interval
        self.progress_ceiling = config.progress_ceiling
        self.rng = rng or random.Random()
        self.now = now or _utcnow

        self.jobs: Dict[str, Job] = {}
        self._pending: Deque[Job] = deque()
        self._active: Optional[Job] = None
        self._counted: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()

        self.job_changed = Signal("job_changed")
        self.usage_changed = Signal("usage_changed")
        self.last_usage: Optional[UsageStats] = None

    # === Accessors ===

    @property
    def current_job(self) -> Optional[Job]:
        """The job currently processing, if any."""
        return self._active

    @property
    def pending_jobs(self) -> List[Job]:
        return list(self._pending)

    def get_job(self, job_id: str) -> Optional[Job]:
        """Get job by ID."""
        return self.jobs.get(job_id)

    def processing_count(self) -> int:
        return sum(1 for job in self.jobs.values() if job.status is JobStatus.PROCESSING)

    # === Submission ===

    def create_job(
        self,
        source: UploadedFile,
        user_id: str,
        plan: PlanTier,
        scale: int,
        preset: QualityPreset,
        output_format: str = "png"
    ) -> Job:
        """Create a pending job for an already validated request."""
        return Job(
            job_id=str(uuid.uuid4()),
            source=source,
            user_id=user_id,
            plan=plan,
            requested_scale=scale,
            quality_preset=preset,
            output_format=output_format,
            image=source.read_bytes(),
            original_width=source.width,
            original_height=source.height,
            created_at=self.now(),
        )

    def submit(self, job: Job) -> Job:
        """
        Enqueue a pending job. Starts it at once if nothing is processing.

        Must be called from within the running event loop.
        """
        if job.job_id in self.jobs or job.status is not JobStatus.PENDING:
            raise JobStateError(f"Job {job.job_id} was already submitted")

        self.jobs[job.job_id] = job
        self._pending.append(job)
        logger.info(f"[JobQueue] Submitted {job.job_id} ({job.requested_scale}x {job.quality_preset.value}, "
                    f"{len(self._pending)} pending)")
        self.job_changed.emit(job)
        self._pump()
        return job

    def cancel(self, job_id: str) -> Optional[Job]:
        """
        Cancel a processing job. A no-op for any other state.

        Returns:
            The job (in whatever state it ends up), or None if unknown
        """
        job = self.jobs.get(job_id)
        if job is None:
            return None
        if job.status is not JobStatus.PROCESSING:
            logger.debug(f"[JobQueue] Cancel ignored for {job_id} in state {job.status.value}")
            return job

        self._fail(job, CANCELLED_REASON, cancelled=True)
        if job.task is not None and not job.task.done():
            job.task.cancel()
        return job

    def remove(self, job_id: str) -> bool:
        """Drop a pending or finished job from the queue. Processing jobs must be cancelled first."""
        job = self.jobs.get(job_id)
        if job is None:
            return False
        if job.status is JobStatus.PROCESSING:
            raise JobStateError(f"Job {job_id} is processing; cancel it first")
        if job in self._pending:
            self._pending.remove(job)
        del self.jobs[job_id]
        logger.debug(f"[JobQueue] Removed {job_id}")
        return True

    async def drain(self) -> None:
        """Wait until nothing is pending or running."""
        while self._tasks or self._pending:
            if not self._tasks:
                self._pump()
                await asyncio.sleep(0)
                continue
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel the active job and wait for its task to unwind."""
        self._pending.clear()
        if self._active is not None:
            self.cancel(self._active.job_id)
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # === State machine ===

    def _pump(self) -> None:
        if self._active is not None or not self._pending:
            return
        self._start(self._pending.popleft())

    def _start(self, job: Job) -> None:
        job.status = JobStatus.PROCESSING
        job.phase = JobPhase.PREPARING
        job.started_at = self.now()
        job.estimated_seconds = estimate_processing_time(job.file_size_bytes, job.requested_scale)
        job.eta_seconds = job.estimated_seconds
        self._active = job

        task = asyncio.get_running_loop().create_task(self._execute(job))
        job.task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        logger.info(f"[JobQueue] Processing {job.job_id} (ETA {job.estimated_seconds}s)")
        self.job_changed.emit(job)

    def _on_tick(self, job: Job, progress: float, eta: int, phase: JobPhase) -> None:
        if job.status is not JobStatus.PROCESSING or progress <= job.progress:
            return
        job.progress = progress
        job.eta_seconds = eta
        job.phase = phase
        self.job_changed.emit(job)

    async def _execute(self, job: Job) -> None:
        request = UpscaleRequest(
            user_id=job.user_id,
            image=job.image,
            content_type=job.source.content_type,
            scale=job.requested_scale,
            quality=job.quality_preset.value,
            output_format=job.output_format,
            plan=job.plan.value,
        )
        ticker = ProgressTicker(
            on_tick=lambda progress, eta, phase: self._on_tick(job, progress, eta, phase),
            estimated_seconds=job.estimated_seconds,
            start_progress=job.progress,
            interval=self.progress_interval,
            ceiling=self.progress_ceiling,
            rng=self.rng,
        )
        job.ticker = ticker

        try:
            with ticker:
                response = await self.backend.upscale(request)

            if not response.success or not response.result_url:
                self._fail(job, response.error or "AI upscaling failed")
                return

            await self._complete(job, response)

        except asyncio.CancelledError:
            if job.status is JobStatus.PROCESSING:
                self._fail(job, CANCELLED_REASON, cancelled=True)
            raise
        except Exception as e:
            logger.warning(f"[JobQueue] Job {job.job_id} failed: {e}")
            self._fail(job, str(e) or type(e).__name__)
        finally:
            job.release_timer()
            job.image = b""
            if self._active is job:
                self._active = None
                self._pump()

    async def _complete(self, job: Job, response: UpscaleResponse) -> None:
        if job.status is not JobStatus.PROCESSING:
            return

        if response.original_dimensions is not None:
            job.original_width = response.original_dimensions.width
            job.original_height = response.original_dimensions.height

        dims = None
        if response.upscaled_dimensions is not None:
            dims = (response.upscaled_dimensions.width, response.upscaled_dimensions.height)
        elif self.probe is not None:
            dims = await self.probe.dimensions(response.result_url)
            # Cancel wins if it landed while the result was being decoded.
            if job.status is not JobStatus.PROCESSING:
                return
        if dims is None and job.original_width and job.original_height:
            dims = (job.original_width * job.requested_scale, job.original_height * job.requested_scale)

        job.result_url = response.result_url
        job.input_url = response.input_url
        job.remaining_upscales = response.remaining_upscales
        if dims is not None:
            job.result_width, job.result_height = dims

        # Persist first; a failed write leaves the job processing so _fail can still end it.
        job.completed_at = self.now()
        self.history.append(self._history_item(job))

        job.status = JobStatus.COMPLETED
        job.phase = JobPhase.COMPLETE
        job.progress = 100.0
        job.eta_seconds = 0
        logger.info(f"[JobQueue] Completed {job.job_id}: {job.result_width}×{job.result_height}")

        self._finish(job)
        await self._record_usage(job)

    def _fail(self, job: Job, message: str, cancelled: bool = False) -> None:
        if job.status is not JobStatus.PROCESSING:
            return
        job.status = JobStatus.FAILED
        job.phase = JobPhase.FAILED
        job.error = message
        job.cancelled = cancelled
        job.eta_seconds = 0
        job.completed_at = self.now()
        if cancelled:
            logger.info(f"[JobQueue] Cancelled {job.job_id}")
        self._finish(job)

    def _finish(self, job: Job) -> None:
        job.release_timer()
        if self._active is job:
            self._active = None
        self.job_changed.emit(job)
        self._pump()

    async def _record_usage(self, job: Job) -> None:
        if self.usage is None or job.job_id in self._counted:
            return
        self._counted.add(job.job_id)
        try:
            await self.usage.increment_upscale_counts(job.user_id)
            stats = await self.usage.get_user_usage_stats(job.user_id)
        except Exception:
            logger.exception(f"[JobQueue] Usage tracking failed for {job.job_id}")
            return
        self.last_usage = stats
        self.usage_changed.emit(stats)

    def _history_item(self, job: Job) -> HistoryItem:
        elapsed = None
        if job.started_at and job.completed_at:
            elapsed = round((job.completed_at - job.started_at).total_seconds(), 2)
        return HistoryItem(
            id=job.job_id,
            job_id=job.job_id,
            filename=job.source.filename,
            original_url=job.input_url,
            result_url=job.result_url,
            scale=job.requested_scale,
            image_type=job.quality_preset.value,
            output_format=job.output_format,
            original_width=job.original_width,
            original_height=job.original_height,
            result_width=job.result_width,
            result_height=job.result_height,
            file_size_bytes=job.file_size_bytes,
            processing_seconds=elapsed,
            timestamp=job.completed_at,
        )
