"""
ForgeSR - Upscale Service
==========================
Presentation boundary over the four core components.

    UploadRegistry → ScaleConstraintValidator → JobQueue → HistoryCache

Reads: current job, job by id, history view, validator verdict.
Writes: select upload, submit, cancel, delete, clear_all.
"""

from typing import Any, Dict, Iterable, Mapping, Optional

from loguru import logger

from runtime.usage_tracking import check_user_can_upscale

from .config import ForgeConfig
from .errors import NoUploadError, QuotaExceededError, SegmentRequiredError, ValidationError
from .history import CleanupScheduler, HistoryCache, HistoryFilter, HistorySort, HistoryView
from .plans import PlanTier, QualityPreset, coerce_plan, coerce_preset, resolve_plan_tier
from .uploads import UploadedFile, UploadRegistry
from .validator import Rejected, ScaleConstraintValidator, SegmentRequired, Verdict


class UpscaleService:
    """
    Wires the upload registry, validator, job queue and history cache together.

    All collaborators are injected; the service holds no global state.
    """

    def __init__(
        self,
        uploads: UploadRegistry,
        validator: ScaleConstraintValidator,
        queue,
        history: HistoryCache,
        config: Optional[ForgeConfig] = None,
        user_plans: Optional[Dict[str, PlanTier]] = None
    ):
        self.config = config or ForgeConfig()
        self.uploads = uploads
        self.validator = validator
        self.queue = queue
        self.history = history
        # Last plan seen per user; read by the usage tracker for the monthly limit
        self.user_plans = user_plans if user_plans is not None else {}
        self.scheduler = CleanupScheduler(history, self.config.cleanup_check_seconds)

    # === Lifecycle ===

    def start(self) -> None:
        """Start the periodic cleanup scheduler; its first (rate limited) pass runs at once."""
        self.scheduler.start()

    async def stop(self) -> None:
        await self.scheduler.stop()
        await self.queue.shutdown()

    # === Reads ===

    @property
    def current_job(self):
        return self.queue.current_job

    def get_job(self, job_id: str):
        return self.queue.get_job(job_id)

    def history_view(
        self,
        history_filter: Optional[HistoryFilter] = None,
        sort: HistorySort = HistorySort.NEWEST
    ) -> HistoryView:
        return self.history.query(history_filter, sort)

    def verdict(self, plan: PlanTier, preset: QualityPreset, width: int, height: int, scale: int) -> Verdict:
        return self.validator.validate(plan, preset, width, height, scale)

    # === Writes ===

    def select_upload(self, filename: str, content_type: Optional[str], data: bytes) -> UploadedFile:
        return self.uploads.select(filename, content_type, data)

    async def decode_upload(self, upload: Optional[UploadedFile] = None) -> UploadedFile:
        return await self.uploads.decode(upload)

    async def submit(
        self,
        upload_id: Optional[str],
        user_id: str,
        scale: int,
        preset: Any,
        output_format: str = "png",
        plan: Optional[Any] = None,
        profile: Optional[Mapping[str, Any]] = None
    ):
        """
        Validate a request and hand it to the job queue.

        The plan is taken from `plan` if given, otherwise resolved from `profile`.

        Raises:
            NoUploadError: No matching, decoded upload
            ValidationError: Rejected by the validator
            SegmentRequiredError: Legal only as a tiled upscale
            QuotaExceededError: Monthly quota exhausted
        """
        upload = self.uploads.get(upload_id) if upload_id else self.uploads.current
        if upload is None:
            raise NoUploadError("No image selected; upload a file first")
        if not upload.has_dimensions:
            upload = await self.uploads.decode(upload)
            if not upload.has_dimensions:
                raise NoUploadError("The selected image was replaced before it could be decoded")

        tier = coerce_plan(plan) if plan is not None else resolve_plan_tier(profile)
        preset = coerce_preset(preset)
        self.user_plans[user_id] = tier

        verdict = self.validator.validate(tier, preset, upload.width, upload.height, scale)
        if isinstance(verdict, Rejected):
            logger.info(f"[Service] Rejected {scale}x for {tier.value}/{preset.value}: {verdict.reason.value}")
            raise ValidationError(verdict)
        if isinstance(verdict, SegmentRequired):
            # TODO: run tiled upscales once the split/stitch pipeline exists
            logger.info(f"[Service] {scale}x needs {verdict.plan.segments} segments; refusing")
            raise SegmentRequiredError(verdict)

        if self.queue.usage is not None:
            eligibility = await check_user_can_upscale(self.queue.usage, user_id)
            if not eligibility.can_upscale:
                raise QuotaExceededError(eligibility.reason)

        job = self.queue.create_job(upload, user_id, tier, scale, preset, output_format)
        return self.queue.submit(job)

    def cancel(self, job_id: str):
        return self.queue.cancel(job_id)

    def delete(self, ids: Iterable[str]) -> int:
        return self.history.delete(ids)

    def clear_all(self) -> int:
        return self.history.clear_all()
