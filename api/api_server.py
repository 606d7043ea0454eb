"""
ForgeSR API Server
===================
FastAPI adapter over the ForgeSR upscale service.

This module provides HTTP endpoints to:
1. Upload an image (replaces the previous upload)
2. Ask the scale validator for a verdict
3. Submit, poll and cancel upscale jobs
4. Browse, delete and clean up the upscale history

The adapter holds no state of its own; everything lives on the
UpscaleService stored in app.state.
"""

from contextlib import asynccontextmanager
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from loguru import logger

from core.config import ForgeConfig
from core.errors import (
    ForgeError, JobNotFoundError, JobStateError, NoUploadError, QuotaExceededError,
    SegmentRequiredError, UploadRejectedError, ValidationError
)
from core.history import HistoryCache, HistoryFilter, HistorySort
from core.log_setup import setup_logging
from core.plans import DEFAULT_PLAN, PlanTier, allowed_scales, describe_plans
from core.service import UpscaleService
from core.storage import JsonFileStore
from core.uploads import ALLOWED_MIME_TYPES, UploadRegistry
from core.validator import Rejected, ScaleConstraintValidator, SegmentRequired
from runtime.image_probe import ImageProbe
from runtime.upscale_client import HttpUpscaleClient
from runtime.usage_tracking import LocalUsageTracker

from .job_manager import Job, JobQueue
from .schemas import (
    CleanupResponse, DeleteHistoryRequest, DeleteResponse, ErrorResponse,
    HistoryEntryResponse, HistoryResponse, JobResponse, ProcessRequest,
    SegmentPlanResponse, UploadResponse, UsageResponse, ValidateRequest, VerdictResponse
)

# === Configuration ===
CONFIG = ForgeConfig.from_env()

HOST = "0.0.0.0"
PORT = 8000
READ_CHUNK = 1024 * 1024  # 1MB

# Status code per error class; first match wins
ERROR_STATUS = (
    (ValidationError, 400, "validation_error"),
    (SegmentRequiredError, 400, "segment_required"),
    (UploadRejectedError, 400, "upload_rejected"),
    (QuotaExceededError, 402, "quota_exceeded"),
    (NoUploadError, 404, "no_upload"),
    (JobNotFoundError, 404, "job_not_found"),
    (JobStateError, 409, "invalid_job_state"),
)


# === Wiring ===

def build_service(config: ForgeConfig) -> UpscaleService:
    """Assemble the service with file-backed storage under config.data_dir."""
    config.data_dir.mkdir(parents=True, exist_ok=True)
    store = JsonFileStore(config.store_path)

    user_plans: Dict[str, PlanTier] = {}
    history = HistoryCache(store, config)
    usage = LocalUsageTracker(store, plan_for_user=lambda user_id: user_plans.get(user_id, DEFAULT_PLAN))
    queue = JobQueue(
        backend=HttpUpscaleClient(config.upscaler_url, config.upscaler_key, config.upscaler_timeout),
        history=history,
        usage=usage,
        probe=ImageProbe(config.probe_timeout),
        config=config,
    )
    return UpscaleService(
        uploads=UploadRegistry(config.uploads_dir, config),
        validator=ScaleConstraintValidator(config),
        queue=queue,
        history=history,
        config=config,
        user_plans=user_plans,
    )


def get_service(request: Request) -> UpscaleService:
    return request.app.state.service


# === Response helpers ===

def job_response(job: Job) -> JobResponse:
    return JobResponse(
        job_id=job.job_id,
        status=job.status,
        phase=job.phase.value,
        current_step=job.current_step,
        progress=round(job.progress),
        eta_seconds=job.eta_seconds,
        scale=job.requested_scale,
        quality=job.quality_preset,
        output_format=job.output_format,
        result_url=job.result_url,
        result_width=job.result_width,
        result_height=job.result_height,
        original_width=job.original_width,
        original_height=job.original_height,
        remaining_upscales=job.remaining_upscales,
        error=job.error,
        cancelled=job.cancelled,
        created_at=job.created_at,
        completed_at=job.completed_at,
    )


def verdict_response(service: UpscaleService, request: ValidateRequest) -> VerdictResponse:
    verdict = service.verdict(request.plan, request.quality, request.width, request.height, request.scale)
    response = VerdictResponse(
        kind=verdict.kind,
        scale=verdict.scale,
        output_width=verdict.output_width,
        output_height=verdict.output_height,
        message=verdict.message,
        allowed_scales=list(allowed_scales(request.plan, request.quality)),
        max_allowed_scale=service.validator.max_allowed_scale(
            request.plan, request.quality, request.width, request.height
        ),
    )
    if isinstance(verdict, Rejected):
        response.reason = verdict.reason.value
        response.suggested_scale = verdict.suggested_scale
    elif isinstance(verdict, SegmentRequired):
        response.segments = SegmentPlanResponse(
            grid=verdict.plan.grid,
            segments=verdict.plan.segments,
            segment_width=verdict.plan.segment_width,
            segment_height=verdict.plan.segment_height,
        )
    return response


async def forge_error_handler(request: Request, exc: ForgeError) -> JSONResponse:
    status_code, error = 500, "internal_error"
    for cls, code, name in ERROR_STATUS:
        if isinstance(exc, cls):
            status_code, error = code, name
            break

    body = ErrorResponse(error=error, detail=str(exc))
    if isinstance(exc, ValidationError):
        body.suggested_scale = exc.suggested_scale
    logger.debug(f"[API] {request.method} {request.url.path} -> {status_code} {error}")
    return JSONResponse(status_code=status_code, content=body.model_dump())


# === Initialize App ===

def create_app(service: Optional[UpscaleService] = None, config: Optional[ForgeConfig] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        service: Pre-built service (tests); built from config at startup otherwise
        config: Configuration used when service is None (default: CONFIG)
    """
    config = config or CONFIG

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.service is None:
            app.state.service = build_service(config)
        app.state.service.start()
        logger.info("[API] ForgeSR API started")
        yield
        await app.state.service.stop()
        logger.info("[API] ForgeSR API stopped")

    app = FastAPI(
        title="ForgeSR API",
        description="Image upscale job orchestration",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.service = service

    # Enable CORS for frontend access
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Allow all origins for local development
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ForgeError, forge_error_handler)

    register_routes(app)
    return app


# === API Endpoints ===

def register_routes(app: FastAPI) -> None:

    @app.post("/api/upload", response_model=UploadResponse)
    async def upload_file(file: UploadFile = File(...), service: UpscaleService = Depends(get_service)):
        """
        Upload an image. Replaces the current upload.

        Accepts: JPEG, PNG, WEBP, GIF, BMP, TIFF, AVIF, HEIC
        """
        limit = service.uploads.max_upload_bytes
        chunks: List[bytes] = []
        total_size = 0
        while chunk := await file.read(READ_CHUNK):
            total_size += len(chunk)
            if total_size > limit:
                raise HTTPException(
                    status_code=413,
                    detail=f"File too large. Maximum size: {limit // (1024 * 1024)}MB"
                )
            chunks.append(chunk)

        upload = service.select_upload(file.filename, file.content_type, b"".join(chunks))
        upload = await service.decode_upload(upload)

        return UploadResponse(
            upload_id=upload.id,
            filename=upload.filename,
            size_bytes=upload.size_bytes,
            width=upload.width,
            height=upload.height,
        )

    @app.get("/api/upload/{upload_id}/preview")
    async def get_preview(upload_id: str, service: UpscaleService = Depends(get_service)):
        """Downscaled PNG preview of the current upload."""
        upload = service.uploads.get(upload_id)
        if upload is None or upload.preview_path is None or not upload.preview_path.exists():
            raise HTTPException(status_code=404, detail="Preview not found")
        return FileResponse(path=upload.preview_path, media_type="image/png")

    @app.post("/api/validate", response_model=VerdictResponse)
    async def validate_scale(request: ValidateRequest, service: UpscaleService = Depends(get_service)):
        """Validator verdict for a scale request, without creating a job."""
        return verdict_response(service, request)

    @app.post("/api/process", response_model=JobResponse)
    async def process_file(request: ProcessRequest, service: UpscaleService = Depends(get_service)):
        """
        Submit the current upload for upscaling.

        The job runs in the background; poll /api/status/{job_id}.
        """
        job = await service.submit(
            upload_id=request.upload_id,
            user_id=request.user_id,
            scale=request.scale,
            preset=request.quality,
            output_format=request.output_format,
            plan=request.plan,
        )
        return job_response(job)

    @app.get("/api/status/{job_id}", response_model=JobResponse)
    async def get_status(job_id: str, service: UpscaleService = Depends(get_service)):
        """
        Get the current status of a job.

        States: pending, processing, completed, failed
        Progress: 0-100
        """
        job = service.get_job(job_id)
        if job is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        return job_response(job)

    @app.post("/api/cancel/{job_id}", response_model=JobResponse)
    async def cancel_job(job_id: str, service: UpscaleService = Depends(get_service)):
        """Cancel a processing job. Cancelling a finished job changes nothing."""
        job = service.cancel(job_id)
        if job is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        return job_response(job)

    @app.get("/api/jobs/current", response_model=Optional[JobResponse])
    async def get_current_job(service: UpscaleService = Depends(get_service)):
        job = service.current_job
        return job_response(job) if job is not None else None

    @app.get("/api/history", response_model=HistoryResponse)
    async def get_history(
        image_type: str = "all",
        expiring_within_days: Optional[int] = Query(default=None, ge=0),
        sort: HistorySort = HistorySort.NEWEST,
        service: UpscaleService = Depends(get_service)
    ):
        view = service.history_view(HistoryFilter(image_type, expiring_within_days), sort)
        return HistoryResponse(
            items=[
                HistoryEntryResponse(
                    **item.model_dump(exclude={"job_id"}),
                    days_until_expiry=view.days_until_expiry(item),
                )
                for item in view
            ],
            total=len(view),
            sort=sort,
            retention_days=service.history.retention_days,
            max_items=service.history.max_items,
        )

    @app.delete("/api/history", response_model=DeleteResponse)
    async def delete_history(request: DeleteHistoryRequest, service: UpscaleService = Depends(get_service)):
        """Delete history entries by id. Unknown ids are ignored."""
        removed = service.delete(request.ids)
        return DeleteResponse(removed=removed, remaining=service.history.size())

    @app.delete("/api/history/all", response_model=DeleteResponse)
    async def clear_history(service: UpscaleService = Depends(get_service)):
        removed = service.clear_all()
        return DeleteResponse(removed=removed, remaining=0)

    @app.post("/api/history/cleanup", response_model=CleanupResponse)
    async def cleanup_history(force: bool = False, service: UpscaleService = Depends(get_service)):
        """Run a retention pass. Skipped if one ran within the interval, unless forced."""
        result = service.history.cleanup(force=force)
        remaining = service.history.size()
        if result is None:
            return CleanupResponse(ran=False, remaining=remaining)
        return CleanupResponse(
            ran=True,
            removed=result.removed_count,
            expired=len(result.expired),
            overflow=len(result.overflow),
            remaining=remaining,
        )

    @app.get("/api/usage/{user_id}", response_model=UsageResponse)
    async def get_usage(user_id: str, service: UpscaleService = Depends(get_service)):
        tracker = service.queue.usage
        if tracker is None:
            raise HTTPException(status_code=404, detail="Usage tracking is disabled")
        stats = await tracker.get_user_usage_stats(user_id)
        return UsageResponse(
            user_id=stats.user_id,
            used_this_month=stats.used_this_month,
            monthly_limit=stats.monthly_limit,
            remaining=stats.remaining,
            usage_percentage=stats.usage_percentage,
            days_until_reset=stats.days_until_reset,
        )

    @app.get("/api/plans")
    async def get_plans():
        """Plan table with the allowed scales per quality preset."""
        return describe_plans()

    @app.get("/api/health")
    async def health_check(service: UpscaleService = Depends(get_service)):
        """Health check endpoint."""
        backend = service.queue.backend
        configured = backend.is_configured() if hasattr(backend, "is_configured") else True
        return {
            "status": "ok",
            "service": "ForgeSR API",
            "upscaler_configured": configured,
            "accepted_types": sorted(ALLOWED_MIME_TYPES),
        }


app = create_app()


# === Run Server ===

if __name__ == "__main__":
    import uvicorn

    log_file = setup_logging(CONFIG.log_level, CONFIG.logs_dir)

    logger.info("=" * 60)
    logger.info("ForgeSR API Server")
    logger.info("=" * 60)
    logger.info(f"Data directory: {CONFIG.data_dir}")
    logger.info(f"Upscaler: {CONFIG.upscaler_url or 'not configured'}")
    logger.info(f"Log file: {log_file}")
    logger.info("=" * 60)

    uvicorn.run(
        "api.api_server:app",
        host=HOST,
        port=PORT,
        reload=False
    )
