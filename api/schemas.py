"""
ForgeSR API - Pydantic Schemas
===============================
Request/Response models for API endpoints.
"""

from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from core.history import HistorySort
from core.plans import PlanTier, QualityPreset


class JobStatus(str, Enum):
    """Job processing states."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# === Request Models ===

class ValidateRequest(BaseModel):
    """Ask the validator for a verdict without creating a job."""
    plan: PlanTier = PlanTier.BASIC
    quality: QualityPreset = QualityPreset.PHOTO
    width: int = Field(gt=0)
    height: int = Field(gt=0)
    scale: int = Field(gt=0)


class ProcessRequest(BaseModel):
    """Request to upscale the current upload."""
    upload_id: str
    user_id: str = "local"
    plan: Optional[PlanTier] = None
    quality: QualityPreset = QualityPreset.PHOTO
    scale: int = Field(gt=0)
    output_format: Literal["png", "jpg", "webp"] = "png"


class DeleteHistoryRequest(BaseModel):
    ids: List[str]


# === Response Models ===

class UploadResponse(BaseModel):
    """Response after successful file upload."""
    upload_id: str
    filename: str
    size_bytes: int
    width: int
    height: int


class SegmentPlanResponse(BaseModel):
    grid: int
    segments: int
    segment_width: int
    segment_height: int


class VerdictResponse(BaseModel):
    """Validator verdict for a (plan, preset, dimensions, scale) tuple."""
    kind: Literal["accepted", "rejected", "segment_required"]
    scale: int
    output_width: int
    output_height: int
    reason: Optional[str] = None
    suggested_scale: Optional[int] = None
    segments: Optional[SegmentPlanResponse] = None
    message: str
    allowed_scales: List[int]
    max_allowed_scale: Optional[int] = None


class JobResponse(BaseModel):
    """Job status response."""
    job_id: str
    status: JobStatus
    phase: str
    current_step: str
    progress: int = 0
    eta_seconds: int = 0
    scale: int
    quality: QualityPreset
    output_format: str
    result_url: Optional[str] = None
    result_width: Optional[int] = None
    result_height: Optional[int] = None
    original_width: Optional[int] = None
    original_height: Optional[int] = None
    remaining_upscales: Optional[int] = None
    error: Optional[str] = None
    cancelled: bool = False
    created_at: datetime
    completed_at: Optional[datetime] = None


class HistoryEntryResponse(BaseModel):
    id: str
    filename: str
    original_url: Optional[str] = None
    result_url: str
    scale: int
    image_type: str
    output_format: str
    original_width: Optional[int] = None
    original_height: Optional[int] = None
    result_width: Optional[int] = None
    result_height: Optional[int] = None
    file_size_bytes: int
    processing_seconds: Optional[float] = None
    timestamp: datetime
    days_until_expiry: int


class HistoryResponse(BaseModel):
    items: List[HistoryEntryResponse]
    total: int
    sort: HistorySort
    retention_days: int
    max_items: int


class DeleteResponse(BaseModel):
    removed: int
    remaining: int


class CleanupResponse(BaseModel):
    ran: bool
    removed: int = 0
    expired: int = 0
    overflow: int = 0
    remaining: int


class UsageResponse(BaseModel):
    user_id: str
    used_this_month: int
    monthly_limit: int
    remaining: int
    usage_percentage: int
    days_until_reset: int


class ErrorResponse(BaseModel):
    """Standardized error response."""
    error: str
    detail: Optional[str] = None
    suggested_scale: Optional[int] = None
