"""ForgeSR - Core Upscale Orchestration Module"""

from .config import ForgeConfig
from .errors import (
    ForgeError,
    ValidationError,
    SegmentRequiredError,
    QuotaExceededError,
    UploadRejectedError,
    NoUploadError,
    JobNotFoundError,
    JobStateError,
    ProcessingError,
    UpscaleServiceError
)
from .history import HistoryCache, HistoryFilter, HistoryItem, HistorySort, prune_history
from .plans import PlanTier, QualityPreset, allowed_scales, resolve_plan_tier
from .validator import Accepted, Rejected, RejectReason, ScaleConstraintValidator, SegmentRequired

__all__ = [
    'ForgeConfig',
    'ForgeError',
    'ValidationError',
    'SegmentRequiredError',
    'QuotaExceededError',
    'UploadRejectedError',
    'NoUploadError',
    'JobNotFoundError',
    'JobStateError',
    'ProcessingError',
    'UpscaleServiceError',
    'HistoryCache',
    'HistoryFilter',
    'HistoryItem',
    'HistorySort',
    'prune_history',
    'PlanTier',
    'QualityPreset',
    'allowed_scales',
    'resolve_plan_tier',
    'Accepted',
    'Rejected',
    'RejectReason',
    'ScaleConstraintValidator',
    'SegmentRequired',
]
__version__ = '1.0.0'
