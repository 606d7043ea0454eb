"""
ForgeSR - Error Taxonomy
=========================
Exceptions raised at the presentation boundary.

Validation and quota errors are raised before any job exists.
Processing errors never escape the job queue; they end up on a failed Job.
"""

from typing import Optional


CANCELLED_REASON = "Cancelled by user"


class ForgeError(Exception):
    """Base class for all ForgeSR errors."""


class ValidationError(ForgeError):
    """A scale request was rejected by the constraint validator."""

    def __init__(self, verdict):
        self.verdict = verdict
        super().__init__(verdict.message)

    @property
    def reason(self):
        return self.verdict.reason

    @property
    def suggested_scale(self) -> Optional[int]:
        return self.verdict.suggested_scale


class SegmentRequiredError(ForgeError):
    """The request is legal but only as a tiled upscale, which is not executed."""

    def __init__(self, verdict):
        self.verdict = verdict
        super().__init__(verdict.message)


class QuotaExceededError(ForgeError):
    """The user has no upscales left this month."""


class UploadRejectedError(ForgeError):
    """The selected file is not an accepted image or is too large."""


class NoUploadError(ForgeError):
    """Submit was called without a selected, decoded upload."""


class JobNotFoundError(ForgeError):
    """No job with the given id is known to the queue."""


class JobStateError(ForgeError):
    """The requested operation is not legal in the job's current state."""


class ProcessingError(ForgeError):
    """The remote upscale call failed."""


class UpscaleServiceError(ProcessingError):
    """The upscale service returned an error or is not configured."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)
