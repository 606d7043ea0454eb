"""
ForgeSR - Remote Upscale Client
================================
Adapter for the external AI upscaling service.

The service is opaque: one request in, either a result URL or an error out.
No automatic retries; timeouts surface as errors like any other failure.
"""

import asyncio
import base64
from dataclasses import dataclass
from typing import Optional, Protocol

import requests
from loguru import logger
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from core.errors import UpscaleServiceError


UPSCALER_PATH = "/functions/v1/upscaler"


class Dimensions(BaseModel):
    width: int
    height: int


class UpscaleResponse(BaseModel):
    """Response payload of the upscale service (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    success: bool
    image_url: Optional[str] = None
    output_url: Optional[str] = None
    input_url: Optional[str] = None
    original_dimensions: Optional[Dimensions] = None
    upscaled_dimensions: Optional[Dimensions] = None
    remaining_upscales: Optional[int] = None
    applied_scale: Optional[int] = None
    processing_time: Optional[float] = None
    error: Optional[str] = None

    @property
    def result_url(self) -> Optional[str]:
        return self.image_url or self.output_url


@dataclass
class UpscaleRequest:
    """What the job queue sends to the service."""
    user_id: str
    image: bytes
    content_type: str
    scale: int
    quality: str
    output_format: str = "png"
    plan: str = "basic"

    def image_data_url(self) -> str:
        encoded = base64.b64encode(self.image).decode("ascii")
        return f"data:{self.content_type};base64,{encoded}"


class UpscaleBackend(Protocol):
    """Anything that can perform an upscale."""

    async def upscale(self, request: UpscaleRequest) -> UpscaleResponse:
        ...


class HttpUpscaleClient:
    """
    HTTP client for the hosted upscaler function.

    Args:
        base_url: Service root, e.g. https://project.example.co (None = not configured)
        api_key: Bearer token sent with every request
        timeout: Request timeout in seconds
        session: Optional requests session (for connection reuse / tests)
    """

    def __init__(
        self,
        base_url: Optional[str],
        api_key: str = "",
        timeout: float = 300.0,
        session: Optional[requests.Session] = None
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def is_configured(self) -> bool:
        return bool(self.base_url)

    async def upscale(self, request: UpscaleRequest) -> UpscaleResponse:
        return await asyncio.to_thread(self._post, request)

    def _post(self, request: UpscaleRequest) -> UpscaleResponse:
        if not self.is_configured():
            raise UpscaleServiceError("Upscale service is not configured. Set FORGE_UPSCALER_URL.")

        payload = {
            "imageBase64": request.image_data_url(),
            "scale": request.scale,
            "quality": request.quality,
            "outputFormat": request.output_format,
            "plan": request.plan,
            "userId": request.user_id,
        }
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        logger.info(f"[UpscaleClient] Requesting {request.scale}x {request.quality} upscale "
                    f"({len(request.image) / 1024 / 1024:.2f}MB)")

        try:
            response = self.session.post(
                f"{self.base_url}{UPSCALER_PATH}",
                json=payload,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            raise UpscaleServiceError(f"Upscale service timed out after {self.timeout:.0f}s") from e
        except requests.exceptions.RequestException as e:
            raise UpscaleServiceError(f"Upscale service unreachable: {e}") from e

        if not response.ok:
            raise UpscaleServiceError(
                f"Processing error: {response.status_code} {response.text[:500]}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise UpscaleServiceError("Upscale service returned invalid JSON") from e

        result = UpscaleResponse.model_validate(data)
        if not result.success:
            raise UpscaleServiceError(result.error or "Processing failed")
        if not result.result_url:
            raise UpscaleServiceError("Upscale service returned no image URL")

        logger.info(f"[UpscaleClient] Upscale finished: {result.result_url}")
        return result
