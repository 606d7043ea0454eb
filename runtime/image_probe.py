"""
ForgeSR - Result Image Probe
=============================
Decodes the dimensions of a finished upscale from its URL.
"""

import asyncio
from io import BytesIO
from pathlib import Path
from typing import Optional, Tuple

import requests
from loguru import logger
from PIL import Image, UnidentifiedImageError


class ImageProbe:
    """Fetches a result image and reads its size with Pillow."""

    def __init__(self, timeout: float = 30.0, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session or requests.Session()

    async def dimensions(self, url: str) -> Optional[Tuple[int, int]]:
        """
        Return (width, height) of the image at url, or None if it cannot be decoded.
        """
        try:
            return await asyncio.to_thread(self._read, url)
        except (requests.exceptions.RequestException, UnidentifiedImageError, Image.DecompressionBombError,
                OSError) as e:
            logger.warning(f"[ImageProbe] Could not decode {url}: {e}")
            return None

    def _read(self, url: str) -> Tuple[int, int]:
        if url.startswith(("http://", "https://")):
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
            source = BytesIO(response.content)
        else:
            source = Path(url.removeprefix("file://"))

        with Image.open(source) as img:
            return img.size
