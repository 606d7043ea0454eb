"""
ForgeSR - Configuration
========================
Single configuration object shared by the validator, job queue and history cache.

Every value can be overridden through a FORGE_* environment variable.
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional


class ForgeConfig:
    """Configuration for the ForgeSR upscale core."""

    def __init__(self):
        # Storage
        self.data_dir: Path = Path.home() / ".local" / "share" / "forgesr"
        self.log_level: str = "INFO"

        # Upload gate
        self.max_upload_bytes: int = 25 * 1024 * 1024  # 25MB
        self.preview_edge: int = 512

        # Scale constraints
        self.dimension_limit: int = 12000
        self.memory_budget_bytes: int = 256 * 1024 * 1024  # 256MB canvas budget
        self.bytes_per_pixel: int = 4  # RGBA
        self.max_segments: int = 16

        # Progress simulation
        self.progress_interval: float = 1.5  # seconds between ticks
        self.progress_ceiling: float = 90.0

        # History retention
        self.retention_days: int = 30
        self.max_items: int = 100
        self.cleanup_interval_hours: float = 24.0
        self.cleanup_check_seconds: float = 3600.0
        self.notice_dismiss_seconds: float = 5.0

        # Remote upscale service
        self.upscaler_url: Optional[str] = None
        self.upscaler_key: str = ""
        self.upscaler_timeout: float = 300.0
        self.probe_timeout: float = 30.0

    @property
    def uploads_dir(self) -> Path:
        return self.data_dir / "uploads"

    @property
    def store_path(self) -> Path:
        return self.data_dir / "storage.json"

    @property
    def logs_dir(self) -> Path:
        return self.data_dir / "logs"

    @property
    def cleanup_interval_seconds(self) -> float:
        return self.cleanup_interval_hours * 3600.0

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "ForgeConfig":
        """
        Build a configuration from FORGE_* environment variables.

        Args:
            environ: Mapping to read from (default: os.environ)

        Returns:
            Configuration with overrides applied
        """
        env = os.environ if environ is None else environ
        config = cls()

        if env.get("FORGE_DATA_DIR"):
            config.data_dir = Path(env["FORGE_DATA_DIR"]).expanduser()
        config.log_level = env.get("FORGE_LOG_LEVEL", config.log_level).upper()

        config.max_upload_bytes = int(env.get("FORGE_MAX_UPLOAD_BYTES", config.max_upload_bytes))
        config.dimension_limit = int(env.get("FORGE_DIMENSION_LIMIT", config.dimension_limit))
        config.memory_budget_bytes = int(env.get("FORGE_MEMORY_BUDGET_BYTES", config.memory_budget_bytes))
        config.max_segments = int(env.get("FORGE_MAX_SEGMENTS", config.max_segments))

        config.progress_interval = float(env.get("FORGE_PROGRESS_INTERVAL", config.progress_interval))

        config.retention_days = int(env.get("FORGE_RETENTION_DAYS", config.retention_days))
        config.max_items = int(env.get("FORGE_MAX_ITEMS", config.max_items))
        config.cleanup_interval_hours = float(
            env.get("FORGE_CLEANUP_INTERVAL_HOURS", config.cleanup_interval_hours)
        )

        config.upscaler_url = env.get("FORGE_UPSCALER_URL") or None
        config.upscaler_key = env.get("FORGE_UPSCALER_KEY", config.upscaler_key)
        config.upscaler_timeout = float(env.get("FORGE_UPSCALER_TIMEOUT", config.upscaler_timeout))

        return config

    def as_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary (secrets masked)."""
        return {
            'data_dir': str(self.data_dir),
            'log_level': self.log_level,
            'max_upload_bytes': self.max_upload_bytes,
            'preview_edge': self.preview_edge,
            'dimension_limit': self.dimension_limit,
            'memory_budget_bytes': self.memory_budget_bytes,
            'bytes_per_pixel': self.bytes_per_pixel,
            'max_segments': self.max_segments,
            'progress_interval': self.progress_interval,
            'progress_ceiling': self.progress_ceiling,
            'retention_days': self.retention_days,
            'max_items': self.max_items,
            'cleanup_interval_hours': self.cleanup_interval_hours,
            'cleanup_check_seconds': self.cleanup_check_seconds,
            'notice_dismiss_seconds': self.notice_dismiss_seconds,
            'upscaler_url': self.upscaler_url,
            'upscaler_key': '***' if self.upscaler_key else '',
            'upscaler_timeout': self.upscaler_timeout,
            'probe_timeout': self.probe_timeout,
        }
