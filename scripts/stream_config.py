"""
Stream Config - YAML configuration for the HLS stream downloader.
"""

import logging
import tempfile
from pathlib import Path
from typing import Literal, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from hls_manifest import UrlResolution
from http_retry import RetryPolicy
from remux import ffmpeg_installed
from stream_errors import ConfigError, FfmpegNotFoundError

logger = logging.getLogger(__name__)

Quality = Literal["lossless", "high", "medium", "medium-hls"]


def _default_temp_directory() -> str:
    return str(Path(tempfile.gettempdir()) / "hls_downloads")


class AppConfig(BaseModel):
    # Unknown keys (account settings, templates) belong to other tools sharing the file
    model_config = ConfigDict(extra="ignore")

    downloads_directory: str
    temp_directory: str = Field(default_factory=_default_temp_directory)
    quality: Quality = "lossless"
    remux: bool = True
    ffmpeg_path: str = "ffmpeg"
    segment_workers: int = Field(default=1, ge=1, le=32)
    request_timeout: float = Field(default=30.0, gt=0)
    max_retries: int = Field(default=0, ge=0, le=10)
    retry_backoff: float = Field(default=2.0, ge=0)
    url_resolution: UrlResolution = UrlResolution.AUTO
    strict_padding: bool = False
    proxy: Optional[str] = None

    @field_validator("downloads_directory")
    @classmethod
    def _require_directory(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("no downloads directory provided")
        return value

    @property
    def requires_ffmpeg(self) -> bool:
        return self.remux or self.quality == "medium-hls"

    def check_requirements(self) -> None:
        """Fail early when remuxing is configured but ffmpeg is missing."""
        if self.requires_ffmpeg and not ffmpeg_installed(self.ffmpeg_path):
            raise FfmpegNotFoundError()

    def retry_policy(self) -> Optional[RetryPolicy]:
        if self.max_retries == 0:
            return None
        return RetryPolicy(max_attempts=self.max_retries + 1, backoff=self.retry_backoff)

    @classmethod
    def load(cls, path: Union[str, Path], check_ffmpeg: bool = True) -> "AppConfig":
        """
        Read and validate a YAML config file.

        Raises:
            ConfigError: unreadable file, invalid YAML or invalid values
            FfmpegNotFoundError: ffmpeg is required and check_ffmpeg is set
        """
        try:
            text = Path(path).read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"read config file: {e}") from e

        try:
            data = yaml.safe_load(text) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"failed to decode config file: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError("config file must contain a mapping")

        try:
            config = cls.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"invalid config file: {e}") from e

        if check_ffmpeg:
            config.check_requirements()
        logger.debug(f"Loaded config from {path}")
        return config

    def save(self, path: Union[str, Path]) -> None:
        data = self.model_dump(mode="json", exclude_none=True)
        try:
            with open(path, "w", encoding="utf-8") as f:
                yaml.safe_dump(data, f, sort_keys=False)
        except OSError as e:
            raise ConfigError(f"write config file: {e}") from e
