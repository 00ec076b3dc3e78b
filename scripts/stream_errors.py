"""
Stream Errors - Exception types raised by the HLS stream downloader.

Every error records the stage it came from (manifest, key, segment, output,
remux) so callers can report which fetch or step broke a track download.
"""

from typing import Optional


class StreamDownloadError(Exception):
    """Base class for all stream download failures."""

    def __init__(self, message: str, stage: str = "", segment_index: Optional[int] = None):
        super().__init__(message)
        self.stage = stage
        self.segment_index = segment_index

    @property
    def kind(self) -> str:
        return type(self).__name__

    def __str__(self) -> str:
        message = super().__str__()
        if self.segment_index is not None:
            return f"{self.stage} #{self.segment_index}: {message}"
        if self.stage:
            return f"{self.stage}: {message}"
        return message


class StreamNetworkError(StreamDownloadError):
    """Connection failure or timeout during an HTTP fetch."""


class StreamStatusError(StreamDownloadError):
    """An HTTP fetch returned a non-success status."""

    def __init__(
        self,
        status_code: int,
        reason: str = "",
        stage: str = "",
        segment_index: Optional[int] = None,
    ):
        message = f"request failed with status code: {status_code}"
        if reason:
            message += f" {reason}"
        super().__init__(message, stage, segment_index)
        self.status_code = status_code
        self.reason = reason


class ManifestParseError(StreamDownloadError):
    """The manifest body or its key attributes could not be parsed."""

    def __init__(self, message: str):
        super().__init__(message, stage="manifest")


class StreamCryptoError(StreamDownloadError):
    """Invalid key material, unaligned ciphertext or bad padding."""


class OutputWriteError(StreamDownloadError):
    """Creating, writing or closing the output artifact failed."""

    def __init__(self, message: str, segment_index: Optional[int] = None):
        super().__init__(message, stage="output", segment_index=segment_index)


class RemuxError(StreamDownloadError):
    """The external remux tool failed."""

    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = ""):
        super().__init__(message, stage="remux")
        self.returncode = returncode
        self.stderr = stderr


class FfmpegNotFoundError(RemuxError):
    """ffmpeg is required but not on the executable search path."""

    def __init__(self, message: str = "ffmpeg not found"):
        super().__init__(message)


class ConfigError(Exception):
    """The configuration file is missing, malformed or invalid."""
