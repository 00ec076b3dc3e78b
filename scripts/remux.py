"""
Remux - Repackages a decrypted stream into an M4A container with ffmpeg.

The audio essence is copied without re-encoding and container metadata is
dropped; tags are written later by whoever owns the final file.
"""

import logging
import shutil
import subprocess
from pathlib import Path
from typing import Union

from stream_errors import FfmpegNotFoundError, RemuxError

logger = logging.getLogger(__name__)

DEFAULT_FFMPEG = "ffmpeg"


def ffmpeg_installed(ffmpeg_path: str = DEFAULT_FFMPEG) -> bool:
    """Check if ffmpeg can be found on the executable search path."""
    return shutil.which(ffmpeg_path) is not None


def build_remux_command(
    input_path: Union[str, Path],
    output_path: Union[str, Path],
    ffmpeg_path: str = DEFAULT_FFMPEG,
) -> list[str]:
    return [
        ffmpeg_path,
        "-loglevel", "error",
        "-y",
        "-i", str(input_path),
        "-map_metadata", "-1",
        "-c:a", "copy",
        str(output_path),
    ]


def remux_to_m4a(
    input_path: Union[str, Path],
    output_path: Union[str, Path],
    ffmpeg_path: str = DEFAULT_FFMPEG,
) -> Path:
    """
    Copy the audio stream of `input_path` into `output_path`.

    Raises:
        FfmpegNotFoundError: the ffmpeg executable does not exist
        RemuxError: ffmpeg exited with a non-zero status
    """
    cmd = build_remux_command(input_path, output_path, ffmpeg_path)
    logger.info(f"Remuxing {input_path} -> {output_path}")
    try:
        result = subprocess.run(cmd, capture_output=True, text=True)
    except FileNotFoundError as e:
        raise FfmpegNotFoundError(f"ffmpeg not found: {ffmpeg_path}") from e

    if result.returncode != 0:
        stderr = (result.stderr or "").strip()
        raise RemuxError(
            f"ffmpeg: exit status {result.returncode}: {stderr[-500:]}",
            returncode=result.returncode,
            stderr=stderr,
        )
    return Path(output_path)
