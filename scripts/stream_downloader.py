"""
Stream Downloader - Downloads an encrypted HLS audio stream to a final file.

Ties the pieces together: resolve the manifest, fetch the key, decrypt every
segment into a temporary artifact, then remux it into the final container
with ffmpeg. The temporary artifact is removed whether or not the download
succeeds.
"""

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Optional, Union

import httpx

from hls_manifest import resolve_manifest
from remux import remux_to_m4a
from segment_pipeline import ProgressCallback, new_artifact_path, write_segments
from stream_config import AppConfig
from stream_key import fetch_stream_key

logger = logging.getLogger(__name__)


class HlsTrackDownloader:
    """Downloads and decrypts one HLS audio stream per call."""

    def __init__(self, config: AppConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        # Tests inject an httpx.MockTransport here
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        kwargs = {
            "timeout": self.config.request_timeout,
            "follow_redirects": True,
        }
        if self.transport is not None:
            kwargs["transport"] = self.transport
        elif self.config.proxy:
            kwargs["proxy"] = self.config.proxy
        return httpx.AsyncClient(**kwargs)

    def _temp_dir(self) -> Path:
        temp_dir = Path(self.config.temp_directory)
        temp_dir.mkdir(parents=True, exist_ok=True)
        return temp_dir

    async def fetch_decrypted(
        self,
        stream_url: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Path:
        """
        Resolve the stream and write its decrypted segments to a temp artifact.

        Returns:
            Path to the decrypted (not yet remuxed) artifact
        """
        retry = self.config.retry_policy()
        artifact_path = new_artifact_path(self._temp_dir())

        async with self._client() as client:
            # 1. Manifest
            manifest = await resolve_manifest(
                client, stream_url, self.config.url_resolution, retry
            )

            # 2. Key (only needed when there is something to decrypt)
            stream_key = None
            if manifest.key is not None:
                stream_key = await fetch_stream_key(client, manifest.key, retry)

            # 3. Segments
            try:
                await write_segments(
                    client,
                    artifact_path,
                    manifest.segment_urls,
                    stream_key,
                    workers=self.config.segment_workers,
                    strict_padding=self.config.strict_padding,
                    retry=retry,
                    on_progress=on_progress,
                )
            except BaseException:
                artifact_path.unlink(missing_ok=True)
                raise

        return artifact_path

    async def download(
        self,
        stream_url: str,
        output_path: Union[str, Path],
        on_progress: Optional[ProgressCallback] = None,
    ) -> Path:
        """
        Main download entry point.

        Args:
            stream_url: URL of the HLS media playlist
            output_path: Final file path (an .m4a when remuxing)
            on_progress: Called with (segments_written, total)

        Returns:
            Path to the final file
        """
        output_path = Path(output_path)
        logger.info(f"Downloading stream {stream_url[:80]} -> {output_path}")

        if self.config.remux:
            self.config.check_requirements()

        decrypted_path = await self.fetch_decrypted(stream_url, on_progress)
        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            if self.config.remux:
                try:
                    await asyncio.to_thread(
                        remux_to_m4a, decrypted_path, output_path, self.config.ffmpeg_path
                    )
                except BaseException:
                    # ffmpeg runs with -y and may have left a partial file behind
                    output_path.unlink(missing_ok=True)
                    raise
            else:
                shutil.move(str(decrypted_path), str(output_path))
        finally:
            decrypted_path.unlink(missing_ok=True)

        logger.info(f"Download complete: {output_path}")
        return output_path


async def download_track(
    stream_url: str,
    output_path: Union[str, Path],
    config: Optional[AppConfig] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Path:
    """
    Standalone function to download one stream.

    Without a config, the decrypted artifact is written next to the output
    path and remuxed with ffmpeg from the search path.
    """
    output_path = Path(output_path)
    if config is None:
        config = AppConfig(
            downloads_directory=str(output_path.parent),
            temp_directory=str(output_path.parent),
        )
    downloader = HlsTrackDownloader(config, transport=transport)
    return await downloader.download(stream_url, output_path)


# CLI interface for testing
if __name__ == "__main__":
    import sys

    from stream_errors import ConfigError, StreamDownloadError

    if len(sys.argv) not in (3, 4):
        print(f"Usage: {sys.argv[0]} <stream_url> <output_path> [config.yml]")
        sys.exit(1)

    logging.basicConfig(level=logging.INFO)

    try:
        cli_config = AppConfig.load(sys.argv[3]) if len(sys.argv) == 4 else None
        asyncio.run(download_track(sys.argv[1], sys.argv[2], cli_config))
    except (ConfigError, StreamDownloadError) as e:
        logger.error(f"Download failed: {e}")
        sys.exit(1)
