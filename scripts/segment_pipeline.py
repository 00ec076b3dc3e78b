"""
Segment Pipeline - Fetches, decrypts and reassembles HLS segments.

Each segment is fetched over HTTP, decrypted with AES-CBC using the stream
key and IV, stripped of its padding and appended to a single output file.
Fetch and decrypt may run ahead for up to `workers` segments, but a single
writer commits plaintext strictly in manifest order.
"""

import asyncio
import logging
import uuid
from collections import deque
from pathlib import Path
from typing import Callable, Optional, Sequence

import httpx
from Crypto.Cipher import AES
from Crypto.Util.Padding import unpad

from http_retry import RetryPolicy, fetch_bytes
from stream_errors import OutputWriteError, StreamCryptoError
from stream_key import StreamKey

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


def strip_padding(decrypted: bytes, strict: bool = False) -> bytes:
    """
    Remove block padding from a decrypted buffer.

    The default trusts the last byte as the padding length and does not look
    at the other padding bytes. strict=True validates full PKCS#7 padding.
    """
    if not decrypted:
        return decrypted
    if strict:
        return unpad(decrypted, AES.block_size)

    padding = decrypted[-1]
    if padding > len(decrypted):
        raise ValueError(f"padding length {padding} exceeds buffer of {len(decrypted)} bytes")
    return decrypted[:len(decrypted) - padding]


def decrypt_segment(
    segment: bytes,
    key: StreamKey,
    strict_padding: bool = False,
    segment_index: Optional[int] = None,
) -> bytes:
    """Decrypt one segment with a fresh CBC decrypter and strip its padding."""
    if len(segment) % AES.block_size:
        raise StreamCryptoError(
            f"ciphertext length {len(segment)} is not a multiple of {AES.block_size}",
            stage="segment",
            segment_index=segment_index,
        )
    if not segment:
        return b""

    try:
        cipher = AES.new(key.value, AES.MODE_CBC, iv=key.iv)
    except ValueError as e:
        raise StreamCryptoError(f"cipher init: {e}", stage="segment", segment_index=segment_index) from e

    decrypted = cipher.decrypt(segment)
    try:
        return strip_padding(decrypted, strict=strict_padding)
    except ValueError as e:
        raise StreamCryptoError(f"padding: {e}", stage="segment", segment_index=segment_index) from e


def new_artifact_path(output_dir: Path) -> Path:
    """Collision-free artifact path; concurrent downloads never share a name."""
    return Path(output_dir) / str(uuid.uuid4())


async def write_segments(
    client: httpx.AsyncClient,
    output_path: Path,
    segment_urls: Sequence[str],
    key: Optional[StreamKey],
    workers: int = 1,
    strict_padding: bool = False,
    retry: Optional[RetryPolicy] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> Path:
    """
    Fetch, decrypt and append every segment to `output_path` in order.

    Args:
        client: HTTP client used for every segment fetch
        output_path: Artifact to create (truncated if it exists)
        segment_urls: Absolute segment URLs in manifest order
        key: Stream key; may be None only when there are no segments
        workers: Segments allowed to be fetched/decrypted ahead of the writer
        strict_padding: Validate PKCS#7 padding instead of trusting the last byte
        retry: Optional retry policy for each segment fetch
        on_progress: Called with (segments_written, total) after each commit

    Returns:
        `output_path`. On failure the partial file is left in place for the
        caller to remove.
    """
    if segment_urls and key is None:
        raise StreamCryptoError("no stream key for encrypted segments", stage="key")

    total = len(segment_urls)
    window = max(1, workers)

    async def fetch_and_decrypt(index: int) -> bytes:
        ciphertext = await fetch_bytes(client, segment_urls[index], "segment", index, retry)
        logger.debug(f"Segment {index + 1}/{total}: {len(ciphertext):,} bytes")
        return decrypt_segment(ciphertext, key, strict_padding, index)

    pending: deque[asyncio.Task] = deque()
    next_index = 0
    try:
        with open(output_path, "w+b") as f:
            for index in range(total):
                while next_index < total and len(pending) < window:
                    pending.append(asyncio.create_task(fetch_and_decrypt(next_index)))
                    next_index += 1

                plaintext = await pending.popleft()
                try:
                    f.write(plaintext)
                except OSError as e:
                    raise OutputWriteError(f"write {output_path}: {e}", segment_index=index) from e

                if on_progress:
                    on_progress(index + 1, total)
    except OSError as e:
        raise OutputWriteError(f"{output_path}: {e}") from e
    finally:
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    logger.info(f"Wrote {total} decrypted segments to {output_path}")
    return output_path


async def download_segments(
    client: httpx.AsyncClient,
    output_dir: Path,
    segment_urls: Sequence[str],
    key: Optional[StreamKey],
    **options,
) -> Path:
    """Download every segment into a fresh UUID-named file under `output_dir`."""
    return await write_segments(
        client, new_artifact_path(output_dir), segment_urls, key, **options
    )
