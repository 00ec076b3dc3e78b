"""
HLS Manifest - Resolves a media playlist URL into segment URLs and key data.

The manifest is fetched once and parsed with the m3u8 library. Segment order
is taken exactly as listed; the first segment's EXT-X-KEY names the key URL
and the IV every segment is decrypted with.
"""

import logging
import posixpath
from dataclasses import dataclass
from enum import Enum
from typing import Optional
from urllib.parse import urljoin, urlsplit

import httpx
import m3u8
from m3u8.parser import ParseError

from http_retry import RetryPolicy, fetch_bytes
from stream_errors import ManifestParseError
from stream_key import KeyDescriptor, StreamKey, fetch_stream_key

logger = logging.getLogger(__name__)

PLAYLIST_HEADER = "#EXTM3U"
ENDLIST_TAG = "#EXT-X-ENDLIST"
IV_PREFIXES = ("0x", "0X")


class UrlResolution(str, Enum):
    """How segment and key URIs from the manifest become fetchable URLs."""
    # Absolute URIs kept as-is, relative ones joined to the manifest directory
    AUTO = "auto"
    # Every URI appended verbatim to the manifest directory
    MANIFEST_RELATIVE = "manifest-relative"


@dataclass(frozen=True)
class StreamManifest:
    """Parsed media playlist: ordered segment URLs plus the key reference."""
    url: str
    base_url: str
    segment_urls: tuple[str, ...]
    key: Optional[KeyDescriptor]

    def __len__(self) -> int:
        return len(self.segment_urls)


def manifest_base_url(url: str) -> str:
    """Scheme, host and directory of the manifest URL, with a trailing slash."""
    parts = urlsplit(url)
    directory = posixpath.dirname(parts.path).rstrip("/")
    return f"{parts.scheme}://{parts.netloc}{directory}/"


def resolve_uri(base_url: str, uri: str, resolution: UrlResolution = UrlResolution.AUTO) -> str:
    if resolution == UrlResolution.MANIFEST_RELATIVE:
        return base_url + uri
    if uri.startswith(("http://", "https://")):
        return uri
    return urljoin(base_url, uri)


def decode_iv(iv: Optional[str]) -> bytes:
    """Hex-decode an EXT-X-KEY IV attribute, dropping a leading 0x marker."""
    if not iv:
        raise ManifestParseError("first segment key has no IV")
    value = iv.strip()
    if value.startswith(IV_PREFIXES):
        value = value[2:]
    try:
        return bytes.fromhex(value)
    except ValueError as e:
        raise ManifestParseError(f"decode stream iv: {e}") from e


def _truncate_at_endlist(text: str) -> str:
    """Drop everything after the first EXT-X-ENDLIST; later entries are never enumerated."""
    lines = text.splitlines()
    for i, line in enumerate(lines):
        if line.strip() == ENDLIST_TAG:
            return "\n".join(lines[:i + 1]) + "\n"
    return text


def parse_media_playlist(body: bytes, url: str) -> m3u8.M3U8:
    """
    Parse a manifest body as an HLS media playlist.

    Raises:
        ManifestParseError: body is not text, lacks the #EXTM3U header,
            fails to parse, or is a master (variant) playlist
    """
    try:
        text = body.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise ManifestParseError(f"manifest is not valid UTF-8: {e}") from e

    if not text.lstrip().startswith(PLAYLIST_HEADER):
        raise ManifestParseError(f"manifest does not start with {PLAYLIST_HEADER}")

    try:
        playlist = m3u8.loads(_truncate_at_endlist(text), uri=url)
    except (ParseError, ValueError, IndexError) as e:
        raise ManifestParseError(f"malformed manifest: {e}") from e

    if playlist.is_variant:
        raise ManifestParseError("expected a media playlist, got a master playlist")
    return playlist


def _key_descriptor(segment, base_url: str, resolution: UrlResolution) -> KeyDescriptor:
    key = segment.key
    if key is None or not key.method or key.method.upper() == "NONE":
        raise ManifestParseError("first segment carries no encryption key")
    if not key.uri:
        raise ManifestParseError("first segment key has no URI")
    return KeyDescriptor(
        uri=resolve_uri(base_url, key.uri, resolution),
        iv=decode_iv(key.iv),
        method=key.method,
    )


async def resolve_manifest(
    client: httpx.AsyncClient,
    url: str,
    resolution: UrlResolution = UrlResolution.AUTO,
    retry: Optional[RetryPolicy] = None,
) -> StreamManifest:
    """
    Fetch and parse the manifest at `url`.

    Returns:
        StreamManifest with absolute segment URLs in manifest order and the
        key descriptor of the first segment (None when there are no segments)
    """
    body = await fetch_bytes(client, url, stage="manifest", retry=retry)
    playlist = parse_media_playlist(body, url)
    base_url = manifest_base_url(url)

    segment_urls = []
    key = None
    for i, segment in enumerate(playlist.segments):
        if segment is None or not segment.uri:
            break
        if i == 0:
            key = _key_descriptor(segment, base_url, resolution)
        segment_urls.append(resolve_uri(base_url, segment.uri, resolution))

    logger.info(f"Resolved manifest with {len(segment_urls)} segments: {url[:80]}")
    return StreamManifest(
        url=url,
        base_url=base_url,
        segment_urls=tuple(segment_urls),
        key=key,
    )


async def get_stream_segments(
    client: httpx.AsyncClient,
    url: str,
    resolution: UrlResolution = UrlResolution.AUTO,
    retry: Optional[RetryPolicy] = None,
) -> tuple[list[str], Optional[StreamKey]]:
    """Resolve the manifest and fetch its key in one call."""
    manifest = await resolve_manifest(client, url, resolution, retry)
    if manifest.key is None:
        return [], None
    stream_key = await fetch_stream_key(client, manifest.key, retry)
    return list(manifest.segment_urls), stream_key
