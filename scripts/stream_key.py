"""
Stream Key - Resolves the manifest's key reference into raw AES key material.

The key URL and IV come from the first segment's EXT-X-KEY tag. The IV is
decoded by the manifest resolver; this module performs the one extra HTTP
fetch for the key itself and checks both lengths before any cipher is built.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from http_retry import RetryPolicy, fetch_bytes
from stream_errors import StreamCryptoError

logger = logging.getLogger(__name__)

AES_BLOCK_SIZE = 16
AES_KEY_SIZES = (16, 24, 32)


@dataclass(frozen=True)
class KeyDescriptor:
    """Key reference found in the manifest."""
    uri: str
    iv: bytes
    method: str = "AES-128"


@dataclass(frozen=True)
class StreamKey:
    """Symmetric key and IV shared by every segment of one stream."""
    value: bytes
    iv: bytes

    @classmethod
    def validated(cls, value: bytes, iv: bytes) -> "StreamKey":
        if len(value) not in AES_KEY_SIZES:
            raise StreamCryptoError(
                f"invalid key size {len(value)}, expected one of {AES_KEY_SIZES}",
                stage="key",
            )
        if len(iv) != AES_BLOCK_SIZE:
            raise StreamCryptoError(
                f"invalid IV size {len(iv)}, expected {AES_BLOCK_SIZE}",
                stage="key",
            )
        return cls(value=bytes(value), iv=bytes(iv))

    def __repr__(self) -> str:
        # Key bytes stay out of logs and tracebacks
        return f"StreamKey(value=<{len(self.value)} bytes>, iv={self.iv.hex()})"


async def fetch_stream_key(
    client: httpx.AsyncClient,
    descriptor: KeyDescriptor,
    retry: Optional[RetryPolicy] = None,
) -> StreamKey:
    """Fetch the key blob; the whole response body is the raw key."""
    key_bytes = await fetch_bytes(client, descriptor.uri, stage="key", retry=retry)
    logger.info(f"Fetched stream key ({len(key_bytes)} bytes, {descriptor.method})")
    return StreamKey.validated(key_bytes, descriptor.iv)
