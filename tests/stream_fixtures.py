"""
HTTP fixtures for hermetic stream download tests.

FakeCdn serves manifests, keys and encrypted segments through an
httpx.MockTransport and records every requested URL.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

import httpx
from Crypto.Cipher import AES
from Crypto.Util.Padding import pad

BASE_URL = "https://cdn.example.com/audio/track/"
MANIFEST_URL = BASE_URL + "index.m3u8"
KEY_URL = BASE_URL + "key.bin"
KEY = bytes(range(16))
IV_HEX = "0x00112233445566778899aabbccddeeff"
IV = bytes.fromhex(IV_HEX[2:])


def encrypt_segment(plaintext: bytes, key: bytes = KEY, iv: bytes = IV) -> bytes:
    """Reference encryption: PKCS#7 pad, then AES-CBC."""
    return AES.new(key, AES.MODE_CBC, iv=iv).encrypt(pad(plaintext, AES.block_size))


def build_manifest(
    segments: list[str],
    key_uri: Optional[str] = "key.bin",
    iv: Optional[str] = IV_HEX,
    endlist: bool = True,
) -> str:
    lines = [
        "#EXTM3U",
        "#EXT-X-VERSION:3",
        "#EXT-X-TARGETDURATION:10",
        "#EXT-X-MEDIA-SEQUENCE:0",
    ]
    if key_uri is not None:
        attrs = f'METHOD=AES-128,URI="{key_uri}"'
        if iv:
            attrs += f",IV={iv}"
        lines.append(f"#EXT-X-KEY:{attrs}")
    for segment in segments:
        lines.append("#EXTINF:10.0,")
        lines.append(segment)
    if endlist:
        lines.append("#EXT-X-ENDLIST")
    return "\n".join(lines) + "\n"


class FakeCdn:
    """Route table for httpx.MockTransport.

    A route is a body (bytes/str), a status int, an exception to raise, or a
    list of those consumed one per request.
    """

    def __init__(self):
        self.routes: dict[str, Any] = {}
        self.delays: dict[str, float] = {}
        self.requests: list[str] = []

    def add(self, url: str, response: Any, delay: float = 0.0) -> None:
        self.routes[url] = response
        if delay:
            self.delays[url] = delay

    def serve_stream(self, plaintexts: list[bytes], manifest: Optional[str] = None) -> list[str]:
        """Serve a manifest, the key and one encrypted segment per plaintext."""
        names = [f"seg{i}.ts" for i in range(len(plaintexts))]
        self.add(MANIFEST_URL, manifest or build_manifest(names))
        self.add(KEY_URL, KEY)
        for name, plaintext in zip(names, plaintexts):
            self.add(BASE_URL + name, encrypt_segment(plaintext))
        return [BASE_URL + name for name in names]

    def _next(self, url: str) -> Any:
        route = self.routes.get(url, 404)
        if isinstance(route, list):
            return route.pop(0) if len(route) > 1 else route[0]
        return route

    async def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        if url in self.delays:
            await asyncio.sleep(self.delays[url])

        route = self._next(url)
        if isinstance(route, Exception):
            raise route
        if isinstance(route, int):
            return httpx.Response(route, request=request)
        if isinstance(route, str):
            route = route.encode("utf-8")
        return httpx.Response(200, content=route, request=request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport)

    def run(self, fn: Callable[[httpx.AsyncClient], Awaitable[Any]]) -> Any:
        """Run fn(client) to completion on a fresh event loop."""
        async def _go():
            async with self.client() as client:
                return await fn(client)
        return asyncio.run(_go())
