#!/usr/bin/env python3
"""
Stream Service - FastAPI microservice for encrypted HLS audio downloads.
Streams per-segment progress via SSE while a track is downloaded.
"""

import asyncio
import json
import logging
import os
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from sse_starlette.sse import EventSourceResponse

from remux import ffmpeg_installed
from stream_config import AppConfig
from stream_downloader import HlsTrackDownloader
from stream_errors import ConfigError, StreamDownloadError

logger = logging.getLogger(__name__)

# YAML config used for every download started by this service
CONFIG_ENV_VAR = "STREAM_SERVICE_CONFIG"
DEFAULT_DOWNLOADS_DIRECTORY = "./music"

_service_config: Optional[AppConfig] = None


def get_service_config() -> AppConfig:
    """Load the service config once; fall back to defaults without a file."""
    global _service_config
    if _service_config is None:
        config_path = os.environ.get(CONFIG_ENV_VAR)
        if config_path:
            _service_config = AppConfig.load(config_path, check_ffmpeg=False)
        else:
            _service_config = AppConfig(downloads_directory=DEFAULT_DOWNLOADS_DIRECTORY)
    return _service_config


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    print("🎵 stream service starting...", flush=True)
    try:
        config = get_service_config()
    except ConfigError as e:
        print(f"⚠️ Invalid service config, downloads will fail: {e}", flush=True)
    else:
        if config.requires_ffmpeg and not ffmpeg_installed(config.ffmpeg_path):
            print("⚠️ ffmpeg not found, remuxing downloads will fail", flush=True)
    yield
    print("🎵 stream service shutting down...", flush=True)


app = FastAPI(
    title="Stream Service",
    description="Encrypted HLS audio download service",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Pydantic Models ---


class HealthResponse(BaseModel):
    status: str
    ffmpeg_available: bool
    python_version: str


class DownloadRequest(BaseModel):
    stream_url: str
    output_path: str
    remux: Optional[bool] = None
    segment_workers: Optional[int] = Field(default=None, ge=1, le=32)


# --- Helper Functions ---


def _sse(event: str, payload: dict) -> dict:
    return {"event": event, "data": json.dumps(payload)}


def resolve_output_path(config: AppConfig, output_path: str) -> Path:
    """Relative output paths land under the configured downloads directory."""
    path = Path(output_path)
    if not path.is_absolute():
        path = Path(config.downloads_directory) / path
    return path


def request_config(config: AppConfig, request: DownloadRequest) -> AppConfig:
    overrides = {}
    if request.remux is not None:
        overrides["remux"] = request.remux
    if request.segment_workers is not None:
        overrides["segment_workers"] = request.segment_workers
    return config.model_copy(update=overrides)


async def download_events(
    request: DownloadRequest,
    config: Optional[AppConfig] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
):
    """
    Run one download and yield SSE events describing it.

    Events: started, progress (one per committed segment), then either
    complete or error. An unusable service config yields a single error.
    """
    try:
        config = request_config(config or get_service_config(), request)
    except ConfigError as e:
        logger.error(f"Service config unusable: {e}")
        yield _sse("error", {"message": str(e), "kind": type(e).__name__, "stage": "config"})
        return

    output_path = resolve_output_path(config, request.output_path)
    downloader = HlsTrackDownloader(config, transport=transport)
    queue: asyncio.Queue = asyncio.Queue()

    def on_progress(current: int, total: int):
        queue.put_nowait((current, total))

    async def run() -> Path:
        try:
            return await downloader.download(request.stream_url, output_path, on_progress)
        finally:
            queue.put_nowait(None)

    yield _sse("started", {"status": "downloading", "streamUrl": request.stream_url})

    task = asyncio.create_task(run())
    try:
        while True:
            item = await queue.get()
            if item is None:
                break
            current, total = item
            yield _sse("progress", {
                "current": current,
                "total": total,
                "percent": int(100 * current / total) if total else 100,
            })

        file_path = await task
        yield _sse("complete", {"filePath": str(file_path)})
    except StreamDownloadError as e:
        logger.error(f"Download failed: {e}")
        yield _sse("error", {
            "message": str(e),
            "kind": e.kind,
            "stage": e.stage,
            "segmentIndex": e.segment_index,
        })
    except Exception as e:
        logger.exception("Unexpected download failure")
        yield _sse("error", {"message": str(e), "kind": type(e).__name__})
    finally:
        if not task.done():
            task.cancel()


# --- API Endpoints ---


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    status = "ok"
    ffmpeg_path = "ffmpeg"
    try:
        ffmpeg_path = get_service_config().ffmpeg_path
    except ConfigError as e:
        logger.error(f"Service config unusable: {e}")
        status = "config_error"
    return HealthResponse(
        status=status,
        ffmpeg_available=ffmpeg_installed(ffmpeg_path),
        python_version=f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}",
    )


@app.post("/download")
async def start_download(request: DownloadRequest):
    """Start a download job and stream progress via SSE."""
    return EventSourceResponse(download_events(request))


if __name__ == "__main__":
    import argparse

    import uvicorn

    parser = argparse.ArgumentParser(description="Stream Service")
    parser.add_argument("--production", action="store_true", help="Run in production mode")
    parser.add_argument("--port", type=int, default=5200, help="Port to run on")
    parser.add_argument("--host", type=str, default="127.0.0.1", help="Host to bind to")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)
    uvicorn.run(
        "stream_service:app",
        host=args.host,
        port=args.port,
        reload=not args.production,
        log_level="info",
    )
