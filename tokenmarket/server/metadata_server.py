from __future__ import annotations

import asyncio
import time
import uuid
from pathlib import Path

import msgspec
import structlog
from aiohttp import web

from tokenmarket.core.config import settings
from tokenmarket.core.logging import Logger

logger: Logger = structlog.getLogger(__name__)

REQUIRED_METADATA_FIELDS = ("name", "description", "attributes")


def _is_valid_metadata(metadata: object) -> bool:
    """name and description must be non-empty; attributes may be an empty list"""
    if not isinstance(metadata, dict):
        return False
    if any(field not in metadata for field in REQUIRED_METADATA_FIELDS):
        return False
    return bool(metadata["name"]) and bool(metadata["description"]) and (
        metadata["attributes"] is not None
    )


def _stored_name(suffix: str) -> str:
    """Millisecond timestamp plus a random tag; uploads may share a millisecond"""
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:12]}{suffix}"


@web.middleware
async def cors_middleware(
    request: web.Request, handler
) -> web.StreamResponse:
    if request.method == "OPTIONS":
        response: web.StreamResponse = web.Response()
    else:
        response = await handler(request)

    response.headers["Access-Control-Allow-Origin"] = "*"
    response.headers["Access-Control-Allow-Headers"] = "Content-Type"
    response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
    return response


class MetadataServer:
    """
    Local off-chain store for asset images and metadata documents.

    Routes:
        POST /uploadImage     multipart field "image" -> {"uri": ...}
        POST /uploadMetadata  JSON document -> {"uri": ...}
        GET  /images/*, /metadata/*  stored files
    """

    __slots__ = (
        "_storage_dir",
        "_port",
        "_host",
        "_public_url",
        "_runner",
        "_site",
        "_running",
    )

    def __init__(
        self,
        storage_dir: str | Path | None = None,
        port: int | None = None,
        host: str = "0.0.0.0",
        public_url: str | None = None,
    ) -> None:
        """Initialize metadata server.

        Args:
            storage_dir: Root directory for images/ and metadata/
                (default: settings.METADATA_STORAGE_DIR)
            port: Port to bind to (default: settings.METADATA_PORT)
            host: Host to bind to (default: 0.0.0.0)
            public_url: Base URL used in returned URIs
                (default: http://localhost:<port>)
        """
        self._storage_dir = Path(storage_dir or settings.METADATA_STORAGE_DIR)
        self._port = port if port is not None else settings.METADATA_PORT
        self._host = host
        self._public_url = (public_url or f"http://localhost:{self._port}").rstrip("/")
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None
        self._running = False

    @property
    def images_dir(self) -> Path:
        return self._storage_dir / "images"

    @property
    def metadata_dir(self) -> Path:
        return self._storage_dir / "metadata"

    def build_app(self) -> web.Application:
        self.images_dir.mkdir(parents=True, exist_ok=True)
        self.metadata_dir.mkdir(parents=True, exist_ok=True)

        web_app = web.Application(middlewares=[cors_middleware])
        web_app.router.add_post("/uploadImage", self._handle_upload_image)
        web_app.router.add_post("/uploadMetadata", self._handle_upload_metadata)
        web_app.router.add_static("/images", self.images_dir)
        web_app.router.add_static("/metadata", self.metadata_dir)
        return web_app

    async def start(self) -> None:
        """Start serving.

        Raises:
            Exception: If server fails to start (port conflict, etc.)
        """
        if self._running:
            logger.warning("Metadata server already running")
            return

        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()

        self._site = web.TCPSite(self._runner, self._host, self._port)
        await self._site.start()

        self._running = True
        logger.info(f"✓ Metadata server running at {self._public_url}")

    async def stop(self) -> None:
        if not self._running:
            logger.warning("Metadata server not running")
            return

        self._running = False

        if self._site:
            await self._site.stop()
            self._site = None

        if self._runner:
            await self._runner.cleanup()
            self._runner = None

        logger.info("✓ Metadata server stopped")

    async def _handle_upload_image(self, request: web.Request) -> web.Response:
        try:
            reader = await request.multipart()
            part = await reader.next()
            while part is not None and part.name != "image":
                part = await reader.next()

            if part is None or not part.filename:
                return web.json_response({"error": "No image provided"}, status=400)

            data = await part.read(decode=False)
            filename = _stored_name(f"-{Path(part.filename).name}")
            await asyncio.to_thread((self.images_dir / filename).write_bytes, data)

        except Exception as e:
            logger.error(f"Error uploading image: {e}", exc_info=True)
            return web.json_response({"error": "Failed to upload image"}, status=500)

        return web.json_response({"uri": f"{self._public_url}/images/{filename}"})

    async def _handle_upload_metadata(self, request: web.Request) -> web.Response:
        try:
            metadata = msgspec.json.decode(await request.read())
        except msgspec.DecodeError:
            return web.json_response({"error": "Invalid metadata format"}, status=400)

        if not _is_valid_metadata(metadata):
            return web.json_response({"error": "Invalid metadata format"}, status=400)

        try:
            filename = _stored_name(".json")
            body = msgspec.json.format(msgspec.json.encode(metadata), indent=2)
            await asyncio.to_thread((self.metadata_dir / filename).write_bytes, body)

        except Exception as e:
            logger.error(f"Error saving metadata: {e}", exc_info=True)
            return web.json_response({"error": "Failed to save metadata"}, status=500)

        return web.json_response({"uri": f"{self._public_url}/metadata/{filename}"})
