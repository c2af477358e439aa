"""Recording service client over httpx.

Protocol calls are JSON POSTs to ``<server>/protocol``::

    {"method": "Internal.beginRecordingUpload", "params": {...}}

answered by ``{"result": {...}}`` or ``{"error": {"code": ..., "message": ...}}``.
Recording bytes are streamed with a PUT to the upload link returned by
``begin_upload``; the link is pre-signed so no API key is sent with it.

Tests pass an ``httpx.MockTransport`` via ``transport`` to avoid network.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, AsyncIterator, Optional

import aiofiles
import httpx

from replaylog.core.errors import (
    MetadataValidationError,
    ServiceConnectionError,
    ServiceError,
    TransferError,
)
from replaylog.core.types import CrashData, OriginalSource, SourceMapEntry, UploadTarget

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024

# Error code the service uses for schema violations
INVALID_METADATA_CODE = 60


async def _iter_file(path: Path) -> AsyncIterator[bytes]:
    async with aiofiles.open(path, "rb") as f:
        while True:
            chunk = await f.read(CHUNK_SIZE)
            if not chunk:
                break
            yield chunk


class HttpRecordingClient:
    def __init__(
        self,
        server: str,
        api_key: Optional[str] = None,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.server = server.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport
        self._client: httpx.AsyncClient | None = None

    # -------- Connection --------
    async def connect(self) -> None:
        self._client = httpx.AsyncClient(
            base_url=self.server, timeout=self.timeout, transport=self.transport
        )
        try:
            await self._call("Internal.ping", {})
        except (httpx.RequestError, httpx.HTTPStatusError, ServiceError) as exc:
            await self.close()
            raise ServiceConnectionError(self.server, exc) from exc

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _auth_headers(self) -> dict[str, str]:
        if not self.api_key:
            return {}
        return {"Authorization": f"Bearer {self.api_key}"}

    async def _call(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        if self._client is None:
            raise ServiceConnectionError(self.server)
        resp = await self._client.post(
            "/protocol",
            json={"method": method, "params": params},
            headers=self._auth_headers(),
        )
        resp.raise_for_status()
        j = resp.json()
        err = j.get("error")
        if err:
            raise ServiceError(int(err.get("code", -1)), err.get("message", "unknown"), j)
        return j.get("result") or {}

    # -------- Recording upload --------
    async def begin_upload(
        self, recording_id: str, build_id: str, byte_length: int
    ) -> UploadTarget:
        res = await self._call(
            "Internal.beginRecordingUpload",
            {"recordingId": recording_id, "buildId": build_id, "recordingSize": byte_length},
        )
        return UploadTarget(remote_id=res["recordingId"], upload_link=res["uploadLink"])

    async def upload_bytes(self, upload_link: str, path: Path, byte_length: int) -> None:
        if self._client is None:
            raise ServiceConnectionError(self.server)
        try:
            resp = await self._client.put(
                upload_link,
                content=_iter_file(path),
                headers={"Content-Length": str(byte_length)},
            )
        except httpx.RequestError as exc:
            raise TransferError(f"upload of {path} failed: {exc}") from exc
        if resp.status_code != 200:
            raise TransferError(f"upload of {path} failed with status {resp.status_code}")

    async def end_upload(self, recording_id: str) -> None:
        await self._call("Internal.endRecordingUpload", {"recordingId": recording_id})

    # -------- Assets --------
    async def upload_sourcemap(
        self, remote_id: str, sourcemap: SourceMapEntry, contents: str
    ) -> str:
        res = await self._call(
            "Recording.addSourceMap",
            {
                "recordingId": remote_id,
                "id": sourcemap.id,
                "baseURL": sourcemap.base_url,
                "targetContentHash": sourcemap.target_content_hash,
                "targetURLHash": sourcemap.target_url_hash,
                "targetMapURLHash": sourcemap.target_map_url_hash,
                "contents": contents,
            },
        )
        return res["id"]

    async def upload_original_source(
        self, remote_id: str, sourcemap_id: str, source: OriginalSource, contents: str
    ) -> None:
        await self._call(
            "Recording.addOriginalSource",
            {
                "recordingId": remote_id,
                "parentId": sourcemap_id,
                "parentOffset": source.parent_offset,
                "contents": contents,
            },
        )

    # -------- Metadata, crashes, processing --------
    async def validate_metadata(self, metadata: dict[str, Any]) -> dict[str, Any]:
        try:
            res = await self._call("Internal.validateRecordingMetadata", {"metadata": metadata})
        except ServiceError as exc:
            if exc.code == INVALID_METADATA_CODE:
                raise MetadataValidationError(exc.message) from exc
            raise
        return res.get("metadata", metadata)

    async def set_metadata(self, remote_id: str, metadata: dict[str, Any]) -> None:
        await self._call(
            "Internal.setRecordingMetadata",
            {"recordingId": remote_id, "metadata": metadata},
        )

    async def report_crash(self, data: CrashData) -> None:
        await self._call("Internal.reportCrash", {"data": data.to_dict()})

    async def wait_for_processed(self, remote_id: str) -> Optional[str]:
        res = await self._call("Recording.waitForProcessed", {"recordingId": remote_id})
        error = res.get("error")
        return str(error) if error else None
