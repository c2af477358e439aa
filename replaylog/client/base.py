"""Interface the upload orchestrator expects from the recording service."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional, Protocol

from replaylog.core.types import CrashData, OriginalSource, SourceMapEntry, UploadTarget


class RecordingService(Protocol):
    async def connect(self) -> None: ...

    async def close(self) -> None: ...

    async def begin_upload(
        self, recording_id: str, build_id: str, byte_length: int
    ) -> UploadTarget: ...

    async def upload_bytes(self, upload_link: str, path: Path, byte_length: int) -> None: ...

    async def end_upload(self, recording_id: str) -> None: ...

    async def upload_sourcemap(
        self, remote_id: str, sourcemap: SourceMapEntry, contents: str
    ) -> str: ...

    async def upload_original_source(
        self, remote_id: str, sourcemap_id: str, source: OriginalSource, contents: str
    ) -> None: ...

    async def validate_metadata(self, metadata: dict[str, Any]) -> dict[str, Any]: ...

    async def set_metadata(self, remote_id: str, metadata: dict[str, Any]) -> None: ...

    async def report_crash(self, data: CrashData) -> None: ...

    async def wait_for_processed(self, remote_id: str) -> Optional[str]: ...
