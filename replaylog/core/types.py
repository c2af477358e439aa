"""Typed models for recordings, their assets, crash reports and upload results."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class RecordingStatus(str, Enum):
    UNKNOWN = "unknown"
    STARTED_WRITE = "startedWrite"
    ON_DISK = "onDisk"
    STARTED_UPLOAD = "startedUpload"
    UPLOADED = "uploaded"
    UNUSABLE = "unusable"
    CRASHED = "crashed"
    CRASH_UPLOADED = "crashUploaded"


class LogKind(str, Enum):
    CREATE_RECORDING = "createRecording"
    WRITE_STARTED = "writeStarted"
    WRITE_FINISHED = "writeFinished"
    UPLOAD_STARTED = "uploadStarted"
    UPLOAD_FINISHED = "uploadFinished"
    RECORDING_UNUSABLE = "recordingUnusable"
    CRASHED = "crashed"
    CRASH_DATA = "crashData"
    CRASH_UPLOADED = "crashUploaded"
    ADD_METADATA = "addMetadata"
    SOURCEMAP_ADDED = "sourcemapAdded"
    ORIGINAL_SOURCE_ADDED = "originalSourceAdded"


# Statuses with something worth uploading
UPLOADABLE_STATUSES = frozenset(
    {
        RecordingStatus.ON_DISK,
        RecordingStatus.STARTED_WRITE,
        RecordingStatus.STARTED_UPLOAD,
        RecordingStatus.CRASHED,
    }
)

# Statuses whose local assets are no longer needed by the recording itself
REMOTE_STATUSES = frozenset({RecordingStatus.UPLOADED, RecordingStatus.CRASH_UPLOADED})

# Order of the write/upload chain; later events never lower the rank
LIFECYCLE_RANK = {
    RecordingStatus.UNKNOWN: 0,
    RecordingStatus.STARTED_WRITE: 1,
    RecordingStatus.ON_DISK: 2,
    RecordingStatus.STARTED_UPLOAD: 3,
    RecordingStatus.UPLOADED: 4,
}

# Lower rank sorts first for display; failures surface at the top
DISPLAY_RANK = {
    RecordingStatus.CRASHED: 0,
    RecordingStatus.UNUSABLE: 1,
    RecordingStatus.STARTED_WRITE: 2,
    RecordingStatus.ON_DISK: 3,
    RecordingStatus.STARTED_UPLOAD: 4,
    RecordingStatus.UPLOADED: 5,
    RecordingStatus.CRASH_UPLOADED: 6,
    RecordingStatus.UNKNOWN: 7,
}


@dataclass(slots=True)
class OriginalSource:
    path: str
    parent_offset: int = 0


@dataclass(slots=True)
class SourceMapEntry:
    id: str
    path: str
    base_url: Optional[str] = None
    target_content_hash: Optional[str] = None
    target_url_hash: Optional[str] = None
    target_map_url_hash: Optional[str] = None
    original_sources: list[OriginalSource] = field(default_factory=list)


@dataclass(slots=True)
class CrashData:
    """Tagged crash payload; ``kind`` selects how the service interprets it."""

    kind: str
    payload: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "CrashData":
        if not isinstance(data, dict):
            return cls(kind="unknown", payload={"value": data})
        rest = {k: v for k, v in data.items() if k != "kind"}
        return cls(kind=str(data.get("kind") or "unknown"), payload=rest)

    @classmethod
    def recording_metadata(cls, recording_id: str) -> "CrashData":
        return cls(kind="recordingMetadata", payload={"recordingId": recording_id})

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, **self.payload}


@dataclass
class Recording:
    id: str
    create_time: datetime
    build_id: str
    runtime: str
    status: RecordingStatus = RecordingStatus.UNKNOWN
    path: Optional[str] = None
    server: Optional[str] = None
    remote_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    sourcemaps: list[SourceMapEntry] = field(default_factory=list)
    unusable_reason: Optional[str] = None
    crash_data: Optional[list[CrashData]] = None

    @property
    def title(self) -> Optional[str]:
        title = self.metadata.get("title")
        return title if isinstance(title, str) else None


def apply_status(recording: Recording, status: RecordingStatus) -> bool:
    """Move ``recording`` to ``status`` unless it sits in an absorbing state.

    ``unusable`` and ``crashUploaded`` never change again; ``crashed`` only
    moves on to ``crashUploaded``. Along the write/upload chain a status never
    moves backwards. Returns whether the status was applied.
    """
    current = recording.status
    if current in (RecordingStatus.UNUSABLE, RecordingStatus.CRASH_UPLOADED):
        return False
    if current == RecordingStatus.CRASHED and status != RecordingStatus.CRASH_UPLOADED:
        return False
    if status in LIFECYCLE_RANK and current in LIFECYCLE_RANK:
        if LIFECYCLE_RANK[status] < LIFECYCLE_RANK[current]:
            return False
    recording.status = status
    return True


@dataclass(slots=True)
class UploadTarget:
    remote_id: str
    upload_link: str


@dataclass(slots=True)
class UploadResult:
    recording_id: str
    remote_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.remote_id is not None and self.error is None
