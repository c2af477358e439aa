from .log_store import RecordingLog
from .registry import RecordingRegistry, list_recordings, reconstruct
from .types import (
    CrashData,
    OriginalSource,
    Recording,
    RecordingStatus,
    SourceMapEntry,
    UploadResult,
)

__all__ = [
    "RecordingLog",
    "RecordingRegistry",
    "list_recordings",
    "reconstruct",
    "CrashData",
    "OriginalSource",
    "Recording",
    "RecordingStatus",
    "SourceMapEntry",
    "UploadResult",
]
