"""Error taxonomy for log reconstruction and uploads.

Every upload error is scoped to a single recording; batch operations catch
these per item and never abort the whole batch.
"""

from __future__ import annotations

from typing import Any


class RecordingError(Exception):
    """Base class for recording lifecycle errors."""


class SkipReason(RecordingError):
    """The recording is not eligible for upload; non-fatal."""

    def __init__(self, recording_id: str, reason: str):
        super().__init__(f"{recording_id}: {reason}")
        self.recording_id = recording_id
        self.reason = reason


class ServiceError(RecordingError):
    def __init__(self, code: int, message: str, data: Any | None = None):
        super().__init__(f"Recording service error {code}: {message}")
        self.code = code
        self.message = message
        self.data = data


class ServiceConnectionError(RecordingError):
    def __init__(self, server: str, cause: Exception | None = None):
        super().__init__(f"can't connect to server {server}")
        self.server = server
        self.cause = cause


class MetadataValidationError(RecordingError):
    """Metadata was rejected; blocks byte transfer for that recording."""


class TransferError(RecordingError):
    """Byte or asset transfer failed after retries were exhausted."""
