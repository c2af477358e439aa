from .base import RecordingService
from .http import HttpRecordingClient

__all__ = ["RecordingService", "HttpRecordingClient"]
