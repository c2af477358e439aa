"""Local recording metadata: sanitising and attaching it through the log."""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, ValidationError

from .errors import MetadataValidationError
from .log_store import RecordingLog
from .registry import Predicate, RecordingRegistry

logger = logging.getLogger(__name__)


class LocalMetadata(BaseModel):
    """Shape checks for well-known keys; unknown keys pass through."""

    model_config = ConfigDict(extra="allow")

    title: Optional[str] = None
    uri: Optional[str] = None
    duration: Optional[float] = None
    source: Optional[dict[str, Any]] = None
    test: Optional[dict[str, Any]] = None


def _json_safe(value: Any) -> bool:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return False
    return True


def sanitize_metadata(data: dict[str, Any]) -> dict[str, Any]:
    try:
        LocalMetadata.model_validate(data)
    except ValidationError as exc:
        raise MetadataValidationError(str(exc)) from exc
    clean: dict[str, Any] = {}
    for key, value in data.items():
        if value is None:
            continue
        if not _json_safe(value):
            logger.warning("Dropping metadata key %s: value is not JSON serialisable", key)
            continue
        clean[key] = value
    return clean


def add_metadata(store: RecordingLog, recording_id: str, metadata: dict[str, Any]) -> None:
    store.add_metadata(id=recording_id, metadata=sanitize_metadata(metadata))


def update_metadata(
    store: RecordingLog,
    metadata: dict[str, Any],
    predicate: Optional[Predicate] = None,
    *,
    include_crashed: bool = False,
) -> list[str]:
    """Attach ``metadata`` to every listed recording; returns the ids touched."""
    sanitized = sanitize_metadata(metadata)
    registry = RecordingRegistry(store)
    touched: list[str] = []
    for r in registry.list(predicate, include_crashed=include_crashed):
        logger.info("Setting metadata for %s", r.id)
        store.add_metadata(id=r.id, metadata=sanitized)
        touched.append(r.id)
    return touched
