"""Reconstruct recording state by folding the lifecycle log.

State is rebuilt from scratch on every call; nothing is cached between
invocations. ``reconstruct`` is pure given the ordered entries.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional, Union
from urllib.parse import urlparse

from .errors import SkipReason
from .filters import RecordingFilter
from .log_store import RecordingLog
from .types import (
    DISPLAY_RANK,
    UPLOADABLE_STATUSES,
    CrashData,
    LogKind,
    OriginalSource,
    Recording,
    RecordingStatus,
    SourceMapEntry,
    apply_status,
)

logger = logging.getLogger(__name__)

Predicate = Union[Callable[[Recording], bool], RecordingFilter, str]

HIDDEN_REASON = "No interesting content"

_RUNTIME_RE = re.compile(r".*?-(.*?)-")


def build_runtime(build_id: str) -> str:
    m = _RUNTIME_RE.match(build_id or "")
    return m.group(1) if m else "unknown"


def default_title(metadata: dict[str, Any]) -> Optional[str]:
    uri = metadata.get("uri")
    if isinstance(uri, str) and uri:
        host = urlparse(uri).netloc or uri
        return f"Replay of {host}"
    test = metadata.get("test")
    if isinstance(test, dict) and isinstance(test.get("title"), str):
        return test["title"]
    return None


def _create(recordings: dict[str, Recording], e: dict[str, Any]) -> None:
    rid = e["id"]
    if rid in recordings:
        return
    build_id = e.get("buildId") or ""
    recordings[rid] = Recording(
        id=rid,
        create_time=datetime.fromtimestamp(int(e.get("timestamp", 0)) / 1000, tz=timezone.utc),
        build_id=build_id,
        runtime=build_runtime(build_id),
    )


def _add_metadata(rec: Recording, e: dict[str, Any]) -> None:
    rec.metadata.update(e.get("metadata") or {})
    if not rec.metadata.get("title"):
        title = default_title(rec.metadata)
        if title:
            rec.metadata["title"] = title


def _write_started(rec: Recording, e: dict[str, Any]) -> None:
    apply_status(rec, RecordingStatus.STARTED_WRITE)
    rec.path = e.get("path")


def _upload_started(rec: Recording, e: dict[str, Any]) -> None:
    if not apply_status(rec, RecordingStatus.STARTED_UPLOAD):
        return
    rec.server = e.get("server")
    rec.remote_id = e.get("recordingId")


def _unusable(rec: Recording, e: dict[str, Any]) -> None:
    apply_status(rec, RecordingStatus.UNUSABLE)
    rec.unusable_reason = e.get("reason")


def _crash_data(rec: Recording, e: dict[str, Any]) -> None:
    if rec.crash_data is None:
        rec.crash_data = []
    rec.crash_data.append(CrashData.from_dict(e.get("data")))


def _status(status: RecordingStatus) -> Callable[[Recording, dict[str, Any]], None]:
    def apply(rec: Recording, _e: dict[str, Any]) -> None:
        apply_status(rec, status)

    return apply


_BY_ID: dict[str, Callable[[Recording, dict[str, Any]], None]] = {
    LogKind.ADD_METADATA.value: _add_metadata,
    LogKind.WRITE_STARTED.value: _write_started,
    LogKind.WRITE_FINISHED.value: _status(RecordingStatus.ON_DISK),
    LogKind.UPLOAD_STARTED.value: _upload_started,
    LogKind.UPLOAD_FINISHED.value: _status(RecordingStatus.UPLOADED),
    LogKind.RECORDING_UNUSABLE.value: _unusable,
    LogKind.CRASHED.value: _status(RecordingStatus.CRASHED),
    LogKind.CRASH_DATA.value: _crash_data,
    LogKind.CRASH_UPLOADED.value: _status(RecordingStatus.CRASH_UPLOADED),
}


def _sourcemap_added(recordings: dict[str, Recording], e: dict[str, Any]) -> None:
    rec = recordings.get(e.get("recordingId"))  # type: ignore[arg-type]
    if rec is None:
        return
    rec.sourcemaps.append(
        SourceMapEntry(
            id=e["id"],
            path=e["path"],
            base_url=e.get("baseURL"),
            target_content_hash=e.get("targetContentHash"),
            target_url_hash=e.get("targetURLHash"),
            target_map_url_hash=e.get("targetMapURLHash"),
        )
    )


def _original_source_added(recordings: dict[str, Recording], e: dict[str, Any]) -> None:
    rec = recordings.get(e.get("recordingId"))  # type: ignore[arg-type]
    if rec is None:
        return
    for sm in rec.sourcemaps:
        if sm.id == e.get("parentId"):
            sm.original_sources.append(
                OriginalSource(path=e["path"], parent_offset=int(e.get("parentOffset") or 0))
            )
            return


def reconstruct(entries: Iterable[dict[str, Any]]) -> dict[str, Recording]:
    """Replay ``entries`` in order and return recordings keyed by id."""
    recordings: dict[str, Recording] = {}
    for e in entries:
        kind = e.get("kind")
        try:
            if kind == LogKind.CREATE_RECORDING.value:
                _create(recordings, e)
            elif kind == LogKind.SOURCEMAP_ADDED.value:
                _sourcemap_added(recordings, e)
            elif kind == LogKind.ORIGINAL_SOURCE_ADDED.value:
                _original_source_added(recordings, e)
            elif kind in _BY_ID:
                rec = recordings.get(e.get("id"))  # type: ignore[arg-type]
                if rec is not None:
                    _BY_ID[kind](rec, e)
        except (KeyError, TypeError, ValueError):
            # Malformed entry, treated like an unparseable line
            logger.debug("Skipping malformed %s entry", kind)
    return recordings


def is_hidden(recording: Recording) -> bool:
    return HIDDEN_REASON in (recording.unusable_reason or "")


def as_predicate(predicate: Optional[Predicate]) -> Optional[Callable[[Recording], bool]]:
    if predicate is None:
        return None
    if isinstance(predicate, str):
        return RecordingFilter.parse(predicate)
    return predicate


def filter_recordings(
    recordings: list[Recording],
    predicate: Optional[Predicate] = None,
    include_crashed: bool = False,
) -> list[Recording]:
    logger.debug("Recording log contains %d replays", len(recordings))
    fn = as_predicate(predicate)
    filtered = list(recordings)
    if fn is not None:
        filtered = [r for r in recordings if fn(r)]
        logger.debug("Filtering resulted in %d replays", len(filtered))
    if include_crashed:
        seen = {id(r) for r in filtered}
        for r in recordings:
            if r.status == RecordingStatus.CRASHED and id(r) not in seen:
                filtered.append(r)
    return filtered


def list_recordings(
    recordings: Iterable[Recording],
    predicate: Optional[Predicate] = None,
    *,
    include_crashed: bool = False,
    include_hidden: bool = False,
    all: bool = False,
) -> list[Recording]:
    pool = [r for r in recordings if include_hidden or not is_hidden(r)]
    if not all:
        pool = [r for r in pool if r.status in UPLOADABLE_STATUSES]
    return filter_recordings(pool, predicate, include_crashed)


def upload_skip_reason(recording: Recording) -> Optional[SkipReason]:
    if recording.status not in UPLOADABLE_STATUSES:
        return SkipReason(recording.id, f"wrong recording status {recording.status.value}")
    if not recording.path and recording.status != RecordingStatus.CRASHED:
        return SkipReason(recording.id, "recording not saved to disk")
    return None


def find_by_id_prefix(recordings: Iterable[Recording], prefix: str) -> Optional[Recording]:
    for r in recordings:
        if r.id.startswith(prefix):
            return r
    return None


def sort_for_display(recordings: Iterable[Recording]) -> list[Recording]:
    return sorted(recordings, key=lambda r: (DISPLAY_RANK.get(r.status, 99), r.title or ""))


class RecordingRegistry:
    """Query facade over a ``RecordingLog``; every call re-reads the log."""

    def __init__(self, store: RecordingLog) -> None:
        self.store = store

    def load(self, include_hidden: bool = False) -> list[Recording]:
        recordings = list(reconstruct(self.store.read_all()).values())
        if include_hidden:
            return recordings
        return [r for r in recordings if not is_hidden(r)]

    def get(self, recording_id: str) -> Optional[Recording]:
        for r in self.load(include_hidden=True):
            if r.id == recording_id:
                return r
        return None

    def resolve(self, id_or_prefix: str) -> Optional[Recording]:
        """Exact id first, then the first recording whose id starts with it."""
        recordings = self.load(include_hidden=True)
        for r in recordings:
            if r.id == id_or_prefix:
                return r
        return find_by_id_prefix(recordings, id_or_prefix) if id_or_prefix else None

    def list(
        self,
        predicate: Optional[Predicate] = None,
        *,
        include_crashed: bool = False,
        include_hidden: bool = False,
        all: bool = False,
    ) -> list[Recording]:
        return list_recordings(
            self.load(include_hidden=True),
            predicate,
            include_crashed=include_crashed,
            include_hidden=include_hidden,
            all=all,
        )
