"""Append-only JSONL log of recording lifecycle events.

One log per recordings directory (``recordings.log``). Each line is a
self-contained JSON object tagged with ``kind``. Readers skip anything that
does not parse, so a truncated trailing line never poisons the log.

The store assumes a single writer at a time. Two processes appending to the
same directory are not coordinated and may lose updates during ``rewrite``.
"""

from __future__ import annotations

import json
import logging
import os
import stat
import tempfile
import time
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from .types import LogKind

logger = logging.getLogger(__name__)

LOG_FILE_NAME = "recordings.log"


def _ensure_dir(p: Path) -> None:
    p.mkdir(parents=True, exist_ok=True)


def _now_ms() -> int:
    return int(time.time() * 1000)


class RecordingLog:
    def __init__(
        self, directory: Path, *, clock: Optional[Callable[[], int]] = None
    ) -> None:
        self.directory = Path(directory)
        self.path = self.directory / LOG_FILE_NAME
        self.clock = clock or _now_ms

    # -------- Raw access --------
    def append(self, event: dict[str, Any]) -> None:
        line = json.dumps(event, ensure_ascii=False)
        _ensure_dir(self.directory)
        prefix = "\n" if self._ends_mid_line() else ""
        with self.path.open("a", encoding="utf-8") as f:
            f.write(prefix + line + "\n")
        logger.debug("Appended %s event for %s", event.get("kind"), event.get("id"))

    def read_all(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            return []
        entries: list[dict[str, Any]] = []
        with self.path.open("rb") as f:
            for raw in f:
                try:
                    line = raw.decode("utf-8").strip()
                except UnicodeDecodeError:
                    logger.debug("Skipping undecodable log line in %s", self.path)
                    continue
                if not line:
                    continue
                try:
                    obj = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if isinstance(obj, dict):
                    entries.append(obj)
        return entries

    def rewrite(self, entries: Iterable[dict[str, Any]]) -> None:
        _ensure_dir(self.directory)
        body = "".join(json.dumps(e, ensure_ascii=False) + "\n" for e in entries)
        fd, tmp = tempfile.mkstemp(dir=self.directory, prefix=".recordings-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(body)
            os.chmod(tmp, self._file_mode())
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def remove(self, recording_id: str) -> int:
        """Drop every entry belonging to ``recording_id``; returns how many."""
        entries = self.read_all()
        kept = [e for e in entries if not _belongs_to(e, recording_id)]
        self.rewrite(kept)
        return len(entries) - len(kept)

    def delete(self) -> None:
        self.path.unlink(missing_ok=True)

    def _file_mode(self) -> int:
        # mkstemp creates 0600; keep the existing mode, else the umask default
        try:
            return stat.S_IMODE(self.path.stat().st_mode)
        except FileNotFoundError:
            umask = os.umask(0)
            os.umask(umask)
            return 0o666 & ~umask

    def _ends_mid_line(self) -> bool:
        try:
            with self.path.open("rb") as f:
                f.seek(0, os.SEEK_END)
                if f.tell() == 0:
                    return False
                f.seek(-1, os.SEEK_END)
                return f.read(1) != b"\n"
        except FileNotFoundError:
            return False

    def _event(self, kind: LogKind, recording_id: str, **tags: Any) -> None:
        self.append({"kind": kind.value, "id": recording_id, "timestamp": self.clock(), **tags})

    # -------- Lifecycle events --------
    def create_recording(self, *, id: str, build_id: str) -> None:
        self._event(LogKind.CREATE_RECORDING, id, buildId=build_id)

    def write_started(self, *, id: str, path: str) -> None:
        self._event(LogKind.WRITE_STARTED, id, path=path)

    def write_finished(self, *, id: str) -> None:
        self._event(LogKind.WRITE_FINISHED, id)

    def upload_started(self, *, id: str, server: str, remote_id: str) -> None:
        self._event(LogKind.UPLOAD_STARTED, id, server=server, recordingId=remote_id)

    def upload_finished(self, *, id: str) -> None:
        self._event(LogKind.UPLOAD_FINISHED, id)

    def recording_unusable(self, *, id: str, reason: str) -> None:
        self._event(LogKind.RECORDING_UNUSABLE, id, reason=reason)

    def crashed(self, *, id: str) -> None:
        self._event(LogKind.CRASHED, id)

    def crash_data(self, *, id: str, data: dict[str, Any]) -> None:
        self._event(LogKind.CRASH_DATA, id, data=data)

    def crash_uploaded(self, *, id: str, server: str) -> None:
        self._event(LogKind.CRASH_UPLOADED, id, server=server)

    def add_metadata(self, *, id: str, metadata: dict[str, Any]) -> None:
        self._event(LogKind.ADD_METADATA, id, metadata=metadata)

    # Source-map events are keyed by the owning recording, not by ``id``
    def sourcemap_added(
        self,
        *,
        id: str,
        recording_id: str,
        path: str,
        base_url: Optional[str] = None,
        target_content_hash: Optional[str] = None,
        target_url_hash: Optional[str] = None,
        target_map_url_hash: Optional[str] = None,
    ) -> None:
        self.append(
            {
                "kind": LogKind.SOURCEMAP_ADDED.value,
                "id": id,
                "recordingId": recording_id,
                "path": path,
                "baseURL": base_url,
                "targetContentHash": target_content_hash,
                "targetURLHash": target_url_hash,
                "targetMapURLHash": target_map_url_hash,
            }
        )

    def original_source_added(
        self, *, recording_id: str, path: str, parent_id: str, parent_offset: int = 0
    ) -> None:
        self.append(
            {
                "kind": LogKind.ORIGINAL_SOURCE_ADDED.value,
                "recordingId": recording_id,
                "path": path,
                "parentId": parent_id,
                "parentOffset": parent_offset,
            }
        )


def _belongs_to(entry: dict[str, Any], recording_id: str) -> bool:
    if entry.get("kind") in (
        LogKind.SOURCEMAP_ADDED.value,
        LogKind.ORIGINAL_SOURCE_ADDED.value,
    ):
        return entry.get("recordingId") == recording_id
    return entry.get("id") == recording_id
