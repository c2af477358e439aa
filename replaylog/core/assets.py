"""Reference-counted cleanup of on-disk recording assets.

Source maps and original sources are deduplicated on disk, so several local
recordings can point at the same file. A shared asset is only deleted once
no other local, not-yet-uploaded recording references it.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from pathlib import Path
from typing import Iterable, Optional

from .log_store import RecordingLog
from .registry import reconstruct
from .types import REMOTE_STATUSES, Recording

logger = logging.getLogger(__name__)


def lookup_path(sourcemap_path: str) -> str:
    return re.sub(r"\.map$", ".lookup", sourcemap_path)


def shared_asset_files(recording: Recording) -> list[str]:
    files: list[str] = []
    for sm in recording.sourcemaps:
        files.append(sm.path)
        files.append(lookup_path(sm.path))
        files.extend(o.path for o in sm.original_sources)
    return files


def asset_files(recording: Recording) -> list[str]:
    files = [recording.path] if recording.path else []
    return files + shared_asset_files(recording)


def compute_usage(recordings: Iterable[Recording]) -> dict[str, int]:
    """Number of recordings referencing each source map, lookup and original source."""
    usage: Counter[str] = Counter()
    for r in recordings:
        usage.update(set(shared_asset_files(r)))
    return dict(usage)


def _remove_file(path: str) -> bool:
    try:
        Path(path).unlink()
    except FileNotFoundError:
        return False
    except OSError as exc:
        logger.warning("Failed to remove asset file %s: %s", path, exc)
        return False
    logger.debug("Removed asset file %s", path)
    return True


def cleanup(recording: Recording, all_local: Iterable[Recording]) -> list[str]:
    """Delete assets exclusively owned by ``recording``; returns deleted paths.

    Recordings already uploaded (or whose crash report was uploaded) no longer
    hold references. The primary data file is always removed.
    """
    holders = [
        r for r in all_local if r.id != recording.id and r.status not in REMOTE_STATUSES
    ]
    usage = compute_usage([*holders, recording])
    removed: list[str] = []
    if recording.path and _remove_file(recording.path):
        removed.append(recording.path)
    for path in dict.fromkeys(shared_asset_files(recording)):
        if usage.get(path, 0) == 1 and _remove_file(path):
            removed.append(path)
    return removed


def remove_recording(store: RecordingLog, recording_id: str) -> bool:
    recordings = reconstruct(store.read_all())
    recording: Optional[Recording] = recordings.get(recording_id)
    if recording is None:
        logger.warning("Unknown recording %s", recording_id)
        return False
    logger.info("Removing recording %s", recording_id)
    cleanup(recording, recordings.values())
    store.remove(recording_id)
    return True


def remove_all_recordings(store: RecordingLog) -> int:
    recordings = list(reconstruct(store.read_all()).values())
    logger.info("Removing all %d recordings", len(recordings))
    for r in recordings:
        for path in asset_files(r):
            _remove_file(path)
    store.delete()
    return len(recordings)
