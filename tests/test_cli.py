from __future__ import annotations

import json
from pathlib import Path

from replaylog.core.log_store import RecordingLog
from replaylog.core.registry import RecordingRegistry
from replaylog.scripts.recordings import main
from tests.helpers.fakes import make_on_disk


def _rows(out: str) -> list[dict]:
    return [json.loads(line) for line in out.splitlines() if line.strip()]


def test_list_prints_uploadable_recordings(tmp_path: Path, capsys) -> None:
    store = RecordingLog(tmp_path)
    make_on_disk(store, tmp_path, "A", build_id="linux-chromium-1")
    make_on_disk(store, tmp_path, "B", build_id="linux-gecko-1")
    store.create_recording(id="C", build_id="linux-chromium-1")
    store.crashed(id="C")

    assert main(["--directory", str(tmp_path), "list"]) == 0
    assert sorted(r["id"] for r in _rows(capsys.readouterr().out)) == ["A", "B"]

    assert main(["--directory", str(tmp_path), "list", "--filter", 'runtime == "gecko"', "--include-crashes"]) == 0
    rows = _rows(capsys.readouterr().out)
    assert [r["id"] for r in rows] == ["C", "B"]
    assert rows[0]["status"] == "crashed"


def test_metadata_and_remove_commands(tmp_path: Path, capsys) -> None:
    store = RecordingLog(tmp_path)
    data = make_on_disk(store, tmp_path, "A")
    make_on_disk(store, tmp_path, "B")

    assert main(["--directory", str(tmp_path), "metadata", "--init", '{"title": "Smoke"}']) == 0
    registry = RecordingRegistry(store)
    assert registry.get("B").metadata["title"] == "Smoke"

    assert main(["--directory", str(tmp_path), "remove", "A"]) == 0
    assert not data.exists()
    assert [r.id for r in registry.load()] == ["B"]
    assert main(["--directory", str(tmp_path), "remove", "missing"]) == 1


def test_bad_filter_exits_non_zero(tmp_path: Path) -> None:
    assert main(["--directory", str(tmp_path), "list", "--filter", "status = 1"]) == 1


def test_numeric_contains_filter_on_title(tmp_path: Path, capsys) -> None:
    store = RecordingLog(tmp_path)
    make_on_disk(store, tmp_path, "A")
    make_on_disk(store, tmp_path, "B")
    store.add_metadata(id="A", metadata={"title": "Checkout 2"})
    store.add_metadata(id="B", metadata={"title": "Checkout"})

    assert main(["--directory", str(tmp_path), "list", "--filter", "metadata.title contains 2"]) == 0
    assert [r["id"] for r in _rows(capsys.readouterr().out)] == ["A"]


def test_remove_accepts_id_prefix(tmp_path: Path) -> None:
    store = RecordingLog(tmp_path)
    data = make_on_disk(store, tmp_path, "5f3c9a10-recording")
    make_on_disk(store, tmp_path, "77aa")

    assert main(["--directory", str(tmp_path), "remove", "5f3c"]) == 0
    assert not data.exists()
    assert [r.id for r in RecordingRegistry(store).load()] == ["77aa"]
