"""Upload orchestration against an instrumented in-memory service."""

from __future__ import annotations

from pathlib import Path

import pytest

from replaylog.configs.schemas import UploaderConfig
from replaylog.core import uploader as uploader_mod
from replaylog.core.log_store import RecordingLog
from replaylog.core.registry import RecordingRegistry
from replaylog.core.types import RecordingStatus
from replaylog.core.uploader import RecordingUploader
from tests.helpers.fakes import ServiceStats, add_sourcemap, make_on_disk


def _setup(tmp_path: Path, *, delay: float = 0.0, asset_delay: float = 0.0, **cfg):
    config = UploaderConfig(
        directory=tmp_path, server="https://dispatch.test", retry_base_delay=0.0, **cfg
    )
    store = RecordingLog(tmp_path)
    stats = ServiceStats(delay=delay, asset_delay=asset_delay)
    opened: list[str] = []
    uploader = RecordingUploader(
        config, store, client_factory=stats.factory, opener=opened.append
    )
    return uploader, store, stats, opened


def _kinds(store: RecordingLog, rec_id: str) -> list[str]:
    return [e["kind"] for e in store.read_all() if e.get("id") == rec_id]


@pytest.mark.asyncio
async def test_upload_protocol_order_and_log_events(tmp_path: Path) -> None:
    uploader, store, stats, _ = _setup(tmp_path)
    make_on_disk(store, tmp_path, "A", content=b"0123456789")
    store.add_metadata(id="A", metadata={"title": "Checkout"})
    add_sourcemap(store, tmp_path, "A", "sm1", sources=("a.js", "b.js"))

    rec = RecordingRegistry(store).get("A")
    remote_id = await uploader.upload_recording(rec)  # type: ignore[arg-type]

    assert remote_id == "remote-A"
    assert stats.names()[:6] == [
        "connect",
        "begin_upload",
        "set_metadata",
        "upload_bytes",
        "end_upload",
        "upload_sourcemap",
    ]
    assert stats.names()[-1] == "close"
    assert ("begin_upload", "A", 10) in stats.calls
    assert sorted(c[2] for c in stats.calls if c[0] == "upload_original_source") == [
        str(tmp_path / "a.js"),
        str(tmp_path / "b.js"),
    ]
    assert _kinds(store, "A")[-2:] == ["uploadStarted", "uploadFinished"]

    after = RecordingRegistry(store).get("A")
    assert after.status == RecordingStatus.UPLOADED  # type: ignore[union-attr]
    assert after.remote_id == "remote-A"  # type: ignore[union-attr]
    assert after.server == "https://dispatch.test"  # type: ignore[union-attr]
    assert stats.in_flight == 0


@pytest.mark.asyncio
async def test_already_uploaded_is_idempotent(tmp_path: Path) -> None:
    uploader, store, stats, _ = _setup(tmp_path)
    make_on_disk(store, tmp_path, "A")
    store.upload_started(id="A", server="https://dispatch.test", remote_id="R1")
    store.upload_finished(id="A")
    before = store.read_all()

    rec = RecordingRegistry(store).get("A")
    assert await uploader.upload_recording(rec) == "R1"  # type: ignore[arg-type]
    assert stats.calls == []
    assert store.read_all() == before


@pytest.mark.asyncio
async def test_crashed_recording_reports_crash_only(tmp_path: Path) -> None:
    uploader, store, stats, _ = _setup(tmp_path)
    store.create_recording(id="C", build_id="linux-gecko-1")
    store.crashed(id="C")
    store.crash_data(id="C", data={"kind": "minidump", "file": "/d1"})
    store.crash_data(id="C", data={"kind": "log", "text": "x"})

    rec = RecordingRegistry(store).get("C")
    assert await uploader.upload_recording(rec) == "C"  # type: ignore[arg-type]

    reports = [c[1] for c in stats.calls if c[0] == "report_crash"]
    assert len(reports) == 2
    assert {r["kind"] for r in reports} == {"minidump", "log"}
    assert all(r["recordingId"] == "C" for r in reports)
    assert "upload_bytes" not in stats.names()
    assert "begin_upload" not in stats.names()
    assert _kinds(store, "C").count("crashUploaded") == 1
    assert RecordingRegistry(store).get("C").status == RecordingStatus.CRASH_UPLOADED  # type: ignore[union-attr]


@pytest.mark.asyncio
async def test_crash_without_data_sends_recording_marker(tmp_path: Path) -> None:
    uploader, store, stats, _ = _setup(tmp_path)
    store.create_recording(id="C", build_id="x")
    store.crashed(id="C")
    await uploader.upload_recording(RecordingRegistry(store).get("C"))  # type: ignore[arg-type]
    assert [c[1] for c in stats.calls if c[0] == "report_crash"] == [
        {"kind": "recordingMetadata", "recordingId": "C"}
    ]


@pytest.mark.asyncio
async def test_invalid_metadata_blocks_transfer(tmp_path: Path) -> None:
    uploader, store, stats, _ = _setup(tmp_path)
    make_on_disk(store, tmp_path, "A")
    store.add_metadata(id="A", metadata={"invalid": True})

    result = await uploader.upload_one(RecordingRegistry(store).get("A"))  # type: ignore[arg-type]
    assert not result.ok
    assert "metadata rejected" in (result.error or "")
    assert "begin_upload" not in stats.names()
    assert "uploadStarted" not in _kinds(store, "A")
    assert stats.in_flight == 0


@pytest.mark.asyncio
async def test_set_metadata_failure_is_not_fatal(tmp_path: Path) -> None:
    uploader, store, stats, _ = _setup(tmp_path)
    stats.fail_set_metadata = True
    make_on_disk(store, tmp_path, "A")
    store.add_metadata(id="A", metadata={"title": "t"})
    assert await uploader.upload_recording(RecordingRegistry(store).get("A")) == "remote-A"  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_transfer_retries_then_fails_with_upload_started_kept(tmp_path: Path) -> None:
    uploader, store, stats, _ = _setup(tmp_path, max_attempts=3)
    stats.fail_uploads = 2
    make_on_disk(store, tmp_path, "A")
    assert await uploader.upload_recording(RecordingRegistry(store).get("A")) == "remote-A"  # type: ignore[arg-type]
    assert stats.upload_attempts == 3

    stats.fail_uploads = 10
    make_on_disk(store, tmp_path, "B")
    result = await uploader.upload_one(RecordingRegistry(store).get("B"))  # type: ignore[arg-type]
    assert not result.ok
    assert "injected transfer fault" in (result.error or "")
    assert _kinds(store, "B")[-1] == "uploadStarted"
    assert RecordingRegistry(store).get("B").status == RecordingStatus.STARTED_UPLOAD  # type: ignore[union-attr]


@pytest.mark.asyncio
async def test_sourcemap_failure_does_not_abort_siblings(tmp_path: Path) -> None:
    uploader, store, stats, _ = _setup(tmp_path)
    stats.failing_sourcemaps = {"bad"}
    make_on_disk(store, tmp_path, "A")
    add_sourcemap(store, tmp_path, "A", "bad", sources=("x.js",))
    add_sourcemap(store, tmp_path, "A", "good", sources=("y.js",))
    missing = add_sourcemap(store, tmp_path, "A", "gone")
    missing.unlink()

    assert await uploader.upload_recording(RecordingRegistry(store).get("A")) == "remote-A"  # type: ignore[arg-type]
    uploaded = [c[2] for c in stats.calls if c[0] == "upload_sourcemap"]
    assert uploaded == ["good"]
    assert [c[1] for c in stats.calls if c[0] == "upload_original_source"] == ["sm-good"]
    assert _kinds(store, "A")[-1] == "uploadFinished"


@pytest.mark.asyncio
async def test_sourcemap_and_original_source_bounds(tmp_path: Path) -> None:
    uploader, store, stats, _ = _setup(tmp_path, asset_delay=0.05)
    make_on_disk(store, tmp_path, "A")
    for i in range(30):
        add_sourcemap(store, tmp_path, "A", f"sm{i}")
    add_sourcemap(store, tmp_path, "A", "wide", sources=tuple(f"src{i}.js" for i in range(12)))

    assert await uploader.upload_recording(RecordingRegistry(store).get("A")) == "remote-A"  # type: ignore[arg-type]

    assert len([c for c in stats.calls if c[0] == "upload_sourcemap"]) == 31
    assert len([c for c in stats.calls if c[0] == "upload_original_source"]) == 12
    assert stats.sourcemaps.peak == 10
    assert stats.original_sources.peak == 5
    assert stats.sourcemaps.current == stats.original_sources.current == 0


@pytest.mark.asyncio
async def test_asset_contents_are_read_without_blocking(tmp_path: Path, monkeypatch) -> None:
    uploader, store, stats, _ = _setup(tmp_path)
    make_on_disk(store, tmp_path, "A")
    sm = add_sourcemap(store, tmp_path, "A", "sm1", sources=("a.js",))

    read: list[str] = []
    real_open = uploader_mod.aiofiles.open

    def tracking_open(path, *args, **kwargs):
        read.append(str(path))
        return real_open(path, *args, **kwargs)

    monkeypatch.setattr(uploader_mod.aiofiles, "open", tracking_open)
    assert await uploader.upload_recording(RecordingRegistry(store).get("A")) == "remote-A"  # type: ignore[arg-type]

    assert sorted(read) == sorted([str(sm), str(tmp_path / "a.js")])
    assert ("upload_original_source", "sm-sm1", str(tmp_path / "a.js"), "// a.js") in stats.calls


@pytest.mark.asyncio
async def test_ineligible_and_unreachable_are_reported(tmp_path: Path) -> None:
    uploader, store, stats, _ = _setup(tmp_path)
    store.create_recording(id="M", build_id="x")
    store.append({"kind": "writeStarted", "id": "M", "timestamp": 1})
    result = await uploader.upload_one(RecordingRegistry(store).get("M"))  # type: ignore[arg-type]
    assert result.error == "M: recording not saved to disk"
    assert stats.calls == []

    stats.refuse_connect = True
    make_on_disk(store, tmp_path, "A")
    result = await uploader.upload_one(RecordingRegistry(store).get("A"))  # type: ignore[arg-type]
    assert "can't connect" in (result.error or "")


@pytest.mark.asyncio
async def test_batch_respects_outer_concurrency_bound(tmp_path: Path) -> None:
    uploader, store, stats, _ = _setup(tmp_path, delay=0.01)
    for i in range(30):
        make_on_disk(store, tmp_path, f"R{i:02d}")

    ok = await uploader.upload_all(batch_size=20)

    assert ok is True
    assert stats.peak == 20
    assert stats.names().count("upload_bytes") == 30
    assert stats.in_flight == 0


@pytest.mark.asyncio
async def test_batch_size_is_capped(tmp_path: Path) -> None:
    uploader, store, stats, _ = _setup(tmp_path, delay=0.01)
    for i in range(30):
        make_on_disk(store, tmp_path, f"R{i:02d}")
    await uploader.upload_all(batch_size=100)
    assert stats.peak == 25


@pytest.mark.asyncio
async def test_batch_isolates_failures_and_cleans_successes(tmp_path: Path) -> None:
    uploader, store, stats, _ = _setup(tmp_path)
    data_a = make_on_disk(store, tmp_path, "A")
    make_on_disk(store, tmp_path, "B")
    store.add_metadata(id="B", metadata={"invalid": True})
    shared = add_sourcemap(store, tmp_path, "A", "smA", file_name="shared.map")
    add_sourcemap(store, tmp_path, "B", "smB", file_name="shared.map")

    ok = await uploader.upload_all()

    assert ok is False
    assert not data_a.exists()
    # B failed and still references the shared map
    assert shared.exists()
    statuses = {r.id: r.status for r in RecordingRegistry(store).load()}
    assert statuses == {"A": RecordingStatus.UPLOADED, "B": RecordingStatus.ON_DISK}


@pytest.mark.asyncio
async def test_upload_all_with_filter_and_crashes(tmp_path: Path) -> None:
    uploader, store, stats, _ = _setup(tmp_path)
    make_on_disk(store, tmp_path, "A", build_id="x-chromium-1")
    make_on_disk(store, tmp_path, "B", build_id="x-gecko-1")
    store.create_recording(id="C", build_id="x-node-1")
    store.crashed(id="C")

    assert await uploader.upload_all('runtime == "chromium"') is True
    assert [c[1] for c in stats.calls if c[0] == "begin_upload"] == ["A"]
    assert "report_crash" not in stats.names()

    assert await uploader.upload_all('runtime == "gecko"', include_crashed=True) is True
    assert "report_crash" in stats.names()

    assert await uploader.upload_all('runtime == "nothing"') is True


@pytest.mark.asyncio
async def test_process_recording(tmp_path: Path) -> None:
    uploader, store, stats, _ = _setup(tmp_path)
    make_on_disk(store, tmp_path, "A")
    assert await uploader.process_recording("A") == "remote-A"
    assert ("wait_for_processed", "remote-A") in stats.calls

    stats.processing_error = "corrupt"
    assert await uploader.process_uploaded("remote-A") is False
    assert await uploader.process_recording("unknown") is None


@pytest.mark.asyncio
async def test_view_uploads_then_opens(tmp_path: Path) -> None:
    uploader, store, stats, opened = _setup(tmp_path)
    data = make_on_disk(store, tmp_path, "A")

    assert await uploader.view_recording("A") is True
    assert opened == [
        "https://app.replay.io?id=remote-A&dispatch=https%3A%2F%2Fdispatch.test"
    ]
    assert not data.exists()

    # Second view reuses the remote id without uploading again
    assert await uploader.view_latest() is True
    assert stats.names().count("begin_upload") == 1
    assert len(opened) == 2


@pytest.mark.asyncio
async def test_view_crash_reports(tmp_path: Path) -> None:
    uploader, store, stats, opened = _setup(tmp_path)
    store.create_recording(id="C", build_id="x")
    store.crashed(id="C")
    assert await uploader.view_recording("C") is True
    assert "report_crash" in stats.names()
    assert await uploader.view_recording("C") is True
    assert stats.names().count("report_crash") == 1
    assert opened == []
    assert await uploader.view_recording("nope") is False


def test_view_url_omits_default_dispatch(tmp_path: Path) -> None:
    uploader, *_ = _setup(tmp_path)
    assert uploader.view_url("R", "https://dispatch.replay.io") == "https://app.replay.io?id=R"


@pytest.mark.asyncio
async def test_upload_and_view_by_id_prefix(tmp_path: Path) -> None:
    uploader, store, stats, opened = _setup(tmp_path)
    make_on_disk(store, tmp_path, "5f3c9a10")

    assert await uploader.upload_by_id("5f3c") == "remote-5f3c9a10"
    assert await uploader.view_recording("5f3c") is True
    assert opened == ["https://app.replay.io?id=remote-5f3c9a10&dispatch=https%3A%2F%2Fdispatch.test"]
    assert await uploader.upload_by_id("nope") is None
