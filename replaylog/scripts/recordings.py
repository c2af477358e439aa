"""Manage local recordings: list, upload, process, view, remove, tag metadata.

ENV toggles (see replaylog.core.config):
- RECORD_REPLAY_DIRECTORY, RECORD_REPLAY_SERVER / REPLAY_SERVER
- REPLAY_API_KEY, REPLAY_VIEW_SERVER, REPLAY_CONFIG_YAML

Exit code is 0 only when every selected recording succeeded.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

# Ensure repo root on sys.path for direct execution
_ROOT = Path(__file__).resolve().parents[2]
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

from replaylog.configs.schemas import UploaderConfig  # noqa: E402
from replaylog.core.assets import remove_all_recordings, remove_recording  # noqa: E402
from replaylog.core.config import load_runtime  # noqa: E402
from replaylog.core.errors import RecordingError  # noqa: E402
from replaylog.core.log_store import RecordingLog  # noqa: E402
from replaylog.core.metadata import update_metadata  # noqa: E402
from replaylog.core.registry import RecordingRegistry, sort_for_display  # noqa: E402
from replaylog.core.uploader import RecordingUploader  # noqa: E402


def setup_loggers(cfg: UploaderConfig, verbose: bool = False) -> logging.Logger:
    level = logging.DEBUG if verbose else logging.INFO
    root = logging.getLogger("replaylog")
    root.setLevel(level)
    fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
    if not root.handlers:
        sh = logging.StreamHandler(sys.stderr)
        sh.setLevel(level)
        sh.setFormatter(fmt)
        root.addHandler(sh)
        try:
            cfg.directory.mkdir(parents=True, exist_ok=True)
            fh = logging.FileHandler(cfg.directory / "app.log")
        except OSError as exc:
            root.warning("File logging disabled: %s", exc)
        else:
            fh.setLevel(logging.DEBUG)
            fh.setFormatter(fmt)
            root.addHandler(fh)
    return root


def _print_recordings(registry: RecordingRegistry, args: argparse.Namespace) -> int:
    recordings = registry.list(
        args.filter,
        include_crashed=args.include_crashes,
        include_hidden=args.include_hidden,
        all=args.all,
    )
    for r in sort_for_display(recordings):
        row = {
            "id": r.id,
            "status": r.status.value,
            "runtime": r.runtime,
            "title": r.title,
            "createTime": r.create_time.isoformat(),
            "path": r.path,
            "remoteId": r.remote_id,
        }
        print(json.dumps(row, ensure_ascii=False))
    return 0


async def _run(cfg: UploaderConfig, args: argparse.Namespace) -> int:
    store = RecordingLog(cfg.directory)
    uploader = RecordingUploader(cfg, store)
    if args.cmd == "list":
        return _print_recordings(uploader.registry, args)
    if args.cmd == "upload":
        if args.ids:
            ids = [await uploader.upload_by_id(i) for i in args.ids]
            return 0 if all(ids) else 1
        ok = await uploader.upload_all(
            args.filter, include_crashed=args.include_crashes, batch_size=args.batch_size
        )
        return 0 if ok else 1
    if args.cmd == "process":
        results = [await uploader.process_recording(i) for i in args.ids]
        return 0 if all(results) else 1
    if args.cmd == "view":
        ok = await uploader.view_recording(args.id) if args.id else await uploader.view_latest()
        return 0 if ok else 1
    if args.cmd == "remove":
        if args.all:
            remove_all_recordings(store)
            return 0
        ok = True
        for i in args.ids:
            recording = uploader.registry.resolve(i)
            ok = remove_recording(store, recording.id if recording else i) and ok
        return 0 if ok else 1
    if args.cmd == "metadata":
        update_metadata(
            store, json.loads(args.init), args.filter, include_crashed=args.include_crashes
        )
        return 0
    raise ValueError(f"unknown command {args.cmd}")


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="replaylog")
    ap.add_argument("--config", type=Path, default=None, help="YAML config file")
    ap.add_argument("--directory", type=Path, default=None)
    ap.add_argument("--server", default=None)
    ap.add_argument("--api-key", default=None)
    ap.add_argument("-v", "--verbose", action="store_true")
    sub = ap.add_subparsers(dest="cmd", required=True)

    def with_filter(p: argparse.ArgumentParser) -> None:
        p.add_argument("--filter", default=None, help='e.g. status == "onDisk"')
        p.add_argument("--include-crashes", action="store_true")

    p = sub.add_parser("list")
    with_filter(p)
    p.add_argument("--all", action="store_true")
    p.add_argument("--include-hidden", action="store_true")

    p = sub.add_parser("upload")
    with_filter(p)
    p.add_argument("ids", nargs="*", help="recording ids or id prefixes")
    p.add_argument("--batch-size", type=int, default=None)

    p = sub.add_parser("process")
    p.add_argument("ids", nargs="+", help="recording ids or id prefixes")

    p = sub.add_parser("view")
    p.add_argument("id", nargs="?")

    p = sub.add_parser("remove")
    p.add_argument("ids", nargs="*", help="recording ids or id prefixes")
    p.add_argument("--all", action="store_true")

    p = sub.add_parser("metadata")
    with_filter(p)
    p.add_argument("--init", default="{}", help="JSON object to attach")
    return ap


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    cfg = load_runtime(args.config)
    overrides = {
        k: v
        for k, v in {"directory": args.directory, "server": args.server, "api_key": args.api_key}.items()
        if v is not None
    }
    if overrides:
        cfg = cfg.model_copy(update=overrides)
    logger = setup_loggers(cfg, args.verbose)
    try:
        return asyncio.run(_run(cfg, args))
    except (RecordingError, ValueError) as exc:
        logger.error("%s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
