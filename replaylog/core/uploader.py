"""Upload orchestration for local recordings.

Per recording the steps run strictly in order: connect, validate metadata,
begin upload (logged as ``uploadStarted`` right away so an interrupted upload
is visible on the next run), attach metadata, transfer bytes with retry, end
upload, source maps and original sources, ``uploadFinished``, optional asset
cleanup, close. Crashed recordings only send their crash reports.

Batches run under an outer semaphore; every recording opens fresh inner
semaphores for its source maps and their original sources, so the bound on
simultaneous network calls is outer x inner rather than one global limit.

Requires a client factory ``(server, api_key) -> RecordingService``.
"""

from __future__ import annotations

import asyncio
import logging
import webbrowser
from pathlib import Path
from typing import Callable, Iterable, Optional
from urllib.parse import urlencode

import aiofiles

from replaylog.client.base import RecordingService
from replaylog.client.http import HttpRecordingClient
from replaylog.configs.schemas import DEFAULT_SERVER, UploaderConfig

from .assets import cleanup
from .errors import RecordingError, TransferError
from .log_store import RecordingLog
from .registry import (
    Predicate,
    RecordingRegistry,
    filter_recordings,
    reconstruct,
    upload_skip_reason,
)
from .retry import retry_with_exponential_backoff
from .types import (
    CrashData,
    Recording,
    RecordingStatus,
    SourceMapEntry,
    UploadResult,
)

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str, Optional[str]], RecordingService]


async def _read_text(path: str) -> str:
    async with aiofiles.open(path, "r", encoding="utf-8") as f:
        return await f.read()


class RecordingUploader:
    def __init__(
        self,
        config: UploaderConfig,
        store: Optional[RecordingLog] = None,
        *,
        client_factory: Optional[ClientFactory] = None,
        opener: Optional[Callable[[str], object]] = None,
    ) -> None:
        self.config = config
        self.store = store or RecordingLog(config.directory)
        self.registry = RecordingRegistry(self.store)
        self.client_factory = client_factory or self._http_client
        self.opener = opener or webbrowser.open

    def _http_client(self, server: str, api_key: Optional[str]) -> RecordingService:
        return HttpRecordingClient(server, api_key, timeout=self.config.timeout)

    async def _connect(self) -> RecordingService:
        client = self.client_factory(self.config.server, self.config.api_key)
        await client.connect()
        return client

    # -------- Single recording --------
    async def upload_one(self, recording: Recording, *, remove_assets: bool = False) -> UploadResult:
        """Upload ``recording`` and report the outcome instead of raising."""
        try:
            remote_id = await self._upload(recording, remove_assets=remove_assets)
        except RecordingError as exc:
            logger.warning("Upload of %s failed: %s", recording.id, exc)
            return UploadResult(recording.id, error=str(exc))
        except Exception as exc:  # noqa: BLE001
            logger.exception("Upload of %s failed", recording.id)
            return UploadResult(recording.id, error=f"{type(exc).__name__}: {exc}")
        return UploadResult(recording.id, remote_id=remote_id)

    async def upload_recording(
        self, recording: Recording, *, remove_assets: bool = False
    ) -> Optional[str]:
        return (await self.upload_one(recording, remove_assets=remove_assets)).remote_id

    async def _upload(self, recording: Recording, *, remove_assets: bool) -> str:
        logger.info("Starting upload for %s", recording.id)
        if recording.status == RecordingStatus.UPLOADED and recording.remote_id:
            logger.info("Already uploaded: %s", recording.remote_id)
            return recording.remote_id

        skip = upload_skip_reason(recording)
        if skip is not None:
            raise skip

        client = await self._connect()
        try:
            if recording.status == RecordingStatus.CRASHED:
                remote_id = await self._upload_crash(client, recording)
            else:
                remote_id = await self._upload_content(client, recording)
            if remove_assets:
                self._cleanup(recording.id)
        finally:
            await client.close()
        return remote_id

    async def _upload_crash(self, client: RecordingService, recording: Recording) -> str:
        logger.info("Starting crash data upload for %s", recording.id)
        reports = [
            CrashData(d.kind, {"recordingId": recording.id, **d.payload})
            for d in recording.crash_data or []
        ]
        if not reports:
            reports = [CrashData.recording_metadata(recording.id)]
        await asyncio.gather(*(client.report_crash(d) for d in reports))
        self.store.crash_uploaded(id=recording.id, server=self.config.server)
        logger.info("Crash report uploaded for %s", recording.id)
        return recording.id

    async def _upload_content(self, client: RecordingService, recording: Recording) -> str:
        path = Path(recording.path or "")
        try:
            size = (await asyncio.to_thread(path.stat)).st_size
        except OSError as exc:
            raise TransferError(f"can't read recording file {path}: {exc}") from exc

        # Invalid metadata blocks the upload before any bytes move
        metadata = None
        if recording.metadata:
            metadata = await client.validate_metadata(recording.metadata)

        target = await client.begin_upload(recording.id, recording.build_id, size)
        logger.debug("Created remote recording %s", target.remote_id)
        self.store.upload_started(
            id=recording.id, server=self.config.server, remote_id=target.remote_id
        )

        if metadata:
            try:
                await client.set_metadata(target.remote_id, metadata)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Failed to set recording metadata for %s: %s", recording.id, exc)

        def _on_fail(exc: Exception, attempt: int) -> None:
            logger.debug("Upload attempt %d of %s failed: %s", attempt, recording.id, exc)

        try:
            await retry_with_exponential_backoff(
                lambda: client.upload_bytes(target.upload_link, path, size),
                _on_fail,
                max_attempts=self.config.max_attempts,
                base_delay=self.config.retry_base_delay,
            )
        except TransferError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise TransferError(f"upload of {recording.id} failed: {exc}") from exc
        logger.debug("%s: Uploaded %d bytes", target.remote_id, size)

        await client.end_upload(recording.id)
        await self._upload_sourcemaps(client, recording, target.remote_id)

        self.store.upload_finished(id=recording.id)
        logger.info("Upload finished for %s: %s", recording.id, target.remote_id)
        return target.remote_id

    async def _upload_sourcemaps(
        self, client: RecordingService, recording: Recording, remote_id: str
    ) -> None:
        sem = asyncio.Semaphore(self.config.sourcemap_concurrency)

        async def one(sm: SourceMapEntry) -> None:
            async with sem:
                try:
                    logger.debug("Uploading sourcemap %s for recording %s", sm.path, recording.id)
                    contents = await _read_text(sm.path)
                    sourcemap_id = await client.upload_sourcemap(remote_id, sm, contents)
                    await self._upload_original_sources(client, remote_id, sm, sourcemap_id)
                except Exception as exc:  # noqa: BLE001
                    logger.warning("can't upload sourcemap %s from disk: %s", sm.path, exc)

        await asyncio.gather(*(one(sm) for sm in recording.sourcemaps))

    async def _upload_original_sources(
        self,
        client: RecordingService,
        remote_id: str,
        sm: SourceMapEntry,
        sourcemap_id: str,
    ) -> None:
        sem = asyncio.Semaphore(self.config.original_source_concurrency)

        async def one(source) -> None:
            async with sem:
                try:
                    contents = await _read_text(source.path)
                    await client.upload_original_source(remote_id, sourcemap_id, source, contents)
                except Exception as exc:  # noqa: BLE001
                    logger.warning(
                        "can't upload original source %s for sourcemap %s: %s",
                        source.path,
                        sm.path,
                        exc,
                    )

        await asyncio.gather(*(one(s) for s in sm.original_sources))

    def _cleanup(self, recording_id: str) -> list[str]:
        state = reconstruct(self.store.read_all())
        recording = state.get(recording_id)
        if recording is None:
            return []
        return cleanup(recording, state.values())

    # -------- Batches --------
    async def upload_batch(
        self,
        recordings: Iterable[Recording],
        *,
        batch_size: Optional[int] = None,
        remove_assets: bool = True,
    ) -> list[UploadResult]:
        limit = self.config.effective_batch_size(batch_size)
        logger.debug("Batching upload in groups of %d", limit)
        sem = asyncio.Semaphore(limit)

        async def run(r: Recording) -> UploadResult:
            async with sem:
                return await self.upload_one(r)

        results = list(await asyncio.gather(*(run(r) for r in recordings)))
        # Cleanup waits for the whole batch so shared assets see final statuses
        if remove_assets:
            for res in results:
                if res.ok:
                    self._cleanup(res.recording_id)
        return results

    async def upload_all(
        self,
        predicate: Optional[Predicate] = None,
        *,
        include_crashed: bool = False,
        batch_size: Optional[int] = None,
    ) -> bool:
        """Upload every eligible recording; True only if all of them succeed."""
        eligible = [r for r in self.registry.load() if upload_skip_reason(r) is None]
        recordings = filter_recordings(eligible, predicate, include_crashed)

        if (
            predicate is not None
            and not include_crashed
            and any(r.status == RecordingStatus.CRASHED for r in eligible)
            and not any(r.status == RecordingStatus.CRASHED for r in recordings)
        ):
            logger.warning(
                "Some crash reports were created but will not be uploaded because of "
                "the provided filter. Include crashes to upload them."
            )

        if not recordings:
            if predicate is not None and eligible:
                logger.info("No replays matched the provided filter")
            else:
                logger.info("No replays were found to upload")
            return True

        logger.info("Starting upload of %d replays", len(recordings))
        results = await self.upload_batch(recordings, batch_size=batch_size)
        failed = [r for r in results if not r.ok]
        for r in failed:
            logger.error("Failed to upload %s: %s", r.recording_id, r.error)
        return not failed

    async def upload_by_id(self, recording_id: str) -> Optional[str]:
        recording = self.registry.resolve(recording_id)
        if recording is None:
            logger.warning("Unknown recording %s", recording_id)
            return None
        return await self.upload_recording(recording, remove_assets=True)

    # -------- Processing --------
    async def process_uploaded(self, remote_id: str) -> bool:
        logger.info("Processing recording %s...", remote_id)
        try:
            client = await self._connect()
        except RecordingError as exc:
            logger.warning("Processing failed: %s", exc)
            return False
        try:
            error = await client.wait_for_processed(remote_id)
        finally:
            await client.close()
        if error:
            logger.warning("Processing failed: %s", error)
            return False
        logger.info("Finished processing.")
        return True

    async def process_recording(self, recording_id: str) -> Optional[str]:
        remote_id = await self.upload_by_id(recording_id)
        if not remote_id:
            return None
        return remote_id if await self.process_uploaded(remote_id) else None

    # -------- Viewing --------
    def view_url(self, remote_id: str, server: str) -> str:
        params = {"id": remote_id}
        if server != DEFAULT_SERVER:
            params["dispatch"] = server
        return f"{self.config.view_server}?{urlencode(params)}"

    async def _view(self, recording: Recording) -> bool:
        server = self.config.server
        if recording.status == RecordingStatus.CRASH_UPLOADED:
            logger.info("Crash report already uploaded")
            return True
        if recording.status == RecordingStatus.UPLOADED and recording.remote_id:
            remote_id = recording.remote_id
            server = recording.server or server
        else:
            result = await self.upload_one(recording, remove_assets=True)
            if not result.ok or result.remote_id is None:
                return False
            if recording.status == RecordingStatus.CRASHED:
                return True
            remote_id = result.remote_id
        self.opener(self.view_url(remote_id, server))
        return True

    async def view_recording(self, recording_id: str) -> bool:
        recording = self.registry.resolve(recording_id)
        if recording is None:
            logger.warning("Unknown recording %s", recording_id)
            return False
        return await self._view(recording)

    async def view_latest(self) -> bool:
        recordings = self.registry.load()
        if not recordings:
            logger.info("No recordings to view")
            return False
        return await self._view(recordings[-1])
