from typing import Callable, List, Optional, Sequence, Tuple
import asyncio
import logging

from ..errors import CompressionFailure, InvalidTransition, UploadFailure
from ..models import CompressionPreset, SourceFile, TrackedFile, UploadConfig, UploadStatus
from ..protocols import ICompressor, IStorageClient
from ..utils.events import EventEmitter
from .parallel import get_parallel_count
from .tracker import UploadTracker

logger = logging.getLogger(__name__)


class BatchUploader:
    """
    Drives tracked files through compression and upload.

    - Each file: read -> compress (or fall back to original) -> upload
    - Across files: concurrent, capped by a semaphore
    - A failing file never affects its siblings
    """

    def __init__(
        self,
        storage: IStorageClient,
        compressor: ICompressor,
        config: Optional[UploadConfig] = None,
    ):
        self._storage = storage
        self._compressor = compressor
        self._config = config or UploadConfig()

    @property
    def config(self) -> UploadConfig:
        return self._config

    def admit(self, sources: Sequence[SourceFile]) -> Tuple[List[SourceFile], List[SourceFile]]:
        """
        Split accepted files into those entering the pipeline and those skipped.

        Files over ``max_file_size`` are skipped, as is everything past the
        first ``max_files`` admitted files.
        """
        admitted: List[SourceFile] = []
        skipped: List[SourceFile] = []
        for source in sources:
            if source.size > self._config.max_file_size:
                logger.warning(
                    f"Skipping {source.name}: {source.size / (1024 * 1024):.1f} MB exceeds "
                    f"{self._config.max_file_size / (1024 * 1024):.0f} MB limit"
                )
                skipped.append(source)
            elif len(admitted) >= self._config.max_files:
                logger.warning(f"Skipping {source.name}: batch limit of {self._config.max_files} files reached")
                skipped.append(source)
            else:
                admitted.append(source)
        return admitted, skipped

    def concurrency_for(self, files: Sequence[TrackedFile]) -> int:
        if not files:
            return 1
        avg_size = sum(f.original_size for f in files) / len(files)
        return get_parallel_count(avg_size, self._config.max_parallel)

    def destination_path(self, user_id: str, file_id: str, name: str) -> str:
        return f"{user_id}/{self._config.upload_dir}/{file_id}_{name}"

    async def run(
        self,
        tracker: UploadTracker,
        preset: Optional[CompressionPreset],
        user_id: str,
        events: Optional[EventEmitter] = None,
        progress_callback: Optional[Callable[[str, int, int], None]] = None,
    ) -> List[TrackedFile]:
        """
        Upload every pending file in the tracker.

        Resolves once every pipeline has reached a terminal status. With
        ``preset=None`` compression is skipped and originals are uploaded.
        """
        pending = tracker.claim_pending()
        total = len(pending)
        if not pending:
            return []

        limit = self.concurrency_for(pending)
        semaphore = asyncio.Semaphore(limit)
        preset_name = preset.name if preset else "none"
        logger.info(f"Starting batch: {total} file(s), preset={preset_name}, max {limit} parallel")

        if progress_callback:
            progress_callback(f"Uploading {total} files...", 0, total)

        tasks = [
            asyncio.create_task(
                self._run_pipeline(
                    tracker=tracker,
                    file_id=tracked.id,
                    preset=preset,
                    user_id=user_id,
                    semaphore=semaphore,
                    index=idx,
                    total=total,
                    events=events,
                )
            )
            for idx, tracked in enumerate(pending, 1)
        ]

        results: List[TrackedFile] = []
        try:
            for task in asyncio.as_completed(tasks):
                tracked = await task
                results.append(tracked)

                if progress_callback:
                    status = "✓" if tracked.status == UploadStatus.COMPLETED else "✗"
                    progress_callback(f"{status} {tracked.filename}", len(results), total)
                if events:
                    await events.emit("progress", tracker.counts())
        except asyncio.CancelledError:
            logger.info("Batch cancelled, abandoning in-flight uploads")
            await self._cancel_remaining_tasks(tasks)
            raise
        except Exception as e:
            logger.error(f"Batch aborted: {e}", exc_info=True)
            await self._cancel_remaining_tasks(tasks)
            raise

        uploaded = sum(1 for f in results if f.status == UploadStatus.COMPLETED)
        failed = len(results) - uploaded
        logger.info(f"Batch complete: {uploaded} successful, {failed} failed")
        return results

    async def _run_pipeline(
        self,
        tracker: UploadTracker,
        file_id: str,
        preset: Optional[CompressionPreset],
        user_id: str,
        semaphore: asyncio.Semaphore,
        index: int,
        total: int,
        events: Optional[EventEmitter],
    ) -> TrackedFile:
        """Compress then upload one file. Never raises for per-file failures."""
        async with semaphore:
            try:
                tracked = tracker.start_compression(file_id)
            except InvalidTransition:
                logger.debug(f"[{index}/{total}] {tracker[file_id].filename} already started elsewhere, skipping")
                return tracker[file_id]
            await self._notify(events, tracked)
            source = tracked.source

            loop = asyncio.get_running_loop()
            try:
                payload = await loop.run_in_executor(None, source.read_bytes)
            except OSError as e:
                logger.error(f"[{index}/{total}] Could not read {source.name}: {e}")
                tracked = tracker.fail(file_id, f"Could not read {source.name}: {e}")
                await self._notify(events, tracked)
                return tracked

            data = payload
            name = source.name
            content_type = source.content_type or "application/octet-stream"
            compressed = False
            note = None

            if preset is None:
                note = "Compression skipped"
            else:
                try:
                    result = await self._compressor.compress(source, payload, preset)
                except CompressionFailure as e:
                    note = str(e)
                    logger.warning(f"[{index}/{total}] {note}; uploading original")
                except Exception as e:
                    error_msg = str(e) or type(e).__name__
                    logger.error(f"[{index}/{total}] Compression crashed for {source.name}: {error_msg}")
                    tracked = tracker.fail(file_id, error_msg)
                    await self._notify(events, tracked)
                    return tracked
                else:
                    if result.size < len(payload):
                        data, name, content_type = result.data, result.name, result.content_type
                        compressed = True
                    else:
                        note = "No size reduction; original kept"
                        logger.info(f"[{index}/{total}] {source.name}: {note}")

            tracked = tracker.mark_uploading(
                file_id,
                compressed_data=data if compressed else None,
                compressed_name=name if compressed else None,
                note=note,
            )
            await self._notify(events, tracked)

            size_mb = len(data) / (1024 * 1024)
            logger.info(f"[{index}/{total}] Uploading: {name} ({size_mb:.2f} MB)")
            destination = self.destination_path(user_id, file_id, name)

            try:
                stored = await self._storage.upload(destination, data, content_type)
            except UploadFailure as e:
                tracked = tracker.fail(file_id, str(e))
            except Exception as e:
                tracked = tracker.fail(file_id, str(e) or type(e).__name__)
            else:
                if stored.url:
                    tracked = tracker.complete(file_id, stored)
                else:
                    tracked = tracker.fail(file_id, f"No access URL returned for {destination}")

            if tracked.error:
                logger.error(f"[{index}/{total}] ✗ Failed: {source.name}: {tracked.error}")
            else:
                logger.info(f"[{index}/{total}] ✓ Success: {source.name}")

            await self._notify(events, tracked)
            return tracked

    @staticmethod
    async def _notify(events: Optional[EventEmitter], tracked: TrackedFile) -> None:
        if events:
            await events.emit("file_status", tracked)

    async def _cancel_remaining_tasks(self, tasks: List[asyncio.Task]) -> None:
        """Cancel all remaining tasks gracefully."""
        for task in tasks:
            if not task.done():
                task.cancel()

        await asyncio.gather(*tasks, return_exceptions=True)
