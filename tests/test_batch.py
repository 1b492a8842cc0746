"""Tests for the batch compress+upload pipeline."""
import asyncio

import pytest
from unittest.mock import AsyncMock, Mock

from site_uploader.errors import CompressionFailure
from site_uploader.models import MB, SourceFile, UploadConfig, UploadStatus, get_preset
from site_uploader.orchestrator import BatchUploader, DropPayload, FileCollector, UploadTracker
from site_uploader.orchestrator.parallel import get_parallel_count
from site_uploader.services.compression import CompressionResult, CompressionService
from site_uploader.utils.events import EventEmitter
from tests.conftest import FakeStorage, make_image_bytes, make_noise_bytes


def _images(count, prefix="photo"):
    return [SourceFile.from_bytes(f"{prefix}{i}.png", make_noise_bytes(size=(64, 48))) for i in range(count)]


class TestParallelCount:
    def test_tiers(self):
        assert get_parallel_count(100 * 1024, 16) == 8
        assert get_parallel_count(5 * MB, 16) == 4
        assert get_parallel_count(20 * MB, 16) == 2

    def test_never_above_max(self):
        assert get_parallel_count(100, 3) == 3
        assert get_parallel_count(100, 1) == 1


class TestAdmission:
    def test_oversized_files_skipped(self):
        uploader = BatchUploader(FakeStorage(), Mock(), UploadConfig(max_file_size=100))
        small = SourceFile.from_bytes("small.png", b"x" * 10)
        big = SourceFile.from_bytes("big.png", b"x" * 1000)

        admitted, skipped = uploader.admit([small, big])

        assert admitted == [small]
        assert skipped == [big]

    def test_file_count_limit(self):
        uploader = BatchUploader(FakeStorage(), Mock(), UploadConfig(max_files=2))
        files = [SourceFile.from_bytes(f"{i}.png", b"x") for i in range(3)]

        admitted, skipped = uploader.admit(files)

        assert admitted == files[:2]
        assert skipped == files[2:]

    def test_destination_path(self):
        uploader = BatchUploader(FakeStorage(), Mock())
        assert uploader.destination_path("user-1", "123_abc", "a.jpg") == "user-1/uploads/123_abc_a.jpg"


class TestBatchRun:
    @pytest.mark.asyncio
    async def test_three_pngs_from_folder(self, tmp_path):
        for i in range(3):
            (tmp_path / f"photo{i}.png").write_bytes(make_noise_bytes(size=(64, 48)))
        (tmp_path / "notes.txt").write_text("not an image")
        discovery = FileCollector().discover(DropPayload.from_paths([tmp_path]))
        storage = FakeStorage()
        tracker = UploadTracker(discovery.files)

        results = await BatchUploader(storage, CompressionService()).run(tracker, get_preset("medium"), "user-1")

        assert len(results) == 3
        assert tracker.summary().as_dict() == {"total": 3, "success": 3, "failed": 0, "skipped": 0}
        assert len(storage.uploads) == 3
        for tracked in tracker:
            assert tracked.history == [
                UploadStatus.PENDING,
                UploadStatus.COMPRESSING,
                UploadStatus.UPLOADING,
                UploadStatus.COMPLETED,
            ]
            assert tracked.uploaded_url.startswith("https://storage.test/user-1/uploads/")
            upload_name = tracked.compressed_name or tracked.filename
            assert tracked.storage_path == f"user-1/uploads/{tracked.id}_{upload_name}"

    @pytest.mark.asyncio
    async def test_one_upload_failure_is_isolated(self):
        storage = FakeStorage(fail_substrings=["photo3"], message="Network request failed")
        tracker = UploadTracker(_images(5))

        await BatchUploader(storage, CompressionService()).run(tracker, get_preset("medium"), "user-1")

        assert tracker.summary().as_dict() == {"total": 5, "success": 4, "failed": 1, "skipped": 0}
        failed = tracker.failed()
        assert [f.filename for f in failed] == ["photo3.png"]
        assert failed[0].error == "Network request failed"
        assert failed[0].history[-2:] == [UploadStatus.UPLOADING, UploadStatus.ERROR]

    @pytest.mark.asyncio
    async def test_concurrency_never_exceeds_limit(self):
        storage = FakeStorage(delay=0.02)
        tracker = UploadTracker(_images(10))
        seen = []

        events = EventEmitter()
        events.on("file_status", lambda _: seen.append(tracker.in_flight))

        uploader = BatchUploader(storage, CompressionService(), UploadConfig(max_parallel=3))
        await uploader.run(tracker, get_preset("medium"), "user-1", events=events)

        assert tracker.all_terminal
        assert max(seen) <= 3
        assert 1 < tracker.peak_in_flight <= 3
        assert storage.peak_active <= 3

    @pytest.mark.asyncio
    async def test_compression_failure_falls_back_to_original(self):
        storage = FakeStorage()
        broken = SourceFile.from_bytes("broken.png", b"not really a png")
        tracker = UploadTracker([broken])

        await BatchUploader(storage, CompressionService()).run(tracker, get_preset("medium"), "user-1")

        tracked = tracker.files[0]
        assert tracked.status == UploadStatus.COMPLETED
        assert "Failed to compress broken.png" in tracked.compression_note
        assert tracked.compressed_data is None
        assert tracked.upload_size == len(b"not really a png")
        path = tracked.storage_path
        assert path.endswith("_broken.png")
        assert storage.uploads[path] == b"not really a png"
        assert storage.content_types[path] == "image/png"

    @pytest.mark.asyncio
    async def test_unexpected_compression_crash_fails_file(self):
        compressor = Mock()
        compressor.compress = AsyncMock(side_effect=RuntimeError("worker died"))
        tracker = UploadTracker(_images(2))

        await BatchUploader(FakeStorage(), compressor).run(tracker, get_preset("medium"), "user-1")

        for tracked in tracker:
            assert tracked.status == UploadStatus.ERROR
            assert tracked.error == "worker died"
            assert tracked.history == [UploadStatus.PENDING, UploadStatus.COMPRESSING, UploadStatus.ERROR]

    @pytest.mark.asyncio
    async def test_compression_failure_mock_uses_original(self):
        compressor = Mock()
        compressor.compress = AsyncMock(side_effect=CompressionFailure("Failed to compress photo0.png: bad header"))
        storage = FakeStorage()
        tracker = UploadTracker(_images(1))

        await BatchUploader(storage, compressor).run(tracker, get_preset("low"), "user-1")

        tracked = tracker.files[0]
        assert tracked.status == UploadStatus.COMPLETED
        assert tracked.compression_note == "Failed to compress photo0.png: bad header"

    @pytest.mark.asyncio
    async def test_larger_result_keeps_original(self):
        compressor = Mock()
        compressor.compress = AsyncMock(
            return_value=CompressionResult(data=b"x" * 10_000, name="tiny_png.jpg", quality=80, width=1, height=1)
        )
        storage = FakeStorage()
        source = SourceFile.from_bytes("tiny.png", b"small")
        tracker = UploadTracker([source])

        await BatchUploader(storage, compressor).run(tracker, get_preset("medium"), "user-1")

        tracked = tracker.files[0]
        assert tracked.status == UploadStatus.COMPLETED
        assert tracked.compression_note == "No size reduction; original kept"
        assert storage.uploads[tracked.storage_path] == b"small"

    @pytest.mark.asyncio
    async def test_unreadable_file_fails(self, tmp_path):
        missing = SourceFile(name="gone.png", size=10, content_type="image/png", path=tmp_path / "gone.png")
        tracker = UploadTracker([missing])

        await BatchUploader(FakeStorage(), CompressionService()).run(tracker, get_preset("medium"), "user-1")

        tracked = tracker.files[0]
        assert tracked.status == UploadStatus.ERROR
        assert tracked.error.startswith("Could not read gone.png")

    @pytest.mark.asyncio
    async def test_without_preset_uploads_originals(self):
        storage = FakeStorage()
        compressor = Mock()
        compressor.compress = AsyncMock()
        original = make_image_bytes("PNG")
        tracker = UploadTracker([SourceFile.from_bytes("raw.png", original)])

        await BatchUploader(storage, compressor).run(tracker, None, "user-1")

        tracked = tracker.files[0]
        compressor.compress.assert_not_called()
        assert tracked.status == UploadStatus.COMPLETED
        assert tracked.compression_note == "Compression skipped"
        assert tracked.compressed_size is None
        assert storage.uploads[tracked.storage_path] == original

    @pytest.mark.asyncio
    async def test_storage_without_url_fails_file(self):
        storage = Mock()
        storage.upload = AsyncMock(return_value=Mock(path="p", url=None))
        tracker = UploadTracker(_images(1))

        await BatchUploader(storage, CompressionService()).run(tracker, get_preset("medium"), "user-1")

        tracked = tracker.files[0]
        assert tracked.status == UploadStatus.ERROR
        assert "No access URL" in tracked.error

    @pytest.mark.asyncio
    async def test_progress_events_and_callback(self):
        tracker = UploadTracker(_images(3))
        events = EventEmitter()
        progress = []
        callback_calls = []
        events.on("progress", progress.append)

        await BatchUploader(FakeStorage(), CompressionService()).run(
            tracker,
            get_preset("medium"),
            "user-1",
            events=events,
            progress_callback=lambda msg, done, total: callback_calls.append((done, total)),
        )

        assert len(progress) == 3
        assert progress[-1][UploadStatus.COMPLETED] == 3
        assert callback_calls[0] == (0, 3)
        assert callback_calls[-1] == (3, 3)

    @pytest.mark.asyncio
    async def test_only_pending_files_run(self):
        tracker = UploadTracker(_images(1))
        file_id = tracker.files[0].id
        tracker.start_compression(file_id)
        tracker.fail(file_id, "earlier failure")
        retry = tracker.resubmit(file_id)
        storage = FakeStorage()

        results = await BatchUploader(storage, CompressionService()).run(tracker, get_preset("medium"), "user-1")

        assert [r.id for r in results] == [retry.id]
        assert tracker.summary().as_dict() == {"total": 1, "success": 1, "failed": 0, "skipped": 0}

    @pytest.mark.asyncio
    async def test_empty_tracker(self):
        assert await BatchUploader(FakeStorage(), CompressionService()).run(UploadTracker(), None, "u") == []

    @pytest.mark.asyncio
    async def test_cancel_abandons_in_flight(self):
        storage = FakeStorage(delay=5)
        tracker = UploadTracker(_images(4))
        task = asyncio.create_task(
            BatchUploader(storage, CompressionService()).run(tracker, None, "user-1")
        )
        await asyncio.sleep(0.1)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert storage.active == 0
        assert storage.uploads == {}

    @pytest.mark.asyncio
    async def test_second_run_while_first_has_queued_files(self):
        storage = FakeStorage(delay=0.05)
        tracker = UploadTracker(_images(6))
        uploader = BatchUploader(storage, CompressionService(), UploadConfig(max_parallel=2))

        first = asyncio.create_task(uploader.run(tracker, None, "user-1"))
        await asyncio.sleep(0.01)
        late = tracker.add(SourceFile.from_bytes("late.png", make_image_bytes("PNG")))
        second = asyncio.create_task(uploader.run(tracker, None, "user-1"))

        first_results, second_results = await asyncio.gather(first, second)

        assert len(first_results) == 6
        assert [f.id for f in second_results] == [late.id]
        assert tracker.all_terminal
        assert tracker.summary().as_dict() == {"total": 7, "success": 7, "failed": 0, "skipped": 0}
        assert len(storage.uploads) == 7

    @pytest.mark.asyncio
    async def test_unexpected_error_cancels_siblings(self):
        class BrokenStored:
            path = "p"

            @property
            def url(self):
                raise RuntimeError("malformed storage response")

        async def upload(destination_path, payload, content_type="image/jpeg"):
            if "photo0" in destination_path:
                return BrokenStored()
            await asyncio.sleep(10)

        storage = Mock()
        storage.upload = AsyncMock(side_effect=upload)
        tracker = UploadTracker(_images(3))

        with pytest.raises(RuntimeError, match="malformed storage response"):
            await BatchUploader(storage, CompressionService()).run(tracker, None, "user-1")

        others = [t for t in asyncio.all_tasks() if t is not asyncio.current_task()]
        assert others == []
