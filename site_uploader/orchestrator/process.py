from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence
import asyncio
import logging

from ..errors import SessionAborted
from ..models import CompressionPreset, SourceFile, TrackedFile, UploadStatus, UploadSummary, UserIdentity
from ..utils.events import EventEmitter
from .batch import BatchUploader
from .tracker import UploadTracker

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """State of an upload session."""
    PENDING = "pending"
    RUNNING = "running"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    FAILED = "failed"


class UploadSession:
    """
    One batch upload with event-based progress tracking.

    Owns the tracker for its files; nothing outside the session writes to it.

    Usage:
        session = orchestrator.create_session(files, "medium", user)
        session.on_file_status(lambda f: print(f.filename, f.status.value))
        session.on_finish(lambda summary: print(summary))

        async with session:
            summary = await session.wait()

    Leaving the ``async with`` block before the batch resolves cancels it.
    """

    def __init__(
        self,
        uploader: BatchUploader,
        files: Sequence[SourceFile],
        preset: Optional[CompressionPreset],
        user: UserIdentity,
    ):
        self._uploader = uploader
        self._preset = preset
        self._user = user
        admitted, skipped = uploader.admit(files)
        self._tracker = UploadTracker(admitted)
        self._skipped: List[SourceFile] = skipped
        self._events = EventEmitter()
        self._state = SessionState.PENDING
        self._task: Optional[asyncio.Task] = None
        self._summary: Optional[UploadSummary] = None
        self._error: Optional[Exception] = None

    # Event subscription methods
    def on_start(self, callback: Callable[[], None]):
        """Called when the batch starts."""
        self._events.on("start", callback)

    def on_file_status(self, callback: Callable[[TrackedFile], None]):
        """Called on every status change of a file. Receives the TrackedFile."""
        self._events.on("file_status", callback)

    def on_progress(self, callback: Callable[[Dict[UploadStatus, int]], None]):
        """Called each time a file reaches a terminal status. Receives counts per status."""
        self._events.on("progress", callback)

    def on_finish(self, callback: Callable[[UploadSummary], None]):
        """Called once when every file is terminal. Receives the UploadSummary."""
        self._events.on("finish", callback)

    def on_error(self, callback: Callable[[Exception], None]):
        """Called when the batch itself fails. Receives the Exception."""
        self._events.on("error", callback)

    # Control methods
    async def start(self):
        """Start the batch (non-blocking)."""
        if self._state != SessionState.PENDING:
            raise RuntimeError(f"Cannot start session in state: {self._state}")

        self._state = SessionState.RUNNING
        self._task = asyncio.create_task(self._run())
        await self._events.emit("start")

    async def cancel(self):
        """Abandon the batch. Files already completed stay completed."""
        if self._state in (SessionState.COMPLETED, SessionState.CANCELLED, SessionState.FAILED):
            return

        self._state = SessionState.CANCELLED

        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    async def wait(self) -> UploadSummary:
        """
        Wait for every file to reach a terminal status.

        Raises:
            SessionAborted: the session was cancelled before the batch resolved
        """
        if self._state == SessionState.PENDING:
            await self.start()

        if self._task:
            await asyncio.wait({self._task})
            if self._task.cancelled():
                self._state = SessionState.CANCELLED

        if self._state == SessionState.CANCELLED:
            raise SessionAborted("Upload session was cancelled before completion")
        if self._error is not None:
            raise self._error
        assert self._summary is not None
        return self._summary

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.cancel()

    # State properties
    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def tracker(self) -> UploadTracker:
        return self._tracker

    @property
    def files(self) -> List[TrackedFile]:
        return self._tracker.files

    @property
    def skipped_files(self) -> List[SourceFile]:
        return list(self._skipped)

    @property
    def preset(self) -> Optional[CompressionPreset]:
        return self._preset

    @property
    def user(self) -> UserIdentity:
        return self._user

    @property
    def summary(self) -> Optional[UploadSummary]:
        """Final summary (None until the batch resolved)."""
        return self._summary

    @property
    def is_running(self) -> bool:
        return self._state == SessionState.RUNNING

    @property
    def is_completed(self) -> bool:
        return self._state == SessionState.COMPLETED

    @property
    def is_cancelled(self) -> bool:
        return self._state == SessionState.CANCELLED

    # Internal methods
    async def _run(self):
        try:
            await self._uploader.run(self._tracker, self._preset, self._user.id, self._events)

            if self._state == SessionState.CANCELLED:
                return
            self._summary = self._tracker.summary(skipped=len(self._skipped))
            self._state = SessionState.COMPLETED
            logger.info(f"Upload session finished: {self._summary.as_dict()}")
            await self._events.emit("finish", self._summary)

        except asyncio.CancelledError:
            self._state = SessionState.CANCELLED
            raise
        except Exception as e:
            self._state = SessionState.FAILED
            self._error = e
            logger.error(f"Upload session failed: {e}", exc_info=True)
            await self._events.emit("error", e)
