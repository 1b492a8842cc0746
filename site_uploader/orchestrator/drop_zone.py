"""Scoped drop subscriptions."""
from typing import Callable, List, Optional
import asyncio
import logging

from ..errors import DiscoveryFailure
from ..models import SourceFile
from ..utils.events import EventEmitter, Subscription
from .file_collector import DiscoveryResult, DropPayload, FileCollector

logger = logging.getLogger(__name__)


class DropZone:
    """
    Receives drop payloads and hands discovered files to subscribers.

    Usage:
        zone = DropZone()
        with zone.subscribe(on_files):
            await zone.drop(DropPayload.from_paths(paths))
    """

    def __init__(self, collector: Optional[FileCollector] = None):
        self._collector = collector or FileCollector()
        self._events = EventEmitter()

    def subscribe(self, callback: Callable[[List[SourceFile]], None]) -> Subscription:
        """Called with the accepted files of every drop until the subscription is closed."""
        return self._events.subscribe("files_dropped", callback)

    def on_no_valid_files(self, callback: Callable[[DiscoveryResult], None]) -> Subscription:
        return self._events.subscribe("no_valid_files", callback)

    def on_error(self, callback: Callable[[DiscoveryFailure], None]) -> Subscription:
        return self._events.subscribe("drop_error", callback)

    @property
    def has_subscribers(self) -> bool:
        return self._events.listener_count("files_dropped") > 0

    async def drop(self, payload: DropPayload) -> Optional[DiscoveryResult]:
        """Run discovery on a payload and notify subscribers. Returns None on failure."""
        # Folder walks hit the filesystem; keep them off the event loop
        loop = asyncio.get_running_loop()
        try:
            result = await loop.run_in_executor(None, self._collector.discover, payload)
        except DiscoveryFailure as e:
            await self._events.emit("drop_error", e)
            return None

        if result.is_empty:
            logger.warning("Drop contained no valid images")
            await self._events.emit("no_valid_files", result)
        else:
            await self._events.emit("files_dropped", result.files)
        return result
