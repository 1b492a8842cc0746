"""Per-file status tracking for an upload session."""
from typing import Dict, Iterable, Iterator, List, Optional, Set
import logging
import time
import uuid

from ..errors import InvalidTransition
from ..models import SourceFile, StoredObject, TrackedFile, UploadStatus, UploadSummary

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[UploadStatus, frozenset] = {
    UploadStatus.PENDING: frozenset({UploadStatus.COMPRESSING}),
    UploadStatus.COMPRESSING: frozenset({UploadStatus.UPLOADING, UploadStatus.ERROR}),
    UploadStatus.UPLOADING: frozenset({UploadStatus.COMPLETED, UploadStatus.ERROR}),
    UploadStatus.COMPLETED: frozenset(),
    UploadStatus.ERROR: frozenset(),
}

_UPDATABLE_FIELDS = frozenset({
    "compressed_data",
    "compressed_size",
    "compressed_name",
    "compression_note",
    "error",
    "storage_path",
    "uploaded_url",
})


def generate_file_id() -> str:
    return f"{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class UploadTracker:
    """
    Status map for every file in one session, keyed by file id.

    Each pipeline writes only its own entry. Transitions are validated
    against ALLOWED_TRANSITIONS, so a stale writer cannot overwrite a newer
    status.
    """

    def __init__(self, sources: Iterable[SourceFile] = ()):
        self._files: Dict[str, TrackedFile] = {}
        self._superseded: Set[str] = set()
        self._claimed: Set[str] = set()
        self._in_flight = 0
        self._peak_in_flight = 0
        for source in sources:
            self.add(source)

    def add(self, source: SourceFile) -> TrackedFile:
        tracked = TrackedFile(id=generate_file_id(), source=source, original_size=source.size)
        self._files[tracked.id] = tracked
        return tracked

    def get(self, file_id: str) -> Optional[TrackedFile]:
        return self._files.get(file_id)

    def __getitem__(self, file_id: str) -> TrackedFile:
        return self._files[file_id]

    def __contains__(self, file_id: str) -> bool:
        return file_id in self._files

    def __len__(self) -> int:
        return len(self._files)

    def __iter__(self) -> Iterator[TrackedFile]:
        return iter(list(self._files.values()))

    @property
    def files(self) -> List[TrackedFile]:
        return list(self._files.values())

    @property
    def in_flight(self) -> int:
        """Files currently compressing or uploading."""
        return self._in_flight

    @property
    def peak_in_flight(self) -> int:
        return self._peak_in_flight

    def transition(self, file_id: str, status: UploadStatus, **updates) -> TrackedFile:
        """
        Move a file to ``status`` and apply field updates.

        Raises:
            KeyError: unknown file id
            InvalidTransition: status not reachable from the current one
        """
        tracked = self._files[file_id]
        current = tracked.status
        if status not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransition(
                f"{tracked.filename}: cannot move from {current.value} to {status.value}"
            )
        unknown = set(updates) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        for name, value in updates.items():
            setattr(tracked, name, value)
        tracked.status = status
        tracked.history.append(status)

        if status.is_active and not current.is_active:
            self._in_flight += 1
            self._peak_in_flight = max(self._peak_in_flight, self._in_flight)
        elif current.is_active and not status.is_active:
            self._in_flight -= 1

        logger.debug(f"{tracked.filename}: {current.value} -> {status.value}")
        return tracked

    def start_compression(self, file_id: str) -> TrackedFile:
        return self.transition(file_id, UploadStatus.COMPRESSING)

    def mark_uploading(
        self,
        file_id: str,
        compressed_data: Optional[bytes] = None,
        compressed_name: Optional[str] = None,
        note: Optional[str] = None,
    ) -> TrackedFile:
        updates = {"compression_note": note}
        if compressed_data is not None:
            updates.update(
                compressed_data=compressed_data,
                compressed_size=len(compressed_data),
                compressed_name=compressed_name,
            )
        return self.transition(file_id, UploadStatus.UPLOADING, **updates)

    def complete(self, file_id: str, stored: StoredObject) -> TrackedFile:
        if not stored.url:
            raise InvalidTransition(f"{self._files[file_id].filename}: completed without an access URL")
        return self.transition(
            file_id,
            UploadStatus.COMPLETED,
            storage_path=stored.path,
            uploaded_url=stored.url,
        )

    def fail(self, file_id: str, message: str) -> TrackedFile:
        return self.transition(file_id, UploadStatus.ERROR, error=message)

    def counts(self) -> Dict[UploadStatus, int]:
        counts = {status: 0 for status in UploadStatus}
        for tracked in self._files.values():
            counts[tracked.status] += 1
        return counts

    def pending(self) -> List[TrackedFile]:
        """Pending files not yet claimed by a running batch."""
        return [
            f for f in self._files.values()
            if f.status == UploadStatus.PENDING and f.id not in self._claimed
        ]

    def claim_pending(self) -> List[TrackedFile]:
        """
        Take every unclaimed pending file for one batch.

        Claimed files stay pending until their pipeline starts, but no other
        batch picks them up.
        """
        claimed = self.pending()
        self._claimed.update(f.id for f in claimed)
        return claimed

    def completed(self) -> List[TrackedFile]:
        return [f for f in self._files.values() if f.status == UploadStatus.COMPLETED]

    def failed(self) -> List[TrackedFile]:
        return [f for f in self._files.values() if f.status == UploadStatus.ERROR]

    @property
    def all_terminal(self) -> bool:
        return all(f.is_terminal for f in self._files.values())

    def summary(self, skipped: int = 0) -> UploadSummary:
        current = [f for f in self._files.values() if f.id not in self._superseded]
        return UploadSummary.from_files(current, skipped=skipped)

    def resubmit(self, file_id: str) -> TrackedFile:
        """
        Queue a failed file again as a new pending entry.

        The failed entry is kept as is; the new entry gets a fresh id.
        """
        tracked = self._files[file_id]
        if tracked.status != UploadStatus.ERROR:
            raise InvalidTransition(f"{tracked.filename}: only failed files can be resubmitted")
        if file_id in self._superseded:
            raise InvalidTransition(f"{tracked.filename}: already resubmitted")
        self._superseded.add(file_id)
        return self.add(tracked.source)

    def reset(self) -> None:
        self._files.clear()
        self._superseded.clear()
        self._claimed.clear()
        self._in_flight = 0
        self._peak_in_flight = 0
