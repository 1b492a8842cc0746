"""Orchestrator package - coordinates upload workflows."""
from .core import UploadOrchestrator
from .batch import BatchUploader
from .drop_zone import DropZone
from .file_collector import DiscoveryResult, DropPayload, FileCollector, MemoryDirectoryEntry, MemoryFileEntry, PathEntry
from .process import SessionState, UploadSession
from .tracker import UploadTracker

__all__ = [
    "UploadOrchestrator",
    "BatchUploader",
    "DropZone",
    "DiscoveryResult",
    "DropPayload",
    "FileCollector",
    "MemoryDirectoryEntry",
    "MemoryFileEntry",
    "PathEntry",
    "SessionState",
    "UploadSession",
    "UploadTracker",
]
