"""
site_uploader - photo ingestion and upload pipeline for site observations.

Usage:
    from site_uploader import UploadOrchestrator, DropPayload

    async with UploadOrchestrator(supabase_url, anon_key, access_token=token) as uploader:
        session = await uploader.upload(DropPayload.from_paths([folder]), preset="medium")
        print(session.summary)

    # Step by step, with progress events
    discovery = uploader.discover(DropPayload.from_paths([folder]))
    session = await uploader.create_session(discovery.files, preset="high")
    session.on_file_status(lambda f: print(f.filename, f.status.value))
    async with session:
        summary = await session.wait()
"""
from .orchestrator import (
    UploadOrchestrator,
    BatchUploader,
    DropPayload,
    DropZone,
    FileCollector,
    UploadSession,
    UploadTracker,
)
from .models import (
    COMPRESSION_PRESETS,
    CompressionPreset,
    SourceFile,
    StoredObject,
    TrackedFile,
    UploadConfig,
    UploadStatus,
    UploadSummary,
    UserIdentity,
    get_preset,
)
from .errors import (
    UploaderError,
    AuthenticationRequired,
    CompressionFailure,
    DiscoveryFailure,
    InvalidTransition,
    NoValidImagesError,
    SessionAborted,
    UnsupportedType,
    UploadFailure,
)
from .services import CompressionService, StorageService

__version__ = "0.1.0"
__all__ = [
    # Main
    "UploadOrchestrator",
    "BatchUploader",
    "DropPayload",
    "DropZone",
    "FileCollector",
    "UploadSession",
    "UploadTracker",
    # Models
    "COMPRESSION_PRESETS",
    "CompressionPreset",
    "SourceFile",
    "StoredObject",
    "TrackedFile",
    "UploadConfig",
    "UploadStatus",
    "UploadSummary",
    "UserIdentity",
    "get_preset",
    # Errors
    "UploaderError",
    "AuthenticationRequired",
    "CompressionFailure",
    "DiscoveryFailure",
    "InvalidTransition",
    "NoValidImagesError",
    "SessionAborted",
    "UnsupportedType",
    "UploadFailure",
    # Services
    "CompressionService",
    "StorageService",
]
