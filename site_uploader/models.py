"""
Models for site_uploader.

Immutable dataclasses for inputs and results, one mutable record per tracked file.
"""
from dataclasses import dataclass, field
from typing import Optional, Dict, List
from pathlib import Path
from enum import Enum
import mimetypes
import os


MB = 1024 * 1024


class UploadStatus(Enum):
    """Lifecycle status of a tracked file."""
    PENDING = "pending"
    COMPRESSING = "compressing"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (UploadStatus.COMPLETED, UploadStatus.ERROR)

    @property
    def is_active(self) -> bool:
        return self in (UploadStatus.COMPRESSING, UploadStatus.UPLOADING)


@dataclass(frozen=True)
class SourceFile:
    """Handle to an original file: either on disk or already in memory."""
    name: str
    size: int
    content_type: str = ""
    path: Optional[Path] = None
    data: Optional[bytes] = field(default=None, repr=False)

    @classmethod
    def from_path(cls, path: Path) -> "SourceFile":
        path = Path(path)
        content_type, _ = mimetypes.guess_type(path.name)
        return cls(
            name=path.name,
            size=path.stat().st_size,
            content_type=content_type or "",
            path=path,
        )

    @classmethod
    def from_bytes(cls, name: str, data: bytes, content_type: Optional[str] = None) -> "SourceFile":
        if content_type is None:
            content_type, _ = mimetypes.guess_type(name)
        return cls(name=name, size=len(data), content_type=content_type or "", data=data)

    @property
    def suffix(self) -> str:
        return Path(self.name).suffix.lower()

    def read_bytes(self) -> bytes:
        """Read the original payload. Blocking; call from a worker thread."""
        if self.data is not None:
            return self.data
        if self.path is None:
            raise OSError(f"No content available for {self.name}")
        return self.path.read_bytes()


@dataclass
class TrackedFile:
    """Pipeline progress and outcome of one file. Mutated only through UploadTracker."""
    id: str
    source: SourceFile
    original_size: int
    status: UploadStatus = UploadStatus.PENDING
    compressed_data: Optional[bytes] = field(default=None, repr=False)
    compressed_size: Optional[int] = None
    compressed_name: Optional[str] = None
    compression_note: Optional[str] = None
    error: Optional[str] = None
    storage_path: Optional[str] = None
    uploaded_url: Optional[str] = None
    history: List[UploadStatus] = field(default_factory=lambda: [UploadStatus.PENDING])

    @property
    def filename(self) -> str:
        return self.source.name

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def upload_size(self) -> int:
        """Size of the payload actually sent to storage."""
        if self.compressed_size is not None:
            return self.compressed_size
        return self.original_size


@dataclass(frozen=True)
class CompressionPreset:
    """Named compression level."""
    name: str
    quality: float  # 0-1
    max_size_mb: float
    label: str = ""
    description: str = ""

    @property
    def max_size_bytes(self) -> int:
        return int(self.max_size_mb * MB)

    @property
    def jpeg_quality(self) -> int:
        """Quality on Pillow's 1-95 JPEG scale."""
        return max(1, min(95, int(round(self.quality * 100))))


COMPRESSION_PRESETS: Dict[str, CompressionPreset] = {
    "low": CompressionPreset("low", 0.6, 0.5, "Low (60%)", "Smallest file size"),
    "medium": CompressionPreset("medium", 0.8, 1, "Medium (80%)", "Balanced quality and size"),
    "high": CompressionPreset("high", 0.9, 2, "High (90%)", "Best quality"),
}


def get_preset(name: str) -> CompressionPreset:
    """Look up a preset by name."""
    try:
        return COMPRESSION_PRESETS[name.lower()]
    except KeyError:
        choices = ", ".join(COMPRESSION_PRESETS)
        raise ValueError(f"Unknown compression preset: {name!r} (choose from {choices})") from None


@dataclass(frozen=True)
class UploadSummary:
    """Aggregate counts over a resolved batch."""
    total: int = 0
    success: int = 0
    failed: int = 0
    skipped: int = 0

    @property
    def all_success(self) -> bool:
        return self.failed == 0 and self.skipped == 0

    @classmethod
    def from_files(cls, files: List[TrackedFile], skipped: int = 0) -> "UploadSummary":
        success = sum(1 for f in files if f.status == UploadStatus.COMPLETED)
        failed = sum(1 for f in files if f.status == UploadStatus.ERROR)
        return cls(
            total=success + failed + skipped,
            success=success,
            failed=failed,
            skipped=skipped,
        )

    def as_dict(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "success": self.success,
            "failed": self.failed,
            "skipped": self.skipped,
        }


@dataclass(frozen=True)
class StoredObject:
    """Acknowledged object write with its access reference."""
    path: str
    url: str


@dataclass(frozen=True)
class UserIdentity:
    id: str
    email: Optional[str] = None


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}") from None


@dataclass(frozen=True)
class UploadConfig:
    """Immutable configuration for upload sessions."""
    bucket: str = "photos"
    upload_dir: str = "uploads"
    max_parallel: int = 4
    max_file_size: int = 50 * MB
    max_files: int = 500
    max_dimension: int = 4096
    signed_url_ttl: int = 60 * 60 * 24 * 365  # 1 year
    default_preset: str = "medium"
    create_observations: bool = True

    def __post_init__(self):
        if self.max_parallel < 1:
            raise ValueError("max_parallel must be at least 1")
        if self.max_files < 1:
            raise ValueError("max_files must be at least 1")

    @classmethod
    def from_env(cls, **overrides) -> "UploadConfig":
        """Build config from SITE_UPLOADER_* environment variables."""
        defaults = cls()
        values = {
            "bucket": os.getenv("SITE_UPLOADER_BUCKET", defaults.bucket),
            "upload_dir": os.getenv("SITE_UPLOADER_UPLOAD_DIR", defaults.upload_dir),
            "max_parallel": _env_int("SITE_UPLOADER_MAX_PARALLEL", defaults.max_parallel),
            "max_file_size": _env_int("SITE_UPLOADER_MAX_FILE_SIZE", defaults.max_file_size),
            "max_files": _env_int("SITE_UPLOADER_MAX_FILES", defaults.max_files),
            "max_dimension": _env_int("SITE_UPLOADER_MAX_DIMENSION", defaults.max_dimension),
            "signed_url_ttl": _env_int("SITE_UPLOADER_SIGNED_URL_TTL", defaults.signed_url_ttl),
            "default_preset": os.getenv("SITE_UPLOADER_PRESET", defaults.default_preset),
            "create_observations": os.getenv("SITE_UPLOADER_CREATE_OBSERVATIONS", "1") not in ("0", "false", "no"),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
