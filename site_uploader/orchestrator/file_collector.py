"""File discovery for dropped files and folders."""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Union
import logging

from ..errors import DiscoveryFailure, NoValidImagesError, UnsupportedType
from ..models import SourceFile

logger = logging.getLogger(__name__)

SUPPORTED_IMAGE_TYPES = frozenset({"image/png", "image/jpeg", "image/jpg", "image/webp"})
SUPPORTED_IMAGE_EXTENSIONS = frozenset({".png", ".jpg", ".jpeg", ".webp"})


def is_supported_image(name: str, content_type: Optional[str] = None) -> bool:
    """Accept PNG, JPG/JPEG and WebP by content type, falling back to extension."""
    if content_type:
        return content_type.lower() in SUPPORTED_IMAGE_TYPES
    return Path(name).suffix.lower() in SUPPORTED_IMAGE_EXTENSIONS


def ensure_supported(source: SourceFile) -> SourceFile:
    """Raises UnsupportedType unless the file is a supported image."""
    if not is_supported_image(source.name, source.content_type):
        raise UnsupportedType(f"{source.name}: unsupported type {source.content_type or source.suffix or 'unknown'}")
    return source


class PathEntry:
    """Drop entry backed by the local filesystem."""

    def __init__(self, path: Path):
        self.path = Path(path)

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def is_file(self) -> bool:
        return self.path.is_file()

    @property
    def is_directory(self) -> bool:
        return self.path.is_dir()

    def read(self) -> Optional[SourceFile]:
        return SourceFile.from_path(self.path)

    def entries(self) -> List["PathEntry"]:
        return [PathEntry(child) for child in sorted(self.path.iterdir())]

    def __repr__(self):
        return f"PathEntry({str(self.path)!r})"


@dataclass
class MemoryFileEntry:
    """In-memory file entry. ``data=None`` models an entry with no readable content."""
    name: str
    data: Optional[bytes] = field(default=None, repr=False)
    content_type: Optional[str] = None
    is_file: bool = field(default=True, init=False)
    is_directory: bool = field(default=False, init=False)

    def read(self) -> Optional[SourceFile]:
        if self.data is None:
            return None
        return SourceFile.from_bytes(self.name, self.data, self.content_type)


@dataclass
class MemoryDirectoryEntry:
    """In-memory directory entry."""
    name: str
    children: List = field(default_factory=list)
    is_file: bool = field(default=False, init=False)
    is_directory: bool = field(default=True, init=False)

    def entries(self) -> List:
        return list(self.children)


DropItem = Union[PathEntry, MemoryFileEntry, MemoryDirectoryEntry, str, None]


@dataclass
class DropPayload:
    """Items of one drop, in the order they were dropped."""
    items: Sequence[DropItem] = field(default_factory=list)

    @classmethod
    def from_paths(cls, paths: Iterable[Union[str, Path]]) -> "DropPayload":
        return cls([PathEntry(Path(p)) for p in paths])

    def __len__(self) -> int:
        return len(self.items)


@dataclass
class DiscoveryResult:
    """Accepted image files plus the names that were filtered out."""
    files: List[SourceFile]
    rejected: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.files

    def raise_if_empty(self) -> "DiscoveryResult":
        if self.is_empty:
            raise NoValidImagesError()
        return self


class FileCollector:
    """Collects supported image files from drops and folders."""

    def discover(self, payload: DropPayload) -> DiscoveryResult:
        """
        Flatten a drop payload into supported image files.

        Directories are recursed to any depth. Items without readable
        content are skipped. Any traversal error aborts the whole drop.

        Raises:
            DiscoveryFailure: if an entry could not be read
        """
        files: List[SourceFile] = []
        rejected: List[str] = []

        logger.debug(f"Discovering files in drop with {len(payload)} item(s)")
        try:
            for item in payload.items:
                if item is None or isinstance(item, str):
                    logger.debug("Skipping drop item without file content")
                    continue
                self._traverse(item, files, rejected)
        except DiscoveryFailure:
            raise
        except Exception as e:
            logger.error(f"Drop traversal failed: {e}")
            raise DiscoveryFailure(f"Could not read dropped files: {e}") from e

        logger.info(f"Discovered {len(files)} image(s), {len(rejected)} unsupported file(s) ignored")
        return DiscoveryResult(files=files, rejected=rejected)

    def _traverse(self, entry, files: List[SourceFile], rejected: List[str]) -> None:
        if entry.is_file:
            source = entry.read()
            if source is None:
                logger.debug(f"Entry {entry.name} has no readable content, skipping")
                return
            try:
                files.append(ensure_supported(source))
            except UnsupportedType as e:
                logger.debug(str(e))
                rejected.append(source.name)
        elif entry.is_directory:
            for child in entry.entries():
                self._traverse(child, files, rejected)

