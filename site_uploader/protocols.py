"""
Protocols (Interfaces) for the external collaborators.

Storage, authentication and compression are injected so the pipeline can run
against fakes in tests.
"""
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from .models import CompressionPreset, SourceFile, StoredObject, UserIdentity


@runtime_checkable
class IStorageClient(Protocol):
    """Interface for object storage operations."""

    async def upload(
        self,
        destination_path: str,
        payload: bytes,
        content_type: str = "image/jpeg",
    ) -> StoredObject:
        """Write an object and return its access reference. Raises UploadFailure."""
        ...

    async def create_signed_url(self, path: str, ttl_seconds: int) -> Optional[str]:
        """Time-limited read URL, or None if the backend refused."""
        ...


@runtime_checkable
class IAuthProvider(Protocol):
    """Interface for resolving the current user."""

    async def current_user(self) -> Optional[UserIdentity]:
        ...


@runtime_checkable
class ICompressor(Protocol):
    """Interface for image compression."""

    async def compress(self, source: SourceFile, payload: bytes, preset: CompressionPreset) -> Any:
        """Return a CompressionResult. Raises CompressionFailure."""
        ...


@runtime_checkable
class IAPIClient(Protocol):
    """Interface for REST calls."""

    async def post(self, endpoint: str, json: Any = None, **kwargs) -> Any:
        ...

    async def get(self, endpoint: str, **kwargs) -> Any:
        ...


class IObservationRepository(Protocol):
    """Interface for observation persistence."""

    async def create_observations(
        self,
        uploads: List[Dict[str, Any]],
        user_id: str,
        site_id: Optional[str] = None,
        labels: Optional[List[str]] = None,
    ) -> None:
        ...
