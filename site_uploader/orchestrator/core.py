"""Core orchestrator - coordinates discovery, upload sessions and observation records."""
from typing import Callable, List, Optional, Sequence, Union
import asyncio
import logging

import httpx

from ..errors import AuthenticationRequired, NoValidImagesError, SessionAborted
from ..models import SourceFile, UploadConfig, UserIdentity, get_preset
from ..protocols import IAuthProvider, ICompressor, IObservationRepository, IStorageClient
from ..services.api_client import HTTPAPIClient
from ..services.auth import SupabaseAuthProvider
from ..services.compression import CompressionService
from ..services.observations import ObservationRepository
from ..services.storage import StorageService
from .batch import BatchUploader
from .file_collector import DiscoveryResult, DropPayload, FileCollector
from .process import UploadSession

logger = logging.getLogger(__name__)


class UploadOrchestrator:
    """
    Orchestrates photo uploads using injected services.

    Usage:
        async with UploadOrchestrator(url, api_key, access_token=token) as uploader:
            session = await uploader.upload(DropPayload.from_paths(paths), preset="medium")
            print(session.summary)

        # Custom collaborators (tests, other backends)
        async with UploadOrchestrator(storage=storage, auth=auth) as uploader:
            ...
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        access_token: Optional[str] = None,
        config: Optional[UploadConfig] = None,
        storage: Optional[IStorageClient] = None,
        auth: Optional[IAuthProvider] = None,
        compressor: Optional[ICompressor] = None,
        observations: Optional[IObservationRepository] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize orchestrator with dependencies.

        Args:
            base_url: Backend URL (storage, auth and REST share it)
            api_key: Project API key
            access_token: Session token of the uploading user
            config: Upload configuration
            storage: Pre-built storage client (skips the HTTP one)
            auth: Pre-built auth provider
            compressor: Pre-built compressor
            observations: Pre-built observation repository
            transport: httpx transport override for the HTTP client
        """
        self._base_url = base_url
        self._api_key = api_key
        self._access_token = access_token
        self._config = config or UploadConfig()
        self._transport = transport

        self._storage = storage
        self._auth = auth
        self._compressor = compressor
        self._observations = observations
        self._api_client: Optional[HTTPAPIClient] = None

        self._collector = FileCollector()
        self._uploader: Optional[BatchUploader] = None

    async def __aenter__(self):
        """Initialize services."""
        needs_http = self._storage is None or self._auth is None or (
            self._observations is None and self._config.create_observations
        )
        if needs_http:
            if not self._base_url or not self._api_key:
                raise ValueError("base_url and api_key are required unless storage, auth and observations are provided")
            self._api_client = HTTPAPIClient(
                self._base_url,
                self._api_key,
                access_token=self._access_token,
                transport=self._transport,
            )
            await self._api_client.__aenter__()

        if self._storage is None:
            self._storage = StorageService(self._api_client, self._config)
        if self._auth is None:
            self._auth = SupabaseAuthProvider(self._api_client)
        if self._observations is None and self._api_client is not None:
            self._observations = ObservationRepository(self._api_client)
        if self._compressor is None:
            self._compressor = CompressionService(max_dimension=self._config.max_dimension)

        self._uploader = BatchUploader(self._storage, self._compressor, self._config)
        return self

    async def __aexit__(self, *args):
        """Cleanup resources."""
        if self._api_client:
            await self._api_client.__aexit__(*args)
            self._api_client = None

    @property
    def config(self) -> UploadConfig:
        return self._config

    @property
    def storage(self) -> Optional[IStorageClient]:
        return self._storage

    def discover(self, payload: DropPayload) -> DiscoveryResult:
        """Find supported images in a drop. Raises DiscoveryFailure."""
        return self._collector.discover(payload)

    async def require_user(self) -> UserIdentity:
        assert self._auth is not None
        user = await self._auth.current_user()
        if user is None:
            raise AuthenticationRequired("Please make sure you are logged in before uploading files.")
        return user

    async def create_session(
        self,
        files: Sequence[SourceFile],
        preset: Optional[str] = None,
        compress: bool = True,
    ) -> UploadSession:
        """
        Validate preconditions and build a session (not started).

        Raises:
            NoValidImagesError: no files
            AuthenticationRequired: no current user
            ValueError: unknown preset name
        """
        assert self._uploader is not None
        if not files:
            raise NoValidImagesError()
        compression_preset = get_preset(preset or self._config.default_preset) if compress else None
        user = await self.require_user()
        return UploadSession(self._uploader, list(files), compression_preset, user)

    async def upload(
        self,
        source: Union[DropPayload, Sequence[SourceFile]],
        preset: Optional[str] = None,
        compress: bool = True,
        site_id: Optional[str] = None,
        labels: Optional[List[str]] = None,
        on_session: Optional[Callable[[UploadSession], None]] = None,
    ) -> UploadSession:
        """
        Discover, upload and record observations for one drop.

        ``on_session`` is called with the session before it starts, so
        callers can subscribe to its events.

        Returns:
            The finished UploadSession (``session.summary`` holds the counts)

        Raises:
            SessionAborted: the session was cancelled; observations for files
                that completed before that are still recorded
        """
        if isinstance(source, DropPayload):
            loop = asyncio.get_running_loop()
            discovery = await loop.run_in_executor(None, self.discover, source)
            if discovery.rejected:
                logger.info(f"Ignored {len(discovery.rejected)} unsupported file(s)")
            files = discovery.raise_if_empty().files
        else:
            files = list(source)

        session = await self.create_session(files, preset=preset, compress=compress)
        if on_session:
            on_session(session)

        try:
            async with session:
                await session.wait()
        except SessionAborted:
            # Completed uploads stay completed; record them before re-raising
            await self.record_observations(session, site_id=site_id, labels=labels)
            raise

        await self.record_observations(session, site_id=site_id, labels=labels)
        return session

    async def record_observations(
        self,
        session: UploadSession,
        site_id: Optional[str] = None,
        labels: Optional[List[str]] = None,
    ) -> bool:
        """
        Create observation rows for the session's completed uploads.

        Failures are logged and reported through the return value only; they
        never change the upload summary.
        """
        if not self._config.create_observations or self._observations is None:
            return False

        uploads = [
            {"path": f.storage_path, "signed_url": f.uploaded_url, "file_name": f.filename}
            for f in session.tracker.completed()
        ]
        if not uploads:
            return False

        try:
            await self._observations.create_observations(uploads, session.user.id, site_id, labels)
        except Exception as e:
            logger.error(f"Error creating observations: {e}")
            return False
        return True
