"""
Storage Service - Single Responsibility: write photos to object storage.

Talks to a Supabase-style storage REST API through HTTPAPIClient.
"""
from typing import Optional
from urllib.parse import quote
import logging

import httpx

from ..errors import UploadFailure
from ..models import StoredObject, UploadConfig
from .api_client import APIError, HTTPAPIClient

logger = logging.getLogger(__name__)


class StorageService:
    """
    Service for uploading photos and signing read URLs.

    Implements IStorageClient protocol.
    """

    def __init__(self, api_client: HTTPAPIClient, config: Optional[UploadConfig] = None):
        """
        Initialize storage service.

        Args:
            api_client: HTTP client for the backend
            config: Upload configuration (bucket, signed URL lifetime)
        """
        self._api = api_client
        self._config = config or UploadConfig()

    @property
    def bucket(self) -> str:
        return self._config.bucket

    def _object_endpoint(self, path: str) -> str:
        return f"/storage/v1/object/{self.bucket}/{quote(path.lstrip('/'))}"

    def _sign_endpoint(self, path: str) -> str:
        return f"/storage/v1/object/sign/{self.bucket}/{quote(path.lstrip('/'))}"

    async def upload(
        self,
        destination_path: str,
        payload: bytes,
        content_type: str = "image/jpeg",
    ) -> StoredObject:
        """
        Upload an object and resolve its access reference.

        The write is attempted once. The returned URL is a signed URL valid
        for ``config.signed_url_ttl`` seconds.

        Raises:
            UploadFailure: with the backend message on any storage or network error
        """
        try:
            await self._api.post(
                self._object_endpoint(destination_path),
                content=payload,
                headers={"Content-Type": content_type, "x-upsert": "false"},
                retries=1,
            )
        except APIError as e:
            logger.error(f"[storage] Upload rejected for {destination_path}: {e.message}")
            raise UploadFailure(e.message) from e
        except httpx.HTTPError as e:
            message = str(e) or type(e).__name__
            logger.error(f"[storage] Upload failed for {destination_path}: {message}")
            raise UploadFailure(message) from e

        url = await self.create_signed_url(destination_path, self._config.signed_url_ttl)
        if not url:
            raise UploadFailure(f"Storage did not return an access URL for {destination_path}")

        logger.debug(f"[storage] Stored {destination_path} ({len(payload)} bytes)")
        return StoredObject(path=destination_path, url=url)

    async def create_signed_url(self, path: str, ttl_seconds: int) -> Optional[str]:
        """
        Create a time-limited read URL.

        Returns:
            Absolute URL, or None if the backend refused or was unreachable
        """
        try:
            response = await self._api.post(self._sign_endpoint(path), json={"expiresIn": ttl_seconds})
            body = response.json()
            signed = body.get("signedURL") or body.get("signedUrl")
        except (APIError, httpx.HTTPError, ValueError) as e:
            logger.warning(f"[storage] Could not sign {path}: {e}")
            return None

        if not signed:
            return None
        if signed.startswith("http"):
            return signed
        return f"{self._api.base_url}/storage/v1/{signed.lstrip('/')}"
