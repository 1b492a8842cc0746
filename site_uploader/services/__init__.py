"""Services for site_uploader."""
from .api_client import APIError, HTTPAPIClient
from .auth import StaticAuthProvider, SupabaseAuthProvider
from .compression import CompressionResult, CompressionService
from .observations import ObservationRepository, needs_signed_url_refresh, refresh_signed_urls
from .storage import StorageService

__all__ = [
    "APIError",
    "HTTPAPIClient",
    "StaticAuthProvider",
    "SupabaseAuthProvider",
    "CompressionResult",
    "CompressionService",
    "ObservationRepository",
    "needs_signed_url_refresh",
    "refresh_signed_urls",
    "StorageService",
]
