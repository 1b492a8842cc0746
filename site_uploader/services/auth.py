"""Authentication providers: resolve the user an upload belongs to."""
from typing import Optional
import logging

import httpx

from ..models import UserIdentity
from .api_client import APIError, HTTPAPIClient

logger = logging.getLogger(__name__)


class StaticAuthProvider:
    """Provider for a user id known up front (CLI, service accounts)."""

    def __init__(self, user_id: Optional[str], email: Optional[str] = None):
        self._identity = UserIdentity(user_id, email) if user_id else None

    async def current_user(self) -> Optional[UserIdentity]:
        return self._identity


class SupabaseAuthProvider:
    """Resolves the user behind the client's access token via ``GET /auth/v1/user``."""

    def __init__(self, api_client: HTTPAPIClient):
        self._api = api_client
        self._cached: Optional[UserIdentity] = None

    async def current_user(self) -> Optional[UserIdentity]:
        if self._cached:
            return self._cached
        try:
            response = await self._api.get("/auth/v1/user")
            data = response.json()
        except (APIError, httpx.HTTPError, ValueError) as e:
            logger.warning(f"Could not resolve current user: {e}")
            return None

        user_id = data.get("id") if isinstance(data, dict) else None
        if not user_id:
            return None
        self._cached = UserIdentity(user_id, data.get("email"))
        return self._cached
