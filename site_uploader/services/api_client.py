"""HTTP adapter for backend REST operations."""
from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

import httpx


class APIError(RuntimeError):
    """Backend answered with an error status."""

    def __init__(self, method: str, endpoint: str, status_code: int, detail: Any):
        self.method = method
        self.endpoint = endpoint
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"API error {status_code} on {method} {endpoint}: {detail}")

    @property
    def message(self) -> str:
        """Backend error message, as sent."""
        if isinstance(self.detail, dict):
            for key in ("message", "error_description", "msg", "error"):
                if self.detail.get(key):
                    return str(self.detail[key])
        return str(self.detail)


class HTTPAPIClient:
    """
    HTTP client adapter for API calls.

    Implements IAPIClient protocol. Sends the project API key on every
    request and the user's access token as bearer when one is set.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        access_token: Optional[str] = None,
        timeout: int = 60,
        max_retries: int = 3,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._access_token = access_token
        self._timeout = timeout
        self._max_retries = max(1, max_retries)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._access_token or self._api_key}",
        }
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            headers=headers,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args):
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def base_url(self) -> str:
        return self._base_url

    async def post(
        self,
        endpoint: str,
        json: Any = None,
        content: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None,
        retries: Optional[int] = None,
    ) -> httpx.Response:
        return await self._request("POST", endpoint, json=json, content=content, headers=headers, retries=retries)

    async def get(
        self,
        endpoint: str,
        headers: Optional[Dict[str, str]] = None,
        retries: Optional[int] = None,
    ) -> httpx.Response:
        return await self._request("GET", endpoint, headers=headers, retries=retries)

    async def _request(
        self,
        method: str,
        endpoint: str,
        retries: Optional[int] = None,
        **kwargs,
    ) -> httpx.Response:
        if not self._client:
            raise RuntimeError("HTTPAPIClient not initialized. Use 'async with' context.")

        max_retries = max(1, retries) if retries is not None else self._max_retries
        kwargs = {k: v for k, v in kwargs.items() if v is not None}
        last_exception = None

        for attempt in range(max_retries):
            try:
                response = await self._client.request(method, endpoint, **kwargs)

                if response.status_code >= 500 and attempt < max_retries - 1:
                    await asyncio.sleep(0.5 * (attempt + 1))
                    continue

                if response.status_code >= 400:
                    try:
                        error_detail = response.json()
                    except Exception:
                        error_detail = response.text
                    raise APIError(method, endpoint, response.status_code, error_detail)

                return response
            except (httpx.RequestError, httpx.TimeoutException) as exc:
                last_exception = exc
                if attempt < max_retries - 1:
                    await asyncio.sleep(0.5 * (attempt + 1))
                    continue
                raise

        if last_exception:
            raise last_exception
        raise RuntimeError(f"Failed to {method} {endpoint} after {max_retries} attempts")
