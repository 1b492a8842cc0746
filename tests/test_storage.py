"""Tests for the HTTP client, storage and auth services."""
import json

import httpx
import pytest

from site_uploader.errors import UploadFailure
from site_uploader.models import UploadConfig
from site_uploader.services.api_client import APIError, HTTPAPIClient
from site_uploader.services.auth import StaticAuthProvider, SupabaseAuthProvider
from site_uploader.services.storage import StorageService

BASE_URL = "http://backend.test"


class Backend:
    """Scripted backend for httpx.MockTransport."""

    def __init__(self, upload_status=200, upload_body=None, sign_status=200, sign_body=None, upload_exc=None):
        self.upload_status = upload_status
        self.upload_body = upload_body or {"Key": "photos/ok"}
        self.sign_status = sign_status
        self.sign_body = sign_body
        self.upload_exc = upload_exc
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.startswith("/storage/v1/object/sign/"):
            body = self.sign_body
            if body is None:
                body = {"signedURL": path[len("/storage/v1"):] + "?token=signed"}
            return httpx.Response(self.sign_status, json=body)
        if path.startswith("/storage/v1/object/"):
            if self.upload_exc is not None:
                raise self.upload_exc
            return httpx.Response(self.upload_status, json=self.upload_body)
        if path == "/auth/v1/user":
            return httpx.Response(200, json={"id": "user-42", "email": "inspector@example.com"})
        return httpx.Response(404, json={"message": "not found"})

    def uploads(self):
        return [
            r for r in self.requests
            if r.url.path.startswith("/storage/v1/object/") and "/sign/" not in r.url.path
        ]


def _client(backend, **kwargs):
    return HTTPAPIClient(BASE_URL, "anon-key", transport=httpx.MockTransport(backend), **kwargs)


class TestHTTPAPIClient:
    @pytest.mark.asyncio
    async def test_requires_context(self):
        client = HTTPAPIClient(BASE_URL, "anon-key")
        with pytest.raises(RuntimeError, match="not initialized"):
            await client.get("/auth/v1/user")

    @pytest.mark.asyncio
    async def test_sends_api_key_and_token(self):
        backend = Backend()
        async with _client(backend, access_token="token-abc") as client:
            await client.get("/auth/v1/user")

        request = backend.requests[0]
        assert request.headers["apikey"] == "anon-key"
        assert request.headers["Authorization"] == "Bearer token-abc"

    @pytest.mark.asyncio
    async def test_error_status_raises_api_error(self):
        async with _client(Backend()) as client:
            with pytest.raises(APIError) as exc_info:
                await client.get("/rest/v1/unknown")

        assert exc_info.value.status_code == 404
        assert exc_info.value.message == "not found"

    @pytest.mark.asyncio
    async def test_retries_server_errors(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(503, text="busy")
            return httpx.Response(200, json={"ok": True})

        async with HTTPAPIClient(BASE_URL, "k", transport=httpx.MockTransport(handler)) as client:
            response = await client.get("/health")

        assert response.json() == {"ok": True}
        assert len(calls) == 2


class TestStorageService:
    @pytest.mark.asyncio
    async def test_upload_returns_signed_url(self):
        backend = Backend()
        async with _client(backend) as client:
            stored = await StorageService(client).upload("user-1/uploads/1_a.jpg", b"jpeg-bytes")

        assert stored.path == "user-1/uploads/1_a.jpg"
        assert stored.url == f"{BASE_URL}/storage/v1/object/sign/photos/user-1/uploads/1_a.jpg?token=signed"

        upload = backend.uploads()[0]
        assert upload.url.path == "/storage/v1/object/photos/user-1/uploads/1_a.jpg"
        assert upload.headers["x-upsert"] == "false"
        assert upload.headers["Content-Type"] == "image/jpeg"
        assert upload.content == b"jpeg-bytes"

        sign = backend.requests[-1]
        assert json.loads(sign.content) == {"expiresIn": UploadConfig().signed_url_ttl}

    @pytest.mark.asyncio
    async def test_custom_bucket(self):
        backend = Backend()
        async with _client(backend) as client:
            await StorageService(client, UploadConfig(bucket="site-photos")).upload("u/x.png", b"x", "image/png")

        assert backend.uploads()[0].url.path == "/storage/v1/object/site-photos/u/x.png"

    @pytest.mark.asyncio
    async def test_backend_message_is_kept_verbatim(self):
        backend = Backend(upload_status=409, upload_body={"statusCode": "409", "error": "Duplicate", "message": "The resource already exists"})
        async with _client(backend) as client:
            with pytest.raises(UploadFailure) as exc_info:
                await StorageService(client).upload("u/a.jpg", b"x")

        assert str(exc_info.value) == "The resource already exists"

    @pytest.mark.asyncio
    async def test_upload_attempted_once(self):
        backend = Backend(upload_status=500, upload_body={"message": "Internal error"})
        async with _client(backend) as client:
            with pytest.raises(UploadFailure, match="Internal error"):
                await StorageService(client).upload("u/a.jpg", b"x")

        assert len(backend.uploads()) == 1

    @pytest.mark.asyncio
    async def test_network_error(self):
        backend = Backend(upload_exc=httpx.ConnectError("connection refused"))
        async with _client(backend) as client:
            with pytest.raises(UploadFailure, match="connection refused"):
                await StorageService(client).upload("u/a.jpg", b"x")

    @pytest.mark.asyncio
    async def test_unsignable_upload_fails(self):
        backend = Backend(sign_status=400, sign_body={"message": "Object not found"})
        async with _client(backend) as client:
            with pytest.raises(UploadFailure, match="access URL"):
                await StorageService(client).upload("u/a.jpg", b"x")

    @pytest.mark.asyncio
    async def test_create_signed_url_returns_none_on_error(self):
        backend = Backend(sign_status=400, sign_body={"message": "Object not found"})
        async with _client(backend) as client:
            assert await StorageService(client).create_signed_url("u/a.jpg", 3600) is None

    @pytest.mark.asyncio
    async def test_create_signed_url_absolute(self):
        backend = Backend(sign_body={"signedURL": "https://cdn.test/a.jpg?token=t"})
        async with _client(backend) as client:
            url = await StorageService(client).create_signed_url("u/a.jpg", 60)

        assert url == "https://cdn.test/a.jpg?token=t"


class TestAuthProviders:
    @pytest.mark.asyncio
    async def test_static_provider(self):
        assert (await StaticAuthProvider("user-1").current_user()).id == "user-1"
        assert await StaticAuthProvider(None).current_user() is None

    @pytest.mark.asyncio
    async def test_supabase_provider_caches_user(self):
        backend = Backend()
        async with _client(backend, access_token="token") as client:
            provider = SupabaseAuthProvider(client)
            first = await provider.current_user()
            second = await provider.current_user()

        assert first.id == "user-42"
        assert first.email == "inspector@example.com"
        assert second is first
        assert len(backend.requests) == 1

    @pytest.mark.asyncio
    async def test_supabase_provider_unauthenticated(self):
        def handler(request):
            return httpx.Response(401, json={"msg": "invalid JWT"})

        async with HTTPAPIClient(BASE_URL, "k", transport=httpx.MockTransport(handler)) as client:
            assert await SupabaseAuthProvider(client).current_user() is None
