"""Tests for the Szurubooru API client and auth bootstrap."""

from __future__ import annotations

import base64
import json
import tempfile
import unittest
from pathlib import Path

import httpx
import pytest

from favmirror.adapters.szurubooru.auth import TOKEN_NOTE, SzurubooruAuth
from favmirror.adapters.szurubooru.client import (
    SzurubooruClient,
    raise_for_destination_error,
    token_auth_header,
)
from favmirror.domain.exceptions import DestinationAuthError, DestinationError

API_URL = "http://szuru.test/api"


def _error(status: int, name: str, description: str = "") -> httpx.Response:
    return httpx.Response(
        status, json={"name": name, "title": name, "description": description}
    )


class TestErrorParsing(unittest.TestCase):
    def test_token_header(self):
        header = token_auth_header("mirror", "tok-1")
        scheme, encoded = header.split(" ")
        assert scheme == "Token"
        assert base64.b64decode(encoded).decode() == "mirror:tok-1"

    def test_error_body_is_parsed(self):
        response = _error(400, "TagAlreadyExistsError", "Tag already exists")

        with self.assertRaises(DestinationError) as ctx:
            raise_for_destination_error(response, "create_tag")

        assert ctx.exception.status_code == 400
        assert ctx.exception.error_name == "TagAlreadyExistsError"
        assert ctx.exception.already_exists
        assert ctx.exception.description == "Tag already exists"

    def test_non_json_error_body(self):
        with self.assertRaises(DestinationError) as ctx:
            raise_for_destination_error(httpx.Response(502, text="Bad gateway"), "get_post")

        assert ctx.exception.error_name is None
        assert not ctx.exception.already_exists

    def test_success_does_not_raise(self):
        raise_for_destination_error(httpx.Response(200, json={}), "get_post")


@pytest.mark.asyncio
async def test_client_sends_token_auth_and_json_accept():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"names": ["cat"], "category": "general", "version": 3})

    async with SzurubooruClient(
        API_URL, "mirror", "tok", transport=httpx.MockTransport(handler)
    ) as client:
        tag = await client.get_tag("cat/dog")

    assert tag.version == 3
    request = seen[0]
    assert request.headers["Authorization"] == token_auth_header("mirror", "tok")
    assert request.headers["Accept"] == "application/json"
    assert request.url.raw_path == b"/api/tag/cat%2Fdog"


@pytest.mark.asyncio
async def test_create_post_uploads_multipart_with_query_metadata():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"id": 17, "version": 1, "safety": "sketchy"})

    with tempfile.TemporaryDirectory() as tmp:
        path = Path(tmp) / "10.jpg"
        path.write_bytes(b"jpeg-bytes")
        async with SzurubooruClient(
            API_URL, "mirror", "tok", transport=httpx.MockTransport(handler)
        ) as client:
            post = await client.create_post(
                path, safety="sketchy", source="https://src/10", tags=["a", "b"]
            )

    assert post.id == 17
    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/api/posts"
    assert request.url.params["safety"] == "sketchy"
    assert request.url.params["tags"] == "a,b"
    assert request.url.params["source"] == "https://src/10"
    assert request.headers["Content-Type"].startswith("multipart/form-data")
    body = request.read()
    assert b'name="content"' in body
    assert b"jpeg-bytes" in body


@pytest.mark.asyncio
async def test_update_post_sends_version():
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"id": 5, "version": 8})

    async with SzurubooruClient(
        API_URL, "mirror", "tok", transport=httpx.MockTransport(handler)
    ) as client:
        await client.update_post(5, version=7, safety="safe", source="s", tags=["x"])

    assert seen == [{"version": 7, "source": "s", "tags": ["x"], "safety": "safe"}]


@pytest.mark.asyncio
async def test_success_without_post_id_raises_destination_error():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"unexpected": True}))

    async with SzurubooruClient(API_URL, "mirror", "tok", transport=transport) as client:
        with pytest.raises(DestinationError) as exc_info:
            await client.get_post(3)

    assert "get_post" in str(exc_info.value)
    assert not exc_info.value.already_exists


@pytest.mark.asyncio
async def test_success_with_non_json_body_raises_destination_error():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>proxy</html>"))

    async with SzurubooruClient(API_URL, "mirror", "tok", transport=transport) as client:
        with pytest.raises(DestinationError) as exc_info:
            await client.create_tag("cat", "general")

    assert exc_info.value.status_code == 200
    assert "proxy" in (exc_info.value.description or "")


@pytest.mark.asyncio
async def test_client_outside_context_raises():
    client = SzurubooruClient(API_URL, "mirror", "tok")
    with pytest.raises(RuntimeError):
        await client.get_post(1)


class TestSzurubooruAuth(unittest.IsolatedAsyncioTestCase):
    async def test_first_user_created(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/users"
            assert json.loads(request.content) == {"name": "mirror", "password": "pw"}
            return httpx.Response(200, json={"name": "mirror"})

        auth = SzurubooruAuth(API_URL, transport=httpx.MockTransport(handler))
        assert await auth.ensure_first_user("mirror", "pw") is True

    async def test_existing_user_is_success(self):
        auth = SzurubooruAuth(
            API_URL,
            transport=httpx.MockTransport(lambda r: _error(400, "UserAlreadyExistsError")),
        )
        assert await auth.ensure_first_user("mirror", "pw") is False

    async def test_user_creation_failure_raises_auth_error(self):
        auth = SzurubooruAuth(
            API_URL,
            transport=httpx.MockTransport(lambda r: _error(403, "AuthError")),
        )
        with self.assertRaises(DestinationAuthError):
            await auth.ensure_first_user("mirror", "pw")

    async def test_unreachable_destination_raises_auth_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        auth = SzurubooruAuth(API_URL, transport=httpx.MockTransport(handler))
        with self.assertRaises(DestinationAuthError):
            await auth.ensure_first_user("mirror", "pw")

    async def test_existing_enabled_token_is_reused(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={
                    "results": [
                        {"token": "old", "enabled": False},
                        {"token": "live", "enabled": True},
                    ]
                },
            )

        auth = SzurubooruAuth(API_URL, transport=httpx.MockTransport(handler))
        token = await auth.get_or_create_token("mirror", "pw")

        assert token == "live"
        assert len(seen) == 1
        assert seen[0].headers["Authorization"].startswith("Basic ")

    async def test_token_created_when_listing_missing(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if request.method == "GET":
                return _error(404, "UserTokenNotFoundError")
            return httpx.Response(200, json={"token": "fresh", "enabled": True})

        auth = SzurubooruAuth(API_URL, transport=httpx.MockTransport(handler))
        token = await auth.get_or_create_token("mirror", "pw")

        assert token == "fresh"
        assert seen[1].url.path == "/api/user-token/mirror"
        assert json.loads(seen[1].content) == {"enabled": True, "note": TOKEN_NOTE}

    async def test_token_created_when_none_enabled(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                return httpx.Response(200, json={"results": [{"token": "x", "enabled": False}]})
            return httpx.Response(200, json={"token": "new", "enabled": True})

        auth = SzurubooruAuth(API_URL, transport=httpx.MockTransport(handler))
        assert await auth.get_or_create_token("mirror", "pw") == "new"

    async def test_token_failure_raises_auth_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return _error(401, "AuthError")

        auth = SzurubooruAuth(API_URL, transport=httpx.MockTransport(handler))
        with self.assertRaises(DestinationAuthError):
            await auth.get_or_create_token("mirror", "pw")

    async def test_malformed_token_listing_raises_auth_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="not json")

        auth = SzurubooruAuth(API_URL, transport=httpx.MockTransport(handler))
        with self.assertRaises(DestinationAuthError):
            await auth.get_or_create_token("mirror", "pw")


if __name__ == "__main__":
    unittest.main()
