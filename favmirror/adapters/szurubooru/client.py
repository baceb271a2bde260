"""Szurubooru REST client."""

from __future__ import annotations

import base64
import logging
from typing import TYPE_CHECKING, Any, TypeVar
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ValidationError

from favmirror.adapters.szurubooru.models import SzurubooruErrorBody, SzurubooruPost, SzurubooruTag
from favmirror.core.logging_utils import truncate_log_content
from favmirror.domain.exceptions import DestinationError

if TYPE_CHECKING:
    from pathlib import Path
    from typing import Self

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 120.0  # uploads of large files

ModelT = TypeVar("ModelT", bound=BaseModel)


def token_auth_header(username: str, token: str) -> str:
    """``Authorization`` value for the Token scheme: ``Token base64(user:token)``."""
    encoded = base64.b64encode(f"{username}:{token}".encode()).decode("ascii")
    return f"Token {encoded}"


def raise_for_destination_error(response: httpx.Response, operation: str) -> None:
    """Raise ``DestinationError`` for a non-2xx response, keeping the error name."""
    if response.is_success:
        return
    body_text = response.text
    error_name: str | None = None
    description: str | None = None
    try:
        body = SzurubooruErrorBody.model_validate_json(body_text)
        error_name = body.name
        description = body.description or body.title
    except ValidationError:
        description = truncate_log_content(body_text, 300)
    raise DestinationError(
        f"{operation} failed: HTTP {response.status_code} {error_name or ''}".strip(),
        status_code=response.status_code,
        error_name=error_name,
        description=description,
    )


class SzurubooruClient:
    """Async client for the Szurubooru API, authenticated with a user token."""

    def __init__(
        self,
        api_url: str,
        username: str,
        token: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.username = username
        self._token = token
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> Self:
        self._client = httpx.AsyncClient(
            base_url=self.api_url,
            headers={
                "Authorization": token_auth_header(self.username, self._token),
                "Accept": "application/json",
            },
            timeout=self.timeout,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args: object) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("Client not initialized. Use async context manager.")
        return self._client

    async def _send(self, method: str, path: str, operation: str, **kwargs: Any) -> Any:
        response = await self.client.request(method, path, **kwargs)
        raise_for_destination_error(response, operation)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise DestinationError(
                f"{operation} returned a body that is not JSON",
                status_code=response.status_code,
                description=truncate_log_content(response.text, 300),
            ) from exc

    async def create_tag_category(self, name: str, color: str, order: int) -> dict[str, Any]:
        return await self._send(
            "POST",
            "/tag-categories",
            "create_tag_category",
            json={"name": name, "color": color, "order": order},
        )

    async def create_tag(self, name: str, category: str) -> SzurubooruTag:
        data = await self._send(
            "POST", "/tags", "create_tag", json={"names": [name], "category": category}
        )
        return _parse(SzurubooruTag, data, "create_tag")

    async def get_tag(self, name: str) -> SzurubooruTag:
        data = await self._send("GET", _tag_path(name), "get_tag")
        return _parse(SzurubooruTag, data, "get_tag")

    async def update_tag(
        self,
        name: str,
        *,
        version: int,
        category: str,
        names: list[str] | None = None,
    ) -> SzurubooruTag:
        data = await self._send(
            "PUT",
            _tag_path(name),
            "update_tag",
            json={"version": version, "category": category, "names": names or [name]},
        )
        return _parse(SzurubooruTag, data, "update_tag")

    async def create_post(
        self,
        file_path: Path,
        *,
        safety: str,
        source: str,
        tags: list[str],
    ) -> SzurubooruPost:
        """Upload a file as a new post; metadata travels in the query string."""
        params = {"safety": safety, "source": source, "tags": ",".join(tags)}
        with file_path.open("rb") as handle:
            data = await self._send(
                "POST",
                "/posts",
                "create_post",
                params=params,
                files={"content": (file_path.name, handle, "application/octet-stream")},
            )
        post = _parse(SzurubooruPost, data, "create_post")
        logger.debug("szurubooru_post_created", extra={"post_id": post.id, "file": file_path.name})
        return post

    async def get_post(self, post_id: int) -> SzurubooruPost:
        data = await self._send("GET", f"/post/{post_id}", "get_post")
        return _parse(SzurubooruPost, data, "get_post")

    async def update_post(
        self,
        post_id: int,
        *,
        version: int,
        safety: str,
        source: str,
        tags: list[str],
    ) -> SzurubooruPost:
        data = await self._send(
            "PUT",
            f"/post/{post_id}",
            "update_post",
            json={"version": version, "source": source, "tags": tags, "safety": safety},
        )
        return _parse(SzurubooruPost, data, "update_post")


def _tag_path(name: str) -> str:
    return f"/tag/{quote(name, safe='')}"


def _parse(model: type[ModelT], data: Any, operation: str) -> ModelT:
    """Validate a 2xx body; a malformed one fails like any other bad answer."""
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise DestinationError(
            f"{operation} returned an unexpected body",
            status_code=200,
            description=truncate_log_content(str(exc), 300),
        ) from exc
