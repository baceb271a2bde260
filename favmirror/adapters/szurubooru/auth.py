"""First-user bootstrap and API token retrieval for Szurubooru.

On a fresh instance the first registered user becomes the administrator,
so the mirror registers its configured account before asking for a token.
"""

from __future__ import annotations

import logging
from urllib.parse import quote

import httpx

from favmirror.adapters.szurubooru.client import raise_for_destination_error
from favmirror.adapters.szurubooru.models import SzurubooruUserToken, SzurubooruUserTokenList
from favmirror.domain.exceptions import DestinationAuthError, DestinationError

logger = logging.getLogger(__name__)

TOKEN_NOTE = "Auto-generated token"


class SzurubooruAuth:
    def __init__(
        self,
        api_url: str,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _client(self, auth: httpx.Auth | None = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.api_url,
            headers={"Accept": "application/json"},
            auth=auth,
            timeout=self.timeout,
            transport=self._transport,
        )

    async def ensure_first_user(self, username: str, password: str) -> bool:
        """Register ``username``; an existing user counts as success.

        Returns True when the user was created by this call.

        Raises:
            DestinationAuthError: Any other failure
        """
        async with self._client() as client:
            try:
                response = await client.post("/users", json={"name": username, "password": password})
                raise_for_destination_error(response, "create_user")
            except DestinationError as exc:
                if exc.already_exists:
                    logger.info("szurubooru_user_exists", extra={"user": username})
                    return False
                raise DestinationAuthError(
                    f"Could not create user {username!r}: {exc.message}",
                    details=exc.details,
                ) from exc
            except httpx.HTTPError as exc:
                raise DestinationAuthError(f"Could not reach destination: {exc}") from exc
        logger.info("szurubooru_user_created", extra={"user": username})
        return True

    async def get_or_create_token(self, username: str, password: str) -> str:
        """Return an enabled token for ``username``, creating one if needed.

        Raises:
            DestinationAuthError: Token listing (other than 404) or creation failed
        """
        user_segment = quote(username, safe="")
        async with self._client(httpx.BasicAuth(username, password)) as client:
            try:
                response = await client.get(f"/user-tokens/{user_segment}")
                if response.status_code != 404:
                    raise_for_destination_error(response, "list_user_tokens")
                    tokens = SzurubooruUserTokenList.model_validate(response.json())
                    for entry in tokens.results:
                        if entry.enabled and entry.token:
                            logger.debug("szurubooru_token_reused", extra={"user": username})
                            return entry.token

                response = await client.post(
                    f"/user-token/{user_segment}",
                    json={"enabled": True, "note": TOKEN_NOTE},
                )
                raise_for_destination_error(response, "create_user_token")
                created = SzurubooruUserToken.model_validate(response.json())
            except DestinationError as exc:
                raise DestinationAuthError(
                    f"Could not obtain token for {username!r}: {exc.message}",
                    details=exc.details,
                ) from exc
            except httpx.HTTPError as exc:
                raise DestinationAuthError(f"Could not reach destination: {exc}") from exc
            except ValueError as exc:
                # Covers pydantic ValidationError and undecodable JSON.
                raise DestinationAuthError(
                    f"Unexpected token response for {username!r}: {exc}"
                ) from exc

        if not created.token:
            raise DestinationAuthError(f"Token creation for {username!r} returned no token")
        logger.info("szurubooru_token_created", extra={"user": username})
        return created.token
