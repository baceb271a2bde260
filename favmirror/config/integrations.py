from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
    model_validator,
)

from ._validators import _bounded_int, _ensure_credential, _normalize_url, _optional_text

if TYPE_CHECKING:
    from typing import Self

DEFAULT_GELBOORU_URL = "https://gelbooru.com/index.php"
BACKEND_PORT = 6666

_INT_LIMITS: dict[str, tuple[int, int]] = {
    "max_concurrent_requests": (1, 20),
    "min_request_interval_ms": (0, 60_000),
    "max_attempts": (1, 10),
    "request_timeout_sec": (1, 600),
    "upload_concurrency": (1, 50),
    "tag_concurrency": (1, 50),
    "download_concurrency": (1, 20),
}


def _validate_limited_int(cls: type[BaseModel], value: Any, info: ValidationInfo) -> int:
    minimum, maximum = _INT_LIMITS[info.field_name]
    return _bounded_int(
        value,
        name=info.field_name.replace("_", " "),
        default=int(cls.model_fields[info.field_name].default),
        minimum=minimum,
        maximum=maximum,
    )


class GelbooruConfig(BaseModel):
    """Source account, listing owner and request pacing."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    api_key: str = Field(validation_alias="GELBOORU_API_KEY")
    user_id: str = Field(validation_alias="GELBOORU_USER_ID")
    favourites_owner_id: str | None = Field(default=None, validation_alias="FAVOURITES_OWNER_ID")
    username: str | None = Field(default=None, validation_alias="GELBOORU_USERNAME")
    password: str | None = Field(default=None, validation_alias="GELBOORU_PASSWORD")
    base_url: str = Field(default=DEFAULT_GELBOORU_URL, validation_alias="GELBOORU_BASE_URL")
    max_concurrent_requests: int = Field(
        default=5, validation_alias="GELBOORU_MAX_CONCURRENT_REQUESTS"
    )
    min_request_interval_ms: int = Field(
        default=100, validation_alias="GELBOORU_MIN_REQUEST_INTERVAL_MS"
    )
    max_attempts: int = Field(default=3, validation_alias="GELBOORU_MAX_ATTEMPTS")
    request_timeout_sec: int = Field(default=30, validation_alias="GELBOORU_REQUEST_TIMEOUT_SEC")
    download_concurrency: int = Field(default=5, validation_alias="GELBOORU_DOWNLOAD_CONCURRENCY")

    @field_validator("api_key", mode="before")
    @classmethod
    def _validate_api_key(cls, value: Any) -> str:
        return _ensure_credential(value, name="Gelbooru API key")

    @field_validator("user_id", mode="before")
    @classmethod
    def _validate_user_id(cls, value: Any) -> str:
        return _ensure_credential(value, name="Gelbooru user id")

    @field_validator("favourites_owner_id", "username", "password", mode="before")
    @classmethod
    def _strip_optional(cls, value: Any) -> str | None:
        return _optional_text(value)

    @field_validator("base_url", mode="before")
    @classmethod
    def _validate_base_url(cls, value: Any) -> str:
        return _normalize_url(value, default=DEFAULT_GELBOORU_URL) or DEFAULT_GELBOORU_URL

    @field_validator(
        "max_concurrent_requests",
        "min_request_interval_ms",
        "max_attempts",
        "request_timeout_sec",
        "download_concurrency",
        mode="before",
    )
    @classmethod
    def _validate_ints(cls, value: Any, info: ValidationInfo) -> int:
        return _validate_limited_int(cls, value, info)

    @property
    def owner_id(self) -> str:
        """Account whose favorites are mirrored."""
        return self.favourites_owner_id or self.user_id

    @property
    def min_request_interval(self) -> float:
        return self.min_request_interval_ms / 1000.0


class SzurubooruConfig(BaseModel):
    """Destination instance and the account the mirror posts as."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    url: str | None = Field(default=None, validation_alias="SZURUBOORU_URL")
    backend_host: str | None = Field(default=None, validation_alias="BACKEND_HOST")
    user_name: str = Field(
        validation_alias=AliasChoices("SZURUBOORU_USER_NAME", "SZURUBOORU_USERNAME")
    )
    user_password: str = Field(
        validation_alias=AliasChoices("SZURUBOORU_USER_PASSWORD", "SZURUBOORU_PASSWORD")
    )
    upload_concurrency: int = Field(default=10, validation_alias="SZURUBOORU_UPLOAD_CONCURRENCY")
    tag_concurrency: int = Field(default=15, validation_alias="SZURUBOORU_TAG_CONCURRENCY")

    @field_validator("url", mode="before")
    @classmethod
    def _validate_url(cls, value: Any) -> str | None:
        return _normalize_url(value)

    @field_validator("backend_host", mode="before")
    @classmethod
    def _validate_backend_host(cls, value: Any) -> str | None:
        return _optional_text(value)

    @field_validator("user_name", mode="before")
    @classmethod
    def _validate_user_name(cls, value: Any) -> str:
        return _ensure_credential(value, name="Szurubooru user name")

    @field_validator("user_password", mode="before")
    @classmethod
    def _validate_password(cls, value: Any) -> str:
        text = str(value or "")
        if not text.strip():
            msg = "Szurubooru user password is required"
            raise ValueError(msg)
        return text

    @field_validator("upload_concurrency", "tag_concurrency", mode="before")
    @classmethod
    def _validate_ints(cls, value: Any, info: ValidationInfo) -> int:
        return _validate_limited_int(cls, value, info)

    @model_validator(mode="after")
    def _require_location(self) -> Self:
        if not self.url and not self.backend_host:
            msg = "Either SZURUBOORU_URL or BACKEND_HOST must be set"
            raise ValueError(msg)
        return self

    @property
    def api_url(self) -> str:
        """API root; ``BACKEND_HOST`` expands to ``http://<host>:6666``."""
        if self.url:
            return self.url
        return f"http://{self.backend_host}:{BACKEND_PORT}"
