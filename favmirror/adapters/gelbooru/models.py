"""Pydantic models for the Gelbooru DAPI JSON responses."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator


class GelbooruAttributes(BaseModel):
    """Paging metadata returned under ``@attributes``."""

    limit: int = 0
    offset: int = 0
    count: int = 0

    model_config = {"extra": "ignore"}


class GelbooruPost(BaseModel):
    """One post as returned by ``s=post&q=index``.

    Flags arrive as the string literals ``"true"``/``"false"`` and are kept
    verbatim here; the normalizer converts them.
    """

    id: int
    tags: str | None = None
    rating: str | None = None
    file_url: str | None = None
    width: int = 0
    height: int = 0
    owner: str | None = None
    source: str | None = None
    created_at: str | None = None
    md5: str | None = None
    status: str | None = None
    has_comments: str | None = None
    has_notes: str | None = None

    model_config = {"extra": "ignore"}

    @field_validator("owner", "source", "status", "has_comments", "has_notes", mode="before")
    @classmethod
    def _coerce_to_string(cls, value: object) -> object:
        if value is None or isinstance(value, str):
            return value
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)


class GelbooruPostPage(BaseModel):
    """A page of posts. The API omits ``post`` entirely when it is empty."""

    attributes: GelbooruAttributes = Field(default_factory=GelbooruAttributes, alias="@attributes")
    posts: list[GelbooruPost] = Field(default_factory=list, alias="post")

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @field_validator("posts", mode="before")
    @classmethod
    def _single_post_as_list(cls, value: object) -> object:
        if value is None:
            return []
        if isinstance(value, dict):
            return [value]
        return value


class GelbooruTag(BaseModel):
    """Tag metadata returned by ``s=tag&q=index``."""

    id: int = 0
    name: str
    count: int = 0
    type: int = 0

    model_config = {"extra": "ignore"}


class GelbooruTagPage(BaseModel):
    attributes: GelbooruAttributes = Field(default_factory=GelbooruAttributes, alias="@attributes")
    tags: list[GelbooruTag] = Field(default_factory=list, alias="tag")

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @field_validator("tags", mode="before")
    @classmethod
    def _single_tag_as_list(cls, value: object) -> object:
        if value is None:
            return []
        if isinstance(value, dict):
            return [value]
        return value
