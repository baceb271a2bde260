"""Pydantic models for the Szurubooru REST API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class SzurubooruErrorBody(BaseModel):
    """JSON body of a non-2xx answer."""

    name: str | None = None
    title: str | None = None
    description: str | None = None

    model_config = {"extra": "ignore"}


class SzurubooruUserToken(BaseModel):
    token: str | None = None
    enabled: bool = False
    note: str | None = None

    model_config = {"extra": "ignore"}


class SzurubooruUserTokenList(BaseModel):
    results: list[SzurubooruUserToken] = Field(default_factory=list)

    model_config = {"extra": "ignore"}


class SzurubooruTag(BaseModel):
    names: list[str] = Field(default_factory=list)
    category: str | None = None
    version: int | None = None

    model_config = {"extra": "ignore"}


class SzurubooruPost(BaseModel):
    id: int
    version: int | None = None
    safety: str | None = None
    source: str | None = None

    model_config = {"extra": "ignore"}


class SyncResult(BaseModel):
    """Result of one reconciliation pass (tags or items)."""

    phase: str  # 'tags' or 'items'
    items_synced: int = 0
    items_created: int = 0
    items_updated: int = 0
    items_skipped: int = 0
    items_unchanged: int = 0
    items_failed: int = 0
    errors: list[str] = Field(default_factory=list)
    duration_seconds: float = 0.0


class ReconciliationPlan(BaseModel):
    """Items partitioned by what reconciliation would do with them."""

    to_create: list[int] = Field(default_factory=list)
    to_update: list[int] = Field(default_factory=list)
    unchanged: list[int] = Field(default_factory=list)

    @property
    def pending(self) -> int:
        return len(self.to_create) + len(self.to_update)
