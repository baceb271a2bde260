from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from ._validators import _bounded_int, _optional_text
from .integrations import GelbooruConfig, SzurubooruConfig

logger = logging.getLogger(__name__)


class ScheduleConfig(BaseModel):
    """Tick cadence: incremental every ``short`` seconds, full every ``full`` seconds."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    short_sync_timeout: int = Field(default=60, validation_alias="SHORT_SYNC_TIMEOUT")
    full_sync_timeout: int = Field(default=10800, validation_alias="FULL_SYNC_TIMEOUT")

    @field_validator("short_sync_timeout", "full_sync_timeout", mode="before")
    @classmethod
    def _validate_interval(cls, value: Any, info: ValidationInfo) -> int:
        return _bounded_int(
            value,
            name=info.field_name.replace("_", " "),
            default=int(cls.model_fields[info.field_name].default),
            minimum=1,
            maximum=30 * 24 * 3600,
        )


class RuntimeConfig(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    files_folder_path: str = Field(default="/data", validation_alias="FILES_FOLDER_PATH")
    db_filename: str = Field(default="favmirror.db", validation_alias="DB_FILENAME")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_file: str | None = Field(default=None, validation_alias="LOG_FILE")
    log_use_loguru: bool = Field(
        default=True, validation_alias=AliasChoices("LOG_USE_LOGURU", "USE_LOGURU")
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def _validate_log_level(cls, value: Any) -> str:
        log_level = str(value or "INFO").upper()
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if log_level not in valid_levels:
            msg = f"Invalid log level: {value}. Must be one of {valid_levels}"
            raise ValueError(msg)
        return log_level

    @field_validator("files_folder_path", mode="before")
    @classmethod
    def _validate_files_folder(cls, value: Any) -> str:
        return _optional_text(value) or "/data"

    @field_validator("db_filename", mode="before")
    @classmethod
    def _validate_db_filename(cls, value: Any) -> str:
        name = _optional_text(value) or "favmirror.db"
        if "/" in name or "\\" in name or name in {".", ".."}:
            msg = "DB_FILENAME must be a bare file name"
            raise ValueError(msg)
        return name

    @field_validator("log_file", mode="before")
    @classmethod
    def _validate_log_file(cls, value: Any) -> str | None:
        return _optional_text(value)

    @property
    def files_dir(self) -> Path:
        return Path(self.files_folder_path)

    @property
    def db_path(self) -> Path:
        """One store file per output folder."""
        return self.files_dir / self.db_filename


@dataclass(frozen=True)
class AppConfig:
    gelbooru: GelbooruConfig
    szurubooru: SzurubooruConfig
    schedule: ScheduleConfig
    runtime: RuntimeConfig


class Settings(BaseSettings):
    """Application settings loaded from environment variables and ``.env``.

    Nested models are populated by matching ``validation_alias`` on each field.
    """

    model_config = SettingsConfigDict(
        extra="ignore",
        populate_by_name=True,
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )

    gelbooru: GelbooruConfig
    szurubooru: SzurubooruConfig
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)

    @model_validator(mode="before")
    @classmethod
    def _build_nested_from_env(cls, data: dict[str, Any]) -> dict[str, Any]:
        """Build nested config objects from flat environment variables.

        Constructor arguments take precedence over the process environment.
        """
        if not isinstance(data, dict):
            return data

        result = dict(data)
        merged_source = {**dict(os.environ), **data}

        for field_name, field_info in cls.model_fields.items():
            annotation = field_info.annotation
            if not isinstance(annotation, type) or not issubclass(annotation, BaseModel):
                continue

            explicit = result.get(field_name)
            nested_data: dict[str, Any] = {}
            for nested_field_name, nested_field in annotation.model_fields.items():
                if isinstance(explicit, dict) and (
                    nested_field_name in explicit
                    or cls._resolve_env_value(explicit, nested_field) is not None
                ):
                    continue
                env_value = cls._resolve_env_value(merged_source, nested_field)
                if env_value is not None:
                    nested_data[nested_field_name] = env_value

            if nested_data:
                if field_name in result and isinstance(result[field_name], dict):
                    result[field_name] = {**nested_data, **result[field_name]}
                else:
                    result[field_name] = nested_data

        return result

    @staticmethod
    def _resolve_env_value(data: dict[str, Any], field: Any) -> Any | None:
        """Resolve the first alias of ``field`` present in ``data``."""
        aliases: list[str] = []
        alias = field.validation_alias
        if isinstance(alias, AliasChoices):
            aliases.extend(choice for choice in alias.choices if isinstance(choice, str))
        elif isinstance(alias, str):
            aliases.append(alias)
        if field.alias:
            aliases.append(field.alias)

        for name in aliases:
            if name in data:
                return data[name]
        return None

    def as_app_config(self) -> AppConfig:
        return AppConfig(
            gelbooru=self.gelbooru,
            szurubooru=self.szurubooru,
            schedule=self.schedule,
            runtime=self.runtime,
        )


def load_config(**overrides: Any) -> AppConfig:
    """Load configuration from the environment (and ``.env`` if present).

    Args:
        **overrides: Section dictionaries (``gelbooru={...}``) that take
            precedence over environment values.

    Returns:
        Immutable AppConfig instance with all configuration sections.

    Raises:
        RuntimeError: If configuration validation fails.
    """
    try:
        settings = Settings(**overrides)
    except (ValidationError, ValueError) as exc:
        msg = f"Configuration validation failed: {exc}"
        raise RuntimeError(msg) from exc
    return settings.as_app_config()
