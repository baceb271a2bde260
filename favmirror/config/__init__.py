from __future__ import annotations

from .integrations import GelbooruConfig, SzurubooruConfig
from .settings import AppConfig, RuntimeConfig, ScheduleConfig, Settings, load_config

__all__ = [
    "AppConfig",
    "GelbooruConfig",
    "RuntimeConfig",
    "ScheduleConfig",
    "Settings",
    "SzurubooruConfig",
    "load_config",
]
