from __future__ import annotations

from typing import Any


def _ensure_credential(value: Any, *, name: str) -> str:
    """Reject empty, whitespace-only or multi-token credentials."""
    text = str(value or "").strip()
    if not text:
        msg = f"{name} is required"
        raise ValueError(msg)
    if len(text) > 500:
        msg = f"{name} appears to be too long"
        raise ValueError(msg)
    if any(char in text for char in [" ", "\n", "\t"]):
        msg = f"{name} contains invalid characters"
        raise ValueError(msg)
    return text


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _normalize_url(value: Any, *, default: str | None = None) -> str | None:
    text = str(value or "").strip()
    if not text:
        return default
    if not text.startswith(("http://", "https://")):
        msg = f"URL must start with http:// or https://: {text}"
        raise ValueError(msg)
    return text.rstrip("/")


def _bounded_int(value: Any, *, name: str, default: int, minimum: int, maximum: int) -> int:
    if value in (None, ""):
        return default
    try:
        parsed = int(str(value).strip())
    except ValueError as exc:
        msg = f"{name} must be a valid integer"
        raise ValueError(msg) from exc
    if parsed < minimum:
        msg = f"{name} must be at least {minimum}"
        raise ValueError(msg)
    if parsed > maximum:
        msg = f"{name} must be at most {maximum}"
        raise ValueError(msg)
    return parsed
