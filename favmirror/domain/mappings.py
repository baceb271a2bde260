"""Fixed vocabularies shared by the source and destination sides."""

from __future__ import annotations

from typing import NamedTuple

GENERAL_CATEGORY = "general"

# Source tag type code -> destination tag category.
TAG_TYPE_CATEGORIES: dict[int, str] = {
    1: "artist",
    3: "copyright",
    4: "character",
    5: "meta",
}

# Source rating -> destination safety level.
RATING_SAFETY: dict[str, str] = {
    "safe": "safe",
    "questionable": "sketchy",
    "explicit": "unsafe",
}
DEFAULT_SAFETY = "safe"


class TagCategory(NamedTuple):
    name: str
    color: str
    order: int


DEFAULT_TAG_CATEGORIES: tuple[TagCategory, ...] = (
    TagCategory("artist", "#aa0000", 1),
    TagCategory("copyright", "#aa00aa", 2),
    TagCategory("character", "#00aa00", 3),
    TagCategory("meta", "#ff8800", 4),
    TagCategory(GENERAL_CATEGORY, "#808080", 5),
)


def tag_category(type_code: int | None) -> str:
    """Map a source tag type code to a category name ("general" when unknown)."""
    if type_code is None:
        return GENERAL_CATEGORY
    return TAG_TYPE_CATEGORIES.get(type_code, GENERAL_CATEGORY)


def rating_to_safety(rating: str | None) -> str:
    """Map a source rating to a destination safety level ("safe" when unknown)."""
    if not rating:
        return DEFAULT_SAFETY
    return RATING_SAFETY.get(rating.strip().lower(), DEFAULT_SAFETY)
