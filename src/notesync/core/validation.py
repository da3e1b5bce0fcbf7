"""Input validation for notesync.

This module provides validation functions for all user inputs.
All validators raise ValidationError with descriptive messages.
"""

from __future__ import annotations

import uuid
from typing import Iterable, List, Optional, Tuple

__all__ = [
    "ValidationError",
    "validate_title",
    "validate_tag",
    "normalize_tags",
    "validate_local_id",
    "validate_server_id",
    "MAX_TITLE_LENGTH",
    "MAX_TAG_LENGTH",
    "MAX_TAGS_PER_NOTE",
]

MAX_TITLE_LENGTH = 500
MAX_TAG_LENGTH = 100
MAX_TAGS_PER_NOTE = 50
MAX_SERVER_ID_LENGTH = 128


class ValidationError(ValueError):
    """Validation error with field and message attributes."""

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"

    def __repr__(self) -> str:
        return f"ValidationError(field='{self.field}', message='{self.message}')"


def validate_title(title: str) -> str:
    """Validate a note title and return it trimmed.

    Raises:
        ValidationError: If the title is not a string, trims to empty or is too long
    """
    if not isinstance(title, str):
        raise ValidationError("title", f"must be a string, got {type(title).__name__}")
    trimmed = title.strip()
    if not trimmed:
        raise ValidationError("title", "cannot be empty")
    if len(trimmed) > MAX_TITLE_LENGTH:
        raise ValidationError(
            "title", f"cannot exceed {MAX_TITLE_LENGTH} characters"
        )
    return trimmed


def validate_tag(tag: str) -> str:
    """Normalise a single tag. Returns an empty string for blank input."""
    if not isinstance(tag, str):
        raise ValidationError("tags", f"must be strings, got {type(tag).__name__}")
    normalized = tag.strip().lower()
    if len(normalized) > MAX_TAG_LENGTH:
        raise ValidationError(
            "tags", f"tag cannot exceed {MAX_TAG_LENGTH} characters"
        )
    return normalized


def normalize_tags(tags: Optional[Iterable[str]]) -> Tuple[str, ...]:
    """Trim, lowercase and dedupe tags, dropping empties.

    First-occurrence order is kept for display.

    Example:
        >>> normalize_tags(["Work", "work", " Urgent "])
        ('work', 'urgent')
    """
    if tags is None:
        return ()
    if isinstance(tags, str):
        raise ValidationError("tags", "must be a list of strings")

    result: List[str] = []
    for tag in tags:
        normalized = validate_tag(tag)
        if normalized and normalized not in result:
            result.append(normalized)

    if len(result) > MAX_TAGS_PER_NOTE:
        raise ValidationError(
            "tags", f"cannot have more than {MAX_TAGS_PER_NOTE} tags"
        )
    return tuple(result)


def validate_local_id(value: str, field_name: str = "local_id") -> str:
    """Validate a local note ID and return it as 32 lowercase hex characters."""
    if not isinstance(value, str):
        raise ValidationError(
            field_name, f"must be a string, got {type(value).__name__}"
        )
    try:
        return uuid.UUID(hex=value.replace("-", "")).hex
    except ValueError:
        raise ValidationError(field_name, "must be a 32 character hex UUID") from None


def validate_server_id(value: str, field_name: str = "server_id") -> str:
    """Validate an opaque server-assigned ID."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(field_name, "must be a non-empty string")
    if len(value) > MAX_SERVER_ID_LENGTH:
        raise ValidationError(
            field_name, f"cannot exceed {MAX_SERVER_ID_LENGTH} characters"
        )
    return value.strip()
