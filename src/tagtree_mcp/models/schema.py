"""Data models for the TagTree MCP server."""

import datetime
import os
import threading
from datetime import timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from tagtree_mcp.colors import DEFAULT_COLOR, is_valid_color

MAX_TAG_NAME_LENGTH = 100


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.datetime.now(timezone.utc)


# Thread-safe counter for uniqueness (seeded from PID for cross-process safety)
_id_lock = threading.Lock()
_last_timestamp = 0
_counter = (os.getpid() * 7) % 1_000_000


def generate_id() -> str:
    """Generate a timestamp-based opaque tag ID with guaranteed uniqueness.

    Returns:
        A string in format "YYYYMMDDTHHMMSSsssssscccccc" where the last six
        digits are a counter for same-microsecond uniqueness.
    """
    global _last_timestamp, _counter

    with _id_lock:
        now = utc_now()
        current_timestamp = int(now.timestamp() * 1_000_000)

        if current_timestamp == _last_timestamp:
            _counter += 1
        else:
            _last_timestamp = current_timestamp
            _counter = (os.getpid() * 7) % 1_000_000

        _counter %= 1_000_000

        date_time = now.strftime("%Y%m%dT%H%M%S")
        return f"{date_time}{now.microsecond:06d}{_counter:06d}"


def normalize_tag_name(name: str) -> str:
    """Key used for case-insensitive name uniqueness."""
    return name.strip().casefold()


def _validate_name(v: str) -> str:
    stripped = v.strip()
    if not stripped:
        raise ValueError("Tag name cannot be empty")
    if len(stripped) > MAX_TAG_NAME_LENGTH:
        raise ValueError(
            f"Tag name exceeds maximum length of {MAX_TAG_NAME_LENGTH} characters"
        )
    return stripped


def _validate_color(v: str) -> str:
    if not is_valid_color(v):
        raise ValueError(f"Unknown color '{v}': use a preset key or a hex value")
    return v


class TagRecord(BaseModel):
    """One persisted tag.

    ``is_parent`` is an explicit flag. It is set by promoting a tag or by
    dropping a child onto it, and is never cleared when the last child
    leaves; it is not derived from the number of children.
    """

    id: str = Field(default_factory=generate_id, description="Opaque unique ID")
    name: str = Field(..., description="Tag name, unique case-insensitively")
    color: str = Field(default=DEFAULT_COLOR, description="Preset key or hex color")
    parent_id: Optional[str] = Field(default=None, description="ID of the parent tag")
    is_parent: bool = Field(default=False, description="Tag accepts children")
    is_pinned: bool = Field(default=False, description="Sorted before siblings")
    is_favorite: bool = Field(default=False, description="Shown in favorites")
    sort_order: int = Field(default=0, description="Persisted display order")

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Strip surrounding whitespace and reject empty names."""
        return _validate_name(v)

    @field_validator("color")
    @classmethod
    def validate_color(cls, v: str) -> str:
        """Accept preset keys and hex strings only."""
        return _validate_color(v)

    @property
    def name_key(self) -> str:
        """Case-insensitive uniqueness key for the name."""
        return normalize_tag_name(self.name)

    def __str__(self) -> str:
        return self.name


class TagCreate(BaseModel):
    """Fields accepted when creating a tag."""

    name: str
    color: str = DEFAULT_COLOR
    parent_id: Optional[str] = None
    is_parent: bool = False
    is_pinned: bool = False
    is_favorite: bool = False

    model_config = {"extra": "forbid"}

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _validate_name(v)

    @field_validator("color")
    @classmethod
    def validate_color(cls, v: str) -> str:
        return _validate_color(v)


class TagUpdate(BaseModel):
    """A partial update; only explicitly set fields are applied."""

    name: Optional[str] = None
    color: Optional[str] = None
    parent_id: Optional[str] = None
    is_parent: Optional[bool] = None
    is_pinned: Optional[bool] = None
    is_favorite: Optional[bool] = None
    sort_order: Optional[int] = None

    model_config = {"extra": "forbid"}

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            raise ValueError("Tag name cannot be cleared")
        return _validate_name(v)

    @field_validator("color")
    @classmethod
    def validate_color(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            raise ValueError("Tag color cannot be cleared")
        return _validate_color(v)

    def changes(self) -> Dict[str, Any]:
        """Return only the fields the caller set (``parent_id=None`` included)."""
        return self.model_dump(exclude_unset=True)


class HierarchyNode(BaseModel):
    """A TagRecord wrapped with its children and depth.

    Derived on every build; never persisted.
    """

    record: TagRecord
    children: List["HierarchyNode"] = Field(default_factory=list)
    level: int = 0

    @property
    def id(self) -> str:
        return self.record.id

    @property
    def name(self) -> str:
        return self.record.name

    @property
    def parent_id(self) -> Optional[str]:
        return self.record.parent_id

    @property
    def is_parent(self) -> bool:
        return self.record.is_parent

    @property
    def is_pinned(self) -> bool:
        return self.record.is_pinned

    @property
    def is_favorite(self) -> bool:
        return self.record.is_favorite

    @property
    def color(self) -> str:
        return self.record.color


class TagAction(str, Enum):
    """What happened to a tag, carried on ``tagsChanged`` events."""

    CREATED = "created"
    UPDATED = "updated"
    RENAMED = "renamed"
    DELETED = "deleted"
    MOVED = "moved"
    REORDERED = "reordered"
    RELOADED = "reloaded"


class DeleteMode(str, Enum):
    """How far a tag deletion reaches."""

    TAG_ONLY = "tag_only"  # Drop the tag record only
    REMOVE_FROM_NOTES = "remove_from_notes"  # Strip from notes, then drop
    WITH_NOTES = "with_notes"  # Delete the tag and every note carrying it


class TagApiResult(BaseModel):
    """Outcome of a by-name tag operation against the backing store."""

    success: bool
    message: str
    note_ids: List[str] = Field(default_factory=list)

    model_config = {"frozen": True}
