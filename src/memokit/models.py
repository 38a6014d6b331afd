"""Memo record, input and stats types shared by every engine."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal, Union

from memokit.errors import ValidationRejected

Category = Literal["bug", "feature", "idea", "note", "todo"]
Priority = Literal["low", "medium", "high"]
MemoId = Union[int, str]

CATEGORIES: tuple[str, ...] = ("bug", "feature", "idea", "note", "todo")
PRIORITIES: tuple[str, ...] = ("low", "medium", "high")

MUTABLE_FIELDS = ("title", "content", "category", "priority", "tags")


def format_timestamp(value: datetime) -> str:
    """Render a datetime as a fixed-width UTC ISO-8601 string."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def normalize_timestamp(value: Any) -> str:
    """Accept a datetime or a stored string and return the textual form."""
    if isinstance(value, datetime):
        return format_timestamp(value)
    return str(value)


def normalize_tags(value: Any) -> list[str]:
    """Tags are never absent at rest; None reads back as an empty list."""
    if value is None:
        return []
    return [str(tag) for tag in value]


def validate_category(category: Any) -> str:
    if category not in CATEGORIES:
        raise ValidationRejected(
            f"Invalid category {category!r}, expected one of {', '.join(CATEGORIES)}"
        )
    return category


def validate_priority(priority: Any) -> str:
    if priority not in PRIORITIES:
        raise ValidationRejected(
            f"Invalid priority {priority!r}, expected one of {', '.join(PRIORITIES)}"
        )
    return priority


@dataclass
class MemoInput:
    """The five caller-supplied fields of a memo.

    Updates are full replacements, so every field must be resent.
    """

    title: str
    content: str = ""
    category: Category = "note"
    priority: Priority = "medium"
    tags: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not isinstance(self.title, str):
            raise ValidationRejected("Memo title is required")
        if not isinstance(self.content, str):
            raise ValidationRejected("Memo content must be text")
        validate_category(self.category)
        validate_priority(self.priority)
        if self.tags is None:
            self.tags = []
        if not isinstance(self.tags, (list, tuple)) or not all(
            isinstance(t, str) for t in self.tags
        ):
            raise ValidationRejected("Memo tags must be a sequence of strings")
        self.tags = list(self.tags)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> MemoInput:
        """Build from a loose record, ignoring ids and timestamps."""
        if not isinstance(data, Mapping):
            raise ValidationRejected(f"Memo record must be a mapping, got {type(data).__name__}")
        if data.get("title") is None:
            raise ValidationRejected("Memo title is required")
        content = data.get("content")
        return cls(
            title=data["title"],
            content="" if content is None else content,
            category=data.get("category", "note"),
            priority=data.get("priority", "medium"),
            tags=data.get("tags"),
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "content": self.content,
            "category": self.category,
            "priority": self.priority,
            "tags": list(self.tags),
        }


def coerce_input(memo_input: MemoInput | Mapping[str, Any]) -> MemoInput:
    if isinstance(memo_input, MemoInput):
        # Re-run the checks: dataclass fields may have been reassigned.
        return MemoInput(**memo_input.as_dict())
    return MemoInput.from_dict(memo_input)


@dataclass
class Memo:
    """A persisted memo. ``id`` is opaque: int for local engines, str for cloud."""

    id: MemoId
    title: str
    content: str
    category: Category
    priority: Priority
    tags: list[str]
    created_at: str
    updated_at: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "category": self.category,
            "priority": self.priority,
            "tags": list(self.tags),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass
class MemoStats:
    """Fixed-shape aggregate over all memos."""

    total: int = 0
    bugs: int = 0
    features: int = 0
    ideas: int = 0
    notes: int = 0
    todos: int = 0
    high_priority: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "bugs": self.bugs,
            "features": self.features,
            "ideas": self.ideas,
            "notes": self.notes,
            "todos": self.todos,
            "high_priority": self.high_priority,
        }

    def category_count(self, category: str) -> int:
        return getattr(self, STATS_FIELDS[validate_category(category)])


# category -> MemoStats attribute
STATS_FIELDS = {
    "bug": "bugs",
    "feature": "features",
    "idea": "ideas",
    "note": "notes",
    "todo": "todos",
}
