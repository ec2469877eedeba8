"""
library/models.py -- Domain dataclasses for tag-based content gating.

Pure data containers. Gating rules live in library/gate.py and persistence
in library/store.py; neither logic belongs here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class Tag:
    """A label attachable to books.

    requires_permission names the permission a user must hold to see a book
    carrying this tag. None means the tag does not gate anything.

    id is None before the record is written to the database.
    """

    name: str
    category: str  # "content-rating" | "genre" | "format" | "collection" | "status" | "language"
    description: Optional[str] = None
    color: Optional[str] = None
    requires_permission: Optional[str] = None
    id: Optional[int] = None
    created_at: str = ""  # ISO 8601, set by store on insert

    @property
    def is_gating(self) -> bool:
        return self.requires_permission is not None


@dataclass
class TagAssignment:
    """One tag on one book.

    auto_applied distinguishes tags applied by metadata scanning from tags a
    librarian applied by hand (applied_by holds that user's ID).
    """

    resource_id: int
    tag_id: int
    applied_by: Optional[int] = None
    auto_applied: bool = False
    applied_at: str = ""


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    denied_reason: Optional[str] = None


@dataclass
class ContentFilter:
    """Viewer-chosen narrowing applied after permission gating.

    include_* lists require at least one match when non-empty; exclude_*
    lists reject any match.
    """

    include_categories: list[str] = field(default_factory=list)
    exclude_categories: list[str] = field(default_factory=list)
    include_tags: list[str] = field(default_factory=list)
    exclude_tags: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ContentPreferences:
    can_access_nsfw: bool
    can_access_restricted: bool
    accessible_genres: list[str]
