"""
library/store.py -- SQLAlchemy Core persistence for tags and book tag assignments.

Pattern: Repository + Data Mapper, same as auth/store.py.

Schema:
  tags       (id, name UNIQUE, category, description, color,
              requires_permission -> permissions.id ON DELETE RESTRICT, created_at)
  book_tags  (resource_id, tag_id -> tags.id CASCADE, applied_by, auto_applied,
              applied_at)  PK (resource_id, tag_id)

A gating tag references its permission by foreign key, so a tag can never
name a permission that does not exist, and a permission still referenced by
a tag cannot be deleted. Tag objects carry the permission *name*, resolved
by a join, because that is what the permission checks consume.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = TagStore(db_url)
    store.seed_default_tags()
    store.tag_resource(book_id, "NSFW", applied_by=librarian_id)
    tags = store.get_resource_tags(book_id)
    store.close()
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import PurePath
from typing import NamedTuple, Optional

from sqlalchemy import Boolean, Column, ForeignKey, Integer, PrimaryKeyConstraint, String, Table, Text, func, select
from sqlalchemy.engine import Engine

from auth.catalog import PermissionName
from auth.errors import TagNotFoundError, UnknownPermissionError
from auth.permission_store import permissions
from core.config import DEFAULT_DB_URL
from core.database import create_db_engine, insert_ignore, metadata, now_iso
from library.models import Tag, TagAssignment

logger = logging.getLogger("folio.library")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

tags = Table(
    "tags",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(128), nullable=False, unique=True),
    Column("category", String(64), nullable=False, index=True),
    Column("description", Text),
    Column("color", String(16)),
    Column("requires_permission", Integer, ForeignKey("permissions.id", ondelete="RESTRICT")),
    Column("created_at", String(32), nullable=False),
)

book_tags = Table(
    "book_tags",
    metadata,
    Column("resource_id", Integer, nullable=False),
    Column("tag_id", Integer, ForeignKey("tags.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("applied_by", Integer),
    Column("auto_applied", Boolean, nullable=False, server_default="0"),
    Column("applied_at", String(32), nullable=False),
    PrimaryKeyConstraint("resource_id", "tag_id"),
)

# ---------------------------------------------------------------------------
# Default tag set
# ---------------------------------------------------------------------------


class TagSpec(NamedTuple):
    name: str
    category: str
    description: str
    color: str
    requires_permission: Optional[PermissionName] = None


DEFAULT_TAGS: tuple[TagSpec, ...] = (
    # Content rating
    TagSpec("NSFW", "content-rating", "Not Safe For Work content", "#FF4444", PermissionName.CONTENT_NSFW),
    TagSpec("Adult", "content-rating", "Adult content", "#FF6666", PermissionName.CONTENT_NSFW),
    TagSpec("Mature", "content-rating", "Mature content", "#FF9999"),
    TagSpec("Teen", "content-rating", "Teen content", "#FFAA44"),
    TagSpec("All Ages", "content-rating", "Suitable for all ages", "#44AA44"),
    # Genre
    TagSpec("Cooking", "genre", "Cooking and culinary books", "#FFA500"),
    TagSpec("Magic", "genre", "Magic and illusion books", "#9932CC", PermissionName.CONTENT_RESTRICTED),
    TagSpec("Fiction", "genre", "Fiction books", "#4169E1"),
    TagSpec("Non-Fiction", "genre", "Non-fiction books", "#228B22"),
    TagSpec("Biography", "genre", "Biographical books", "#DAA520"),
    TagSpec("History", "genre", "Historical books", "#8B4513"),
    TagSpec("Science", "genre", "Science books", "#00CED1"),
    TagSpec("Technology", "genre", "Technology books", "#FF6347"),
    TagSpec("Self-Help", "genre", "Self-help books", "#32CD32"),
    TagSpec("Romance", "genre", "Romance books", "#FF1493"),
    TagSpec("Mystery", "genre", "Mystery books", "#8B008B"),
    TagSpec("Thriller", "genre", "Thriller books", "#DC143C"),
    TagSpec("Horror", "genre", "Horror books", "#800000"),
    TagSpec("Fantasy", "genre", "Fantasy books", "#9370DB"),
    TagSpec("Sci-Fi", "genre", "Science fiction books", "#4682B4"),
    # Format
    TagSpec("PDF", "format", "PDF format", "#FF6B6B"),
    TagSpec("EPUB", "format", "EPUB format", "#4ECDC4"),
    TagSpec("MOBI", "format", "MOBI format", "#45B7D1"),
    TagSpec("AZW3", "format", "AZW3 format", "#96CEB4"),
    TagSpec("CBR", "format", "Comic Book RAR", "#FFEAA7"),
    TagSpec("CBZ", "format", "Comic Book ZIP", "#DDA0DD"),
    # Collection
    TagSpec("Series", "collection", "Part of a series", "#87CEEB"),
    TagSpec("Standalone", "collection", "Standalone book", "#98FB98"),
    TagSpec("Reference", "collection", "Reference material", "#F0E68C"),
    TagSpec("Textbook", "collection", "Educational textbook", "#FFB6C1"),
    # Status
    TagSpec("New Addition", "status", "Recently added to library", "#00FF7F"),
    TagSpec("Featured", "status", "Featured content", "#FFD700"),
    TagSpec("Popular", "status", "Popular content", "#FF4500"),
    TagSpec("Recommended", "status", "Recommended reading", "#1E90FF"),
    # Language
    TagSpec("English", "language", "English language", "#B0E0E6"),
    TagSpec("Spanish", "language", "Spanish language", "#FFE4B5"),
    TagSpec("French", "language", "French language", "#E6E6FA"),
    TagSpec("German", "language", "German language", "#F5DEB3"),
    TagSpec("Japanese", "language", "Japanese language", "#FFC0CB"),
)

# File extension -> format tag name.
_FORMAT_TAGS: dict[str, str] = {
    ".pdf": "PDF",
    ".epub": "EPUB",
    ".mobi": "MOBI",
    ".azw3": "AZW3",
    ".cbr": "CBR",
    ".cbz": "CBZ",
}


def format_tag_for_path(file_path: str) -> str | None:
    """Return the format tag name for a book file, or None for unknown extensions."""
    return _FORMAT_TAGS.get(PurePath(file_path).suffix.lower())


# Joined select shared by every Tag-returning query.
_TAG_COLUMNS = (
    tags.c.id,
    tags.c.name,
    tags.c.category,
    tags.c.description,
    tags.c.color,
    tags.c.created_at,
    permissions.c.name.label("permission_name"),
)


def _tag_select():
    return select(*_TAG_COLUMNS).select_from(
        tags.outerjoin(permissions, tags.c.requires_permission == permissions.c.id)
    )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class TagStore:
    def __init__(self, db_url: str = DEFAULT_DB_URL) -> None:
        self.engine: Engine = create_db_engine(db_url)

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    def create_tag(
        self,
        name: str,
        category: str,
        description: str | None = None,
        color: str | None = None,
        requires_permission: str | None = None,
    ) -> int:
        """Insert a tag and return its ID.

        Raises:
            UnknownPermissionError: requires_permission names no stored permission.
            sqlalchemy.exc.IntegrityError: a tag with this name exists.
        """
        with self.engine.connect() as conn:
            permission_id = None
            if requires_permission is not None:
                permission_id = conn.execute(
                    select(permissions.c.id).where(permissions.c.name == requires_permission)
                ).scalar()
                if permission_id is None:
                    raise UnknownPermissionError(requires_permission)
            result = conn.execute(
                tags.insert().values(
                    name=name,
                    category=category,
                    description=description,
                    color=color,
                    requires_permission=permission_id,
                    created_at=now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_tag_by_name(self, name: str) -> Tag | None:
        with self.engine.connect() as conn:
            row = conn.execute(_tag_select().where(tags.c.name == name)).fetchone()
        return _row_to_tag(row) if row is not None else None

    def get_tag_by_id(self, tag_id: int) -> Tag | None:
        with self.engine.connect() as conn:
            row = conn.execute(_tag_select().where(tags.c.id == tag_id)).fetchone()
        return _row_to_tag(row) if row is not None else None

    def list_tags(self, category: str | None = None) -> list[Tag]:
        """Return all tags ordered by name, optionally limited to one category."""
        stmt = _tag_select().order_by(tags.c.name)
        if category is not None:
            stmt = stmt.where(tags.c.category == category)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_tag(r) for r in rows]

    def delete_tag(self, name: str) -> bool:
        """Delete a tag and its assignments. Returns False if no such tag."""
        with self.engine.connect() as conn:
            result = conn.execute(tags.delete().where(tags.c.name == name))
            conn.commit()
        return result.rowcount > 0

    def seed_default_tags(self) -> int:
        """Create any DEFAULT_TAGS not yet present. Returns the number created.

        The gating permissions must already exist (PermissionStore.seed_defaults).
        """
        created = 0
        for default in DEFAULT_TAGS:
            if self.get_tag_by_name(default.name) is not None:
                continue
            permission = default.requires_permission.value if default.requires_permission is not None else None
            self.create_tag(default.name, default.category, default.description, default.color, permission)
            created += 1
        if created:
            logger.info("Created %d default tags", created)
        return created

    # ------------------------------------------------------------------
    # Assignments
    # ------------------------------------------------------------------

    def tag_resource(self, resource_id: int, tag_name: str, applied_by: int | None = None) -> None:
        """Attach tag_name to a book. Re-tagging is a no-op.

        Raises TagNotFoundError if tag_name does not exist.
        """
        tag = self.get_tag_by_name(tag_name)
        if tag is None:
            raise TagNotFoundError(tag_name)
        self._insert_assignment(resource_id, tag.id, applied_by=applied_by, auto_applied=False)

    def auto_tag_resource(self, resource_id: int, tag_names: Iterable[str]) -> list[str]:
        """Attach each known tag in tag_names; unknown names are skipped.

        Returns the names that exist (whether or not already attached).
        """
        applied: list[str] = []
        for name in tag_names:
            tag = self.get_tag_by_name(name)
            if tag is None:
                logger.debug("Auto-tag skipped unknown tag %r for book %d", name, resource_id)
                continue
            self._insert_assignment(resource_id, tag.id, applied_by=None, auto_applied=True)
            applied.append(name)
        return applied

    def auto_tag_new_book(self, resource_id: int, file_path: str) -> list[str]:
        """Apply the tags every newly scanned book gets: its format, status and defaults."""
        names = ["New Addition", "English", "Standalone"]
        fmt = format_tag_for_path(file_path)
        if fmt is not None:
            names.insert(0, fmt)
        return self.auto_tag_resource(resource_id, names)

    def untag_resource(self, resource_id: int, tag_name: str) -> bool:
        """Detach tag_name from a book. Returns False if it was not attached.

        Raises TagNotFoundError if tag_name does not exist.
        """
        tag = self.get_tag_by_name(tag_name)
        if tag is None:
            raise TagNotFoundError(tag_name)
        stmt = book_tags.delete().where(book_tags.c.resource_id == resource_id).where(book_tags.c.tag_id == tag.id)
        with self.engine.connect() as conn:
            result = conn.execute(stmt)
            conn.commit()
        return result.rowcount > 0

    def get_resource_tags(self, resource_id: int) -> list[Tag]:
        stmt = (
            _tag_select()
            .join(book_tags, book_tags.c.tag_id == tags.c.id)
            .where(book_tags.c.resource_id == resource_id)
            .order_by(tags.c.name)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_tag(r) for r in rows]

    def get_tags_for_resources(self, resource_ids: Iterable[int]) -> dict[int, list[Tag]]:
        """Batch form of get_resource_tags. Every requested ID is a key, untagged ones map to []."""
        ids = list(dict.fromkeys(resource_ids))
        result: dict[int, list[Tag]] = {rid: [] for rid in ids}
        if not ids:
            return result
        stmt = (
            _tag_select()
            .add_columns(book_tags.c.resource_id)
            .join(book_tags, book_tags.c.tag_id == tags.c.id)
            .where(book_tags.c.resource_id.in_(ids))
            .order_by(book_tags.c.resource_id, tags.c.name)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        for row in rows:
            result[row.resource_id].append(_row_to_tag(row))
        return result

    def get_assignments(self, resource_id: int) -> list[TagAssignment]:
        stmt = book_tags.select().where(book_tags.c.resource_id == resource_id).order_by(book_tags.c.tag_id)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [
            TagAssignment(
                resource_id=r.resource_id,
                tag_id=r.tag_id,
                applied_by=r.applied_by,
                auto_applied=bool(r.auto_applied),
                applied_at=r.applied_at,
            )
            for r in rows
        ]

    def get_resources_with_tag(self, tag_name: str) -> list[int]:
        """IDs of books carrying tag_name, ascending. Unknown tag -> []."""
        stmt = (
            select(book_tags.c.resource_id)
            .join(tags, tags.c.id == book_tags.c.tag_id)
            .where(tags.c.name == tag_name)
            .order_by(book_tags.c.resource_id)
        )
        with self.engine.connect() as conn:
            return list(conn.execute(stmt).scalars())

    def count_resources_for_tag(self, tag_name: str) -> int:
        stmt = (
            select(func.count())
            .select_from(book_tags.join(tags, tags.c.id == book_tags.c.tag_id))
            .where(tags.c.name == tag_name)
        )
        with self.engine.connect() as conn:
            return conn.execute(stmt).scalar() or 0

    def _insert_assignment(self, resource_id: int, tag_id: int, applied_by: int | None, auto_applied: bool) -> None:
        stmt = insert_ignore(self.engine, book_tags).values(
            resource_id=resource_id,
            tag_id=tag_id,
            applied_by=applied_by,
            auto_applied=auto_applied,
            applied_at=now_iso(),
        )
        with self.engine.connect() as conn:
            conn.execute(stmt)
            conn.commit()

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _row_to_tag(row) -> Tag:
    return Tag(
        id=row.id,
        name=row.name,
        category=row.category,
        description=row.description,
        color=row.color,
        requires_permission=row.permission_name,
        created_at=row.created_at,
    )
