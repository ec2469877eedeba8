"""
library/gate.py -- Tag-based content gating on top of PermissionService.

A book is visible to a user only if the user holds the permission named by
every gating tag on it. Tags without requires_permission never deny.

Rules:
  - Tags are checked in the order given; the first unsatisfied one decides
    the denial reason ("missing permission for <tag name>").
  - Permission lookups go through PermissionService, so a list filter costs
    at most one repository query per user per TTL window.
  - A resolver error aborts the whole call. A partially filtered list is
    never returned and an error is never turned into "allowed".
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from typing import TypeVar

from auth.catalog import PermissionName
from auth.permissions import PermissionService
from library.models import AccessDecision, ContentFilter, ContentPreferences, Tag
from library.store import TagStore

logger = logging.getLogger("folio.gate")

R = TypeVar("R")

_ALLOWED = AccessDecision(allowed=True)


class ContentGate:
    """Decides which books a user may see.

    tags is only needed for the ID-based helpers that load tags themselves;
    can_access() and filter_accessible() work from tags the caller supplies.
    """

    def __init__(self, permissions: PermissionService, tags: TagStore | None = None) -> None:
        self.permissions = permissions
        self.tags = tags

    def can_access(self, user_id: int, resource_tags: Iterable[Tag]) -> AccessDecision:
        for tag in resource_tags:
            if tag.requires_permission is None:
                continue
            if not self.permissions.has_permission(user_id, tag.requires_permission):
                return AccessDecision(allowed=False, denied_reason=f"missing permission for {tag.name}")
        return _ALLOWED

    def filter_accessible(
        self,
        user_id: int,
        resources: Iterable[R],
        tags_for: Callable[[R], Iterable[Tag]],
    ) -> list[R]:
        """Return the resources user_id may access, in input order."""
        return [r for r in resources if self.can_access(user_id, tags_for(r)).allowed]

    # ------------------------------------------------------------------
    # ID-based helpers (tags loaded from the TagStore)
    # ------------------------------------------------------------------

    def can_access_resource(self, user_id: int, resource_id: int) -> AccessDecision:
        decision = self.can_access(user_id, self._tag_store().get_resource_tags(resource_id))
        if not decision.allowed:
            logger.debug("User %d denied book %d: %s", user_id, resource_id, decision.denied_reason)
        return decision

    def filter_accessible_ids(self, user_id: int, resource_ids: Sequence[int]) -> list[int]:
        """Order-preserving filter over book IDs, with one tag query for the whole batch."""
        tag_map = self._tag_store().get_tags_for_resources(resource_ids)
        return self.filter_accessible(user_id, resource_ids, lambda rid: tag_map[rid])

    # ------------------------------------------------------------------
    # Viewer preferences
    # ------------------------------------------------------------------

    @staticmethod
    def apply_content_filter(
        resources: Iterable[R],
        tags_for: Callable[[R], Iterable[Tag]],
        content_filter: ContentFilter,
    ) -> list[R]:
        """Narrow an already gated list by tag names and categories."""
        kept: list[R] = []
        for resource in resources:
            resource_tags = list(tags_for(resource))
            names = {t.name for t in resource_tags}
            categories = {t.category for t in resource_tags}
            if content_filter.include_categories and categories.isdisjoint(content_filter.include_categories):
                continue
            if content_filter.include_tags and names.isdisjoint(content_filter.include_tags):
                continue
            if not categories.isdisjoint(content_filter.exclude_categories):
                continue
            if not names.isdisjoint(content_filter.exclude_tags):
                continue
            kept.append(resource)
        return kept

    def content_preferences(self, user_id: int) -> ContentPreferences:
        genres = self._tag_store().list_tags(category="genre")
        return ContentPreferences(
            can_access_nsfw=self.permissions.has_permission(user_id, PermissionName.CONTENT_NSFW.value),
            can_access_restricted=self.permissions.has_permission(user_id, PermissionName.CONTENT_RESTRICTED.value),
            accessible_genres=[t.name for t in genres if self.can_access(user_id, [t]).allowed],
        )

    def _tag_store(self) -> TagStore:
        if self.tags is None:
            raise RuntimeError("ContentGate was created without a TagStore")
        return self.tags
