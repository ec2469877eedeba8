"""
api/routes/v1/books.py -- Tag-gated book access endpoints.

Routes:
  GET  /api/v1/books/{book_id}/access   -- can the caller open this book? (books.read)
  POST /api/v1/books/accessible         -- filter a list of book IDs for the caller (books.read)
  POST /api/v1/books/{book_id}/tags     -- attach tags to a book (books.write)

A denied book is reported as allowed=false with a reason, not as an HTTP
error: the caller is authorized to ask, the answer is just "no". A failed
permission lookup is a 500 (permission_check_failed), never an allow.
Unknown tag names are a gate configuration problem and map to 404
tag_not_found via the GateConfigError handler in api/main.py.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError

from api.models import AccessibleBooksRequest, AccessibleBooksResponse, AccessResponse, TagAssignRequest, TagResponse
from auth.catalog import PermissionName
from auth.dependencies import require_permission
from auth.errors import TagNotFoundError
from auth.models import Claims
from library.gate import ContentGate
from library.models import ContentFilter
from library.store import TagStore

logger = logging.getLogger("folio.api")

router = APIRouter()

_read_books = require_permission(PermissionName.BOOKS_READ.value)
_write_books = require_permission(PermissionName.BOOKS_WRITE.value)


def _check_failed(user_id: int, exc: SQLAlchemyError) -> HTTPException:
    logger.error("Content gate lookup failed for user %d: %s", user_id, exc)
    return HTTPException(
        status_code=500,
        detail={"code": "permission_check_failed", "message": "Could not verify permissions."},
    )


@router.get("/books/{book_id}/access", response_model=AccessResponse)
def book_access(book_id: int, request: Request, claims: Claims = Depends(_read_books)) -> AccessResponse:
    gate: ContentGate = request.app.state.gate
    try:
        decision = gate.can_access_resource(claims.user_id, book_id)
    except SQLAlchemyError as e:
        raise _check_failed(claims.user_id, e) from e
    return AccessResponse(book_id=book_id, allowed=decision.allowed, denied_reason=decision.denied_reason)


@router.post("/books/accessible", response_model=AccessibleBooksResponse)
def accessible_books(
    body: AccessibleBooksRequest, request: Request, claims: Claims = Depends(_read_books)
) -> AccessibleBooksResponse:
    """Return the subset of body.book_ids the caller may open, in request order."""
    gate: ContentGate = request.app.state.gate
    tag_store: TagStore = request.app.state.tag_store
    content_filter = ContentFilter(
        include_categories=body.include_categories,
        exclude_categories=body.exclude_categories,
        include_tags=body.include_tags,
        exclude_tags=body.exclude_tags,
    )
    try:
        allowed = gate.filter_accessible_ids(claims.user_id, body.book_ids)
        if any(vars(content_filter).values()):
            tag_map = tag_store.get_tags_for_resources(allowed)
            allowed = gate.apply_content_filter(allowed, lambda rid: tag_map[rid], content_filter)
    except SQLAlchemyError as e:
        raise _check_failed(claims.user_id, e) from e
    return AccessibleBooksResponse(requested=len(body.book_ids), book_ids=allowed)


@router.post("/books/{book_id}/tags", response_model=list[TagResponse])
def tag_book(
    book_id: int, body: TagAssignRequest, request: Request, claims: Claims = Depends(_write_books)
) -> list[TagResponse]:
    """Attach every tag in body.tags to book_id and return the book's tags.

    All names are checked before anything is written, so an unknown name
    leaves the book unchanged.
    """
    tag_store: TagStore = request.app.state.tag_store
    for name in body.tags:
        if tag_store.get_tag_by_name(name) is None:
            raise TagNotFoundError(name)
    for name in body.tags:
        tag_store.tag_resource(book_id, name, applied_by=claims.user_id)
    logger.info("User %d tagged book %d with %s", claims.user_id, book_id, ", ".join(body.tags))
    return [TagResponse.from_tag(t) for t in tag_store.get_resource_tags(book_id)]
