"""Unit tests for auth/permissions.py -- PermissionService.

The repository is the counting FakeRepository from conftest, so cache hits
and misses are observable as repository call counts.

Covers:
- cache hit within TTL, exactly one reload after TTL
- invalidation on role assignment/removal (even with a warm stale entry)
- no invalidation when the write fails
- fail closed: repository errors propagate and nothing is cached
- any/all short-circuit and empty-list results
- admin shortcut via admin.full or system.admin
- cache lock is not held during repository calls
- an invalidation racing a load is not undone by that load
"""

import pytest
from sqlalchemy.exc import OperationalError

from auth.errors import RoleNotFoundError
from auth.permission_store import PermissionStore
from auth.permissions import PermissionService
from cache.store import PermissionCache


@pytest.fixture
def cache(clock):
    return PermissionCache(ttl=300, clock=clock)


@pytest.fixture
def service(fake_repo, cache):
    return PermissionService(fake_repo, cache=cache)


@pytest.fixture
def reader(fake_repo):
    """User 1 holding role 'reader' (books.read)."""
    role_id = fake_repo.add_role("reader", "books.read")
    fake_repo.assign_role_to_user(1, role_id)
    return 1


class TestCaching:
    def test_second_call_within_ttl_hits_cache(self, service, fake_repo, reader):
        assert service.has_permission(reader, "books.read")
        assert service.has_permission(reader, "books.read")
        assert not service.has_permission(reader, "books.write")
        assert fake_repo.calls == 1

    def test_reload_after_ttl(self, service, fake_repo, clock, reader):
        service.has_permission(reader, "books.read")
        clock.advance(300)
        service.has_permission(reader, "books.read")
        assert fake_repo.calls == 2
        service.has_permission(reader, "books.read")
        assert fake_repo.calls == 2

    def test_users_cached_independently(self, service, fake_repo, reader):
        service.has_permission(reader, "books.read")
        assert not service.has_permission(2, "books.read")
        assert fake_repo.calls == 2

    def test_default_cache_uses_ttl(self, fake_repo):
        service = PermissionService(fake_repo, ttl=42)
        assert service.cache.ttl == 42

    def test_get_permission_names(self, service, reader):
        assert service.get_permission_names(reader) == frozenset({"books.read"})


class TestInvalidation:
    def test_assign_role_visible_immediately(self, service, fake_repo, reader):
        writer = fake_repo.add_role("writer", "books.write")
        assert not service.has_permission(reader, "books.write")  # warms the cache

        service.assign_role_to_user(reader, writer)

        assert service.has_permission(reader, "books.write")
        assert fake_repo.calls == 2

    def test_remove_role_visible_immediately(self, service, fake_repo, reader):
        role = fake_repo.get_role_by_name("reader")
        assert service.has_permission(reader, "books.read")
        service.remove_role_from_user(reader, role.id)
        assert not service.has_permission(reader, "books.read")

    def test_failed_write_keeps_cache(self, service, fake_repo, reader):
        writer = fake_repo.add_role("writer", "books.write")
        service.has_permission(reader, "books.read")
        fake_repo.fail_writes = OperationalError("INSERT", {}, Exception("disk I/O error"))

        with pytest.raises(OperationalError):
            service.assign_role_to_user(reader, writer)

        service.has_permission(reader, "books.read")
        assert fake_repo.calls == 1

    def test_explicit_invalidate(self, service, fake_repo, reader):
        service.has_permission(reader, "books.read")
        service.invalidate(reader)
        service.has_permission(reader, "books.read")
        assert fake_repo.calls == 2

    def test_assign_by_name(self, service, fake_repo, reader):
        fake_repo.add_role("writer", "books.write")
        role = service.assign_role_by_name(reader, "writer")
        assert role.name == "writer"
        assert service.has_permission(reader, "books.write")
        service.remove_role_by_name(reader, "writer")
        assert not service.has_permission(reader, "books.write")

    def test_unknown_role_name(self, service, reader):
        with pytest.raises(RoleNotFoundError) as exc_info:
            service.assign_role_by_name(reader, "wizard")
        assert exc_info.value.details == {"role_name": "wizard"}
        with pytest.raises(RoleNotFoundError):
            service.remove_role_by_name(reader, "wizard")


class TestFailClosed:
    def test_repository_error_propagates_and_is_not_cached(self, service, fake_repo, reader):
        fake_repo.fail = OperationalError("SELECT", {}, Exception("database is locked"))
        with pytest.raises(OperationalError):
            service.has_permission(reader, "books.read")
        assert service.cache.get(reader) is None

        fake_repo.fail = None
        assert service.has_permission(reader, "books.read")
        assert fake_repo.calls == 2

    def test_is_admin_propagates_errors(self, service, fake_repo, reader):
        fake_repo.fail = OperationalError("SELECT", {}, Exception("timeout"))
        with pytest.raises(OperationalError):
            service.is_admin(reader)


class TestCombinators:
    def test_any(self, service, reader):
        assert service.has_any_permission(reader, ["books.write", "books.read"])
        assert not service.has_any_permission(reader, ["books.write", "books.delete"])
        assert service.has_any_permission(reader, []) is False

    def test_all(self, service, reader):
        assert service.has_all_permissions(reader, ["books.read"])
        assert not service.has_all_permissions(reader, ["books.read", "books.write"])
        assert service.has_all_permissions(reader, []) is True

    def test_any_short_circuits(self, service, reader, monkeypatch):
        seen = []
        original = service.has_permission

        def tracking(user_id, name):
            seen.append(name)
            return original(user_id, name)

        monkeypatch.setattr(service, "has_permission", tracking)
        service.has_any_permission(reader, ["books.read", "books.write", "books.delete"])
        assert seen == ["books.read"]

    def test_all_short_circuits(self, service, reader, monkeypatch):
        seen = []
        original = service.has_permission

        def tracking(user_id, name):
            seen.append(name)
            return original(user_id, name)

        monkeypatch.setattr(service, "has_permission", tracking)
        service.has_all_permissions(reader, ["books.write", "books.read"])
        assert seen == ["books.write"]


class TestAdmin:
    @pytest.mark.parametrize("permission", ["admin.full", "system.admin"])
    def test_either_admin_permission(self, service, fake_repo, permission):
        fake_repo.assign_role_to_user(5, fake_repo.add_role("boss", permission))
        assert service.is_admin(5)

    def test_non_admin(self, service, reader):
        assert not service.is_admin(reader)


class TestConcurrency:
    def test_lock_not_held_during_repository_call(self, service, fake_repo, reader):
        observed = []
        fake_repo.on_load = lambda uid: observed.append(service.cache._lock.locked())
        service.has_permission(reader, "books.read")
        assert observed == [False]

    def test_invalidation_during_load_is_not_undone(self, service, fake_repo, reader):
        writer = fake_repo.add_role("writer", "books.write")

        def concurrent_assignment(uid):
            # Another request changes roles while this load is in flight.
            fake_repo.on_load = None
            service.assign_role_to_user(uid, writer)

        fake_repo.on_load = concurrent_assignment
        assert service.has_permission(reader, "books.read")

        # The in-flight result was computed after the write in this double,
        # but it was not stored; the next check reloads.
        assert service.cache.get(reader) is None
        assert service.has_permission(reader, "books.write")


class TestWithPermissionStore:
    """End-to-end against the SQL store."""

    def test_librarian_flow(self, permission_store: PermissionStore, make_user):
        service = PermissionService(permission_store)
        uid = make_user("lib@x.io")
        assert not service.has_permission(uid, "content.nsfw")

        service.assign_role_by_name(uid, "librarian")
        assert service.has_permission(uid, "content.nsfw")
        assert not service.is_admin(uid)
        assert [r.name for r in service.get_user_roles(uid)] == ["librarian"]

        service.assign_role_by_name(uid, "admin")
        assert service.is_admin(uid)
