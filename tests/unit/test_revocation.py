"""Unit tests for RevocationStore."""

from datetime import timedelta

import pytest

from tokenvault.models.refresh_token import REFRESH_STATUS_ACTIVE, REFRESH_STATUS_REVOKED
from tokenvault.services.revocation import RevocationStore

pytestmark = pytest.mark.asyncio


@pytest.fixture
def store(db_session, clock) -> RevocationStore:
    return RevocationStore(db_session, clock, grace=timedelta(seconds=60))


class TestRefreshRecords:
    """Tests for refresh token records."""

    async def test_record_and_find(self, store, clock):
        expires_at = clock() + timedelta(days=7)
        record = await store.record_refresh("jti-1", "alice", expires_at)

        found = await store.find_refresh("jti-1")

        assert found == record
        assert found.subject == "alice"
        assert found.status == REFRESH_STATUS_ACTIVE
        assert found.expires_at == expires_at
        assert found.is_usable(clock())

    async def test_find_unknown_returns_none(self, store):
        assert await store.find_refresh("missing") is None

    async def test_revoke_reports_change(self, store, clock):
        await store.record_refresh("jti-1", "alice", clock() + timedelta(days=7))

        assert await store.revoke_refresh("jti-1") is True

        found = await store.find_refresh("jti-1")
        assert found.status == REFRESH_STATUS_REVOKED
        assert found.revoked_at == clock()
        assert not found.is_usable(clock())

    async def test_revoke_is_idempotent(self, store, clock):
        await store.record_refresh("jti-1", "alice", clock() + timedelta(days=7))

        assert await store.revoke_refresh("jti-1") is True
        assert await store.revoke_refresh("jti-1") is False

    async def test_revoke_unknown_is_not_an_error(self, store):
        assert await store.revoke_refresh("missing") is False

    async def test_revoke_records_replacement(self, store, clock):
        await store.record_refresh("jti-1", "alice", clock() + timedelta(days=7))

        await store.revoke_refresh("jti-1", replaced_by="jti-2")

        assert (await store.find_refresh("jti-1")).replaced_by == "jti-2"

    async def test_record_unusable_after_expiry(self, store, clock):
        record = await store.record_refresh("jti-1", "alice", clock() + timedelta(days=7))

        clock.advance(days=7)
        assert not record.is_usable(clock())

    async def test_revocation_visible_to_other_sessions(self, session_maker, clock):
        """A committed revoke is seen by any request that starts afterwards."""
        async with session_maker() as first:
            writer = RevocationStore(first, clock)
            await writer.record_refresh("jti-1", "alice", clock() + timedelta(days=7))
            await writer.revoke_refresh("jti-1")

        async with session_maker() as second:
            found = await RevocationStore(second, clock).find_refresh("jti-1")

        assert found.status == REFRESH_STATUS_REVOKED


class TestBlacklist:
    """Tests for the access token blacklist."""

    async def test_blacklisted_jti_detected(self, store, clock):
        await store.blacklist_access("access-1", clock() + timedelta(minutes=15))

        assert await store.is_blacklisted("access-1")
        assert not await store.is_blacklisted("access-2")

    async def test_duplicate_blacklist_ignored(self, store, clock):
        expires_at = clock() + timedelta(minutes=15)
        await store.blacklist_access("access-1", expires_at)
        await store.blacklist_access("access-1", expires_at)

        assert await store.is_blacklisted("access-1")

    async def test_entry_honoured_through_clock_tolerance(self, store, clock):
        await store.blacklist_access("access-1", clock() + timedelta(minutes=15))

        clock.advance(minutes=15, seconds=30)
        assert await store.is_blacklisted("access-1")

    async def test_entry_honoured_at_exact_tolerance_boundary(self, store, clock):
        await store.blacklist_access("access-1", clock() + timedelta(minutes=15))

        clock.advance(minutes=16)
        assert await store.is_blacklisted("access-1")

    async def test_entry_lapses_after_expiry_and_tolerance(self, store, clock):
        await store.blacklist_access("access-1", clock() + timedelta(minutes=15))

        clock.advance(minutes=16, seconds=1)
        assert not await store.is_blacklisted("access-1")

    async def test_refresh_revoke_does_not_touch_blacklist(self, store, clock):
        await store.record_refresh("jti-1", "alice", clock() + timedelta(days=7))
        await store.revoke_refresh("jti-1")

        assert not await store.is_blacklisted("jti-1")


class TestPurge:
    """Tests for purge_expired()."""

    async def test_purges_only_expired_rows(self, store, clock):
        await store.blacklist_access("old-access", clock() + timedelta(minutes=15))
        await store.record_refresh("old-refresh", "alice", clock() + timedelta(hours=1))
        clock.advance(days=1)
        await store.blacklist_access("new-access", clock() + timedelta(minutes=15))
        await store.record_refresh("new-refresh", "alice", clock() + timedelta(days=7))

        assert await store.purge_expired() == (1, 1)

        assert await store.is_blacklisted("new-access")
        assert await store.find_refresh("old-refresh") is None
        assert await store.find_refresh("new-refresh") is not None

    async def test_purge_keeps_entries_inside_tolerance(self, store, clock):
        await store.blacklist_access("access-1", clock() + timedelta(minutes=15))
        clock.advance(minutes=15, seconds=30)

        assert await store.purge_expired() == (0, 0)

    async def test_purge_is_idempotent(self, store, clock):
        await store.blacklist_access("access-1", clock() + timedelta(minutes=15))
        clock.advance(hours=1)

        assert await store.purge_expired() == (1, 0)
        assert await store.purge_expired() == (0, 0)
