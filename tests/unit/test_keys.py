"""Unit tests for KeyPairManager and KeyStore."""

import asyncio
from datetime import timedelta

import pytest
from jwcrypto import jwk

from tokenvault.core.config import Settings
from tokenvault.services.errors import KeyLoadError, UnknownKeyError
from tokenvault.services.key_store import KeyStore
from tokenvault.services.keys import KeyPairManager, clear_key_cache

pytestmark = pytest.mark.asyncio


def _with_passphrase(settings: Settings, passphrase: str) -> Settings:
    return Settings(_env_file=None, **(settings.model_dump() | {"key_passphrase": passphrase}))


@pytest.fixture
def manager(db_session, settings, clock) -> KeyPairManager:
    return KeyPairManager(KeyStore(db_session), settings, clock)


class TestActivePair:
    """Tests for get_active_pair() and rotate()."""

    async def test_creates_pair_when_none_exists(self, manager, db_session, clock):
        key = await manager.get_active_pair()

        assert key.kid
        assert key.created_at == clock()
        assert key.expires_at == clock() + timedelta(hours=2)
        assert len(await KeyStore(db_session).list_all()) == 1

    async def test_reuses_active_pair(self, manager, clock):
        first = await manager.get_active_pair()
        clock.advance(hours=1, minutes=59)
        second = await manager.get_active_pair()

        assert first.kid == second.kid

    async def test_new_pair_after_active_window(self, manager, db_session, clock):
        first = await manager.get_active_pair()
        clock.advance(hours=2)
        second = await manager.get_active_pair()

        assert first.kid != second.kid
        assert len(await KeyStore(db_session).list_all()) == 2

    async def test_rotate_makes_newest_pair_active(self, manager, clock):
        first = await manager.get_active_pair()
        clock.advance(minutes=5)
        rotated = await manager.rotate()

        assert rotated.kid != first.kid
        assert (await manager.get_active_pair()).kid == rotated.kid

    async def test_duplicate_active_pairs_tolerated(self, manager, clock):
        """Pairs created back to back are all usable; the newest issues."""
        first = await manager.rotate()
        clock.advance(seconds=1)
        second = await manager.rotate()

        assert (await manager.get_pair_by_id(first.kid)).kid == first.kid
        assert (await manager.get_pair_by_id(second.kid)).kid == second.kid
        assert (await manager.get_active_pair()).kid == second.kid

    async def test_rsa_key_size(self, manager):
        key = await manager.get_active_pair()
        assert key.private_key.key_size == 2048

@pytest.fixture
async def file_session_maker(tmp_path):
    """Sessions on a file database, one connection each, so callers can race."""
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
    from sqlalchemy.pool import NullPool

    from tokenvault.core.database import Base
    from tokenvault.models import Account, KeyPair, RefreshToken, TokenBlacklist  # noqa: F401

    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'keys.db'}", poolclass=NullPool
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


class TestConcurrentCreation:
    """Two callers finding no active pair at the same time."""

    async def test_both_pairs_persist_and_verify(
        self, file_session_maker, settings, clock, monkeypatch
    ):
        from tokenvault.services.accounts import AccountService
        from tokenvault.services.auth import AuthService
        from tokenvault.services.domain import Valid

        barrier = asyncio.Barrier(2)
        find_active = KeyStore.find_active

        async def find_then_wait(self, now):
            record = await find_active(self, now)
            # Neither caller creates a pair until both have seen an empty store
            await barrier.wait()
            return record

        monkeypatch.setattr(KeyStore, "find_active", find_then_wait)

        async def get_active_pair():
            async with file_session_maker() as db:
                return await AuthService(db, settings=settings, clock=clock).keys.get_active_pair()

        first, second = await asyncio.gather(get_active_pair(), get_active_pair())
        monkeypatch.undo()

        assert first.kid != second.kid

        async with file_session_maker() as db:
            service = AuthService(db, settings=settings, clock=clock)
            stored = await service.keys.store.list_all()
            assert {record.kid for record in stored} == {first.kid, second.kid}

            alice = await AccountService(db).create_account("alice", "correct-horse-battery")
            for key in (first, second):
                outcome = await service.verifier.verify(service.issuer.issue_access(alice, key))
                assert isinstance(outcome, Valid)
                assert outcome.claims["kid"] == key.kid



class TestLookup:
    """Tests for get_pair_by_id()."""

    async def test_unknown_kid_fails_closed(self, manager):
        with pytest.raises(UnknownKeyError):
            await manager.get_pair_by_id("does-not-exist")

    async def test_expired_pair_still_available_for_verification(self, manager, clock):
        key = await manager.get_active_pair()
        clock.advance(days=3)

        found = await manager.get_pair_by_id(key.kid)
        assert found.kid == key.kid
        assert not found.is_active(clock())

    async def test_lookup_survives_cache_clear(self, manager):
        key = await manager.get_active_pair()
        clear_key_cache()

        found = await manager.get_pair_by_id(key.kid)
        assert found.public_key.public_numbers() == key.public_key.public_numbers()


class TestPassphrase:
    """Private keys are stored encrypted when a passphrase is configured."""

    async def test_private_key_encrypted_at_rest(self, db_session, settings, clock):
        manager = KeyPairManager(
            KeyStore(db_session), _with_passphrase(settings, "a-long-passphrase"), clock
        )

        key = await manager.get_active_pair()
        record = await KeyStore(db_session).find_by_kid(key.kid)

        assert "ENCRYPTED PRIVATE KEY" in record.private_key
        clear_key_cache()
        assert (await manager.get_pair_by_id(key.kid)).kid == key.kid

    async def test_wrong_passphrase_is_infrastructure_error(self, db_session, settings, clock):
        secured = _with_passphrase(settings, "a-long-passphrase")
        key = await KeyPairManager(KeyStore(db_session), secured, clock).get_active_pair()
        clear_key_cache()

        wrong = _with_passphrase(settings, "not-the-passphrase")
        with pytest.raises(KeyLoadError):
            await KeyPairManager(KeyStore(db_session), wrong, clock).get_pair_by_id(key.kid)

    async def test_unencrypted_by_default(self, manager, db_session):
        key = await manager.get_active_pair()
        record = await KeyStore(db_session).find_by_kid(key.kid)
        assert "BEGIN PRIVATE KEY" in record.private_key


class TestJWKS:
    """Tests for jwks()."""

    async def test_empty_before_first_issue(self, manager):
        assert await manager.jwks() == {"keys": []}

    async def test_every_pair_published_by_kid(self, manager, clock):
        first = await manager.get_active_pair()
        clock.advance(hours=3)
        second = await manager.get_active_pair()

        key_set = await manager.jwks()
        kids = {entry["kid"] for entry in key_set["keys"]}

        assert kids == {first.kid, second.kid}
        for entry in key_set["keys"]:
            assert entry["kty"] == "RSA"
            assert {"n", "e"} <= entry.keys()

    async def test_no_private_material(self, manager):
        await manager.get_active_pair()
        entry = (await manager.jwks())["keys"][0]

        for private_field in ("d", "p", "q", "dp", "dq", "qi"):
            assert private_field not in entry

    async def test_published_key_matches_pair(self, manager):
        key = await manager.get_active_pair()
        entry = (await manager.jwks())["keys"][0]

        published = jwk.JWK(**entry)
        assert published.thumbprint() == jwk.JWK.from_pyca(key.public_key).thumbprint()


class TestPrune:
    """Tests for prune_retired()."""

    async def test_pair_kept_within_verification_grace(self, manager, db_session, clock, settings):
        key = await manager.get_active_pair()
        # Active window ends at +2h; a refresh token issued just before can live 7 more days
        clock.advance(hours=2, days=7)

        assert await manager.prune_retired() == 0
        assert (await manager.get_pair_by_id(key.kid)).kid == key.kid

    async def test_pair_removed_after_grace(self, manager, clock, settings):
        key = await manager.get_active_pair()
        clock.advance(hours=2)
        clock.advance(seconds=int(settings.key_verification_grace.total_seconds()) + 1)

        assert await manager.prune_retired() == 1
        with pytest.raises(UnknownKeyError):
            await manager.get_pair_by_id(key.kid)

    async def test_active_pair_never_pruned(self, manager, clock):
        old = await manager.get_active_pair()
        clock.advance(days=30)
        current = await manager.get_active_pair()

        assert await manager.prune_retired() == 1
        assert (await manager.get_pair_by_id(current.kid)).kid == current.kid
        with pytest.raises(UnknownKeyError):
            await manager.get_pair_by_id(old.kid)
