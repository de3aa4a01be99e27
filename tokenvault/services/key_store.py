"""Persistence for key pair records."""

from datetime import datetime
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.engine import CursorResult
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tokenvault.models.key_pair import KeyPair
from tokenvault.services.errors import StorageUnavailableError


class KeyStore:
    """Reads and writes ``KeyPair`` rows. Every write is committed before returning."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, record: KeyPair) -> KeyPair:
        """Persist a new key pair."""
        try:
            self.session.add(record)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise StorageUnavailableError("Error saving key pair") from e
        return record

    async def find_by_kid(self, kid: str) -> KeyPair | None:
        try:
            result = await self.session.execute(select(KeyPair).where(KeyPair.kid == kid))
        except SQLAlchemyError as e:
            raise StorageUnavailableError("Error loading key pair") from e
        return result.scalar_one_or_none()

    async def find_active(self, now: datetime) -> KeyPair | None:
        """Newest pair whose active window has not ended.

        Duplicate pairs created by racing callers are all valid; the newest wins.
        """
        try:
            result = await self.session.execute(
                select(KeyPair)
                .where(KeyPair.expires_at > now)
                .order_by(KeyPair.created_at.desc())
                .limit(1)
            )
        except SQLAlchemyError as e:
            raise StorageUnavailableError("Error loading active key pair") from e
        return result.scalar_one_or_none()

    async def list_all(self) -> list[KeyPair]:
        try:
            result = await self.session.execute(select(KeyPair).order_by(KeyPair.created_at))
        except SQLAlchemyError as e:
            raise StorageUnavailableError("Error listing key pairs") from e
        return list(result.scalars().all())

    async def delete_retired(self, cutoff: datetime) -> int:
        """Delete pairs whose active window ended before ``cutoff``. Returns count removed."""
        try:
            result: CursorResult[Any] = await self.session.execute(  # type: ignore[assignment]
                delete(KeyPair)
                .where(KeyPair.expires_at < cutoff)
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise StorageUnavailableError("Error deleting retired key pairs") from e
        return result.rowcount
