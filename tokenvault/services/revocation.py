"""Refresh token records and the access token blacklist.

Refresh revocation and access blacklisting are independent: revoking a
refresh record does not touch access tokens already issued from it. Those
expire on their own within the access lifetime unless their jti is
blacklisted explicitly (the one presented at logout).

Every write commits before returning, so an acknowledged revocation is
visible to any request that starts afterwards.
"""

import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.engine import CursorResult
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tokenvault.models.refresh_token import (
    REFRESH_STATUS_ACTIVE,
    REFRESH_STATUS_REVOKED,
    RefreshToken,
)
from tokenvault.models.token_blacklist import TokenBlacklist
from tokenvault.services.domain import Clock, RefreshTokenRecord, as_utc, utc_now
from tokenvault.services.errors import StorageUnavailableError

logger = logging.getLogger(__name__)


def _to_record(row: RefreshToken) -> RefreshTokenRecord:
    return RefreshTokenRecord(
        jti=row.jti,
        subject=row.subject,
        created_at=as_utc(row.created_at),
        expires_at=as_utc(row.expires_at),
        status=row.status,
        revoked_at=as_utc(row.revoked_at) if row.revoked_at else None,
        replaced_by=row.replaced_by,
    )


class RevocationStore:
    """Owns RefreshToken and TokenBlacklist rows."""

    def __init__(
        self,
        session: AsyncSession,
        clock: Clock = utc_now,
        grace: timedelta = timedelta(0),
    ):
        self.session = session
        self.clock = clock
        # Verification accepts tokens up to exp + clock tolerance, so a blacklist
        # entry has to be honoured (and kept) for the same grace past expires_at
        self.grace = grace

    # --- Refresh token records ---

    async def record_refresh(
        self, jti: str, subject: str, expires_at: datetime
    ) -> RefreshTokenRecord:
        """Persist an active refresh record."""
        row = RefreshToken(
            jti=jti,
            subject=subject,
            created_at=self.clock(),
            expires_at=expires_at,
            status=REFRESH_STATUS_ACTIVE,
        )
        try:
            self.session.add(row)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise StorageUnavailableError("Error saving refresh token") from e
        return _to_record(row)

    async def find_refresh(self, jti: str) -> RefreshTokenRecord | None:
        try:
            result = await self.session.execute(
                select(RefreshToken)
                .where(RefreshToken.jti == jti)
                .execution_options(populate_existing=True)
            )
        except SQLAlchemyError as e:
            raise StorageUnavailableError("Error loading refresh token") from e
        row = result.scalar_one_or_none()
        return _to_record(row) if row is not None else None

    async def revoke_refresh(self, jti: str, replaced_by: str | None = None) -> bool:
        """Revoke a refresh record.

        Idempotent: an already revoked or unknown jti is not an error. Returns
        True only when this call moved the record from active to revoked, so
        two racing callers can never both win.
        """
        values: dict[str, Any] = {
            "status": REFRESH_STATUS_REVOKED,
            "revoked_at": self.clock(),
        }
        if replaced_by is not None:
            values["replaced_by"] = replaced_by
        try:
            result: CursorResult[Any] = await self.session.execute(  # type: ignore[assignment]
                update(RefreshToken)
                .where(RefreshToken.jti == jti, RefreshToken.status == REFRESH_STATUS_ACTIVE)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise StorageUnavailableError("Error revoking refresh token") from e
        changed = result.rowcount == 1
        if changed:
            logger.info(f"Revoked refresh token {jti}")
        return changed

    # --- Access token blacklist ---

    async def blacklist_access(self, jti: str, expires_at: datetime) -> None:
        """Blacklist an access token jti until its natural expiry. Duplicate jtis are ignored."""
        try:
            if await self.session.get(TokenBlacklist, jti) is not None:
                return
            self.session.add(TokenBlacklist(jti=jti, expires_at=expires_at))
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            logger.debug(f"Access token {jti} already blacklisted")
            return
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise StorageUnavailableError("Error adding token to blacklist") from e
        logger.info(f"Blacklisted access token {jti}")

    async def is_blacklisted(self, jti: str) -> bool:
        """Check if an access token jti has been revoked.

        Entries more than ``grace`` past their expiry are ignored; the token
        they name is already rejected as expired, and the sweep deletes them.
        """
        try:
            result = await self.session.execute(
                select(TokenBlacklist.jti).where(
                    TokenBlacklist.jti == jti,
                    TokenBlacklist.expires_at >= self.clock() - self.grace,
                )
            )
        except SQLAlchemyError as e:
            raise StorageUnavailableError("Error checking token blacklist") from e
        return result.scalar_one_or_none() is not None

    # --- Maintenance ---

    async def purge_expired(self) -> tuple[int, int]:
        """Delete expired blacklist entries and refresh records.

        Returns (blacklist entries removed, refresh records removed).
        """
        now = self.clock()
        try:
            blacklist: CursorResult[Any] = await self.session.execute(  # type: ignore[assignment]
                delete(TokenBlacklist)
                .where(TokenBlacklist.expires_at < now - self.grace)
                .execution_options(synchronize_session=False)
            )
            refresh: CursorResult[Any] = await self.session.execute(  # type: ignore[assignment]
                delete(RefreshToken)
                .where(RefreshToken.expires_at < now)
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise StorageUnavailableError("Error purging expired tokens") from e
        return blacklist.rowcount, refresh.rowcount
