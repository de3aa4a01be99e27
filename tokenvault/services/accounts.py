"""Account storage and credential checks (the identity collaborator)."""

import logging
from datetime import UTC, datetime
from typing import Protocol

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tokenvault.models.account import Account
from tokenvault.services.domain import Subject
from tokenvault.services.errors import (
    InvalidCredentialsError,
    StorageUnavailableError,
    SubjectExistsError,
)

logger = logging.getLogger(__name__)

# Argon2 password hasher with recommended parameters
# Memory: 64 MiB, Time: 3 iterations, Parallelism: 4
ph = PasswordHasher(
    time_cost=3,
    memory_cost=65536,
    parallelism=4,
    hash_len=32,
    salt_len=16,
)

# Verified against when the identifier is unknown, so both failure paths cost one hash
_DUMMY_HASH = ph.hash("tokenvault-dummy-password")


class SubjectResolver(Protocol):
    """Maps a ``sub`` claim to a live subject."""

    async def find_subject(self, identifier: str) -> Subject | None: ...


def hash_password(password: str) -> str:
    """Hash a password using Argon2id."""
    return ph.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash using constant-time comparison."""
    try:
        ph.verify(password_hash, password)
        return True
    except (VerifyMismatchError, VerificationError, InvalidHashError):
        return False


def to_subject(account: Account) -> Subject:
    return Subject(
        identifier=account.identifier,
        display_name=account.display_name,
        is_active=account.is_active,
    )


class AccountService:
    """Account lookups for token verification and the login/signup endpoints."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_account(self, identifier: str) -> Account | None:
        try:
            result = await self.session.execute(
                select(Account).where(Account.identifier == identifier)
            )
        except SQLAlchemyError as e:
            raise StorageUnavailableError("Error loading account") from e
        return result.scalar_one_or_none()

    async def find_subject(self, identifier: str) -> Subject | None:
        """Resolve an identifier to an active subject, or None."""
        account = await self.get_account(identifier)
        if account is None or not account.is_active:
            return None
        return to_subject(account)

    async def create_account(
        self, identifier: str, password: str, display_name: str | None = None
    ) -> Subject:
        """Create a new account."""
        if await self.get_account(identifier) is not None:
            raise SubjectExistsError("Account already exists")

        account = Account(
            identifier=identifier,
            password_hash=hash_password(password),
            display_name=display_name,
        )
        try:
            self.session.add(account)
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            raise SubjectExistsError("Account already exists") from e
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise StorageUnavailableError("Error creating account") from e

        logger.info(f"Created account: {identifier}")
        return to_subject(account)

    async def check_credentials(self, identifier: str, password: str) -> Subject:
        """Authenticate an identifier/password pair.

        Raises InvalidCredentialsError for unknown identifiers, wrong
        passwords and deactivated accounts alike, to prevent enumeration.
        """
        account = await self.get_account(identifier)

        if account is None:
            verify_password(password, _DUMMY_HASH)
            raise InvalidCredentialsError("Invalid identifier or password")

        if not verify_password(password, account.password_hash):
            raise InvalidCredentialsError("Invalid identifier or password")

        if not account.is_active:
            raise InvalidCredentialsError("Invalid identifier or password")

        account.last_login_at = datetime.now(UTC)
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise StorageUnavailableError("Error updating last login") from e

        return to_subject(account)
