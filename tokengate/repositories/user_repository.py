"""Repository for User operations.

PostgreSQL implementation of the UserStore protocol. Methods flush but do
not commit; the caller (or the token repository sharing the session)
controls transaction boundaries.
"""

import uuid
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tokengate.models.user import User
from tokengate.repositories.user_store import DuplicateEmailError, UserAccount

_EMAIL_CONSTRAINT = "uq_users_email"

# Fields that may be updated via UserRepository._update().
# Security: Never add 'id', 'email', 'created_at', or 'updated_at'.
# - id: primary key, immutable
# - email: unique identity, requires dedicated flow with re-verification
# - created_at/updated_at: server-managed timestamps
_UPDATABLE_FIELDS: frozenset[str] = frozenset(
    {
        "name",
        "email_verified",
        "password_hash",
    }
)


def _to_account(user: User) -> UserAccount:
    return UserAccount(
        id=user.id,
        email=user.email,
        name=user.name,
        password_hash=user.password_hash,
        email_verified=user.email_verified,
    )


class UserRepository:
    """UserStore backed by the users table.

    Args:
        db: Async database session for every call.
    """

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def find_by_id(self, user_id: uuid.UUID) -> UserAccount | None:
        """Fetch a user by primary key.

        Args:
            user_id: UUID primary key.

        Returns:
            UserAccount if found, None otherwise.
        """
        user = await self._db.get(User, user_id)
        return _to_account(user) if user is not None else None

    async def find_by_email(self, email: str) -> UserAccount | None:
        """Fetch a user by email address (case-insensitive).

        Args:
            email: Email address to look up.

        Returns:
            UserAccount if found, None otherwise.
        """
        stmt = select(User).where(User.email == email.lower())
        result = await self._db.execute(stmt)
        user = result.scalar_one_or_none()
        return _to_account(user) if user is not None else None

    async def create(
        self,
        *,
        email: str,
        name: str | None,
        password_hash: str,
    ) -> UserAccount:
        """Create a new unverified user.

        Email is normalized to lowercase before storage. The insert runs in
        a SAVEPOINT so a losing concurrent registration leaves the session
        usable.

        Args:
            email: User email address.
            name: Display name.
            password_hash: bcrypt hash.

        Returns:
            Created account with database-generated fields populated.

        Raises:
            DuplicateEmailError: If email already exists.
        """
        user = User(
            email=email.lower(),
            name=name,
            password_hash=password_hash,
        )
        try:
            async with self._db.begin_nested():
                self._db.add(user)
        except IntegrityError as exc:
            if _EMAIL_CONSTRAINT in str(exc.orig):
                raise DuplicateEmailError(email.lower()) from exc
            raise
        await self._db.refresh(user)
        return _to_account(user)

    async def update_password_hash(
        self, user_id: uuid.UUID, password_hash: str
    ) -> bool:
        """Replace a user's password hash.

        Returns:
            True if updated, False if the user does not exist.
        """
        return await self._update(user_id, password_hash=password_hash)

    async def set_email_verified(
        self, user_id: uuid.UUID, verified_at: datetime
    ) -> bool:
        """Mark a user's email as verified.

        Returns:
            True if updated, False if the user does not exist.
        """
        return await self._update(user_id, email_verified=verified_at)

    async def _update(
        self, user_id: uuid.UUID, **kwargs: str | datetime | None
    ) -> bool:
        unknown = set(kwargs) - _UPDATABLE_FIELDS
        if unknown:
            msg = f"Unknown fields: {', '.join(sorted(unknown))}"
            raise ValueError(msg)

        user = await self._db.get(User, user_id)
        if user is None:
            return False

        for field, value in kwargs.items():
            setattr(user, field, value)

        await self._db.flush()
        return True
