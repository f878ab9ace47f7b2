"""Repository for validation token operations.

PostgreSQL implementation of the TokenStore protocol.

Unlike the user repository, every mutating method here commits before
returning: an attempt must be durable before the caller compares the
secret, and a token must exist before its email goes out.

record_attempt and mark_used are single guarded UPDATE ... RETURNING
statements, so concurrent requests against the same validation_id
serialize on the row lock and at most one of them wins each guard.
"""

import uuid
from datetime import datetime
from typing import Any, cast

from sqlalchemy import delete, select, update
from sqlalchemy.engine import CursorResult
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tokengate.models.validation_token import ValidationTokenRecord
from tokengate.repositories.token_store import DuplicateTokenError
from tokengate.services.token_policy import TokenKind, ValidationToken

_UNIQUE_CONSTRAINTS = (
    "uq_validation_tokens_validation_id",
    "uq_validation_tokens_secret_hash_unused",
)


def _to_token(record: ValidationTokenRecord) -> ValidationToken:
    return ValidationToken(
        validation_id=record.validation_id,
        secret_hash=record.secret_hash,
        kind=TokenKind(record.kind),
        user_id=record.user_id,
        email=record.email,
        created_at=record.created_at,
        expires_at=record.expires_at,
        max_attempts=record.max_attempts,
        attempts=record.attempts,
        used_at=record.used_at,
        context=dict(record.context or {}),
    )


class ValidationTokenRepository:
    """TokenStore backed by the validation_tokens table.

    Args:
        db: Async database session for every call.
    """

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def create(self, token: ValidationToken) -> ValidationToken:
        """Insert a new token and commit.

        The insert runs in a SAVEPOINT so a collision does not discard other
        pending work in the session (e.g., the user row created at
        registration).

        Args:
            token: Snapshot built by token_policy.new_token().

        Returns:
            The stored snapshot.

        Raises:
            DuplicateTokenError: If validation_id already exists, or secret_hash
                belongs to an unused token.
        """
        record = ValidationTokenRecord(
            validation_id=token.validation_id,
            secret_hash=token.secret_hash,
            kind=token.kind.value,
            user_id=token.user_id,
            email=token.email,
            created_at=token.created_at,
            expires_at=token.expires_at,
            max_attempts=token.max_attempts,
            attempts=token.attempts,
            used_at=token.used_at,
            context=dict(token.context),
        )
        try:
            async with self._db.begin_nested():
                self._db.add(record)
        except IntegrityError as exc:
            if any(name in str(exc.orig) for name in _UNIQUE_CONSTRAINTS):
                raise DuplicateTokenError(str(exc.orig)) from exc
            raise
        stored = _to_token(record)
        await self._db.commit()
        return stored

    async def get(self, validation_id: str) -> ValidationToken | None:
        """Fetch a token by its public identifier.

        Args:
            validation_id: Public identifier from a link or request body.

        Returns:
            Token snapshot if found, None otherwise.
        """
        stmt = select(ValidationTokenRecord).where(
            ValidationTokenRecord.validation_id == validation_id
        )
        result = await self._db.execute(stmt)
        record = result.scalar_one_or_none()
        return _to_token(record) if record is not None else None

    async def get_latest_for_user(
        self, user_id: uuid.UUID, kind: TokenKind
    ) -> ValidationToken | None:
        """Fetch the newest unused token of a kind for a user.

        Args:
            user_id: Owning user.
            kind: Token kind.

        Returns:
            Token snapshot if one exists, None otherwise.
        """
        stmt = (
            select(ValidationTokenRecord)
            .where(
                ValidationTokenRecord.user_id == user_id,
                ValidationTokenRecord.kind == kind.value,
                ValidationTokenRecord.used_at.is_(None),
            )
            .order_by(
                ValidationTokenRecord.created_at.desc(),
                ValidationTokenRecord.id.desc(),
            )
            .limit(1)
        )
        result = await self._db.execute(stmt)
        record = result.scalar_one_or_none()
        return _to_token(record) if record is not None else None

    async def record_attempt(
        self, validation_id: str, now: datetime
    ) -> ValidationToken | None:
        """Atomically charge one attempt and commit.

        Uses WHERE attempts < max_attempts so parallel guesses can never push
        the counter past the ceiling.

        Args:
            validation_id: Token to charge.
            now: Current time; an expired token is never charged.

        Returns:
            Snapshot after the increment, or None if the guard failed.
        """
        stmt = (
            update(ValidationTokenRecord)
            .where(
                ValidationTokenRecord.validation_id == validation_id,
                ValidationTokenRecord.attempts < ValidationTokenRecord.max_attempts,
                ValidationTokenRecord.used_at.is_(None),
                ValidationTokenRecord.expires_at >= now,
            )
            .values(attempts=ValidationTokenRecord.attempts + 1)
            .returning(ValidationTokenRecord)
            .execution_options(populate_existing=True)
        )
        return await self._apply(stmt)

    async def mark_used(
        self, validation_id: str, now: datetime
    ) -> ValidationToken | None:
        """Atomically consume a token and commit.

        Uses WHERE used_at IS NULL so exactly one caller consumes it.

        Args:
            validation_id: Token to consume.
            now: Consumption timestamp.

        Returns:
            Snapshot with used_at set, or None if already consumed or missing.
        """
        stmt = (
            update(ValidationTokenRecord)
            .where(
                ValidationTokenRecord.validation_id == validation_id,
                ValidationTokenRecord.used_at.is_(None),
            )
            .values(used_at=now)
            .returning(ValidationTokenRecord)
            .execution_options(populate_existing=True)
        )
        return await self._apply(stmt)

    async def _apply(self, stmt: Any) -> ValidationToken | None:
        result = await self._db.execute(stmt)
        record = result.scalar_one_or_none()
        token = _to_token(record) if record is not None else None
        await self._db.commit()
        return token

    async def delete(self, validation_id: str) -> bool:
        """Delete one token and commit.

        Args:
            validation_id: Token to delete.

        Returns:
            True if a row was removed.
        """
        result = cast(
            CursorResult[Any],
            await self._db.execute(
                delete(ValidationTokenRecord).where(
                    ValidationTokenRecord.validation_id == validation_id
                )
            ),
        )
        await self._db.commit()
        rows_deleted: int = result.rowcount
        return rows_deleted > 0

    async def delete_unused_for_user(self, user_id: uuid.UUID, kind: TokenKind) -> int:
        """Delete every unused token of a kind for a user and commit.

        Consumed tokens are kept; they are terminal and never resolvable again.

        Args:
            user_id: Owning user.
            kind: Token kind.

        Returns:
            Number of tokens removed.
        """
        result = cast(
            CursorResult[Any],
            await self._db.execute(
                delete(ValidationTokenRecord).where(
                    ValidationTokenRecord.user_id == user_id,
                    ValidationTokenRecord.kind == kind.value,
                    ValidationTokenRecord.used_at.is_(None),
                )
            ),
        )
        await self._db.commit()
        rows_deleted: int = result.rowcount
        return rows_deleted
