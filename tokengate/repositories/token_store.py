"""TokenStore protocol - persistence seam for validation tokens.

AuthOrchestrator depends on this protocol, not on SQLAlchemy, so the flows
can run against the PostgreSQL repository in production and an in-memory
store in tests.

Every mutating method is a single atomic operation and is durable when it
returns. record_attempt and mark_used are compare-and-update operations:
they apply only while their guard holds and report whether they won.
"""

import uuid
from datetime import datetime
from typing import Protocol

from tokengate.services.token_policy import TokenKind, ValidationToken


class DuplicateTokenError(Exception):
    """Raised by create() on a validation_id or unused-secret collision."""


class TokenStore(Protocol):
    """Protocol for validation token persistence."""

    # -------------------------------------------------------------------------
    # Creation and lookup
    # -------------------------------------------------------------------------

    async def create(self, token: ValidationToken) -> ValidationToken:
        """Persist a new token.

        Args:
            token: Snapshot built by token_policy.new_token().

        Returns:
            The stored snapshot.

        Raises:
            DuplicateTokenError: If validation_id already exists, or secret_hash
                belongs to an unused token.
        """
        ...

    async def get(self, validation_id: str) -> ValidationToken | None:
        """Fetch a token by its public identifier."""
        ...

    async def get_latest_for_user(
        self, user_id: uuid.UUID, kind: TokenKind
    ) -> ValidationToken | None:
        """Fetch the most recently created unused token of a kind for a user."""
        ...

    # -------------------------------------------------------------------------
    # Atomic transitions
    # -------------------------------------------------------------------------

    async def record_attempt(
        self, validation_id: str, now: datetime
    ) -> ValidationToken | None:
        """Charge one attempt against a token.

        Applies only while attempts < max_attempts, the token is unused and
        not expired at ``now``.

        Returns:
            Snapshot after the increment, or None if the guard failed.
        """
        ...

    async def mark_used(self, validation_id: str, now: datetime) -> ValidationToken | None:
        """Consume a token.

        Applies only while used_at is NULL.

        Returns:
            Snapshot with used_at set, or None if already consumed or missing.
        """
        ...

    # -------------------------------------------------------------------------
    # Deletion
    # -------------------------------------------------------------------------

    async def delete(self, validation_id: str) -> bool:
        """Delete one token. Returns True if a row was removed."""
        ...

    async def delete_unused_for_user(self, user_id: uuid.UUID, kind: TokenKind) -> int:
        """Delete every unused token of a kind for a user.

        Returns:
            Number of tokens removed.
        """
        ...
