"""UserStore protocol - the account operations the auth flows need.

The token flows only read accounts, create them at registration, and
update two things: the password hash and the email-verified flag.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol


class DuplicateEmailError(Exception):
    """Raised by create() when another account already holds the email."""


@dataclass(frozen=True)
class UserAccount:
    """Snapshot of a user account.

    Attributes:
        id: Stable user identifier.
        email: Lowercased email address.
        name: Display name.
        password_hash: bcrypt hash.
        email_verified: When the email was verified, None if unverified.
    """

    id: uuid.UUID
    email: str
    name: str | None
    password_hash: str
    email_verified: datetime | None = None

    @property
    def is_email_verified(self) -> bool:
        """Whether the account's email address has been confirmed."""
        return self.email_verified is not None


class UserStore(Protocol):
    """Protocol for user account persistence."""

    async def find_by_email(self, email: str) -> UserAccount | None:
        """Fetch an account by email (case-insensitive)."""
        ...

    async def find_by_id(self, user_id: uuid.UUID) -> UserAccount | None:
        """Fetch an account by identifier."""
        ...

    async def create(
        self, *, email: str, name: str | None, password_hash: str
    ) -> UserAccount:
        """Create an unverified account. Email is normalized to lowercase.

        Raises:
            DuplicateEmailError: If the email is already registered.
        """
        ...

    async def update_password_hash(self, user_id: uuid.UUID, password_hash: str) -> bool:
        """Replace an account's password hash. Returns False if the user is gone."""
        ...

    async def set_email_verified(self, user_id: uuid.UUID, verified_at: datetime) -> bool:
        """Mark an account's email as verified. Returns False if the user is gone."""
        ...
