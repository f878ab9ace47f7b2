"""Validation token model - typed, single-use, expiring secrets.

One row per issued token. Rows are never reactivated: regeneration deletes
the stale row and inserts a new one with a new validation_id.
"""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from tokengate.models.base import Base

_KIND_VALUES = (
    "'email_verification', 'login_verification', 'password_reset', "
    "'email_change', 'phone_verification', 'two_factor', 'account_recovery'"
)


class ValidationTokenRecord(Base):
    """Stored validation token.

    Attributes:
        id: Internal sequence.
        validation_id: Public identifier used in links (64 hex chars).
        secret_hash: SHA-256 hex digest of the secret. Plaintext is never stored.
            Unique among unused tokens only.
        kind: Action the token gates.
        user_id: Owning user.
        email: Owner's email at creation time.
        created_at: Creation timestamp.
        expires_at: Fixed expiry, computed from kind at creation.
        used_at: Consumption timestamp. NULL = unused.
        attempts: Attempts recorded so far.
        max_attempts: Attempt ceiling for this token.
        context: Client metadata captured at creation.
    """

    __tablename__ = "validation_tokens"
    __table_args__ = (
        CheckConstraint(f"kind IN ({_KIND_VALUES})", name="ck_validation_tokens_kind"),
        CheckConstraint(
            "attempts >= 0 AND attempts <= max_attempts",
            name="ck_validation_tokens_attempts_bounded",
        ),
        UniqueConstraint("validation_id", name="uq_validation_tokens_validation_id"),
        Index(
            "uq_validation_tokens_secret_hash_unused",
            "secret_hash",
            unique=True,
            postgresql_where=text("used_at IS NULL"),
        ),
        Index("ix_validation_tokens_user_kind", "user_id", "kind"),
    )

    id: Mapped[int] = mapped_column(
        BigInteger,
        primary_key=True,
        autoincrement=True,
    )
    validation_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )
    secret_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )
    kind: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(
        nullable=False,
    )
    used_at: Mapped[datetime | None] = mapped_column(
        nullable=True,
    )
    attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        server_default=text("0"),
        default=0,
    )
    max_attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )
    context: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        server_default=text("'{}'::jsonb"),
        default=dict,
    )
