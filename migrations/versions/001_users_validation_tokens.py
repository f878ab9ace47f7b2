"""Create users and validation_tokens tables.

Revision ID: 001_users_validation_tokens
Revises: 000_enable_extensions
Create Date: 2026-10-18

- users: accounts with bcrypt password hashes
- validation_tokens: typed, single-use, expiring secrets. Only the SHA-256
  digest of a secret is stored.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001_users_validation_tokens"
down_revision: str | None = "000_enable_extensions"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_KIND_VALUES = (
    "'email_verification', 'login_verification', 'password_reset', "
    "'email_change', 'phone_verification', 'two_factor', 'account_recovery'"
)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column(
            "id",
            sa.UUID(),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("email_verified", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )

    op.create_table(
        "validation_tokens",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("validation_id", sa.String(64), nullable=False),
        sa.Column("secret_hash", sa.String(64), nullable=False),
        sa.Column("kind", sa.String(30), nullable=False),
        sa.Column(
            "user_id",
            sa.UUID(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False),
        sa.Column(
            "context",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.CheckConstraint(
            f"kind IN ({_KIND_VALUES})", name="ck_validation_tokens_kind"
        ),
        sa.CheckConstraint(
            "attempts >= 0 AND attempts <= max_attempts",
            name="ck_validation_tokens_attempts_bounded",
        ),
        sa.UniqueConstraint(
            "validation_id", name="uq_validation_tokens_validation_id"
        ),
    )
    op.create_index(
        "ix_validation_tokens_user_kind", "validation_tokens", ["user_id", "kind"]
    )
    op.create_index(
        "uq_validation_tokens_secret_hash_unused",
        "validation_tokens",
        ["secret_hash"],
        unique=True,
        postgresql_where=sa.text("used_at IS NULL"),
    )


def downgrade() -> None:
    op.drop_index(
        "uq_validation_tokens_secret_hash_unused", table_name="validation_tokens"
    )
    op.drop_index("ix_validation_tokens_user_kind", table_name="validation_tokens")
    op.drop_table("validation_tokens")
    op.drop_table("users")
