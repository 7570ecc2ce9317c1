"""activation codes and principal sessions

Revision ID: 0001
Revises:
Create Date: 2026-10-19 09:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from pos_pairing.database.base import UTCDateTime, UUIDType

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "activation_codes",
        sa.Column("id", UUIDType(), nullable=False),
        sa.Column("code", sa.String(length=12), nullable=False),
        sa.Column("device_ref", sa.String(length=64), nullable=True),
        sa.Column("created_by", sa.String(length=64), nullable=True),
        sa.Column("fingerprint", sa.String(length=255), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("max_attempts", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("issued_at", UTCDateTime(), nullable=False),
        sa.Column("expires_at", UTCDateTime(), nullable=False),
        sa.Column("bound_at", UTCDateTime(), nullable=True),
        sa.Column("expired_at", UTCDateTime(), nullable=True),
        sa.Column("created_at", UTCDateTime(), nullable=False),
        sa.Column("updated_at", UTCDateTime(), nullable=False),
        sa.CheckConstraint("status IN ('UNUSED', 'BOUND', 'EXPIRED')", name="ck_activation_codes_status"),
        sa.CheckConstraint("attempts >= 0", name="ck_activation_codes_attempts"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_activation_codes_code", "activation_codes", ["code"], unique=True)
    op.create_index("ix_activation_codes_device_ref", "activation_codes", ["device_ref"])
    op.create_index("ix_activation_codes_status", "activation_codes", ["status"])
    op.create_index("ix_activation_codes_expires_at", "activation_codes", ["expires_at"])
    op.create_index(
        "uq_activation_codes_bound_fingerprint",
        "activation_codes",
        ["fingerprint"],
        unique=True,
        postgresql_where=sa.text("status = 'BOUND'"),
        sqlite_where=sa.text("status = 'BOUND'"),
    )

    op.create_table(
        "principal_sessions",
        sa.Column("id", UUIDType(), nullable=False),
        sa.Column("principal_id", sa.String(length=64), nullable=False),
        sa.Column("access_token_hash", sa.String(length=64), nullable=False),
        sa.Column("refresh_token_hash", sa.String(length=64), nullable=False),
        sa.Column("refresh_token_jti", sa.String(length=36), nullable=True),
        sa.Column("access_token_expires_at", UTCDateTime(), nullable=False),
        sa.Column("refresh_token_expires_at", UTCDateTime(), nullable=False),
        sa.Column("ip_address", sa.String(length=45), nullable=True),
        sa.Column("user_agent", sa.String(length=500), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("last_activity_at", UTCDateTime(), nullable=False),
        sa.Column("revoked_at", UTCDateTime(), nullable=True),
        sa.Column("created_at", UTCDateTime(), nullable=False),
        sa.Column("updated_at", UTCDateTime(), nullable=False),
        sa.CheckConstraint("status IN ('ACTIVE', 'EXPIRED', 'REVOKED')", name="ck_principal_sessions_status"),
        sa.CheckConstraint(
            "access_token_expires_at <= refresh_token_expires_at",
            name="ck_principal_sessions_expiry_order",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("access_token_hash"),
        sa.UniqueConstraint("refresh_token_hash"),
    )
    op.create_index("ix_principal_sessions_principal_id", "principal_sessions", ["principal_id"])
    op.create_index("ix_principal_sessions_status", "principal_sessions", ["status"])
    op.create_index("ix_principal_sessions_refresh_token_expires_at", "principal_sessions", ["refresh_token_expires_at"])
    op.create_index("ix_principal_sessions_principal_status", "principal_sessions", ["principal_id", "status"])


def downgrade() -> None:
    op.drop_table("principal_sessions")
    op.drop_table("activation_codes")
