"""Signature cache table.

Revision ID: 001
Revises:
Create Date: 2026-10-18

signature_cache: analysis results keyed by request signature, ephemeral
(expires_at set) or saved as a permanent insight (expires_at NULL).
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "signature_cache",
        sa.Column("signature", sa.String(64), nullable=False, comment="SHA-256 of the normalized request"),
        sa.Column("profile_id", sa.String(255), nullable=False),
        sa.Column("response", postgresql.JSONB(), nullable=False, comment="Opaque analysis payload"),
        sa.Column("normalized_input", postgresql.JSONB(), nullable=False),
        sa.Column("baseline_ipp", sa.Numeric(5, 2), nullable=False),
        sa.Column("baseline_but", sa.Numeric(5, 2), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True, comment="NULL = saved insight"),
        sa.Column("user_id", sa.String(255), nullable=True, comment="Caller who may claim/save the entry"),
        sa.Column("is_saved", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("tags", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.PrimaryKeyConstraint("signature"),
        sa.CheckConstraint(
            "expires_at IS NULL OR expires_at > created_at",
            name="ck_signature_cache_expires_after_created",
        ),
    )
    # Profile-wide invalidation
    op.create_index("ix_signature_cache_profile_id", "signature_cache", ["profile_id"])
    # Saved insight listing and quota counting
    op.create_index(
        "ix_signature_cache_user_saved",
        "signature_cache",
        ["user_id", "is_saved", "created_at"],
    )
    # Index for TTL cleanup worker
    op.create_index("ix_signature_cache_expires_at", "signature_cache", ["expires_at"])


def downgrade() -> None:
    op.drop_index("ix_signature_cache_expires_at", table_name="signature_cache")
    op.drop_index("ix_signature_cache_user_saved", table_name="signature_cache")
    op.drop_index("ix_signature_cache_profile_id", table_name="signature_cache")
    op.drop_table("signature_cache")
