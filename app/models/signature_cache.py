"""Signature cache model — analysis results keyed by request signature.

An entry is ephemeral while ``expires_at`` is set and permanent (a saved
insight) once ``expires_at`` is NULL.
"""

from datetime import datetime

from sqlalchemy import JSON, Boolean, CheckConstraint, Index, Numeric, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, UTCDateTime

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in dev/tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class SignatureCacheEntry(Base):
    """Cached analysis for one normalized request."""

    __tablename__ = "signature_cache"
    __table_args__ = (
        CheckConstraint(
            "expires_at IS NULL OR expires_at > created_at",
            name="ck_signature_cache_expires_after_created",
        ),
        Index("ix_signature_cache_user_saved", "user_id", "is_saved", "created_at"),
        Index("ix_signature_cache_expires_at", "expires_at"),
    )

    signature: Mapped[str] = mapped_column(String(64), primary_key=True)
    profile_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    response: Mapped[dict] = mapped_column(JSONType, nullable=False)
    normalized_input: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)

    # Baseline snapshot at cache time
    baseline_ipp: Mapped[float] = mapped_column(Numeric(5, 2, asdecimal=False), nullable=False)
    baseline_but: Mapped[float] = mapped_column(Numeric(5, 2, asdecimal=False), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        server_default=func.now(),
    )
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # Insight fields
    user_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_saved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    tags: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)

    @property
    def is_permanent(self) -> bool:
        return self.expires_at is None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at

    @property
    def summary(self) -> str | None:
        """Summary text of the cached response, if the producer set one."""
        if isinstance(self.response, dict):
            value = self.response.get("summary")
            return value if isinstance(value, str) else None
        return None

    def __repr__(self) -> str:
        state = "permanent" if self.is_permanent else "ephemeral"
        return f"<SignatureCacheEntry {self.signature[:12]} {state} user={self.user_id}>"
