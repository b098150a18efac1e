"""
SQLAlchemy database models for opphub.

All models use:
- UUIDv7 primary keys (time-sortable), except users (email PK)
- snake_case column names
- Plural table names
- TIMESTAMPTZ with UTC for all timestamps
- Hard deletes (no soft delete columns)
"""

import uuid
from datetime import UTC, datetime

import sqlalchemy as sa
from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def generate_uuid7() -> uuid.UUID:
    """Generate a UUIDv7 (time-sortable UUID)."""
    import time

    timestamp_ms = int(time.time() * 1000)
    rand_bytes = uuid.uuid4().bytes[6:]

    uuid_bytes = (
        timestamp_ms.to_bytes(6, "big")
        + bytes([0x70 | (rand_bytes[0] & 0x0F)])  # Version 7
        + bytes([0x80 | (rand_bytes[1] & 0x3F)])  # Variant
        + rand_bytes[2:]
    )
    return uuid.UUID(bytes=uuid_bytes)


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all models."""


class User(Base):
    """User account model.

    PK is email (natural key). Opportunity membership lives in
    opportunity_memberships; global markers live in platform_role_assignments.
    """

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), primary_key=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )


class PlatformRoleAssignment(Base):
    """Global role markers (admin, gov).

    These are not scoped to any opportunity. 'admin' overrides every
    opportunity-level admin check; 'gov' is surfaced to viewers as a flag.
    """

    __tablename__ = "platform_role_assignments"

    provider_name: Mapped[str] = mapped_column(String(63), primary_key=True)
    email: Mapped[str] = mapped_column(String(255), primary_key=True)
    role_name: Mapped[str] = mapped_column(String(63), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )


class APIToken(Base):
    """Long-lived bearer tokens.

    Tokens are hashed at rest (SHA-256). The raw token value is only
    returned once at creation time. Lookup by hash on every request
    (indexed column).
    """

    __tablename__ = "api_tokens"

    id: Mapped[str] = mapped_column(String(63), primary_key=True)  # "at-{hex}"
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    description: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    user_email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )

    __table_args__ = (
        Index("ix_api_tokens_user_email", "user_email"),
    )


# --- Opportunity Models ---


class Opportunity(Base):
    """A shared resource that users request membership of.

    ``code`` is assigned once at creation and never changes, even if the
    title does: every membership role string is derived from it.
    """

    __tablename__ = "opportunities"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=generate_uuid7
    )
    code: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    title: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    short: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    website: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    program_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    project_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)

    # Audit
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    memberships: Mapped[list["OpportunityMembership"]] = relationship(
        back_populates="opportunity", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        sa.UniqueConstraint("code", name="uq_opportunities_code"),
    )


class OpportunityMembership(Base):
    """One (opportunity, user) relationship, holding exactly one state.

    The composite primary key makes conflicting states for the same pair
    unrepresentable.
    """

    __tablename__ = "opportunity_memberships"

    opportunity_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("opportunities.id", ondelete="CASCADE"),
        primary_key=True,
    )
    user_email: Mapped[str] = mapped_column(String(255), primary_key=True)
    state: Mapped[str] = mapped_column(String(20), nullable=False)  # pending, member, admin

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    opportunity: Mapped["Opportunity"] = relationship(back_populates="memberships")

    __table_args__ = (
        Index("ix_opportunity_memberships_user_email", "user_email"),
        Index("ix_opportunity_memberships_state", "opportunity_id", "state"),
        sa.CheckConstraint(
            "state IN ('pending', 'member', 'admin')",
            name="ck_opportunity_memberships_state",
        ),
    )
