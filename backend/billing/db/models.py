"""SQLAlchemy ORM models for identity lookup, events and the ledger."""

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JsonType = JSON().with_variant(JSONB(), "postgresql")


def new_id(prefix: str) -> str:
    """Generate a prefixed identifier, e.g. ``org_3f2a...``."""
    return f"{prefix}_{uuid.uuid4().hex}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class Organization(Base):
    """Organization table - top-level tenancy boundary."""

    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=lambda: new_id("org"))
    name: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    memberships: Mapped[list["Membership"]] = relationship(
        "Membership", back_populates="organization"
    )


class User(Base):
    """User table - identities that can hold memberships or customer records."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=lambda: new_id("usr"))
    email: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Session-based auth provider id
    better_auth_id: Mapped[str | None] = mapped_column(Text, unique=True, nullable=True)
    # Legacy external auth-provider id, may appear on API keys
    external_auth_id: Mapped[str | None] = mapped_column(Text, unique=True, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    memberships: Mapped[list["Membership"]] = relationship("Membership", back_populates="user")


class Membership(Base):
    """Membership table - a user's access to an organization."""

    __tablename__ = "memberships"
    __table_args__ = (
        UniqueConstraint("user_id", "organization_id", name="uq_membership_user_org"),
        Index("idx_membership_user_focused", "user_id", "focused"),
    )

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=lambda: new_id("mem"))
    user_id: Mapped[str] = mapped_column(Text, ForeignKey("users.id"), nullable=False)
    organization_id: Mapped[str] = mapped_column(
        Text, ForeignKey("organizations.id"), nullable=False
    )
    focused: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    livemode: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    deactivated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    user: Mapped["User"] = relationship("User", back_populates="memberships")
    organization: Mapped["Organization"] = relationship(
        "Organization", back_populates="memberships"
    )


class ApiKey(Base):
    """API key table - only the sha256 of the token is stored."""

    __tablename__ = "api_keys"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=lambda: new_id("key"))
    organization_id: Mapped[str] = mapped_column(
        Text, ForeignKey("organizations.id"), nullable=False
    )
    token_hash: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    type: Mapped[str] = mapped_column(Text, nullable=False)
    livemode: Mapped[bool] = mapped_column(Boolean, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    # Internal users.id or users.external_auth_id of the key's creator
    user_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Billing portal tokens only
    billing_portal_user_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )


class Customer(Base):
    """Customer table - end customers of an organization, partitioned by livemode."""

    __tablename__ = "customers"
    __table_args__ = (Index("idx_customer_org_user", "organization_id", "user_id"),)

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=lambda: new_id("cus"))
    organization_id: Mapped[str] = mapped_column(
        Text, ForeignKey("organizations.id"), nullable=False
    )
    user_id: Mapped[str | None] = mapped_column(Text, ForeignKey("users.id"), nullable=True)
    email: Mapped[str] = mapped_column(Text, nullable=False)
    livemode: Mapped[bool] = mapped_column(Boolean, nullable=False)
    archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    billing_portal_user_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )


class AuthSession(Base):
    """Webapp session table - only the sha256 of the session token is stored."""

    __tablename__ = "auth_sessions"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=lambda: new_id("ses"))
    token_hash: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    better_auth_id: Mapped[str] = mapped_column(Text, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )


class Event(Base):
    """Event table - domain events persisted with the producing transaction."""

    __tablename__ = "events"
    __table_args__ = (Index("idx_event_org_type", "organization_id", "type"),)

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=lambda: new_id("evt"))
    hash: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    type: Mapped[str] = mapped_column(Text, nullable=False)
    organization_id: Mapped[str] = mapped_column(Text, nullable=False)
    livemode: Mapped[bool] = mapped_column(Boolean, nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JsonType, nullable=False, default=dict)
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class LedgerTransaction(Base):
    """Ledger transaction table - one row per processed ledger command."""

    __tablename__ = "ledger_transactions"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=lambda: new_id("ltx"))
    organization_id: Mapped[str] = mapped_column(Text, nullable=False)
    livemode: Mapped[bool] = mapped_column(Boolean, nullable=False)
    type: Mapped[str] = mapped_column(Text, nullable=False)
    subscription_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    initiating_source_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    entries: Mapped[list["LedgerEntry"]] = relationship(
        "LedgerEntry", back_populates="ledger_transaction"
    )


class LedgerEntry(Base):
    """Ledger entry table - append-only."""

    __tablename__ = "ledger_entries"
    __table_args__ = (Index("idx_ledger_entry_account", "ledger_account_id"),)

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=lambda: new_id("led"))
    ledger_transaction_id: Mapped[str] = mapped_column(
        Text, ForeignKey("ledger_transactions.id"), nullable=False
    )
    ledger_account_id: Mapped[str] = mapped_column(Text, nullable=False)
    organization_id: Mapped[str] = mapped_column(Text, nullable=False)
    livemode: Mapped[bool] = mapped_column(Boolean, nullable=False)
    direction: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    entry_type: Mapped[str] = mapped_column(Text, nullable=False)
    source_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    ledger_transaction: Mapped["LedgerTransaction"] = relationship(
        "LedgerTransaction", back_populates="entries"
    )
