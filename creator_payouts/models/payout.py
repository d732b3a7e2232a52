"""SQLAlchemy models for creator payouts."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, relationship


class Base(DeclarativeBase):
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class Payout(Base):
    """
    One attempt to move earned funds from the platform to a creator.

    Rows are never hard-deleted (audit requirement); ``deleted_at`` marks a
    logical delete. ``status_history`` is append-only and is only ever
    written through ``PayoutLedger.apply_transition``. ``provider_transfer_id``
    correlates provider callbacks and is unique across payouts.
    """

    __tablename__ = "payouts"

    id = Column(String(36), primary_key=True, default=_new_id)
    creator_id = Column(String(64), ForeignKey("creator_profiles.id"), nullable=False, index=True)

    # Amounts: amount/currency are what the creator receives
    amount = Column(Numeric(14, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    source_amount = Column(Numeric(14, 2), nullable=True)
    source_currency = Column(String(3), nullable=True)
    exchange_rate = Column(Numeric(18, 8), nullable=True)
    provider_fee = Column(Numeric(14, 2), nullable=True)
    platform_fee = Column(Numeric(14, 2), nullable=True)

    # Destination (masked; full numbers only ever live encrypted on the bank account)
    recipient_account_mask = Column(String(20), nullable=True)
    recipient_account_name = Column(String(255), nullable=True)
    recipient_bank_code = Column(String(20), nullable=True)

    # Provider linkage
    provider = Column(String(30), nullable=True)  # "wise", "stripe_connect"
    provider_transfer_id = Column(String(100), nullable=True, unique=True)
    provider_recipient_id = Column(String(100), nullable=True)
    provider_quote_id = Column(String(100), nullable=True)
    reference = Column(String(150), nullable=False, index=True)  # idempotency reference

    # Lifecycle
    status = Column(String(20), nullable=False, default="pending", index=True)
    status_history = Column(JSON, nullable=False, default=list)
    error_code = Column(String(50), nullable=True)
    error_message = Column(Text, nullable=True)
    has_active_issues = Column(Boolean, nullable=False, default=False)
    balance_deducted = Column(Boolean, nullable=False, default=False)

    reason = Column(String(255), nullable=True)
    payout_metadata = Column("metadata", JSON, nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    creator = relationship("CreatorProfile", back_populates="payouts", lazy="raise")
    audit_logs = relationship("AuditLog", back_populates="payout", lazy="raise")


class AuditLog(Base):
    """
    Immutable audit trail entry.

    Every orchestration step (request, provider call, status change,
    webhook receipt) gets an audit log entry. These are append-only and
    never modified.
    """

    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    payout_id = Column(String(36), ForeignKey("payouts.id"), nullable=True, index=True)
    batch_id = Column(String(36), nullable=True, index=True)
    action = Column(String(50), nullable=False)
    details = Column(Text, nullable=True)
    timestamp = Column(DateTime(timezone=True), default=_utcnow)

    payout = relationship("Payout", back_populates="audit_logs")


class CreatorProfile(Base):
    """Creator profile as owned by the main application."""

    __tablename__ = "creator_profiles"

    id = Column(String(64), primary_key=True)
    username = Column(String(100), nullable=False)
    display_name = Column(String(200), nullable=True)
    country_code = Column(String(2), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    payouts = relationship("Payout", back_populates="creator", lazy="raise")


class CreatorBankAccount(Base):
    """A creator's payout destination. Sensitive numbers are stored encrypted."""

    __tablename__ = "creator_bank_accounts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    creator_id = Column(String(64), ForeignKey("creator_profiles.id"), nullable=False, index=True)
    account_number_encrypted = Column(Text, nullable=False)
    routing_number_encrypted = Column(Text, nullable=True)
    account_holder_name = Column(String(255), nullable=False)
    currency = Column(String(3), nullable=True)
    is_verified = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class CreatorBalance(Base):
    """Earned, withdrawable funds per creator and currency."""

    __tablename__ = "creator_balances"
    __table_args__ = (
        UniqueConstraint("creator_id", "currency", name="uq_creator_balance_currency"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    creator_id = Column(String(64), ForeignKey("creator_profiles.id"), nullable=False, index=True)
    currency = Column(String(3), nullable=False)
    available_amount = Column(Numeric(14, 2), nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
