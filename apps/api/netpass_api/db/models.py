"""SQLAlchemy ORM Models for netpass."""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import BIGINT, INTEGER, NUMERIC, TEXT, TIMESTAMP, CheckConstraint, Index, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# BIGINT autoincrement only works as INTEGER PRIMARY KEY on SQLite
_BIGINT_PK = BIGINT().with_variant(INTEGER(), "sqlite")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class Customer(Base):
    """Customer model - identity anchor, one row per email.

    created_at is write-once; updated_at is bumped on every successful payment.
    """

    __tablename__ = "customers"

    id: Mapped[int] = mapped_column(_BIGINT_PK, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(TEXT, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        UniqueConstraint("email", name="uq_customers_email"),
    )


class Transaction(Base):
    """Transaction model - append-only payment ledger.

    One row per successful payment event. Never updated or deleted; the
    active_subscriptions projection can be rebuilt from this table.
    """

    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(_BIGINT_PK, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(TEXT, nullable=False)  # logical ref to customers.email

    # Gateway reference (dedup is checked by the reconciler, not enforced here)
    reference: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)

    paid_on: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    expires_on: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    service: Mapped[str] = mapped_column(TEXT, nullable=False)
    amount: Mapped[Decimal] = mapped_column(NUMERIC(14, 2), nullable=False)
    currency: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_transactions_amount_non_negative"),
        CheckConstraint("expires_on > paid_on", name="ck_transactions_window"),
        Index("idx_transactions_email_paid_on", "email", "paid_on"),
        Index("idx_transactions_reference", "reference"),
    )


class ActiveSubscription(Base):
    """ActiveSubscription model - current entitlement projection.

    Zero or one row per email. Overwritten only by a payment whose
    (paid_on, reference) sorts after the stored one, so out-of-order delivery
    converges on the latest payment. Expiry is evaluated lazily at access-check time.
    """

    __tablename__ = "active_subscriptions"

    id: Mapped[int] = mapped_column(_BIGINT_PK, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(TEXT, nullable=False)
    paid_on: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    expires_on: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    service: Mapped[str] = mapped_column(TEXT, nullable=False)
    reference: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        UniqueConstraint("email", name="uq_active_subscriptions_email"),
        CheckConstraint("expires_on > paid_on", name="ck_active_subscriptions_window"),
    )


class WebhookDedupEvent(Base):
    """Webhook dedup gate table for concurrent idempotency.

    Guarantees at most one business-processing per (provider, dedup_key) pair
    even under concurrent redelivery from the gateway.

    Atomic gate: INSERT ON CONFLICT (provider, dedup_key) DO NOTHING
      → row inserted  : first/re-processing handler → continue
      → no row        : duplicate/concurrent → ACK immediately (zero side effects)
    """

    __tablename__ = "webhook_dedup_events"

    id: Mapped[int] = mapped_column(_BIGINT_PK, primary_key=True, autoincrement=True)

    provider: Mapped[str] = mapped_column(TEXT, nullable=False)     # paystack
    dedup_key: Mapped[str] = mapped_column(TEXT, nullable=False)    # ref_<reference>

    first_seen_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow
    )
    last_seen_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    status: Mapped[str] = mapped_column(
        TEXT, nullable=False, default="processing"
    )  # processing | done | failed

    # SHA-256 hex of request body (never the raw payload)
    request_hash: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)

    __table_args__ = (
        UniqueConstraint("provider", "dedup_key", name="uq_webhook_dedup_events"),
        Index("idx_webhook_dedup_status", "status"),
        Index("idx_webhook_dedup_first_seen", "first_seen_at"),
    )
