"""Webhook dedup gate: atomic INSERT ON CONFLICT for concurrent idempotency.

Guarantees at most one successful processing per (provider, dedup_key) pair,
even when Paystack redelivers the same event concurrently.

Design:
  1. INSERT ON CONFLICT (provider, dedup_key) DO NOTHING RETURNING id
       → row returned  : this request is the FIRST processor → continue
       → no row        : conflict exists → check if it's a re-processable failure
  2. If no row (conflict): UPDATE ... WHERE status='failed' RETURNING id
       → row returned  : previous attempt failed; re-claim for re-processing
       → no row        : status is 'done' or 'processing' (true duplicate) → ACK

The UNIQUE constraint guarantees exactly one INSERT wins under concurrent load.
The UPDATE in step 2 is also atomic (row-level lock).
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from netpass_api.billing.errors import StoreError
from netpass_api.db.models import WebhookDedupEvent

logger = logging.getLogger(__name__)

PROVIDER_PAYSTACK = "paystack"


# ---------------------------------------------------------------------------
# Dedup key extraction (deterministic per provider)
# ---------------------------------------------------------------------------


def payment_dedup_key(reference: str) -> str:
    """Dedup key for a Paystack payment: ``ref_<reference>``.

    The reference is stable across redeliveries and is shared by the webhook
    and the verify route, so both paths contend for the same gate row.

    Raises ValueError if the reference is empty.
    """
    if not reference:
        raise ValueError("Cannot derive Paystack dedup_key: 'reference' missing")
    return f"ref_{reference}"


# ---------------------------------------------------------------------------
# Atomic dedup gate
# ---------------------------------------------------------------------------


def _insert(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(WebhookDedupEvent)
    if dialect == "sqlite":
        return sqlite.insert(WebhookDedupEvent)
    raise StoreError(f"Unsupported database dialect: {dialect}", operation="try_acquire_dedup")


def try_acquire_dedup(
    db: Session,
    provider: str,
    dedup_key: str,
    request_hash: Optional[str] = None,
) -> bool:
    """Attempt to atomically claim processing rights for (provider, dedup_key).

    Returns:
        True:  INSERT succeeded OR a previous 'failed' record was reclaimed.
                The caller is the FIRST (or re-processing) handler → proceed.
        False: A 'done' or concurrent 'processing' record already exists.
                The caller is a duplicate → ACK, zero side effects.

    Raises:
        StoreError: If the gate itself cannot be read or written
    """
    now = datetime.now(timezone.utc)

    try:
        # Step 1: atomic insert
        insert_stmt = (
            _insert(db)
            .values(
                provider=provider,
                dedup_key=dedup_key,
                first_seen_at=now,
                status="processing",
                request_hash=request_hash,
            )
            .on_conflict_do_nothing(index_elements=["provider", "dedup_key"])
            .returning(WebhookDedupEvent.id)
        )
        row = db.execute(insert_stmt).first()

        if row is not None:
            db.commit()
            logger.debug(
                "WEBHOOK_DEDUP_ACQUIRED",
                extra={"provider": provider, "dedup_key_prefix": dedup_key[:16]},
            )
            return True

        # Step 2: check if it's a re-processable failure
        retry_stmt = (
            update(WebhookDedupEvent)
            .where(
                WebhookDedupEvent.provider == provider,
                WebhookDedupEvent.dedup_key == dedup_key,
                WebhookDedupEvent.status == "failed",
            )
            .values(status="processing", last_seen_at=now)
            .returning(WebhookDedupEvent.id)
        )
        retry_row = db.execute(retry_stmt).first()
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StoreError(f"dedup gate failed: {type(exc).__name__}", operation="try_acquire_dedup") from exc

    if retry_row is not None:
        logger.info(
            "WEBHOOK_DEDUP_RETRY_RECLAIMED",
            extra={"provider": provider, "dedup_key_prefix": dedup_key[:16]},
        )
        return True

    # True duplicate (status = 'done' or concurrent 'processing')
    logger.info(
        "WEBHOOK_DEDUP_DUPLICATE",
        extra={"provider": provider, "dedup_key_prefix": dedup_key[:16]},
    )
    return False


def _set_status(db: Session, provider: str, dedup_key: str, status: str) -> None:
    try:
        db.execute(
            update(WebhookDedupEvent)
            .where(
                WebhookDedupEvent.provider == provider,
                WebhookDedupEvent.dedup_key == dedup_key,
            )
            .values(status=status, last_seen_at=datetime.now(timezone.utc))
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StoreError(f"dedup status update failed: {type(exc).__name__}", operation=f"mark_dedup_{status}") from exc


def mark_dedup_done(db: Session, provider: str, dedup_key: str) -> None:
    """Mark dedup record as 'done' after successful business processing."""
    _set_status(db, provider, dedup_key, "done")


def mark_dedup_failed(db: Session, provider: str, dedup_key: str) -> None:
    """Mark dedup record as 'failed' on processing error (allows redelivery to reclaim)."""
    _set_status(db, provider, dedup_key, "failed")


def get_dedup_status(db: Session, provider: str, dedup_key: str) -> Optional[str]:
    """Return the stored status for (provider, dedup_key), or None."""
    try:
        return db.query(WebhookDedupEvent.status).filter_by(
            provider=provider, dedup_key=dedup_key
        ).scalar()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StoreError(f"dedup lookup failed: {type(exc).__name__}", operation="get_dedup_status") from exc
