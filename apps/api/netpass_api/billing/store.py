"""Record store: customers, transaction ledger, active-subscription projection.

Mutation discipline per table:
  customers            : upsert keyed by email; created_at write-once,
                         updated_at only ever moves forward
  transactions         : append-only inserts (dedup is the caller's job)
  active_subscriptions : upsert keyed by email, applied only when the
                         incoming (paid_on, reference) sorts after the stored
                         one: a later payment wins, and two payments at the
                         same instant resolve to the larger reference

Upserts are single INSERT ... ON CONFLICT DO UPDATE statements, so there is
no window between a failed insert and the follow-up update. An IntegrityError
on the email key can still surface on backends without native upsert
support; it is translated to DuplicateKeyError and retried as an update.
Any other SQLAlchemy failure becomes StoreError. "Not found" is None.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from netpass_api.billing.entities import CustomerRecord, SubscriptionRecord, TransactionRecord
from netpass_api.billing.errors import DuplicateKeyError, StoreError
from netpass_api.db.models import ActiveSubscription, Customer, Transaction

logger = logging.getLogger(__name__)

_UNIQUE_EMAIL_MARKERS = {
    "customers": ("uq_customers_email", "customers.email"),
    "active_subscriptions": ("uq_active_subscriptions_email", "active_subscriptions.email"),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _supersedes(paid_on: Any, reference: Any):
    """True when the stored projection row sorts before (paid_on, reference)."""
    stored_reference = func.coalesce(ActiveSubscription.reference, "")
    return or_(
        ActiveSubscription.paid_on < paid_on,
        and_(ActiveSubscription.paid_on == paid_on, stored_reference < reference),
    )


def _ledger_reference():
    # same tie-break as _supersedes, so a rebuild picks the row the live upsert keeps
    return func.coalesce(Transaction.reference, "")


def _is_email_conflict(exc: IntegrityError, table: str) -> bool:
    message = str(exc.orig)
    return any(marker in message for marker in _UNIQUE_EMAIL_MARKERS[table])


class RecordStore:
    """Durable store over the three billing tables.

    The store owns commit/rollback for each operation: every public write is
    its own unit of work. There is deliberately no cross-table transaction;
    the reconciler orders its writes so that each one is idempotent.
    """

    def __init__(self, session: Session):
        self.session = session

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _insert(self, model: Any):
        """Dialect-specific INSERT construct that supports ON CONFLICT."""
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(model)
        if dialect == "sqlite":
            return sqlite.insert(model)
        raise StoreError(f"Unsupported database dialect: {dialect}", operation="upsert")

    def _fail(self, operation: str, exc: SQLAlchemyError) -> StoreError:
        self.session.rollback()
        logger.error(
            "STORE_OPERATION_FAILED",
            extra={"operation": operation, "error_type": type(exc).__name__},
        )
        return StoreError(f"{operation} failed: {type(exc).__name__}", operation=operation)

    def _fetch_one(self, stmt):
        # Core upserts bypass the identity map; force a refresh of loaded rows
        return self.session.scalars(stmt.execution_options(populate_existing=True)).first()

    # ------------------------------------------------------------------
    # customers
    # ------------------------------------------------------------------

    def upsert_customer(self, record: CustomerRecord, *, now: Optional[datetime] = None) -> Customer:
        """Create the customer or touch its updated_at.

        Args:
            record: Validated customer input
            now: Touch timestamp (defaults to current UTC time)

        Returns:
            The stored Customer row

        Raises:
            StoreError: On any storage failure
        """
        now = now or _utcnow()
        stmt = self._insert(Customer).values(email=record.email, created_at=now, updated_at=now)
        stmt = stmt.on_conflict_do_update(
            index_elements=[Customer.email],
            set_={
                "updated_at": case(
                    (stmt.excluded.updated_at > Customer.updated_at, stmt.excluded.updated_at),
                    else_=Customer.updated_at,
                )
            },
        )
        try:
            try:
                self.session.execute(stmt)
                self.session.commit()
            except IntegrityError as exc:
                if not _is_email_conflict(exc, "customers"):
                    raise
                self.session.rollback()
                raise DuplicateKeyError("customers", record.email) from exc
        except DuplicateKeyError:
            self._touch_customer(record.email, now)
        except SQLAlchemyError as exc:
            raise self._fail("upsert_customer", exc) from exc

        customer = self.get_customer(record.email)
        if customer is None:
            raise StoreError("Customer missing after upsert", operation="upsert_customer")
        return customer

    def _touch_customer(self, email: str, now: datetime) -> None:
        try:
            self.session.execute(
                update(Customer)
                .where(Customer.email == email, Customer.updated_at < now)
                .values(updated_at=now)
            )
            self.session.commit()
        except SQLAlchemyError as exc:
            raise self._fail("upsert_customer", exc) from exc

    def get_customer(self, email: str) -> Optional[Customer]:
        try:
            return self._fetch_one(select(Customer).where(Customer.email == email.lower()))
        except SQLAlchemyError as exc:
            raise self._fail("get_customer", exc) from exc

    # ------------------------------------------------------------------
    # transactions (append-only)
    # ------------------------------------------------------------------

    def insert_transaction(self, record: TransactionRecord) -> Transaction:
        """Append a ledger row. Never an upsert.

        Raises:
            StoreError: On any storage failure (including constraint violations)
        """
        row = Transaction(
            email=record.email,
            reference=record.reference,
            paid_on=record.paid_on,
            expires_on=record.expires_on,
            service=record.service,
            amount=record.amount,
            currency=record.currency,
        )
        try:
            self.session.add(row)
            self.session.commit()
        except SQLAlchemyError as exc:
            raise self._fail("insert_transaction", exc) from exc
        return row

    def find_transaction_by_reference(self, reference: str) -> Optional[Transaction]:
        try:
            return self.session.scalars(
                select(Transaction).where(Transaction.reference == reference).limit(1)
            ).first()
        except SQLAlchemyError as exc:
            raise self._fail("find_transaction_by_reference", exc) from exc

    def list_transactions(self, email: str) -> list[Transaction]:
        """Ledger rows for ``email``, oldest payment first."""
        try:
            return list(
                self.session.scalars(
                    select(Transaction)
                    .where(Transaction.email == email.lower())
                    .order_by(Transaction.paid_on, _ledger_reference(), Transaction.id)
                )
            )
        except SQLAlchemyError as exc:
            raise self._fail("list_transactions", exc) from exc

    def latest_transaction(self, email: str) -> Optional[Transaction]:
        try:
            return self.session.scalars(
                select(Transaction)
                .where(Transaction.email == email.lower())
                .order_by(Transaction.paid_on.desc(), _ledger_reference().desc(), Transaction.id.desc())
                .limit(1)
            ).first()
        except SQLAlchemyError as exc:
            raise self._fail("latest_transaction", exc) from exc

    # ------------------------------------------------------------------
    # active subscriptions (projection)
    # ------------------------------------------------------------------

    def upsert_active_subscription(
        self,
        record: SubscriptionRecord,
        *,
        now: Optional[datetime] = None,
    ) -> tuple[ActiveSubscription, bool]:
        """Write the entitlement window if it is newer than the stored one.

        Returns:
            (stored row, applied) where applied is False when the stored row
            already sorts at or after (paid_on, reference): an older payment,
            a redelivery of the same one, or a same-instant payment with a
            smaller reference. The ledger keeps every payment either way.

        Raises:
            StoreError: On any storage failure
        """
        applied = self._write_subscription(record, now or _utcnow(), conditional=True)
        subscription = self.get_active_subscription(record.email)
        if subscription is None:
            raise StoreError(
                "Subscription missing after upsert", operation="upsert_active_subscription"
            )
        return subscription, applied

    def _write_subscription(self, record: SubscriptionRecord, now: datetime, *, conditional: bool) -> bool:
        values = {
            "paid_on": record.paid_on,
            "expires_on": record.expires_on,
            "service": record.service,
            "reference": record.reference,
            "updated_at": now,
        }
        stmt = self._insert(ActiveSubscription).values(email=record.email, **values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[ActiveSubscription.email],
            set_=values,
            where=(
                _supersedes(stmt.excluded.paid_on, func.coalesce(stmt.excluded.reference, ""))
                if conditional
                else None
            ),
        ).returning(ActiveSubscription.id)

        try:
            try:
                applied = self.session.execute(stmt).first() is not None
                self.session.commit()
                return applied
            except IntegrityError as exc:
                if not _is_email_conflict(exc, "active_subscriptions"):
                    raise
                self.session.rollback()
                raise DuplicateKeyError("active_subscriptions", record.email) from exc
        except DuplicateKeyError:
            return self._overwrite_subscription(record.email, values, conditional=conditional)
        except SQLAlchemyError as exc:
            raise self._fail("upsert_active_subscription", exc) from exc

    def _overwrite_subscription(self, email: str, values: dict, *, conditional: bool) -> bool:
        stmt = update(ActiveSubscription).where(ActiveSubscription.email == email)
        if conditional:
            stmt = stmt.where(_supersedes(values["paid_on"], values["reference"] or ""))
        try:
            result = self.session.execute(stmt.values(**values))
            self.session.commit()
        except SQLAlchemyError as exc:
            raise self._fail("upsert_active_subscription", exc) from exc
        return result.rowcount > 0

    def get_active_subscription(self, email: str) -> Optional[ActiveSubscription]:
        try:
            return self._fetch_one(
                select(ActiveSubscription).where(ActiveSubscription.email == email.lower())
            )
        except SQLAlchemyError as exc:
            raise self._fail("get_active_subscription", exc) from exc

    def rebuild_active_subscription(self, email: str) -> Optional[ActiveSubscription]:
        """Recompute the projection from the ledger's latest payment.

        Used for out-of-band reconciliation after a partial failure. The
        write is unconditional: the ledger is authoritative.

        Returns:
            The rebuilt row, or None when the email has no ledger entries
        """
        latest = self.latest_transaction(email)
        if latest is None:
            return None

        record = SubscriptionRecord.build(
            email=latest.email,
            paid_on=latest.paid_on,
            expires_on=latest.expires_on,
            service=latest.service,
            reference=latest.reference,
        )
        self._write_subscription(record, _utcnow(), conditional=False)
        logger.info(
            "SUBSCRIPTION_REBUILT",
            extra={"email": latest.email, "reference": latest.reference},
        )
        return self.get_active_subscription(email)
