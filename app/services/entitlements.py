"""
Entitlement Ledger - applies verified payment events exactly once.

The payments table is keyed by the processor's order id. A payment upserts
the row as completed and then grants access; a refund or chargeback upserts
the reversal status, appends the raw event to the audit trail and revokes.
The ledger row is written before access changes, so it stays the durable
record of what the processor told us even if the grant has to be replayed.

Concurrent notifications for one order are not serialised beyond the
per-row upsert: the last write wins.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import literal, select
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.db.models import Payment, User, utc_now
from app.exceptions import PersistenceError
from app.models.api import PaymentStatus
from app.models.domain import ItemRef, LedgerOutcome, PaymentEvent, PaymentEventKind
from app.observability.metrics import metrics
from app.services.access import AccessService

logger = get_logger(__name__)

REVERSAL_STATUS: dict[PaymentEventKind, PaymentStatus] = {
    PaymentEventKind.REFUND: PaymentStatus.REFUNDED,
    PaymentEventKind.CHARGEBACK: PaymentStatus.CHARGEBACKED,
}

ANOMALY_NOTE = "Reversal received without a completed payment on record"


class EntitlementLedger:
    """Idempotent application of IPN events to payments and enrollments."""

    def __init__(self, session: AsyncSession, access: AccessService | None = None) -> None:
        self.session = session
        self.access = access or AccessService(session)

    async def apply_payment_event(
        self, event: PaymentEvent, user: User, item: ItemRef
    ) -> LedgerOutcome:
        """Apply one event for an already-resolved user and item."""
        if event.kind == PaymentEventKind.PAYMENT:
            outcome = await self._apply_payment(event, user, item)
        elif event.kind in REVERSAL_STATUS:
            outcome = await self._apply_reversal(event, user, item)
        elif event.kind == PaymentEventKind.PAYMENT_MISSED:
            logger.info(
                "ipn_payment_missed",
                order_id=event.order_id,
                user_id=str(user.id),
                item_type=item.kind.value,
            )
            outcome = LedgerOutcome.RECORDED_ONLY
        else:
            logger.info("ipn_event_unhandled", event=event.event_name, order_id=event.order_id)
            outcome = LedgerOutcome.IGNORED

        metrics.record_ipn(event.kind.value, outcome.value)
        return outcome

    async def _apply_payment(self, event: PaymentEvent, user: User, item: ItemRef) -> LedgerOutcome:
        existing = await self._find_payment(event.order_id)
        if existing is not None and existing.status == PaymentStatus.COMPLETED.value:
            logger.info("ipn_order_already_processed", order_id=event.order_id)
            return LedgerOutcome.ALREADY_PROCESSED

        await self._upsert_completed(event, user, item, paid_at=utc_now())
        await self.access.grant(user.id, item)

        logger.info(
            "ipn_payment_applied",
            order_id=event.order_id,
            user_id=str(user.id),
            item_type=item.kind.value,
            item_id=str(item.item_id),
            amount_minor=event.amount_minor,
            currency=event.currency,
        )
        return LedgerOutcome.GRANTED

    async def _apply_reversal(self, event: PaymentEvent, user: User, item: ItemRef) -> LedgerOutcome:
        status = REVERSAL_STATUS[event.kind]
        existing = await self._find_payment(event.order_id)
        if existing is None or existing.paid_at is None:
            logger.warning(
                "ipn_reversal_without_payment",
                order_id=event.order_id,
                status=status.value,
                user_id=str(user.id),
            )

        await self._upsert_reversal(event, user, item, status, reversed_at=utc_now())
        await self.access.revoke(user.id, item)

        logger.info(
            "ipn_reversal_applied",
            order_id=event.order_id,
            status=status.value,
            user_id=str(user.id),
            item_type=item.kind.value,
            item_id=str(item.item_id),
        )
        return LedgerOutcome.REVOKED

    # ========================================================================
    # Persistence
    # ========================================================================

    async def _find_payment(self, order_id: str) -> Payment | None:
        result = await self.session.execute(select(Payment).where(Payment.order_id == order_id))
        return result.scalar_one_or_none()

    def _record_values(self, event: PaymentEvent, user: User, item: ItemRef) -> dict[str, Any]:
        return {
            "user_id": user.id,
            "item_type": item.kind.value,
            "item_id": item.item_id,
            "transaction_id": event.transaction_id,
            "product_id": event.product_id,
            "affiliate_id": event.affiliate_id,
            "customer_email": event.email,
            "customer_name": event.customer_name,
            "amount_minor": event.amount_minor,
            "currency": event.currency,
        }

    async def _upsert_completed(
        self, event: PaymentEvent, user: User, item: ItemRef, paid_at: datetime
    ) -> None:
        values = {
            **self._record_values(event, user, item),
            "status": PaymentStatus.COMPLETED.value,
            "paid_at": paid_at,
            "ipn_data": dict(event.raw_payload),
            "notes": None,
            "updated_at": paid_at,
        }
        stmt = (
            pg_insert(Payment)
            .values(order_id=event.order_id, ipn_events=[], created_at=paid_at, **values)
            .on_conflict_do_update(index_elements=[Payment.order_id], set_=values)
        )
        await self._execute_and_commit(stmt, event)

    async def _upsert_reversal(
        self,
        event: PaymentEvent,
        user: User,
        item: ItemRef,
        status: PaymentStatus,
        reversed_at: datetime,
    ) -> None:
        audit_entry = {
            "event": event.event_name,
            "timestamp": reversed_at.isoformat(),
            "data": dict(event.raw_payload),
        }
        stmt = (
            pg_insert(Payment)
            .values(
                order_id=event.order_id,
                status=status.value,
                refunded_at=reversed_at,
                ipn_events=[audit_entry],
                notes=ANOMALY_NOTE,
                created_at=reversed_at,
                updated_at=reversed_at,
                **self._record_values(event, user, item),
            )
            .on_conflict_do_update(
                index_elements=[Payment.order_id],
                set_={
                    "status": status.value,
                    "refunded_at": reversed_at,
                    "ipn_events": Payment.ipn_events.op("||", return_type=JSONB)(
                        literal([audit_entry], type_=JSONB)
                    ),
                    "updated_at": reversed_at,
                },
            )
        )
        await self._execute_and_commit(stmt, event)

    async def _execute_and_commit(self, stmt: Any, event: PaymentEvent) -> None:
        try:
            await self.session.execute(stmt)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("ledger_write_failed", order_id=event.order_id, error=str(e))
            raise PersistenceError(f"ledger write for order {event.order_id}: {e}") from e
