"""
Payment Service - IPN processing, checkout links and payment history.
"""

import math
from collections.abc import Mapping
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.db.models import Payment, User
from app.exceptions import (
    DuplicateEnrollmentError,
    ItemNotFoundError,
    ItemNotPaidError,
    PaymentNotConfiguredError,
    UserNotFoundError,
)
from app.models.api import ItemKind
from app.models.domain import CheckoutCustomData, ItemRef, LedgerOutcome
from app.observability.tracing import trace_operation
from app.services.digistore_provider import DigistoreProvider
from app.services.entitlements import EntitlementLedger
from app.services.items import (
    PurchasableItem,
    find_item,
    find_user_by_email,
    resolve_product_reference,
    user_enrollment_ids,
)

logger = get_logger(__name__)

HISTORY_LIMIT = 50


class PaymentService:
    """Orchestrates the processor-facing flows."""

    def __init__(
        self,
        session: AsyncSession,
        provider: DigistoreProvider,
        ledger: EntitlementLedger | None = None,
    ) -> None:
        self.session = session
        self.provider = provider
        self.ledger = ledger or EntitlementLedger(session)

    async def process_ipn(self, payload: Mapping[str, Any]) -> LedgerOutcome:
        """
        Verify, resolve and apply one IPN notification.

        Raises:
            WebhookVerificationError: authenticity check failed
            InvalidPaymentEventError: required fields missing
            UserNotFoundError: no user for the payer email
            ItemNotFoundError: no class or course sells the product
        """
        self.provider.verify_ipn(payload)
        event = self.provider.parse_event(payload)

        logger.info(
            "ipn_verified",
            event=event.event_name,
            order_id=event.order_id,
            product_id=event.product_id,
        )

        user = await find_user_by_email(self.session, event.email)
        if user is None:
            raise UserNotFoundError(event.email)

        resolved = await resolve_product_reference(self.session, event.product_id)
        if resolved is None:
            raise ItemNotFoundError("product", event.product_id)
        ref, _ = resolved

        with trace_operation(
            "ipn_apply", order_id=event.order_id, event=event.kind.value, item_type=ref.kind.value
        ) as span:
            outcome = await self.ledger.apply_payment_event(event, user, ref)
            span.set_attribute("outcome", outcome.value)
        return outcome

    async def create_checkout(
        self, user: User, kind: ItemKind, item_id: UUID
    ) -> tuple[str, PurchasableItem]:
        """
        Build the processor checkout URL for `user` buying an item.

        Raises:
            ItemNotFoundError, ItemNotPaidError, PaymentNotConfiguredError,
            DuplicateEnrollmentError
        """
        item = await find_item(self.session, ItemRef(kind=kind, item_id=item_id))
        if item is None:
            raise ItemNotFoundError(kind.value, item_id)
        if not item.is_paid:
            raise ItemNotPaidError(kind, item_id)
        if not item.digistore_product_id:
            raise PaymentNotConfiguredError(kind, item_id)
        if item_id in user_enrollment_ids(user, kind):
            raise DuplicateEnrollmentError(user.id, kind, item_id)

        checkout_url = self.provider.build_checkout_url(
            item.digistore_product_id,
            user.email,
            CheckoutCustomData(user_id=user.id, item_type=kind, item_id=item_id),
        )
        logger.info(
            "checkout_url_created",
            user_id=str(user.id),
            item_type=kind.value,
            item_id=str(item_id),
        )
        return checkout_url, item

    async def history(self, user_id: UUID) -> list[Payment]:
        result = await self.session.execute(
            select(Payment)
            .where(Payment.user_id == user_id)
            .order_by(Payment.created_at.desc())
            .limit(HISTORY_LIMIT)
        )
        return list(result.scalars().all())

    async def list_all(self, page: int, limit: int) -> tuple[list[Payment], int, int]:
        count_result = await self.session.execute(select(func.count()).select_from(Payment))
        total = count_result.scalar_one()

        result = await self.session.execute(
            select(Payment)
            .order_by(Payment.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        payments = list(result.scalars().all())
        return payments, total, math.ceil(total / limit) if total else 0
