"""
Tests for the entitlement ledger.

Ledger persistence is replaced with an in-memory order table so the
idempotency and reversal rules can be checked without a database.
"""

from datetime import datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import OperationalError

from app.exceptions import PersistenceError
from app.models.api import ItemKind, PaymentStatus
from app.models.domain import ItemRef, LedgerOutcome, PaymentEvent, PaymentEventKind
from app.services.access import AccessService
from app.services.entitlements import ANOMALY_NOTE, EntitlementLedger
from tests.factories import create_mock_class, create_mock_user


def make_event(
    kind: PaymentEventKind = PaymentEventKind.PAYMENT, order_id: str = "ORDER-1"
) -> PaymentEvent:
    return PaymentEvent(
        kind=kind,
        event_name=f"on_{kind.value}",
        order_id=order_id,
        product_id="PROD-1",
        email="user@example.com",
        amount_minor=4990,
        currency="EUR",
        raw_payload={"order_id": order_id, "event": f"on_{kind.value}"},
    )


class InMemoryLedger:
    """Order table standing in for the payments upserts."""

    def __init__(self) -> None:
        self.records: dict[str, MagicMock] = {}
        self.upserts = 0

    async def find(self, order_id: str) -> MagicMock | None:
        return self.records.get(order_id)

    def _record(self, order_id: str) -> MagicMock:
        if order_id not in self.records:
            record = MagicMock()
            record.paid_at = None
            record.refunded_at = None
            record.notes = None
            record.ipn_events = []
            self.records[order_id] = record
        return self.records[order_id]

    async def upsert_completed(self, event: PaymentEvent, user: Any, item: ItemRef, paid_at: datetime) -> None:
        self.upserts += 1
        record = self._record(event.order_id)
        record.status = PaymentStatus.COMPLETED.value
        record.paid_at = paid_at
        record.notes = None

    async def upsert_reversal(
        self, event: PaymentEvent, user: Any, item: ItemRef, status: PaymentStatus, reversed_at: datetime
    ) -> None:
        self.upserts += 1
        new = event.order_id not in self.records
        record = self._record(event.order_id)
        record.status = status.value
        record.refunded_at = reversed_at
        record.ipn_events = [*record.ipn_events, {"event": event.event_name}]
        if new:
            record.notes = ANOMALY_NOTE


@pytest.fixture
def user() -> MagicMock:
    return create_mock_user()


@pytest.fixture
def item() -> MagicMock:
    return create_mock_class(is_paid=True, price_minor=4990, digistore_product_id="PROD-1")


@pytest.fixture
def store() -> InMemoryLedger:
    return InMemoryLedger()


@pytest.fixture
def ledger(db_session: AsyncMock, store: InMemoryLedger, user: MagicMock, item: MagicMock):
    """Ledger over the in-memory order table and a real AccessService on mock rows."""
    access = AccessService(db_session)
    ledger = EntitlementLedger(db_session, access=access)
    with (
        patch.object(ledger, "_find_payment", side_effect=store.find),
        patch.object(ledger, "_upsert_completed", side_effect=store.upsert_completed),
        patch.object(ledger, "_upsert_reversal", side_effect=store.upsert_reversal),
        patch.object(access, "_lock_user", new_callable=AsyncMock, return_value=user),
        patch.object(access, "_lock_item", new_callable=AsyncMock, return_value=item),
    ):
        yield ledger


class TestPaymentIdempotency:
    """Repeated deliveries of one payment collapse to a single effect."""

    @pytest.mark.asyncio
    async def test_first_payment_grants(self, ledger, store, user, item):
        ref = ItemRef(kind=ItemKind.CLASS, item_id=item.id)

        outcome = await ledger.apply_payment_event(make_event(), user, ref)

        assert outcome == LedgerOutcome.GRANTED
        assert store.records["ORDER-1"].status == PaymentStatus.COMPLETED.value
        assert user.enrolled_class_ids == [item.id]
        assert item.enrolled_user_ids == [user.id]

    @given(repeats=st.integers(min_value=2, max_value=6))
    @settings(max_examples=10, deadline=None)
    @pytest.mark.asyncio
    async def test_repeated_payment_applies_once(self, repeats: int):
        store = InMemoryLedger()
        user = create_mock_user()
        item = create_mock_class(is_paid=True, digistore_product_id="PROD-1")
        ref = ItemRef(kind=ItemKind.CLASS, item_id=item.id)
        session = AsyncMock()
        access = AccessService(session)
        ledger = EntitlementLedger(session, access=access)

        with (
            patch.object(ledger, "_find_payment", side_effect=store.find),
            patch.object(ledger, "_upsert_completed", side_effect=store.upsert_completed),
            patch.object(access, "_lock_user", new_callable=AsyncMock, return_value=user),
            patch.object(access, "_lock_item", new_callable=AsyncMock, return_value=item),
            patch.object(access, "grant", wraps=access.grant) as grant,
        ):
            outcomes = [await ledger.apply_payment_event(make_event(), user, ref) for _ in range(repeats)]

        assert outcomes[0] == LedgerOutcome.GRANTED
        assert set(outcomes[1:]) == {LedgerOutcome.ALREADY_PROCESSED}
        assert len(store.records) == 1
        assert store.upserts == 1
        assert grant.await_count == 1
        assert user.enrolled_class_ids == [item.id]
        assert item.enrolled_user_ids == [user.id]

    @pytest.mark.asyncio
    async def test_payment_after_refund_recompletes(self, ledger, store, user, item):
        ref = ItemRef(kind=ItemKind.CLASS, item_id=item.id)

        await ledger.apply_payment_event(make_event(), user, ref)
        await ledger.apply_payment_event(make_event(PaymentEventKind.REFUND), user, ref)
        outcome = await ledger.apply_payment_event(make_event(), user, ref)

        assert outcome == LedgerOutcome.GRANTED
        assert store.records["ORDER-1"].status == PaymentStatus.COMPLETED.value
        assert user.enrolled_class_ids == [item.id]


class TestReversals:
    """Refunds and chargebacks revoke access and keep an audit trail."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "kind,status",
        [
            (PaymentEventKind.REFUND, PaymentStatus.REFUNDED),
            (PaymentEventKind.CHARGEBACK, PaymentStatus.CHARGEBACKED),
        ],
    )
    async def test_reversal_revokes(self, ledger, store, user, item, kind, status):
        ref = ItemRef(kind=ItemKind.CLASS, item_id=item.id)
        await ledger.apply_payment_event(make_event(), user, ref)

        outcome = await ledger.apply_payment_event(make_event(kind), user, ref)

        record = store.records["ORDER-1"]
        assert outcome == LedgerOutcome.REVOKED
        assert record.status == status.value
        assert record.refunded_at is not None
        assert len(record.ipn_events) == 1
        assert record.notes is None
        assert user.enrolled_class_ids == []
        assert item.enrolled_user_ids == []

    @pytest.mark.asyncio
    async def test_reversal_without_payment_is_recorded_as_anomaly(self, ledger, store, user, item):
        ref = ItemRef(kind=ItemKind.CLASS, item_id=item.id)

        outcome = await ledger.apply_payment_event(make_event(PaymentEventKind.REFUND), user, ref)

        record = store.records["ORDER-1"]
        assert outcome == LedgerOutcome.REVOKED
        assert record.status == PaymentStatus.REFUNDED.value
        assert record.paid_at is None
        assert record.notes == ANOMALY_NOTE

    @pytest.mark.asyncio
    async def test_payment_after_anomaly_clears_note(self, ledger, store, user, item):
        ref = ItemRef(kind=ItemKind.CLASS, item_id=item.id)
        await ledger.apply_payment_event(make_event(PaymentEventKind.REFUND), user, ref)

        outcome = await ledger.apply_payment_event(make_event(), user, ref)

        record = store.records["ORDER-1"]
        assert outcome == LedgerOutcome.GRANTED
        assert record.status == PaymentStatus.COMPLETED.value
        assert record.notes is None

    @pytest.mark.asyncio
    async def test_repeated_refunds_append_audit_entries(self, ledger, store, user, item):
        ref = ItemRef(kind=ItemKind.CLASS, item_id=item.id)
        await ledger.apply_payment_event(make_event(), user, ref)

        await ledger.apply_payment_event(make_event(PaymentEventKind.REFUND), user, ref)
        await ledger.apply_payment_event(make_event(PaymentEventKind.REFUND), user, ref)

        assert len(store.records["ORDER-1"].ipn_events) == 2
        assert user.enrolled_class_ids == []


class TestOtherEvents:
    @pytest.mark.asyncio
    async def test_payment_missed_is_recorded_only(self, ledger, store, user, item):
        ref = ItemRef(kind=ItemKind.CLASS, item_id=item.id)

        outcome = await ledger.apply_payment_event(make_event(PaymentEventKind.PAYMENT_MISSED), user, ref)

        assert outcome == LedgerOutcome.RECORDED_ONLY
        assert store.records == {}
        assert user.enrolled_class_ids == []

    @pytest.mark.asyncio
    async def test_unknown_event_is_ignored(self, ledger, store, user, item):
        ref = ItemRef(kind=ItemKind.CLASS, item_id=item.id)

        outcome = await ledger.apply_payment_event(make_event(PaymentEventKind.OTHER), user, ref)

        assert outcome == LedgerOutcome.IGNORED
        assert store.records == {}


class TestLedgerStatements:
    """The real upserts target the order id and wrap database errors."""

    @pytest.mark.asyncio
    async def test_completed_upsert_conflicts_on_order_id(self, db_session: AsyncMock):
        user = create_mock_user()
        ledger = EntitlementLedger(db_session)
        ref = ItemRef(kind=ItemKind.COURSE, item_id=uuid4())

        await ledger._upsert_completed(make_event(), user, ref, paid_at=datetime(2026, 1, 1))

        stmt = db_session.execute.await_args.args[0]
        sql = str(stmt.compile(dialect=postgresql.dialect()))
        assert "INSERT INTO payments" in sql
        assert "ON CONFLICT (order_id) DO UPDATE" in sql
        db_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_completed_upsert_clears_anomaly_note(self, db_session: AsyncMock):
        ledger = EntitlementLedger(db_session)
        ref = ItemRef(kind=ItemKind.CLASS, item_id=uuid4())

        await ledger._upsert_completed(make_event(), create_mock_user(), ref, paid_at=datetime(2026, 1, 1))

        stmt = db_session.execute.await_args.args[0]
        update_clause = str(stmt.compile(dialect=postgresql.dialect())).split("DO UPDATE SET")[1]
        assert "notes = " in update_clause

    @pytest.mark.asyncio
    async def test_reversal_upsert_appends_events(self, db_session: AsyncMock):
        user = create_mock_user()
        ledger = EntitlementLedger(db_session)
        ref = ItemRef(kind=ItemKind.CLASS, item_id=uuid4())

        await ledger._upsert_reversal(
            make_event(PaymentEventKind.REFUND), user, ref, PaymentStatus.REFUNDED, datetime(2026, 1, 1)
        )

        stmt = db_session.execute.await_args.args[0]
        sql = str(stmt.compile(dialect=postgresql.dialect()))
        assert "ON CONFLICT (order_id) DO UPDATE" in sql
        assert "payments.ipn_events ||" in sql

    @pytest.mark.asyncio
    async def test_database_error_becomes_persistence_error(self, db_session: AsyncMock):
        db_session.execute = AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("down")))
        ledger = EntitlementLedger(db_session)
        ref = ItemRef(kind=ItemKind.CLASS, item_id=uuid4())

        with pytest.raises(PersistenceError):
            await ledger._upsert_completed(make_event(), create_mock_user(), ref, paid_at=datetime(2026, 1, 1))

        db_session.rollback.assert_awaited_once()
