"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
The one exception is PaymentEvent.raw_payload, which keeps the processor's
fields verbatim for the audit trail.
"""

import base64
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from uuid import UUID

from app.models.api import ItemKind


class AssetKind(str, Enum):
    """Resource kind on the media host."""

    IMAGE = "image"
    VIDEO = "video"


@dataclass(frozen=True)
class HostedAssetRef:
    """Deletion handle for an asset on the media host, derived from its URL."""

    identifier: str
    kind: AssetKind

    def __post_init__(self) -> None:
        if not self.identifier:
            raise ValueError("identifier cannot be empty")


class DeletionOutcome(str, Enum):
    DELETED = "deleted"
    NOT_FOUND = "not_found"
    FAILED = "failed"


@dataclass(frozen=True)
class DeletionResult:
    """Outcome of a media deletion. Callers log it and move on."""

    ref: HostedAssetRef
    outcome: DeletionOutcome
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome == DeletionOutcome.DELETED


@dataclass(frozen=True)
class AssetChangePlan:
    """Assets to delete after an update, depending on whether it persisted."""

    cleanup_on_success: tuple[HostedAssetRef, ...]
    rollback_on_failure: tuple[HostedAssetRef, ...]


@dataclass(frozen=True)
class ItemRef:
    """Tagged reference to a purchasable item."""

    kind: ItemKind
    item_id: UUID


class PaymentEventKind(str, Enum):
    """Processor event kinds the ledger distinguishes."""

    PAYMENT = "payment"
    REFUND = "refund"
    CHARGEBACK = "chargeback"
    PAYMENT_MISSED = "payment_missed"
    OTHER = "other"

    @classmethod
    def from_ipn_event(cls, event_name: str | None) -> "PaymentEventKind":
        """Map an IPN `event` field such as `on_payment` to a kind."""
        name = (event_name or "").strip().lower()
        if name.startswith("on_"):
            name = name[3:]
        try:
            return cls(name)
        except ValueError:
            return cls.OTHER


@dataclass(frozen=True)
class PaymentEvent:
    """A verified IPN notification, normalised for the ledger."""

    kind: PaymentEventKind
    event_name: str
    order_id: str
    product_id: str
    email: str
    amount_minor: int
    currency: str
    transaction_id: str | None = None
    affiliate_id: str | None = None
    customer_name: str | None = None
    raw_payload: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.amount_minor < 0:
            raise ValueError(f"Amount cannot be negative: {self.amount_minor}")
        if len(self.currency) != 3:
            raise ValueError(f"Invalid currency code: {self.currency}")


@dataclass(frozen=True)
class CheckoutCustomData:
    """Opaque blob round-tripped through the processor's `custom` field."""

    user_id: UUID
    item_type: ItemKind
    item_id: UUID

    def encode(self) -> str:
        payload = json.dumps(
            {
                "userId": str(self.user_id),
                "itemType": self.item_type.value,
                "itemId": str(self.item_id),
            },
            separators=(",", ":"),
        )
        return base64.b64encode(payload.encode("utf-8")).decode("ascii")


class LedgerOutcome(str, Enum):
    """What applying a payment event did."""

    GRANTED = "granted"
    ALREADY_PROCESSED = "already_processed"
    REVOKED = "revoked"
    RECORDED_ONLY = "recorded_only"
    IGNORED = "ignored"
