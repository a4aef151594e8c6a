"""
Digistore24 payment processor integration.

Handles:
- IPN (instant payment notification) signature verification
- Normalising verified IPN fields into PaymentEvent objects
- Checkout URL construction
"""

import hashlib
import hmac
from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from typing import Any
from urllib.parse import urlencode

from structlog import get_logger

from app.config import DigistoreConfig
from app.exceptions import InvalidPaymentEventError, WebhookVerificationError
from app.models.domain import CheckoutCustomData, PaymentEvent, PaymentEventKind

logger = get_logger(__name__)

SIGNATURE_FIELD = "sha_sign"
DEFAULT_CURRENCY = "EUR"


def _field_value(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def sign_ipn_payload(payload: Mapping[str, Any], passphrase: str) -> str:
    """
    Compute the IPN signature for `payload`.

    Values of every field except the signature, in sorted field-name order,
    are concatenated and followed by the passphrase; the SHA-512 digest is
    returned as uppercase hex.
    """
    signed_fields = sorted(key for key in payload if key != SIGNATURE_FIELD)
    sign_string = "".join(_field_value(payload[key]) for key in signed_fields) + passphrase
    return hashlib.sha512(sign_string.encode("utf-8")).hexdigest().upper()


def verify_ipn_signature(payload: Mapping[str, Any], passphrase: str) -> bool:
    """True iff `payload` carries a valid signature. Always False without a passphrase."""
    if not passphrase:
        return False

    received = _field_value(payload.get(SIGNATURE_FIELD))
    if not received:
        return False

    expected = sign_ipn_payload(payload, passphrase)
    return hmac.compare_digest(received.upper().encode("utf-8"), expected.encode("utf-8"))


def parse_amount_minor(amount: Any) -> int:
    """Convert a decimal amount string such as "49.90" to minor units; junk -> 0."""
    try:
        value = Decimal(_field_value(amount).strip() or "0")
    except InvalidOperation:
        return 0
    if not value.is_finite() or value < 0:
        return 0
    return int((value * 100).to_integral_value())


class DigistoreProvider:
    """Digistore24 IPN verification and checkout links."""

    def __init__(self, config: DigistoreConfig) -> None:
        self.config = config

    def verify_ipn(self, payload: Mapping[str, Any]) -> None:
        """
        Verify IPN authenticity.

        Raises:
            WebhookVerificationError: missing passphrase, missing or wrong signature
        """
        order_id = _field_value(payload.get("order_id")) or None

        if not self.config.ipn_passphrase:
            logger.error("ipn_passphrase_not_configured", order_id=order_id)
            raise WebhookVerificationError("IPN passphrase not configured", order_id)

        if not payload.get(SIGNATURE_FIELD):
            raise WebhookVerificationError("missing signature", order_id)

        if not verify_ipn_signature(payload, self.config.ipn_passphrase):
            raise WebhookVerificationError("signature mismatch", order_id)

    def parse_event(self, payload: Mapping[str, Any]) -> PaymentEvent:
        """
        Normalise a verified IPN payload.

        Raises:
            InvalidPaymentEventError: order id, product id or email missing
        """
        event_name = _field_value(payload.get("event"))
        order_id = _field_value(payload.get("order_id")).strip()
        product_id = _field_value(payload.get("product_id")).strip()
        email = _field_value(payload.get("email")).strip().lower()

        missing = [
            name
            for name, value in (("order_id", order_id), ("product_id", product_id), ("email", email))
            if not value
        ]
        if missing:
            raise InvalidPaymentEventError(f"missing fields: {', '.join(missing)}")

        currency = _field_value(payload.get("currency")).strip().upper() or DEFAULT_CURRENCY
        if len(currency) != 3:
            currency = DEFAULT_CURRENCY

        customer_name = " ".join(
            part
            for part in (
                _field_value(payload.get("address_first_name")).strip(),
                _field_value(payload.get("address_last_name")).strip(),
            )
            if part
        )

        return PaymentEvent(
            kind=PaymentEventKind.from_ipn_event(event_name),
            event_name=event_name,
            order_id=order_id,
            product_id=product_id,
            email=email,
            amount_minor=parse_amount_minor(payload.get("amount")),
            currency=currency,
            transaction_id=_field_value(
                payload.get("transaction_id") or payload.get("billing_item_id")
            )
            or None,
            affiliate_id=_field_value(payload.get("affiliate_id")) or None,
            customer_name=customer_name or None,
            raw_payload={key: _field_value(value) for key, value in payload.items()},
        )

    def build_checkout_url(self, product_id: str, email: str, custom: CheckoutCustomData) -> str:
        """Checkout link carrying the buyer email, custom blob and return URLs."""
        query = urlencode(
            {
                "email": email,
                "custom": custom.encode(),
                "thankyouurl": f"{self.config.frontend_url}/payment/success",
                "cancelurl": f"{self.config.frontend_url}/payment/cancelled",
            }
        )
        return f"{self.config.checkout_base_url}/{product_id}?{query}"
