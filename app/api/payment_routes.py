"""
Payment API routes - Digistore24 IPN webhook, checkout and history.
"""

from collections.abc import Mapping
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.exceptions import HTTPException as StarletteHTTPException
from structlog import get_logger

from app.api.dependencies import get_current_user, get_digistore_provider
from app.db.models import User
from app.db.session import get_read_db, get_write_db
from app.exceptions import (
    DuplicateEnrollmentError,
    InvalidPaymentEventError,
    ItemNotFoundError,
    ItemNotPaidError,
    PaymentNotConfiguredError,
    UserNotFoundError,
    WebhookVerificationError,
)
from app.models.api import CheckoutRequest, CheckoutResponse, PaymentResponse
from app.observability.logging import log_context
from app.observability.metrics import metrics
from app.services.digistore_provider import DigistoreProvider
from app.services.payments import PaymentService

logger = get_logger(__name__)
router = APIRouter(prefix="/api/payments", tags=["payments"])

IPN_ACK = "OK"


async def read_ipn_payload(request: Request) -> Mapping[str, Any]:
    """IPN fields from a form post (the processor default) or a JSON body."""
    content_type = request.headers.get("content-type", "")
    try:
        if content_type.startswith("application/json"):
            body = await request.json()
            return body if isinstance(body, dict) else {}
        form = await request.form()
        return {key: value for key, value in form.items() if isinstance(value, str)}
    except (ValueError, StarletteHTTPException) as e:
        # Malformed JSON or form encoding; multipart parse errors arrive as 400s.
        logger.warning("ipn_payload_unreadable", error=str(e))
        return {}


@router.post("/digistore/ipn", response_class=PlainTextResponse)
async def digistore_ipn(
    request: Request,
    db: AsyncSession = Depends(get_write_db),
    provider: DigistoreProvider = Depends(get_digistore_provider),
) -> PlainTextResponse:
    """
    Receive a Digistore24 IPN notification.

    Always answers 200 "OK": the processor retries anything else, and every
    failure here is either permanent or already logged for reconciliation.
    """
    payload = await read_ipn_payload(request)
    order_id = str(payload.get("order_id") or "") or None

    with log_context(ipn_event=payload.get("event"), order_id=order_id):
        try:
            outcome = await PaymentService(db, provider).process_ipn(payload)
            logger.info("ipn_processed", outcome=outcome.value)
        except WebhookVerificationError as e:
            metrics.record_ipn("unverified", "rejected")
            logger.warning("ipn_verification_failed", reason=e.reason)
        except InvalidPaymentEventError as e:
            metrics.record_ipn("invalid", "rejected")
            logger.warning("ipn_invalid", error=e.message)
        except (UserNotFoundError, ItemNotFoundError) as e:
            metrics.record_ipn("unresolved", "dropped")
            logger.warning("ipn_lookup_failed", error=str(e))
        except Exception as e:
            metrics.record_error(type(e).__name__, "ipn")
            logger.error("ipn_processing_failed", error=str(e), exc_info=True)

    return PlainTextResponse(IPN_ACK, status_code=status.HTTP_200_OK)


@router.post("/checkout", response_model=CheckoutResponse)
async def create_checkout(
    request: CheckoutRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_read_db),
    provider: DigistoreProvider = Depends(get_digistore_provider),
) -> CheckoutResponse:
    """Issue a processor checkout URL for a paid class or course."""
    try:
        checkout_url, item = await PaymentService(db, provider).create_checkout(
            user, request.item_type, request.item_id
        )
    except ItemNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except (ItemNotPaidError, DuplicateEnrollmentError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except PaymentNotConfiguredError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    return CheckoutResponse(
        checkout_url=checkout_url,
        item_type=request.item_type,
        item_id=request.item_id,
        title=item.title,
        price_minor=item.price_minor,
    )


@router.get("/history", response_model=list[PaymentResponse])
async def payment_history(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_read_db),
    provider: DigistoreProvider = Depends(get_digistore_provider),
) -> list[PaymentResponse]:
    """The caller's 50 most recent transaction records."""
    payments = await PaymentService(db, provider).history(user.id)
    return [PaymentResponse.model_validate(p) for p in payments]
