"""
Admin API routes - catalog mutations, enrollment and payment oversight.

Protected by JWT authentication and the admin role. Every catalog mutation
runs through the asset lifecycle so hosted media follows the records; create
and update bodies arrive unparsed and are validated by the catalog service.
"""

from typing import Any, NoReturn
from uuid import UUID

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.api.dependencies import get_asset_coordinator, get_digistore_provider, require_admin
from app.db.models import Payment
from app.db.session import get_read_db, get_write_db
from app.exceptions import ItemNotFoundError, PersistenceError
from app.models.api import (
    AdminPaymentResponse,
    ClassResponse,
    CourseResponse,
    EnrolledUserResponse,
    ItemKind,
    MessageResponse,
    PaymentListResponse,
    SessionReorderRequest,
    SessionResponse,
    UserListResponse,
    UserResponse,
    UserStatusFilter,
)
from app.services.asset_lifecycle import AssetLifecycleCoordinator
from app.services.auth import UserService
from app.services.catalog import CatalogService
from app.services.digistore_provider import DigistoreProvider
from app.services.payments import PaymentService

logger = get_logger(__name__)
router = APIRouter(prefix="/api", tags=["admin"], dependencies=[Depends(require_admin)])


def _raise_for(exc: Exception) -> NoReturn:
    """Translate service errors to HTTP errors."""
    if isinstance(exc, ItemNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, PersistenceError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message) from exc
    if isinstance(exc, ValidationError):
        # Bodies are validated after their media is noted; report like FastAPI would.
        errors = [{**err, "loc": ("body", *err["loc"])} for err in exc.errors(include_url=False)]
        raise RequestValidationError(errors) from exc
    raise exc


def admin_payment_view(payment: Payment) -> AdminPaymentResponse:
    return AdminPaymentResponse(
        id=payment.id,
        order_id=payment.order_id,
        item_type=payment.item_type,
        item_id=payment.item_id,
        status=payment.status,
        amount_minor=payment.amount_minor,
        currency=payment.currency,
        paid_at=payment.paid_at,
        refunded_at=payment.refunded_at,
        created_at=payment.created_at,
        user_id=payment.user_id,
        product_id=payment.product_id,
        customer_email=payment.customer_email,
        customer_name=payment.customer_name,
        notes=payment.notes,
        anomaly=payment.is_anomaly,
    )


# ============================================================================
# Classes
# ============================================================================


@router.post("/classes", response_model=ClassResponse, status_code=status.HTTP_201_CREATED)
async def create_class(
    payload: dict[str, Any] = Body(...),
    db: AsyncSession = Depends(get_write_db),
    assets: AssetLifecycleCoordinator = Depends(get_asset_coordinator),
) -> ClassResponse:
    try:
        created = await CatalogService(db, assets).create_class(payload)
    except (PersistenceError, ValidationError) as e:
        _raise_for(e)
    return ClassResponse.model_validate(created)


@router.put("/classes/{class_id}", response_model=ClassResponse)
async def update_class(
    class_id: UUID,
    payload: dict[str, Any] = Body(...),
    db: AsyncSession = Depends(get_write_db),
    assets: AssetLifecycleCoordinator = Depends(get_asset_coordinator),
) -> ClassResponse:
    try:
        updated = await CatalogService(db, assets).update_class(class_id, payload)
    except (ItemNotFoundError, PersistenceError, ValidationError) as e:
        _raise_for(e)
    return ClassResponse.model_validate(updated)


@router.delete("/classes/{class_id}", response_model=MessageResponse)
async def delete_class(
    class_id: UUID,
    db: AsyncSession = Depends(get_write_db),
    assets: AssetLifecycleCoordinator = Depends(get_asset_coordinator),
) -> MessageResponse:
    try:
        await CatalogService(db, assets).delete_class(class_id)
    except (ItemNotFoundError, PersistenceError) as e:
        _raise_for(e)
    return MessageResponse(message="Class deleted")


# ============================================================================
# Courses
# ============================================================================


@router.post("/courses", response_model=CourseResponse, status_code=status.HTTP_201_CREATED)
async def create_course(
    payload: dict[str, Any] = Body(...),
    db: AsyncSession = Depends(get_write_db),
    assets: AssetLifecycleCoordinator = Depends(get_asset_coordinator),
) -> CourseResponse:
    try:
        created = await CatalogService(db, assets).create_course(payload)
    except (PersistenceError, ValidationError) as e:
        _raise_for(e)
    return CourseResponse.model_validate(created)


@router.put("/courses/{course_id}", response_model=CourseResponse)
async def update_course(
    course_id: UUID,
    payload: dict[str, Any] = Body(...),
    db: AsyncSession = Depends(get_write_db),
    assets: AssetLifecycleCoordinator = Depends(get_asset_coordinator),
) -> CourseResponse:
    try:
        updated = await CatalogService(db, assets).update_course(course_id, payload)
    except (ItemNotFoundError, PersistenceError, ValidationError) as e:
        _raise_for(e)
    return CourseResponse.model_validate(updated)


@router.delete("/courses/{course_id}", response_model=MessageResponse)
async def delete_course(
    course_id: UUID,
    db: AsyncSession = Depends(get_write_db),
    assets: AssetLifecycleCoordinator = Depends(get_asset_coordinator),
) -> MessageResponse:
    """Delete a course together with all of its sessions and their media."""
    try:
        await CatalogService(db, assets).delete_course(course_id)
    except (ItemNotFoundError, PersistenceError) as e:
        _raise_for(e)
    return MessageResponse(message="Course deleted")


@router.get("/classes/{class_id}/enrolled", response_model=list[EnrolledUserResponse])
async def class_enrolled_users(
    class_id: UUID,
    db: AsyncSession = Depends(get_read_db),
    assets: AssetLifecycleCoordinator = Depends(get_asset_coordinator),
) -> list[EnrolledUserResponse]:
    try:
        users = await CatalogService(db, assets).enrolled_users(ItemKind.CLASS, class_id)
    except ItemNotFoundError as e:
        _raise_for(e)
    return [EnrolledUserResponse.model_validate(u) for u in users]


@router.get("/courses/{course_id}/enrolled", response_model=list[EnrolledUserResponse])
async def course_enrolled_users(
    course_id: UUID,
    db: AsyncSession = Depends(get_read_db),
    assets: AssetLifecycleCoordinator = Depends(get_asset_coordinator),
) -> list[EnrolledUserResponse]:
    try:
        users = await CatalogService(db, assets).enrolled_users(ItemKind.COURSE, course_id)
    except ItemNotFoundError as e:
        _raise_for(e)
    return [EnrolledUserResponse.model_validate(u) for u in users]


# ============================================================================
# Sessions
# ============================================================================


@router.post(
    "/courses/{course_id}/sessions",
    response_model=SessionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_session(
    course_id: UUID,
    payload: dict[str, Any] = Body(...),
    db: AsyncSession = Depends(get_write_db),
    assets: AssetLifecycleCoordinator = Depends(get_asset_coordinator),
) -> SessionResponse:
    try:
        created = await CatalogService(db, assets).create_session(course_id, payload)
    except (ItemNotFoundError, PersistenceError, ValidationError) as e:
        _raise_for(e)
    return SessionResponse.model_validate(created)


# Registered before /{session_id} so "reorder" is not parsed as an id.
@router.put("/courses/{course_id}/sessions/reorder", response_model=list[SessionResponse])
async def reorder_sessions(
    course_id: UUID,
    request: SessionReorderRequest,
    db: AsyncSession = Depends(get_write_db),
    assets: AssetLifecycleCoordinator = Depends(get_asset_coordinator),
) -> list[SessionResponse]:
    try:
        sessions = await CatalogService(db, assets).reorder_sessions(course_id, request.sessions)
    except (ItemNotFoundError, PersistenceError) as e:
        _raise_for(e)
    return [SessionResponse.model_validate(s) for s in sessions]


@router.put("/courses/{course_id}/sessions/{session_id}", response_model=SessionResponse)
async def update_session(
    course_id: UUID,
    session_id: UUID,
    payload: dict[str, Any] = Body(...),
    db: AsyncSession = Depends(get_write_db),
    assets: AssetLifecycleCoordinator = Depends(get_asset_coordinator),
) -> SessionResponse:
    try:
        updated = await CatalogService(db, assets).update_session(course_id, session_id, payload)
    except (ItemNotFoundError, PersistenceError, ValidationError) as e:
        _raise_for(e)
    return SessionResponse.model_validate(updated)


@router.delete("/courses/{course_id}/sessions/{session_id}", response_model=MessageResponse)
async def delete_session(
    course_id: UUID,
    session_id: UUID,
    db: AsyncSession = Depends(get_write_db),
    assets: AssetLifecycleCoordinator = Depends(get_asset_coordinator),
) -> MessageResponse:
    try:
        await CatalogService(db, assets).delete_session(course_id, session_id)
    except (ItemNotFoundError, PersistenceError) as e:
        _raise_for(e)
    return MessageResponse(message="Session deleted")


# ============================================================================
# Users and Payments
# ============================================================================


@router.get("/auth/users", response_model=UserListResponse)
async def list_users(
    status_filter: UserStatusFilter = Query(UserStatusFilter.ALL, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_read_db),
) -> UserListResponse:
    users, total, pages = await UserService(db).list_users(status_filter, page, limit)
    return UserListResponse(
        users=[UserResponse.model_validate(u) for u in users],
        total=total,
        page=page,
        pages=pages,
    )


@router.get("/payments", response_model=PaymentListResponse)
async def list_payments(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_read_db),
    provider: DigistoreProvider = Depends(get_digistore_provider),
) -> PaymentListResponse:
    """All transaction records, newest first. `anomaly` flags reversals with no payment."""
    service = PaymentService(db, provider)
    payments, total, pages = await service.list_all(page, limit)
    return PaymentListResponse(
        payments=[admin_payment_view(p) for p in payments],
        total=total,
        page=page,
        pages=pages,
    )
