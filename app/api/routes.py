"""
Public API routes - catalog browsing, self-enrollment and health.

Admin mutations live in admin_routes.py.
"""

from datetime import UTC, datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.api.dependencies import get_asset_coordinator, get_current_user, get_optional_user
from app.db.models import Course, CourseSession, User
from app.db.session import get_read_db, get_write_db
from app.exceptions import DuplicateEnrollmentError, ItemNotFoundError, PaymentRequiredError
from app.models.api import (
    ClassResponse,
    CourseResponse,
    EnrollmentResponse,
    HealthResponse,
    ItemKind,
    SessionResponse,
)
from app.models.domain import ItemRef
from app.services.access import AccessService
from app.services.asset_lifecycle import AssetLifecycleCoordinator
from app.services.catalog import CatalogService, can_watch

logger = get_logger(__name__)
router = APIRouter(prefix="/api", tags=["catalog"])


def session_view(course: Course, course_session: CourseSession, user: User | None) -> SessionResponse:
    """Session payload with the video stripped unless the caller may watch it."""
    view = SessionResponse.model_validate(course_session)
    if not can_watch(user, course):
        view = view.model_copy(update={"video": None})
    return view


def _not_found(exc: ItemNotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


# =============================================================================
# Classes and Courses
# =============================================================================


@router.get("/classes", response_model=list[ClassResponse])
async def list_classes(
    db: AsyncSession = Depends(get_read_db),
    assets: AssetLifecycleCoordinator = Depends(get_asset_coordinator),
) -> list[ClassResponse]:
    items = await CatalogService(db, assets).list_items(ItemKind.CLASS)
    return [ClassResponse.model_validate(item) for item in items]


@router.get("/classes/{class_id}", response_model=ClassResponse)
async def get_class(
    class_id: UUID,
    db: AsyncSession = Depends(get_read_db),
    user: User | None = Depends(get_optional_user),
    assets: AssetLifecycleCoordinator = Depends(get_asset_coordinator),
) -> ClassResponse:
    """Get one class. The video URL of a paid class is only shown to enrolled users."""
    try:
        item = await CatalogService(db, assets).get_item(ItemKind.CLASS, class_id)
    except ItemNotFoundError as e:
        raise _not_found(e)

    view = ClassResponse.model_validate(item)
    if not can_watch(user, item):
        view = view.model_copy(update={"video": None})
    return view


@router.get("/courses", response_model=list[CourseResponse])
async def list_courses(
    db: AsyncSession = Depends(get_read_db),
    assets: AssetLifecycleCoordinator = Depends(get_asset_coordinator),
) -> list[CourseResponse]:
    items = await CatalogService(db, assets).list_items(ItemKind.COURSE)
    return [CourseResponse.model_validate(item) for item in items]


@router.get("/courses/{course_id}", response_model=CourseResponse)
async def get_course(
    course_id: UUID,
    db: AsyncSession = Depends(get_read_db),
    assets: AssetLifecycleCoordinator = Depends(get_asset_coordinator),
) -> CourseResponse:
    try:
        item = await CatalogService(db, assets).get_item(ItemKind.COURSE, course_id)
    except ItemNotFoundError as e:
        raise _not_found(e)
    return CourseResponse.model_validate(item)


async def _enroll(
    kind: ItemKind, item_id: UUID, user: User, db: AsyncSession, assets: AssetLifecycleCoordinator
) -> EnrollmentResponse:
    try:
        item = await CatalogService(db, assets).get_item(kind, item_id)
        await AccessService(db).enroll(user, ItemRef(kind=kind, item_id=item_id), item)
    except ItemNotFoundError as e:
        raise _not_found(e)
    except (DuplicateEnrollmentError, PaymentRequiredError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return EnrollmentResponse(item_type=kind, item_id=item_id, enrolled=True)


@router.post("/classes/{class_id}/enroll", response_model=EnrollmentResponse)
async def enroll_class(
    class_id: UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
    assets: AssetLifecycleCoordinator = Depends(get_asset_coordinator),
) -> EnrollmentResponse:
    """Self-enroll into a free class. Paid classes go through checkout."""
    return await _enroll(ItemKind.CLASS, class_id, user, db, assets)


@router.post("/courses/{course_id}/enroll", response_model=EnrollmentResponse)
async def enroll_course(
    course_id: UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
    assets: AssetLifecycleCoordinator = Depends(get_asset_coordinator),
) -> EnrollmentResponse:
    return await _enroll(ItemKind.COURSE, course_id, user, db, assets)


# =============================================================================
# Sessions
# =============================================================================


@router.get("/courses/{course_id}/sessions", response_model=list[SessionResponse])
async def list_sessions(
    course_id: UUID,
    db: AsyncSession = Depends(get_read_db),
    user: User | None = Depends(get_optional_user),
    assets: AssetLifecycleCoordinator = Depends(get_asset_coordinator),
) -> list[SessionResponse]:
    try:
        course, sessions = await CatalogService(db, assets).list_sessions(course_id)
    except ItemNotFoundError as e:
        raise _not_found(e)
    return [session_view(course, s, user) for s in sessions]


@router.get("/courses/{course_id}/sessions/{session_id}", response_model=SessionResponse)
async def get_session(
    course_id: UUID,
    session_id: UUID,
    db: AsyncSession = Depends(get_read_db),
    user: User | None = Depends(get_optional_user),
    assets: AssetLifecycleCoordinator = Depends(get_asset_coordinator),
) -> SessionResponse:
    try:
        course, course_session = await CatalogService(db, assets).get_session(
            course_id, session_id
        )
    except ItemNotFoundError as e:
        raise _not_found(e)
    return session_view(course, course_session, user)


# =============================================================================
# Health
# =============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_read_db)) -> HealthResponse:
    """Health check for load balancer. Verifies database connectivity."""
    try:
        await db.execute(text("SELECT 1"))
    except Exception as exc:
        logger.error("health_check_failed", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "status": "unhealthy",
                "database": "disconnected",
                "error": str(exc),
                "timestamp": datetime.now(UTC).isoformat(),
            },
        ) from exc

    return HealthResponse(status="healthy", database="connected", timestamp=datetime.now(UTC))
