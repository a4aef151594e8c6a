"""
Catalog Service - classes, courses and course sessions.

Every mutation of an entity with media fields goes through the
AssetLifecycleCoordinator so hosted assets follow the record.

Create and update take the raw request body. It is validated inside the
persistence step, so a rejected payload still rolls back the media it
references. Updates lock the row before the asset plan is computed.
"""

from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any, TypeVar
from uuid import UUID

from pydantic import BaseModel, ValidationError
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.db.models import Course, CourseSession, StudioClass, User
from app.exceptions import ItemNotFoundError, PersistenceError
from app.models.api import (
    DEFAULT_CLASS_IMAGE,
    DEFAULT_COURSE_IMAGE,
    ClassCreateRequest,
    ClassUpdateRequest,
    CourseCreateRequest,
    CourseUpdateRequest,
    ItemKind,
    SessionCreateRequest,
    SessionPosition,
    SessionUpdateRequest,
    UserRole,
)
from app.models.domain import ItemRef
from app.services.asset_lifecycle import (
    CLASS_ASSET_FIELDS,
    COURSE_ASSET_FIELDS,
    SESSION_ASSET_FIELDS,
    AssetField,
    AssetLifecycleCoordinator,
    entity_assets,
)
from app.services.items import ITEM_MODELS, PurchasableItem, find_item

logger = get_logger(__name__)

E = TypeVar("E", StudioClass, Course, CourseSession)


def _placeholder_image(entity: Any) -> str:
    return DEFAULT_COURSE_IMAGE if isinstance(entity, Course) else DEFAULT_CLASS_IMAGE


def can_watch(user: User | None, course: PurchasableItem) -> bool:
    """Free items are open; paid ones need enrollment or the admin role."""
    if not course.is_paid:
        return True
    if user is None:
        return False
    if user.role == UserRole.ADMIN.value:
        return True
    return user.id in (course.enrolled_user_ids or [])


def _check_paid_product(entity: StudioClass | Course) -> None:
    if entity.is_paid and not entity.digistore_product_id:
        raise PersistenceError("digistore_product_id is required for paid items")


class CatalogService:
    """CRUD for catalog entities with media rollback and cleanup."""

    def __init__(self, session: AsyncSession, assets: AssetLifecycleCoordinator) -> None:
        self.session = session
        self.assets = assets

    # ========================================================================
    # Items
    # ========================================================================

    async def list_items(self, kind: ItemKind) -> list[PurchasableItem]:
        model = ITEM_MODELS[kind]
        result = await self.session.execute(select(model).order_by(model.created_at.desc()))
        return list(result.scalars().all())

    async def get_item(self, kind: ItemKind, item_id: UUID) -> PurchasableItem:
        item = await find_item(self.session, ItemRef(kind=kind, item_id=item_id))
        if item is None:
            raise ItemNotFoundError(kind.value, item_id)
        return item

    async def enrolled_users(self, kind: ItemKind, item_id: UUID) -> list[User]:
        item = await self.get_item(kind, item_id)
        if not item.enrolled_user_ids:
            return []
        result = await self.session.execute(
            select(User).where(User.id.in_(item.enrolled_user_ids)).order_by(User.name)
        )
        return list(result.scalars().all())

    async def create_class(self, payload: Mapping[str, Any]) -> StudioClass:
        return await self._create(StudioClass, ClassCreateRequest, payload, CLASS_ASSET_FIELDS)

    async def update_class(self, class_id: UUID, payload: Mapping[str, Any]) -> StudioClass:
        existing = await self._lock_item(ItemKind.CLASS, class_id)
        return await self._update(existing, ClassUpdateRequest, payload, CLASS_ASSET_FIELDS)

    async def delete_class(self, class_id: UUID) -> None:
        existing = await self._lock_item(ItemKind.CLASS, class_id)
        await self.assets.run_delete(
            existing, CLASS_ASSET_FIELDS, lambda: self._delete_row(existing)
        )
        logger.info("class_deleted", class_id=str(class_id))

    async def create_course(self, payload: Mapping[str, Any]) -> Course:
        return await self._create(Course, CourseCreateRequest, payload, COURSE_ASSET_FIELDS)

    async def update_course(self, course_id: UUID, payload: Mapping[str, Any]) -> Course:
        existing = await self._lock_item(ItemKind.COURSE, course_id)
        return await self._update(existing, CourseUpdateRequest, payload, COURSE_ASSET_FIELDS)

    async def delete_course(self, course_id: UUID) -> None:
        """Delete a course, then its sessions and their media, then its own image."""
        existing = await self._lock_item(ItemKind.COURSE, course_id)

        async def remove_sessions() -> None:
            sessions = await self._sessions_of(course_id)
            for course_session in sessions:
                await self.assets.delete_assets(
                    entity_assets(course_session, SESSION_ASSET_FIELDS), reason="session_cascade"
                )
            removed = await self._delete_sessions_of(course_id)
            logger.info("course_sessions_removed", course_id=str(course_id), count=removed)

        await self.assets.run_delete(
            existing,
            COURSE_ASSET_FIELDS,
            lambda: self._delete_row(existing),
            cascade=remove_sessions,
        )
        logger.info("course_deleted", course_id=str(course_id))

    # ========================================================================
    # Sessions
    # ========================================================================

    async def list_sessions(self, course_id: UUID) -> tuple[Course, list[CourseSession]]:
        course = await self.get_item(ItemKind.COURSE, course_id)
        return course, await self._sessions_of(course_id)

    async def get_session(
        self, course_id: UUID, session_id: UUID
    ) -> tuple[Course, CourseSession]:
        course = await self.get_item(ItemKind.COURSE, course_id)
        course_session = await self._find_session(course_id, session_id)
        return course, course_session

    async def create_session(self, course_id: UUID, payload: Mapping[str, Any]) -> CourseSession:
        async def place(values: dict[str, Any]) -> None:
            await self.get_item(ItemKind.COURSE, course_id)
            if values.get("order") is None:
                values["order"] = await self._next_session_order(course_id)
            values["course_id"] = course_id

        return await self._create(
            CourseSession, SessionCreateRequest, payload, SESSION_ASSET_FIELDS, complete=place
        )

    async def update_session(
        self, course_id: UUID, session_id: UUID, payload: Mapping[str, Any]
    ) -> CourseSession:
        existing = await self._find_session(course_id, session_id, for_update=True)
        return await self._update(existing, SessionUpdateRequest, payload, SESSION_ASSET_FIELDS)

    async def delete_session(self, course_id: UUID, session_id: UUID) -> None:
        existing = await self._find_session(course_id, session_id, for_update=True)
        await self.assets.run_delete(
            existing, SESSION_ASSET_FIELDS, lambda: self._delete_row(existing)
        )
        logger.info("session_deleted", course_id=str(course_id), session_id=str(session_id))

    async def reorder_sessions(
        self, course_id: UUID, positions: Sequence[SessionPosition]
    ) -> list[CourseSession]:
        """Apply bulk position updates; ids outside the course are ignored."""
        await self.get_item(ItemKind.COURSE, course_id)
        for position in positions:
            await self.session.execute(
                update(CourseSession)
                .where(CourseSession.id == position.id, CourseSession.course_id == course_id)
                .values(order=position.order)
            )
        await self._commit("reorder sessions")
        return await self._sessions_of(course_id)

    # ========================================================================
    # Private helpers
    # ========================================================================

    async def _lock_item(self, kind: ItemKind, item_id: UUID) -> PurchasableItem:
        item = await find_item(self.session, ItemRef(kind=kind, item_id=item_id), for_update=True)
        if item is None:
            raise ItemNotFoundError(kind.value, item_id)
        return item

    async def _find_session(
        self, course_id: UUID, session_id: UUID, for_update: bool = False
    ) -> CourseSession:
        stmt = select(CourseSession).where(
            CourseSession.id == session_id, CourseSession.course_id == course_id
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        course_session = result.scalar_one_or_none()
        if course_session is None:
            raise ItemNotFoundError("session", session_id)
        return course_session

    async def _sessions_of(self, course_id: UUID) -> list[CourseSession]:
        result = await self.session.execute(
            select(CourseSession)
            .where(CourseSession.course_id == course_id)
            .order_by(CourseSession.order)
        )
        return list(result.scalars().all())

    async def _next_session_order(self, course_id: UUID) -> int:
        result = await self.session.execute(
            select(func.max(CourseSession.order)).where(CourseSession.course_id == course_id)
        )
        last = result.scalar_one_or_none()
        return 1 if last is None else last + 1

    async def _delete_sessions_of(self, course_id: UUID) -> int:
        result = await self.session.execute(
            delete(CourseSession).where(CourseSession.course_id == course_id)
        )
        await self._commit("delete course sessions")
        return result.rowcount or 0

    async def _commit(self, action: str) -> None:
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("catalog_write_failed", action=action, error=str(e))
            raise PersistenceError(f"{action}: {e}") from e

    async def _create(
        self,
        model: type[E],
        schema: type[BaseModel],
        payload: Mapping[str, Any],
        fields: Sequence[AssetField],
        complete: Callable[[dict[str, Any]], Awaitable[None]] | None = None,
    ) -> E:
        async def persist() -> E:
            values = schema.model_validate(payload).model_dump(mode="json")
            if complete is not None:
                await complete(values)
            entity = model(**values)
            if isinstance(entity, (StudioClass, Course)):
                _check_paid_product(entity)
            self.session.add(entity)
            await self._commit(f"create {model.__tablename__}")
            return entity

        entity = await self.assets.run_create(payload, fields, persist)
        logger.info("catalog_entity_created", table=model.__tablename__, entity_id=str(entity.id))
        return entity

    async def _update(
        self,
        existing: E,
        schema: type[BaseModel],
        payload: Mapping[str, Any],
        fields: Sequence[AssetField],
    ) -> E:
        # `existing` was loaded under a row lock, so the asset plan sees the
        # committed value and concurrent updates of the same row serialize.
        async def persist() -> E:
            changes = schema.model_validate(payload).model_dump(exclude_unset=True, mode="json")
            for key, value in changes.items():
                if key == "image" and value is None:
                    value = _placeholder_image(existing)
                setattr(existing, key, value)
            if isinstance(existing, (StudioClass, Course)):
                _check_paid_product(existing)
            await self._commit(f"update {existing.__tablename__}")
            return existing

        try:
            updated = await self.assets.run_update(existing, payload, fields, persist)
        except (PersistenceError, ValidationError):
            await self.session.rollback()
            raise
        logger.info(
            "catalog_entity_updated",
            table=existing.__tablename__,
            entity_id=str(existing.id),
            fields=sorted(payload),
        )
        return updated

    async def _delete_row(self, entity: Any) -> None:
        await self.session.delete(entity)
        await self._commit(f"delete {entity.__tablename__}")
