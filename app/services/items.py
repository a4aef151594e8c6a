"""
Purchasable item dispatch - one table keyed by ItemKind instead of
per-kind branches scattered through the services.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import Course, StudioClass, User
from app.models.api import ItemKind
from app.models.domain import ItemRef

PurchasableItem = StudioClass | Course

ITEM_MODELS: dict[ItemKind, type[StudioClass] | type[Course]] = {
    ItemKind.CLASS: StudioClass,
    ItemKind.COURSE: Course,
}

USER_ENROLLMENT_FIELDS: dict[ItemKind, str] = {
    ItemKind.CLASS: "enrolled_class_ids",
    ItemKind.COURSE: "enrolled_course_ids",
}

# Product ids are resolved against classes before courses.
PRODUCT_RESOLUTION_ORDER: tuple[ItemKind, ...] = (ItemKind.CLASS, ItemKind.COURSE)


def user_enrollment_ids(user: User, kind: ItemKind) -> list[UUID]:
    return list(getattr(user, USER_ENROLLMENT_FIELDS[kind]) or [])


async def find_item(
    session: AsyncSession, ref: ItemRef, for_update: bool = False
) -> PurchasableItem | None:
    model = ITEM_MODELS[ref.kind]
    stmt = select(model).where(model.id == ref.item_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def resolve_product_reference(
    session: AsyncSession, product_id: str
) -> tuple[ItemRef, PurchasableItem] | None:
    """Map a processor product id to the item selling it, or None."""
    for kind in PRODUCT_RESOLUTION_ORDER:
        model = ITEM_MODELS[kind]
        result = await session.execute(
            select(model).where(model.digistore_product_id == product_id).limit(1)
        )
        item = result.scalar_one_or_none()
        if item is not None:
            return ItemRef(kind=kind, item_id=item.id), item
    return None


async def find_user_by_email(session: AsyncSession, email: str) -> User | None:
    result = await session.execute(select(User).where(User.email == email.strip().lower()))
    return result.scalar_one_or_none()
