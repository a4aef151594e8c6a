"""
Access Service - grant and revoke enrollment between users and items.

Each enrollment is stored on both sides (user.enrolled_*_ids and
item.enrolled_user_ids). Each side is updated as its own row-locked,
committed add-to-set or remove operation, so repeating a grant or a
revoke is a no-op rather than an error.
"""

from collections.abc import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.db.models import User
from app.exceptions import (
    DuplicateEnrollmentError,
    ItemNotFoundError,
    PaymentRequiredError,
    UserNotFoundError,
)
from app.models.domain import ItemRef
from app.observability.metrics import metrics
from app.services.items import (
    USER_ENROLLMENT_FIELDS,
    PurchasableItem,
    find_item,
    user_enrollment_ids,
)

logger = get_logger(__name__)


def add_to_set(ids: Sequence[UUID], value: UUID) -> list[UUID]:
    """Append `value` unless already present."""
    if value in ids:
        return list(ids)
    return [*ids, value]


def remove_from_set(ids: Sequence[UUID], value: UUID) -> list[UUID]:
    """Drop every occurrence of `value`."""
    return [existing for existing in ids if existing != value]


class AccessService:
    """Bidirectional enrollment mutations."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def grant(self, user_id: UUID, item: ItemRef) -> bool:
        """Enroll the user in the item. Returns True if either side changed."""
        user_changed = await self._update_user_side(user_id, item, add=True)
        item_changed = await self._update_item_side(item, user_id, add=True)
        changed = user_changed or item_changed
        if changed:
            metrics.record_entitlement_change("grant", item.kind.value)
        logger.info(
            "access_granted",
            user_id=str(user_id),
            item_type=item.kind.value,
            item_id=str(item.item_id),
            changed=changed,
        )
        return changed

    async def revoke(self, user_id: UUID, item: ItemRef) -> bool:
        """Remove the enrollment from both sides. Returns True if either side changed."""
        user_changed = await self._update_user_side(user_id, item, add=False)
        item_changed = await self._update_item_side(item, user_id, add=False)
        changed = user_changed or item_changed
        if changed:
            metrics.record_entitlement_change("revoke", item.kind.value)
        logger.info(
            "access_revoked",
            user_id=str(user_id),
            item_type=item.kind.value,
            item_id=str(item.item_id),
            changed=changed,
        )
        return changed

    async def enroll(self, user: User, ref: ItemRef, item: PurchasableItem) -> None:
        """
        Interactive self-enrollment into a free item.

        Raises:
            PaymentRequiredError: item is paid (access comes from checkout only)
            DuplicateEnrollmentError: user already enrolled
        """
        if item.is_paid:
            raise PaymentRequiredError(ref.kind, ref.item_id)

        enrolled_on_user = ref.item_id in user_enrollment_ids(user, ref.kind)
        if enrolled_on_user or user.id in (item.enrolled_user_ids or []):
            raise DuplicateEnrollmentError(user.id, ref.kind, ref.item_id)

        await self.grant(user.id, ref)

    # ========================================================================
    # Private helpers
    # ========================================================================

    async def _lock_user(self, user_id: UUID) -> User | None:
        result = await self.session.execute(
            select(User).where(User.id == user_id).with_for_update()
        )
        return result.scalar_one_or_none()

    async def _lock_item(self, item: ItemRef) -> PurchasableItem | None:
        return await find_item(self.session, item, for_update=True)

    async def _update_user_side(self, user_id: UUID, item: ItemRef, add: bool) -> bool:
        user = await self._lock_user(user_id)
        if user is None:
            await self.session.rollback()
            raise UserNotFoundError(user_id)

        field = USER_ENROLLMENT_FIELDS[item.kind]
        current = list(getattr(user, field) or [])
        updated = add_to_set(current, item.item_id) if add else remove_from_set(current, item.item_id)
        changed = updated != current
        if changed:
            setattr(user, field, updated)
        await self.session.commit()
        return changed

    async def _update_item_side(self, item: ItemRef, user_id: UUID, add: bool) -> bool:
        row = await self._lock_item(item)
        if row is None:
            await self.session.rollback()
            raise ItemNotFoundError(item.kind.value, item.item_id)

        current = list(row.enrolled_user_ids or [])
        updated = add_to_set(current, user_id) if add else remove_from_set(current, user_id)
        changed = updated != current
        if changed:
            row.enrolled_user_ids = updated
        await self.session.commit()
        return changed
