"""
Asset Lifecycle Coordinator - keeps hosted media in step with entity records.

Media fields hold URLs of assets that were uploaded before the request. The
coordinator wraps each persistence step:

- create: if the insert fails, the submitted assets are deleted (rollback)
- update: a field counts as changed only when it is present in the payload
  and differs from the stored value; on success the replaced assets are
  deleted, on failure the newly submitted ones are
- delete: the record goes first, then every asset it referenced

All media deletions are best-effort. Persistence errors propagate to the
caller after rollback; media errors never do.
"""

import asyncio
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar

from structlog import get_logger

from app.models.domain import AssetChangePlan, AssetKind, DeletionResult, HostedAssetRef
from app.services.asset_refs import asset_ref
from app.services.media_store import MediaAssetStore, delete_best_effort

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class AssetField:
    """An entity attribute holding a hosted media URL."""

    name: str
    kind: AssetKind


CLASS_ASSET_FIELDS = (AssetField("image", AssetKind.IMAGE), AssetField("video", AssetKind.VIDEO))
COURSE_ASSET_FIELDS = (AssetField("image", AssetKind.IMAGE),)
SESSION_ASSET_FIELDS = (
    AssetField("video", AssetKind.VIDEO),
    AssetField("thumbnail", AssetKind.IMAGE),
)


def _refs(pairs: Iterable[tuple[Any, AssetKind]]) -> tuple[HostedAssetRef, ...]:
    refs = []
    for value, kind in pairs:
        ref = asset_ref(value, kind)
        if ref is not None:
            refs.append(ref)
    return tuple(refs)


def submitted_assets(
    values: Mapping[str, Any], fields: Sequence[AssetField]
) -> tuple[HostedAssetRef, ...]:
    """Assets referenced by a create payload."""
    return _refs((values.get(f.name), f.kind) for f in fields)


def entity_assets(entity: Any, fields: Sequence[AssetField]) -> tuple[HostedAssetRef, ...]:
    """Assets currently referenced by a stored entity."""
    return _refs((getattr(entity, f.name, None), f.kind) for f in fields)


def plan_asset_changes(
    existing: Any, changes: Mapping[str, Any], fields: Sequence[AssetField]
) -> AssetChangePlan:
    """
    Classify the asset fields an update touches.

    Only keys present in `changes` are considered. Placeholders and URLs that
    are not on the media host produce no candidates.
    """
    cleanup: list[HostedAssetRef] = []
    rollback: list[HostedAssetRef] = []

    for f in fields:
        if f.name not in changes:
            continue
        old_value = getattr(existing, f.name, None)
        new_value = changes[f.name]
        if new_value == old_value:
            continue

        old_ref = asset_ref(old_value, f.kind)
        if old_ref is not None:
            cleanup.append(old_ref)
        new_ref = asset_ref(new_value, f.kind)
        if new_ref is not None:
            rollback.append(new_ref)

    return AssetChangePlan(cleanup_on_success=tuple(cleanup), rollback_on_failure=tuple(rollback))


class AssetLifecycleCoordinator:
    """Runs entity persistence steps with media rollback and cleanup."""

    def __init__(self, store: MediaAssetStore) -> None:
        self.store = store

    async def delete_assets(
        self, refs: Sequence[HostedAssetRef], reason: str
    ) -> list[DeletionResult]:
        """Best-effort delete of every ref; one failure never stops the rest."""
        if not refs:
            return []
        results = await asyncio.gather(*(delete_best_effort(self.store, ref) for ref in refs))
        failed = [r for r in results if not r.ok]
        logger.info(
            "asset_cleanup_finished",
            reason=reason,
            attempted=len(results),
            failed=len(failed),
        )
        return list(results)

    async def run_create(
        self,
        values: Mapping[str, Any],
        fields: Sequence[AssetField],
        persist: Callable[[], Awaitable[T]],
    ) -> T:
        noted = submitted_assets(values, fields)
        try:
            return await persist()
        except Exception as e:
            logger.warning("entity_create_failed", error=str(e), rollback_assets=len(noted))
            await self.delete_assets(noted, reason="create_rollback")
            raise

    async def run_update(
        self,
        existing: Any,
        changes: Mapping[str, Any],
        fields: Sequence[AssetField],
        persist: Callable[[], Awaitable[T]],
    ) -> T:
        plan = plan_asset_changes(existing, changes, fields)
        try:
            result = await persist()
        except Exception as e:
            logger.warning(
                "entity_update_failed",
                error=str(e),
                rollback_assets=len(plan.rollback_on_failure),
            )
            await self.delete_assets(plan.rollback_on_failure, reason="update_rollback")
            raise

        await self.delete_assets(plan.cleanup_on_success, reason="update_cleanup")
        return result

    async def run_delete(
        self,
        entity: Any,
        fields: Sequence[AssetField],
        persist: Callable[[], Awaitable[T]],
        cascade: Callable[[], Awaitable[None]] | None = None,
    ) -> T:
        """
        Delete the record, then run `cascade` (child records and their
        media), then delete the entity's own assets.
        """
        owned = entity_assets(entity, fields)
        result = await persist()
        if cascade is not None:
            await cascade()
        await self.delete_assets(owned, reason="delete_cleanup")
        return result
