"""
Media Asset Store - deletion of hosted images and videos.

The store is an external collaborator: entity records are authoritative,
the media host is kept consistent on a best-effort basis. Callers that must
not fail because of the host go through `delete_best_effort`, which turns
every store error into a logged `DeletionResult`.
"""

import asyncio
from typing import Any, Protocol

import cloudinary.uploader
from cloudinary.exceptions import Error as CloudinaryError
from cloudinary.exceptions import NotFound as CloudinaryNotFound
from structlog import get_logger

from app.config import MediaStoreConfig
from app.exceptions import AssetNotFoundError, AssetStoreError, AssetStoreUnavailableError
from app.models.domain import AssetKind, DeletionOutcome, DeletionResult, HostedAssetRef
from app.observability.metrics import metrics

logger = get_logger(__name__)


class MediaAssetStore(Protocol):
    """Protocol for media hosts."""

    async def delete_asset(self, identifier: str, kind: AssetKind) -> DeletionResult:
        """
        Delete one asset.

        Raises:
            AssetNotFoundError: the host has no such asset
            AssetStoreUnavailableError: the host could not be reached or refused
        """
        ...


class CloudinaryMediaStore:
    """
    Media store backed by the Cloudinary SDK.

    Credentials are passed with every call; the SDK global config is never
    touched.
    """

    def __init__(self, config: MediaStoreConfig) -> None:
        self.config = config

    def _call_options(self, kind: AssetKind) -> dict[str, Any]:
        return {
            "resource_type": kind.value,
            "cloud_name": self.config.cloud_name,
            "api_key": self.config.api_key,
            "api_secret": self.config.api_secret,
            "timeout": self.config.timeout_seconds,
        }

    async def delete_asset(self, identifier: str, kind: AssetKind) -> DeletionResult:
        if not self.config.is_configured:
            raise AssetStoreUnavailableError(identifier, kind, "credentials not configured")

        try:
            # The SDK is synchronous.
            body = await asyncio.to_thread(
                cloudinary.uploader.destroy, identifier, **self._call_options(kind)
            )
        except CloudinaryNotFound as e:
            raise AssetNotFoundError(identifier, kind) from e
        except (CloudinaryError, OSError, ValueError) as e:
            logger.error(
                "media_destroy_failed",
                identifier=identifier,
                kind=kind.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise AssetStoreUnavailableError(identifier, kind, str(e)) from e

        result = body.get("result") if isinstance(body, dict) else None
        if result == "not found":
            raise AssetNotFoundError(identifier, kind)
        if result != "ok":
            raise AssetStoreUnavailableError(identifier, kind, f"unexpected response {body!r}")

        logger.info("media_asset_destroyed", identifier=identifier, kind=kind.value)
        return DeletionResult(
            ref=HostedAssetRef(identifier=identifier, kind=kind),
            outcome=DeletionOutcome.DELETED,
        )


async def delete_best_effort(store: MediaAssetStore, ref: HostedAssetRef) -> DeletionResult:
    """
    Delete `ref`, reporting rather than raising any store failure.

    The returned result is always logged here; callers may ignore it.
    """
    try:
        result = await store.delete_asset(ref.identifier, ref.kind)
    except AssetNotFoundError as e:
        result = DeletionResult(ref=ref, outcome=DeletionOutcome.NOT_FOUND, error=str(e))
    except AssetStoreError as e:
        result = DeletionResult(ref=ref, outcome=DeletionOutcome.FAILED, error=str(e))
    except Exception as e:
        # A store defect must not fail the request that committed the record.
        metrics.record_error(type(e).__name__, "asset_deletion")
        logger.exception("asset_store_defect", identifier=ref.identifier, kind=ref.kind.value)
        result = DeletionResult(
            ref=ref, outcome=DeletionOutcome.FAILED, error=f"{type(e).__name__}: {e}"
        )

    metrics.record_asset_deletion(ref.kind.value, result.outcome.value)
    if result.ok:
        logger.info("asset_deleted", identifier=ref.identifier, kind=ref.kind.value)
    else:
        logger.warning(
            "asset_delete_failed",
            identifier=ref.identifier,
            kind=ref.kind.value,
            outcome=result.outcome.value,
            error=result.error,
        )
    return result
