"""
FastAPI dependencies - authentication and service wiring.

Configuration structs are built once from settings and handed to the
services here, so business code never reads global settings.
"""

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.config import get_settings
from app.db.models import User
from app.db.session import get_write_db
from app.exceptions import AuthenticationError
from app.models.api import UserRole
from app.services.asset_lifecycle import AssetLifecycleCoordinator
from app.services.auth import TokenService, UserService
from app.services.digistore_provider import DigistoreProvider
from app.services.media_store import CloudinaryMediaStore, MediaAssetStore

logger = get_logger(__name__)

TOKEN_COOKIE = "token"

_media_store: CloudinaryMediaStore | None = None


def get_token_service() -> TokenService:
    settings = get_settings()
    return TokenService(jwt_secret=settings.jwt_secret, jwt_expire_hours=settings.jwt_expire_hours)


def get_media_store() -> MediaAssetStore:
    """Process-wide media store client."""
    global _media_store
    if _media_store is None:
        _media_store = CloudinaryMediaStore(get_settings().media_store_config())
    return _media_store


def get_asset_coordinator(
    store: MediaAssetStore = Depends(get_media_store),
) -> AssetLifecycleCoordinator:
    return AssetLifecycleCoordinator(store)


def get_digistore_provider() -> DigistoreProvider:
    return DigistoreProvider(get_settings().digistore_config())


def _extract_token(request: Request, authorization: str | None) -> str | None:
    if authorization and authorization.startswith("Bearer "):
        return authorization.removeprefix("Bearer ").strip() or None
    return request.cookies.get(TOKEN_COOKIE)


async def get_optional_user(
    request: Request,
    authorization: str | None = Header(None),
    db: AsyncSession = Depends(get_write_db),
    token_service: TokenService = Depends(get_token_service),
) -> User | None:
    """Authenticated user if a valid token is present, otherwise None."""
    token = _extract_token(request, authorization)
    if not token:
        return None
    try:
        user_id = token_service.verify_token(token)
    except AuthenticationError:
        return None
    return await UserService(db).get_user(user_id)


async def get_current_user(
    request: Request,
    authorization: str | None = Header(None),
    db: AsyncSession = Depends(get_write_db),
    token_service: TokenService = Depends(get_token_service),
) -> User:
    """
    Get the authenticated user.

    Checks the Authorization header first, then the token cookie.

    Raises:
        HTTPException(401): no token, invalid token, or unknown user
    """
    token = _extract_token(request, authorization)
    if not token:
        logger.warning("auth_no_token", path=request.url.path)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        user_id = token_service.verify_token(token)
    except AuthenticationError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = await UserService(db).get_user(user_id)
    if user is None:
        logger.warning("auth_user_missing", user_id=str(user_id))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    """Raises HTTPException(403) unless the user has the admin role."""
    if user.role != UserRole.ADMIN.value:
        logger.warning("admin_access_denied", user_id=str(user.id), role=user.role)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin role required",
        )
    return user
