"""
Auth API routes - registration, login and current user.
"""

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.api.dependencies import TOKEN_COOKIE, get_current_user, get_token_service
from app.config import get_settings
from app.db.models import User
from app.db.session import get_write_db
from app.exceptions import AuthenticationError, DuplicateUserError
from app.models.api import LoginRequest, MessageResponse, RegisterRequest, TokenResponse, UserResponse
from app.services.auth import TokenService, UserService

logger = get_logger(__name__)
router = APIRouter(prefix="/api/auth", tags=["auth"])


def _issue_token(response: Response, user: User, token_service: TokenService) -> TokenResponse:
    token = token_service.create_token(user)
    response.set_cookie(
        key=TOKEN_COOKIE,
        value=token,
        httponly=True,
        samesite="lax",
        max_age=get_settings().jwt_expire_hours * 3600,
    )
    return TokenResponse(token=token, user=UserResponse.model_validate(user))


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def register(
    request: RegisterRequest,
    response: Response,
    db: AsyncSession = Depends(get_write_db),
    token_service: TokenService = Depends(get_token_service),
) -> TokenResponse:
    try:
        user = await UserService(db).register(request)
    except DuplicateUserError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User already exists")
    return _issue_token(response, user, token_service)


@router.post("/login", response_model=TokenResponse)
async def login(
    request: LoginRequest,
    response: Response,
    db: AsyncSession = Depends(get_write_db),
    token_service: TokenService = Depends(get_token_service),
) -> TokenResponse:
    try:
        user = await UserService(db).authenticate(request.email, request.password)
    except AuthenticationError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return _issue_token(response, user, token_service)


@router.post("/logout", response_model=MessageResponse)
async def logout(response: Response) -> MessageResponse:
    response.delete_cookie(TOKEN_COOKIE)
    return MessageResponse(message="Logged out")


@router.get("/me", response_model=UserResponse)
async def me(user: User = Depends(get_current_user)) -> UserResponse:
    return UserResponse.model_validate(user)
