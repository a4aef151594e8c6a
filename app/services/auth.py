"""
User accounts and token authentication.

Passwords are hashed with argon2; sessions are stateless HS256 JWTs.
"""

import math
from datetime import UTC, datetime, timedelta
from uuid import UUID

import jwt
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError
from sqlalchemy import and_, any_, exists, func, not_, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.db.models import Course, StudioClass, User
from app.exceptions import AuthenticationError, DuplicateUserError
from app.models.api import RegisterRequest, UserRole, UserStatusFilter

logger = get_logger(__name__)


class TokenService:
    """Issues and verifies user JWTs."""

    def __init__(self, jwt_secret: str, jwt_expire_hours: int) -> None:
        self.jwt_secret = jwt_secret
        self.jwt_expire_hours = jwt_expire_hours

    def create_token(self, user: User) -> str:
        now = datetime.now(UTC)
        payload = {
            "sub": str(user.id),
            "email": user.email,
            "role": user.role,
            "iat": now,
            "exp": now + timedelta(hours=self.jwt_expire_hours),
        }
        return jwt.encode(payload, self.jwt_secret, algorithm="HS256")

    def verify_token(self, token: str) -> UUID:
        """
        Return the user id the token was issued for.

        Raises:
            AuthenticationError: expired, tampered or malformed token
        """
        try:
            payload = jwt.decode(token, self.jwt_secret, algorithms=["HS256"])
            return UUID(str(payload["sub"]))
        except jwt.ExpiredSignatureError:
            logger.warning("jwt_token_expired")
            raise AuthenticationError("token expired")
        except (jwt.InvalidTokenError, KeyError, ValueError) as e:
            logger.warning("jwt_token_invalid", error=str(e))
            raise AuthenticationError("invalid token")


class UserService:
    """Registration, login and admin user listing."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.password_hasher = PasswordHasher()

    async def register(self, request: RegisterRequest) -> User:
        if await self.find_by_email(request.email) is not None:
            raise DuplicateUserError(request.email)

        user = User(
            name=request.name,
            email=request.email,
            password_hash=self.password_hasher.hash(request.password),
            role=UserRole.USER.value,
            enrolled_class_ids=[],
            enrolled_course_ids=[],
        )
        self.session.add(user)
        try:
            await self.session.commit()
        except IntegrityError:
            # Concurrent registration with the same email.
            await self.session.rollback()
            raise DuplicateUserError(request.email)

        logger.info("user_registered", user_id=str(user.id))
        return user

    async def authenticate(self, email: str, password: str) -> User:
        user = await self.find_by_email(email)
        if user is None:
            logger.warning("login_unknown_email")
            raise AuthenticationError("invalid credentials")

        try:
            self.password_hasher.verify(user.password_hash, password)
        except (VerifyMismatchError, VerificationError, InvalidHashError):
            logger.warning("login_password_mismatch", user_id=str(user.id))
            raise AuthenticationError("invalid credentials")

        logger.info("user_logged_in", user_id=str(user.id))
        return user

    async def find_by_email(self, email: str) -> User | None:
        result = await self.session.execute(select(User).where(User.email == email.lower()))
        return result.scalar_one_or_none()

    async def get_user(self, user_id: UUID) -> User | None:
        result = await self.session.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def list_users(
        self, status: UserStatusFilter, page: int, limit: int
    ) -> tuple[list[User], int, int]:
        """Non-admin users matching `status`, newest first. Returns (users, total, pages)."""
        conditions = [User.role != UserRole.ADMIN.value, *self._status_conditions(status)]

        count_result = await self.session.execute(
            select(func.count()).select_from(User).where(*conditions)
        )
        total = count_result.scalar_one()

        result = await self.session.execute(
            select(User)
            .where(*conditions)
            .order_by(User.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        users = list(result.scalars().all())
        return users, total, math.ceil(total / limit) if total else 0

    @staticmethod
    def _status_conditions(status: UserStatusFilter) -> list:
        has_enrollments = or_(
            func.cardinality(User.enrolled_class_ids) > 0,
            func.cardinality(User.enrolled_course_ids) > 0,
        )
        has_paid = or_(
            exists().where(
                and_(StudioClass.is_paid.is_(True), StudioClass.id == any_(User.enrolled_class_ids))
            ),
            exists().where(
                and_(Course.is_paid.is_(True), Course.id == any_(User.enrolled_course_ids))
            ),
        )

        if status == UserStatusFilter.REGISTERED:
            return [not_(has_enrollments)]
        if status == UserStatusFilter.PREMIUM:
            return [has_paid]
        if status == UserStatusFilter.ACTIVE:
            return [has_enrollments, not_(has_paid)]
        return []
