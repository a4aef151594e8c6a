"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
"""

from datetime import datetime
from enum import Enum
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_CLASS_IMAGE = "default-class.jpg"
DEFAULT_COURSE_IMAGE = "default-course.jpg"


class ItemKind(str, Enum):
    """Purchasable item kinds."""

    CLASS = "class"
    COURSE = "course"


class PaymentStatus(str, Enum):
    """Transaction record status enumeration."""

    PENDING = "pending"
    COMPLETED = "completed"
    REFUNDED = "refunded"
    CHARGEBACKED = "chargebacked"
    CANCELLED = "cancelled"


class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"


class ClassLevel(str, Enum):
    BEGINNER = "Beginner"
    INTERMEDIATE = "Intermediate"
    ADVANCED = "Advanced"
    ALL_LEVELS = "All Levels"


class UserStatusFilter(str, Enum):
    """Admin user listing filters.

    registered: no enrollments. active: enrolled in free items only.
    premium: enrolled in at least one paid item.
    """

    ALL = "all"
    REGISTERED = "registered"
    ACTIVE = "active"
    PREMIUM = "premium"


def _normalize_email(value: str) -> str:
    value = value.strip().lower()
    local, _, domain = value.partition("@")
    if not local or "." not in domain:
        raise ValueError("Invalid email address")
    return value


# ============================================================================
# Auth Models
# ============================================================================


class RegisterRequest(BaseModel):
    """Request to create a user account."""

    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., max_length=255)
    password: str = Field(..., min_length=6, max_length=128)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _normalize_email(v)


class LoginRequest(BaseModel):
    email: str = Field(..., max_length=255)
    password: str = Field(..., min_length=1, max_length=128)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return v.strip().lower()


class UserResponse(BaseModel):
    """Public view of a user."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    email: str
    role: UserRole
    enrolled_class_ids: list[UUID]
    enrolled_course_ids: list[UUID]
    created_at: datetime


class TokenResponse(BaseModel):
    token: str
    token_type: Literal["bearer"] = "bearer"
    user: UserResponse


class UserListResponse(BaseModel):
    users: list[UserResponse]
    total: int
    page: int
    pages: int


# ============================================================================
# Catalog Models
# ============================================================================


class ClassCreateRequest(BaseModel):
    """Admin request to create a class. Media fields are already-uploaded URLs."""

    title: str = Field(..., min_length=1, max_length=50)
    description: str = Field(..., min_length=1, max_length=500)
    instructor: str = Field(..., min_length=1, max_length=100)
    is_paid: bool = False
    price_minor: int = Field(0, ge=0)
    digistore_product_id: str | None = Field(None, max_length=100)
    level: ClassLevel = ClassLevel.ALL_LEVELS
    image: str = Field(DEFAULT_CLASS_IMAGE, max_length=1024)
    video: str | None = Field(None, max_length=1024)
    duration: str = Field("60 min", max_length=50)

    @model_validator(mode="after")
    def validate_paid_product(self) -> "ClassCreateRequest":
        if self.is_paid and not self.digistore_product_id:
            raise ValueError("digistore_product_id is required for paid classes")
        return self


class ClassUpdateRequest(BaseModel):
    """Partial class update. Only fields present in the payload are applied."""

    title: str | None = Field(None, min_length=1, max_length=50)
    description: str | None = Field(None, min_length=1, max_length=500)
    instructor: str | None = Field(None, min_length=1, max_length=100)
    is_paid: bool | None = None
    price_minor: int | None = Field(None, ge=0)
    digistore_product_id: str | None = Field(None, max_length=100)
    level: ClassLevel | None = None
    image: str | None = Field(None, max_length=1024)
    video: str | None = Field(None, max_length=1024)
    duration: str | None = Field(None, max_length=50)


class ClassResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    description: str
    instructor: str
    is_paid: bool
    price_minor: int
    digistore_product_id: str | None
    level: ClassLevel
    image: str
    video: str | None
    duration: str
    enrolled_user_ids: list[UUID]
    created_at: datetime


class CourseCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1, max_length=1000)
    instructor: str = Field(..., min_length=1, max_length=100)
    is_paid: bool = False
    price_minor: int = Field(0, ge=0)
    digistore_product_id: str | None = Field(None, max_length=100)
    level: ClassLevel = ClassLevel.ALL_LEVELS
    image: str = Field(DEFAULT_COURSE_IMAGE, max_length=1024)
    duration: str | None = Field(None, max_length=50)
    sessions_label: str | None = Field(None, max_length=50)
    learn_points: list[str] = Field(default_factory=list, max_length=10)

    @model_validator(mode="after")
    def validate_paid_product(self) -> "CourseCreateRequest":
        if self.is_paid and not self.digistore_product_id:
            raise ValueError("digistore_product_id is required for paid courses")
        return self


class CourseUpdateRequest(BaseModel):
    title: str | None = Field(None, min_length=1, max_length=100)
    description: str | None = Field(None, min_length=1, max_length=1000)
    instructor: str | None = Field(None, min_length=1, max_length=100)
    is_paid: bool | None = None
    price_minor: int | None = Field(None, ge=0)
    digistore_product_id: str | None = Field(None, max_length=100)
    level: ClassLevel | None = None
    image: str | None = Field(None, max_length=1024)
    duration: str | None = Field(None, max_length=50)
    sessions_label: str | None = Field(None, max_length=50)
    learn_points: list[str] | None = Field(None, max_length=10)


class CourseResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    description: str
    instructor: str
    is_paid: bool
    price_minor: int
    digistore_product_id: str | None
    level: ClassLevel
    image: str
    duration: str | None
    sessions_label: str | None
    learn_points: list[str]
    enrolled_user_ids: list[UUID]
    created_at: datetime


class SessionCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    description: str | None = Field(None, max_length=500)
    video: str = Field(..., min_length=1, max_length=1024)
    thumbnail: str | None = Field(None, max_length=1024)
    duration: str | None = Field(None, max_length=50)
    order: int | None = Field(None, ge=0)


class SessionUpdateRequest(BaseModel):
    title: str | None = Field(None, min_length=1, max_length=100)
    description: str | None = Field(None, max_length=500)
    video: str | None = Field(None, min_length=1, max_length=1024)
    thumbnail: str | None = Field(None, max_length=1024)
    duration: str | None = Field(None, max_length=50)
    order: int | None = Field(None, ge=0)


class SessionPosition(BaseModel):
    id: UUID
    order: int = Field(..., ge=0)


class SessionReorderRequest(BaseModel):
    sessions: list[SessionPosition] = Field(..., min_length=1)


class SessionResponse(BaseModel):
    """Session view. `video` is None when the caller may not watch it."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    course_id: UUID
    title: str
    description: str | None
    order: int
    video: str | None
    thumbnail: str | None
    duration: str | None
    created_at: datetime


class EnrolledUserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    email: str
    created_at: datetime


class EnrollmentResponse(BaseModel):
    item_type: ItemKind
    item_id: UUID
    enrolled: bool


# ============================================================================
# Payment Models
# ============================================================================


class CheckoutRequest(BaseModel):
    item_type: ItemKind
    item_id: UUID


class CheckoutResponse(BaseModel):
    checkout_url: str
    item_type: ItemKind
    item_id: UUID
    title: str
    price_minor: int


class PaymentResponse(BaseModel):
    """A user's own view of a transaction record."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_id: str
    item_type: ItemKind
    item_id: UUID
    status: PaymentStatus
    amount_minor: int
    currency: str
    paid_at: datetime | None
    refunded_at: datetime | None
    created_at: datetime


class AdminPaymentResponse(PaymentResponse):
    """Admin view, with the anomaly flag for reversals lacking a completed payment."""

    user_id: UUID
    product_id: str | None
    customer_email: str | None
    customer_name: str | None
    notes: str | None
    anomaly: bool


class PaymentListResponse(BaseModel):
    payments: list[AdminPaymentResponse]
    total: int
    page: int
    pages: int


# ============================================================================
# Service Models
# ============================================================================


class HealthResponse(BaseModel):
    status: Literal["healthy", "degraded"]
    database: Literal["connected", "disconnected"]
    timestamp: datetime


class MessageResponse(BaseModel):
    message: str
