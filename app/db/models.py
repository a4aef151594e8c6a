"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
Raw IPN payloads are the exception: they are kept as JSONB for auditing.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    ARRAY,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from app.models.api import (
    DEFAULT_CLASS_IMAGE,
    DEFAULT_COURSE_IMAGE,
    ClassLevel,
    PaymentStatus,
    UserRole,
)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def _uuid_array() -> Any:
    return ARRAY(PG_UUID(as_uuid=True))


class User(Base):
    """
    ORM model for users table.

    Holds credentials and this user's side of every enrollment.
    """

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(
        String(20), nullable=False, default=UserRole.USER.value, server_default=UserRole.USER.value
    )

    enrolled_class_ids: Mapped[list[UUID]] = mapped_column(
        _uuid_array(), nullable=False, default=list, server_default=text("'{}'")
    )
    enrolled_course_ids: Mapped[list[UUID]] = mapped_column(
        _uuid_array(), nullable=False, default=list, server_default=text("'{}'")
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("role IN ('user', 'admin')", name="ck_users_role"),
        Index("idx_users_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"


class StudioClass(Base):
    """ORM model for classes table. A single-video purchasable item."""

    __tablename__ = "classes"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    title: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    instructor: Mapped[str] = mapped_column(String(100), nullable=False)

    is_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    price_minor: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    digistore_product_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    level: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ClassLevel.ALL_LEVELS.value
    )
    image: Mapped[str] = mapped_column(String(1024), nullable=False, default=DEFAULT_CLASS_IMAGE)
    video: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    duration: Mapped[str] = mapped_column(String(50), nullable=False, default="60 min")

    enrolled_user_ids: Mapped[list[UUID]] = mapped_column(
        _uuid_array(), nullable=False, default=list, server_default=text("'{}'")
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint(
            "NOT is_paid OR digistore_product_id IS NOT NULL",
            name="ck_classes_paid_product",
        ),
        CheckConstraint("price_minor >= 0", name="ck_classes_price_non_negative"),
        Index("idx_classes_product_id", "digistore_product_id"),
    )

    def __repr__(self) -> str:
        return f"<StudioClass(id={self.id}, title={self.title}, is_paid={self.is_paid})>"


class Course(Base):
    """ORM model for courses table. Owns an ordered list of sessions."""

    __tablename__ = "courses"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(String(1000), nullable=False)
    instructor: Mapped[str] = mapped_column(String(100), nullable=False)

    is_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    price_minor: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    digistore_product_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    level: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ClassLevel.ALL_LEVELS.value
    )
    image: Mapped[str] = mapped_column(String(1024), nullable=False, default=DEFAULT_COURSE_IMAGE)
    duration: Mapped[str | None] = mapped_column(String(50), nullable=True)
    sessions_label: Mapped[str | None] = mapped_column(String(50), nullable=True)
    learn_points: Mapped[list[str]] = mapped_column(
        ARRAY(String(255)), nullable=False, default=list, server_default=text("'{}'")
    )

    enrolled_user_ids: Mapped[list[UUID]] = mapped_column(
        _uuid_array(), nullable=False, default=list, server_default=text("'{}'")
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint(
            "NOT is_paid OR digistore_product_id IS NOT NULL",
            name="ck_courses_paid_product",
        ),
        CheckConstraint("price_minor >= 0", name="ck_courses_price_non_negative"),
        Index("idx_courses_product_id", "digistore_product_id"),
    )

    def __repr__(self) -> str:
        return f"<Course(id={self.id}, title={self.title}, is_paid={self.is_paid})>"


class CourseSession(Base):
    """
    ORM model for sessions table.

    course_id is a back-reference only; the course delete flow removes
    sessions explicitly so their media can be cleaned up first.
    """

    __tablename__ = "sessions"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    course_id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    video: Mapped[str] = mapped_column(String(1024), nullable=False)
    thumbnail: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    duration: Mapped[str | None] = mapped_column(String(50), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (Index("idx_sessions_course_order", "course_id", "order"),)

    def __repr__(self) -> str:
        return f"<CourseSession(id={self.id}, course_id={self.course_id}, order={self.order})>"


class Payment(Base):
    """
    ORM model for payments table - the entitlement ledger.

    One row per processor order id. Rows are never deleted; reversals
    change status and append to ipn_events.
    """

    __tablename__ = "payments"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    order_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    user_id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), nullable=False, index=True)
    item_type: Mapped[str] = mapped_column(String(10), nullable=False)
    item_id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), nullable=False)

    transaction_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    product_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    affiliate_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    customer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    customer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="EUR")
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.PENDING.value
    )

    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    ipn_data: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    ipn_events: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONB, nullable=False, default=list, server_default=text("'[]'::jsonb")
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'completed', 'refunded', 'chargebacked', 'cancelled')",
            name="ck_payments_status",
        ),
        CheckConstraint("item_type IN ('class', 'course')", name="ck_payments_item_type"),
        CheckConstraint("amount_minor >= 0", name="ck_payments_amount_non_negative"),
        Index("idx_payments_user_created", "user_id", "created_at"),
        Index("idx_payments_status", "status"),
    )

    @property
    def is_anomaly(self) -> bool:
        """A reversal that was never preceded by a recorded payment."""
        return self.status in (
            PaymentStatus.REFUNDED.value,
            PaymentStatus.CHARGEBACKED.value,
        ) and self.paid_at is None

    def __repr__(self) -> str:
        return f"<Payment(id={self.id}, order_id={self.order_id}, status={self.status})>"
