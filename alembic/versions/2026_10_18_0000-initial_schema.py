"""initial schema

Revision ID: 2026_10_18_0000
Revises:
Create Date: 2026-10-18 08:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID


# revision identifiers, used by Alembic.
revision: str = '2026_10_18_0000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _uuid_array_column(name: str) -> sa.Column:
    return sa.Column(name, ARRAY(UUID(as_uuid=True)), nullable=False, server_default=sa.text("'{}'"))


def upgrade() -> None:
    """Create users, catalog and payment tables."""

    # ========================================================================
    # Create users table
    # ========================================================================
    op.create_table(
        'users',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('password_hash', sa.String(255), nullable=False),
        sa.Column('role', sa.String(20), nullable=False, server_default='user'),
        _uuid_array_column('enrolled_class_ids'),
        _uuid_array_column('enrolled_course_ids'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint("role IN ('user', 'admin')", name='ck_users_role'),
        sa.UniqueConstraint('email', name='uq_users_email'),
    )
    op.create_index('idx_users_created_at', 'users', ['created_at'])

    # ========================================================================
    # Create classes table
    # ========================================================================
    op.create_table(
        'classes',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('title', sa.String(50), nullable=False),
        sa.Column('description', sa.String(500), nullable=False),
        sa.Column('instructor', sa.String(100), nullable=False),
        sa.Column('is_paid', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('price_minor', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('digistore_product_id', sa.String(100), nullable=True),
        sa.Column('level', sa.String(20), nullable=False, server_default='All Levels'),
        sa.Column('image', sa.String(1024), nullable=False, server_default='default-class.jpg'),
        sa.Column('video', sa.String(1024), nullable=True),
        sa.Column('duration', sa.String(50), nullable=False, server_default='60 min'),
        _uuid_array_column('enrolled_user_ids'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint('NOT is_paid OR digistore_product_id IS NOT NULL', name='ck_classes_paid_product'),
        sa.CheckConstraint('price_minor >= 0', name='ck_classes_price_non_negative'),
    )
    op.create_index('idx_classes_product_id', 'classes', ['digistore_product_id'])

    # ========================================================================
    # Create courses table
    # ========================================================================
    op.create_table(
        'courses',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('title', sa.String(100), nullable=False),
        sa.Column('description', sa.String(1000), nullable=False),
        sa.Column('instructor', sa.String(100), nullable=False),
        sa.Column('is_paid', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('price_minor', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('digistore_product_id', sa.String(100), nullable=True),
        sa.Column('level', sa.String(20), nullable=False, server_default='All Levels'),
        sa.Column('image', sa.String(1024), nullable=False, server_default='default-course.jpg'),
        sa.Column('duration', sa.String(50), nullable=True),
        sa.Column('sessions_label', sa.String(50), nullable=True),
        sa.Column('learn_points', ARRAY(sa.String(255)), nullable=False, server_default=sa.text("'{}'")),
        _uuid_array_column('enrolled_user_ids'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint('NOT is_paid OR digistore_product_id IS NOT NULL', name='ck_courses_paid_product'),
        sa.CheckConstraint('price_minor >= 0', name='ck_courses_price_non_negative'),
    )
    op.create_index('idx_courses_product_id', 'courses', ['digistore_product_id'])

    # ========================================================================
    # Create sessions table
    # ========================================================================
    # No foreign key to courses: deleting a course removes its sessions
    # explicitly after their media has been released.
    op.create_table(
        'sessions',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('course_id', UUID(as_uuid=True), nullable=False),
        sa.Column('title', sa.String(100), nullable=False),
        sa.Column('description', sa.String(500), nullable=True),
        sa.Column('order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('video', sa.String(1024), nullable=False),
        sa.Column('thumbnail', sa.String(1024), nullable=True),
        sa.Column('duration', sa.String(50), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_sessions_course_id', 'sessions', ['course_id'])
    op.create_index('idx_sessions_course_order', 'sessions', ['course_id', 'order'])

    # ========================================================================
    # Create payments table
    # ========================================================================
    op.create_table(
        'payments',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('order_id', sa.String(100), nullable=False),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('item_type', sa.String(10), nullable=False),
        sa.Column('item_id', UUID(as_uuid=True), nullable=False),
        sa.Column('transaction_id', sa.String(100), nullable=True),
        sa.Column('product_id', sa.String(100), nullable=True),
        sa.Column('affiliate_id', sa.String(100), nullable=True),
        sa.Column('customer_email', sa.String(255), nullable=True),
        sa.Column('customer_name', sa.String(255), nullable=True),
        sa.Column('amount_minor', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(3), nullable=False, server_default='EUR'),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('refunded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('ipn_data', JSONB, nullable=True),
        sa.Column('ipn_events', JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # The order id is the idempotency key for IPN upserts
        sa.UniqueConstraint('order_id', name='uq_payments_order_id'),
        sa.CheckConstraint(
            "status IN ('pending', 'completed', 'refunded', 'chargebacked', 'cancelled')",
            name='ck_payments_status',
        ),
        sa.CheckConstraint("item_type IN ('class', 'course')", name='ck_payments_item_type'),
        sa.CheckConstraint('amount_minor >= 0', name='ck_payments_amount_non_negative'),
    )
    op.create_index('ix_payments_user_id', 'payments', ['user_id'])
    op.create_index('idx_payments_user_created', 'payments', ['user_id', 'created_at'])
    op.create_index('idx_payments_status', 'payments', ['status'])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table('payments')
    op.drop_table('sessions')
    op.drop_table('courses')
    op.drop_table('classes')
    op.drop_table('users')
