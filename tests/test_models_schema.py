"""
Tests for ORM model definitions and the initial schema migration.
"""

import importlib.util
from datetime import UTC, datetime
from pathlib import Path
from types import ModuleType

import pytest
from sqlalchemy import ARRAY, inspect

from app.db.models import Base, Course, CourseSession, Payment, StudioClass, User

# Get project root from test file location
PROJECT_ROOT = Path(__file__).parent.parent
MIGRATION_FILE = PROJECT_ROOT / "alembic" / "versions" / "2026_10_18_0000-initial_schema.py"


def load_migration() -> ModuleType:
    spec = importlib.util.spec_from_file_location("migration", str(MIGRATION_FILE))
    assert spec is not None and spec.loader is not None
    migration = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(migration)
    return migration


class TestPaymentModel:
    """Tests for the payments ledger table."""

    def test_order_id_is_unique(self):
        """Idempotency rests on one row per processor order."""
        columns = {col.key: col for col in inspect(Payment).columns}
        assert columns["order_id"].unique is True
        assert columns["order_id"].nullable is False

    def test_amounts_are_integers(self):
        columns = {col.key: col for col in inspect(Payment).columns}
        assert "BIGINT" in str(columns["amount_minor"].type)

    def test_audit_columns(self):
        columns = {col.key: col for col in inspect(Payment).columns}
        assert "JSONB" in str(columns["ipn_events"].type)
        assert columns["ipn_events"].nullable is False
        assert columns["notes"].nullable is True
        assert columns["paid_at"].nullable is True

    def test_status_constraint(self):
        constraint_names = {c.name for c in Payment.__table__.constraints}  # type: ignore[attr-defined]
        assert "ck_payments_status" in constraint_names
        assert "ck_payments_item_type" in constraint_names

    @pytest.mark.parametrize(
        "status,paid_at,anomaly",
        [
            ("completed", datetime(2026, 1, 1, tzinfo=UTC), False),
            ("refunded", datetime(2026, 1, 1, tzinfo=UTC), False),
            ("refunded", None, True),
            ("chargebacked", None, True),
            ("pending", None, False),
        ],
    )
    def test_is_anomaly(self, status, paid_at, anomaly):
        payment = Payment(order_id="O", status=status, paid_at=paid_at)
        assert payment.is_anomaly is anomaly


class TestCatalogModels:
    """Tests for classes, courses and sessions."""

    @pytest.mark.parametrize("model", [StudioClass, Course])
    def test_enrollment_arrays(self, model):
        columns = {col.key: col for col in inspect(model).columns}
        assert isinstance(columns["enrolled_user_ids"].type, ARRAY)
        assert columns["enrolled_user_ids"].nullable is False

    @pytest.mark.parametrize("model,name", [(StudioClass, "classes"), (Course, "courses")])
    def test_paid_items_need_product(self, model, name):
        constraint_names = {c.name for c in model.__table__.constraints}
        assert f"ck_{name}_paid_product" in constraint_names

    def test_session_has_no_foreign_key(self):
        """Sessions are removed explicitly by the course delete flow."""
        columns = {col.key: col for col in inspect(CourseSession).columns}
        assert not columns["course_id"].foreign_keys
        assert columns["video"].nullable is False

    def test_session_indexes(self):
        index_names = {idx.name for idx in CourseSession.__table__.indexes}  # type: ignore[attr-defined]
        assert "idx_sessions_course_order" in index_names
        assert "ix_sessions_course_id" in index_names

    def test_user_enrollment_columns(self):
        column_names = [col.key for col in inspect(User).columns]
        assert "enrolled_class_ids" in column_names
        assert "enrolled_course_ids" in column_names

    def test_models_inherit_base(self):
        for model in (User, StudioClass, Course, CourseSession, Payment):
            assert issubclass(model, Base)


class TestMigrationFile:
    """Tests for migration file structure."""

    def test_migration_file_exists(self):
        assert MIGRATION_FILE.exists(), f"Migration file not found at {MIGRATION_FILE}"

    def test_migration_is_root_revision(self):
        migration = load_migration()

        assert migration.revision == "2026_10_18_0000"
        assert migration.down_revision is None

    def test_migration_has_upgrade_downgrade(self):
        migration = load_migration()

        assert callable(migration.upgrade)
        assert callable(migration.downgrade)

    def test_migration_creates_every_table(self):
        source = MIGRATION_FILE.read_text()
        for table in Base.metadata.tables:
            assert f"'{table}'" in source, f"Missing table in migration: {table}"

    def test_migration_keeps_order_id_unique(self):
        assert "uq_payments_order_id" in MIGRATION_FILE.read_text()
