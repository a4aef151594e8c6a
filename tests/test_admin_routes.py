"""
Tests for admin routes: access control, catalog mutations and oversight.
"""

from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import IntegrityError

from app.exceptions import ItemNotFoundError, PersistenceError
from app.models.api import PaymentStatus
from app.services.catalog import CatalogService
from tests.factories import (
    FakeMediaStore,
    create_mock_class,
    create_mock_course,
    create_mock_payment,
    create_mock_session,
    create_mock_user,
    hosted_url,
    query_result,
)

NEW_CLASS = {
    "title": "Evening Yin",
    "description": "Slow holds",
    "instructor": "Ana",
    "image": hosted_url("classes/yin"),
    "video": hosted_url("classes/yin", "video", "mp4"),
}


class TestAdminAccess:
    """Every admin route requires the admin role."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("post", "/api/classes"),
            ("delete", f"/api/classes/{uuid4()}"),
            ("post", "/api/courses"),
            ("get", f"/api/courses/{uuid4()}/enrolled"),
            ("get", "/api/auth/users"),
            ("get", "/api/payments"),
        ],
    )
    def test_regular_user_forbidden(self, user_client: TestClient, method: str, path: str):
        response = user_client.request(method.upper(), path, json=NEW_CLASS)
        assert response.status_code == 403

    def test_anonymous_unauthorized(self, anonymous_client: TestClient):
        response = anonymous_client.get("/api/payments")
        assert response.status_code == 401

    def test_public_listing_stays_open(self, anonymous_client: TestClient):
        assert anonymous_client.get("/api/classes").status_code == 200


class TestClassAdmin:
    """Tests for class create, update and delete."""

    def test_create_class(self, admin_client: TestClient):
        created = create_mock_class(title="Evening Yin")

        with patch.object(CatalogService, "create_class", new_callable=AsyncMock, return_value=created):
            response = admin_client.post("/api/classes", json=NEW_CLASS)

        assert response.status_code == 201
        assert response.json()["title"] == "Evening Yin"

    def test_rejected_create_deletes_uploads(
        self, admin_client: TestClient, media_store: FakeMediaStore
    ):
        response = admin_client.post("/api/classes", json={**NEW_CLASS, "is_paid": True})

        assert response.status_code == 422
        assert response.json()["detail"][0]["loc"] == ["body"]
        assert sorted(media_store.deleted_identifiers) == ["classes/yin", "classes/yin"]

    def test_overlong_title_deletes_uploads(
        self, admin_client: TestClient, media_store: FakeMediaStore
    ):
        response = admin_client.post("/api/classes", json={**NEW_CLASS, "title": "x" * 51})

        assert response.status_code == 422
        assert response.json()["detail"][0]["loc"] == ["body", "title"]
        assert sorted(media_store.deleted_identifiers) == ["classes/yin", "classes/yin"]

    def test_rejected_update_deletes_new_upload_only(
        self, admin_client: TestClient, db_session: AsyncMock, media_store: FakeMediaStore
    ):
        item = create_mock_class(image=hosted_url("classes/old"))
        db_session.execute = AsyncMock(return_value=query_result(one=item))

        response = admin_client.put(
            f"/api/classes/{item.id}",
            json={"image": hosted_url("classes/new"), "price_minor": -1},
        )

        assert response.status_code == 422
        assert media_store.deleted_identifiers == ["classes/new"]

    def test_non_object_body_is_422(self, admin_client: TestClient, media_store: FakeMediaStore):
        response = admin_client.post("/api/classes", json=["not", "an", "object"])

        assert response.status_code == 422
        assert media_store.deleted == []

    def test_failed_create_rolls_back_uploads(
        self, admin_client: TestClient, db_session: AsyncMock, media_store: FakeMediaStore
    ):
        db_session.commit = AsyncMock(side_effect=IntegrityError("INSERT", {}, Exception("check")))

        response = admin_client.post("/api/classes", json=NEW_CLASS)

        assert response.status_code == 400
        assert sorted(media_store.deleted_identifiers) == ["classes/yin", "classes/yin"]
        assert {ref.kind.value for ref in media_store.deleted} == {"image", "video"}

    def test_update_missing_class(self, admin_client: TestClient):
        response = admin_client.put(f"/api/classes/{uuid4()}", json={"title": "Renamed"})
        assert response.status_code == 404

    def test_update_replaces_video(
        self, admin_client: TestClient, db_session: AsyncMock, media_store: FakeMediaStore
    ):
        old_video = hosted_url("classes/old", "video", "mp4")
        new_video = hosted_url("classes/new", "video", "mp4")
        item = create_mock_class(video=old_video)
        db_session.execute = AsyncMock(return_value=query_result(one=item))

        response = admin_client.put(f"/api/classes/{item.id}", json={"video": new_video})

        assert response.status_code == 200
        assert response.json()["video"] == new_video
        assert media_store.deleted_identifiers == ["classes/old"]

    def test_delete_class(
        self, admin_client: TestClient, db_session: AsyncMock, media_store: FakeMediaStore
    ):
        item = create_mock_class(image=hosted_url("classes/cover"))
        db_session.execute = AsyncMock(return_value=query_result(one=item))

        response = admin_client.delete(f"/api/classes/{item.id}")

        assert response.status_code == 200
        db_session.delete.assert_awaited_once_with(item)
        assert media_store.deleted_identifiers == ["classes/cover"]

    def test_delete_missing_class(self, admin_client: TestClient):
        response = admin_client.delete(f"/api/classes/{uuid4()}")
        assert response.status_code == 404

    def test_enrolled_users(self, admin_client: TestClient, db_session: AsyncMock):
        student = create_mock_user(name="Bea", email="bea@example.com")
        item = create_mock_class(enrolled_user_ids=[student.id])
        db_session.execute = AsyncMock(
            side_effect=[query_result(one=item), query_result(many=[student])]
        )

        response = admin_client.get(f"/api/classes/{item.id}/enrolled")

        assert response.status_code == 200
        body = response.json()
        assert [(u["id"], u["name"], u["email"]) for u in body] == [
            (str(student.id), "Bea", "bea@example.com")
        ]


class TestCourseAdmin:
    """Tests for course and session administration."""

    def test_create_course(self, admin_client: TestClient):
        created = create_mock_course(title="Foundations")

        with patch.object(
            CatalogService, "create_course", new_callable=AsyncMock, return_value=created
        ):
            response = admin_client.post(
                "/api/courses",
                json={"title": "Foundations", "description": "Basics", "instructor": "Ana"},
            )

        assert response.status_code == 201

    def test_delete_course_cascades(
        self, admin_client: TestClient, db_session: AsyncMock, media_store: FakeMediaStore
    ):
        course = create_mock_course(image=hosted_url("courses/cover"))
        sessions = [create_mock_session(course_id=course.id, order=i) for i in (1, 2)]
        db_session.execute = AsyncMock(
            side_effect=[
                query_result(one=course),  # lookup
                query_result(many=sessions),  # sessions of the course
                query_result(),  # bulk session delete
            ]
        )

        response = admin_client.delete(f"/api/courses/{course.id}")

        assert response.status_code == 200
        assert media_store.deleted_identifiers == [
            "sessions/video-1",
            "sessions/video-2",
            "courses/cover",
        ]

    def test_create_session(self, admin_client: TestClient):
        course = create_mock_course()
        created = create_mock_session(course_id=course.id, order=4)

        with patch.object(
            CatalogService, "create_session", new_callable=AsyncMock, return_value=created
        ):
            response = admin_client.post(
                f"/api/courses/{course.id}/sessions",
                json={"title": "Session 4", "video": created.video},
            )

        assert response.status_code == 201
        assert response.json()["order"] == 4

    def test_reorder_sessions(self, admin_client: TestClient):
        course_id = uuid4()
        sessions = [create_mock_session(course_id=course_id, order=i) for i in (1, 2)]

        with patch.object(
            CatalogService, "reorder_sessions", new_callable=AsyncMock, return_value=sessions
        ) as reorder:
            response = admin_client.put(
                f"/api/courses/{course_id}/sessions/reorder",
                json={"sessions": [{"id": str(s.id), "order": s.order} for s in sessions]},
            )

        assert response.status_code == 200
        assert reorder.await_args.args[0] == course_id
        assert [s["order"] for s in response.json()] == [1, 2]

    def test_update_session_persistence_failure(self, admin_client: TestClient):
        with patch.object(
            CatalogService,
            "update_session",
            new_callable=AsyncMock,
            side_effect=PersistenceError("update sessions: check violated"),
        ):
            response = admin_client.put(
                f"/api/courses/{uuid4()}/sessions/{uuid4()}", json={"title": "New"}
            )

        assert response.status_code == 400

    def test_delete_missing_session(self, admin_client: TestClient):
        with patch.object(
            CatalogService,
            "delete_session",
            new_callable=AsyncMock,
            side_effect=ItemNotFoundError("session", uuid4()),
        ):
            response = admin_client.delete(f"/api/courses/{uuid4()}/sessions/{uuid4()}")

        assert response.status_code == 404


class TestOversight:
    """Tests for user and payment listings."""

    def test_list_users(self, admin_client: TestClient, db_session: AsyncMock):
        users = [create_mock_user(), create_mock_user(email="b@example.com")]
        db_session.execute = AsyncMock(side_effect=[query_result(count=2), query_result(many=users)])

        response = admin_client.get("/api/auth/users", params={"status": "registered"})

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 2
        assert body["pages"] == 1
        assert len(body["users"]) == 2

    def test_list_users_invalid_status(self, admin_client: TestClient):
        response = admin_client.get("/api/auth/users", params={"status": "vip"})
        assert response.status_code == 422

    def test_list_payments_flags_anomalies(self, admin_client: TestClient, db_session: AsyncMock):
        payments = [
            create_mock_payment(order_id="PAID"),
            create_mock_payment(order_id="ORPHAN", status=PaymentStatus.REFUNDED, notes="no payment"),
        ]
        db_session.execute = AsyncMock(
            side_effect=[query_result(count=2), query_result(many=payments)]
        )

        response = admin_client.get("/api/payments")

        assert response.status_code == 200
        views = {p["order_id"]: p for p in response.json()["payments"]}
        assert views["PAID"]["anomaly"] is False
        assert views["ORPHAN"]["anomaly"] is True
        assert views["ORPHAN"]["status"] == "refunded"
