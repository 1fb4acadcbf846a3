"""
File API: upload, transform requests and their HTTP mapping.
"""

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from src.auth.api_tokens import PERM_FILES_READ
from src.jobs.models import ProcessingJob
from src.models.file import FileStatus
from src.models.user import SubscriptionStatus, SubscriptionTier


@pytest.fixture
def free_user(make_user, login):
    user = make_user()
    login(user)
    return user


@pytest.fixture
def pro_user(make_user):
    return make_user(tier=SubscriptionTier.PRO, status=SubscriptionStatus.ACTIVE)


def _job_count(db_session):
    return db_session.execute(select(func.count()).select_from(ProcessingJob)).scalar()


class TestUpload:
    def test_upload(self, client, free_user, storage):
        response = client.post(
            "/api/files",
            params={"filename": "cat.png"},
            content=b"\x89PNG....",
            headers={"Content-Type": "image/png"},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["filename"] == "cat.png"
        assert body["content_type"] == "image/png"
        assert body["status"] == "pending"
        assert body["variants"] == []
        assert len(storage.objects) == 1

    def test_empty_body(self, client, free_user):
        response = client.post("/api/files", params={"filename": "cat.png"}, content=b"")
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "MISSING_FILE"

    def test_file_limit(self, client, db_session, make_user, make_file, login, storage):
        user = make_user(files_limit=1)
        make_file(user)
        login(user)

        response = client.post("/api/files", params={"filename": "b.png"}, content=b"x")

        assert response.status_code == 429
        assert response.json()["error"]["code"] == "QUOTA_EXCEEDED"
        assert storage.objects == {}

    def test_too_large(self, client, make_user, login):
        login(make_user(max_file_size=4))
        response = client.post("/api/files", params={"filename": "b.bin"}, content=b"12345")
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "FILE_TOO_LARGE"

    def test_requires_authentication(self, client):
        response = client.post("/api/files", params={"filename": "b.bin"}, content=b"x")
        assert response.status_code == 401
        body = response.json()
        assert body["error"]["code"] == "AUTHENTICATION_ERROR"
        assert response.headers["X-Correlation-ID"] == body["error"]["correlation_id"]


class TestProcess:
    def test_accepted(self, client, db_session, free_user, make_file, job_sink):
        file = make_file(free_user)

        response = client.post(f"/api/files/{file.id}/process", json={"action": "thumbnail"})

        assert response.status_code == 202
        body = response.json()
        assert body["status"] == "accepted"
        assert body["variant_type"] == "thumbnail"
        assert body["job_id"]
        assert len(job_sink.submitted) == 1
        db_session.refresh(file)
        assert file.status == FileStatus.PROCESSING

    def test_repeat_request_reports_in_progress(self, client, db_session, free_user, make_file, job_sink):
        file = make_file(free_user)
        first = client.post(f"/api/files/{file.id}/process", json={"action": "thumbnail"})
        second = client.post(f"/api/files/{file.id}/process", json={"action": "thumbnail"})

        assert second.status_code == 200
        body = second.json()
        assert body["status"] == "already_exists"
        assert body["in_progress"] is True
        assert body["job_id"] == first.json()["job_id"]
        assert len(job_sink.submitted) == 1
        assert _job_count(db_session) == 1

    def test_forbidden_feature(self, client, db_session, free_user, make_file, job_sink):
        file = make_file(free_user)

        response = client.post(f"/api/files/{file.id}/process", json={"action": "md"})

        assert response.status_code == 403
        error = response.json()["error"]
        assert error["code"] == "UPGRADE_REQUIRED"
        assert error["details"]["required_tier"] == "pro"
        assert job_sink.submitted == []
        assert _job_count(db_session) == 0

    def test_unknown_action(self, client, free_user, make_file):
        file = make_file(free_user)
        response = client.post(f"/api/files/{file.id}/process", json={"action": "sepia"})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_ACTION"

    def test_wrong_content_type(self, client, free_user, make_file):
        file = make_file(free_user, content_type="application/pdf", filename="doc.pdf")
        response = client.post(f"/api/files/{file.id}/process", json={"action": "sm"})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_FOR_TYPE"

    def test_deleted_file(self, client, free_user, make_file, fixed_now):
        file = make_file(free_user, deleted_at=fixed_now)
        response = client.post(f"/api/files/{file.id}/process", json={"action": "thumbnail"})
        assert response.status_code == 404

    def test_other_users_file(self, client, free_user, make_user, make_file):
        file = make_file(make_user())
        response = client.post(f"/api/files/{file.id}/process", json={"action": "thumbnail"})
        assert response.status_code == 404

    def test_quota_exhausted(self, client, make_user, make_file, login, fixed_now, job_sink):
        user = make_user(
            transformations_count=100,
            transformations_reset_at=fixed_now + timedelta(days=3650),
        )
        login(user)
        file = make_file(user)

        response = client.post(f"/api/files/{file.id}/process", json={"action": "thumbnail"})

        assert response.status_code == 429
        assert response.json()["error"]["code"] == "QUOTA_EXCEEDED"
        assert job_sink.submitted == []

    def test_broker_down(self, client, db_session, free_user, make_file, job_sink):
        job_sink.fail = True
        file = make_file(free_user)

        response = client.post(f"/api/files/{file.id}/process", json={"action": "thumbnail"})

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "SERVICE_UNAVAILABLE"
        assert _job_count(db_session) == 0
        db_session.refresh(free_user)
        assert free_user.transformations_count == 0


class TestBundle:
    def test_bundle_enqueues_members(self, client, pro_user, make_file, login, job_sink):
        login(pro_user)
        file = make_file(pro_user)

        response = client.post(f"/api/files/{file.id}/process-bundle", json={"bundle": "responsive"})

        assert response.status_code == 202
        body = response.json()
        assert body["status"] == "accepted"
        assert body["jobs_enqueued"] == 4
        assert len(job_sink.submitted) == 4
        assert all(s["payload"]["priority"] > 0 for s in job_sink.submitted)

    def test_bundle_forbidden_for_free(self, client, free_user, make_file):
        file = make_file(free_user)
        response = client.post(f"/api/files/{file.id}/process-bundle", json={"bundle": "social"})
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "UPGRADE_REQUIRED"

    def test_unknown_bundle(self, client, free_user, make_file):
        file = make_file(free_user)
        response = client.post(f"/api/files/{file.id}/process-bundle", json={"bundle": "print"})
        assert response.status_code == 400


class TestReadAndDelete:
    def test_get_file(self, client, free_user, make_file):
        file = make_file(free_user)
        response = client.get(f"/api/files/{file.id}")
        assert response.status_code == 200
        assert response.json()["id"] == file.id

    def test_delete_file(self, client, free_user, make_file):
        file = make_file(free_user)
        assert client.delete(f"/api/files/{file.id}").status_code == 204
        assert client.get(f"/api/files/{file.id}").status_code == 404


class TestBearerAccess:
    def test_jwt_write_needs_paid_tier(self, client, make_user, make_file, jwt_headers):
        user = make_user()
        file = make_file(user)

        response = client.post(
            f"/api/files/{file.id}/process",
            json={"action": "thumbnail"},
            headers=jwt_headers(user),
        )

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "UPGRADE_REQUIRED"

    def test_jwt_read_allowed_for_free(self, client, make_user, make_file, jwt_headers):
        user = make_user()
        file = make_file(user)
        response = client.get(f"/api/files/{file.id}", headers=jwt_headers(user))
        assert response.status_code == 200

    def test_pro_jwt_write(self, client, pro_user, make_file, jwt_headers):
        file = make_file(pro_user)
        response = client.post(
            f"/api/files/{file.id}/process",
            json={"action": "webp", "options": {"quality": 70}},
            headers=jwt_headers(pro_user),
        )
        assert response.status_code == 202

    def test_token_without_permission(self, client, pro_user, make_file, api_token_headers):
        file = make_file(pro_user)
        headers = api_token_headers(pro_user, preset="read_only")

        assert client.get(f"/api/files/{file.id}", headers=headers).status_code == 200
        response = client.post(
            f"/api/files/{file.id}/process", json={"action": "thumbnail"}, headers=headers,
        )
        assert response.status_code == 403
        error = response.json()["error"]
        assert error["code"] == "INSUFFICIENT_PERMISSION"
        assert error["details"]["permission"] == "transform"

    def test_token_with_permission(self, client, pro_user, make_file, api_token_headers):
        file = make_file(pro_user)
        headers = api_token_headers(pro_user, permissions=[PERM_FILES_READ, "transform"])
        response = client.post(
            f"/api/files/{file.id}/process", json={"action": "thumbnail"}, headers=headers,
        )
        assert response.status_code == 202

    def test_unknown_token(self, client):
        response = client.get("/api/files/x", headers={"Authorization": "Bearer fp_nope"})
        assert response.status_code == 401
