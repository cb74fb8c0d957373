"""Integration tests for the moderation HTTP API.

End-to-end flows:
1. Submit → reject with reason → submitter sees the notification
2. Replayed decision → already_finalized, nothing new written
3. Bulk decision with a conflicting item
4. Dashboard counters and reconciliation
"""

import uuid

import pytest
from fastapi.testclient import TestClient

from gatekeeper.db.models import NotificationEvent, TransitionRecord

from tests.factories import ADMIN_ID, auth_headers, create_subject


pytestmark = pytest.mark.integration

ALICE = auth_headers("alice", ["subjects:create"])
BOB = auth_headers("bob", ["subjects:create"])


def _submit(client: TestClient, headers=ALICE, kind="vehicle_listing", payload_ref=None):
    response = client.post(
        "/api/subjects",
        json={"kind": kind, "payload_ref": payload_ref or f"cars/{uuid.uuid4()}"},
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()


class TestAuthentication:

    def test_missing_token(self, client):
        assert client.get("/api/subjects/mine").status_code == 401

    def test_invalid_token(self, client):
        response = client.get("/api/subjects/mine", headers={"Authorization": "Bearer nonsense"})
        assert response.status_code == 401

    def test_missing_permission(self, client):
        response = client.get("/api/subjects", headers=ALICE)
        assert response.status_code == 403


class TestSubmissionEndpoints:

    def test_submit_and_list_mine(self, client):
        created = _submit(client)
        assert created["status"] == "pending"
        assert created["owner_id"] == "alice"
        assert created["status_label"] == "under review"

        response = client.get("/api/subjects/mine", headers=ALICE)
        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["items"][0]["id"] == created["id"]

        assert client.get("/api/subjects/mine", headers=BOB).json()["total"] == 0

    def test_duplicate_submission(self, client):
        _submit(client, payload_ref="cars/1")
        response = client.post(
            "/api/subjects", json={"kind": "vehicle_listing", "payload_ref": "cars/1"}, headers=BOB
        )
        assert response.status_code == 409

    def test_subject_visible_to_owner_and_reviewers_only(self, client, admin_headers):
        created = _submit(client)

        assert client.get(f"/api/subjects/{created['id']}", headers=ALICE).status_code == 200
        assert client.get(f"/api/subjects/{created['id']}", headers=admin_headers).status_code == 200
        assert client.get(f"/api/subjects/{created['id']}", headers=BOB).status_code == 404

    def test_review_queue_filters(self, client, admin_headers):
        _submit(client, kind="vehicle_listing")
        _submit(client, kind="booking_request")

        response = client.get(
            "/api/subjects", params={"kind": "booking_request", "status": "pending"}, headers=admin_headers
        )
        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["items"][0]["kind"] == "booking_request"
        assert data["pages"] == 1


class TestDecisionEndpoint:

    def test_reject_then_replay(self, client, admin_headers, db_session):
        created = _submit(client)

        response = client.post(
            f"/api/subjects/{created['id']}/decision",
            json={"status": "rejected", "reason": "expired insurance"},
            headers=admin_headers,
        )
        assert response.status_code == 200, response.text
        data = response.json()
        assert data["outcome"] == "committed"
        assert data["subject"]["status"] == "rejected"
        assert data["transition"]["reason"] == "expired insurance"
        assert data["transition"]["actor_id"] == ADMIN_ID

        replay = client.post(
            f"/api/subjects/{created['id']}/decision",
            json={"status": "approved"},
            headers=admin_headers,
        )
        assert replay.status_code == 200
        assert replay.json()["outcome"] == "already_finalized"
        assert replay.json()["subject"]["status"] == "rejected"
        assert replay.json()["transition"] is None

        subject_id = uuid.UUID(created["id"])
        assert db_session.query(TransitionRecord).filter_by(subject_id=subject_id).count() == 1
        assert db_session.query(NotificationEvent).filter_by(subject_id=subject_id).count() == 1

        history = client.get(f"/api/subjects/{created['id']}/history", headers=ALICE)
        assert [h["to_status"] for h in history.json()] == ["rejected"]

    def test_submitter_is_notified(self, client, admin_headers):
        created = _submit(client)
        client.post(
            f"/api/subjects/{created['id']}/decision",
            json={"status": "approved"},
            headers=admin_headers,
        )

        assert client.get("/api/notifications/unread-count", headers=ALICE).json() == {"unread": 1}
        listing = client.get("/api/notifications", headers=ALICE).json()
        assert listing["total"] == 1
        notice = listing["items"][0]
        assert notice["subject_id"] == created["id"]
        assert notice["sequence_no"] == 1

        read = client.post(f"/api/notifications/{notice['id']}/read", headers=ALICE)
        assert read.status_code == 200
        again = client.post(f"/api/notifications/{notice['id']}/read", headers=ALICE)
        assert again.json()["read_at"] == read.json()["read_at"]
        assert client.get("/api/notifications/unread-count", headers=ALICE).json() == {"unread": 0}

        assert client.post(f"/api/notifications/{notice['id']}/read", headers=BOB).status_code == 404

    def test_mark_all_read(self, client, admin_headers):
        for _ in range(2):
            created = _submit(client)
            client.post(
                f"/api/subjects/{created['id']}/decision",
                json={"status": "approved"},
                headers=admin_headers,
            )

        assert client.post("/api/notifications/read-all", headers=ALICE).json() == {"updated": 2}
        listing = client.get("/api/notifications", params={"unread_only": True}, headers=ALICE)
        assert listing.json()["total"] == 0

    @pytest.mark.parametrize(
        "body, headers_for, expected_status, expected_kind",
        [
            ({"status": "rejected"}, "admin", 400, "validation_error"),
            ({"status": "approved"}, "alice", 403, "unauthorized"),
            ({"status": "pending"}, "admin", 409, "invalid_state_transition"),
            ({"status": "approved", "kind": "booking_request"}, "admin", 404, "not_found"),
        ],
    )
    def test_error_mapping(self, client, admin_headers, body, headers_for, expected_status, expected_kind):
        created = _submit(client)
        headers = admin_headers if headers_for == "admin" else ALICE

        response = client.post(f"/api/subjects/{created['id']}/decision", json=body, headers=headers)

        assert response.status_code == expected_status
        assert response.json()["error_kind"] == expected_kind

    def test_unknown_subject(self, client, admin_headers):
        response = client.post(
            f"/api/subjects/{uuid.uuid4()}/decision", json={"status": "approved"}, headers=admin_headers
        )
        assert response.status_code == 404
        assert response.json()["error_kind"] == "not_found"

    def test_resubmit_after_rejection(self, client, admin_headers):
        created = _submit(client, payload_ref="cars/77")
        client.post(
            f"/api/subjects/{created['id']}/decision",
            json={"status": "rejected", "reason": "wrong plate"},
            headers=admin_headers,
        )

        response = client.post(
            f"/api/subjects/{created['id']}/resubmit", json={"payload_ref": "cars/77-v2"}, headers=ALICE
        )
        assert response.status_code == 201
        assert response.json()["previous_subject_id"] == created["id"]

        assert client.post(f"/api/subjects/{created['id']}/resubmit", json={}, headers=BOB).status_code == 403


class TestBulkDecision:

    def test_bulk_with_conflicting_item(self, client, admin_headers, db_session):
        u1 = create_subject(db_session, kind="user_registration")
        u2 = create_subject(db_session, kind="user_registration", status="rejected", decided_by=ADMIN_ID)
        u3 = create_subject(db_session, kind="user_registration")

        response = client.post(
            "/api/subjects/bulk-decision",
            json={"subject_ids": [str(u1.id), str(u2.id), str(u3.id)], "status": "approved"},
            headers=admin_headers,
        )

        assert response.status_code == 200, response.text
        data = response.json()
        assert data["succeeded"] == [str(u1.id), str(u3.id)]
        assert data["failed"] == [
            {"id": str(u2.id), "error_kind": "invalid_state_transition", "message": data["failed"][0]["message"]}
        ]

    def test_bulk_requires_ids(self, client, admin_headers):
        response = client.post(
            "/api/subjects/bulk-decision", json={"subject_ids": [], "status": "approved"}, headers=admin_headers
        )
        assert response.status_code == 422


class TestDashboard:

    def test_counters_follow_decisions(self, client, admin_headers):
        first = _submit(client)
        _submit(client)
        client.post(
            f"/api/subjects/{first['id']}/decision", json={"status": "approved"}, headers=admin_headers
        )

        response = client.get("/api/dashboard/counters", headers=admin_headers)
        assert response.status_code == 200
        counters = {row["kind"]: row for row in response.json()}
        assert counters["vehicle_listing"]["pending_count"] == 1
        assert counters["vehicle_listing"]["approved_count"] == 1

    def test_stats_and_reconcile(self, client, admin_headers, db_session):
        create_subject(db_session, kind="document_upload")

        stats = client.get("/api/dashboard/stats", headers=admin_headers).json()
        assert stats["by_kind"]["document_upload"]["pending"] == 1

        response = client.post("/api/dashboard/reconcile", headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["counts"]["document_upload"]["pending"] == 1

    def test_reconcile_requires_permission(self, client):
        headers = auth_headers("reviewer", ["dashboard:read"])
        assert client.post("/api/dashboard/reconcile", headers=headers).status_code == 403


class TestHealth:

    def test_basic_health_check(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "version" in data
