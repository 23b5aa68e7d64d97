"""
Tests for admin endpoints.
"""
import pytest
from fastapi.testclient import TestClient

from conftest import assign_summary, full_scores, insert_summary


class TestAdminAccess:
    """Tests for admin access control."""

    def test_admin_requires_auth(self, fresh_client: TestClient):
        """Test admin endpoints require authentication."""
        response = fresh_client.get("/api/admin/users")
        assert response.status_code == 401

    def test_admin_requires_admin_role(self, auth_client: tuple[TestClient, dict]):
        """Test admin endpoints require admin role."""
        client, user = auth_client
        assert user["role"] != "admin"
        assert client.get("/api/admin/users").status_code == 403
        assert client.get("/api/admin/annotations", params={"user_id": user["id"]}).status_code == 403
        response = client.post("/api/admin/settings", json={"user_id": user["id"], "summary_window_days": 30})
        assert response.status_code == 403


class TestAdminUsers:
    """Tests for /api/admin/users endpoint."""

    def test_list_users(self, admin_client: tuple[TestClient, dict], auth_client: tuple[TestClient, dict]):
        """Test listing users as admin."""
        client, admin = admin_client
        _, user = auth_client
        response = client.get("/api/admin/users")
        assert response.status_code == 200
        data = response.json()
        listed = next(u for u in data["users"] if u["id"] == user["id"])
        assert listed["role"] == "annotator"
        assert listed["summary_window_days"] == 7
        assert listed["assigned"] == 0

    def test_update_user_role(self, admin_client: tuple[TestClient, dict], auth_client: tuple[TestClient, dict]):
        """Test updating user role as admin."""
        client, admin = admin_client
        _, user = auth_client

        response = client.put(f"/api/admin/users/{user['id']}/role", json={"role": "admin"})
        assert response.status_code == 200
        data = response.json()
        assert data["old_role"] == "annotator"
        assert data["new_role"] == "admin"

    def test_update_invalid_role(self, admin_client: tuple[TestClient, dict], auth_client: tuple[TestClient, dict]):
        """Test that unknown roles are rejected."""
        client, admin = admin_client
        _, user = auth_client
        response = client.put(f"/api/admin/users/{user['id']}/role", json={"role": "superuser"})
        assert response.status_code == 400

    def test_cannot_demote_self(self, admin_client: tuple[TestClient, dict]):
        """Test an admin cannot remove their own admin role."""
        client, admin = admin_client
        response = client.put(f"/api/admin/users/{admin['id']}/role", json={"role": "annotator"})
        assert response.status_code == 400

    def test_cannot_demote_self_after_login(self, app, admin_client: tuple[TestClient, dict]):
        """Test the self-demotion guard for an admin who logged in rather than registered."""
        _, admin = admin_client
        assert admin["role"] == "admin"

        with TestClient(app) as c:
            response = c.post("/api/auth/login", json={"username": "test_admin", "password": "adminpass123"})
            assert response.status_code == 200
            assert response.json()["user_id"] == admin["id"]

            response = c.put(f"/api/admin/users/{admin['id']}/role", json={"role": "annotator"})
            assert response.status_code == 400

            response = c.get("/api/me")
            assert response.json()["role"] == "admin"

    def test_update_missing_user(self, admin_client: tuple[TestClient, dict]):
        """Test updating a nonexistent user fails."""
        client, admin = admin_client
        response = client.put("/api/admin/users/999999/role", json={"role": "admin"})
        assert response.status_code == 404


class TestAdminSettings:
    """Tests for /api/admin/settings endpoint."""

    def test_set_window(self, admin_client: tuple[TestClient, dict], auth_client: tuple[TestClient, dict]):
        """Test setting a user's summary window."""
        client, admin = admin_client
        _, user = auth_client
        response = client.post("/api/admin/settings", json={"user_id": user["id"], "summary_window_days": 30})
        assert response.status_code == 200
        assert response.json()["summary_window_days"] == 30

        users = client.get("/api/admin/users").json()["users"]
        listed = next(u for u in users if u["id"] == user["id"])
        assert listed["summary_window_days"] == 30

    def test_update_window(self, admin_client: tuple[TestClient, dict], auth_client: tuple[TestClient, dict]):
        """Test that setting the window twice keeps the latest value."""
        client, admin = admin_client
        _, user = auth_client
        client.post("/api/admin/settings", json={"user_id": user["id"], "summary_window_days": 30})
        client.post("/api/admin/settings", json={"user_id": user["id"], "summary_window_days": 2})

        users = client.get("/api/admin/users").json()["users"]
        listed = next(u for u in users if u["id"] == user["id"])
        assert listed["summary_window_days"] == 2

    @pytest.mark.parametrize("days", [0, 366, -5])
    def test_window_out_of_range(self, admin_client: tuple[TestClient, dict], auth_client: tuple[TestClient, dict], days: int):
        """Test windows outside 1-365 days are rejected."""
        client, admin = admin_client
        _, user = auth_client
        response = client.post("/api/admin/settings", json={"user_id": user["id"], "summary_window_days": days})
        assert response.status_code == 422

    def test_window_missing_user(self, admin_client: tuple[TestClient, dict]):
        """Test setting a window for a nonexistent user fails."""
        client, admin = admin_client
        response = client.post("/api/admin/settings", json={"user_id": 999999, "summary_window_days": 10})
        assert response.status_code == 404


class TestAdminAnnotations:
    """Tests for /api/admin/annotations endpoint."""

    def test_no_user_selected(self, admin_client: tuple[TestClient, dict]):
        """Test that omitting user_id returns an empty list."""
        client, admin = admin_client
        response = client.get("/api/admin/annotations")
        assert response.status_code == 200
        assert response.json() == {"annotations": [], "total": 0}

    def test_inspect_user_annotations(
        self,
        admin_client: tuple[TestClient, dict],
        auth_client: tuple[TestClient, dict],
        sample_summary: dict,
        entity_label: dict,
    ):
        """Test an admin sees a user's annotation with rendered highlights."""
        admin, _ = admin_client
        client, user = auth_client
        client.post("/api/annotate", json={
            "summary_id": sample_summary["id"],
            **full_scores(),
            "labels": [entity_label],
        })

        response = admin.get("/api/admin/annotations", params={"user_id": user["id"]})
        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        annotation = data["annotations"][0]
        assert annotation["summary_id"] == sample_summary["id"]
        assert annotation["factuality"] == 2
        assert annotation["labels"] == [entity_label]
        assert annotation["stale_labels"] == 0
        assert [s["text"] for s in annotation["segments"]] == ["The drug reduced symptoms by ", "50%", "."]
        assert "highlight-corrected" in annotation["html"]

    def test_annotations_sorted_by_update(self, admin_client: tuple[TestClient, dict], auth_client: tuple[TestClient, dict]):
        """Test most recently updated annotations come first."""
        admin, _ = admin_client
        client, user = auth_client
        first = insert_summary("First summary.")
        second = insert_summary("Second summary.")
        assign_summary(user["id"], first)
        assign_summary(user["id"], second)
        client.post("/api/annotate", json={"summary_id": first, **full_scores(), "labels": []})
        client.post("/api/annotate", json={"summary_id": second, **full_scores(), "labels": []})

        import app as app_module
        with app_module.get_db() as conn:
            conn.execute(
                "UPDATE annotations SET updated_at = datetime('now', '-1 day') WHERE summary_id = ?",
                (second,)
            )

        data = admin.get("/api/admin/annotations", params={"user_id": user["id"]}).json()
        assert [a["summary_id"] for a in data["annotations"]] == [first, second]
