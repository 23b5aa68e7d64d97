"""
Tests for annotation endpoints.
"""
import logging

import pytest
from fastapi.testclient import TestClient

from conftest import assign_summary, full_scores, insert_summary


class TestAnnotate:
    """Tests for /api/annotate endpoint (annotation submission)."""

    def test_annotate_requires_auth(self, fresh_client: TestClient):
        """Test /api/annotate requires authentication."""
        response = fresh_client.post("/api/annotate", json={
            "summary_id": "1",
            **full_scores(),
            "labels": []
        })
        assert response.status_code == 401

    def test_annotate_missing_summary(self, auth_client: tuple[TestClient, dict]):
        """Test annotating a nonexistent summary fails."""
        client, user = auth_client
        response = client.post("/api/annotate", json={
            "summary_id": "nonexistent_99999",
            **full_scores(),
            "labels": []
        })
        assert response.status_code == 404

    def test_annotate_unassigned_summary(self, auth_client: tuple[TestClient, dict]):
        """Test annotating a summary assigned to someone else fails."""
        client, user = auth_client
        summary_id = insert_summary()
        response = client.post("/api/annotate", json={
            "summary_id": summary_id,
            **full_scores(),
            "labels": []
        })
        assert response.status_code == 404

    def test_annotate_success(self, auth_client: tuple[TestClient, dict], sample_summary: dict, entity_label: dict):
        """Test successful annotation."""
        client, user = auth_client
        response = client.post("/api/annotate", json={
            "summary_id": sample_summary["id"],
            **full_scores(),
            "labels": [entity_label]
        })
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "saved"
        assert data["summary_id"] == sample_summary["id"]
        assert data["label_count"] == 1

    def test_annotate_marks_completed(self, auth_client: tuple[TestClient, dict], sample_summary: dict):
        """Test submitting marks the assignment completed."""
        client, user = auth_client
        before = client.get("/api/summaries").json()["summaries"]
        assert [s["completed"] for s in before] == [False]

        client.post("/api/annotate", json={"summary_id": sample_summary["id"], **full_scores(), "labels": []})

        after = client.get("/api/summaries").json()["summaries"]
        assert [s["completed"] for s in after] == [True]

    def test_annotate_resubmit_replaces(self, auth_client: tuple[TestClient, dict], sample_summary: dict, entity_label: dict):
        """Test resubmitting overwrites the previous annotation."""
        client, user = auth_client
        client.post("/api/annotate", json={
            "summary_id": sample_summary["id"],
            **full_scores(),
            "labels": [entity_label]
        })
        response = client.post("/api/annotate", json={
            "summary_id": sample_summary["id"],
            **full_scores(factuality=5),
            "labels": []
        })
        assert response.status_code == 200

        annotation = client.get("/api/annotations", params={"summary_id": sample_summary["id"]}).json()["annotation"]
        assert annotation["factuality"] == 5
        assert annotation["labels"] == []

    @pytest.mark.parametrize("score", [0, 6, -1])
    def test_annotate_score_out_of_range(self, auth_client: tuple[TestClient, dict], sample_summary: dict, score: int):
        """Test scores outside 1-5 are rejected."""
        client, user = auth_client
        response = client.post("/api/annotate", json={
            "summary_id": sample_summary["id"],
            **full_scores(layness=score),
            "labels": []
        })
        assert response.status_code == 422

    def test_annotate_missing_score(self, auth_client: tuple[TestClient, dict], sample_summary: dict):
        """Test all four scores are required."""
        client, user = auth_client
        scores = full_scores()
        del scores["usefulness"]
        response = client.post("/api/annotate", json={
            "summary_id": sample_summary["id"],
            **scores,
            "labels": []
        })
        assert response.status_code == 422

    def test_annotate_unknown_category(self, auth_client: tuple[TestClient, dict], sample_summary: dict, entity_label: dict):
        """Test labels must use one of the fixed error categories."""
        client, user = auth_client
        response = client.post("/api/annotate", json={
            "summary_id": sample_summary["id"],
            **full_scores(),
            "labels": [{**entity_label, "type": "my_custom_label"}]
        })
        assert response.status_code == 422

    def test_annotate_empty_range(self, auth_client: tuple[TestClient, dict], sample_summary: dict, entity_label: dict):
        """Test labels must cover at least one character."""
        client, user = auth_client
        response = client.post("/api/annotate", json={
            "summary_id": sample_summary["id"],
            **full_scores(),
            "labels": [{**entity_label, "startIndex": 10, "endIndex": 10}]
        })
        assert response.status_code == 422

    def test_annotate_range_past_summary(self, auth_client: tuple[TestClient, dict], sample_summary: dict, entity_label: dict):
        """Test labels must lie inside the summary."""
        client, user = auth_client
        response = client.post("/api/annotate", json={
            "summary_id": sample_summary["id"],
            **full_scores(),
            "labels": [{**entity_label, "startIndex": 30, "endIndex": 80}]
        })
        assert response.status_code == 422

    def test_annotate_stale_label_logged(
        self,
        auth_client: tuple[TestClient, dict],
        sample_summary: dict,
        entity_label: dict,
        caplog: pytest.LogCaptureFixture,
    ):
        """Test a label whose text does not match the summary is saved but logged."""
        client, user = auth_client
        with caplog.at_level(logging.WARNING):
            response = client.post("/api/annotate", json={
                "summary_id": sample_summary["id"],
                **full_scores(),
                "labels": [{**entity_label, "text": "40%"}]
            })
        assert response.status_code == 200
        assert "Stale label" in caplog.text

    def test_annotate_without_correction(self, auth_client: tuple[TestClient, dict], sample_summary: dict):
        """Test labels without a suggested correction round-trip with a null correction."""
        client, user = auth_client
        label = {"type": "Omission", "text": "drug", "startIndex": 4, "endIndex": 8}
        client.post("/api/annotate", json={
            "summary_id": sample_summary["id"],
            **full_scores(),
            "labels": [label]
        })
        annotation = client.get("/api/annotations", params={"summary_id": sample_summary["id"]}).json()["annotation"]
        assert annotation["labels"] == [{**label, "correctedText": None}]


class TestGetAnnotations:
    """Tests for /api/annotations endpoint."""

    def test_no_annotation_yet(self, auth_client: tuple[TestClient, dict], sample_summary: dict):
        """Test a summary without an annotation returns null."""
        client, user = auth_client
        response = client.get("/api/annotations", params={"summary_id": sample_summary["id"]})
        assert response.status_code == 200
        assert response.json() == {"annotation": None}

    def test_all_annotations_keyed_by_summary(self, auth_client: tuple[TestClient, dict], sample_summary: dict):
        """Test listing every annotation of the user."""
        client, user = auth_client
        other = insert_summary("Another summary.")
        assign_summary(user["id"], other)
        client.post("/api/annotate", json={"summary_id": sample_summary["id"], **full_scores(), "labels": []})
        client.post("/api/annotate", json={"summary_id": other, **full_scores(layness=1), "labels": []})

        response = client.get("/api/annotations")
        assert response.status_code == 200
        annotations = response.json()["annotations"]
        assert set(annotations) == {sample_summary["id"], other}
        assert annotations[other]["layness"] == 1

    def test_user_id_ignored_for_annotators(
        self,
        auth_client: tuple[TestClient, dict],
        other_client: tuple[TestClient, dict],
        sample_summary: dict,
    ):
        """Test non-admins cannot read another user's annotations."""
        client, user = auth_client
        other, other_user = other_client
        client.post("/api/annotate", json={"summary_id": sample_summary["id"], **full_scores(), "labels": []})

        response = other.get("/api/annotations", params={"user_id": user["id"]})
        assert response.json() == {"annotations": {}}

    def test_admin_reads_other_user(
        self,
        admin_client: tuple[TestClient, dict],
        auth_client: tuple[TestClient, dict],
        sample_summary: dict,
    ):
        """Test admins can read another user's annotations."""
        admin, _ = admin_client
        client, user = auth_client
        client.post("/api/annotate", json={"summary_id": sample_summary["id"], **full_scores(), "labels": []})

        response = admin.get("/api/annotations", params={"user_id": user["id"], "summary_id": sample_summary["id"]})
        assert response.json()["annotation"]["comprehensiveness"] == 3
