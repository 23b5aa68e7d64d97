"""
API client for the Summary Labeler backend.

Wraps all HTTP calls to the FastAPI backend, handling authentication
and response parsing. Also serves as the annotation store for an
AnnotationSession.
"""

import httpx
from dataclasses import dataclass
from typing import Optional

from labeling.annotation import ASPECTS
from labeling.session import DocumentItem, PersistenceFailure


@dataclass
class APIConfig:
    """Configuration for the API client."""
    base_url: str = "http://127.0.0.1:8000"
    username: str = "mcp-annotator"
    password: str = "mcp-annotator-password"
    timeout: float = 30.0


class SummaryApiClient:
    """
    Client for the Summary Labeler API.

    Handles authentication via session cookies and provides typed methods
    for all annotation-related endpoints.
    """

    def __init__(self, config: Optional[APIConfig] = None, transport: Optional[httpx.BaseTransport] = None):
        self.config = config or APIConfig()
        self._client = httpx.Client(
            base_url=self.config.base_url,
            timeout=self.config.timeout,
            follow_redirects=True,
            transport=transport,
        )
        self._authenticated = False

    def _ensure_auth(self) -> None:
        """Ensure we have a valid session."""
        if self._authenticated:
            return

        # Try to register first (fails if the user exists)
        response = self._client.post(
            "/api/auth/register",
            json={
                "username": self.config.username,
                "password": self.config.password,
            }
        )
        if response.status_code == 200:
            self._authenticated = True
            return

        # Fall back to login
        response = self._client.post(
            "/api/auth/login",
            json={
                "username": self.config.username,
                "password": self.config.password,
            }
        )
        response.raise_for_status()
        self._authenticated = True

    def get_me(self) -> dict:
        """Get current user info."""
        self._ensure_auth()
        response = self._client.get("/api/me")
        response.raise_for_status()
        return response.json()

    def get_labels(self) -> dict:
        """Get the error categories and rating aspects."""
        response = self._client.get("/api/labels")
        response.raise_for_status()
        return response.json()

    def get_summaries(self) -> list[dict]:
        """Get the summaries currently visible to this user."""
        self._ensure_auth()
        response = self._client.get("/api/summaries")
        response.raise_for_status()
        return response.json().get("summaries", [])

    def get_summary(self, summary_id: str) -> Optional[dict]:
        """Get one assigned summary with its saved annotation and highlights."""
        self._ensure_auth()
        response = self._client.get(f"/api/summaries/{summary_id}")
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json()

    def documents(self) -> list[DocumentItem]:
        """Assigned summaries as session documents."""
        return [
            DocumentItem(document_id=item["id"], text=item["text"], summary=item["summary"])
            for item in self.get_summaries()
        ]

    def render(self, summary_id: str, labels: list[dict], pending: Optional[dict] = None) -> dict:
        """Render labels over a summary on the server."""
        self._ensure_auth()
        payload = {"summary_id": summary_id, "labels": labels}
        if pending is not None:
            payload["pending"] = pending
        response = self._client.post("/api/render", json=payload)
        response.raise_for_status()
        return response.json()

    def resolve(self, summary_id: str, labels: list[dict], selection: dict) -> Optional[dict]:
        """Resolve a rendered selection to summary offsets. None if collapsed."""
        self._ensure_auth()
        response = self._client.post(
            "/api/resolve",
            json={"summary_id": summary_id, "labels": labels, "selection": selection},
        )
        response.raise_for_status()
        return response.json()["selection"]

    def get_annotation(self, summary_id: str) -> Optional[dict]:
        """Get this user's saved annotation for a summary."""
        self._ensure_auth()
        response = self._client.get("/api/annotations", params={"summary_id": summary_id})
        response.raise_for_status()
        return response.json()["annotation"]

    def submit_annotation(self, summary_id: str, scores: dict, labels: list[dict]) -> dict:
        """Submit ratings and labels for a summary."""
        self._ensure_auth()
        response = self._client.post(
            "/api/annotate",
            json={"summary_id": summary_id, **scores, "labels": labels},
        )
        response.raise_for_status()
        return response.json()

    def get_ranking_tasks(self) -> list[dict]:
        """Get this user's ranking tasks."""
        self._ensure_auth()
        response = self._client.get("/api/ranking")
        response.raise_for_status()
        return response.json().get("ranking_tasks", [])

    def submit_ranking(
        self,
        task_id: int,
        target_rank: int,
        baseline_rank: int,
        agentic_rank: int,
        mark_completed: bool = False,
    ) -> dict:
        """Rank the three summaries of a ranking task."""
        self._ensure_auth()
        response = self._client.post(
            "/api/ranking",
            json={
                "task_id": task_id,
                "target_rank": target_rank,
                "baseline_rank": baseline_rank,
                "agentic_rank": agentic_rank,
                "mark_completed": mark_completed,
            },
        )
        response.raise_for_status()
        return response.json()

    # ------------------------------------------------------------------
    # Annotation store
    # ------------------------------------------------------------------

    def save_annotation(self, document_id: str, scores: dict, labels: list[dict]) -> bool:
        """Persist an annotation. Raises PersistenceFailure on any HTTP error."""
        try:
            self.submit_annotation(document_id, scores, labels)
        except httpx.HTTPError as e:
            raise PersistenceFailure(str(e)) from e
        return True

    def load_annotation(self, document_id: str) -> Optional[tuple[dict, list[dict]]]:
        """Load a saved annotation as (scores, labels), or None if there is none."""
        try:
            annotation = self.get_annotation(document_id)
        except httpx.HTTPError as e:
            raise PersistenceFailure(str(e)) from e
        if annotation is None:
            return None
        scores = {aspect: annotation.get(aspect) for aspect in ASPECTS}
        return scores, annotation.get("labels", [])

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
