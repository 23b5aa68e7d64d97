"""
Pytest configuration and fixtures for Summary Labeler tests.
"""
import os
import sys
import tempfile
from pathlib import Path
from typing import Generator

import pytest
from fastapi.testclient import TestClient

# Add app directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

# Set test environment before importing app
os.environ["ADMIN_USER"] = "test_admin"

SAMPLE_TEXT = "A randomized trial found the drug reduced symptoms by 30% compared to placebo."
SAMPLE_SUMMARY = "The drug reduced symptoms by 50%."


@pytest.fixture(scope="session")
def temp_db_path() -> Generator[Path, None, None]:
    """Create a temporary database file for the test session."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)
    yield db_path
    # Cleanup after all tests
    if db_path.exists():
        db_path.unlink()


@pytest.fixture(scope="session")
def app(temp_db_path: Path):
    """Create FastAPI app with test database."""
    import app as app_module

    # Override database path
    app_module.DB_PATH = temp_db_path

    # Initialize database
    app_module.init_db()

    return app_module.app


@pytest.fixture(scope="session")
def client(app) -> Generator[TestClient, None, None]:
    """Create test client for the session."""
    with TestClient(app) as c:
        yield c


@pytest.fixture
def fresh_client(app, temp_db_path: Path) -> Generator[TestClient, None, None]:
    """Create a fresh test client with clean database for each test."""
    import app as app_module

    # Create new temp db for this test
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        test_db = Path(f.name)

    app_module.DB_PATH = test_db
    app_module.init_db()

    with TestClient(app_module.app) as c:
        yield c

    app_module.DB_PATH = temp_db_path
    if test_db.exists():
        test_db.unlink()


def register_client(app, username: str = None, password: str = "testpass123") -> tuple[TestClient, dict]:
    """A new client holding the session cookie of a newly registered user."""
    username = username or f"testuser_{os.urandom(4).hex()}"
    c = TestClient(app)
    response = c.post("/api/auth/register", json={
        "username": username,
        "password": password,
        "display_name": "Test User",
        "email": f"{username}@example.com",
    })
    assert response.status_code == 200
    return c, response.json()


@pytest.fixture
def auth_client(app) -> Generator[tuple[TestClient, dict], None, None]:
    """Create authenticated test client with a registered user."""
    c, user_data = register_client(app)
    yield c, user_data
    c.close()


@pytest.fixture
def other_client(app) -> Generator[tuple[TestClient, dict], None, None]:
    """A second registered user, for cross-user checks."""
    c, user_data = register_client(app)
    yield c, user_data
    c.close()


@pytest.fixture
def admin_client(app) -> Generator[tuple[TestClient, dict], None, None]:
    """Create authenticated test client with admin user."""
    c = TestClient(app)
    # Register as the admin user (ADMIN_USER env var)
    response = c.post("/api/auth/register", json={
        "username": "test_admin",
        "password": "adminpass123",
        "display_name": "Test Admin"
    })

    if response.status_code == 400:
        # Already registered, login instead
        response = c.post("/api/auth/login", json={
            "username": "test_admin",
            "password": "adminpass123"
        })

    assert response.status_code == 200
    # Register and login answer differently; /api/me gives one shape for both
    response = c.get("/api/me")
    assert response.status_code == 200
    user_data = response.json()

    yield c, user_data
    c.close()


def insert_summary(summary: str = SAMPLE_SUMMARY, text: str = SAMPLE_TEXT, level: str = "LAYMAN", model: str = None) -> str:
    """Insert a text summary directly, since there is no API for it."""
    import app as app_module

    summary_id = f"summary_{os.urandom(4).hex()}"
    with app_module.get_db() as conn:
        conn.execute("""
            INSERT INTO text_summaries (id, pmid, text, summary, level, model)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (summary_id, "12345", text, summary, level, model))
    return summary_id


def assign_summary(user_id: int, summary_id: str, days_ago: int = 0):
    import app as app_module

    with app_module.get_db() as conn:
        conn.execute("""
            INSERT INTO user_summaries (user_id, summary_id, assigned_at)
            VALUES (?, ?, datetime('now', ?))
        """, (user_id, summary_id, f"-{days_ago} days"))


@pytest.fixture
def sample_summary(auth_client: tuple[TestClient, dict]) -> dict:
    """A summary assigned to the auth_client user."""
    client, user = auth_client
    summary_id = insert_summary()
    assign_summary(user["id"], summary_id)
    return {
        "id": summary_id,
        "text": SAMPLE_TEXT,
        "summary": SAMPLE_SUMMARY,
    }


@pytest.fixture
def entity_label() -> dict:
    """Wire-format label marking "50%" in SAMPLE_SUMMARY with a correction."""
    return {
        "type": "Entity errors",
        "text": "50%",
        "correctedText": "30%",
        "startIndex": 29,
        "endIndex": 32,
    }


def full_scores(**overrides) -> dict:
    scores = {"comprehensiveness": 3, "layness": 4, "factuality": 2, "usefulness": 5}
    scores.update(overrides)
    return scores
