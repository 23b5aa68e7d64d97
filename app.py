#!/usr/bin/env python3
"""
Summary Labeler - A web-based tool for rating summaries and labeling their errors.

Features:
- Per-user assignment of text/summary pairs with a configurable visibility window
- Four 1-5 quality ratings per summary (comprehensiveness, layness, factuality, usefulness)
- Character-offset error labels with typed categories and suggested corrections
- Lossless highlight rendering of (possibly overlapping) labels
- Selection-to-offset resolution for the rendered summary
- Ranking tasks over grouped triples of candidate summaries
- SQLite persistence
- Session-based authentication with admin role

Usage:
    cd summary-labeler
    uvicorn app:app --reload --port 8000
    # Then open http://localhost:8000/docs

Environment Variables:
    SUMMARY_LABELER_DB=labels.db  - SQLite database path (default: labels.db next to this file)
    ADMIN_USER=username  - Bootstrap admin user (gets admin role on startup and registration)
    SESSION_EXPIRY_DAYS=30  - How long login sessions last (default: 30)
    DEFAULT_SUMMARY_WINDOW_DAYS=7  - Assignment window for users without settings (default: 7)
    LOG_LEVEL=INFO  - Logging level set up on startup (default: INFO)
"""

import json
import logging
import sqlite3
import secrets
import hashlib
import os
from html import escape
from pathlib import Path
from typing import Optional
from contextlib import contextmanager

from fastapi import FastAPI, HTTPException, Query, Request, Response, Depends
from fastapi.responses import HTMLResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from labeling.annotation import ASPECTS, SCORE_MAX, SCORE_MIN
from labeling.labels import (
    ERROR_CATEGORIES,
    Label,
    LabelStore,
    PendingSelection,
    find_stale_labels,
    get_category_schema,
    is_error_category,
)
from labeling.markup import render_html
from labeling.renderer import render_segments
from labeling.resolver import (
    Selection,
    SelectionPoint,
    SelectionResolutionFailure,
    resolve_selection,
)

logger = logging.getLogger(__name__)

# Paths - relative to this file's directory
APP_DIR = Path(__file__).parent.resolve()
DB_PATH = Path(os.environ.get("SUMMARY_LABELER_DB", APP_DIR / "labels.db"))

# Configuration
SESSION_EXPIRY_DAYS = int(os.environ.get("SESSION_EXPIRY_DAYS", "30"))
DEFAULT_SUMMARY_WINDOW_DAYS = int(os.environ.get("DEFAULT_SUMMARY_WINDOW_DAYS", "7"))
ADMIN_USER = os.environ.get("ADMIN_USER", "")  # Username to bootstrap as admin
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
MAX_SUMMARY_WINDOW_DAYS = 365

# Role constants
ROLE_ADMIN = "admin"
ROLE_ANNOTATOR = "annotator"

# Ranks for the three summaries of a ranking group
VALID_RANKS = {1, 2, 3}

# ============================================================================
# API Documentation
# ============================================================================

API_DESCRIPTION = """
# Summary Labeler API

A multi-user annotation tool for rating summaries of scientific abstracts and
labeling the erroneous spans they contain.

## Features

- **Ratings**: Score each summary 1-5 on comprehensiveness, layness, factuality and usefulness
- **Error labels**: Mark character ranges of a summary with a typed error category and an optional correction
- **Highlight rendering**: Labels are rendered into ordered segments that always concatenate back to the summary
- **Selection resolution**: Map a selection in the rendered summary back to summary offsets
- **Ranking tasks**: Rank three candidate summaries of the same abstract
- **Assignment window**: Admins control how many days back a user's assignments remain visible

## Authentication

Most endpoints require authentication via session cookie. Use the `/api/auth/login` or
`/api/auth/register` endpoints to obtain a session.

## Admin Mode

Set `ADMIN_USER=username` environment variable to bootstrap a user as admin on startup.
Admins have access to additional endpoints under `/api/admin/`.

## Label Format

Labels are stored and exchanged as:
```json
{"type": "Entity errors", "text": "50%", "correctedText": "30%", "startIndex": 29, "endIndex": 32}
```
"""

TAGS_METADATA = [
    {
        "name": "Authentication",
        "description": "User registration, login, logout, and session management.",
    },
    {
        "name": "Admin",
        "description": "Admin-only endpoints for users, assignment windows and annotation review. Requires admin role.",
    },
    {
        "name": "Summaries",
        "description": "Retrieve the summaries assigned to the current user.",
    },
    {
        "name": "Highlighting",
        "description": "Render labels into segments and resolve selections to offsets.",
    },
    {
        "name": "Annotation",
        "description": "Submit and retrieve ratings and error labels.",
    },
    {
        "name": "Ranking",
        "description": "Rank grouped triples of candidate summaries.",
    },
    {
        "name": "System",
        "description": "Label schema and annotation guidelines.",
    },
]

app = FastAPI(
    title="Summary Labeler API",
    description=API_DESCRIPTION,
    version="2.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=TAGS_METADATA,
    license_info={
        "name": "MIT",
        "url": "https://opensource.org/licenses/MIT",
    },
)


# ============================================================================
# Database Setup
# ============================================================================

def init_db():
    """Initialize SQLite database."""
    with get_db() as conn:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                username TEXT UNIQUE NOT NULL,
                email TEXT UNIQUE,
                password_hash TEXT NOT NULL,
                display_name TEXT,
                role TEXT NOT NULL DEFAULT 'annotator',
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                last_seen TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS sessions (
                token TEXT PRIMARY KEY,
                user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                expires_at TIMESTAMP NOT NULL
            );

            CREATE TABLE IF NOT EXISTS settings (
                user_id INTEGER PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
                summary_window_days INTEGER NOT NULL DEFAULT 7,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS text_summaries (
                id TEXT PRIMARY KEY,
                pmid TEXT,
                text TEXT NOT NULL,
                summary TEXT NOT NULL,
                level TEXT,
                model TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS annotations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                summary_id TEXT NOT NULL REFERENCES text_summaries(id) ON DELETE CASCADE,
                comprehensiveness INTEGER NOT NULL,
                layness INTEGER NOT NULL,
                factuality INTEGER NOT NULL,
                usefulness INTEGER NOT NULL,
                labels TEXT NOT NULL DEFAULT '[]',
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                UNIQUE(user_id, summary_id)
            );

            CREATE TABLE IF NOT EXISTS user_summaries (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                summary_id TEXT NOT NULL REFERENCES text_summaries(id) ON DELETE CASCADE,
                assigned_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                completed INTEGER NOT NULL DEFAULT 0,
                annotation_id INTEGER REFERENCES annotations(id) ON DELETE SET NULL,
                UNIQUE(user_id, summary_id)
            );

            CREATE TABLE IF NOT EXISTS ranking_groups (
                id TEXT PRIMARY KEY,
                pmid TEXT,
                abstract TEXT NOT NULL,
                level TEXT,
                target_id TEXT NOT NULL REFERENCES text_summaries(id),
                baseline_id TEXT NOT NULL REFERENCES text_summaries(id),
                agentic_id TEXT NOT NULL REFERENCES text_summaries(id)
            );

            CREATE TABLE IF NOT EXISTS user_ranking_tasks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                ranking_group_id TEXT NOT NULL REFERENCES ranking_groups(id) ON DELETE CASCADE,
                assigned_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                completed INTEGER NOT NULL DEFAULT 0,
                UNIQUE(user_id, ranking_group_id)
            );

            CREATE TABLE IF NOT EXISTS summary_rankings (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                task_id INTEGER UNIQUE NOT NULL REFERENCES user_ranking_tasks(id) ON DELETE CASCADE,
                target_rank INTEGER NOT NULL,
                baseline_rank INTEGER NOT NULL,
                agentic_rank INTEGER NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE INDEX IF NOT EXISTS idx_user_summaries_user ON user_summaries(user_id, assigned_at);
            CREATE INDEX IF NOT EXISTS idx_annotations_user ON annotations(user_id);
            CREATE INDEX IF NOT EXISTS idx_sessions_user ON sessions(user_id);
        """)

        # Databases created before assignments were linked to their annotation
        columns = {row["name"] for row in conn.execute("PRAGMA table_info(user_summaries)")}
        if "annotation_id" not in columns:
            migrate_add_annotation_link(conn)

        bootstrap_admin_user(conn)


def migrate_add_annotation_link(conn):
    """Add annotation_id to user_summaries and backfill it from existing annotations."""
    logger.info("Adding annotation_id column to user_summaries table...")

    conn.execute("""
        ALTER TABLE user_summaries
        ADD COLUMN annotation_id INTEGER REFERENCES annotations(id) ON DELETE SET NULL
    """)
    cursor = conn.execute("""
        UPDATE user_summaries SET
            annotation_id = (
                SELECT a.id FROM annotations a
                WHERE a.user_id = user_summaries.user_id AND a.summary_id = user_summaries.summary_id
            ),
            completed = 1
        WHERE EXISTS (
            SELECT 1 FROM annotations a
            WHERE a.user_id = user_summaries.user_id AND a.summary_id = user_summaries.summary_id
        )
    """)

    logger.info("Migration complete. Linked %d annotated assignments.", cursor.rowcount)


def bootstrap_admin_user(conn):
    """Grant admin role to ADMIN_USER if that user already exists."""
    if not ADMIN_USER:
        return

    row = conn.execute(
        "SELECT id, role FROM users WHERE username = ?", (ADMIN_USER,)
    ).fetchone()

    if row:
        if row["role"] != ROLE_ADMIN:
            conn.execute("UPDATE users SET role = ? WHERE id = ?", (ROLE_ADMIN, row["id"]))
            logger.info("User '%s' promoted to admin role.", ADMIN_USER)
        else:
            logger.info("User '%s' already has admin role.", ADMIN_USER)
    else:
        logger.info("Admin user '%s' not found. Will be granted admin role on registration.", ADMIN_USER)


@contextmanager
def get_db():
    """Database connection context manager."""
    conn = sqlite3.connect(DB_PATH, timeout=30)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        yield conn
        conn.commit()
    finally:
        conn.close()


# ============================================================================
# Authentication Helpers
# ============================================================================

def hash_password(password: str) -> str:
    """Hash a password using SHA-256 with salt."""
    salt = secrets.token_hex(16)
    hashed = hashlib.sha256((salt + password).encode()).hexdigest()
    return f"{salt}:{hashed}"


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash."""
    if not password_hash or ':' not in password_hash:
        return False
    salt, hashed = password_hash.split(':', 1)
    return secrets.compare_digest(hashlib.sha256((salt + password).encode()).hexdigest(), hashed)


def create_session(user_id: int) -> str:
    """Create a new session for a user."""
    token = secrets.token_urlsafe(32)

    with get_db() as conn:
        conn.execute("""
            INSERT INTO sessions (token, user_id, expires_at)
            VALUES (?, ?, datetime('now', ?))
        """, (token, user_id, f"+{SESSION_EXPIRY_DAYS} days"))

        conn.execute("""
            UPDATE users SET last_seen = CURRENT_TIMESTAMP WHERE id = ?
        """, (user_id,))

    return token


def get_user_from_session(token: Optional[str]) -> Optional[dict]:
    """Get user from session token."""
    if not token:
        return None

    with get_db() as conn:
        row = conn.execute("""
            SELECT u.id, u.username, u.email, u.display_name, u.role, u.created_at
            FROM sessions s
            JOIN users u ON s.user_id = u.id
            WHERE s.token = ? AND s.expires_at > CURRENT_TIMESTAMP
        """, (token,)).fetchone()

        if row:
            conn.execute("""
                UPDATE users SET last_seen = CURRENT_TIMESTAMP WHERE id = ?
            """, (row["id"],))

            return dict(row)

    return None


def delete_session(token: str):
    """Delete a session."""
    with get_db() as conn:
        conn.execute("DELETE FROM sessions WHERE token = ?", (token,))


def set_session_cookie(response: Response, token: str):
    response.set_cookie(
        key="session",
        value=token,
        httponly=True,
        max_age=SESSION_EXPIRY_DAYS * 24 * 60 * 60,
        samesite="lax"
    )


async def get_current_user(request: Request) -> dict:
    """Dependency to get current user from session cookie."""
    user = get_user_from_session(request.cookies.get("session"))
    if not user:
        raise HTTPException(401, "Not authenticated. Please log in.")
    return user


async def require_admin(user: dict = Depends(get_current_user)) -> dict:
    """Dependency to require admin role."""
    if user.get("role") != ROLE_ADMIN:
        raise HTTPException(403, "Admin access required.")
    return user


# ============================================================================
# Pydantic Models
# ============================================================================

class LabelModel(BaseModel):
    """An error label anchored to a character range of the summary."""
    model_config = ConfigDict(populate_by_name=True)

    category: str = Field(..., alias="type", description="Error category", examples=["Entity errors"])
    text: str = Field(..., description="Summary text covered by the label (summary[startIndex:endIndex])")
    corrected_text: Optional[str] = Field(None, alias="correctedText", description="Suggested replacement text")
    start_index: int = Field(..., alias="startIndex", ge=0, description="Start offset (inclusive)")
    end_index: int = Field(..., alias="endIndex", ge=0, description="End offset (exclusive)")

    @field_validator("category")
    @classmethod
    def check_category(cls, value: str) -> str:
        if not is_error_category(value):
            raise ValueError(f"Unknown error category: {value}")
        return value

    @model_validator(mode="after")
    def check_range(self):
        if self.end_index <= self.start_index:
            raise ValueError("endIndex must be greater than startIndex")
        return self

    def to_label(self) -> Label:
        return Label(
            category=self.category,
            original_text=self.text,
            start_offset=self.start_index,
            end_offset=self.end_index,
            corrected_text=self.corrected_text,
        )


class AnnotationSubmission(BaseModel):
    """Complete annotation submission for a summary."""
    summary_id: str = Field(..., description="ID of the summary being annotated")
    comprehensiveness: int = Field(..., ge=SCORE_MIN, le=SCORE_MAX, description=ASPECTS["comprehensiveness"])
    layness: int = Field(..., ge=SCORE_MIN, le=SCORE_MAX, description=ASPECTS["layness"])
    factuality: int = Field(..., ge=SCORE_MIN, le=SCORE_MAX, description=ASPECTS["factuality"])
    usefulness: int = Field(..., ge=SCORE_MIN, le=SCORE_MAX, description=ASPECTS["usefulness"])
    labels: list[LabelModel] = Field(default_factory=list, description="Error labels on the summary")


class PendingRange(BaseModel):
    """An unconfirmed selection range to render with the pending style."""
    start_offset: int = Field(..., ge=0)
    end_offset: int = Field(..., ge=0)


class RenderRequest(BaseModel):
    """Labels (and an optional pending selection) to render over a summary."""
    summary_id: str = Field(..., description="ID of the summary to render")
    labels: list[LabelModel] = Field(default_factory=list)
    pending: Optional[PendingRange] = None
    highlighted_index: Optional[int] = Field(None, description="Label index to emphasize in the HTML")


class SelectionPointModel(BaseModel):
    """One selection anchor: a rendered leaf and an offset within it."""
    leaf: int = Field(..., description="Index of the rendered segment (data-leaf)")
    offset: int = Field(..., description="Character offset inside that segment")


class SelectionModel(BaseModel):
    start: SelectionPointModel
    end: SelectionPointModel
    text: Optional[str] = Field(None, description="Selected text as reported by the browser")


class ResolveRequest(RenderRequest):
    """A selection made on the summary as rendered from these labels."""
    selection: SelectionModel


class RankingSubmission(BaseModel):
    """Ranks for the three summaries of a ranking task."""
    task_id: int = Field(..., description="ID of the ranking task")
    target_rank: int
    baseline_rank: int
    agentic_rank: int
    mark_completed: bool = False


class UserCreate(BaseModel):
    """Request body for user registration."""
    username: str = Field(..., min_length=3, description="Username (min 3 characters)", examples=["annotator1"])
    password: str = Field(..., min_length=6, description="Password (min 6 characters)")
    display_name: Optional[str] = Field(None, description="Display name (defaults to username)")
    email: Optional[str] = Field(None, description="Email address, used by the assignment scripts")


class UserLogin(BaseModel):
    """Request body for user login."""
    username: str = Field(..., description="Username")
    password: str = Field(..., description="Password")


class UserResponse(BaseModel):
    """Response containing user information."""
    id: int = Field(..., description="User ID")
    username: str = Field(..., description="Username")
    display_name: Optional[str] = Field(None, description="Display name")
    email: Optional[str] = Field(None, description="Email address")
    role: str = Field(ROLE_ANNOTATOR, description="User role (admin or annotator)")


class UserRoleUpdate(BaseModel):
    """Request body for changing a user's role."""
    role: str = Field(..., description="New role: admin or annotator")


class SettingsUpdate(BaseModel):
    """Request body for a user's assignment window."""
    user_id: int = Field(..., description="User whose settings to change")
    summary_window_days: int = Field(
        ..., ge=1, le=MAX_SUMMARY_WINDOW_DAYS,
        description="How many days back assigned summaries stay visible",
    )


# ============================================================================
# Summary Helpers
# ============================================================================

def get_summary_row(conn, summary_id: str):
    row = conn.execute(
        "SELECT id, pmid, text, summary, level, model FROM text_summaries WHERE id = ?",
        (summary_id,)
    ).fetchone()
    if not row:
        raise HTTPException(404, f"Summary not found: {summary_id}")
    return row


def get_assignment_row(conn, user_id: int, summary_id: str):
    row = conn.execute("""
        SELECT assigned_at, completed, annotation_id
        FROM user_summaries WHERE user_id = ? AND summary_id = ?
    """, (user_id, summary_id)).fetchone()
    if not row:
        raise HTTPException(404, f"Summary not assigned: {summary_id}")
    return row


def get_summary_window_days(conn, user_id: int) -> int:
    row = conn.execute(
        "SELECT summary_window_days FROM settings WHERE user_id = ?", (user_id,)
    ).fetchone()
    return row["summary_window_days"] if row else DEFAULT_SUMMARY_WINDOW_DAYS


def check_label_offsets(summary: str, labels: list[LabelModel]):
    """Reject labels outside the summary; log labels whose text no longer matches."""
    for i, label in enumerate(labels):
        if label.end_index > len(summary):
            raise HTTPException(
                422,
                f"Label {i} ends at {label.end_index}, past the end of the summary ({len(summary)} characters)"
            )
    find_stale_labels(summary, [label.to_label() for label in labels])


def annotation_to_dict(row) -> dict:
    return {
        **{aspect: row[aspect] for aspect in ASPECTS},
        "labels": json.loads(row["labels"] or "[]"),
    }


def render_payload(summary: str, labels, pending=None, highlighted_index=None) -> dict:
    """Segments and HTML for a summary."""
    segments = render_segments(summary, labels, pending)
    return {
        "segments": [segment.to_dict() for segment in segments],
        "html": render_html(segments, highlighted_index),
    }


def pending_from_range(summary: str, pending: Optional[PendingRange]) -> Optional[PendingSelection]:
    if pending is None:
        return None
    if pending.end_offset <= pending.start_offset or pending.end_offset > len(summary):
        raise HTTPException(422, "Pending selection is outside the summary")
    return PendingSelection(
        original_text=summary[pending.start_offset:pending.end_offset],
        start_offset=pending.start_offset,
        end_offset=pending.end_offset,
    )


# ============================================================================
# API Endpoints - Root
# ============================================================================

@app.on_event("startup")
async def startup():
    """Initialize database on startup."""
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    init_db()
    logger.info("Database ready at %s", DB_PATH)


@app.get("/", response_class=HTMLResponse, include_in_schema=False)
@app.get("/guidelines", response_class=HTMLResponse, tags=["System"], summary="Annotation guidelines")
async def guidelines():
    """Serve the annotation guidelines."""
    aspects = "".join(
        f"<li><strong>{escape(name.capitalize())}</strong>: {escape(description)}</li>"
        for name, description in ASPECTS.items()
    )
    categories = "".join(
        f"<li><strong>{escape(name)}</strong>: {escape(meta['description'])}</li>"
        for name, meta in ERROR_CATEGORIES.items()
    )
    return f"""<!doctype html>
<html>
<head><title>Annotation Guidelines</title></head>
<body>
<h1>Annotation Guidelines</h1>
<h2>Rating Criteria (1-5)</h2>
<ul>{aspects}</ul>
<h2>Labeling Errors</h2>
<ul>{categories}</ul>
<h2>Annotation Process</h2>
<ol>
<li>Read the original text carefully.</li>
<li>Read the summary and evaluate its quality.</li>
<li>Select any problematic text in the summary and assign appropriate error labels.</li>
<li>Rate the summary on the four criteria: Comprehensiveness, Layness, Factuality, and Usefulness.</li>
<li>Submit the annotation when you have completed your evaluation.</li>
</ol>
</body>
</html>"""


# ============================================================================
# API Endpoints - Authentication
# ============================================================================

@app.post(
    "/api/auth/register",
    tags=["Authentication"],
    summary="Register a new user",
    description="Create a new user account. Returns a session cookie on success. If ADMIN_USER env var matches the username, user gets admin role.",
)
async def register(user: UserCreate, response: Response):
    """Register a new user."""
    email = user.email or None

    with get_db() as conn:
        existing = conn.execute(
            "SELECT id FROM users WHERE username = ?",
            (user.username,)
        ).fetchone()

        if existing:
            raise HTTPException(400, "Username already taken")

        if email:
            existing = conn.execute(
                "SELECT id FROM users WHERE email = ?", (email,)
            ).fetchone()
            if existing:
                raise HTTPException(400, "Email already registered")

        role = ROLE_ADMIN if user.username == ADMIN_USER else ROLE_ANNOTATOR

        cursor = conn.execute("""
            INSERT INTO users (username, email, password_hash, display_name, role)
            VALUES (?, ?, ?, ?, ?)
        """, (user.username, email, hash_password(user.password), user.display_name or user.username, role))

        user_id = cursor.lastrowid

    token = create_session(user_id)
    set_session_cookie(response, token)

    return {
        "id": user_id,
        "username": user.username,
        "display_name": user.display_name or user.username,
        "email": email,
        "role": role
    }


@app.post(
    "/api/auth/login",
    tags=["Authentication"],
    summary="Log in",
    description="Authenticate with username and password. Returns a session cookie on success.",
)
async def login(user: UserLogin, response: Response):
    """Log in a user."""
    with get_db() as conn:
        row = conn.execute(
            "SELECT id, password_hash, role FROM users WHERE username = ?",
            (user.username,)
        ).fetchone()

        if not row or not verify_password(user.password, row["password_hash"]):
            raise HTTPException(401, "Invalid username or password")

        user_id = row["id"]
        role = row["role"]

    token = create_session(user_id)
    set_session_cookie(response, token)

    return {"status": "logged_in", "user_id": user_id, "username": user.username, "role": role}


@app.post(
    "/api/auth/logout",
    tags=["Authentication"],
    summary="Log out",
    description="Invalidate the current session and clear the session cookie.",
)
async def logout(request: Request, response: Response):
    """Log out the current user."""
    token = request.cookies.get("session")
    if token:
        delete_session(token)
    response.delete_cookie("session")
    return {"status": "logged_out"}


@app.get(
    "/api/me",
    tags=["Authentication"],
    summary="Get current user",
    description="Get information about the currently authenticated user, including their role.",
    response_model=UserResponse,
)
async def get_me(user: dict = Depends(get_current_user)):
    """Get current user info."""
    return UserResponse(
        id=user["id"],
        username=user["username"],
        display_name=user.get("display_name"),
        email=user.get("email"),
        role=user.get("role", ROLE_ANNOTATOR),
    )


@app.get(
    "/api/auth/status",
    tags=["Authentication"],
    summary="Get auth status",
    description="Check whether registration is open and an admin bootstrap user is configured.",
)
async def auth_status():
    """Get authentication status."""
    return {
        "registration_enabled": True,
        "admin_bootstrap_configured": bool(ADMIN_USER),
        "session_expiry_days": SESSION_EXPIRY_DAYS,
    }


# ============================================================================
# API Endpoints - System
# ============================================================================

@app.get(
    "/api/labels",
    tags=["System"],
    summary="Get label schema",
    description="The fixed error categories and the four rating aspects.",
)
async def get_labels():
    """Get the label schema."""
    return {
        **get_category_schema(),
        "aspects": [{"name": name, "description": description} for name, description in ASPECTS.items()],
        "score_range": [SCORE_MIN, SCORE_MAX],
    }


# ============================================================================
# API Endpoints - Summaries
# ============================================================================

@app.get(
    "/api/summaries",
    tags=["Summaries"],
    summary="List assigned summaries",
    description="Summaries assigned to the current user within their assignment window, oldest assignment first.",
)
async def list_summaries(user: dict = Depends(get_current_user)):
    """List the current user's visible assignments."""
    with get_db() as conn:
        window_days = get_summary_window_days(conn, user["id"])
        rows = conn.execute("""
            SELECT t.id, t.pmid, t.text, t.summary, t.level, t.model,
                   us.assigned_at, us.completed
            FROM user_summaries us
            JOIN text_summaries t ON t.id = us.summary_id
            WHERE us.user_id = ? AND us.assigned_at >= datetime('now', ?)
            ORDER BY us.assigned_at, us.id
        """, (user["id"], f"-{window_days} days")).fetchall()

        return {
            "summaries": [
                {
                    "id": row["id"],
                    "pmid": row["pmid"],
                    "text": row["text"],
                    "summary": row["summary"],
                    "level": row["level"],
                    "model": row["model"],
                    "assigned_at": row["assigned_at"],
                    "completed": bool(row["completed"]),
                }
                for row in rows
            ],
            "window_days": window_days,
            "total": len(rows),
        }


@app.get(
    "/api/summaries/{summary_id}",
    tags=["Summaries"],
    summary="Get an assigned summary",
    description="One assigned summary with the current user's saved annotation and its rendered highlights.",
)
async def get_summary(summary_id: str, user: dict = Depends(get_current_user)):
    """Get a summary assigned to the current user."""
    with get_db() as conn:
        summary = get_summary_row(conn, summary_id)
        assignment = get_assignment_row(conn, user["id"], summary_id)
        annotation = conn.execute(
            "SELECT * FROM annotations WHERE user_id = ? AND summary_id = ?",
            (user["id"], summary_id)
        ).fetchone()

    existing = annotation_to_dict(annotation) if annotation else None
    labels = LabelStore.from_dicts(existing["labels"]) if existing else LabelStore()

    return {
        "id": summary["id"],
        "pmid": summary["pmid"],
        "text": summary["text"],
        "summary": summary["summary"],
        "level": summary["level"],
        "model": summary["model"],
        "assigned_at": assignment["assigned_at"],
        "completed": bool(assignment["completed"]),
        "annotation": existing,
        **render_payload(summary["summary"], labels),
    }


# ============================================================================
# API Endpoints - Highlighting
# ============================================================================

@app.post(
    "/api/render",
    tags=["Highlighting"],
    summary="Render labels",
    description="Split a summary into plain and highlighted segments for the given labels and pending selection.",
)
async def render_labels(request: RenderRequest, user: dict = Depends(get_current_user)):
    """Render labels over a summary."""
    with get_db() as conn:
        summary = get_summary_row(conn, request.summary_id)["summary"]
        get_assignment_row(conn, user["id"], request.summary_id)

    check_label_offsets(summary, request.labels)
    pending = pending_from_range(summary, request.pending)
    labels = [label.to_label() for label in request.labels]
    return {
        "summary_id": request.summary_id,
        **render_payload(summary, labels, pending, request.highlighted_index),
    }


@app.post(
    "/api/resolve",
    tags=["Highlighting"],
    summary="Resolve a selection",
    description=(
        "Map a selection made on the rendered summary (leaf index + in-leaf offset for each end) "
        "to summary offsets. A collapsed selection resolves to null."
    ),
)
async def resolve_labels_selection(request: ResolveRequest, user: dict = Depends(get_current_user)):
    """Resolve a selection to summary offsets."""
    with get_db() as conn:
        summary = get_summary_row(conn, request.summary_id)["summary"]
        get_assignment_row(conn, user["id"], request.summary_id)

    check_label_offsets(summary, request.labels)
    pending = pending_from_range(summary, request.pending)
    segments = render_segments(summary, [label.to_label() for label in request.labels], pending)
    selection = Selection(
        start=SelectionPoint(request.selection.start.leaf, request.selection.start.offset),
        end=SelectionPoint(request.selection.end.leaf, request.selection.end.offset),
        text=request.selection.text,
    )

    try:
        resolved = resolve_selection(summary, segments, selection)
    except SelectionResolutionFailure as e:
        raise HTTPException(422, f"Selection could not be resolved: {e}")

    if resolved is None:
        return {"summary_id": request.summary_id, "selection": None}

    return {
        "summary_id": request.summary_id,
        "selection": {
            "start_offset": resolved.start_offset,
            "end_offset": resolved.end_offset,
            "text": resolved.text,
        },
    }


# ============================================================================
# API Endpoints - Annotation
# ============================================================================

@app.post(
    "/api/annotate",
    tags=["Annotation"],
    summary="Submit annotation",
    description="Save ratings and error labels for an assigned summary and mark the assignment completed. Resubmitting replaces the previous annotation.",
)
async def submit_annotation(
    submission: AnnotationSubmission,
    user: dict = Depends(get_current_user)
):
    """Submit ratings and labels for a summary."""
    user_id = user["id"]

    with get_db() as conn:
        summary = get_summary_row(conn, submission.summary_id)["summary"]
        get_assignment_row(conn, user_id, submission.summary_id)

        check_label_offsets(summary, submission.labels)
        labels_json = json.dumps([label.model_dump(by_alias=True) for label in submission.labels])

        conn.execute("""
            INSERT INTO annotations
            (user_id, summary_id, comprehensiveness, layness, factuality, usefulness, labels)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id, summary_id) DO UPDATE SET
                comprehensiveness = excluded.comprehensiveness,
                layness = excluded.layness,
                factuality = excluded.factuality,
                usefulness = excluded.usefulness,
                labels = excluded.labels,
                updated_at = CURRENT_TIMESTAMP
        """, (
            user_id,
            submission.summary_id,
            submission.comprehensiveness,
            submission.layness,
            submission.factuality,
            submission.usefulness,
            labels_json,
        ))

        annotation_id = conn.execute(
            "SELECT id FROM annotations WHERE user_id = ? AND summary_id = ?",
            (user_id, submission.summary_id)
        ).fetchone()["id"]

        conn.execute("""
            UPDATE user_summaries SET completed = 1, annotation_id = ?
            WHERE user_id = ? AND summary_id = ?
        """, (annotation_id, user_id, submission.summary_id))

    return {
        "status": "saved",
        "summary_id": submission.summary_id,
        "annotation_id": annotation_id,
        "label_count": len(submission.labels),
    }


@app.get(
    "/api/annotations",
    tags=["Annotation"],
    summary="Get annotations",
    description="With summary_id, the current user's annotation for that summary (or null). Without it, all of the user's annotations keyed by summary ID. Admins may pass user_id to read another user's annotations.",
)
async def get_annotations(
    summary_id: Optional[str] = Query(None, description="Return only this summary's annotation"),
    user_id: Optional[int] = Query(None, description="Another user's ID (admin only)"),
    user: dict = Depends(get_current_user)
):
    """Get the user's annotations."""
    target_user_id = user_id if (user_id is not None and user["role"] == ROLE_ADMIN) else user["id"]

    with get_db() as conn:
        if summary_id is not None:
            row = conn.execute(
                "SELECT * FROM annotations WHERE user_id = ? AND summary_id = ?",
                (target_user_id, summary_id)
            ).fetchone()
            return {"annotation": annotation_to_dict(row) if row else None}

        rows = conn.execute(
            "SELECT * FROM annotations WHERE user_id = ? ORDER BY id",
            (target_user_id,)
        ).fetchall()
        return {"annotations": {row["summary_id"]: annotation_to_dict(row) for row in rows}}


# ============================================================================
# API Endpoints - Ranking
# ============================================================================

@app.get(
    "/api/ranking",
    tags=["Ranking"],
    summary="List ranking tasks",
    description="Ranking tasks assigned to the current user, ordered by abstract, with any saved ranking.",
)
async def list_ranking_tasks(user: dict = Depends(get_current_user)):
    """List the current user's ranking tasks."""
    with get_db() as conn:
        rows = conn.execute("""
            SELECT rt.id, rt.assigned_at, rt.completed,
                   g.id AS group_id, g.pmid, g.abstract, g.level,
                   tt.id AS target_id, tt.summary AS target_summary,
                   bt.id AS baseline_id, bt.summary AS baseline_summary,
                   ag.id AS agentic_id, ag.summary AS agentic_summary,
                   r.target_rank, r.baseline_rank, r.agentic_rank
            FROM user_ranking_tasks rt
            JOIN ranking_groups g ON g.id = rt.ranking_group_id
            JOIN text_summaries tt ON tt.id = g.target_id
            JOIN text_summaries bt ON bt.id = g.baseline_id
            JOIN text_summaries ag ON ag.id = g.agentic_id
            LEFT JOIN summary_rankings r ON r.task_id = rt.id
            WHERE rt.user_id = ?
            ORDER BY g.abstract, rt.id
        """, (user["id"],)).fetchall()

        tasks = []
        for row in rows:
            ranking = None
            if row["target_rank"] is not None:
                ranking = {
                    "target_rank": row["target_rank"],
                    "baseline_rank": row["baseline_rank"],
                    "agentic_rank": row["agentic_rank"],
                }
            tasks.append({
                "id": row["id"],
                "assigned_at": row["assigned_at"],
                "completed": bool(row["completed"]),
                "ranking_group": {
                    "id": row["group_id"],
                    "pmid": row["pmid"],
                    "abstract": row["abstract"],
                    "level": row["level"],
                    "target": {"id": row["target_id"], "summary": row["target_summary"]},
                    "baseline": {"id": row["baseline_id"], "summary": row["baseline_summary"]},
                    "agentic": {"id": row["agentic_id"], "summary": row["agentic_summary"]},
                },
                "ranking": ranking,
            })

        return {"ranking_tasks": tasks, "total": len(tasks)}


@app.post(
    "/api/ranking",
    tags=["Ranking"],
    summary="Submit ranking",
    description="Rank the three summaries of a task 1-3 (each rank used once). Optionally marks the task completed.",
)
async def submit_ranking(
    submission: RankingSubmission,
    user: dict = Depends(get_current_user)
):
    """Save a ranking for one of the user's tasks."""
    ranks = [submission.target_rank, submission.baseline_rank, submission.agentic_rank]
    if not all(rank in VALID_RANKS for rank in ranks):
        raise HTTPException(400, "Ranks must be 1, 2, or 3")
    if len(set(ranks)) != len(ranks):
        raise HTTPException(400, "Each summary must have a unique rank")

    with get_db() as conn:
        task = conn.execute(
            "SELECT id, completed FROM user_ranking_tasks WHERE id = ? AND user_id = ?",
            (submission.task_id, user["id"])
        ).fetchone()
        if not task:
            raise HTTPException(404, f"Ranking task not found: {submission.task_id}")

        conn.execute("""
            INSERT INTO summary_rankings (task_id, target_rank, baseline_rank, agentic_rank)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(task_id) DO UPDATE SET
                target_rank = excluded.target_rank,
                baseline_rank = excluded.baseline_rank,
                agentic_rank = excluded.agentic_rank,
                updated_at = CURRENT_TIMESTAMP
        """, (submission.task_id, *ranks))

        if submission.mark_completed:
            conn.execute(
                "UPDATE user_ranking_tasks SET completed = 1 WHERE id = ?",
                (submission.task_id,)
            )

    return {
        "status": "saved",
        "task_id": submission.task_id,
        "ranking": {
            "target_rank": submission.target_rank,
            "baseline_rank": submission.baseline_rank,
            "agentic_rank": submission.agentic_rank,
        },
        "completed": submission.mark_completed or bool(task["completed"]),
    }


# ============================================================================
# API Endpoints - Admin
# ============================================================================

@app.get(
    "/api/admin/users",
    tags=["Admin"],
    summary="List all users (admin)",
    description="List all users with their role, assignment window and progress. Admin only.",
)
async def admin_list_users(admin: dict = Depends(require_admin)):
    """List all users with admin details."""
    with get_db() as conn:
        users = conn.execute("""
            SELECT u.id, u.username, u.email, u.display_name, u.role, u.created_at, u.last_seen,
                   COALESCE(s.summary_window_days, ?) AS summary_window_days,
                   (SELECT COUNT(*) FROM user_summaries us WHERE us.user_id = u.id) AS assigned,
                   (SELECT COUNT(*) FROM annotations a WHERE a.user_id = u.id) AS annotations
            FROM users u
            LEFT JOIN settings s ON s.user_id = u.id
            ORDER BY u.display_name COLLATE NOCASE, u.id
        """, (DEFAULT_SUMMARY_WINDOW_DAYS,)).fetchall()

        return {
            "users": [dict(row) for row in users],
            "total": len(users)
        }


@app.put(
    "/api/admin/users/{user_id}/role",
    tags=["Admin"],
    summary="Update user role (admin)",
    description="Change a user's role. Admin only.",
)
async def admin_update_user_role(
    user_id: int,
    role_update: UserRoleUpdate,
    admin: dict = Depends(require_admin)
):
    """Update a user's role."""
    if role_update.role not in (ROLE_ADMIN, ROLE_ANNOTATOR):
        raise HTTPException(400, f"Invalid role: {role_update.role}. Must be '{ROLE_ADMIN}' or '{ROLE_ANNOTATOR}'.")

    if user_id == admin["id"] and role_update.role != ROLE_ADMIN:
        raise HTTPException(400, "Cannot demote yourself. Ask another admin.")

    with get_db() as conn:
        user = conn.execute("SELECT id, username, role FROM users WHERE id = ?", (user_id,)).fetchone()

        if not user:
            raise HTTPException(404, f"User not found: {user_id}")

        old_role = user["role"]

        conn.execute("UPDATE users SET role = ? WHERE id = ?", (role_update.role, user_id))

        return {
            "status": "updated",
            "user_id": user_id,
            "username": user["username"],
            "old_role": old_role,
            "new_role": role_update.role
        }


@app.post(
    "/api/admin/settings",
    tags=["Admin"],
    summary="Set assignment window (admin)",
    description="Set how many days back a user's assigned summaries remain visible (1-365). Admin only.",
)
async def admin_update_settings(
    update: SettingsUpdate,
    admin: dict = Depends(require_admin)
):
    """Upsert a user's settings."""
    with get_db() as conn:
        user = conn.execute("SELECT id FROM users WHERE id = ?", (update.user_id,)).fetchone()
        if not user:
            raise HTTPException(404, f"User not found: {update.user_id}")

        conn.execute("""
            INSERT INTO settings (user_id, summary_window_days)
            VALUES (?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                summary_window_days = excluded.summary_window_days,
                updated_at = CURRENT_TIMESTAMP
        """, (update.user_id, update.summary_window_days))

    logger.info(
        "Admin %s set summary window for user %d to %d days",
        admin["username"], update.user_id, update.summary_window_days,
    )
    return {"status": "updated", "user_id": update.user_id, "summary_window_days": update.summary_window_days}


@app.get(
    "/api/admin/annotations",
    tags=["Admin"],
    summary="Inspect a user's annotations (admin)",
    description="All annotations submitted by a user, with the summary and its rendered highlights. Admin only.",
)
async def admin_get_annotations(
    user_id: Optional[int] = Query(None, description="User whose annotations to list"),
    admin: dict = Depends(require_admin)
):
    """List a user's annotations with rendered labels."""
    if user_id is None:
        return {"annotations": [], "total": 0}

    with get_db() as conn:
        rows = conn.execute("""
            SELECT a.*, t.summary, t.text, t.level, t.model
            FROM annotations a
            JOIN text_summaries t ON t.id = a.summary_id
            WHERE a.user_id = ?
            ORDER BY a.updated_at DESC, a.id DESC
        """, (user_id,)).fetchall()

    annotations = []
    for row in rows:
        annotation = annotation_to_dict(row)
        labels = LabelStore.from_dicts(annotation["labels"])
        annotations.append({
            "id": row["id"],
            "summary_id": row["summary_id"],
            "summary": row["summary"],
            "level": row["level"],
            "model": row["model"],
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
            **annotation,
            "stale_labels": len(find_stale_labels(row["summary"], labels)),
            **render_payload(row["summary"], labels),
        })

    return {"annotations": annotations, "total": len(annotations)}
