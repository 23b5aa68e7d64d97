#!/usr/bin/env python3
"""
Mark every summary a user has annotated as completed.

Brings user_summaries back in sync with the annotations table, linking each
assignment to its annotation.

Usage:
    python scripts/mark_completed.py annotator@example.com
    python scripts/mark_completed.py            # prompts for the email
"""

import argparse
import os
import sqlite3
import sys
from pathlib import Path


DB_PATH = Path(os.environ.get("SUMMARY_LABELER_DB", Path(__file__).parent.parent / "labels.db"))  # Must match app.py DB_PATH


def mark_annotated_complete(conn, email: str) -> int:
    """Returns the number of assignments marked completed."""
    print(f"Searching for user with email: {email}...")
    user = conn.execute("SELECT id, username FROM users WHERE email = ?", (email,)).fetchone()
    if not user:
        print(f"Error: User with email {email} not found")
        return 0

    print(f"Found user: {user['username']} ({user['id']})")
    annotations = conn.execute(
        "SELECT id, summary_id FROM annotations WHERE user_id = ?", (user["id"],)
    ).fetchall()
    print(f"Found {len(annotations)} annotations by user")

    if not annotations:
        print("No annotations found. Nothing to update.")
        return 0

    updated = 0
    for annotation in annotations:
        cursor = conn.execute("""
            UPDATE user_summaries SET completed = 1, annotation_id = ?
            WHERE user_id = ? AND summary_id = ? AND completed = 0
        """, (annotation["id"], user["id"], annotation["summary_id"]))
        updated += cursor.rowcount
    conn.commit()

    if updated:
        print(f"Successfully marked {updated} summaries as completed")
    else:
        print("All annotated summaries are already marked as complete.")
    return updated


def main():
    parser = argparse.ArgumentParser(description="Mark annotated summaries as completed")
    parser.add_argument("email", nargs="?", help="Email of the annotator (prompted if omitted)")
    parser.add_argument("--db", type=Path, default=DB_PATH, help=f"Database path (default: {DB_PATH})")
    args = parser.parse_args()

    email = args.email or input("Enter user email: ").strip()

    if not args.db.exists():
        print(f"Database not found: {args.db}")
        sys.exit(1)

    conn = sqlite3.connect(args.db)
    conn.row_factory = sqlite3.Row
    try:
        mark_annotated_complete(conn, email)
    finally:
        conn.close()

    print("Process completed")


if __name__ == "__main__":
    main()
