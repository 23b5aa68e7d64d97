#!/usr/bin/env python3
"""
Assign summaries to an annotator.

Summary mode (default) assigns every imported summary to the user. Ranking
mode (--ranking LEVEL) assigns every ranking group of that reading level the
user does not already have.

Users are looked up by email.

Usage:
    python scripts/assign_summaries.py annotator@example.com
    python scripts/assign_summaries.py annotator@example.com --ranking LAYMAN
"""

import argparse
import os
import sqlite3
import sys
from pathlib import Path


DB_PATH = Path(os.environ.get("SUMMARY_LABELER_DB", Path(__file__).parent.parent / "labels.db"))  # Must match app.py DB_PATH
LEVELS = ("LAYMAN", "PREMED", "RESEARCHER", "EXPERT")


def find_user(conn, email: str):
    user = conn.execute(
        "SELECT id, username, display_name FROM users WHERE email = ?", (email,)
    ).fetchone()
    if not user:
        print(f"No user found with email: {email}")
        return None
    print(f"Found user: {user['display_name'] or user['username']} ({user['id']})")
    return user


def assign_summaries(conn, email: str) -> int:
    """Assign all summaries to a user. Returns the number of new assignments."""
    user = find_user(conn, email)
    if user is None:
        return 0

    summaries = conn.execute("SELECT id FROM text_summaries ORDER BY created_at, id").fetchall()
    print(f"Found {len(summaries)} summaries to assign")

    assigned = 0
    for summary in summaries:
        cursor = conn.execute(
            "INSERT OR IGNORE INTO user_summaries (user_id, summary_id) VALUES (?, ?)",
            (user["id"], summary["id"])
        )
        if cursor.rowcount:
            assigned += 1
        else:
            print(f"Summary {summary['id']} already assigned to user")
    conn.commit()

    print(f"Successfully assigned {assigned} new summaries to user")
    return assigned


def assign_ranking_groups(conn, email: str, level: str) -> int:
    """Assign unassigned ranking groups of a level. Returns the number of new tasks."""
    user = find_user(conn, email)
    if user is None:
        return 0

    print(f"Level: {level}")
    groups = conn.execute("""
        SELECT g.id, g.pmid FROM ranking_groups g
        WHERE g.level = ? AND g.id NOT IN (
            SELECT ranking_group_id FROM user_ranking_tasks WHERE user_id = ?
        )
        ORDER BY g.abstract, g.id
    """, (level, user["id"])).fetchall()

    if not groups:
        print(f"No available ranking groups with level '{level}' for user {email}.")
        return 0

    print(f"Found {len(groups)} available ranking groups to assign")
    for group in groups:
        conn.execute(
            "INSERT INTO user_ranking_tasks (user_id, ranking_group_id) VALUES (?, ?)",
            (user["id"], group["id"])
        )
        print(f"  Assigned group {group['id']} (PMID: {group['pmid']})")
    conn.commit()

    print(f"Assignment completed: {len(groups)} ranking tasks assigned")
    return len(groups)


def main():
    parser = argparse.ArgumentParser(description="Assign summaries to an annotator")
    parser.add_argument("email", help="Email of the annotator")
    parser.add_argument(
        "--ranking",
        metavar="LEVEL",
        type=str.upper,
        choices=LEVELS,
        help=f"Assign ranking groups of this level instead ({', '.join(LEVELS)})",
    )
    parser.add_argument("--db", type=Path, default=DB_PATH, help=f"Database path (default: {DB_PATH})")
    args = parser.parse_args()

    if not args.db.exists():
        print(f"Database not found: {args.db}. Run the app first to create tables.")
        sys.exit(1)

    conn = sqlite3.connect(args.db)
    conn.row_factory = sqlite3.Row
    try:
        if args.ranking:
            assign_ranking_groups(conn, args.email, args.ranking)
        else:
            assign_summaries(conn, args.email)
    finally:
        conn.close()

    print("Done!")


if __name__ == "__main__":
    main()
