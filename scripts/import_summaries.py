#!/usr/bin/env python3
"""
Import text/summary pairs into the summary labeler database.

Level mode (default) reads one row per abstract with one column per reading level:
    id,input_text,lay_people,pre_med_students,researchers,experts_in_field

Each non-empty level column becomes its own summary of the abstract.

Ranking mode (--ranking) reads one row per abstract with three candidate summaries:
    pmid,abstract,level,target,baseline,agentic

Each row becomes three summaries plus a ranking group tying them together.

Usage:
    python scripts/import_summaries.py data/summaries.csv
    python scripts/import_summaries.py data/groups.csv --ranking
    python scripts/import_summaries.py data/summaries.csv --db /path/to/labels.db
"""

import argparse
import csv
import os
import sqlite3
import sys
import uuid
from pathlib import Path


DB_PATH = Path(os.environ.get("SUMMARY_LABELER_DB", Path(__file__).parent.parent / "labels.db"))  # Must match app.py DB_PATH

# CSV column -> reading level
LEVEL_COLUMNS = {
    "lay_people": "LAYMAN",
    "pre_med_students": "PREMED",
    "researchers": "RESEARCHER",
    "experts_in_field": "EXPERT",
}

RANKING_COLUMNS = ("target", "baseline", "agentic")


def read_rows(csv_path: Path) -> list[dict]:
    """Read CSV rows with surrounding whitespace stripped, skipping empty lines."""
    with open(csv_path, newline="", encoding="utf-8") as f:
        rows = []
        for row in csv.DictReader(f):
            row = {key.strip(): (value or "").strip() for key, value in row.items() if key}
            if any(row.values()):
                rows.append(row)
        return rows


def open_database(db_path: Path):
    """Open the database, or None if the app has not created its tables yet."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row

    cursor = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name='text_summaries'"
    )
    if not cursor.fetchone():
        print("Error: Database not initialized. Run the app first to create tables.")
        conn.close()
        return None
    return conn


def level_summaries(rows: list[dict]) -> list[dict]:
    """One summary per non-empty level column of each row."""
    summaries = []
    for row in rows:
        for column, level in LEVEL_COLUMNS.items():
            if row.get(column):
                summaries.append({
                    "id": str(uuid.uuid4()),
                    "pmid": row.get("id") or None,
                    "text": row.get("input_text", ""),
                    "summary": row[column],
                    "level": level,
                    "model": None,
                })
    return summaries


def import_summaries(csv_path: Path, db_path: Path) -> int:
    """Import level summaries. Returns the number of summaries written."""
    rows = read_rows(csv_path)
    print(f"Found {len(rows)} records to import")

    summaries = level_summaries(rows)
    if not summaries:
        print("No summaries found to import.")
        return 0

    conn = open_database(db_path)
    if conn is None:
        return 0

    print(f"Importing {len(summaries)} summaries...")
    with conn:
        conn.executemany("""
            INSERT OR IGNORE INTO text_summaries (id, pmid, text, summary, level, model)
            VALUES (:id, :pmid, :text, :summary, :level, :model)
        """, summaries)
    conn.close()

    print(f"Successfully imported {len(summaries)} summaries.")
    return len(summaries)


def import_ranking_groups(csv_path: Path, db_path: Path) -> int:
    """Import ranking groups. Returns the number of groups written."""
    rows = read_rows(csv_path)
    print(f"Found {len(rows)} records to import")

    conn = open_database(db_path)
    if conn is None:
        return 0

    imported = 0
    skipped = 0
    with conn:
        for row in rows:
            level = row.get("level", "").upper()
            if any(not row.get(column) for column in RANKING_COLUMNS):
                print(f"  Skipping {row.get('pmid', '?')}: needs target, baseline and agentic summaries")
                skipped += 1
                continue

            summary_ids = {}
            for column in RANKING_COLUMNS:
                summary_ids[column] = str(uuid.uuid4())
                conn.execute("""
                    INSERT INTO text_summaries (id, pmid, text, summary, level, model)
                    VALUES (?, ?, ?, ?, ?, ?)
                """, (summary_ids[column], row.get("pmid"), row["abstract"], row[column], level, column))

            conn.execute("""
                INSERT INTO ranking_groups (id, pmid, abstract, level, target_id, baseline_id, agentic_id)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                str(uuid.uuid4()), row.get("pmid"), row["abstract"], level,
                summary_ids["target"], summary_ids["baseline"], summary_ids["agentic"],
            ))
            imported += 1
    conn.close()

    print(f"  Imported: {imported}")
    print(f"  Skipped: {skipped}")
    return imported


def main():
    parser = argparse.ArgumentParser(description="Import summaries into the labeler database")
    parser.add_argument("csv_path", type=Path, help="Path to the CSV file")
    parser.add_argument(
        "--ranking",
        action="store_true",
        help="Import ranking groups (pmid,abstract,level,target,baseline,agentic)",
    )
    parser.add_argument("--db", type=Path, default=DB_PATH, help=f"Database path (default: {DB_PATH})")
    args = parser.parse_args()

    if not args.csv_path.exists():
        print(f"File not found: {args.csv_path}")
        sys.exit(1)

    if args.ranking:
        import_ranking_groups(args.csv_path, args.db)
    else:
        import_summaries(args.csv_path, args.db)

    print("Import process completed")


if __name__ == "__main__":
    main()
