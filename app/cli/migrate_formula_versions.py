#!/usr/bin/env python3
"""
Migration script for formula version numbering.

Adds the columns newer code expects, renumbers duplicate (user_id, version)
pairs to the end of each user's history and adds the unique index that
version allocation relies on.

Run with: python -m app.cli.migrate_formula_versions [--dry-run]
"""
import argparse
import logging
import sys
from typing import Dict, List, Tuple

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

UNIQUE_INDEX = "uq_formulas_user_version"

# Columns added after the first release of the formulas table
NEW_COLUMNS = [
    ("name", "VARCHAR"),
    ("archived_at", "TIMESTAMP"),
    ("user_created", "BOOLEAN NOT NULL DEFAULT FALSE"),
]


def add_missing_columns(engine: Engine) -> List[str]:
    """Returns the names of the columns that were added."""
    existing = {c["name"] for c in inspect(engine).get_columns("formulas")}
    added = []
    with engine.begin() as conn:
        for col_name, col_type in NEW_COLUMNS:
            if col_name in existing:
                print(f"- Column already exists: {col_name}")
                continue
            conn.execute(text(f"ALTER TABLE formulas ADD COLUMN {col_name} {col_type}"))
            print(f"✓ Added column: {col_name}")
            added.append(col_name)
    return added


def find_duplicate_versions(engine: Engine) -> List[Tuple[str, int, int]]:
    """(user_id, version, count) for every version number used more than once."""
    with engine.connect() as conn:
        result = conn.execute(text("""
            SELECT user_id, version, COUNT(*) AS count
            FROM formulas
            GROUP BY user_id, version
            HAVING COUNT(*) > 1
            ORDER BY user_id, version
        """))
        return [(row[0], row[1], row[2]) for row in result.fetchall()]


def plan_renumbering(engine: Engine) -> Dict[str, int]:
    """
    Map formula id -> new version for every row that shares its version.

    The oldest row of each duplicate group keeps the number; the others
    move past the user's current maximum in creation order.
    """
    duplicates = find_duplicate_versions(engine)
    users = sorted({user_id for user_id, _, _ in duplicates})
    plan = {}

    with engine.connect() as conn:
        for user_id in users:
            rows = conn.execute(
                text("""
                    SELECT id, version, created_at
                    FROM formulas
                    WHERE user_id = :user_id
                    ORDER BY version, created_at, id
                """),
                {"user_id": user_id}
            ).fetchall()

            next_version = max(row[1] for row in rows) + 1
            seen = set()
            moved = []
            for formula_id, version, created_at in rows:
                if version in seen:
                    moved.append((created_at, formula_id))
                else:
                    seen.add(version)

            for _, formula_id in sorted(moved, key=lambda m: (m[0] is None, m[0], m[1])):
                plan[formula_id] = next_version
                next_version += 1

    return plan


def renumber_duplicates(engine: Engine) -> Dict[str, int]:
    plan = plan_renumbering(engine)
    if not plan:
        print("No duplicate versions found.")
        return plan

    with engine.begin() as conn:
        for formula_id, new_version in plan.items():
            conn.execute(
                text("UPDATE formulas SET version = :version WHERE id = :id"),
                {"version": new_version, "id": formula_id}
            )
            print(f"✓ Renumbered formula {formula_id} to v{new_version}")
    return plan


def add_unique_constraint(engine: Engine) -> bool:
    """Returns False when the index already existed."""
    existing = {ix["name"] for ix in inspect(engine).get_indexes("formulas")}
    existing |= {uc["name"] for uc in inspect(engine).get_unique_constraints("formulas")}
    if UNIQUE_INDEX in existing:
        print("Unique constraint already exists.")
        return False

    with engine.begin() as conn:
        conn.execute(text(
            f"CREATE UNIQUE INDEX {UNIQUE_INDEX} ON formulas (user_id, version)"
        ))
    print("✓ Unique constraint added")
    return True


def migrate(engine: Engine, dry_run: bool = False) -> Dict:
    duplicates = find_duplicate_versions(engine)
    for user_id, version, count in duplicates:
        print(f"Duplicate: user {user_id} has {count} formulas at v{version}")

    if dry_run:
        plan = plan_renumbering(engine)
        for formula_id, new_version in plan.items():
            print(f"Would renumber formula {formula_id} to v{new_version}")
        return {"duplicates": duplicates, "renumbered": plan, "columns_added": [], "constraint_added": False}

    columns_added = add_missing_columns(engine)
    plan = renumber_duplicates(engine)
    constraint_added = add_unique_constraint(engine)
    logger.info(
        f"Formula version migration: {len(columns_added)} columns added, "
        f"{len(plan)} rows renumbered"
    )
    return {
        "duplicates": duplicates,
        "renumbered": plan,
        "columns_added": columns_added,
        "constraint_added": constraint_added,
    }


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Repair formula version numbering")
    parser.add_argument("--dry-run", action="store_true", help="report without changing anything")
    args = parser.parse_args(argv)

    from app.db.database import engine

    print("Connecting to database...")
    try:
        migrate(engine, dry_run=args.dry_run)
    except Exception as e:
        print(f"✗ Migration failed: {e}")
        return 1

    print("\n✅ Migration complete!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
