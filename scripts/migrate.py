#!/usr/bin/env python3
"""
Apply snapshot store migrations to the configured database.

Usage: python scripts/migrate.py [db_path]
"""

import sys
from pathlib import Path

from chatkeeper.persistence.migrate import MIGRATIONS_DIR, apply_migrations


def main() -> int:
    """
    Main entry point for migration script.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    project_root = Path(__file__).parent.parent
    db_path = Path(sys.argv[1]) if len(sys.argv) > 1 else project_root / "state" / "snapshots.db"

    print(f"Database: {db_path}")
    print(f"Migrations: {MIGRATIONS_DIR}\n")

    try:
        summary = apply_migrations(db_path, MIGRATIONS_DIR)
    except Exception as e:
        print(f"\n✗ Migration failed: {e}", file=sys.stderr)
        return 1

    print("Migration Summary:")
    print(f"  Applied: {summary['applied']}")
    print(f"  Skipped: {summary['skipped']}")
    print(f"  Total: {summary['total']}")
    print("\n✓ Migrations completed successfully")
    return 0


if __name__ == "__main__":
    sys.exit(main())
