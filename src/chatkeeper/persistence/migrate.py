"""
Database migration runner with SHA-256 checksum verification.

Applies pending migrations in lexical order, verifies checksums to detect
tampering, and tracks applied migrations in schema_migrations table.
"""

import hashlib
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import List, Tuple

import structlog

logger = structlog.get_logger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"


def calculate_checksum(file_path: Path) -> str:
    """
    Calculate SHA-256 checksum of migration file.

    Args:
        file_path: Path to migration file

    Returns:
        Hexadecimal SHA-256 checksum
    """
    sha256 = hashlib.sha256()
    with open(file_path, 'rb') as f:
        sha256.update(f.read())
    return sha256.hexdigest()


def discover_migrations(migrations_dir: Path) -> List[Tuple[str, Path]]:
    """Discover migrations in lexical order."""
    return [(f.name, f) for f in sorted(migrations_dir.glob("*.sql"))]


def apply_migrations(db_path: Path, migrations_dir: Path = MIGRATIONS_DIR) -> dict[str, int]:
    """
    Apply pending migrations with checksum verification.

    Args:
        db_path: Path to SQLite database file
        migrations_dir: Directory containing migration files

    Returns:
        {"applied": int, "skipped": int, "total": int}

    Raises:
        RuntimeError: If migration checksum verification fails (tamper detection)
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(db_path))
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_migrations (
                migration_name TEXT PRIMARY KEY,
                checksum TEXT NOT NULL,
                applied_at INTEGER NOT NULL
            ) STRICT
        """)
        conn.commit()

        applied = {
            row[0]: row[1]
            for row in conn.execute(
                "SELECT migration_name, checksum FROM schema_migrations"
            )
        }

        migrations = discover_migrations(migrations_dir)
        applied_count = 0
        skipped_count = 0

        for name, path in migrations:
            checksum = calculate_checksum(path)
            if name in applied:
                if checksum != applied[name]:
                    raise RuntimeError(
                        f"Migration {name} has been tampered with!\n"
                        f"Expected checksum: {applied[name]}\n"
                        f"Got checksum: {checksum}\n"
                        f"This indicates the migration file was modified after being applied."
                    )
                skipped_count += 1
                continue

            with conn:  # Transaction
                conn.executescript(path.read_text())
                conn.execute(
                    "INSERT INTO schema_migrations (migration_name, checksum, applied_at) VALUES (?, ?, ?)",
                    (name, checksum, int(datetime.now().timestamp()))
                )
            logger.info("migration_applied", migration=name, db_path=str(db_path))
            applied_count += 1
    finally:
        conn.close()

    summary = {
        "applied": applied_count,
        "skipped": skipped_count,
        "total": len(migrations),
    }
    logger.info("migrations_complete", db_path=str(db_path), **summary)
    return summary
