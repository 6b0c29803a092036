# Persistence Layer - SQLite snapshot store connection and migrations

from .db import DatabaseManager
from .migrate import MIGRATIONS_DIR, apply_migrations

__all__ = [
    "DatabaseManager",
    "MIGRATIONS_DIR",
    "apply_migrations",
]
