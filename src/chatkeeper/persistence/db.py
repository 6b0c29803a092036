"""Database connection management with WAL mode and pragma configuration."""

import aiosqlite
from pathlib import Path
from typing import Optional
import structlog

logger = structlog.get_logger(__name__)


class DatabaseManager:
    """Manages the snapshot store's SQLite connection with WAL mode and optimal pragmas.

    One manager is owned per startup attempt; closing it drops the cached
    connection so the next attempt reconnects from scratch.
    """

    def __init__(self, db_path: str | Path):
        """
        Initialize database manager.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self._connection: Optional[aiosqlite.Connection] = None

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    async def get_connection(self) -> aiosqlite.Connection:
        """
        Get database connection with WAL mode and optimized pragmas.

        Returns:
            SQLite connection with WAL mode enabled

        Note:
            Connection is cached after first creation.
            All pragmas are set on connection creation.
        """
        if self._connection is not None:
            return self._connection

        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = await aiosqlite.connect(str(self.db_path))

        try:
            await conn.execute("PRAGMA journal_mode=WAL")
            await conn.execute("PRAGMA synchronous=NORMAL")
            await conn.execute("PRAGMA busy_timeout=5000")
            await conn.execute("PRAGMA temp_store=MEMORY")

            cursor = await conn.execute("PRAGMA journal_mode")
            mode = await cursor.fetchone()
            await cursor.close()

            if mode[0].lower() != 'wal':
                raise RuntimeError(
                    f"Failed to enable WAL mode. Expected 'wal', got '{mode[0]}'. "
                    "WAL mode is required for crash-safe snapshot writes."
                )
        except Exception:
            # Clean up connection on any pragma configuration failure
            await conn.close()
            raise

        logger.info(
            "database_connection_established",
            db_path=str(self.db_path),
            journal_mode=mode[0]
        )

        self._connection = conn
        return conn

    async def close(self) -> None:
        """Close database connection."""
        if self._connection is not None:
            conn, self._connection = self._connection, None
            await conn.close()
            logger.info("database_connection_closed", db_path=str(self.db_path))
