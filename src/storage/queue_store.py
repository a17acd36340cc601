"""
SQLite-based persistent queue store.

Provides atomic, durable storage for pending changes, the remote file
cache and workspace metadata. Every write is committed before the
method returns.
"""

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional, Sequence

from .models import CachedFile, PendingChange

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """Raised when the local durable store cannot be read or written."""
    pass


class QueueStore:
    """
    SQLite-based persistent store for one workspace.

    Features:
    - Whole-queue snapshot writes in a single transaction
    - Connection per operation via context manager
    - Automatic schema migration
    - sqlite3 errors surface as PersistenceError

    Usage:
        store = QueueStore(Path("data/workspace.db"))

        changes = store.load_queue()
        store.save_queue(changes + [new_change])
    """

    SCHEMA_VERSION = 1

    CREATE_QUEUE_TABLE_SQL = """
        CREATE TABLE IF NOT EXISTS pending_changes (
            position INTEGER NOT NULL,
            id TEXT PRIMARY KEY,
            path TEXT NOT NULL UNIQUE,
            action TEXT NOT NULL,
            payload TEXT,
            timestamp TEXT NOT NULL,
            base_revision TEXT
        )
    """

    CREATE_CACHE_TABLE_SQL = """
        CREATE TABLE IF NOT EXISTS file_cache (
            path TEXT PRIMARY KEY,
            content TEXT NOT NULL,
            revision TEXT NOT NULL,
            cached_at TEXT
        )
    """

    CREATE_WORKSPACE_TABLE_SQL = """
        CREATE TABLE IF NOT EXISTS workspace_meta (
            key TEXT PRIMARY KEY,
            value TEXT
        )
    """

    CREATE_INDEXES_SQL = [
        "CREATE INDEX IF NOT EXISTS idx_pending_position ON pending_changes(position)",
    ]

    CREATE_METADATA_TABLE_SQL = """
        CREATE TABLE IF NOT EXISTS _metadata (
            key TEXT PRIMARY KEY,
            value TEXT
        )
    """

    def __init__(self, database_path: Path):
        """
        Initialize queue store.

        Args:
            database_path: Path to SQLite database file

        Raises:
            PersistenceError: If the database cannot be created
        """
        self.database_path = Path(database_path)

        # Ensure parent directory exists
        self.database_path.parent.mkdir(parents=True, exist_ok=True)

        self._initialize_database()

        logger.info(f"Queue store initialized at {self.database_path}")

    def _initialize_database(self) -> None:
        """Create tables and run migrations."""
        with self._get_connection() as conn:
            cursor = conn.cursor()

            cursor.execute(self.CREATE_METADATA_TABLE_SQL)

            cursor.execute("SELECT value FROM _metadata WHERE key = 'schema_version'")
            row = cursor.fetchone()
            current_version = int(row[0]) if row else 0

            if current_version < self.SCHEMA_VERSION:
                logger.info(f"Upgrading schema from v{current_version} to v{self.SCHEMA_VERSION}")
                cursor.execute(
                    "INSERT OR REPLACE INTO _metadata (key, value) VALUES (?, ?)",
                    ("schema_version", str(self.SCHEMA_VERSION)),
                )

            cursor.execute(self.CREATE_QUEUE_TABLE_SQL)
            cursor.execute(self.CREATE_CACHE_TABLE_SQL)
            cursor.execute(self.CREATE_WORKSPACE_TABLE_SQL)
            for index_sql in self.CREATE_INDEXES_SQL:
                cursor.execute(index_sql)

            conn.commit()

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """
        Get a database connection with proper settings.

        Yields:
            SQLite connection with WAL mode enabled

        Raises:
            PersistenceError: On any sqlite3 failure inside the block
        """
        try:
            conn = sqlite3.connect(
                self.database_path,
                timeout=30.0,
                isolation_level="DEFERRED",
            )
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open {self.database_path}: {e}") from e

        try:
            conn.execute("PRAGMA journal_mode=WAL")
            yield conn
        except sqlite3.Error as e:
            conn.rollback()
            logger.error(f"Queue store operation failed: {e}")
            raise PersistenceError(f"Queue store operation failed: {e}") from e
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Pending changes
    # ------------------------------------------------------------------

    def load_queue(self) -> list[PendingChange]:
        """
        Load all pending changes in insertion order.

        Returns:
            List of PendingChange records
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT
                    id,
                    path,
                    action,
                    payload,
                    timestamp,
                    base_revision
                FROM pending_changes
                ORDER BY position
                """
            )
            return [PendingChange.from_row(row) for row in cursor.fetchall()]

    def save_queue(self, changes: Sequence[PendingChange]) -> None:
        """
        Replace the stored queue with `changes`.

        The whole snapshot is written in one transaction: either every
        row lands or the previous queue is kept.

        Args:
            changes: Queue contents in insertion order
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM pending_changes")
            cursor.executemany(
                """
                INSERT INTO pending_changes (
                    position,
                    id,
                    path,
                    action,
                    payload,
                    timestamp,
                    base_revision
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        position,
                        change.id,
                        change.path,
                        change.action.value,
                        change.payload,
                        change.timestamp.isoformat(),
                        change.base_revision,
                    )
                    for position, change in enumerate(changes)
                ],
            )
            conn.commit()

        logger.debug(f"Saved {len(changes)} pending changes")

    def count(self) -> int:
        """Count stored pending changes."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) FROM pending_changes")
            return cursor.fetchone()[0]

    # ------------------------------------------------------------------
    # File cache
    # ------------------------------------------------------------------

    def get_cached(self, path: str) -> Optional[CachedFile]:
        """
        Get the last known remote content of a path.

        Args:
            path: Repository-relative path

        Returns:
            CachedFile if found, None otherwise
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT path, content, revision, cached_at
                FROM file_cache
                WHERE path = ?
                """,
                (path,),
            )

            row = cursor.fetchone()
            if row:
                return CachedFile.from_row(row)
            return None

    def put_cached(self, path: str, content: str, revision: str) -> CachedFile:
        """
        Record the remote content of a path.

        Uses INSERT OR REPLACE for idempotent upsert.
        """
        cached = CachedFile(
            path=path,
            content=content,
            revision=revision,
            cached_at=datetime.utcnow(),
        )

        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO file_cache (path, content, revision, cached_at)
                VALUES (?, ?, ?, ?)
                """,
                (cached.path, cached.content, cached.revision, cached.cached_at.isoformat()),
            )
            conn.commit()

        logger.debug(f"Cached {path} at revision {revision}")
        return cached

    def delete_cached(self, path: str) -> bool:
        """
        Forget the cached content of a path.

        Returns:
            True if a record was removed
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM file_cache WHERE path = ?", (path,))
            conn.commit()
            return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Workspace metadata
    # ------------------------------------------------------------------

    def get_last_synced_at(self) -> Optional[datetime]:
        """Get the time of the last successful sync pass."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT value FROM workspace_meta WHERE key = 'last_synced_at'")
            row = cursor.fetchone()
            if row and row[0]:
                return datetime.fromisoformat(row[0])
            return None

    def set_last_synced_at(self, when: datetime) -> None:
        """Record the time of a successful sync pass."""
        with self._get_connection() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO workspace_meta (key, value) VALUES (?, ?)",
                ("last_synced_at", when.isoformat()),
            )
            conn.commit()

    def clear(self) -> None:
        """
        Clear all stored data.

        WARNING: This is destructive. Use only for testing or reset.
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM pending_changes")
            cursor.execute("DELETE FROM file_cache")
            cursor.execute("DELETE FROM workspace_meta")
            conn.commit()

        logger.warning("All workspace state cleared")
