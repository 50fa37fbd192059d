"""
Gantt Database Layer

Provides the SQLite connection (WAL mode) and schema for the task tree and its
dependency links, plus the scoped transaction used by the stores and the
hierarchy mutation engine.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Optional

from .errors import StoreError

logger = logging.getLogger(__name__)


class GanttDatabase:
    """
    SQLite database holding the ``tasks`` and ``links`` tables.

    Features:
    - WAL mode for concurrent readers alongside a writer
    - One connection guarded by a re-entrant lock
    - ``transaction()`` scopes that nest: inner scopes join the outermost one,
      which commits on success and rolls back on any exception
    - Foreign keys on, so deleting a task removes its incident links
    """

    def __init__(self, db_path: str, reset: bool = False):
        """
        Initialize GanttDatabase with SQLite WAL mode configuration.

        Args:
            db_path: Path to SQLite database file
            reset: Drop and recreate all tables on startup
        """
        self.db_path = Path(db_path)
        self._connection_lock = threading.RLock()
        self._connection: Optional[sqlite3.Connection] = None
        self._tx_depth = 0

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_database(drop_existing=reset)

    def _initialize_database(self, drop_existing: bool = False) -> None:
        """Open the connection, configure PRAGMAs and create the schema."""
        try:
            # Autocommit mode; transaction boundaries are issued explicitly
            self._connection = sqlite3.connect(
                str(self.db_path),
                isolation_level=None,
                check_same_thread=False
            )
            self._connection.row_factory = sqlite3.Row

            cursor = self._connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.execute("PRAGMA foreign_keys=ON")

            if drop_existing:
                self._drop_existing_tables()

            self._create_schema()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to initialize database at {self.db_path}: {e}") from e

        logger.info(f"GanttDatabase ready at {self.db_path}")

    def _create_schema(self) -> None:
        """Create tables and indexes if they do not exist."""
        cursor = self._connection.cursor()

        # AUTOINCREMENT keeps ids monotonic, so 0 is never handed out and the
        # root sentinel cannot collide with a stored row
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS tasks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                text TEXT NOT NULL DEFAULT '',
                start_date TEXT,
                duration INTEGER NOT NULL DEFAULT 0 CHECK (duration >= 0),
                progress NUMERIC NOT NULL DEFAULT 0 CHECK (progress >= 0),
                parent INTEGER NOT NULL DEFAULT 0,
                sortorder INTEGER NOT NULL DEFAULT 0,
                type TEXT NOT NULL DEFAULT 'task' CHECK (type IN ('task', 'project', 'milestone')),
                open INTEGER NOT NULL DEFAULT 1
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS links (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                source INTEGER NOT NULL,
                target INTEGER NOT NULL,
                type TEXT NOT NULL DEFAULT 'fs' CHECK (type IN ('fs', 'ss', 'ff', 'sf')),
                FOREIGN KEY (source) REFERENCES tasks (id) ON DELETE CASCADE,
                FOREIGN KEY (target) REFERENCES tasks (id) ON DELETE CASCADE
            )
        """)

        # Sibling lists are always read by (parent, sortorder)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_tasks_parent_order
            ON tasks (parent, sortorder, id)
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_links_source
            ON links (source)
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_links_target
            ON links (target)
        """)

    def _drop_existing_tables(self) -> None:
        """Drop all tables for clean slate initialization."""
        cursor = self._connection.cursor()

        cursor.execute("DROP INDEX IF EXISTS idx_links_target")
        cursor.execute("DROP INDEX IF EXISTS idx_links_source")
        cursor.execute("DROP INDEX IF EXISTS idx_tasks_parent_order")

        # Links reference tasks, so they go first
        cursor.execute("DROP TABLE IF EXISTS links")
        cursor.execute("DROP TABLE IF EXISTS tasks")
        logger.info("Dropped existing Gantt tables")

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        """
        Context manager for explicit transaction control.

        The outermost scope issues ``BEGIN IMMEDIATE`` so concurrent writers are
        serialized by SQLite; nested scopes reuse it. Any exception rolls the whole
        transaction back. ``sqlite3.Error`` is re-raised as StoreError, domain
        errors propagate unchanged.
        """
        with self._connection_lock:
            cursor = self._connection.cursor()

            if self._tx_depth > 0:
                self._tx_depth += 1
                try:
                    yield cursor
                finally:
                    self._tx_depth -= 1
                return

            try:
                cursor.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StoreError(f"Failed to begin transaction: {e}") from e

            self._tx_depth = 1
            try:
                yield cursor
                cursor.execute("COMMIT")
            except sqlite3.Error as e:
                self._rollback(cursor)
                logger.error(f"Transaction rolled back after database error: {e}")
                raise StoreError(f"Database error: {e}") from e
            except BaseException:
                self._rollback(cursor)
                raise
            finally:
                self._tx_depth = 0

    @staticmethod
    def _rollback(cursor: sqlite3.Cursor) -> None:
        try:
            cursor.execute("ROLLBACK")
        except sqlite3.Error as e:
            # No transaction is active when COMMIT itself already ended it
            logger.warning(f"Rollback failed: {e}")

    @contextmanager
    def read(self) -> Iterator[sqlite3.Cursor]:
        """Cursor for read-only queries; inside a transaction it sees uncommitted writes."""
        with self._connection_lock:
            try:
                yield self._connection.cursor()
            except sqlite3.Error as e:
                raise StoreError(f"Database error: {e}") from e

    @property
    def in_transaction(self) -> bool:
        return self._tx_depth > 0

    def get_counts(self) -> Dict[str, int]:
        """Row counts for health and metrics reporting."""
        with self.read() as cursor:
            cursor.execute("""
                SELECT
                    (SELECT COUNT(*) FROM tasks) AS task_count,
                    (SELECT COUNT(*) FROM links) AS link_count
            """)
            row = cursor.fetchone()
            return {"tasks": row["task_count"], "links": row["link_count"]}

    def ping(self) -> bool:
        """Check database connectivity."""
        with self.read() as cursor:
            cursor.execute("SELECT 1")
            return cursor.fetchone()[0] == 1

    def reset(self) -> None:
        """Drop and recreate all tables."""
        with self._connection_lock:
            try:
                self._drop_existing_tables()
                self._create_schema()
            except sqlite3.Error as e:
                raise StoreError(f"Failed to reset database: {e}") from e

    def close(self):
        """Close database connection."""
        with self._connection_lock:
            if self._connection:
                self._connection.close()
                self._connection = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
