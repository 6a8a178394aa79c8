"""SQLite database holding the users and comics tables."""

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        email TEXT NOT NULL UNIQUE,
        password_hash TEXT NOT NULL,
        name TEXT NOT NULL,
        phone TEXT,
        created_at INTEGER NOT NULL,
        updated_at INTEGER NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS comics (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        title TEXT NOT NULL,
        category TEXT NOT NULL,
        source_type TEXT NOT NULL CHECK (source_type IN ('Predefined', 'AI')),
        character_names TEXT NOT NULL,
        original_image TEXT NOT NULL,
        panels TEXT NOT NULL,
        created_at INTEGER NOT NULL,
        updated_at INTEGER NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_comics_user_id ON comics(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_comics_created_at ON comics(created_at DESC)",
)


class Database:
    """Thin wrapper around a SQLite file.

    Every operation opens its own connection, so a single ``Database`` can be
    shared across concurrent requests. Foreign keys are switched on for each
    connection because SQLite leaves them off by default, and the
    ``comics.user_id`` cascade depends on them.
    """

    def __init__(self, db_path: Path):
        """Initialize the database and create the schema if needed.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_db()
        logger.info(f"Initialized database at {self.db_path}")

    def _initialize_db(self) -> None:
        with self.connect() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection that commits on success and always closes.

        Rows are returned as :class:`sqlite3.Row` so columns can be read by
        name.
        """
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
