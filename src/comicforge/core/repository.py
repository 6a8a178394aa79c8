"""Repositories over the ``users`` and ``comics`` tables.

Every query is parameterized, and every comic query is filtered on the
owning user's id. A comic that exists but belongs to someone else is
indistinguishable from one that does not exist.

Character names and panels are stored as JSON text. Reading a row whose JSON
is corrupt logs the problem and yields an empty value instead of failing the
whole request.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from dataclasses import dataclass, field
from typing import Any

from comicforge.core.database import Database

logger = logging.getLogger(__name__)

# Mutable comic fields and the column each one is stored in.  Only names in
# this mapping ever reach the SET clause of an UPDATE.
_COMIC_COLUMNS = {
    "title": "title",
    "category": "category",
    "source_type": "source_type",
    "character_names": "character_names",
    "original_image": "original_image",
    "panels": "panels",
}
_JSON_FIELDS = {"character_names", "panels"}


def _now_ms() -> int:
    return int(time.time() * 1000)


def _load_json(raw: str | None, default: Any, column: str, comic_id: int) -> Any:
    if raw is None:
        return default
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as e:
        logger.error(f"Error parsing {column} for comic {comic_id}: {e}")
        return default


@dataclass
class UserRecord:
    """A row of the ``users`` table."""

    id: int
    email: str
    password_hash: str
    name: str
    phone: str | None = None
    created_at: int = 0


@dataclass
class ComicSummary:
    """Listing view of a comic."""

    id: int
    title: str
    category: str
    created_at: int


@dataclass
class ComicRecord:
    """A fully decoded row of the ``comics`` table."""

    id: int
    user_id: int
    title: str
    category: str
    source_type: str
    character_names: list[str] = field(default_factory=list)
    original_image: str = ""
    panels: dict[str, Any] = field(default_factory=dict)
    created_at: int = 0
    updated_at: int = 0

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> ComicRecord:
        comic_id = row["id"]
        return cls(
            id=comic_id,
            user_id=row["user_id"],
            title=row["title"],
            category=row["category"],
            source_type=row["source_type"],
            character_names=_load_json(row["character_names"], [], "character_names", comic_id),
            original_image=row["original_image"],
            panels=_load_json(row["panels"], {}, "panels", comic_id),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


class UserRepository:
    """Queries against the ``users`` table."""

    def __init__(self, db: Database):
        self.db = db

    def create(self, email: str, password_hash: str, name: str, phone: str | None = None) -> UserRecord:
        """Insert a new user.

        Raises:
            sqlite3.IntegrityError: If the email is already registered.
        """
        now = _now_ms()
        with self.db.connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO users (email, password_hash, name, phone, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (email, password_hash, name, phone, now, now),
            )
            user_id = cursor.lastrowid

        logger.info(f"Created user {user_id}")
        return UserRecord(
            id=user_id,
            email=email,
            password_hash=password_hash,
            name=name,
            phone=phone,
            created_at=now,
        )

    def get_by_email(self, email: str) -> UserRecord | None:
        with self.db.connect() as conn:
            row = conn.execute(
                "SELECT id, email, password_hash, name, phone, created_at FROM users WHERE email = ?",
                (email,),
            ).fetchone()
        return UserRecord(**dict(row)) if row else None

    def get_by_id(self, user_id: int) -> UserRecord | None:
        with self.db.connect() as conn:
            row = conn.execute(
                "SELECT id, email, password_hash, name, phone, created_at FROM users WHERE id = ?",
                (user_id,),
            ).fetchone()
        return UserRecord(**dict(row)) if row else None

    def exists(self, email: str) -> bool:
        with self.db.connect() as conn:
            row = conn.execute("SELECT 1 FROM users WHERE email = ?", (email,)).fetchone()
        return row is not None

    def delete(self, user_id: int) -> bool:
        """Delete a user and, through the foreign key cascade, their comics."""
        with self.db.connect() as conn:
            deleted = conn.execute("DELETE FROM users WHERE id = ?", (user_id,)).rowcount > 0
        return deleted


class ComicRepository:
    """Owner-scoped queries against the ``comics`` table."""

    def __init__(self, db: Database):
        self.db = db

    def list_for_user(self, user_id: int) -> list[ComicSummary]:
        """Return the user's comics, newest first."""
        with self.db.connect() as conn:
            rows = conn.execute(
                """
                SELECT id, title, category, created_at
                FROM comics
                WHERE user_id = ?
                ORDER BY created_at DESC, id DESC
                """,
                (user_id,),
            ).fetchall()
        return [ComicSummary(**dict(row)) for row in rows]

    def get(self, comic_id: int, user_id: int) -> ComicRecord | None:
        with self.db.connect() as conn:
            row = conn.execute(
                "SELECT * FROM comics WHERE id = ? AND user_id = ?",
                (comic_id, user_id),
            ).fetchone()
        return ComicRecord.from_row(row) if row else None

    def create(
        self,
        user_id: int,
        *,
        title: str,
        category: str,
        source_type: str,
        character_names: list[str],
        original_image: str,
        panels: dict[str, Any],
    ) -> ComicRecord:
        now = _now_ms()
        with self.db.connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO comics (
                    user_id, title, category, source_type, character_names,
                    original_image, panels, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    title,
                    category,
                    source_type,
                    json.dumps(character_names),
                    original_image,
                    json.dumps(panels),
                    now,
                    now,
                ),
            )
            comic_id = cursor.lastrowid

        logger.info(f"Comic created: id={comic_id} user={user_id}")
        return ComicRecord(
            id=comic_id,
            user_id=user_id,
            title=title,
            category=category,
            source_type=source_type,
            character_names=list(character_names),
            original_image=original_image,
            panels=panels,
            created_at=now,
            updated_at=now,
        )

    def update(self, comic_id: int, user_id: int, changes: dict[str, Any]) -> ComicRecord | None:
        """Rewrite only the supplied fields of an owned comic.

        Args:
            comic_id: Comic to update.
            user_id: Caller; the comic must belong to this user.
            changes: Mapping of field name to new value.  Keys must be names
                from the mutable field set.

        Returns:
            The updated record, or ``None`` if no owned comic matched.

        Raises:
            ValueError: If ``changes`` is empty or names an unknown field.
        """
        if not changes:
            raise ValueError("No fields to update")

        unknown = set(changes) - set(_COMIC_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown comic fields: {', '.join(sorted(unknown))}")

        assignments = []
        values: list[Any] = []
        for name, value in changes.items():
            assignments.append(f"{_COMIC_COLUMNS[name]} = ?")
            values.append(json.dumps(value) if name in _JSON_FIELDS else value)

        assignments.append("updated_at = ?")
        values.extend([_now_ms(), comic_id, user_id])

        with self.db.connect() as conn:
            cursor = conn.execute(
                f"UPDATE comics SET {', '.join(assignments)} WHERE id = ? AND user_id = ?",
                values,
            )
            if cursor.rowcount == 0:
                return None
            row = conn.execute(
                "SELECT * FROM comics WHERE id = ? AND user_id = ?",
                (comic_id, user_id),
            ).fetchone()

        return ComicRecord.from_row(row)

    def delete(self, comic_id: int, user_id: int) -> bool:
        """Delete an owned comic.  Returns ``False`` when nothing matched."""
        with self.db.connect() as conn:
            cursor = conn.execute(
                "DELETE FROM comics WHERE id = ? AND user_id = ?",
                (comic_id, user_id),
            )
            deleted = cursor.rowcount > 0
        if deleted:
            logger.info(f"Comic deleted: id={comic_id} user={user_id}")
        return deleted
