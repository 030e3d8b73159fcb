"""SQLite persistence for the local note replica."""

import logging
import sqlite3
from pathlib import Path

import aiosqlite

from notesync.core.errors import StorageError
from notesync.core.models import Note

logger = logging.getLogger(__name__)

_STORAGE_ERRORS = (aiosqlite.Error, sqlite3.Error, OSError)


class NotesDB:
    """
    Manages the SQLite database holding the local note replica.

    Stores one row per note id (mutations replace, never append) plus a
    small key/value table for sync metadata such as the last sync time and
    the serialized pending-change queue.
    """

    def __init__(self, db_path: Path):
        """
        Initialize database handle.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    async def initialize(self) -> None:
        """
        Initialize database schema if it doesn't exist.

        Raises:
            StorageError: If the database cannot be created
        """
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    """
                    CREATE TABLE IF NOT EXISTS notes (
                        id TEXT PRIMARY KEY,
                        title TEXT NOT NULL DEFAULT '',
                        body TEXT NOT NULL DEFAULT '',
                        updated_at TEXT NOT NULL,
                        deleted INTEGER NOT NULL DEFAULT 0,
                        is_dirty INTEGER NOT NULL DEFAULT 0
                    )
                    """
                )

                await db.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_notes_updated_at
                    ON notes(updated_at)
                    """
                )

                await db.execute(
                    """
                    CREATE TABLE IF NOT EXISTS metadata (
                        key TEXT PRIMARY KEY,
                        value TEXT
                    )
                    """
                )

                await db.commit()
        except _STORAGE_ERRORS as e:
            raise StorageError(f"Failed to initialize database at {self.db_path}: {e}") from e

        logger.debug(f"Database initialized at {self.db_path}")

    @staticmethod
    def _row_to_note(row: aiosqlite.Row) -> Note:
        return Note(
            id=row["id"],
            title=row["title"],
            body=row["body"],
            updated_at=row["updated_at"],
            deleted=bool(row["deleted"]),
            is_dirty=bool(row["is_dirty"]),
        )

    @staticmethod
    def _note_params(note: Note) -> tuple:
        return (note.id, note.title, note.body, note.updated_at, int(note.deleted), int(note.is_dirty))

    async def get_all(self) -> list[Note]:
        """
        Get every note, tombstones included.

        Returns:
            List of notes, one per id
        """
        try:
            async with aiosqlite.connect(self.db_path) as db:
                db.row_factory = aiosqlite.Row
                async with db.execute("SELECT * FROM notes") as cursor:
                    rows = await cursor.fetchall()
        except _STORAGE_ERRORS as e:
            raise StorageError(f"Failed to read notes: {e}") from e

        unique: dict[str, Note] = {}
        for row in rows:
            note = self._row_to_note(row)
            existing = unique.get(note.id)
            if existing is None or existing.timestamp < note.timestamp:
                unique[note.id] = note
        return list(unique.values())

    async def put(self, note: Note) -> None:
        """
        Insert or replace a note.

        Args:
            note: Note to store
        """
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    """
                    INSERT INTO notes (id, title, body, updated_at, deleted, is_dirty)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        title = excluded.title,
                        body = excluded.body,
                        updated_at = excluded.updated_at,
                        deleted = excluded.deleted,
                        is_dirty = excluded.is_dirty
                    """,
                    self._note_params(note),
                )
                await db.commit()
        except _STORAGE_ERRORS as e:
            raise StorageError(f"Failed to save note {note.id}: {e}") from e
        logger.debug(f"Saved note {note.id}")

    async def delete(self, note_id: str) -> None:
        """
        Remove a note row entirely.

        Args:
            note_id: Id of the note to remove
        """
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("DELETE FROM notes WHERE id = ?", (note_id,))
                await db.commit()
        except _STORAGE_ERRORS as e:
            raise StorageError(f"Failed to delete note {note_id}: {e}") from e
        logger.debug(f"Deleted note row {note_id}")

    async def replace_all(self, notes: list[Note]) -> None:
        """
        Swap the whole note snapshot in a single transaction.

        Args:
            notes: New snapshot; the previous rows are discarded
        """
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("DELETE FROM notes")
                await db.executemany(
                    """
                    INSERT OR REPLACE INTO notes (id, title, body, updated_at, deleted, is_dirty)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    [self._note_params(note) for note in notes],
                )
                await db.commit()
        except _STORAGE_ERRORS as e:
            raise StorageError(f"Failed to replace notes: {e}") from e
        logger.debug(f"Replaced note snapshot with {len(notes)} notes")

    async def clear(self) -> None:
        """Delete all notes and metadata."""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("DELETE FROM notes")
                await db.execute("DELETE FROM metadata")
                await db.commit()
        except _STORAGE_ERRORS as e:
            raise StorageError(f"Failed to clear database: {e}") from e
        logger.info("Cleared all notes and sync metadata")

    async def get_meta(self, key: str) -> str | None:
        """
        Get a metadata value.

        Args:
            key: Metadata key

        Returns:
            Stored value, or None if not set
        """
        try:
            async with aiosqlite.connect(self.db_path) as db:
                async with db.execute("SELECT value FROM metadata WHERE key = ?", (key,)) as cursor:
                    row = await cursor.fetchone()
        except _STORAGE_ERRORS as e:
            raise StorageError(f"Failed to read metadata '{key}': {e}") from e
        return row[0] if row else None

    async def set_meta(self, key: str, value: str | None) -> None:
        """
        Set a metadata value; None removes the key.

        Args:
            key: Metadata key
            value: Value to store
        """
        try:
            async with aiosqlite.connect(self.db_path) as db:
                if value is None:
                    await db.execute("DELETE FROM metadata WHERE key = ?", (key,))
                else:
                    await db.execute(
                        "INSERT OR REPLACE INTO metadata (key, value) VALUES (?, ?)",
                        (key, value),
                    )
                await db.commit()
        except _STORAGE_ERRORS as e:
            raise StorageError(f"Failed to write metadata '{key}': {e}") from e

    async def get_stats(self) -> dict[str, int]:
        """
        Count notes by state.

        Returns:
            Dictionary with 'total', 'active', 'deleted' and 'dirty' counts
        """
        try:
            async with aiosqlite.connect(self.db_path) as db:
                async with db.execute(
                    """
                    SELECT COUNT(*),
                           COALESCE(SUM(CASE WHEN deleted = 0 THEN 1 ELSE 0 END), 0),
                           COALESCE(SUM(deleted), 0),
                           COALESCE(SUM(is_dirty), 0)
                    FROM notes
                    """
                ) as cursor:
                    total, active, deleted, dirty = await cursor.fetchone()
        except _STORAGE_ERRORS as e:
            raise StorageError(f"Failed to read note statistics: {e}") from e
        return {"total": total, "active": active, "deleted": deleted, "dirty": dirty}
