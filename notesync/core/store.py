"""Local note store contract and the in-memory/fallback implementations."""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from notesync.core.errors import StorageError
from notesync.core.models import Note

logger = logging.getLogger(__name__)

LAST_SYNC_KEY = "lastSyncTime"
PENDING_CHANGES_KEY = "pendingChanges"


@runtime_checkable
class NoteStore(Protocol):
    """Durable key/value persistence for notes and sync metadata.

    Every method may raise :class:`StorageError`.
    """

    async def get_all(self) -> list[Note]:
        """Return every stored note, tombstones included."""
        ...

    async def put(self, note: Note) -> None:
        """Insert or replace the note with ``note.id``."""
        ...

    async def delete(self, note_id: str) -> None:
        """Remove the note row for *note_id*."""
        ...

    async def replace_all(self, notes: list[Note]) -> None:
        """Atomically swap the whole note snapshot."""
        ...

    async def clear(self) -> None:
        """Remove all notes and metadata."""
        ...

    async def get_meta(self, key: str) -> str | None:
        """Return a metadata value, or ``None`` when unset."""
        ...

    async def set_meta(self, key: str, value: str | None) -> None:
        """Store a metadata value; ``None`` removes it."""
        ...


class MemoryNoteStore:
    """Dict-backed store, used as the fallback store and in tests."""

    def __init__(self, notes: list[Note] | None = None):
        self._notes: dict[str, Note] = {note.id: note.copy() for note in notes or []}
        self._meta: dict[str, str] = {}

    async def get_all(self) -> list[Note]:
        return [note.copy() for note in self._notes.values()]

    async def put(self, note: Note) -> None:
        self._notes[note.id] = note.copy()

    async def delete(self, note_id: str) -> None:
        self._notes.pop(note_id, None)

    async def replace_all(self, notes: list[Note]) -> None:
        self._notes = {note.id: note.copy() for note in notes}

    async def clear(self) -> None:
        self._notes.clear()
        self._meta.clear()

    async def get_meta(self, key: str) -> str | None:
        return self._meta.get(key)

    async def set_meta(self, key: str, value: str | None) -> None:
        if value is None:
            self._meta.pop(key, None)
        else:
            self._meta[key] = value


class FallbackNoteStore:
    """
    Store that forwards to a primary store and falls back on failure.

    The first :class:`StorageError` raised by the primary switches every
    later call to the secondary store for the rest of the process, so a
    broken database degrades the app to in-memory operation instead of
    crashing it.
    """

    def __init__(self, primary: NoteStore, secondary: NoteStore | None = None):
        self.primary = primary
        self.secondary = secondary if secondary is not None else MemoryNoteStore()
        self._degraded = False

    @property
    def degraded(self) -> bool:
        """True once the primary store has failed."""
        return self._degraded

    @property
    def active(self) -> NoteStore:
        return self.secondary if self._degraded else self.primary

    async def _call(self, method: str, *args):
        if not self._degraded:
            try:
                return await getattr(self.primary, method)(*args)
            except StorageError as e:
                logger.warning(f"Primary note store failed ({e}), falling back to in-memory store")
                self._degraded = True
        return await getattr(self.secondary, method)(*args)

    async def get_all(self) -> list[Note]:
        return await self._call("get_all")

    async def put(self, note: Note) -> None:
        await self._call("put", note)

    async def delete(self, note_id: str) -> None:
        await self._call("delete", note_id)

    async def replace_all(self, notes: list[Note]) -> None:
        await self._call("replace_all", notes)

    async def clear(self) -> None:
        await self._call("clear")

    async def get_meta(self, key: str) -> str | None:
        return await self._call("get_meta", key)

    async def set_meta(self, key: str, value: str | None) -> None:
        await self._call("set_meta", key, value)
