"""Local note mutations: optimistic commit to the replica plus queueing."""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime

from notesync.core.errors import NoteNotFoundError
from notesync.core.models import LOCAL_ID_PREFIX, Note, PendingChange, new_local_id, utc_now_iso
from notesync.core.queue import PendingChangeQueue
from notesync.core.store import NoteStore

logger = logging.getLogger(__name__)


class NotesService:
    """
    Create, edit and delete notes on the local replica.

    Every mutation is written to the store immediately, recorded in the
    pending-change queue, and then reported through ``on_change`` so the
    sync engine can decide whether to run.
    """

    def __init__(
        self,
        store: NoteStore,
        queue: PendingChangeQueue,
        *,
        lock: asyncio.Lock | None = None,
        on_change: Callable[[], object] | None = None,
        local_id_prefix: str = LOCAL_ID_PREFIX,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Initialize the service.

        Args:
            store: Local note store
            queue: Pending-change queue
            lock: Replica lock shared with the sync engine
            on_change: Called after every mutation (e.g. ``engine.request_sync``)
            local_id_prefix: Prefix for ids minted on this device
            clock: Returns the current time (tests inject a fixed clock)
        """
        self.store = store
        self.queue = queue
        self.lock = lock or asyncio.Lock()
        self.on_change = on_change
        self.local_id_prefix = local_id_prefix
        self._clock = clock

    def _now(self) -> str:
        return utc_now_iso(self._clock() if self._clock else None)

    def _notify(self) -> None:
        if self.on_change is not None:
            self.on_change()

    async def _find(self, note_id: str) -> Note | None:
        for note in await self.store.get_all():
            if note.id == note_id:
                return note
        return None

    async def create_note(self, title: str = "", body: str = "") -> Note:
        """
        Create a note with a local-only id.

        Returns:
            The stored note
        """
        note = Note(
            id=new_local_id(self.local_id_prefix),
            title=title,
            body=body,
            updated_at=self._now(),
            is_dirty=True,
        )
        async with self.lock:
            await self.store.put(note)
            await self.queue.enqueue(PendingChange.for_save(note, self.local_id_prefix))
        logger.info(f"Created note {note.id}")
        self._notify()
        return note

    async def update_note(self, note_id: str, title: str | None = None, body: str | None = None) -> Note:
        """
        Edit the title and/or body of an existing note.

        Raises:
            NoteNotFoundError: If the note does not exist or is deleted
        """
        async with self.lock:
            current = await self._find(note_id)
            if current is None or current.deleted:
                raise NoteNotFoundError(note_id)

            note = current.copy(
                title=current.title if title is None else title,
                body=current.body if body is None else body,
                updated_at=self._now(),
                is_dirty=True,
            )
            await self.store.put(note)
            await self.queue.enqueue(PendingChange.for_save(note, self.local_id_prefix))
        logger.info(f"Updated note {note_id}")
        self._notify()
        return note

    async def delete_note(self, note_id: str) -> Note:
        """
        Mark a note as deleted.

        The tombstone stays in the replica until the deletion has reached
        the remote collection.

        Raises:
            NoteNotFoundError: If the note does not exist or is already deleted
        """
        async with self.lock:
            current = await self._find(note_id)
            if current is None or current.deleted:
                raise NoteNotFoundError(note_id)

            tombstone = current.copy(deleted=True, updated_at=self._now(), is_dirty=True)
            await self.store.put(tombstone)
            await self.queue.enqueue(PendingChange.for_delete(note_id))
        logger.info(f"Deleted note {note_id}")
        self._notify()
        return tombstone

    async def get_note(self, note_id: str) -> Note | None:
        note = await self._find(note_id)
        if note is None or note.deleted:
            return None
        return note

    async def list_notes(self, query: str = "") -> list[Note]:
        """
        List visible notes, newest first.

        Args:
            query: Case-insensitive filter on title or body

        Returns:
            Non-deleted notes matching the query
        """
        notes = [note for note in await self.store.get_all() if not note.deleted and note.matches(query)]
        notes.sort(key=lambda note: (note.timestamp, note.id), reverse=True)
        return notes
