"""Durable queue of local mutations awaiting push to the remote collection."""

import asyncio
import json
import logging
from collections.abc import Iterable

from notesync.core.errors import StorageError
from notesync.core.models import ChangeAction, PendingChange
from notesync.core.store import PENDING_CHANGES_KEY, NoteStore

logger = logging.getLogger(__name__)


class PendingChangeQueue:
    """
    Holds at most one pending change per note id.

    Enqueuing a change for an id that is already queued replaces the earlier
    entry: only the latest intent is pushed. The whole queue is persisted as
    one JSON snapshot after every mutating call; the in-memory mapping is the
    authority for the running process even if a write fails.
    """

    def __init__(self, store: NoteStore, key: str = PENDING_CHANGES_KEY):
        """
        Initialize the queue.

        Args:
            store: Note store whose metadata table holds the snapshot
            key: Metadata key for the snapshot
        """
        self.store = store
        self.key = key
        self._entries: dict[str, PendingChange] = {}
        self._write_lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, note_id: object) -> bool:
        return note_id in self._entries

    def get(self, note_id: str) -> PendingChange | None:
        return self._entries.get(note_id)

    async def load(self) -> None:
        """
        Load the persisted snapshot into memory.

        A corrupt snapshot is logged and discarded.

        Raises:
            StorageError: If the store cannot be read
        """
        raw = await self.store.get_meta(self.key)
        entries: dict[str, PendingChange] = {}
        if raw:
            try:
                for item in json.loads(raw):
                    change = PendingChange.from_dict(item)
                    entries.pop(change.note_id, None)
                    entries[change.note_id] = change
            except (ValueError, KeyError, TypeError) as e:
                logger.warning(f"Discarding unreadable pending-change snapshot: {e}")
                entries = {}
        self._entries = entries
        logger.debug(f"Loaded {len(entries)} pending changes")

    async def _persist(self) -> None:
        # Serialize inside the lock so the last write always carries the latest state.
        async with self._write_lock:
            snapshot = json.dumps([change.to_dict() for change in self._entries.values()])
            try:
                await self.store.set_meta(self.key, snapshot)
            except StorageError:
                logger.error("Failed to persist pending changes; keeping them in memory")
                raise

    async def enqueue(self, change: PendingChange) -> None:
        """
        Record a change, replacing any queued change for the same note.

        Args:
            change: Change to record

        Raises:
            StorageError: If persisting fails (the change stays queued in memory)
        """
        self._entries.pop(change.note_id, None)
        self._entries[change.note_id] = change
        logger.debug(f"Queued {change.action.value} for {change.note_id}")
        await self._persist()

    def drain(self) -> list[PendingChange]:
        """
        Return the queued changes in enqueue order.

        The queue itself is left untouched; pushed entries are removed with
        :meth:`acknowledge`.
        """
        return list(self._entries.values())

    def has_pending(self) -> bool:
        return bool(self._entries)

    async def clear(self) -> None:
        """Remove every queued change."""
        self._entries.clear()
        await self._persist()
        logger.debug("Cleared pending changes")

    async def acknowledge(self, changes: Iterable[PendingChange]) -> int:
        """
        Remove changes that were handled by a push cycle.

        An entry is removed only if it is still the queued entry for its
        note id; a newer change enqueued meanwhile survives.

        Returns:
            Number of entries removed
        """
        removed = 0
        for change in changes:
            if self._entries.get(change.note_id) is change:
                del self._entries[change.note_id]
                removed += 1
        if removed:
            await self._persist()
        return removed

    async def rekey(self, old_id: str, new_id: str) -> bool:
        """
        Move a queued change from a local-only id onto its server id.

        A queued create becomes an update since the remote note now exists.

        Returns:
            True if an entry was moved
        """
        change = self._entries.pop(old_id, None)
        if change is None:
            return False

        action = ChangeAction.UPDATE if change.action is ChangeAction.CREATE else change.action
        note = change.note.copy(id=new_id) if change.note is not None else None
        rekeyed = PendingChange(note_id=new_id, action=action, note=note, timestamp=change.timestamp)
        self._entries.pop(new_id, None)
        self._entries[new_id] = rekeyed
        logger.debug(f"Re-keyed pending change {old_id} -> {new_id}")
        await self._persist()
        return True
