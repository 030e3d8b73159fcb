"""Core synchronization logic: local replica <-> remote note collection."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from notesync.core.errors import ConnectivityError, NoteSyncError, RemoteError
from notesync.core.merge import merge
from notesync.core.models import (
    LOCAL_ID_PREFIX,
    ChangeAction,
    Note,
    PendingChange,
    is_local_id,
    parse_timestamp,
    utc_now_iso,
)
from notesync.core.queue import PendingChangeQueue
from notesync.core.store import LAST_SYNC_KEY, NoteStore
from notesync.sources.remote_api import RemoteNotesClient

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_sync_time(value: str | None, now: datetime | None = None) -> str:
    """
    Render a last-sync timestamp for display.

    Returns:
        "Never", "Just now", "<n>m ago", "<n>h ago" or the calendar date
    """
    if not value:
        return "Never"
    when = parse_timestamp(value)
    now = now or _utc_now()
    minutes = int((now - when).total_seconds() // 60)
    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return f"{minutes}m ago"
    if minutes < 1440:
        return f"{minutes // 60}h ago"
    return when.strftime("%Y-%m-%d")


class SyncState(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"


@dataclass
class SyncResult:
    """Outcome of one push/pull/merge cycle."""

    started_at: str
    finished_at: str | None = None
    pushed: int = 0
    failed: int = 0
    skipped: int = 0
    rekeyed: int = 0
    pulled: int = 0
    merged: int = 0
    errors: list[tuple[str, str]] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class SyncStatus:
    """User-facing sync state."""

    state: SyncState = SyncState.IDLE
    is_online: bool = True
    last_sync_time: str | None = None
    last_error: str | None = None
    pending_changes: int = 0
    last_result: SyncResult | None = None

    @property
    def is_syncing(self) -> bool:
        return self.state is SyncState.SYNCING

    def last_sync_display(self, now: datetime | None = None) -> str:
        return format_sync_time(self.last_sync_time, now)


class NotesSyncEngine:
    """
    Orchestrates synchronization between the local note replica and the
    remote note collection.

    Brings together:
    - Note store (local replica + sync metadata)
    - Pending-change queue (local mutations not yet pushed)
    - Remote notes client (REST collection)

    Sync cycle:
    1. Probe connectivity
    2. Push every queued change, each one isolated from the others
    3. Pull the full remote snapshot
    4. Merge local and remote (last-writer-wins, ties favour remote)
    5. Commit the merged snapshot and the new last-sync time

    Only one cycle runs at a time. ``trigger()`` while a cycle is in flight,
    or while offline, returns immediately without doing anything.

    Push failures: a failing entry is logged and skipped. With
    ``retain_failed_changes`` (default) it stays queued for the next cycle;
    otherwise it is dropped with the rest of the batch once the cycle
    commits.
    An update answered with 404 means the note was deleted remotely while
    edited here; it is recreated and re-keyed like a create.
    """

    def __init__(
        self,
        store: NoteStore,
        client: RemoteNotesClient,
        queue: PendingChangeQueue | None = None,
        *,
        lock: asyncio.Lock | None = None,
        retain_failed_changes: bool = True,
        auto_sync: bool = True,
        local_id_prefix: str = LOCAL_ID_PREFIX,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Initialize the sync engine.

        Args:
            store: Local note store
            client: Remote notes client
            queue: Pending-change queue (created over ``store`` if omitted)
            lock: Replica lock shared with the note mutation path
            retain_failed_changes: Keep failed pushes queued for the next cycle
            auto_sync: Let ``request_sync()`` start cycles after local edits
            local_id_prefix: Prefix marking ids never acknowledged remotely
            clock: Returns the current time (tests inject a fixed clock)
        """
        self.store = store
        self.client = client
        self.queue = queue if queue is not None else PendingChangeQueue(store)
        self.lock = lock or asyncio.Lock()
        self.retain_failed_changes = retain_failed_changes
        self.auto_sync = auto_sync
        self.local_id_prefix = local_id_prefix
        self._clock = clock or _utc_now
        self._status = SyncStatus()
        self._syncing = False
        self._tasks: set[asyncio.Task] = set()

    async def initialize(self) -> None:
        """Load the persisted queue and last-sync time."""
        await self.queue.load()
        self._status.last_sync_time = await self.store.get_meta(LAST_SYNC_KEY)
        logger.info(
            f"Sync engine initialized ({len(self.queue)} pending changes, "
            f"last sync: {self._status.last_sync_time or 'never'})"
        )

    @property
    def status(self) -> SyncStatus:
        self._status.pending_changes = len(self.queue)
        return self._status

    @property
    def is_syncing(self) -> bool:
        return self._syncing

    def set_online(self, online: bool) -> bool:
        """
        Record the current connectivity.

        Returns:
            True if this call moved the engine from offline to online
        """
        was_online = self._status.is_online
        self._status.is_online = online
        if online != was_online:
            logger.info("Network: %s", "online" if online else "offline")
        return online and not was_online

    async def trigger(self) -> SyncResult | None:
        """
        Run one sync cycle.

        Returns:
            The cycle result, or None if the call was rejected because a
            cycle is already running or the engine is offline
        """
        if self._syncing:
            logger.info("Sync skipped - already syncing")
            return None
        if not self._status.is_online:
            logger.info("Sync skipped - offline")
            return None

        # Set before the first suspension point so a concurrent trigger is rejected.
        self._syncing = True
        self._status.state = SyncState.SYNCING
        self._status.last_error = None
        result = SyncResult(started_at=utc_now_iso(self._clock()))

        try:
            await self._run_cycle(result)
        except NoteSyncError as e:
            result.error = str(e)
            logger.error(f"Sync failed: {e}")
        except Exception as e:
            result.error = str(e) or e.__class__.__name__
            logger.exception("Sync failed with an unexpected error")
        finally:
            result.finished_at = utc_now_iso(self._clock())
            self._status.last_result = result
            self._status.last_error = result.error
            self._status.state = SyncState.IDLE
            self._syncing = False

        if result.ok:
            logger.info(
                f"Sync complete: {result.pushed} pushed, {result.failed} failed, "
                f"{result.pulled} pulled, {result.merged} notes after merge"
            )
        return result

    def request_sync(self) -> asyncio.Task | None:
        """
        Ask for a sync after a local mutation.

        Schedules ``trigger()`` on the running loop when auto sync is on,
        the engine is online and no cycle is running.

        Returns:
            The scheduled task, or None if nothing was scheduled
        """
        if not self.auto_sync or not self._status.is_online or self._syncing:
            return None
        task = asyncio.get_running_loop().create_task(self.trigger())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_for_background(self) -> None:
        """Wait for syncs scheduled through ``request_sync()``."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def _run_cycle(self, result: SyncResult) -> None:
        if not await self.client.check_connection():
            raise ConnectivityError("Unable to connect to server")

        failed = await self._push_pending(result)

        logger.debug("Pulling notes from remote")
        remote_notes = await self.client.list_notes()
        result.pulled = len(remote_notes)

        dropped = [] if self.retain_failed_changes else failed
        await self._commit(remote_notes, result, dropped)

        if dropped:
            removed = await self.queue.acknowledge(dropped)
            logger.warning(f"Dropped {removed} failed change(s) from the queue")

    async def _push_pending(self, result: SyncResult) -> list[PendingChange]:
        """
        Push every queued change.

        Returns:
            Changes whose push failed
        """
        changes = self.queue.drain()
        failed: list[PendingChange] = []

        if not changes:
            logger.debug("No pending changes to push")
            return failed

        logger.info(f"Pushing {len(changes)} pending change(s)")

        for change in changes:
            if change.action is ChangeAction.DELETE and is_local_id(change.note_id, self.local_id_prefix):
                logger.debug(f"Skipping delete of never-pushed note {change.note_id}")
                await self.queue.acknowledge([change])
                result.skipped += 1
                continue

            try:
                remote_note = await self._push_change(change)
            except (RemoteError, ConnectivityError) as e:
                logger.error(f"Failed to push {change.action.value} for note {change.note_id}: {e}")
                result.failed += 1
                result.errors.append((change.note_id, str(e)))
                failed.append(change)
                continue

            await self._confirm_push(change, remote_note, result)
            result.pushed += 1

        return failed

    async def _push_change(self, change: PendingChange) -> Note | None:
        if change.action is ChangeAction.DELETE:
            await self.client.delete_note(change.note_id)
            return None
        if change.action is ChangeAction.CREATE or change.note.is_local(self.local_id_prefix):
            return await self.client.create_note(change.note)
        try:
            return await self.client.update_note(change.note)
        except RemoteError as e:
            if e.status_code != 404:
                raise
        # Deleted remotely while edited here: the local edit recreates it under a new id.
        logger.warning(f"Note {change.note_id} was deleted on the remote, recreating it from the local edit")
        return await self.client.create_note(change.note)

    async def _confirm_push(self, change: PendingChange, remote_note: Note | None, result: SyncResult) -> None:
        """
        Record a confirmed push in the queue and the local replica.

        Clears the dirty flag of the pushed note unless it was edited again
        while the push was in flight, and re-keys a created note from its
        local-only id to the server id.
        """
        async with self.lock:
            await self.queue.acknowledge([change])
            if remote_note is None or change.note is None:
                return

            old_id, new_id = change.note_id, remote_note.id
            current = next((n for n in await self.store.get_all() if n.id == old_id), None)
            unchanged = current is not None and current.updated_at == change.note.updated_at

            if new_id != old_id:
                if current is not None:
                    await self.store.delete(old_id)
                    await self.store.put(current.copy(id=new_id, is_dirty=current.is_dirty and not unchanged))
                await self.queue.rekey(old_id, new_id)
                result.rekeyed += 1
                logger.debug(f"Re-keyed note {old_id} -> {new_id}")
            elif unchanged and current.is_dirty:
                await self.store.put(current.copy(is_dirty=False))

    async def _commit(self, remote_notes: list[Note], result: SyncResult, dropped: list[PendingChange]) -> None:
        """Merge under the replica lock and persist the new snapshot."""
        async with self.lock:
            local_notes = await self.store.get_all()
            last_sync = await self.store.get_meta(LAST_SYNC_KEY)
            merged = merge(local_notes, remote_notes, last_sync, local_id_prefix=self.local_id_prefix)

            # Tombstones whose delete has not reached the remote yet stay local.
            dropped_ids = {change.note_id for change in dropped}
            pending_deletes = {
                change.note_id
                for change in self.queue.drain()
                if change.action is ChangeAction.DELETE and change.note_id not in dropped_ids
            }
            merged_ids = {note.id for note in merged}
            tombstones = [
                note for note in local_notes
                if note.deleted and note.id in pending_deletes and note.id not in merged_ids
            ]

            await self.store.replace_all(merged + tombstones)
            now = utc_now_iso(self._clock())
            await self.store.set_meta(LAST_SYNC_KEY, now)

        self._status.last_sync_time = now
        result.merged = len(merged)

    async def reset(self) -> None:
        """
        Clear the local replica, the queue and all sync metadata.

        Raises:
            RuntimeError: If a sync is in progress
        """
        if self._syncing:
            raise RuntimeError("Cannot reset while a sync is in progress")
        async with self.lock:
            await self.store.clear()
            await self.queue.clear()
        self._status = SyncStatus(is_online=self._status.is_online)
        logger.info("Local replica and sync state reset")
