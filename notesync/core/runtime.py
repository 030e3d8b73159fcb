"""Wiring of store, queue, remote client, sync engine and note service.

One place builds every collaborator from an :class:`AppConfig` so the CLI
(and tests) never deal with construction order.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import httpx

from notesync.core.config import AppConfig
from notesync.core.errors import StorageError
from notesync.core.notes import NotesService
from notesync.core.queue import PendingChangeQueue
from notesync.core.store import FallbackNoteStore, MemoryNoteStore
from notesync.core.sync import NotesSyncEngine
from notesync.sources.remote_api import RemoteNotesClient
from notesync.utils.db import NotesDB

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    """Initialized collaborators for one process."""

    config: AppConfig
    store: FallbackNoteStore
    queue: PendingChangeQueue
    notes: NotesService
    client: RemoteNotesClient | None = None
    engine: NotesSyncEngine | None = None

    def require_engine(self) -> NotesSyncEngine:
        """
        Return the sync engine.

        Raises:
            ValueError: If no remote collection is configured
        """
        if self.engine is None:
            raise ValueError("Remote base_url not configured")
        return self.engine


@asynccontextmanager
async def open_runtime(
    config: AppConfig,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AsyncIterator[Runtime]:
    """
    Build and initialize every collaborator, closing the HTTP client on exit.

    Args:
        config: Application configuration
        transport: Custom httpx transport (used by tests)
    """
    config.ensure_data_dir()

    db = NotesDB(config.notes_db_path)
    store = FallbackNoteStore(db, MemoryNoteStore())
    try:
        await db.initialize()
    except StorageError as e:
        logger.warning(f"Local database unavailable ({e}), notes will only be kept in memory")

    queue = PendingChangeQueue(store)
    lock = asyncio.Lock()
    prefix = config.sync.local_id_prefix

    client = None
    engine = None
    if config.remote.base_url:
        client = RemoteNotesClient(
            config.remote.base_url,
            collection_path=config.remote.collection_path,
            token=config.remote.get_api_token(),
            timeout=config.remote.timeout,
            local_id_prefix=prefix,
            transport=transport,
        )
        engine = NotesSyncEngine(
            store,
            client,
            queue,
            lock=lock,
            retain_failed_changes=config.sync.retain_failed_changes,
            auto_sync=config.sync.auto_sync,
            local_id_prefix=prefix,
        )
        await engine.initialize()
    else:
        await queue.load()

    notes = NotesService(
        store,
        queue,
        lock=lock,
        on_change=engine.request_sync if engine is not None else None,
        local_id_prefix=prefix,
    )

    runtime = Runtime(config=config, store=store, queue=queue, notes=notes, client=client, engine=engine)
    try:
        yield runtime
    finally:
        if engine is not None:
            await engine.wait_for_background()
        if client is not None:
            await client.aclose()
