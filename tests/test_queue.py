import asyncio
import json

import pytest

from notesync.core.errors import StorageError
from notesync.core.models import ChangeAction, Note, PendingChange
from notesync.core.queue import PendingChangeQueue
from notesync.core.store import PENDING_CHANGES_KEY, MemoryNoteStore


class ReadOnlyStore(MemoryNoteStore):
    async def set_meta(self, key, value):
        raise StorageError("disk full")


def save(note_id, title="t"):
    return PendingChange.for_save(Note(id=note_id, title=title))


def test_enqueue_keeps_one_entry_per_note():
    async def scenario():
        queue = PendingChangeQueue(MemoryNoteStore())
        await queue.enqueue(save("temp_1", "first"))
        await queue.enqueue(save("n2"))
        await queue.enqueue(save("temp_1", "second"))
        return queue.drain()

    changes = asyncio.run(scenario())
    assert [c.note_id for c in changes] == ["n2", "temp_1"]
    assert changes[1].note.title == "second"


def test_delete_replaces_queued_update():
    async def scenario():
        queue = PendingChangeQueue(MemoryNoteStore())
        await queue.enqueue(save("n1"))
        await queue.enqueue(PendingChange.for_delete("n1"))
        return queue.drain()

    (change,) = asyncio.run(scenario())
    assert change.action is ChangeAction.DELETE


def test_queue_survives_reload():
    store = MemoryNoteStore()

    async def scenario():
        queue = PendingChangeQueue(store)
        await queue.enqueue(save("temp_1"))
        await queue.enqueue(PendingChange.for_delete("n9"))

        reloaded = PendingChangeQueue(store)
        await reloaded.load()
        return reloaded

    reloaded = asyncio.run(scenario())
    assert len(reloaded) == 2
    assert reloaded.get("n9").action is ChangeAction.DELETE
    assert reloaded.get("temp_1").note.title == "t"


def test_corrupt_snapshot_loads_empty():
    store = MemoryNoteStore()

    async def scenario():
        await store.set_meta(PENDING_CHANGES_KEY, "{not json")
        queue = PendingChangeQueue(store)
        await queue.load()
        return queue

    assert len(asyncio.run(scenario())) == 0


def test_drain_does_not_remove_entries():
    async def scenario():
        queue = PendingChangeQueue(MemoryNoteStore())
        await queue.enqueue(save("n1"))
        queue.drain()
        return queue

    assert asyncio.run(scenario()).has_pending()


def test_acknowledge_keeps_entries_replaced_meanwhile():
    async def scenario():
        queue = PendingChangeQueue(MemoryNoteStore())
        first = save("n1", "v1")
        await queue.enqueue(first)
        await queue.enqueue(save("n2"))
        batch = queue.drain()
        await queue.enqueue(save("n1", "v2"))
        removed = await queue.acknowledge(batch)
        return queue, removed

    queue, removed = asyncio.run(scenario())
    assert removed == 1
    assert queue.get("n1").note.title == "v2"
    assert "n2" not in queue


def test_rekey_turns_create_into_update():
    store = MemoryNoteStore()

    async def scenario():
        queue = PendingChangeQueue(store)
        await queue.enqueue(save("temp_1", "draft"))
        moved = await queue.rekey("temp_1", "srv-1")
        return queue, moved, await store.get_meta(PENDING_CHANGES_KEY)

    queue, moved, raw = asyncio.run(scenario())
    assert moved
    assert "temp_1" not in queue
    change = queue.get("srv-1")
    assert change.action is ChangeAction.UPDATE
    assert change.note.id == "srv-1"
    assert json.loads(raw)[0]["noteId"] == "srv-1"


def test_rekey_missing_entry_is_noop():
    async def scenario():
        queue = PendingChangeQueue(MemoryNoteStore())
        return await queue.rekey("temp_x", "srv-1")

    assert asyncio.run(scenario()) is False


def test_failed_persist_keeps_change_in_memory():
    queue = PendingChangeQueue(ReadOnlyStore())

    with pytest.raises(StorageError):
        asyncio.run(queue.enqueue(save("n1")))
    assert "n1" in queue


def test_clear_persists_empty_snapshot():
    store = MemoryNoteStore()

    async def scenario():
        queue = PendingChangeQueue(store)
        await queue.enqueue(save("n1"))
        await queue.clear()
        return await store.get_meta(PENDING_CHANGES_KEY)

    assert json.loads(asyncio.run(scenario())) == []


class SlowMetaStore(MemoryNoteStore):
    async def set_meta(self, key, value):
        await asyncio.sleep(0.01)
        await super().set_meta(key, value)


def test_concurrent_enqueues_are_all_persisted():
    store = SlowMetaStore()

    async def scenario():
        queue = PendingChangeQueue(store)
        await asyncio.gather(queue.enqueue(save("n1")), queue.enqueue(save("n2")))
        return await store.get_meta(PENDING_CHANGES_KEY)

    snapshot = json.loads(asyncio.run(scenario()))
    assert sorted(item["noteId"] for item in snapshot) == ["n1", "n2"]


def test_enqueue_during_sync_survives_commit(make_harness, remote):
    remote.seed("a", title="a0")
    harness = make_harness(store=SlowMetaStore())
    pull = harness.client.list_notes
    late = {}

    async def pull_with_edit(*args, **kwargs):
        notes = await pull(*args, **kwargs)
        late["note"] = await harness.notes.create_note("written mid-sync")
        return notes

    async def scenario():
        await harness.notes.create_note("queued before sync")
        harness.client.list_notes = pull_with_edit
        result = await harness.engine.trigger()
        reloaded = PendingChangeQueue(harness.store)
        await reloaded.load()
        return result, reloaded, await harness.stored()

    result, reloaded, stored = asyncio.run(scenario())
    note_id = late["note"].id
    assert result.ok
    assert result.pushed == 1
    assert [c.note_id for c in reloaded.drain()] == [note_id]
    assert note_id in harness.queue
    assert stored[note_id].title == "written mid-sync"
