import random

from notesync.core.merge import merge, resolve_conflict
from notesync.core.models import Note

T0 = "2024-01-01T00:00:00.000Z"
T1 = "2024-01-01T01:00:00.000Z"
T2 = "2024-01-01T02:00:00.000Z"
T3 = "2024-01-01T03:00:00.000Z"


def by_id(notes):
    return {note.id: note for note in notes}


def test_local_only_note_is_kept_regardless_of_remote():
    local = [Note(id="temp_1", title="draft", updated_at=T0, is_dirty=True)]
    merged = merge(local, [], T3)
    assert [n.id for n in merged] == ["temp_1"]
    assert merged[0].is_dirty


def test_remote_deletion_drops_note_not_edited_since_last_sync():
    local = [Note(id="a", updated_at=T0)]
    assert merge(local, [], T1) == []


def test_local_edit_after_last_sync_survives_remote_deletion():
    local = [Note(id="a", title="mine", updated_at=T2, is_dirty=True)]
    merged = merge(local, [], T1)
    assert by_id(merged)["a"].title == "mine"


def test_never_synced_keeps_all_local_notes():
    local = [Note(id="a", updated_at=T0)]
    assert [n.id for n in merge(local, [], None)] == ["a"]


def test_newer_dirty_local_beats_remote():
    local = [Note(id="a", title="local", updated_at=T2, is_dirty=True)]
    remote = [Note(id="a", title="remote", updated_at=T1)]
    merged = by_id(merge(local, remote, T0))
    assert merged["a"].title == "local"
    assert merged["a"].is_dirty


def test_newer_remote_beats_dirty_local():
    local = [Note(id="a", title="local", updated_at=T1, is_dirty=True)]
    remote = [Note(id="a", title="remote", updated_at=T2)]
    merged = by_id(merge(local, remote, T0))
    assert merged["a"].title == "remote"
    assert not merged["a"].is_dirty


def test_equal_timestamps_resolve_to_remote():
    local = Note(id="a", title="local", updated_at=T1, is_dirty=True)
    remote = Note(id="a", title="remote", updated_at=T1)
    assert resolve_conflict(local, remote).title == "remote"
    assert by_id(merge([local], [remote], T0))["a"].title == "remote"


def test_clean_local_takes_remote_even_if_remote_is_older():
    local = [Note(id="a", title="local", updated_at=T2)]
    remote = [Note(id="a", title="remote", updated_at=T1)]
    merged = by_id(merge(local, remote, T0))
    assert merged["a"].title == "remote"


def test_remote_only_notes_are_added_clean():
    remote = [Note(id="b", title="new", updated_at=T1, is_dirty=True)]
    merged = merge([], remote, T0)
    assert [n.id for n in merged] == ["b"]
    assert not merged[0].is_dirty


def test_tombstones_never_appear_in_output():
    local = [
        Note(id="a", updated_at=T2, deleted=True, is_dirty=True),
        Note(id="temp_1", updated_at=T2, deleted=True, is_dirty=True),
    ]
    remote = [Note(id="a", updated_at=T1)]
    assert merge(local, remote, T0) == []


def test_merge_is_idempotent():
    local = [
        Note(id="a", title="local", updated_at=T2, is_dirty=True),
        Note(id="temp_1", title="draft", updated_at=T1, is_dirty=True),
        Note(id="c", title="stale", updated_at=T0),
    ]
    remote = [Note(id="a", title="remote", updated_at=T1), Note(id="d", title="other", updated_at=T3)]
    once = merge(local, remote, T1)
    assert merge(once, remote, T1) == once


def test_merge_ignores_input_order_and_does_not_mutate_inputs():
    local = [Note(id=f"n{i}", title="l", updated_at=T2, is_dirty=i % 2 == 0) for i in range(6)]
    remote = [Note(id=f"n{i}", title="r", updated_at=T1) for i in range(3, 9)]
    expected = merge(local, remote, T1)

    shuffled_local, shuffled_remote = local[:], remote[:]
    random.Random(7).shuffle(shuffled_local)
    random.Random(11).shuffle(shuffled_remote)
    assert merge(shuffled_local, shuffled_remote, T1) == expected

    assert all(n.title == "l" for n in local)
    assert [n.id for n in expected] == sorted(n.id for n in expected)


def test_duplicate_ids_collapse_to_latest():
    remote = [Note(id="a", title="old", updated_at=T1), Note(id="a", title="new", updated_at=T2)]
    merged = merge([], remote, T0)
    assert len(merged) == 1
    assert merged[0].title == "new"
