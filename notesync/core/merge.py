"""Reconciliation of the local replica with the remote snapshot.

Conflict policy is last-writer-wins on ``updated_at``. Equal timestamps
resolve to the remote version: the last reconciled truth beats redundant
local state. Future edits must preserve this tie-break.
"""

import logging
from collections.abc import Iterable
from datetime import datetime

from notesync.core.models import LOCAL_ID_PREFIX, Note, is_local_id, parse_timestamp

logger = logging.getLogger(__name__)


def _index(notes: Iterable[Note]) -> dict[str, Note]:
    """Map id -> note, collapsing duplicate ids onto the latest ``updated_at``."""
    by_id: dict[str, Note] = {}
    for note in notes:
        existing = by_id.get(note.id)
        if existing is None or existing.timestamp < note.timestamp:
            by_id[note.id] = note
    return by_id


def resolve_conflict(local: Note, remote: Note) -> Note:
    """
    Pick the winner between a dirty local note and its remote counterpart.

    A strictly newer local note wins and keeps its dirty flag; otherwise the
    remote note wins and comes back clean.
    """
    if local.timestamp > remote.timestamp:
        return local.copy()
    return remote.copy(is_dirty=False)


def merge(
    local: Iterable[Note],
    remote: Iterable[Note],
    last_sync_time: str | datetime | None,
    *,
    local_id_prefix: str = LOCAL_ID_PREFIX,
) -> list[Note]:
    """
    Compute the reconciled note set.

    Pure function: inputs are never mutated and the result only depends on
    the sets of notes given, not their order.

    Args:
        local: Notes in the local replica, tombstones included
        remote: Authoritative remote snapshot
        last_sync_time: Time of the last successful reconciliation
            (None means never synced)
        local_id_prefix: Prefix marking ids never acknowledged remotely

    Returns:
        Merged notes sorted by id, without tombstones
    """
    local_by_id = _index(local)
    remote_by_id = _index(remote)
    since = parse_timestamp(last_sync_time)

    merged: dict[str, Note] = {}

    for note_id, local_note in local_by_id.items():
        remote_note = remote_by_id.get(note_id)

        if is_local_id(note_id, local_id_prefix):
            # The remote has never seen this id, so it cannot have deleted it.
            merged[note_id] = local_note.copy()
        elif remote_note is None:
            if local_note.timestamp > since:
                logger.debug("Keeping %s: local edit is newer than the remote deletion", note_id)
                merged[note_id] = local_note.copy()
            else:
                logger.debug("Dropping %s: deleted remotely", note_id)
        elif local_note.is_dirty:
            merged[note_id] = resolve_conflict(local_note, remote_note)
        else:
            merged[note_id] = remote_note.copy(is_dirty=False)

    for note_id, remote_note in remote_by_id.items():
        if note_id not in merged and note_id not in local_by_id:
            merged[note_id] = remote_note.copy(is_dirty=False)

    result = [note for _, note in sorted(merged.items()) if not note.deleted]
    logger.debug(
        "Merged %d local and %d remote notes into %d", len(local_by_id), len(remote_by_id), len(result)
    )
    return result
