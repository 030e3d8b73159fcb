"""Data models for notes and queued changes."""

import random
import string
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

LOCAL_ID_PREFIX = "temp_"
EPOCH = "1970-01-01T00:00:00.000Z"

_BASE36 = string.digits + string.ascii_lowercase


def is_local_id(note_id: str, prefix: str = LOCAL_ID_PREFIX) -> bool:
    """Return True if the id was minted on this device and never acknowledged remotely."""
    return note_id.startswith(prefix)


def new_local_id(prefix: str = LOCAL_ID_PREFIX) -> str:
    """Mint a local-only note id, e.g. ``temp_1717171717171_k3j9x0q2a``."""
    suffix = "".join(random.choices(_BASE36, k=9))
    return f"{prefix}{int(time.time() * 1000)}_{suffix}"


def utc_now_iso(now: datetime | None = None) -> str:
    """Render a timestamp as ISO-8601 UTC with millisecond precision."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now = now.astimezone(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def parse_timestamp(value: str | datetime | None) -> datetime:
    """
    Parse an ISO-8601 timestamp into an aware UTC datetime.

    Accepts full timestamps with ``Z`` or an offset as well as date-only
    strings. Naive values are taken as UTC. ``None`` or an empty string maps
    to the epoch.

    Raises:
        ValueError: If the value is not a valid ISO-8601 timestamp
    """
    if isinstance(value, datetime):
        parsed = value
    elif not value:
        parsed = datetime(1970, 1, 1, tzinfo=timezone.utc)
    else:
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass
class Note:
    """
    A single free-text note as held in either replica.

    Attributes:
        id: Local-only id (``temp_`` prefix) or remote-assigned id
        title: Note title, never None
        body: Note body, never None
        updated_at: ISO-8601 timestamp, the only ordering key for conflicts
        deleted: Tombstone flag; retained locally until the deletion propagates
        is_dirty: True until the local mutation is confirmed pushed
    """

    id: str
    title: str = ""
    body: str = ""
    updated_at: str = EPOCH
    deleted: bool = False
    is_dirty: bool = False

    def __post_init__(self) -> None:
        if self.id is None or str(self.id) == "":
            raise ValueError("Note id must not be empty")
        self.id = str(self.id)
        self.title = self.title or ""
        self.body = self.body or ""
        self.updated_at = self.updated_at or EPOCH
        # Fail early on unparseable timestamps
        parse_timestamp(self.updated_at)

    @property
    def timestamp(self) -> datetime:
        """Parsed ``updated_at``."""
        return parse_timestamp(self.updated_at)

    def is_local(self, prefix: str = LOCAL_ID_PREFIX) -> bool:
        return is_local_id(self.id, prefix)

    def copy(self, **changes: Any) -> "Note":
        return replace(self, **changes)

    def touch(self, now: datetime | None = None) -> "Note":
        """Return a dirty copy stamped with the current time."""
        return self.copy(updated_at=utc_now_iso(now), is_dirty=True)

    def matches(self, query: str) -> bool:
        """Case-insensitive substring match on title or body."""
        if not query:
            return True
        needle = query.lower()
        return needle in self.title.lower() or needle in self.body.lower()

    def to_payload(self) -> dict[str, str]:
        """Body sent to the remote collection on create/update."""
        return {"title": self.title, "body": self.body, "updatedAt": self.updated_at}

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "body": self.body,
            "updatedAt": self.updated_at,
            "deleted": self.deleted,
            "isDirty": self.is_dirty,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Note":
        """
        Build a Note from its wire/persisted form.

        Unknown keys are ignored and numeric ids are converted to strings.
        Snake-case keys are accepted as well as camelCase.
        """
        return cls(
            id=str(data["id"]),
            title=data.get("title") or "",
            body=data.get("body") or "",
            updated_at=data.get("updatedAt") or data.get("updated_at") or EPOCH,
            deleted=bool(data.get("deleted", False)),
            is_dirty=bool(data.get("isDirty", data.get("is_dirty", False))),
        )


class ChangeAction(str, Enum):
    """Mutation kinds that can be replayed against the remote collection."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class PendingChange:
    """
    Intent to apply one mutation to the remote replica.

    Attributes:
        note_id: Target note id
        action: create, update or delete
        note: Snapshot of the note to push (absent for delete)
        timestamp: When the change was recorded
    """

    note_id: str
    action: ChangeAction
    note: Note | None = None
    timestamp: str = field(default_factory=utc_now_iso)

    def __post_init__(self) -> None:
        if not self.note_id:
            raise ValueError("PendingChange.note_id must not be empty")
        try:
            self.action = ChangeAction(self.action)
        except ValueError as e:
            valid = ", ".join(a.value for a in ChangeAction)
            raise ValueError(f"Invalid action '{self.action}'. Must be one of: {valid}") from e

        if self.action is ChangeAction.DELETE:
            self.note = None
        elif self.note is None:
            raise ValueError(f"A '{self.action.value}' change requires a note snapshot")
        elif self.note.id != self.note_id:
            raise ValueError(f"Note snapshot id {self.note.id!r} does not match {self.note_id!r}")

    @classmethod
    def for_save(cls, note: Note, prefix: str = LOCAL_ID_PREFIX) -> "PendingChange":
        """Create for local-only ids, update otherwise."""
        action = ChangeAction.CREATE if note.is_local(prefix) else ChangeAction.UPDATE
        return cls(note_id=note.id, action=action, note=note.copy(is_dirty=True))

    @classmethod
    def for_delete(cls, note_id: str) -> "PendingChange":
        return cls(note_id=note_id, action=ChangeAction.DELETE)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "noteId": self.note_id,
            "action": self.action.value,
            "timestamp": self.timestamp,
        }
        if self.note is not None:
            data["note"] = self.note.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PendingChange":
        note_data = data.get("note")
        return cls(
            note_id=str(data["noteId"]),
            action=data["action"],
            note=Note.from_dict(note_data) if note_data else None,
            timestamp=data.get("timestamp") or utc_now_iso(),
        )
