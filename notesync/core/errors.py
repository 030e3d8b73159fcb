"""Exception types raised by the sync subsystem."""


class NoteSyncError(Exception):
    """Base class for all notesync errors."""


class ConnectivityError(NoteSyncError):
    """No network path to the remote note collection."""


class RemoteError(NoteSyncError):
    """The remote collection answered with a non-2xx status."""

    def __init__(self, status_code: int, body: str = "", message: str | None = None):
        self.status_code = status_code
        self.body = body
        super().__init__(message or f"Remote returned HTTP {status_code}: {body}".rstrip(": "))


class StorageError(NoteSyncError):
    """Local persistence read or write failed."""


class NoteNotFoundError(NoteSyncError):
    """No visible note with the requested id in the local replica."""

    def __init__(self, note_id: str):
        self.note_id = note_id
        super().__init__(f"Note not found: {note_id}")
