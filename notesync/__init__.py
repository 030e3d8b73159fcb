"""notesync - offline-first notes with remote synchronization."""

from notesync.version import get_version

__version__ = get_version()
