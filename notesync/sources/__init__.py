"""Remote note sources."""

from .remote_api import RemoteNotesClient

__all__ = ["RemoteNotesClient"]
