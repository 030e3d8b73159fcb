import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from notesync.core.models import Note
from notesync.core.notes import NotesService
from notesync.core.queue import PendingChangeQueue
from notesync.core.store import MemoryNoteStore
from notesync.core.sync import NotesSyncEngine
from notesync.sources.remote_api import RemoteNotesClient

BASE_URL = "https://notes.test/api"
COLLECTION = "/api/notes"


class FakeRemote:
    """In-memory note collection served through httpx.MockTransport."""

    def __init__(self):
        self.notes: dict[str, dict] = {}
        self.requests: list[tuple[str, str]] = []
        self.fail_ids: set[str] = set()
        self.fail_create = False
        self.fail_list = False
        self.offline = False
        self._next_id = 1

    def seed(self, note_id: str, title: str = "", body: str = "", updated_at: str = "2024-01-01T00:00:00.000Z"):
        self.notes[note_id] = {"id": note_id, "title": title, "body": body, "updatedAt": updated_at}

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def writes(self) -> list[tuple[str, str]]:
        return [r for r in self.requests if r[0] != "GET"]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.offline:
            raise httpx.ConnectError("network unreachable", request=request)

        path = request.url.path
        self.requests.append((request.method, path))

        if path == COLLECTION:
            if request.method == "GET":
                if self.fail_list and "limit" not in request.url.params:
                    return httpx.Response(503, text="unavailable")
                return httpx.Response(200, json=list(self.notes.values()))
            if request.method == "POST":
                if self.fail_create:
                    return httpx.Response(500, text="boom")
                data = json.loads(request.content)
                note_id = f"srv-{self._next_id}"
                self._next_id += 1
                self.notes[note_id] = {"id": note_id, **data}
                return httpx.Response(201, json=self.notes[note_id])

        note_id = path.rsplit("/", 1)[-1]
        if note_id in self.fail_ids:
            return httpx.Response(500, text="boom")
        if note_id not in self.notes:
            return httpx.Response(404, json={"error": "not found"})
        if request.method == "PUT":
            self.notes[note_id] = {"id": note_id, **json.loads(request.content)}
            return httpx.Response(200, json=self.notes[note_id])
        if request.method == "DELETE":
            del self.notes[note_id]
            return httpx.Response(204)
        return httpx.Response(405)


class TickingClock:
    """Returns a strictly increasing time, one second per call."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


class Harness:
    def __init__(self, remote: FakeRemote, store=None, **engine_kwargs):
        self.remote = remote
        self.store = store if store is not None else MemoryNoteStore()
        self.clock = TickingClock()
        self.client = RemoteNotesClient(BASE_URL, transport=remote.transport)
        self.queue = PendingChangeQueue(self.store)
        self.engine = NotesSyncEngine(
            self.store, self.client, self.queue, clock=self.clock, **engine_kwargs
        )
        self.notes = NotesService(self.store, self.queue, lock=self.engine.lock, clock=self.clock)

    async def stored(self) -> dict[str, Note]:
        return {note.id: note for note in await self.store.get_all()}


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def harness(remote) -> Harness:
    return Harness(remote)


@pytest.fixture
def make_harness(remote):
    def _make(**kwargs) -> Harness:
        return Harness(remote, **kwargs)

    return _make


@pytest.fixture
def isolated_env(tmp_path, monkeypatch):
    monkeypatch.setenv("NOTESYNC_GENERAL__DATA_DIR", str(tmp_path / "data"))
    for name in ("NOTESYNC_REMOTE__BASE_URL", "NOTESYNC_REMOTE__API_USER", "NOTESYNC_REMOTE__API_TOKEN"):
        monkeypatch.delenv(name, raising=False)
    return tmp_path / "data"
