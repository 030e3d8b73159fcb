"""REST client for the remote note collection."""

import logging
from typing import Any

import httpx

from notesync.core.errors import ConnectivityError, RemoteError
from notesync.core.models import LOCAL_ID_PREFIX, Note, is_local_id

logger = logging.getLogger(__name__)

# Category key for SeverityOverrideFilter (general.log_overrides)
_HTTP_LOG = {"log_category": "http"}


class RemoteNotesClient:
    """
    API client for the remote note collection.

    Exposes the four REST operations of the collection resource:
    list (GET), create (POST), update (PUT) and delete (DELETE).
    Every operation is idempotent by note id except create, which is only
    issued for local-only ids.
    """

    def __init__(
        self,
        base_url: str,
        *,
        collection_path: str = "/notes",
        token: str | None = None,
        timeout: float = 30.0,
        local_id_prefix: str = LOCAL_ID_PREFIX,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Server URL (e.g., https://api.example.com/api/v1)
            collection_path: Path of the note collection below base_url
            token: Optional bearer token
            timeout: Request timeout in seconds
            local_id_prefix: Prefix marking ids never acknowledged remotely
            transport: Custom httpx transport (used by tests)
        """
        self.base_url = base_url.rstrip("/")
        self.collection_path = "/" + collection_path.strip("/")
        self.local_id_prefix = local_id_prefix

        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "RemoteNotesClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _note_path(self, note_id: str) -> str:
        return f"{self.collection_path}/{note_id}"

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """
        Send a request and map failures onto the sync error taxonomy.

        Raises:
            ConnectivityError: If the server cannot be reached
            RemoteError: If the server answers with a non-2xx status
        """
        try:
            response = await self._client.request(method, path, **kwargs)
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as e:
            logger.debug(f"{method} {path} failed: HTTP {e.response.status_code}", extra=_HTTP_LOG)
            raise RemoteError(e.response.status_code, e.response.text) from e
        except httpx.TransportError as e:
            logger.debug(f"{method} {path} failed: {e}", extra=_HTTP_LOG)
            raise ConnectivityError(f"Unable to reach {self.base_url}: {e}") from e

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise RemoteError(
                response.status_code, response.text[:200], message="Remote returned invalid JSON"
            ) from e

    @staticmethod
    def _parse_note(data: Any) -> Note:
        if not isinstance(data, dict) or data.get("id") in (None, ""):
            raise RemoteError(200, str(data), message="Remote returned a note without an id")
        try:
            return Note.from_dict(data).copy(is_dirty=False)
        except ValueError as e:
            raise RemoteError(200, str(data), message=f"Remote returned a malformed note: {e}") from e

    @staticmethod
    def _flatten(payload: Any) -> list[dict[str, Any]]:
        """Accept a plain array of notes or an array of ``{"notes": [...]}`` wrappers."""
        if isinstance(payload, dict):
            payload = payload.get("notes", [])
        if not isinstance(payload, list):
            raise RemoteError(200, str(payload)[:200], message="Remote note list is not an array")

        items: list[dict[str, Any]] = []
        for item in payload:
            if not isinstance(item, dict):
                continue
            nested = item.get("notes")
            if isinstance(nested, list):
                items.extend(n for n in nested if isinstance(n, dict))
            else:
                items.append(item)
        return items

    async def list_notes(self, limit: int | None = None) -> list[Note]:
        """
        Fetch the remote snapshot.

        Entries without an id and entries flagged as deleted are dropped.

        Args:
            limit: Optional maximum number of notes

        Returns:
            Clean (non-dirty) notes
        """
        params = {"limit": limit} if limit is not None else None
        response = await self._request("GET", self.collection_path, params=params)

        notes = []
        for item in self._flatten(self._json(response)):
            if item.get("id") in (None, "") or item.get("deleted"):
                continue
            try:
                notes.append(Note.from_dict(item).copy(deleted=False, is_dirty=False))
            except ValueError as e:
                logger.warning(f"Skipping malformed remote note {item.get('id')}: {e}")

        logger.debug(f"Fetched {len(notes)} notes from remote")
        return notes

    async def create_note(self, note: Note) -> Note:
        """
        Create a note remotely.

        Args:
            note: Note to create; its id is not sent

        Returns:
            The created note including its server-assigned id
        """
        response = await self._request("POST", self.collection_path, json=note.to_payload())
        created = self._parse_note(self._json(response))
        logger.info(f"Created note {created.id} on remote (was {note.id})")
        return created

    async def update_note(self, note: Note) -> Note:
        """
        Update a note remotely.

        A local-only id is redirected to :meth:`create_note`.

        Returns:
            The updated note as stored remotely
        """
        if is_local_id(note.id, self.local_id_prefix):
            logger.debug(f"Note {note.id} was never pushed, creating instead of updating")
            return await self.create_note(note)

        response = await self._request("PUT", self._note_path(note.id), json=note.to_payload())
        updated = self._parse_note(self._json(response))
        logger.info(f"Updated note {updated.id} on remote")
        return updated

    async def delete_note(self, note_id: str) -> bool:
        """
        Delete a note remotely.

        Local-only ids are skipped without a request and a 404 counts as
        success.

        Returns:
            True if a request was sent
        """
        if is_local_id(note_id, self.local_id_prefix):
            logger.debug(f"Skipping remote delete for local-only note {note_id}")
            return False

        try:
            await self._request("DELETE", self._note_path(note_id))
        except RemoteError as e:
            if e.status_code != 404:
                raise
            logger.debug(f"Note {note_id} already absent on remote")
        else:
            logger.info(f"Deleted note {note_id} on remote")
        return True

    async def check_connection(self) -> bool:
        """
        Probe the collection with a single-item list.

        Returns:
            True if the remote answered with a 2xx status
        """
        try:
            await self._request("GET", self.collection_path, params={"limit": 1})
        except (ConnectivityError, RemoteError) as e:
            logger.debug(f"Connectivity probe failed: {e}")
            return False
        return True
