"""Remote Store client for notesync.

This module defines the Remote Store interface consumed by the sync engine
and an HTTP implementation that talks to the notes server over JSON.

Wire format (camelCase, as served by web.py):
    POST   /api/notes          {title, tags, localId, createdAt, updatedAt} -> 201 {id}
    GET    /api/notes          -> [{_id, localId, title, tags, createdAt, updatedAt}]
    PUT    /api/notes/<id>     {title, tags} -> 200
    DELETE /api/notes/<id>     -> 200
    GET    /api/status         -> 200 {status: "ok"}
"""

from __future__ import annotations

import abc
import logging
from typing import Any, Dict, List, Optional, Sequence

import requests

from .models import Note, RemoteNote
from .timestamp_utils import parse_iso, to_iso
from .validation import ValidationError, normalize_tags

logger = logging.getLogger(__name__)

__all__ = [
    "RemoteStore",
    "HttpRemoteStore",
    "RemoteStoreError",
    "NetworkError",
    "NotFoundError",
    "note_to_payload",
    "remote_note_from_payload",
]


class RemoteStoreError(Exception):
    """Base class for Remote Store failures."""


class NetworkError(RemoteStoreError):
    """The remote call failed, timed out or returned an unusable response."""


class NotFoundError(RemoteStoreError):
    """The server has no note with the requested ID."""

    def __init__(self, server_id: str) -> None:
        self.server_id = server_id
        super().__init__(f"Note {server_id} not found on server")


def note_to_payload(note: Note) -> Dict[str, Any]:
    """Build the create payload; localId is round-tripped for the adopt pass."""
    return {
        "title": note.title,
        "tags": list(note.tags),
        "localId": note.local_id,
        "createdAt": to_iso(note.created_at),
        "updatedAt": to_iso(note.updated_at),
    }


def remote_note_from_payload(data: Dict[str, Any]) -> RemoteNote:
    """Parse one entry of the list response.

    Raises:
        NetworkError: If required fields are missing or malformed
    """
    try:
        server_id = data.get("_id") or data["id"]
        return RemoteNote(
            server_id=str(server_id),
            title=data["title"],
            tags=normalize_tags(data.get("tags") or ()),
            created_at=parse_iso(data.get("createdAt")),
            updated_at=parse_iso(data.get("updatedAt")),
            client_local_id=data.get("localId"),
        )
    except (KeyError, TypeError, ValueError, ValidationError) as e:
        raise NetworkError(f"Malformed note in server response: {e}") from e


class RemoteStore(abc.ABC):
    """The authoritative server replica, keyed by server_id."""

    @abc.abstractmethod
    def create_note(self, note: Note) -> str:
        """Create a note remotely and return its new server_id."""

    @abc.abstractmethod
    def list_notes(self) -> List[RemoteNote]:
        """List all server notes, newest first by created_at."""

    @abc.abstractmethod
    def update_note(self, server_id: str, title: str, tags: Sequence[str]) -> None:
        """Replace title and tags. Raises NotFoundError for unknown IDs."""

    @abc.abstractmethod
    def delete_note(self, server_id: str) -> None:
        """Delete a note. Raises NotFoundError if it is already gone."""

    def ping(self) -> bool:
        """Return True if the server is reachable."""
        try:
            self.list_notes()
            return True
        except RemoteStoreError:
            return False


class HttpRemoteStore(RemoteStore):
    """Remote Store over the JSON HTTP API using requests."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10,
        session: Optional[requests.Session] = None,
    ) -> None:
        """Initialize HTTP client.

        Args:
            base_url: Server root, e.g. http://127.0.0.1:8787
            timeout: Per-request timeout in seconds
            session: Optional requests session (connection pooling, test adapters)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _request(
        self,
        method: str,
        path: str,
        json_body: Optional[Dict[str, Any]] = None,
        server_id: Optional[str] = None,
    ) -> Any:
        """Make a request and return the decoded JSON body.

        Raises:
            NotFoundError: On HTTP 404 when server_id is given
            NetworkError: On connection errors, timeouts, or other HTTP errors
        """
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(
                method, url, json=json_body, timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            logger.warning(f"Request to {url} failed: {e}")
            raise NetworkError(f"Connection failed to {url}: {e}") from e

        if response.status_code == 404 and server_id is not None:
            raise NotFoundError(server_id)

        if response.status_code >= 400:
            try:
                error_msg = response.json().get("error", response.reason)
            except ValueError:
                error_msg = response.reason
            logger.warning(f"Request to {url} failed: HTTP {response.status_code}: {error_msg}")
            raise NetworkError(f"Server error: HTTP {response.status_code}: {error_msg}")

        try:
            return response.json()
        except ValueError as e:
            raise NetworkError(f"Invalid JSON from {url}") from e

    def create_note(self, note: Note) -> str:
        data = self._request("POST", "/api/notes", json_body=note_to_payload(note))
        try:
            return str(data["id"])
        except (KeyError, TypeError) as e:
            raise NetworkError("Create response did not include an id") from e

    def list_notes(self) -> List[RemoteNote]:
        data = self._request("GET", "/api/notes")
        if not isinstance(data, list):
            raise NetworkError("List response is not a JSON array")
        return [remote_note_from_payload(item) for item in data]

    def update_note(self, server_id: str, title: str, tags: Sequence[str]) -> None:
        self._request(
            "PUT",
            f"/api/notes/{server_id}",
            json_body={"title": title, "tags": list(tags)},
            server_id=server_id,
        )

    def delete_note(self, server_id: str) -> None:
        self._request("DELETE", f"/api/notes/{server_id}", server_id=server_id)

    def ping(self) -> bool:
        try:
            data = self._request("GET", "/api/status")
        except RemoteStoreError:
            return False
        return isinstance(data, dict) and data.get("status") == "ok"
