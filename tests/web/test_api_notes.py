"""Web API tests for the reference notes server.

Tests the /api/notes CRUD endpoints and /api/status.
"""

from __future__ import annotations

import json
from typing import Generator

import pytest
from flask import Flask
from flask.testing import FlaskClient

from notesync.web import create_app


@pytest.fixture
def web_app() -> Generator[Flask, None, None]:
    """Create Flask app backed by an in-memory server store."""
    app = create_app(db_path=":memory:")
    app.config["TESTING"] = True
    yield app
    app.config["NOTE_STORE"].close()


@pytest.fixture
def client(web_app: Flask) -> FlaskClient:
    return web_app.test_client()


def create(client: FlaskClient, **body) -> str:
    response = client.post("/api/notes", json=body)
    assert response.status_code == 201, response.data
    return json.loads(response.data)["id"]


@pytest.mark.web
class TestStatus:
    def test_status(self, client: FlaskClient) -> None:
        response = client.get("/api/status")
        assert response.status_code == 200
        assert json.loads(response.data) == {"status": "ok"}


@pytest.mark.web
class TestCreateNote:
    """Test POST /api/notes endpoint."""

    def test_create_and_list(self, client: FlaskClient) -> None:
        note_id = create(client, title="Buy milk", tags=["Errand"], localId="abc",
                         createdAt="2024-01-01T00:00:00Z")

        notes = json.loads(client.get("/api/notes").data)
        assert len(notes) == 1
        note = notes[0]
        assert note["_id"] == note_id
        assert note["title"] == "Buy milk"
        assert note["tags"] == ["errand"]
        assert note["localId"] == "abc"
        assert note["createdAt"].startswith("2024-01-01T00:00:00")
        assert note["updatedAt"]

    def test_title_is_trimmed(self, client: FlaskClient) -> None:
        note_id = create(client, title="  spaced  ")
        note = json.loads(client.get(f"/api/notes/{note_id}").data)
        assert note["title"] == "spaced"
        assert note["tags"] == []

    @pytest.mark.parametrize("body", [
        {"title": ""},
        {"title": "   "},
        {"tags": ["a"]},
        {"title": 5},
        {"title": "ok", "tags": ["a", "A"]},
        {"title": "ok", "tags": ["a", " "]},
        {"title": "ok", "tags": "a"},
        {"title": "ok", "createdAt": "yesterday"},
        {"title": "ok", "createdAt": 12},
    ])
    def test_validation_errors(self, client: FlaskClient, body: dict) -> None:
        response = client.post("/api/notes", json=body)
        assert response.status_code == 400
        assert "error" in json.loads(response.data)

    def test_non_json_body(self, client: FlaskClient) -> None:
        response = client.post("/api/notes", data="title=x")
        assert response.status_code == 400

    def test_newest_first(self, client: FlaskClient) -> None:
        create(client, title="old", createdAt="2024-01-01T00:00:00Z")
        create(client, title="new", createdAt="2024-06-01T00:00:00Z")
        titles = [n["title"] for n in json.loads(client.get("/api/notes").data)]
        assert titles == ["new", "old"]


@pytest.mark.web
class TestUpdateNote:
    """Test PUT /api/notes/<id> endpoint."""

    def test_update(self, client: FlaskClient) -> None:
        note_id = create(client, title="Before", tags=["a"])
        before = json.loads(client.get(f"/api/notes/{note_id}").data)

        response = client.put(f"/api/notes/{note_id}", json={"title": "After", "tags": ["b"]})
        assert response.status_code == 200

        after = json.loads(client.get(f"/api/notes/{note_id}").data)
        assert after["title"] == "After"
        assert after["tags"] == ["b"]
        assert after["updatedAt"] >= before["updatedAt"]

    def test_update_without_tags_keeps_them(self, client: FlaskClient) -> None:
        note_id = create(client, title="Before", tags=["a"])
        client.put(f"/api/notes/{note_id}", json={"title": "After"})
        assert json.loads(client.get(f"/api/notes/{note_id}").data)["tags"] == ["a"]

    def test_update_unknown(self, client: FlaskClient) -> None:
        response = client.put("/api/notes/missing", json={"title": "x"})
        assert response.status_code == 404

    def test_update_empty_title(self, client: FlaskClient) -> None:
        note_id = create(client, title="Before")
        response = client.put(f"/api/notes/{note_id}", json={"title": " "})
        assert response.status_code == 400


@pytest.mark.web
class TestDeleteNote:
    """Test DELETE /api/notes/<id> endpoint."""

    def test_delete(self, client: FlaskClient) -> None:
        note_id = create(client, title="Doomed")
        assert client.delete(f"/api/notes/{note_id}").status_code == 200
        assert client.get(f"/api/notes/{note_id}").status_code == 404
        assert client.delete(f"/api/notes/{note_id}").status_code == 404

    def test_method_not_allowed(self, client: FlaskClient) -> None:
        response = client.patch("/api/notes")
        assert response.status_code == 405
        assert json.loads(response.data)["error"] == "Method not allowed"
