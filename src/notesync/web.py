"""Reference notes server for notesync.

This module provides the RESTful HTTP API that HttpRemoteStore talks to.
It is the authoritative replica: it assigns server IDs and stamps updatedAt.

Endpoints:
    GET    /api/status           Liveness check
    GET    /api/notes            List all notes, newest first
    POST   /api/notes            Create a note
    GET    /api/notes/<id>       Get a specific note
    PUT    /api/notes/<id>       Update a note's title and tags
    DELETE /api/notes/<id>       Delete a note

POST /api/notes body:
    - title: Note title (string, required, non-empty)
    - tags: List of tags (optional; trimmed, lowercased, must be unique)
    - localId: Client local ID, returned in list responses
    - createdAt: Client creation time (ISO-8601, optional)

PUT /api/notes/<id> body:
    - title: New title (string, required)
    - tags: New tags (optional; unchanged if omitted)
"""

from __future__ import annotations

import functools
import logging
from pathlib import Path
from typing import Any, Callable, Optional, Union

from flask import Flask, Response, jsonify, request
from flask_cors import CORS

from .core.config import Config
from .core.server_store import ServerNoteStore
from .core.timestamp_utils import parse_iso, to_iso
from .core.validation import ValidationError

logger = logging.getLogger(__name__)


def api_endpoint(func: Callable) -> Callable:
    """Decorator for consistent API error handling.

    Catches ValidationError (400) and Exception (500) with proper
    JSON error responses and logging.
    """
    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except ValidationError as e:
            return jsonify({"error": f"Invalid {e.field}: {e.message}"}), 400
        except Exception as e:
            logger.error(f"Error in {func.__name__}: {e}")
            return jsonify({"error": str(e)}), 500
    return wrapper


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("body", "must be a JSON object")
    return data


def create_app(
    config_dir: Optional[Path] = None,
    db_path: Optional[Union[Path, str]] = None,
) -> Flask:
    """Create and configure the Flask application.

    Args:
        config_dir: Custom configuration directory (default: None)
        db_path: Server database path; overrides the configured one
            (':memory:' for tests)

    Returns:
        Configured Flask application
    """
    app = Flask(__name__)
    CORS(app)

    if db_path is None:
        config = Config(config_dir=config_dir)
        db_path = Path(config.get_server_config()["database_file"])
        db_path.parent.mkdir(parents=True, exist_ok=True)

    store = ServerNoteStore(db_path)
    app.config["NOTE_STORE"] = store
    logger.info(f"Notes server initialized with database: {db_path}")

    @app.errorhandler(404)
    def not_found(error: Any) -> tuple[Response, int]:
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(error: Any) -> tuple[Response, int]:
        return jsonify({"error": "Method not allowed"}), 405

    @app.route("/api/status", methods=["GET"])
    def status() -> Response:
        return jsonify({"status": "ok"})

    @app.route("/api/notes", methods=["GET"])
    @api_endpoint
    def list_notes() -> Response:
        return jsonify(store.list_notes())

    @app.route("/api/notes", methods=["POST"])
    @api_endpoint
    def create_note() -> tuple[Response, int]:
        data = _json_body()
        title = data.get("title")
        if not isinstance(title, str):
            raise ValidationError("title", "must be a string")
        try:
            created_at = to_iso(parse_iso(data.get("createdAt")))
        except (AttributeError, TypeError, ValueError):
            raise ValidationError("createdAt", "must be an ISO-8601 timestamp") from None

        note_id = store.create_note(
            title,
            data.get("tags") or [],
            local_id=data.get("localId"),
            created_at=created_at,
        )
        logger.info(f"Created note {note_id}")
        return jsonify({"id": note_id}), 201

    @app.route("/api/notes/<note_id>", methods=["GET"])
    @api_endpoint
    def get_note(note_id: str) -> Any:
        note = store.get_note(note_id)
        if note is None:
            return jsonify({"error": "Note not found"}), 404
        return jsonify(note)

    @app.route("/api/notes/<note_id>", methods=["PUT"])
    @api_endpoint
    def update_note(note_id: str) -> Any:
        data = _json_body()
        title = data.get("title")
        if not isinstance(title, str):
            raise ValidationError("title", "must be a string")
        if not store.update_note(note_id, title, data.get("tags")):
            return jsonify({"error": "Note not found"}), 404
        logger.info(f"Updated note {note_id}")
        return jsonify({"message": "Note edited successfully"})

    @app.route("/api/notes/<note_id>", methods=["DELETE"])
    @api_endpoint
    def delete_note(note_id: str) -> Any:
        if not store.delete_note(note_id):
            return jsonify({"error": "Note not found"}), 404
        logger.info(f"Deleted note {note_id}")
        return jsonify({"message": "Note deleted successfully"})

    return app


def run_server(config_dir: Optional[Path] = None, host: Optional[str] = None,
               port: Optional[int] = None, debug: bool = False) -> None:
    """Run the notes server with Flask's built-in server."""
    config = Config(config_dir=config_dir)
    server_config = config.get_server_config()
    app = create_app(config_dir=config_dir)
    host = host or server_config["host"]
    port = port or server_config["port"]
    logger.info(f"Starting notes server on http://{host}:{port}")
    app.run(host=host, port=port, debug=debug)
