#!/usr/bin/env python3
"""Command-line interface for notesync.

This module provides CLI commands over the note commands and sync engine.

Commands:
    list-notes [--tag T]          List notes (all given tags must match)
    show-note <id>                Show details of a specific note
    new-note <title> [--tag T]    Create and submit a new note
    edit-note <id> <title>        Edit a note's title (and tags with --tag)
    delete-note <id>              Delete a note
    list-tags                     List all tags in use
    refresh                       Reconcile with the server now
    status                        Show sync state counts and connectivity
    conflicts                     List unresolved sync conflicts
    resolve <id> <choice>         Resolve a conflict (keep-local / keep-remote)

Note IDs may be abbreviated to any unique prefix.
"""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from .core.config import Config
from .core.conflicts import Conflict, ConflictManager, ResolutionChoice
from .core.connectivity import ConnectivityProbe, RemoteConnectivityProbe, StaticConnectivity
from .core.database import Database, LocalStoreError
from .core.models import Note
from .core.notes import NoteCommands
from .core.remote import HttpRemoteStore, RemoteStore
from .core.sync import RefreshResult, SyncEngine
from .core.timestamp_utils import format_timestamp, to_iso
from .core.validation import ValidationError


@dataclass
class Services:
    """Everything a command needs, wired from the configuration."""

    config: Config
    db: Database
    remote: RemoteStore
    connectivity: ConnectivityProbe
    engine: SyncEngine
    commands: NoteCommands

    def close(self) -> None:
        self.db.close()


def build_services(
    config: Config,
    offline: bool = False,
    remote: Optional[RemoteStore] = None,
    connectivity: Optional[ConnectivityProbe] = None,
) -> Services:
    """Open the Local Store and wire the engine and commands.

    Args:
        config: Loaded configuration
        offline: Force the offline probe (no network calls)
        remote: Remote Store override (default: HTTP client from config)
        connectivity: Probe override (default: ping the Remote Store)
    """
    db_path = config.get_database_file()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    db = Database(db_path)

    if remote is None:
        remote = HttpRemoteStore(config.get_server_url(), timeout=config.get_request_timeout())
    if connectivity is None:
        connectivity = StaticConnectivity(False) if offline else RemoteConnectivityProbe(remote)

    engine = SyncEngine.from_config(db, config, remote, connectivity)
    return Services(
        config=config,
        db=db,
        remote=remote,
        connectivity=connectivity,
        engine=engine,
        commands=NoteCommands(db, engine),
    )


def note_to_dict(note: Note) -> Dict[str, Any]:
    """JSON-serialisable view of a note."""
    return {
        "local_id": note.local_id,
        "server_id": note.server_id,
        "title": note.title,
        "tags": list(note.tags),
        "created_at": to_iso(note.created_at),
        "updated_at": to_iso(note.updated_at),
        "state": note.state.value,
        "pending_delete": note.pending_delete.value,
        "pending_edit": note.pending_edit.value,
    }


def format_note(note: Note) -> str:
    lines = [
        f"ID: {note.local_id}",
        f"Created: {format_timestamp(note.created_at)}",
        f"Updated: {format_timestamp(note.updated_at)}",
    ]
    if note.server_id:
        lines.append(f"Server ID: {note.server_id}")
    if note.tags:
        lines.append(f"Tags: {', '.join(note.tags)}")
    if note.sync_label:
        lines.append(f"Sync: {note.sync_label}")
    lines.append(f"\n{note.title}")
    return "\n".join(lines)


def resolve_note_id(commands: NoteCommands, prefix: str) -> str:
    """Expand a unique ID prefix to a full local ID.

    Raises:
        ValidationError: If no note or more than one note matches
    """
    prefix = prefix.replace("-", "").lower()
    matches = [n.local_id for n in commands.list_notes() if n.local_id.startswith(prefix)]
    if not matches:
        raise ValidationError("note_id", f"no note matches '{prefix}'")
    if len(matches) > 1:
        raise ValidationError("note_id", f"'{prefix}' is ambiguous ({len(matches)} notes)")
    return matches[0]


def print_refresh_result(result: RefreshResult, fmt: str) -> None:
    if fmt == "json":
        print(json.dumps({
            "success": result.success,
            "skipped": result.skipped,
            "offline": result.offline,
            "created": result.created,
            "deleted": result.deleted,
            "pushed_edits": result.pushed_edits,
            "adopted": result.adopted,
            "inserted": result.inserted,
            "updated": result.updated,
            "pruned": result.pruned,
            "conflicts": result.conflicts,
            "errors": result.errors,
        }, indent=2))
        return

    if result.offline:
        print("Offline; nothing was synced.")
        return
    if result.skipped:
        print("A refresh is already running.")
        return
    print("Refresh completed:" if result.success else "Refresh finished with errors:")
    print(f"  Pushed: {result.created} created, {result.pushed_edits} edited, {result.deleted} deleted")
    print(f"  Pulled: {result.inserted} new, {result.updated} updated, {result.pruned} removed")
    if result.conflicts:
        print(f"  Conflicts: {result.conflicts} (see 'conflicts')")
    for error in result.errors:
        print(f"  - {error}")


def cmd_list_notes(services: Services, args: argparse.Namespace) -> int:
    notes = services.commands.list_notes(tags=args.tag)

    if args.format == "json":
        print(json.dumps([note_to_dict(n) for n in notes], indent=2, ensure_ascii=False))
        return 0

    if not notes:
        print("No notes found.")
        return 0

    for i, note in enumerate(notes):
        if i > 0:
            print("\n" + "=" * 60 + "\n")
        print(f"ID: {note.local_id} | Created: {format_timestamp(note.created_at)}")
        if note.tags:
            print(f"Tags: {', '.join(note.tags)}")
        if note.sync_label:
            print(f"[{note.sync_label}]")
        print(note.title)
    return 0


def cmd_show_note(services: Services, args: argparse.Namespace) -> int:
    local_id = resolve_note_id(services.commands, args.note_id)
    note = services.commands.get_note(local_id)
    if args.format == "json":
        print(json.dumps(note_to_dict(note), indent=2, ensure_ascii=False))
    else:
        print(format_note(note))
    return 0


def cmd_new_note(services: Services, args: argparse.Namespace) -> int:
    """Create a note and submit it (pushed immediately when online)."""
    title = args.title
    if title is None and not sys.stdin.isatty():
        title = sys.stdin.read().strip()
    note = services.commands.create_note(title or "", args.tag)
    stored = services.commands.submit_note(note)

    if args.format == "json":
        print(json.dumps(note_to_dict(stored), indent=2, ensure_ascii=False))
    else:
        suffix = "" if stored.server_id else " (pending sync)"
        print(f"Created note {stored.local_id}{suffix}")
    return 0


def cmd_edit_note(services: Services, args: argparse.Namespace) -> int:
    local_id = resolve_note_id(services.commands, args.note_id)
    stored = services.commands.edit_note(local_id, args.title, args.tag)
    if stored is None:
        print(f"Error: Note with ID {args.note_id} not found.", file=sys.stderr)
        return 1

    if args.format == "json":
        print(json.dumps(note_to_dict(stored), indent=2, ensure_ascii=False))
    else:
        suffix = f" ({stored.sync_label.lower()})" if stored.sync_label else ""
        print(f"Updated note {stored.local_id}{suffix}")
    return 0


def cmd_delete_note(services: Services, args: argparse.Namespace) -> int:
    local_id = resolve_note_id(services.commands, args.note_id)
    services.commands.delete_note(local_id)
    remaining = services.commands.get_note(local_id)

    if args.format == "json":
        print(json.dumps({"local_id": local_id, "deleted": remaining is None,
                          "pending": remaining is not None}))
    elif remaining is None:
        print(f"Deleted note {local_id}")
    else:
        print(f"Note {local_id} marked for deletion (pending sync)")
    return 0


def cmd_list_tags(services: Services, args: argparse.Namespace) -> int:
    tags = services.commands.available_tags()
    if args.format == "json":
        print(json.dumps(tags))
    elif not tags:
        print("No tags found.")
    else:
        for tag in tags:
            print(tag)
    return 0


def cmd_refresh(services: Services, args: argparse.Namespace) -> int:
    result = services.commands.refresh()
    print_refresh_result(result, args.format)
    return 0 if result.success or result.offline else 1


def cmd_status(services: Services, args: argparse.Namespace) -> int:
    counts = services.db.count_by_state()
    online = services.engine.is_online()
    unresolved = ConflictManager(services.db).get_unresolved_count()

    if args.format == "json":
        print(json.dumps({
            "server_url": services.config.get_server_url(),
            "online": online,
            "notes": counts,
            "unresolved_conflicts": unresolved,
        }, indent=2))
        return 0

    print(f"Server: {services.config.get_server_url()} ({'online' if online else 'offline'})")
    print(f"Database: {services.config.get_database_file()}")
    print("Notes:")
    for state, count in counts.items():
        print(f"  {state}: {count}")
    total_conflicts = sum(unresolved.values())
    if total_conflicts:
        print(f"Unresolved conflicts: {total_conflicts}")
    return 0


def _conflict_to_dict(conflict: Conflict) -> Dict[str, Any]:
    return {
        "id": conflict.id,
        "type": conflict.conflict_type.value,
        "local_id": conflict.local_id,
        "server_id": conflict.server_id,
        "local": {
            "title": conflict.local_title,
            "tags": list(conflict.local_tags),
            "updated_at": to_iso(conflict.local_updated_at),
        },
        "remote": None if conflict.remote_title is None else {
            "title": conflict.remote_title,
            "tags": list(conflict.remote_tags or ()),
            "updated_at": to_iso(conflict.remote_updated_at),
        },
        "created_at": to_iso(conflict.created_at),
    }


def cmd_conflicts(services: Services, args: argparse.Namespace) -> int:
    conflicts: List[Conflict] = ConflictManager(services.db).get_conflicts()

    if args.format == "json":
        print(json.dumps([_conflict_to_dict(c) for c in conflicts], indent=2, ensure_ascii=False))
        return 0

    if not conflicts:
        print("No unresolved conflicts.")
        return 0

    for conflict in conflicts:
        print(f"Conflict {conflict.id} [{conflict.conflict_type.value}] note {conflict.local_id}")
        print(f"  Local:  {conflict.local_title} {list(conflict.local_tags)}")
        if conflict.remote_title is not None:
            print(f"  Remote: {conflict.remote_title} {list(conflict.remote_tags or ())}")
        else:
            print("  Remote: deleted")
    return 0


def cmd_resolve(services: Services, args: argparse.Namespace) -> int:
    choice = ResolutionChoice(args.choice.replace("-", "_"))
    conflict = ConflictManager(services.db).resolve(args.conflict_id, choice)
    if args.format == "json":
        print(json.dumps({"id": conflict.id, "resolution": choice.value}))
    else:
        print(f"Resolved conflict {conflict.id}: {args.choice}")
    return 0


COMMANDS = {
    "list-notes": cmd_list_notes,
    "show-note": cmd_show_note,
    "new-note": cmd_new_note,
    "edit-note": cmd_edit_note,
    "delete-note": cmd_delete_note,
    "list-tags": cmd_list_tags,
    "refresh": cmd_refresh,
    "status": cmd_status,
    "conflicts": cmd_conflicts,
    "resolve": cmd_resolve,
}


def add_cli_subparser(subparsers: argparse._SubParsersAction) -> None:
    """Add CLI subparser and its commands.

    Args:
        subparsers: Parent subparsers object to add CLI parser to
    """
    cli_parser = subparsers.add_parser(
        "cli",
        help="Command-line interface",
        description="Manage notes and sync from the command line",
    )
    cli_parser.add_argument(
        "--format", choices=["text", "json"], default="text",
        help="Output format (default: text)",
    )
    cli_parser.add_argument(
        "--offline", action="store_true",
        help="Do not contact the server; changes stay pending",
    )
    cli_subparsers = cli_parser.add_subparsers(dest="cli_command", help="CLI commands")

    list_parser = cli_subparsers.add_parser("list-notes", help="List notes")
    list_parser.add_argument("--tag", action="append", help="Only notes with this tag (repeatable)")

    show_parser = cli_subparsers.add_parser("show-note", help="Show a note")
    show_parser.add_argument("note_id", help="Note ID or unique prefix")

    new_parser = cli_subparsers.add_parser("new-note", help="Create a new note")
    new_parser.add_argument("title", nargs="?", help="Note title (reads stdin if omitted)")
    new_parser.add_argument("--tag", action="append", help="Tag (repeatable)")

    edit_parser = cli_subparsers.add_parser("edit-note", help="Edit a note")
    edit_parser.add_argument("note_id", help="Note ID or unique prefix")
    edit_parser.add_argument("title", help="New title")
    edit_parser.add_argument("--tag", action="append", help="Replace tags (repeatable)")

    delete_parser = cli_subparsers.add_parser("delete-note", help="Delete a note")
    delete_parser.add_argument("note_id", help="Note ID or unique prefix")

    cli_subparsers.add_parser("list-tags", help="List all tags in use")
    cli_subparsers.add_parser("refresh", help="Reconcile with the server now")
    cli_subparsers.add_parser("status", help="Show sync status")
    cli_subparsers.add_parser("conflicts", help="List unresolved conflicts")

    resolve_parser = cli_subparsers.add_parser("resolve", help="Resolve a conflict")
    resolve_parser.add_argument("conflict_id", help="Conflict ID")
    resolve_parser.add_argument("choice", choices=["keep-local", "keep-remote"])


def run_cli(
    config_dir: Optional[Path],
    args: argparse.Namespace,
    services: Optional[Services] = None,
) -> int:
    """Run a CLI command.

    Args:
        config_dir: Custom configuration directory or None for default
        args: Parsed command-line arguments (should have cli_command attribute)
        services: Pre-wired services (tests); built from config if None

    Returns:
        Exit code (0 for success, 1 for error)
    """
    if not getattr(args, "cli_command", None):
        print("Error: No CLI command specified. Use --help for available commands.", file=sys.stderr)
        return 1

    handler = COMMANDS.get(args.cli_command)
    if handler is None:
        print(f"Error: Unknown command '{args.cli_command}'", file=sys.stderr)
        return 1

    owns_services = services is None
    if services is None:
        services = build_services(Config(config_dir=config_dir), offline=args.offline)

    try:
        return handler(services, args)
    except ValidationError as e:
        print(f"Error: Invalid {e.field} - {e.message}", file=sys.stderr)
        return 1
    except LocalStoreError as e:
        print(f"Error: Local store failure - {e}", file=sys.stderr)
        return 1
    finally:
        if owns_services:
            services.close()
