"""Core sync, storage and validation logic for notesync."""
