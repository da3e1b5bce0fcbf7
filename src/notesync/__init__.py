"""notesync: offline-first tagged notes with server sync."""

__version__ = "0.1.0"
