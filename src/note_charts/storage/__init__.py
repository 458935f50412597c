"""Storage module: read-only note index accessors consumed by the query engine."""

from note_charts.storage.note_index import CallbackNoteIndex, InMemoryNoteIndex, NoteIndex, NoteRecord

__all__ = ["CallbackNoteIndex", "InMemoryNoteIndex", "NoteIndex", "NoteRecord"]
