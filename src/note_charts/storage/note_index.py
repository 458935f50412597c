"""
Read-only access to the note index owned by the host.

The engine only needs a snapshot of `{path, properties}` records per query, so the
index is modelled as a capability with a single `get_all()` method. How properties
were extracted (frontmatter, inline fields, ...) is the host's business.
"""

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Protocol

import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class NoteRecord:
    """One note: its path (unique id) and its property bag."""

    path: str
    properties: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "NoteRecord":
        """
        Build a record from `{"path": ..., "properties": {...}}` (or `"props"`).

        Raises:
            ValueError: If path is missing or properties is not a mapping
        """
        path = data.get("path")
        if not path:
            raise ValueError("Note record requires a non-empty 'path'")
        properties = data.get("properties", data.get("props")) or {}
        if not isinstance(properties, Mapping):
            raise ValueError(f"Note record '{path}' properties must be a mapping")
        return cls(path=str(path), properties=MappingProxyType(dict(properties)))


class NoteIndex(Protocol):
    """Anything that can hand out the current list of note records."""

    def get_all(self) -> list[NoteRecord]: ...


def _coerce_record(item: NoteRecord | Mapping[str, Any]) -> NoteRecord:
    if isinstance(item, NoteRecord):
        return item
    return NoteRecord.from_dict(item)


class InMemoryNoteIndex:
    """
    Insertion-ordered in-memory index keyed by path.

    Re-inserting a path replaces its record in place.
    """

    def __init__(self, records: Iterable[NoteRecord | Mapping[str, Any]] | None = None):
        self._records: dict[str, NoteRecord] = {}
        for item in records or []:
            self.upsert(item)

    def upsert(self, item: NoteRecord | Mapping[str, Any]) -> NoteRecord:
        record = _coerce_record(item)
        self._records[record.path] = record
        return record

    def remove(self, path: str) -> bool:
        """Remove a record; returns False if the path was not indexed."""
        return self._records.pop(path, None) is not None

    def get(self, path: str) -> NoteRecord | None:
        return self._records.get(path)

    def get_all(self) -> list[NoteRecord]:
        return list(self._records.values())

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, path: object) -> bool:
        return path in self._records


class CallbackNoteIndex:
    """Adapts a zero-argument accessor (e.g. a host callback) to the NoteIndex protocol."""

    def __init__(self, getter: Callable[[], Iterable[NoteRecord | Mapping[str, Any]]]):
        self._getter = getter

    def get_all(self) -> list[NoteRecord]:
        records = [_coerce_record(item) for item in self._getter()]
        logger.debug("note_index_snapshot", record_count=len(records))
        return records
