"""
Pytest configuration and fixtures for note chart tests.
"""

import sys
from datetime import datetime
from pathlib import Path

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from note_charts.storage.note_index import InMemoryNoteIndex, NoteRecord  # noqa: E402


@pytest.fixture(scope="session")
def project_root():
    """Return project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def reference_now():
    """Fixed 'now' so relative-date clauses are deterministic."""
    return datetime(2024, 1, 15, 10, 30)


@pytest.fixture
def make_record():
    """Factory for NoteRecord instances."""

    def _make(path: str, **properties) -> NoteRecord:
        return NoteRecord(path=path, properties=properties)

    return _make


@pytest.fixture
def project_records(make_record):
    """Three project notes used across the aggregation scenarios."""
    return [
        make_record("Projects/a.md", status="open", priority=5, date="2024-01-10"),
        make_record("Projects/b.md", status="done", priority=2, date="2024-01-10"),
        make_record("Projects/c.md", status="open", priority=4, date="2024-01-12"),
    ]


@pytest.fixture
def mixed_index(make_record, project_records):
    """Index with project notes plus notes outside Projects/ and tagged notes."""
    return InMemoryNoteIndex(
        [
            *project_records,
            make_record("Areas/x.md", status="open", priority=1, date="2024-01-11", tags=["#work"]),
            make_record("Inbox.md", priority="7", tags="#work #urgent"),
            make_record("Projects/sub/d.md", status="open", priority="n/a", date="2024-01-10"),
        ]
    )
