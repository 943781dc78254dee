"""Ordered, identity-stable collection of news records for one dashboard session."""

from __future__ import annotations

from threading import Lock
from typing import Any, Iterable

from .errors import RecordNotFound
from .models import NewsRecord

_IMMUTABLE_FIELDS = {"id"}


class RecordStore:
    """
    Records keyed by a stable id, kept in display order.

    Front insertion shifts positions but never ids, so callers that captured an
    id before an await keep addressing the same record. ``generation`` changes on
    every ``reset`` and lets late results from a previous session be discarded.
    """

    def __init__(self) -> None:
        self._order: list[str] = []
        self._records: dict[str, NewsRecord] = {}
        self._generation = 0
        self._lock = Lock()

    @property
    def generation(self) -> int:
        return self._generation

    def is_current(self, generation: int) -> bool:
        return generation == self._generation

    def reset(self, records: Iterable[NewsRecord] = ()) -> int:
        """Drop every record (optionally seeding new ones) and start a new generation."""
        with self._lock:
            self._order = []
            self._records = {}
            self._generation += 1
            generation = self._generation
        self.extend(records)
        return generation

    def append(self, record: NewsRecord, *, at_front: bool = False) -> str:
        with self._lock:
            if record.id in self._records:
                raise ValueError(f"Record {record.id} is already in the store.")
            self._records[record.id] = record
            if at_front:
                self._order.insert(0, record.id)
            else:
                self._order.append(record.id)
        return record.id

    def extend(self, records: Iterable[NewsRecord]) -> list[str]:
        return [self.append(record) for record in records]

    def get(self, record_id: str) -> NewsRecord:
        with self._lock:
            try:
                return self._records[record_id]
            except KeyError:
                raise RecordNotFound(f"Unknown record {record_id}.") from None

    def index_of(self, record_id: str) -> int:
        with self._lock:
            try:
                return self._order.index(record_id)
            except ValueError:
                raise RecordNotFound(f"Unknown record {record_id}.") from None

    def id_at(self, index: int) -> str:
        with self._lock:
            if not 0 <= index < len(self._order):
                raise RecordNotFound(f"No record at position {index}.")
            return self._order[index]

    def update(self, record_id: str, **patch: Any) -> NewsRecord:
        """Replace the record with a copy carrying ``patch``; other fields are kept."""
        unknown = set(patch) - set(NewsRecord.model_fields)
        if unknown:
            raise ValueError(f"Unknown record field(s): {', '.join(sorted(unknown))}")
        if _IMMUTABLE_FIELDS & set(patch):
            raise ValueError("Record ids cannot be changed.")
        with self._lock:
            current = self._records.get(record_id)
            if current is None:
                raise RecordNotFound(f"Unknown record {record_id}.")
            updated = NewsRecord.model_validate({**current.model_dump(), **patch})
            self._records[record_id] = updated
        return updated

    def update_at(self, index: int, **patch: Any) -> NewsRecord:
        """Positional variant of ``update``; the index is resolved to an id immediately."""
        return self.update(self.id_at(index), **patch)

    def all(self) -> list[NewsRecord]:
        with self._lock:
            return [self._records[record_id] for record_id in self._order]

    def __len__(self) -> int:
        with self._lock:
            return len(self._order)

    def __contains__(self, record_id: object) -> bool:
        with self._lock:
            return record_id in self._records
