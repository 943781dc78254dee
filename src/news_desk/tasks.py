"""Per-record, per-kind tracking of in-flight enrichment tasks."""

from __future__ import annotations

from contextlib import contextmanager
from enum import Enum
from threading import Lock
from typing import Iterator

from .errors import TaskAlreadyRunning


class TaskKind(str, Enum):
    IMAGE = "image"
    REPORT = "report"
    CONTACTS = "contacts"


class TaskRegistry:
    """
    Keyed set of in-flight (record_id, kind) pairs.

    Any number of distinct pairs may be busy at once; a pair is never busy twice.
    """

    def __init__(self) -> None:
        self._in_flight: set[tuple[str, TaskKind]] = set()
        self._lock = Lock()

    def begin(self, record_id: str, kind: TaskKind) -> bool:
        """Mark the pair busy. Returns False (no change) if it already was."""
        key = (record_id, TaskKind(kind))
        with self._lock:
            if key in self._in_flight:
                return False
            self._in_flight.add(key)
            return True

    def end(self, record_id: str, kind: TaskKind) -> None:
        """Release the pair; safe to call twice or for a pair never begun."""
        with self._lock:
            self._in_flight.discard((record_id, TaskKind(kind)))

    def is_busy(self, record_id: str, kind: TaskKind) -> bool:
        with self._lock:
            return (record_id, TaskKind(kind)) in self._in_flight

    def busy_kinds(self, record_id: str) -> list[TaskKind]:
        with self._lock:
            kinds = {kind for rid, kind in self._in_flight if rid == record_id}
        return [kind for kind in TaskKind if kind in kinds]

    def clear(self) -> None:
        with self._lock:
            self._in_flight.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._in_flight)

    @contextmanager
    def track(self, record_id: str, kind: TaskKind) -> Iterator[None]:
        """Hold the pair for the duration of the block; always released on exit."""
        if not self.begin(record_id, kind):
            raise TaskAlreadyRunning(
                f"A {TaskKind(kind).value} task is already running for record {record_id}."
            )
        try:
            yield
        finally:
            self.end(record_id, kind)
