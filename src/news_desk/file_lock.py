"""Serialize read-modify-write cycles on the cached credential file and exports.

The credential file is shared by every session in the process (API requests and
CLI runs both load and save it), so a save must not interleave with a load.
"""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from threading import Lock
from typing import Iterator

_path_locks: dict[Path, Lock] = {}
_registry_guard = Lock()


def lock_key(path: Path | str) -> Path:
    """Canonical form of ``path``: ``~`` expanded, made absolute, symlinks resolved."""
    return Path(path).expanduser().resolve()


@contextmanager
def locked_path(path: Path | str) -> Iterator[Path]:
    """Hold the lock for ``path`` and yield its canonical form."""
    key = lock_key(path)
    with _registry_guard:
        lock = _path_locks.setdefault(key, Lock())
    with lock:
        yield key
