"""
Marker storage for cross-replica coordination.

Replicas coordinate only through small marker objects on a shared volume:
presence means something (a leader claim, a completed install) and the
modification time doubles as a heartbeat. ``MarkerStore`` is the narrow
storage interface the election logic is written against, so the same
algorithm runs on the shared filesystem in production and on an in-memory
fake in tests. Any backend offering an atomic create-if-absent primitive
can implement it.

Architecture:
    ::

        MarkerStore Protocol:
        ┌────────────────────────────────────────────────────────────┐
        │ create_exclusive(name, content) -> bool   atomic claim     │
        │ write(name, content)                      heartbeat        │
        │ read(name) -> str | None                                   │
        │ exists(name) -> bool                                       │
        │ modified_at(name) -> float | None         liveness         │
        │ touch(name)                               marker create    │
        │ remove(name)                                               │
        └────────────────────────────────────────────────────────────┘

        FileMarkerStore     files under <oe_root>/sites (O_CREAT | O_EXCL)
        MemoryMarkerStore   dict + lock, timestamps from a Clock
"""

from __future__ import annotations

import os
import threading
from pathlib import Path
from typing import Protocol, runtime_checkable

from openemr_ops.core.clock import Clock, SystemClock
from openemr_ops.core.errors import ErrorCategory, OpsError

LEADER_MARKER = "docker-leader"
COMPLETED_MARKER = "docker-completed"
INITIATED_MARKER = "docker-initiated"


@runtime_checkable
class MarkerStore(Protocol):
    """Narrow storage interface for coordination markers."""

    def exists(self, name: str) -> bool:
        ...

    def read(self, name: str) -> str | None:
        ...

    def write(self, name: str, content: str) -> None:
        ...

    def create_exclusive(self, name: str, content: str) -> bool:
        """Create ``name`` only if absent. Returns False if it already exists."""
        ...

    def remove(self, name: str) -> None:
        ...

    def modified_at(self, name: str) -> float | None:
        """Epoch seconds of the last write, or None when absent."""
        ...

    def touch(self, name: str) -> None:
        ...


class FileMarkerStore:
    """Markers as files in a directory on the shared volume."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def path(self, name: str) -> Path:
        return self.root / name

    def exists(self, name: str) -> bool:
        return self.path(name).is_file()

    def read(self, name: str) -> str | None:
        try:
            return self.path(name).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def write(self, name: str, content: str) -> None:
        try:
            self.path(name).write_text(content, encoding="utf-8")
        except OSError as exc:
            raise _storage_error("write", self.path(name), exc) from exc

    def create_exclusive(self, name: str, content: str) -> bool:
        target = self.path(name)
        try:
            fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError:
            return False
        except OSError as exc:
            raise _storage_error("create", target, exc) from exc
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
        return True

    def remove(self, name: str) -> None:
        self.path(name).unlink(missing_ok=True)

    def modified_at(self, name: str) -> float | None:
        try:
            return self.path(name).stat().st_mtime
        except FileNotFoundError:
            return None

    def touch(self, name: str) -> None:
        try:
            self.path(name).touch(exist_ok=True)
        except OSError as exc:
            raise _storage_error("touch", self.path(name), exc) from exc

    def __repr__(self) -> str:
        return f"FileMarkerStore({str(self.root)!r})"


class MemoryMarkerStore:
    """In-memory marker store; timestamps come from the injected clock."""

    def __init__(self, clock: Clock | None = None) -> None:
        self.clock = clock or SystemClock()
        self._lock = threading.Lock()
        self._markers: dict[str, tuple[str, float]] = {}

    def exists(self, name: str) -> bool:
        with self._lock:
            return name in self._markers

    def read(self, name: str) -> str | None:
        with self._lock:
            entry = self._markers.get(name)
        return entry[0] if entry else None

    def write(self, name: str, content: str) -> None:
        with self._lock:
            self._markers[name] = (content, self.clock.time())

    def create_exclusive(self, name: str, content: str) -> bool:
        with self._lock:
            if name in self._markers:
                return False
            self._markers[name] = (content, self.clock.time())
            return True

    def remove(self, name: str) -> None:
        with self._lock:
            self._markers.pop(name, None)

    def modified_at(self, name: str) -> float | None:
        with self._lock:
            entry = self._markers.get(name)
        return entry[1] if entry else None

    def touch(self, name: str) -> None:
        with self._lock:
            content = self._markers.get(name, ("", 0.0))[0]
            self._markers[name] = (content, self.clock.time())

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._markers)


def _storage_error(action: str, path: Path, exc: OSError) -> OpsError:
    return OpsError(
        f"Cannot {action} marker {path}: {exc.strerror or exc}",
        category=ErrorCategory.STORAGE,
        context={"path": str(path)},
        cause=exc,
    )
