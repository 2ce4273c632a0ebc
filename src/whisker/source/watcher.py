"""Path watch — per-file watch capability over watchfiles.

watchfiles observes a directory tree, not individual files, so PathWatch
runs one ``awatch`` over the source root and keeps an *armed set* of
relative paths.  ``watch()`` and ``unwatch()`` add and remove entries;
only events for armed paths are surfaced by ``changes()``.  Disarming a
path therefore silences it immediately, even for events already in flight.
"""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from watchfiles import Change

from whisker._errors import SessionError, WatchError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from whisker._types import ChangeKind, WatchedPath


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    """A change to an armed file.

    Attributes:
        path: Normalized path relative to the source root.
        kind: Type of filesystem change.

    """

    path: WatchedPath
    kind: ChangeKind


# Mapping from watchfiles Change enum to our kind literals.
_CHANGE_KIND_MAP: dict[Change, ChangeKind] = {
    Change.added: "created",
    Change.modified: "modified",
    Change.deleted: "deleted",
}


def normalize_path(root: Path, raw: str) -> WatchedPath:
    """Normalize a viewer-supplied filename to a WatchedPath.

    Raises:
        SessionError: If the name is empty, absolute, or escapes ``root``.

    """
    name = raw.strip().replace("\\", "/")
    if not name:
        raise SessionError("Missing file parameter", status=400)
    if name.startswith("/"):
        msg = f"File must be relative to the source root: {raw}"
        raise SessionError(msg, status=400)

    root = root.resolve()
    candidate = (root / name).resolve()
    try:
        rel = candidate.relative_to(root)
    except ValueError:
        msg = f"File is outside the source root: {raw}"
        raise SessionError(msg, status=400) from None
    if not rel.parts:
        raise SessionError("File parameter names the source root", status=400)
    return rel.as_posix()


def resolve_source(root: Path, raw: str) -> WatchedPath:
    """Normalize ``raw`` and require that it names an existing file."""
    path = normalize_path(root, raw)
    if not (root / path).is_file():
        msg = f"File not found: {path}"
        raise SessionError(msg, status=404)
    return path


def relative_to_root(root: Path, absolute: Path) -> WatchedPath | None:
    """Map an absolute path reported by watchfiles back to a WatchedPath."""
    try:
        return absolute.resolve().relative_to(root.resolve()).as_posix()
    except ValueError:
        return None


class PathWatch:
    """Watch capability for individual files under one root.

    ``watch``/``unwatch`` are synchronous and thread-safe; they only touch
    the armed set.  ``changes()`` is the single ordered event stream.

    Args:
        root: Source root directory (absolute).
        debounce: watchfiles debounce window in milliseconds.

    """

    def __init__(self, root: Path, *, debounce: int = 100) -> None:
        self._root = root.resolve()
        self._debounce = debounce
        self._armed: set[WatchedPath] = set()
        self._lock = threading.Lock()
        self._stop_event = asyncio.Event()
        self._running = False

    @property
    def root(self) -> Path:
        return self._root

    @property
    def is_running(self) -> bool:
        """Whether ``changes()`` is currently iterating."""
        return self._running

    def watch(self, path: WatchedPath) -> None:
        """Arm ``path``.  Raises WatchError if it is not a file under root."""
        full = self._root / path
        if not full.is_file():
            msg = f"Cannot watch {path}: not a file under {self._root}"
            raise WatchError(msg)
        with self._lock:
            self._armed.add(path)

    def unwatch(self, path: WatchedPath) -> None:
        """Disarm ``path``.  Safe to call for paths that were never armed."""
        with self._lock:
            self._armed.discard(path)

    def is_watching(self, path: WatchedPath) -> bool:
        with self._lock:
            return path in self._armed

    @property
    def watched(self) -> frozenset[WatchedPath]:
        with self._lock:
            return frozenset(self._armed)

    def stop(self) -> None:
        """Ask ``changes()`` to finish after the current batch."""
        self._stop_event.set()

    async def changes(self) -> AsyncIterator[ChangeEvent]:
        """Yield events for armed paths in the order watchfiles reports them."""
        from watchfiles import awatch

        self._stop_event.clear()
        self._running = True
        try:
            async for raw_changes in awatch(
                self._root,
                stop_event=self._stop_event,
                debounce=self._debounce,
            ):
                for change_type, path_str in sorted(raw_changes, key=lambda c: c[1]):
                    path = relative_to_root(self._root, Path(path_str))
                    if path is None or not self.is_watching(path):
                        continue
                    kind = _CHANGE_KIND_MAP.get(change_type, "modified")
                    yield ChangeEvent(path=path, kind=kind)
        finally:
            self._running = False
