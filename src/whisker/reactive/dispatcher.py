"""Notification dispatcher — connects the path watch to the registry.

Change flow:
    1. PathWatch reports a ``modified`` event for an armed path
    2. The path's current subscriber decides the compile options
    3. The file is read and compiled in a worker thread
    4. The registry broadcasts the result to the path's subscribers

Events are handled one at a time, so results for a path are broadcast in
the order its changes were reported.
"""

from __future__ import annotations

import asyncio
import sys
import time
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from whisker.compiler.options import language_for
from whisker.compiler.runner import CompileResult

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from whisker._types import CompileTrigger, WatchedPath
    from whisker.compiler.options import CompileOptions
    from whisker.observability.collector import EventCollector
    from whisker.reactive.registry import SubscriptionRegistry
    from whisker.source.watcher import ChangeEvent


class Runner(Protocol):
    """Anything that compiles one file synchronously."""

    def run(self, path: str, source: bytes, options: CompileOptions) -> CompileResult: ...


class NotificationDispatcher:
    """Turns file changes into compile-and-broadcast cycles.

    Also the compile entry point for sessions, which deliver the result to
    their own viewer instead of broadcasting it.

    Args:
        registry: Subscription registry to consult and broadcast through.
        runner: Compiler invoked for every cycle.
        root: Source root that watched paths are relative to.
        collector: Optional event collector.

    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        runner: Runner,
        root: Path,
        collector: EventCollector | None = None,
    ) -> None:
        self._registry = registry
        self._runner = runner
        self._root = Path(root)
        self._collector = collector
        self._path_locks: dict[WatchedPath, asyncio.Lock] = {}

    @property
    def registry(self) -> SubscriptionRegistry:
        return self._registry

    def serialized(self, path: WatchedPath) -> asyncio.Lock:
        """Lock held across compile-and-deliver for ``path``.

        Session compiles and change broadcasts both take it, so a viewer
        never receives an older source's result after a newer one.
        """
        lock = self._path_locks.get(path)
        if lock is None:
            lock = self._path_locks[path] = asyncio.Lock()
        return lock

    async def run(self, events: AsyncIterator[ChangeEvent]) -> None:
        """Consume ``events`` until the stream ends or the task is cancelled."""
        async for event in events:
            try:
                await self.handle_change(event)
            except Exception as exc:
                print(f"  Dispatch error ({event.path}): {exc}", file=sys.stderr)

    async def handle_change(self, event: ChangeEvent) -> int:
        """Recompile and broadcast for one change.

        Returns:
            Number of subscribers the result reached.  Zero for non-modify
            events and for paths that no longer have subscribers.

        """
        if event.kind != "modified":
            return 0

        async with self.serialized(event.path):
            # A stale event can race the last unsubscribe; treat it as inert.
            options = self._registry.current_options(event.path)
            if options is None:
                return 0

            result = await self.compile_path(event.path, options, trigger="change")
            count = self._registry.broadcast(event.path, result)
        _log_change(event.path, result, count)
        return count

    async def compile_path(
        self,
        path: WatchedPath,
        options: CompileOptions,
        *,
        trigger: CompileTrigger = "change",
    ) -> CompileResult:
        """Read ``path`` from disk and compile it with ``options``.

        A read failure produces a failed result with an empty echoed
        source rather than an exception.

        """
        t0 = time.perf_counter()
        try:
            source = (self._root / path).read_bytes()
        except OSError as exc:
            result = CompileResult.failed(
                f"Failed to read source file: {exc}",
                language=language_for(path) or "",
            )
        else:
            result = await asyncio.to_thread(self._runner.run, path, source, options)

        if self._collector is not None:
            self._collector.record_compile(
                path,
                compiler=options.compiler,
                output_kind=options.output_kind,
                success=result.success,
                trigger=trigger,
                duration_ms=(time.perf_counter() - t0) * 1000,
            )
        return result


def _log_change(path: WatchedPath, result: CompileResult, count: int) -> None:
    """Log a change-triggered update to stderr."""
    status = "compiled" if result.success else "failed"
    viewers = "viewer" if count == 1 else "viewers"
    print(f"  {path} changed: {status}, {count} {viewers} notified", file=sys.stderr)
