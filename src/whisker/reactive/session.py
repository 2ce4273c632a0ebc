"""Connection session — one viewer's lifecycle on one file.

States::

    CONNECTING ──activate()──▶ ACTIVE ──close()──▶ CLOSED

Entering ACTIVE subscribes the viewer and delivers one compile right away
so it sees the file's current state.  While ACTIVE, option updates queue
up in the session's inbox and a read-loop task turns each into exactly one
compile for this viewer alone.  ``close()`` always unsubscribes; using the
session as an async context manager (or iterating ``stream()``) makes that
structural rather than something each exit path has to remember.
"""

from __future__ import annotations

import asyncio
import sys
import uuid
from enum import Enum
from typing import TYPE_CHECKING

from whisker._errors import SessionError
from whisker.compiler.options import resolve_options
from whisker.reactive.registry import Subscriber

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from whisker._types import ClientID, CompileTrigger, WatchedPath
    from whisker.compiler.options import CompileOptions, OptionUpdate
    from whisker.compiler.runner import CompileResult
    from whisker.reactive.dispatcher import NotificationDispatcher


class SessionState(Enum):
    CONNECTING = "connecting"
    ACTIVE = "active"
    CLOSED = "closed"


class ConnectionSession:
    """A single viewer subscribed to a single path.

    The path must already be validated (see ``whisker.source.resolve_source``);
    an invalid request never gets a session.

    Args:
        path: Normalized watched path.
        dispatcher: Compile entry point; its registry is the one joined.
        update: Options requested at connect time, merged onto defaults.
        client_id: Connection id (generated when omitted).
        queue_size: Outbound queue bound for this viewer.
        inbox_size: Option updates that may wait for the read loop.

    """

    def __init__(
        self,
        path: WatchedPath,
        *,
        dispatcher: NotificationDispatcher,
        update: OptionUpdate | None = None,
        client_id: ClientID | None = None,
        queue_size: int = 16,
        inbox_size: int = 8,
    ) -> None:
        self._path = path
        self._dispatcher = dispatcher
        self._registry = dispatcher.registry
        self._state = SessionState.CONNECTING
        self._inbox: asyncio.Queue[OptionUpdate] = asyncio.Queue(maxsize=inbox_size)
        self._reader: asyncio.Task[None] | None = None
        self.subscriber = Subscriber(
            client_id or uuid.uuid4().hex,
            path,
            resolve_options(path, update),
            queue_size=queue_size,
            on_failure=self._on_delivery_failure,
        )

    def __repr__(self) -> str:
        return f"ConnectionSession({self.client_id!r}, {self._path!r}, {self._state.value})"

    @property
    def client_id(self) -> ClientID:
        return self.subscriber.client_id

    @property
    def path(self) -> WatchedPath:
        return self._path

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def options(self) -> CompileOptions:
        return self.subscriber.options

    async def activate(self) -> CompileResult:
        """Subscribe, deliver the initial compile, and start the read loop.

        Raises:
            SessionError: If the session was already activated or closed.

        """
        if self._state is not SessionState.CONNECTING:
            msg = f"Session {self.client_id} is {self._state.value}"
            raise SessionError(msg, status=409)

        self._state = SessionState.ACTIVE
        self._registry.subscribe(self._path, self.subscriber)
        try:
            result = await self._compile_and_deliver("subscribe")
        except BaseException:
            self.close()
            raise

        if self._state is SessionState.ACTIVE:
            self._reader = asyncio.create_task(
                self._read_loop(), name=f"whisker-session-{self.client_id}"
            )
        return result

    def request_update(self, update: OptionUpdate) -> None:
        """Queue an option update for the read loop.

        Raises:
            SessionError: 409 if the session is not active, 429 if too many
                updates are already waiting.

        """
        if self._state is not SessionState.ACTIVE:
            msg = f"Session {self.client_id} is {self._state.value}"
            raise SessionError(msg, status=409)
        try:
            self._inbox.put_nowait(update)
        except asyncio.QueueFull:
            raise SessionError("Too many pending option updates", status=429) from None

    async def apply_update(self, update: OptionUpdate) -> CompileResult:
        """Replace this session's options and recompile for this viewer only."""
        if self._state is not SessionState.ACTIVE:
            msg = f"Session {self.client_id} is {self._state.value}"
            raise SessionError(msg, status=409)
        self.subscriber.options = resolve_options(self._path, update)
        self._registry.promote(self._path, self.subscriber)
        return await self._compile_and_deliver("options")

    def close(self) -> None:
        """Enter CLOSED: unsubscribe, end the result stream, stop the read loop.

        Idempotent, and safe from any state.
        """
        if self._state is SessionState.CLOSED:
            return
        self._state = SessionState.CLOSED
        self._registry.unsubscribe(self._path, self.subscriber)
        self.subscriber.close()

        reader = self._reader
        if reader is not None and not reader.done():
            try:
                current = asyncio.current_task()
            except RuntimeError:
                current = None
            if reader is not current:
                reader.cancel()

    async def stream(self) -> AsyncIterator[CompileResult]:
        """Run the full lifecycle, yielding every result meant for this viewer.

        Ends when the session closes; the session is closed when the
        consumer stops iterating for any reason.
        """
        async with self:
            async for result in self.subscriber.results():
                yield result

    async def __aenter__(self) -> ConnectionSession:
        await self.activate()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()

    async def _read_loop(self) -> None:
        while True:
            update = await self._inbox.get()
            try:
                await self.apply_update(update)
            except SessionError:
                return
            except Exception as exc:
                print(f"  Option update failed for {self.client_id}: {exc}", file=sys.stderr)

    async def _compile_and_deliver(self, trigger: CompileTrigger) -> CompileResult:
        async with self._dispatcher.serialized(self._path):
            result = await self._dispatcher.compile_path(
                self._path, self.subscriber.options, trigger=trigger
            )
            if not self.subscriber.deliver(result) and not self.subscriber.closed:
                self.subscriber.fail("delivery queue full")
        return result

    def _on_delivery_failure(self, reason: str) -> None:
        """Close asynchronously so the broadcaster is never re-entered."""
        print(f"  Closing session {self.client_id}: {reason}", file=sys.stderr)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.close()
            return
        loop.call_soon(self.close)
