"""Live endpoints — the viewer-facing HTTP surface.

Viewers open an SSE stream on ``/__whisker/events?file=<path>``; each stream
is one ConnectionSession.  The first event names the connection's client id,
which the viewer posts back to ``/__whisker/options`` to change compile
options for its own session.
"""

from __future__ import annotations

import json
import threading
from typing import TYPE_CHECKING, Any

from whisker._errors import SessionError
from whisker.compiler.options import OptionUpdate
from whisker.reactive.session import ConnectionSession
from whisker.source.watcher import resolve_source

if TYPE_CHECKING:
    from collections.abc import Mapping

    from chirp import App, Request

    from whisker._types import ClientID
    from whisker.config import WhiskerConfig
    from whisker.observability.collector import EventCollector
    from whisker.reactive.dispatcher import NotificationDispatcher


EVENTS_ENDPOINT = "/__whisker/events"
OPTIONS_ENDPOINT = "/__whisker/options"
STATS_ENDPOINT = "/__whisker/stats"

HELLO_EVENT = "whisker:hello"
RESULT_EVENT = "whisker:result"


def _text_response(message: str, status: int) -> Any:
    from chirp.http.response import Response

    return Response(body=message, status=status, content_type="text/plain")


class LiveRouter:
    """Registers the live endpoints and tracks open sessions by client id.

    Args:
        app: Chirp App to register routes on (must not yet be frozen).
        dispatcher: Compile entry point shared by all sessions.
        config: Server configuration (source root, queue bound).

    """

    def __init__(
        self,
        app: App,
        dispatcher: NotificationDispatcher,
        config: WhiskerConfig,
    ) -> None:
        self._app = app
        self._dispatcher = dispatcher
        self._config = config
        self._sessions: dict[ClientID, ConnectionSession] = {}
        self._lock = threading.Lock()

    @property
    def session_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def get_session(self, client_id: ClientID) -> ConnectionSession | None:
        with self._lock:
            return self._sessions.get(client_id)

    def create_session(
        self, raw_file: str, update: OptionUpdate | None = None
    ) -> ConnectionSession:
        """Validate the requested file and build an untracked session for it.

        Raises:
            SessionError: 400 for a missing or invalid name, 404 if the
                file does not exist.  No session is created.

        """
        path = resolve_source(self._config.root, raw_file)
        return ConnectionSession(
            path,
            dispatcher=self._dispatcher,
            update=update,
            queue_size=self._config.queue_size,
        )

    def open_session(self, raw_file: str, update: OptionUpdate | None = None) -> ConnectionSession:
        """Create a session and track it so option posts can reach it."""
        session = self.create_session(raw_file, update)
        self.track(session)
        return session

    def track(self, session: ConnectionSession) -> None:
        with self._lock:
            self._sessions[session.client_id] = session

    def forget(self, session: ConnectionSession) -> None:
        with self._lock:
            self._sessions.pop(session.client_id, None)

    def submit_options(self, form: Mapping[str, str]) -> tuple[int, str]:
        """Route an option-update form to its session.

        Returns:
            HTTP status and message: 202 accepted, 400 missing client id,
            404 unknown client, or the session's own rejection (409/429).

        """
        client_id = (form.get("client") or "").strip()
        if not client_id:
            return 400, "Missing client parameter"

        session = self.get_session(client_id)
        if session is None:
            return 404, f"Unknown client: {client_id}"

        try:
            session.request_update(OptionUpdate.from_form(form))
        except SessionError as exc:
            return exc.status, str(exc)
        return 202, "accepted"

    def close_all(self) -> int:
        """Close every open session (server shutdown).  Returns how many."""
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.close()
        return len(sessions)

    def register_all(self, collector: EventCollector | None = None) -> None:
        self.register_events_endpoint()
        self.register_options_endpoint()
        if collector is not None:
            self.register_stats_endpoint(collector)

    def register_events_endpoint(self) -> None:
        """Register the ``/__whisker/events`` SSE endpoint.

        Clients connect with a ``file`` query parameter (relative to the
        source root) and may pass ``compiler``, ``outputKind`` and ``flags``
        to choose initial options.

        """
        from chirp import EventStream, SSEEvent

        async def events_handler(request: Request) -> Any:
            try:
                update = OptionUpdate.from_form(request.query)
                session = self.create_session(request.query.get("file", ""), update)
            except SessionError as exc:
                return _text_response(str(exc), exc.status)

            # Tracked only while the stream runs.  The session is active,
            # with its initial result queued, before the hello event.
            async def generate():  # type: ignore[return]
                self.track(session)
                try:
                    async with session:
                        hello = {"client": session.client_id, "file": session.path}
                        yield SSEEvent(data=json.dumps(hello), event=HELLO_EVENT)
                        async for result in session.subscriber.results():
                            yield SSEEvent(data=result.to_json(), event=RESULT_EVENT)
                finally:
                    session.close()
                    self.forget(session)

            return EventStream(generate())

        events_handler.__name__ = "whisker_events"
        events_handler.__qualname__ = "LiveRouter.whisker_events"

        self._app.route(EVENTS_ENDPOINT, name="whisker:events")(events_handler)

    def register_options_endpoint(self) -> None:
        """Register the ``/__whisker/options`` POST endpoint.

        Form fields: ``client`` (required), ``compiler``, ``outputKind``,
        ``flags``.  Unset fields fall back to the file's defaults.

        """

        async def options_handler(request: Request) -> Any:
            form = await request.form()
            status, message = self.submit_options(form)
            return _text_response(message, status)

        options_handler.__name__ = "whisker_options"
        options_handler.__qualname__ = "LiveRouter.whisker_options"

        self._app.route(OPTIONS_ENDPOINT, methods=["POST"], name="whisker:options")(
            options_handler
        )

    def register_stats_endpoint(self, collector: EventCollector) -> None:
        """Register the ``/__whisker/stats`` JSON endpoint."""
        registry = self._dispatcher.registry

        async def stats_handler(request: Request) -> Any:
            from chirp.http.response import Response

            payload = json.dumps(
                {
                    "event_log": collector.log.stats(),
                    "registry": registry.snapshot(),
                    "sessions": self.session_count,
                },
                indent=2,
            )
            return Response(body=payload, status=200, content_type="application/json")

        stats_handler.__name__ = "whisker_stats"
        stats_handler.__qualname__ = "LiveRouter.whisker_stats"

        self._app.route(STATS_ENDPOINT, name="whisker:stats")(stats_handler)
