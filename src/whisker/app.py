"""Whisker application — wires the live engine into a Chirp app.

``create_app`` builds every component and registers the endpoints;
``dev`` is the public entry point that runs it.
"""

from __future__ import annotations

import asyncio
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from whisker.compiler.runner import CompileRunner
from whisker.config_loader import load_config
from whisker.observability import EventCollector, EventLog
from whisker.reactive.dispatcher import NotificationDispatcher
from whisker.reactive.endpoints import LiveRouter
from whisker.reactive.registry import SubscriptionRegistry
from whisker.source.watcher import PathWatch

if TYPE_CHECKING:
    from chirp import App

    from whisker.config import WhiskerConfig


@dataclass(frozen=True, slots=True)
class LiveEngine:
    """Every long-lived component of a running server."""

    watch: PathWatch
    registry: SubscriptionRegistry
    runner: CompileRunner
    dispatcher: NotificationDispatcher
    router: LiveRouter
    collector: EventCollector


def _create_chirp_app(config: WhiskerConfig, *, debug: bool = False) -> App:
    from chirp import App, AppConfig

    return App(config=AppConfig(debug=debug, host=config.host, port=config.port))


def _setup_live_engine(config: WhiskerConfig, app: App) -> LiveEngine:
    """Build the watch, registry, runner and dispatcher, and register endpoints."""
    collector = EventCollector(EventLog())
    watch = PathWatch(config.root, debounce=config.debounce)
    registry = SubscriptionRegistry(watch, collector)
    runner = CompileRunner(timeout=config.compile_timeout)
    dispatcher = NotificationDispatcher(registry, runner, config.root, collector)

    router = LiveRouter(app, dispatcher, config)
    router.register_all(collector)

    return LiveEngine(
        watch=watch,
        registry=registry,
        runner=runner,
        dispatcher=dispatcher,
        router=router,
        collector=collector,
    )


def _start_watcher(engine: LiveEngine, app: App) -> None:
    """Run the dispatcher over the watch stream for the app's lifetime.

    Flow:
        on_startup  → spawn the dispatcher task (runs ``awatch`` internally)
        file change → dispatcher.handle_change()
        on_shutdown → close every session, stop the watch, cancel the task

    """
    _task: asyncio.Task[None] | None = None

    @app.on_startup
    async def _start_dispatcher() -> None:
        nonlocal _task

        async def _consume_events() -> None:
            try:
                await engine.dispatcher.run(engine.watch.changes())
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                print(f"  Watcher stopped: {exc}", file=sys.stderr)

        _task = asyncio.create_task(_consume_events(), name="whisker-dispatcher")

    @app.on_shutdown
    async def _stop_dispatcher() -> None:
        closed = engine.router.close_all()
        if closed:
            print(f"  Closed {closed} viewer session(s)", file=sys.stderr)
        engine.watch.stop()
        if _task is not None and not _task.done():
            _task.cancel()


def create_app(config: WhiskerConfig, *, debug: bool = True) -> tuple[App, LiveEngine]:
    """Create the Chirp app with the live engine wired in."""
    app = _create_chirp_app(config, debug=debug)
    engine = _setup_live_engine(config, app)
    _start_watcher(engine, app)
    return app, engine


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------


def dev(root: str | Path = ".", **kwargs: object) -> None:
    """Start the live compiler-output server.

    Args:
        root: Source root directory.
        **kwargs: Override WhiskerConfig fields.

    """
    from whisker.banner import print_banner

    t0 = time.perf_counter()
    config = load_config(Path(root), **kwargs)
    app, engine = create_app(config)
    load_ms = (time.perf_counter() - t0) * 1000

    print_banner(config, load_ms=load_ms)

    # Server lifecycle events land in the same EventLog as engine events.
    app.run(host=config.host, port=config.port, lifecycle_collector=engine.collector)
