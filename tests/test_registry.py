"""Tests for whisker.reactive.registry — subscriptions, watch policy, fan-out."""

from __future__ import annotations

import asyncio
import random
import threading
from pathlib import Path

import pytest

from whisker.compiler.options import CompileOptions
from whisker.compiler.runner import CompileResult
from whisker.observability import BroadcastDelivered, SubscriptionChanged, WatchChanged
from whisker.reactive.registry import Subscriber, SubscriptionRegistry
from whisker.source.watcher import PathWatch


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _sub(client_id: str, path: str = "Add.c", *, queue_size: int = 16) -> Subscriber:
    return Subscriber(
        client_id, path, CompileOptions("clang", "llvm-ir"), queue_size=queue_size
    )


def _result(output: str = "ir") -> CompileResult:
    return CompileResult.ok(output, source_code="src", language="c")


# ---------------------------------------------------------------------------
# Subscriber
# ---------------------------------------------------------------------------


class TestSubscriber:
    """Bounded, identity-hashed delivery handle."""

    def test_identity_equality(self) -> None:
        a = _sub("c1")
        b = _sub("c1")
        assert a != b
        assert len({a, b}) == 2

    def test_deliver_queues_result(self) -> None:
        sub = _sub("c1")
        assert sub.deliver(_result())
        assert sub.pending == 1

    def test_deliver_fails_when_full(self) -> None:
        sub = _sub("c1", queue_size=1)
        assert sub.deliver(_result("first"))
        assert not sub.deliver(_result("second"))

    def test_deliver_after_close_fails(self) -> None:
        sub = _sub("c1")
        sub.close()
        assert sub.closed
        assert not sub.deliver(_result())

    def test_close_is_idempotent(self) -> None:
        sub = _sub("c1")
        sub.close()
        sub.close()
        assert sub.closed

    def test_fail_without_callback_closes(self) -> None:
        sub = _sub("c1")
        sub.fail("boom")
        assert sub.closed

    def test_fail_calls_owner(self) -> None:
        reasons: list[str] = []
        sub = Subscriber("c1", "Add.c", CompileOptions(), on_failure=reasons.append)
        sub.fail("queue full")
        assert reasons == ["queue full"]
        assert not sub.closed

    @pytest.mark.asyncio
    async def test_results_in_order_until_closed(self) -> None:
        sub = _sub("c1")
        sub.deliver(_result("one"))
        sub.deliver(_result("two"))

        seen: list[str] = []

        async def consume() -> None:
            async for result in sub.results():
                seen.append(result.output)

        task = asyncio.create_task(consume())
        await asyncio.sleep(0)
        sub.close()
        await asyncio.wait_for(task, timeout=1.0)
        # Results consumed before close are kept, the stream then ends.
        assert seen == ["one", "two"]


# ---------------------------------------------------------------------------
# Subscribe / unsubscribe
# ---------------------------------------------------------------------------


class TestSubscriptions:
    """Membership and the entry-exists-iff-non-empty invariant."""

    def test_subscribe_and_get(self, registry: SubscriptionRegistry) -> None:
        sub = _sub("c1")
        assert registry.subscribe("Add.c", sub)
        assert registry.get_subscribers("Add.c") == (sub,)
        assert registry.has_subscribers("Add.c")
        assert registry.subscriber_count == 1

    def test_double_subscribe_is_noop(self, registry: SubscriptionRegistry) -> None:
        sub = _sub("c1")
        registry.subscribe("Add.c", sub)
        assert not registry.subscribe("Add.c", sub)
        assert registry.get_subscribers("Add.c") == (sub,)

    def test_double_subscribe_delivers_once(self, registry: SubscriptionRegistry) -> None:
        sub = _sub("c1")
        registry.subscribe("Add.c", sub)
        registry.subscribe("Add.c", sub)

        assert registry.broadcast("Add.c", _result()) == 1
        assert sub.pending == 1

    def test_subscriber_stays_on_its_first_path(self, registry: SubscriptionRegistry) -> None:
        sub = _sub("c1")
        registry.subscribe("Add.c", sub)
        assert not registry.subscribe("Bad.c", sub)

        assert registry.get_subscribers("Bad.c") == ()
        assert not registry.has_subscribers("Bad.c")
        assert registry.get_subscribers("Add.c") == (sub,)

    def test_unsubscribe_removes_entry(self, registry: SubscriptionRegistry) -> None:
        sub = _sub("c1")
        registry.subscribe("Add.c", sub)
        assert registry.unsubscribe("Add.c", sub)

        assert not registry.has_subscribers("Add.c")
        assert registry.get_watched_paths() == frozenset()
        assert registry.subscriber_count == 0

    def test_unsubscribe_nonexistent_is_safe(self, registry: SubscriptionRegistry) -> None:
        assert not registry.unsubscribe("Add.c", _sub("c1"))

    def test_unsubscribe_wrong_path_is_noop(self, registry: SubscriptionRegistry) -> None:
        sub = _sub("c1")
        registry.subscribe("Add.c", sub)
        assert not registry.unsubscribe("Bad.c", sub)
        assert registry.get_subscribers("Add.c") == (sub,)

    def test_entry_survives_partial_churn(self, registry: SubscriptionRegistry) -> None:
        a, b = _sub("a"), _sub("b")
        registry.subscribe("Add.c", a)
        registry.subscribe("Add.c", b)
        registry.unsubscribe("Add.c", a)

        assert registry.has_subscribers("Add.c")
        assert registry.get_subscribers("Add.c") == (b,)

    def test_invariant_over_random_sequences(
        self, registry: SubscriptionRegistry, watch: PathWatch
    ) -> None:
        rng = random.Random(1234)
        pool = [_sub(f"c{i}") for i in range(5)]
        members: set[Subscriber] = set()

        for _ in range(500):
            sub = rng.choice(pool)
            if rng.random() < 0.5:
                registry.subscribe("Add.c", sub)
                members.add(sub)
            else:
                registry.unsubscribe("Add.c", sub)
                members.discard(sub)

            assert registry.has_subscribers("Add.c") == bool(members)
            assert watch.is_watching("Add.c") == bool(members)
            assert set(registry.get_subscribers("Add.c")) == members

    def test_concurrent_churn_keeps_invariants(
        self, registry: SubscriptionRegistry, watch: PathWatch
    ) -> None:
        paths = ["Add.c", "Bad.c", "Hello.java"]

        def worker(seed: int) -> None:
            rng = random.Random(seed)
            mine = [_sub(f"t{seed}-{i}", rng.choice(paths)) for i in range(10)]
            for _ in range(200):
                sub = rng.choice(mine)
                if rng.random() < 0.5:
                    registry.subscribe(sub.path, sub)
                else:
                    registry.unsubscribe(sub.path, sub)
            for sub in mine:
                registry.unsubscribe(sub.path, sub)

        threads = [threading.Thread(target=worker, args=(seed,)) for seed in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert registry.subscriber_count == 0
        assert registry.get_watched_paths() == frozenset()
        assert watch.watched == frozenset()


# ---------------------------------------------------------------------------
# Watch arm / disarm
# ---------------------------------------------------------------------------


class TestWatchPolicy:
    """First subscriber arms, last one out disarms."""

    def test_first_subscriber_arms(self, registry: SubscriptionRegistry, watch: PathWatch) -> None:
        assert not watch.is_watching("Add.c")
        registry.subscribe("Add.c", _sub("c1"))
        assert watch.is_watching("Add.c")

    def test_last_unsubscribe_disarms(
        self, registry: SubscriptionRegistry, watch: PathWatch
    ) -> None:
        a, b = _sub("a"), _sub("b")
        registry.subscribe("Add.c", a)
        registry.subscribe("Add.c", b)

        registry.unsubscribe("Add.c", a)
        assert watch.is_watching("Add.c")

        registry.unsubscribe("Add.c", b)
        assert not watch.is_watching("Add.c")

    def test_arm_failure_is_degraded_not_fatal(self, source_root: Path) -> None:
        watch = PathWatch(source_root)
        registry = SubscriptionRegistry(watch)
        sub = _sub("c1", "Later.c")

        assert registry.subscribe("Later.c", sub)
        assert registry.has_subscribers("Later.c")
        assert registry.is_degraded("Later.c")
        assert not watch.is_watching("Later.c")

    def test_later_subscribe_rearms_degraded_path(self, source_root: Path) -> None:
        watch = PathWatch(source_root)
        registry = SubscriptionRegistry(watch)
        registry.subscribe("Later.c", _sub("c1", "Later.c"))

        (source_root / "Later.c").write_text("int x;\n")
        registry.subscribe("Later.c", _sub("c2", "Later.c"))

        assert not registry.is_degraded("Later.c")
        assert watch.is_watching("Later.c")

    def test_teardown_clears_degraded_mark(self, source_root: Path) -> None:
        registry = SubscriptionRegistry(PathWatch(source_root))
        sub = _sub("c1", "Later.c")
        registry.subscribe("Later.c", sub)
        registry.unsubscribe("Later.c", sub)
        assert not registry.is_degraded("Later.c")

    def test_without_watch(self) -> None:
        registry = SubscriptionRegistry()
        sub = _sub("c1")
        registry.subscribe("Add.c", sub)
        assert registry.broadcast("Add.c", _result()) == 1
        assert registry.snapshot()["paths"]["Add.c"]["watching"] is False

    def test_watch_events_recorded(
        self, registry: SubscriptionRegistry, collector
    ) -> None:
        sub = _sub("c1")
        registry.subscribe("Add.c", sub)
        registry.unsubscribe("Add.c", sub)

        actions = [e.action for e in reversed(collector.log.query(event_type=WatchChanged))]
        assert actions == ["armed", "disarmed"]


# ---------------------------------------------------------------------------
# Broadcast
# ---------------------------------------------------------------------------


class TestBroadcast:
    """Fan-out to a snapshot of a path's subscribers."""

    def test_no_subscribers_returns_zero(self, registry: SubscriptionRegistry) -> None:
        assert registry.broadcast("Add.c", _result()) == 0

    def test_delivers_to_each_subscriber(self, registry: SubscriptionRegistry) -> None:
        a, b = _sub("a"), _sub("b")
        registry.subscribe("Add.c", a)
        registry.subscribe("Add.c", b)

        assert registry.broadcast("Add.c", _result()) == 2
        assert a.pending == 1
        assert b.pending == 1

    def test_only_target_path(self, registry: SubscriptionRegistry) -> None:
        a = _sub("a", "Add.c")
        b = _sub("b", "Bad.c")
        registry.subscribe("Add.c", a)
        registry.subscribe("Bad.c", b)

        registry.broadcast("Add.c", _result())
        assert a.pending == 1
        assert b.pending == 0

    def test_failing_subscriber_does_not_block_others(
        self, registry: SubscriptionRegistry
    ) -> None:
        slow = _sub("slow", queue_size=1)
        fine = _sub("fine")
        registry.subscribe("Add.c", slow)
        registry.subscribe("Add.c", fine)
        slow.deliver(_result("backlog"))

        assert registry.broadcast("Add.c", _result("new")) == 1
        assert fine.pending == 1
        assert registry.get_subscribers("Add.c") == (fine,)
        assert slow.closed

    def test_closed_subscriber_skipped_quietly(
        self, registry: SubscriptionRegistry, collector
    ) -> None:
        gone = _sub("gone")
        registry.subscribe("Add.c", gone)
        gone.close()

        assert registry.broadcast("Add.c", _result()) == 0
        event = collector.log.query(event_type=BroadcastDelivered)[0]
        assert event.delivered == 0
        assert event.failed == 0

    def test_results_keep_issue_order(self, registry: SubscriptionRegistry) -> None:
        sub = _sub("c1")
        registry.subscribe("Add.c", sub)
        for i in range(5):
            registry.broadcast("Add.c", _result(f"v{i}"))

        outputs = [sub._queue.get_nowait().output for _ in range(5)]
        assert outputs == ["v0", "v1", "v2", "v3", "v4"]

    def test_records_broadcast_event(self, registry: SubscriptionRegistry, collector) -> None:
        registry.subscribe("Add.c", _sub("c1"))
        registry.broadcast("Add.c", _result())

        event = collector.log.query(event_type=BroadcastDelivered)[0]
        assert event.path == "Add.c"
        assert event.delivered == 1


# ---------------------------------------------------------------------------
# Current subscriber and snapshot
# ---------------------------------------------------------------------------


class TestCurrentSubscriber:
    """The most recently subscribed or promoted subscriber decides options."""

    def test_no_subscribers(self, registry: SubscriptionRegistry) -> None:
        assert registry.current_options("Add.c") is None

    def test_latest_subscriber_is_current(self, registry: SubscriptionRegistry) -> None:
        a = Subscriber("a", "Add.c", CompileOptions("clang", "llvm-ir"))
        b = Subscriber("b", "Add.c", CompileOptions("gcc", "asm"))
        registry.subscribe("Add.c", a)
        registry.subscribe("Add.c", b)
        assert registry.current_options("Add.c") == CompileOptions("gcc", "asm")

    def test_promote_moves_to_current(self, registry: SubscriptionRegistry) -> None:
        a = Subscriber("a", "Add.c", CompileOptions("clang", "asm"))
        b = Subscriber("b", "Add.c", CompileOptions("gcc", "asm"))
        registry.subscribe("Add.c", a)
        registry.subscribe("Add.c", b)

        registry.promote("Add.c", a)
        assert registry.current_options("Add.c") == CompileOptions("clang", "asm")

    def test_promote_unknown_is_noop(self, registry: SubscriptionRegistry) -> None:
        registry.promote("Add.c", _sub("ghost"))
        assert not registry.has_subscribers("Add.c")

    def test_current_falls_back_when_it_leaves(self, registry: SubscriptionRegistry) -> None:
        a = Subscriber("a", "Add.c", CompileOptions("clang", "asm"))
        b = Subscriber("b", "Add.c", CompileOptions("gcc", "asm"))
        registry.subscribe("Add.c", a)
        registry.subscribe("Add.c", b)
        registry.unsubscribe("Add.c", b)
        assert registry.current_options("Add.c") == CompileOptions("clang", "asm")

    def test_snapshot(self, registry: SubscriptionRegistry) -> None:
        registry.subscribe("Add.c", _sub("a"))
        registry.subscribe("Add.c", _sub("b"))
        registry.subscribe("Missing.c", _sub("c", "Missing.c"))

        snap = registry.snapshot()
        assert snap["subscribers"] == 3
        assert snap["paths"]["Add.c"] == {"subscribers": 2, "watching": True}
        assert snap["paths"]["Missing.c"] == {"subscribers": 1, "watching": False}

    def test_subscription_events_recorded(
        self, registry: SubscriptionRegistry, collector
    ) -> None:
        sub = _sub("c1")
        registry.subscribe("Add.c", sub)
        registry.unsubscribe("Add.c", sub)

        events = list(reversed(collector.log.query(event_type=SubscriptionChanged)))
        assert [(e.action, e.subscribers) for e in events] == [
            ("subscribe", 1),
            ("unsubscribe", 0),
        ]
