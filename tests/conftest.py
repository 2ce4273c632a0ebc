"""Shared test fixtures for whisker."""

from __future__ import annotations

from pathlib import Path

import pytest

from whisker.compiler.options import CompileOptions, language_for
from whisker.compiler.runner import CompileResult
from whisker.observability import EventCollector
from whisker.reactive.dispatcher import NotificationDispatcher
from whisker.reactive.registry import SubscriptionRegistry
from whisker.source.watcher import PathWatch

ADD_C = "int add(int a, int b) {\n    return a + b;\n}\n"
BAD_C = "int add(int a, int b) {\n    return a + \n}\n"
HELLO_JAVA = (
    "public class Hello {\n"
    "    public static void main(String[] args) {\n"
    "        System.out.println(\"hi\");\n"
    "    }\n"
    "}\n"
)


class FakeRunner:
    """Stands in for CompileRunner: echoes options and source, records calls."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, bytes, CompileOptions]] = []

    def run(self, path: str, source: bytes, options: CompileOptions) -> CompileResult:
        self.calls.append((path, source, options))
        text = source.decode()
        header = f"; {options.compiler} {options.output_kind} {' '.join(options.flags)}".rstrip()
        return CompileResult.ok(
            f"{header}\n{text}", source_code=text, language=language_for(path) or ""
        )


@pytest.fixture
def source_root(tmp_path: Path) -> Path:
    """A source root with one file per scenario."""
    root = tmp_path / "src"
    root.mkdir()
    (root / "Add.c").write_text(ADD_C)
    (root / "Bad.c").write_text(BAD_C)
    (root / "Foo.txt").write_text("just text\n")
    (root / "Hello.java").write_text(HELLO_JAVA)
    nested = root / "lib"
    nested.mkdir()
    (nested / "util.c").write_text("int one(void) { return 1; }\n")
    return root


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def collector() -> EventCollector:
    return EventCollector()


@pytest.fixture
def watch(source_root: Path) -> PathWatch:
    return PathWatch(source_root)


@pytest.fixture
def registry(watch: PathWatch, collector: EventCollector) -> SubscriptionRegistry:
    return SubscriptionRegistry(watch, collector)


@pytest.fixture
def dispatcher(
    registry: SubscriptionRegistry,
    fake_runner: FakeRunner,
    source_root: Path,
    collector: EventCollector,
) -> NotificationDispatcher:
    return NotificationDispatcher(registry, fake_runner, source_root, collector)
