"""Compile runner — one external tool invocation per call.

Each call gets a private scratch directory: the source is written there
under its original file name, the tool runs with the scratch directory as
its working directory, and the designated artifact is read back.  Nothing
outlives the call.

Failures never raise.  A missing tool, a timeout, a non-zero exit or a
missing artifact all come back as a failed ``CompileResult`` carrying the
diagnostic text.
"""

from __future__ import annotations

import json
import subprocess
import tempfile
from dataclasses import asdict, dataclass
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

from whisker.compiler.options import extension_of, language_for

if TYPE_CHECKING:
    from collections.abc import Callable

    from whisker.compiler.options import CompileOptions


@dataclass(frozen=True, slots=True)
class CompileResult:
    """Outcome of one compile.

    Attributes:
        success: True if the tool ran and produced its artifact.
        output: The artifact text (IR, assembly, disassembly listing).
        error: Diagnostic text; empty on success.
        source_code: The source that was compiled, echoed back.
        language: Language tag derived from the extension (empty if unknown).

    """

    success: bool
    output: str
    error: str
    source_code: str
    language: str

    @classmethod
    def ok(cls, output: str, *, source_code: str, language: str) -> CompileResult:
        return cls(True, output, "", source_code, language)

    @classmethod
    def failed(
        cls, error: str, *, source_code: str = "", language: str = ""
    ) -> CompileResult:
        return cls(False, "", error, source_code, language)

    def to_message(self) -> dict[str, object]:
        """Wire form pushed to viewers."""
        data = asdict(self)
        data["sourceCode"] = data.pop("source_code")
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_message())


@dataclass(frozen=True, slots=True)
class _Plan:
    """Commands to run in order, and where the result ends up.

    When ``artifact`` is None the last command's output is the result.
    """

    commands: tuple[tuple[str, ...], ...]
    artifact: Path | None


type _PlanBuilder = Callable[[str, Path, Path, tuple[str, ...]], _Plan]


def _emit_llvm(tool: str, src: Path, workdir: Path, flags: tuple[str, ...]) -> _Plan:
    out = workdir / f"{src.stem}.ll"
    return _Plan(((tool, "-S", "-emit-llvm", *flags, str(src), "-o", str(out)),), out)


def _emit_asm(tool: str, src: Path, workdir: Path, flags: tuple[str, ...]) -> _Plan:
    out = workdir / f"{src.stem}.s"
    return _Plan(((tool, "-S", *flags, str(src), "-o", str(out)),), out)


def _java_bytecode(tool: str, src: Path, workdir: Path, flags: tuple[str, ...]) -> _Plan:
    # javac requires the file name to match the public class name.
    classes = workdir / "classes"
    classes.mkdir()
    class_file = classes / f"{src.stem}.class"
    return _Plan(
        (
            (tool, *flags, "-d", str(classes), str(src)),
            ("javap", "-c", "-p", "-v", str(class_file)),
        ),
        None,
    )


# compiler -> output kind -> plan builder
_TOOLS: dict[str, dict[str, _PlanBuilder]] = {
    "clang": {"llvm-ir": _emit_llvm, "asm": _emit_asm},
    "clang++": {"llvm-ir": _emit_llvm, "asm": _emit_asm},
    "gcc": {"asm": _emit_asm},
    "javac": {"bytecode": _java_bytecode},
}


def supported_tools() -> dict[str, tuple[str, ...]]:
    """Compiler names mapped to the output kinds each can produce."""
    return {name: tuple(kinds) for name, kinds in _TOOLS.items()}


class CompileRunner:
    """Runs an external compiler/disassembler for a single source file.

    Stateless apart from its timeout, so one instance may be shared by
    every session and the dispatcher, and called from worker threads.

    Args:
        timeout: Seconds each tool invocation may run before it is killed.

    """

    __slots__ = ("_timeout",)

    def __init__(self, timeout: float = 30.0) -> None:
        self._timeout = timeout

    def run(self, path: str, source: bytes, options: CompileOptions) -> CompileResult:
        """Compile ``source`` (the contents of ``path``) with ``options``."""
        text = source.decode("utf-8", errors="replace")
        language = language_for(path)
        if language is None:
            ext = extension_of(path) or "(none)"
            return CompileResult.failed(f"Unsupported file type: {ext}", source_code=text)

        def failed(error: str) -> CompileResult:
            return CompileResult.failed(error, source_code=text, language=language)

        builders = _TOOLS.get(options.compiler)
        if builders is None:
            return failed(f"Unknown compiler: {options.compiler}")
        build = builders.get(options.output_kind)
        if build is None:
            return failed(
                f"{options.compiler} cannot produce {options.output_kind!r} output"
            )

        with tempfile.TemporaryDirectory(prefix=f"whisker-{options.compiler}-") as tmp:
            workdir = Path(tmp)
            src = workdir / PurePosixPath(path).name
            src.write_bytes(source)
            plan = build(options.compiler, src, workdir, options.flags)

            output = ""
            for argv in plan.commands:
                try:
                    completed = subprocess.run(
                        argv,
                        stdout=subprocess.PIPE,
                        stderr=subprocess.STDOUT,
                        cwd=workdir,
                        timeout=self._timeout,
                        check=False,
                    )
                except FileNotFoundError:
                    return failed(f"{argv[0]} not found on PATH")
                except subprocess.TimeoutExpired:
                    return failed(f"{argv[0]} timed out after {self._timeout:g}s")

                output = (completed.stdout or b"").decode("utf-8", errors="replace")
                if completed.returncode != 0:
                    return failed(
                        output or f"{argv[0]} exited with status {completed.returncode}"
                    )

            if plan.artifact is not None:
                try:
                    output = plan.artifact.read_text(encoding="utf-8", errors="replace")
                except OSError as exc:
                    return failed(f"Failed to read {plan.artifact.name}: {exc}")

        return CompileResult.ok(output, source_code=text, language=language)
