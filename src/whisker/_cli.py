"""Whisker CLI — whisker dev / whisker compile.

Entry point for the ``whisker`` command-line interface.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the whisker CLI."""
    parser = argparse.ArgumentParser(
        prog="whisker",
        description="Live compiler-output viewer for local source files.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {_get_version()}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # whisker dev
    dev_parser = subparsers.add_parser(
        "dev",
        help="Watch a source directory and serve live compile results",
    )
    dev_parser.add_argument("root", nargs="?", default=".", help="Source root directory")
    dev_parser.add_argument("--host", default=None, help="Bind address")
    dev_parser.add_argument("--port", type=int, default=None, help="Bind port")
    dev_parser.add_argument(
        "--queue-size", type=int, default=None, help="Per-viewer result queue bound",
    )
    dev_parser.add_argument(
        "--compile-timeout", type=float, default=None, help="Seconds per tool run",
    )

    # whisker compile
    compile_parser = subparsers.add_parser(
        "compile",
        help="Compile one file and print the output",
    )
    compile_parser.add_argument("file", help="Source file")
    compile_parser.add_argument("--compiler", default=None, help="Tool to run")
    compile_parser.add_argument("--output-kind", default=None, help="Artifact to print")
    compile_parser.add_argument(
        "--flag",
        dest="flags",
        action="append",
        default=None,
        help="Extra tool flag (repeatable)",
    )
    compile_parser.add_argument(
        "--timeout", type=float, default=30.0, help="Seconds per tool run",
    )

    return parser


def _get_version() -> str:
    """Get the package version."""
    from whisker import __version__

    return __version__


def _compile(args: argparse.Namespace) -> int:
    """Run one compile and print the result.  Returns the exit status."""
    from whisker.compiler import CompileRunner, OptionUpdate, resolve_options

    path = Path(args.file)
    try:
        source = path.read_bytes()
    except OSError as exc:
        print(f"  Failed to read source file: {exc}", file=sys.stderr)
        return 1

    update = OptionUpdate(
        compiler=args.compiler,
        output_kind=args.output_kind,
        flags=tuple(args.flags) if args.flags is not None else None,
    )
    options = resolve_options(path.name, update)
    result = CompileRunner(timeout=args.timeout).run(path.name, source, options)
    if not result.success:
        print(result.error, file=sys.stderr)
        return 1
    print(result.output, end="" if result.output.endswith("\n") else "\n")
    return 0


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    if args.command == "compile":
        sys.exit(_compile(args))

    from whisker._errors import ConfigError
    from whisker.app import dev

    try:
        dev(
            root=args.root,
            host=args.host,
            port=args.port,
            queue_size=args.queue_size,
            compile_timeout=args.compile_timeout,
        )
    except ConfigError as exc:
        print(f"  Config error: {exc}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
