"""Startup banner — status output for ``whisker dev``.

Detects ``NO_COLOR`` / ``TERM`` for safe fallback.
"""

from __future__ import annotations

import os
import shutil
import sys
from typing import TYPE_CHECKING

from whisker.compiler.runner import supported_tools

if TYPE_CHECKING:
    from whisker.config import WhiskerConfig


# ---------------------------------------------------------------------------
# ANSI helpers — respect NO_COLOR (https://no-color.org)
# ---------------------------------------------------------------------------

def _supports_color() -> bool:
    """Return True if the terminal supports ANSI colors."""
    if os.environ.get("NO_COLOR"):
        return False
    if os.environ.get("TERM") == "dumb":
        return False
    return hasattr(sys.stderr, "isatty") and sys.stderr.isatty()


_COLOR = _supports_color()

_RESET = "\033[0m" if _COLOR else ""
_BOLD = "\033[1m" if _COLOR else ""
_DIM = "\033[2m" if _COLOR else ""
_CYAN = "\033[36m" if _COLOR else ""
_GREEN = "\033[32m" if _COLOR else ""
_YELLOW = "\033[33m" if _COLOR else ""
_ORANGE = "\033[38;5;214m" if _COLOR else ""


def _clickable_url(url: str) -> str:
    """Wrap *url* in an OSC 8 hyperlink escape if the terminal supports it."""
    if not _COLOR:
        return url
    return f"\033]8;;{url}\033\\{_BOLD}{_CYAN}{url}{_RESET}\033]8;;\033\\"


def _tool_line(name: str, kinds: tuple[str, ...]) -> str:
    found = shutil.which(name) is not None
    mark = f"{_GREEN}✓{_RESET}" if found else f"{_YELLOW}✗{_RESET}"
    return f"  {_DIM}│{_RESET}  {mark} {name} {_DIM}({', '.join(kinds)}){_RESET}"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def print_banner(
    config: WhiskerConfig,
    *,
    load_ms: float = 0.0,
    warnings: list[str] | None = None,
) -> None:
    """Print the Whisker startup banner to stderr.

    Args:
        config: Resolved WhiskerConfig.
        load_ms: Startup time in milliseconds.
        warnings: Optional list of warning messages to display.

    """
    from whisker import __version__
    from whisker.reactive.endpoints import EVENTS_ENDPOINT

    timing = f" {_DIM}in {load_ms:.0f}ms{_RESET}" if load_ms > 0 else ""
    lines: list[str] = [
        "",
        f"  {_ORANGE}{_BOLD}Whisker{_RESET} {_DIM}v{__version__}{_RESET}{timing}",
        f"  {_DIM}{'─' * 43}{_RESET}",
        f"  {_DIM}├─{_RESET} source: {_DIM}{config.root}{_RESET}",
        f"  {_DIM}├─{_RESET} tools:",
    ]
    lines.extend(_tool_line(name, kinds) for name, kinds in supported_tools().items())
    lines.append(
        f"  {_DIM}└─{_RESET} {_GREEN}live{_RESET} "
        f"— SSE on {_DIM}{EVENTS_ENDPOINT}?file=<path>{_RESET}"
    )

    url = f"http://{config.host}:{config.port}"
    lines.append("")
    lines.append(f"  {_clickable_url(url)}")
    lines.append("")
    lines.append(f"  {_DIM}Watching for changes...{_RESET}")

    if warnings:
        lines.append("")
        lines.extend(f"  {_YELLOW}!{_RESET} {w}" for w in warnings)

    lines.append("")

    print("\n".join(lines), file=sys.stderr)
