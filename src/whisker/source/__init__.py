"""Source files — path normalization and the per-file watch capability."""

from whisker.source.watcher import (
    ChangeEvent,
    PathWatch,
    normalize_path,
    relative_to_root,
    resolve_source,
)

__all__ = [
    "ChangeEvent",
    "PathWatch",
    "normalize_path",
    "relative_to_root",
    "resolve_source",
]
