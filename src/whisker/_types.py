"""Shared type definitions for whisker."""

from typing import Literal

# Normalized POSIX path of a source file, relative to the source root
type WatchedPath = str

# Viewer connection identifier
type ClientID = str

# What caused a compile-and-deliver cycle
type CompileTrigger = Literal["subscribe", "options", "change"]

# Filesystem change kinds surfaced by the watcher
type ChangeKind = Literal["created", "modified", "deleted"]
