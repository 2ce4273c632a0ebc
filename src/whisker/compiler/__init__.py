"""Compiler layer — option resolution and external tool invocation."""

from whisker.compiler.options import (
    CompileOptions,
    OptionUpdate,
    default_options,
    language_for,
    resolve_options,
)
from whisker.compiler.runner import CompileResult, CompileRunner

__all__ = [
    "CompileOptions",
    "CompileResult",
    "CompileRunner",
    "OptionUpdate",
    "default_options",
    "language_for",
    "resolve_options",
]
