"""Compile options — extension defaults and viewer option merging.

Every source file has a language determined by its extension, and every
language has a default tool/output pairing.  A viewer may override the
compiler, the output kind, or the extra flags; whatever it leaves unset
falls back to the defaults for the file's extension.
"""

from __future__ import annotations

import shlex
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import TYPE_CHECKING

from whisker._errors import SessionError

if TYPE_CHECKING:
    from collections.abc import Mapping


@dataclass(frozen=True, slots=True)
class CompileOptions:
    """Tool selection for one compile.

    Attributes:
        compiler: Tool identifier (``clang``, ``javac``, ...).  Empty when
            the file type has no default.
        output_kind: Artifact to produce (``llvm-ir``, ``asm``, ``bytecode``).
        flags: Extra flags passed to the tool, in order.

    """

    compiler: str = ""
    output_kind: str = ""
    flags: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class OptionUpdate:
    """A viewer's requested options.  ``None`` means "use the default"."""

    compiler: str | None = None
    output_kind: str | None = None
    flags: tuple[str, ...] | None = None

    @classmethod
    def from_form(cls, form: Mapping[str, str]) -> OptionUpdate:
        """Build an update from submitted form fields.

        ``flags`` is split shell-style so quoted arguments survive.
        Blank fields count as unset.

        Raises:
            SessionError: 400 if ``flags`` cannot be split (unbalanced quote).

        """
        compiler = (form.get("compiler") or "").strip() or None
        output_kind = (form.get("outputKind") or "").strip() or None
        raw_flags = (form.get("flags") or "").strip()
        try:
            flags = tuple(shlex.split(raw_flags)) if raw_flags else None
        except ValueError as exc:
            raise SessionError(f"Invalid flags: {exc}", status=400) from None
        return cls(compiler=compiler, output_kind=output_kind, flags=flags)


# extension -> (language, default compiler, default output kind)
_LANGUAGES: dict[str, tuple[str, str, str]] = {
    ".c": ("c", "clang", "llvm-ir"),
    ".cc": ("cpp", "clang++", "llvm-ir"),
    ".cpp": ("cpp", "clang++", "llvm-ir"),
    ".cxx": ("cpp", "clang++", "llvm-ir"),
    ".java": ("java", "javac", "bytecode"),
}


def extension_of(path: str) -> str:
    return PurePosixPath(path).suffix.lower()


def language_for(path: str) -> str | None:
    """Return the language tag for a file, or None if the type is unsupported."""
    entry = _LANGUAGES.get(extension_of(path))
    return entry[0] if entry else None


def default_options(path: str) -> CompileOptions:
    """Extension-derived defaults.  Unsupported types get empty options."""
    entry = _LANGUAGES.get(extension_of(path))
    if entry is None:
        return CompileOptions()
    _language, compiler, output_kind = entry
    return CompileOptions(compiler=compiler, output_kind=output_kind)


def resolve_options(path: str, update: OptionUpdate | None = None) -> CompileOptions:
    """Merge a viewer's update onto the defaults for ``path``."""
    defaults = default_options(path)
    if update is None:
        return defaults
    return CompileOptions(
        compiler=update.compiler if update.compiler is not None else defaults.compiler,
        output_kind=(
            update.output_kind if update.output_kind is not None else defaults.output_kind
        ),
        flags=update.flags if update.flags is not None else defaults.flags,
    )
