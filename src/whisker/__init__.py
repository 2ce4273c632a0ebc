"""Whisker — a live compiler-output viewer.

Watches source files, runs the matching compiler or disassembler whenever
one changes, and pushes the result to every viewer subscribed to that file.

Quick start::

    import whisker

    whisker.dev("src/")

Viewers connect to ``/__whisker/events?file=Add.c`` and receive one
``whisker:result`` event per compile: at connect time, after each option
change they post, and after each save of the file.

"""

# PEP 703: Declare this module as free-threading safe
_Py_mod_gil = 0

__version__ = "0.1.0-dev"
__all__ = [
    "WhiskerConfig",
    "__version__",
    "create_app",
    "dev",
]


def __getattr__(name: str) -> object:
    """Lazy imports for the public API.

    Keeps ``import whisker`` fast; chirp and watchfiles load on first use.
    """
    if name == "WhiskerConfig":
        from whisker.config import WhiskerConfig

        return WhiskerConfig

    if name == "dev":
        from whisker.app import dev

        return dev

    if name == "create_app":
        from whisker.app import create_app

        return create_app

    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)
