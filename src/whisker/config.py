"""Whisker configuration.

WhiskerConfig is the central configuration object, frozen after creation.
"""

from dataclasses import dataclass, field
from pathlib import Path

from whisker._errors import ConfigError


@dataclass(frozen=True, slots=True)
class WhiskerConfig:
    """Configuration for a Whisker server.

    Attributes:
        root: Source root directory.  Every watched file lives under it.
              Always resolved to an absolute path on construction.
        host: Bind address.
        port: Bind port.
        queue_size: Bound of each viewer's outbound result queue.  A viewer
            that falls this many results behind is disconnected.
        compile_timeout: Seconds a single tool invocation may run.
        debounce: watchfiles debounce window in milliseconds.

    """

    root: Path = field(default_factory=Path.cwd)
    host: str = "127.0.0.1"
    port: int = 8080
    queue_size: int = 16
    compile_timeout: float = 30.0
    debounce: int = 100

    def __post_init__(self) -> None:
        # watchfiles reports absolute, resolved paths; keep root comparable.
        if not isinstance(self.root, Path):
            object.__setattr__(self, "root", Path(self.root))
        object.__setattr__(self, "root", self.root.resolve())

        if self.queue_size < 1:
            msg = f"queue_size must be positive, got {self.queue_size}"
            raise ConfigError(msg)
        if self.compile_timeout <= 0:
            msg = f"compile_timeout must be positive, got {self.compile_timeout}"
            raise ConfigError(msg)
        if not 0 <= self.port <= 65535:
            msg = f"port out of range: {self.port}"
            raise ConfigError(msg)
        if self.debounce < 0:
            msg = f"debounce must not be negative, got {self.debounce}"
            raise ConfigError(msg)
