"""Runtime settings for the ESP flasher.

Defaults mirror the browser flasher; every value can be overridden from the
environment with ``FlashSettings.from_env()``.
"""

import os
from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class FlashTimings:
    """Pacing constants used by the placeholder bootloader protocol."""
    sync_attempts: int = 5
    sync_interval: float = 0.1  # seconds between sync frames
    chunk_delay: float = 0.01  # seconds after every data chunk
    settle_delay: float = 0.5  # start, begin, end and verify placeholders

    @classmethod
    def instant(cls) -> "FlashTimings":
        """Timings with every delay removed (tests, simulators)."""
        return cls(sync_interval=0.0, chunk_delay=0.0, settle_delay=0.0)


@dataclass(frozen=True)
class FlashSettings:
    """Connection and session settings."""
    baud_rate: int = 115200
    read_timeout: float = 1.0
    write_timeout: Optional[float] = 5.0
    auto_disconnect_delay: float = 2.0
    timings: FlashTimings = field(default_factory=FlashTimings)

    def __post_init__(self):
        if self.baud_rate <= 0:
            raise ValueError(f"baud_rate must be positive, got {self.baud_rate}")
        if self.read_timeout <= 0:
            raise ValueError(f"read_timeout must be positive, got {self.read_timeout}")
        if self.write_timeout is not None and self.write_timeout <= 0:
            raise ValueError(f"write_timeout must be positive, got {self.write_timeout}")
        if self.auto_disconnect_delay < 0:
            raise ValueError("auto_disconnect_delay cannot be negative")

    @classmethod
    def from_env(cls, **overrides) -> "FlashSettings":
        """Build settings from environment variables.

        Variables read:
        - ESPFLASH_BAUD_RATE
        - ESPFLASH_READ_TIMEOUT
        - ESPFLASH_WRITE_TIMEOUT ("none" disables the write deadline)
        - ESPFLASH_AUTO_DISCONNECT

        Args:
            **overrides: Explicit values that win over the environment.

        Returns:
            Settings instance.

        Raises:
            ValueError: If a variable holds a malformed value.
        """
        values = {}

        baud = os.getenv("ESPFLASH_BAUD_RATE")
        if baud:
            values["baud_rate"] = _parse_env("ESPFLASH_BAUD_RATE", baud, int)

        read_timeout = os.getenv("ESPFLASH_READ_TIMEOUT")
        if read_timeout:
            values["read_timeout"] = _parse_env("ESPFLASH_READ_TIMEOUT", read_timeout, float)

        write_timeout = os.getenv("ESPFLASH_WRITE_TIMEOUT")
        if write_timeout:
            if write_timeout.strip().lower() == "none":
                values["write_timeout"] = None
            else:
                values["write_timeout"] = _parse_env("ESPFLASH_WRITE_TIMEOUT", write_timeout, float)

        auto_disconnect = os.getenv("ESPFLASH_AUTO_DISCONNECT")
        if auto_disconnect:
            values["auto_disconnect_delay"] = _parse_env(
                "ESPFLASH_AUTO_DISCONNECT", auto_disconnect, float
            )

        values.update(overrides)
        return cls(**values)


def _parse_env(name: str, raw: str, kind):
    try:
        return kind(raw.strip())
    except ValueError as e:
        raise ValueError(f"Invalid value for {name}: {raw!r}") from e
