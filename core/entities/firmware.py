"""Firmware domain entities."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Union

from core.entities.board import BoardProfile


FIRMWARE_SUFFIX = ".bin"


@dataclass(frozen=True)
class FirmwareImage:
    """Raw firmware bytes supplied for one flash attempt."""

    data: bytes = field(repr=False)
    name: str = "firmware.bin"

    def __post_init__(self):
        if not isinstance(self.data, bytes):
            # Accept bytearray / memoryview but store an immutable copy
            object.__setattr__(self, "data", bytes(self.data))

    @property
    def size(self) -> int:
        """Image length in bytes."""
        return len(self.data)

    def __len__(self) -> int:
        return len(self.data)

    @classmethod
    def from_file(cls, file_path: Union[str, Path]) -> "FirmwareImage":
        """Load a firmware image from a ``.bin`` file.

        Raises:
            ValueError: If the file is not a ``.bin`` file.
            OSError: If the file cannot be read.
        """
        path = Path(file_path)
        if path.suffix.lower() != FIRMWARE_SUFFIX:
            raise ValueError(f"Only {FIRMWARE_SUFFIX} files are supported: {path.name}")
        return cls(data=path.read_bytes(), name=path.name)


@dataclass(frozen=True)
class FlashRequest:
    """One validated flash invocation."""

    image: FirmwareImage
    target_offset: int
    erase_all: bool
    board_profile: BoardProfile

    @property
    def flash_window(self) -> tuple:
        """Half-open flash address range covered by this request."""
        return self.target_offset, self.target_offset + self.image.size
