"""Board profile domain entity."""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping


class BoardType(Enum):
    """Supported ESP32 board families."""
    ESP32 = "ESP32"
    ESP32_C3 = "ESP32-C3"
    ESP32_S2 = "ESP32-S2"
    ESP32_S3 = "ESP32-S3"
    ESP32_C6 = "ESP32-C6"
    ESP32_H2 = "ESP32-H2"


# Standard ESP-IDF partition layout
FLASH_OFFSETS: Mapping[str, int] = MappingProxyType({
    "bootloader": 0x0000,
    "partitions": 0x8000,
    "firmware": 0x10000,
})

DEFAULT_FLASH_OFFSET = FLASH_OFFSETS["firmware"]


@dataclass(frozen=True)
class BoardProfile:
    """Static metadata for one board family."""

    identifier: str
    display_name: str
    chip_id_label: str
    default_flash_offset: int = DEFAULT_FLASH_OFFSET


BOARD_PROFILES: Mapping[str, BoardProfile] = MappingProxyType({
    BoardType.ESP32.value: BoardProfile("ESP32", "ESP32 DevKit", "ESP32"),
    BoardType.ESP32_C3.value: BoardProfile("ESP32-C3", "ESP32-C3", "ESP32-C3"),
    BoardType.ESP32_S2.value: BoardProfile("ESP32-S2", "ESP32-S2", "ESP32-S2"),
    BoardType.ESP32_S3.value: BoardProfile("ESP32-S3", "ESP32-S3", "ESP32-S3"),
    BoardType.ESP32_C6.value: BoardProfile("ESP32-C6", "ESP32-C6", "ESP32-C6"),
    BoardType.ESP32_H2.value: BoardProfile("ESP32-H2", "ESP32-H2", "ESP32-H2"),
})

DEFAULT_BOARD = BoardType.ESP32.value


def resolve_board(board_key: str) -> BoardProfile:
    """Look up a board profile by key.

    Args:
        board_key: One of the BoardType values, e.g. "ESP32-C3".

    Returns:
        The matching profile.

    Raises:
        KeyError: If the key is not a supported board.
    """
    try:
        return BOARD_PROFILES[board_key]
    except KeyError:
        supported = ", ".join(BOARD_PROFILES)
        raise KeyError(f"Unknown board {board_key!r}. Supported boards: {supported}") from None
