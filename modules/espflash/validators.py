"""Validation of flash requests.

The exposed request surface takes loosely typed input (an image buffer, a
hexadecimal offset string, an erase flag and a board key). It is checked here
with Pydantic before any flash phase runs.
"""

import re
from typing import Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from core.entities.board import BOARD_PROFILES, DEFAULT_BOARD, resolve_board
from core.entities.firmware import FirmwareImage, FlashRequest
from modules.espflash.errors import ValidationFailure


DEFAULT_OFFSET = "0x10000"

_HEX_OFFSET = re.compile(r"^(0[xX])?[0-9a-fA-F]+$")


def parse_hex_offset(value: str) -> int:
    """Parse a flash offset such as ``"0x10000"`` or ``"8000"``.

    Raises:
        ValidationFailure: If the string is not a non-negative hex integer.
    """
    text = (value or "").strip()
    if not _HEX_OFFSET.match(text):
        raise ValidationFailure(f"Invalid flash offset {value!r}: expected a hexadecimal number", "offset")
    return int(text, 16)


class FlashRequestModel(BaseModel):
    """Raw flash request as received from a front end."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    image: FirmwareImage = Field(..., description="Firmware image to write")
    offset: str = Field(DEFAULT_OFFSET, description="Flash offset as a hexadecimal string")
    erase_all: bool = Field(False, description="Erase the whole flash before writing")
    board: str = Field(DEFAULT_BOARD, description="Board key")

    @field_validator("image")
    @classmethod
    def validate_image(cls, v):
        if v.size == 0:
            raise ValueError("No firmware image loaded")
        return v

    @field_validator("offset")
    @classmethod
    def validate_offset(cls, v):
        try:
            parse_hex_offset(v)
        except ValidationFailure as e:
            raise ValueError(e.reason) from None
        return v.strip()

    @field_validator("board")
    @classmethod
    def validate_board(cls, v):
        if v not in BOARD_PROFILES:
            supported = ", ".join(BOARD_PROFILES)
            raise ValueError(f"Unknown board {v!r}. Supported boards: {supported}")
        return v

    def to_request(self) -> FlashRequest:
        return FlashRequest(
            image=self.image,
            target_offset=parse_hex_offset(self.offset),
            erase_all=self.erase_all,
            board_profile=resolve_board(self.board),
        )


def build_flash_request(
    image: Union[FirmwareImage, bytes, bytearray],
    offset: str = DEFAULT_OFFSET,
    erase_all: bool = False,
    board: str = DEFAULT_BOARD,
) -> FlashRequest:
    """Validate raw input and build a FlashRequest.

    Raises:
        ValidationFailure: Naming the first invalid field.
    """
    if not isinstance(image, FirmwareImage):
        image = FirmwareImage(data=bytes(image or b""))

    try:
        model = FlashRequestModel(image=image, offset=offset, erase_all=erase_all, board=board)
    except ValidationError as e:
        error = e.errors()[0]
        field = ".".join(str(part) for part in error.get("loc", ())) or None
        message = error.get("msg", str(e))
        # Pydantic prefixes custom messages with "Value error, "
        message = message.removeprefix("Value error, ")
        raise ValidationFailure(message, field) from e

    return model.to_request()
