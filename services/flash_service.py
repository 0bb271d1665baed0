"""Flash service: one-shot firmware flashing over a FlashSession."""

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from adapters.interfaces.transport import PortDescriptor, PortGrantInterface
from config.settings import FlashSettings
from core.entities.firmware import FirmwareImage
from infrastructure.serial_transport import SerialPortGrant
from modules.espflash.errors import FlashSessionError, ValidationFailure
from modules.espflash.progress import ProgressDelegate, ProgressTracker
from modules.espflash.session import FlashOutcome, FlashSession
from modules.espflash.validators import DEFAULT_OFFSET, build_flash_request

logger = logging.getLogger(__name__)


class FlashService:
    """Loads firmware, validates the request and drives a session end to end."""

    def __init__(
        self,
        settings: Optional[FlashSettings] = None,
        port_grant: Optional[PortGrantInterface] = None,
        progress_delegates: Optional[List[ProgressDelegate]] = None,
    ):
        """Initialize the service.

        Args:
            settings: Session settings, read from the environment when omitted
            port_grant: Port grant, pyserial-backed when omitted
            progress_delegates: Receivers of progress snapshots
        """
        self.settings = settings or FlashSettings.from_env()
        self.port_grant = port_grant or SerialPortGrant()
        self.session = FlashSession(
            port_grant=self.port_grant,
            settings=self.settings,
            tracker=ProgressTracker(progress_delegates),
        )
        logger.info("FlashService initialized")

    def list_ports(self) -> List[PortDescriptor]:
        return self.session.refresh_ports()

    @staticmethod
    def load_firmware(firmware_path: Union[str, Path]) -> FirmwareImage:
        """Read a ``.bin`` image.

        Raises:
            ValidationFailure: If the file is not a ``.bin`` file.
            OSError: If the file cannot be read.
        """
        try:
            return FirmwareImage.from_file(firmware_path)
        except ValueError as e:
            raise ValidationFailure(str(e), "image") from e

    async def flash_firmware(
        self,
        firmware_path: Union[str, Path],
        port: Optional[str] = None,
        offset: str = DEFAULT_OFFSET,
        erase_all: bool = False,
        board: Optional[str] = None,
    ) -> Optional[FlashOutcome]:
        """Flash a firmware file and wait for the device to be released.

        The request is validated before any port is touched. On success the
        session's auto-disconnect is awaited; on failure the link is closed
        right away.

        Args:
            firmware_path: Path to the ``.bin`` image
            port: Serial port name; None picks the only ESP port found
            offset: Hexadecimal flash offset
            erase_all: Erase the whole flash first
            board: Board key, defaults to the session's selected board

        Returns:
            The outcome, or None if port selection or opening was cancelled.

        Raises:
            ValidationFailure: For a bad file, offset or board.
            FlashSessionError: For connection and phase failures.
        """
        image = self.load_firmware(firmware_path)
        if board:
            self.session.select_board(board)
        request = build_flash_request(image, offset, erase_all, self.session.selected_board.identifier)

        logger.info(f"Flashing {image.name} -> {port or 'auto-detected port'}")

        if self.session.request_port(port) is None:
            return None
        if await self.session.connect() is None:
            return None

        try:
            outcome = await self.session.flash(request)
        except FlashSessionError:
            await self.session.disconnect()
            raise

        await self.wait_for_teardown()
        return outcome

    async def wait_for_teardown(self) -> None:
        """Wait for a pending auto-disconnect, if any."""
        task = self.session.teardown_task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            logger.debug("Auto-disconnect was cancelled")

    async def close(self) -> None:
        await self.session.disconnect()

    def get_flash_statistics(self) -> Dict[str, Any]:
        """Snapshot of the session for status displays."""
        progress = self.session.progress
        port = self.session.connected_port
        return {
            "state": self.session.state.value,
            "percentage": progress.percentage,
            "status": progress.status,
            "bytes_done": progress.bytes_done,
            "bytes_total": progress.bytes_total,
            "chip_id": self.session.chip_id,
            "port": port.display_name if port else None,
            "board": self.session.selected_board.identifier,
        }
