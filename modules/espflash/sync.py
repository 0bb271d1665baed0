"""Bootloader sync handshake."""

import asyncio
import logging

from config.settings import FlashTimings
from modules.espflash.link import LinkWriter


logger = logging.getLogger(__name__)

SYNC_FRAME_LENGTH = 36
FRAME_DELIMITER = 0xC0


def build_sync_frame(length: int = SYNC_FRAME_LENGTH) -> bytes:
    """Frame with the delimiter on every even index and 0x00 on every odd one."""
    return bytes(FRAME_DELIMITER if i % 2 == 0 else 0x00 for i in range(length))


SYNC_FRAME = build_sync_frame()


class SyncHandshake:
    """Aligns the bootloader by sending the sync frame repeatedly.

    No acknowledgment is read; the first failed write aborts the handshake.
    """

    def __init__(self, timings: FlashTimings = FlashTimings()):
        self.attempts = timings.sync_attempts
        self.interval = timings.sync_interval

    async def run(self, writer: LinkWriter) -> int:
        """Send the sync frame ``attempts`` times.

        Returns:
            Number of frames sent.

        Raises:
            WriteFailure: If a write fails.
            WriteTimeout: If a write misses its deadline.
        """
        for attempt in range(1, self.attempts + 1):
            await writer.write(SYNC_FRAME)
            logger.debug(f"Sync frame {attempt}/{self.attempts} sent")
            await asyncio.sleep(self.interval)
        return self.attempts
