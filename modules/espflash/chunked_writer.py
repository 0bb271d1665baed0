"""Chunked firmware transfer."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Iterator, Optional

from config.settings import FlashTimings
from modules.espflash.formatting import format_bytes
from modules.espflash.link import LinkWriter
from modules.espflash.log_sink import LogSink


logger = logging.getLogger(__name__)

CHUNK_SIZE = 4096

# (chunk_index, total_chunks, bytes_done)
ChunkCallback = Callable[[int, int, int], None]


@dataclass(frozen=True)
class TransferSummary:
    """Result of a completed transfer."""
    total_chunks: int
    bytes_written: int


def chunk_count(length: int, chunk_size: int = CHUNK_SIZE) -> int:
    return -(-length // chunk_size)


def iter_chunks(data: bytes, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
    for start in range(0, len(data), chunk_size):
        yield data[start:start + chunk_size]


class ChunkedWriter:
    """Streams an image to the link in fixed-size chunks.

    Chunks go out strictly in order, each followed by a pacing delay. A write
    error aborts the transfer; chunks already sent are not rolled back.
    """

    def __init__(
        self,
        log: LogSink,
        timings: FlashTimings = FlashTimings(),
        chunk_size: int = CHUNK_SIZE,
    ):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be greater than 0")
        self._log = log
        self.chunk_size = chunk_size
        self.chunk_delay = timings.chunk_delay

    async def write_image(
        self,
        writer: LinkWriter,
        data: bytes,
        on_chunk: Optional[ChunkCallback] = None,
    ) -> TransferSummary:
        """Send ``data`` chunk by chunk.

        Args:
            writer: Link writer
            data: Image bytes
            on_chunk: Called after every chunk with (index, total, bytes_done)

        Returns:
            TransferSummary: Chunk count and bytes written.

        Raises:
            WriteFailure: On the first failed write.
            WriteTimeout: On the first write that misses its deadline.
        """
        total_chunks = chunk_count(len(data), self.chunk_size)
        bytes_done = 0

        for index, chunk in enumerate(iter_chunks(data, self.chunk_size), start=1):
            await writer.write(chunk)
            bytes_done += len(chunk)
            if on_chunk:
                on_chunk(index, total_chunks, bytes_done)
            await asyncio.sleep(self.chunk_delay)

        self._log.success(f"Sent {total_chunks} chunks ({format_bytes(len(data))})")
        return TransferSummary(total_chunks=total_chunks, bytes_written=bytes_done)
