"""Reader and writer halves of an open transport.

The writer bounds each write with a deadline and classifies failures; the
reader bounds each read with a timeout and runs the background drain loop.
"""

import asyncio
import logging
from typing import Callable, Optional

from adapters.interfaces.transport import TransportInterface
from modules.espflash.errors import (
    ReadTimeoutOrError,
    WriteFailure,
    WriteTimeout,
    map_transport_error,
)


logger = logging.getLogger(__name__)


class LinkWriter:
    """Write side of a session's transport."""

    def __init__(self, transport: TransportInterface, write_timeout: Optional[float] = None):
        """Initialize the writer.

        Args:
            transport: Open transport
            write_timeout: Deadline for each write in seconds, None for no deadline
        """
        self._transport = transport
        self.write_timeout = write_timeout
        self.bytes_written = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def write(self, data: bytes) -> None:
        """Write one buffer.

        Raises:
            WriteTimeout: If the deadline passed before the transport accepted the data.
            WriteFailure: For any other write error, including a closed writer.
        """
        if self._closed:
            raise WriteFailure("Writer not available")

        try:
            if self.write_timeout is None:
                await self._transport.write(data)
            else:
                await asyncio.wait_for(self._transport.write(data), self.write_timeout)
        except asyncio.TimeoutError as e:
            raise WriteTimeout(self.write_timeout, e) from e
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise map_transport_error(e, "write", timeout=self.write_timeout) from e

        self.bytes_written += len(data)

    async def close(self) -> None:
        """Flush pending output and refuse further writes. Idempotent."""
        if self._closed:
            return
        self._closed = True
        await self._transport.flush()


class LinkReader:
    """Read side of a session's transport."""

    def __init__(self, transport: TransportInterface, read_timeout: float = 1.0):
        self._transport = transport
        self.read_timeout = read_timeout
        self.bytes_received = 0

    async def read(self, timeout: Optional[float] = None) -> bytes:
        """Read available bytes, waiting at most ``timeout`` seconds.

        Raises:
            ReadTimeoutOrError: On timeout (``timed_out`` set) or read failure.
        """
        timeout = timeout if timeout is not None else self.read_timeout
        try:
            data = await asyncio.wait_for(self._transport.read(), timeout)
        except asyncio.TimeoutError as e:
            raise ReadTimeoutOrError(True, timeout, e) from e
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise ReadTimeoutOrError(False, original_error=e) from e
        return data or b""

    async def drain(self, on_error: Callable[[ReadTimeoutOrError], None]) -> None:
        """Consume incoming bytes until cancelled or a read fails.

        Timeouts are expected while the device is silent and are ignored.
        """
        while True:
            try:
                data = await self.read()
            except ReadTimeoutOrError as e:
                if e.timed_out:
                    continue
                on_error(e)
                return

            if data:
                self.bytes_received += len(data)
                logger.debug(f"Drained {len(data)} bytes from device")
            else:
                await asyncio.sleep(0)
