"""pyserial-backed transport and port grant.

Blocking pyserial calls run in the default executor so the flash session's
event loop keeps running while bytes move.
"""

import asyncio
import logging
import threading
from typing import List, Optional

import serial
import serial.tools.list_ports
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from adapters.interfaces.transport import PortDescriptor, PortGrantInterface, TransportInterface
from modules.espflash.detector import DeviceDetector
from modules.espflash.errors import OpenFailure, UserCancelled


logger = logging.getLogger(__name__)


class SerialTransport(TransportInterface):
    """Transport over a local serial port."""

    def __init__(
        self,
        port: str,
        descriptor: Optional[PortDescriptor] = None,
        poll_timeout: float = 0.1,
        read_chunk: int = 1024,
    ):
        """Initialize the transport.

        Args:
            port: OS device name ('/dev/ttyUSB0', 'COM3', ...)
            descriptor: USB metadata for the port, if known
            poll_timeout: Upper bound for one blocking read in seconds
            read_chunk: Maximum bytes returned by one read
        """
        self.port = port
        self.descriptor = descriptor or PortDescriptor(device=port)
        self.poll_timeout = poll_timeout
        self.read_chunk = read_chunk
        self._serial: Optional[serial.Serial] = None
        self._read_lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return self._serial is not None and self._serial.is_open

    async def open(self, baud_rate: int) -> None:
        if self.is_open:
            raise OpenFailure(self.port, RuntimeError("port is already open"))

        loop = asyncio.get_running_loop()
        try:
            self._serial = await loop.run_in_executor(None, self._open_blocking, baud_rate)
        except (serial.SerialException, OSError, ValueError) as e:
            raise OpenFailure(self.port, e) from e

        logger.info(f"Opened {self.port} at {baud_rate} baud")

    # The OS device can briefly vanish while the board re-enumerates after reset
    @retry(
        stop=stop_after_attempt(3),
        wait=wait_fixed(0.25),
        retry=retry_if_exception_type(serial.SerialException),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    def _open_blocking(self, baud_rate: int) -> serial.Serial:
        return serial.Serial(
            port=self.port,
            baudrate=baud_rate,
            timeout=self.poll_timeout,
            write_timeout=None,
        )

    async def read(self) -> bytes:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._read_blocking)

    def _read_blocking(self) -> bytes:
        with self._read_lock:
            ser = self._require_open()
            size = min(max(1, ser.in_waiting), self.read_chunk)
            return ser.read(size)

    async def write(self, data: bytes) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._write_blocking, bytes(data))

    def _write_blocking(self, data: bytes) -> None:
        ser = self._require_open()
        written = ser.write(data)
        if written is not None and written != len(data):
            raise serial.SerialException(f"short write: {written} of {len(data)} bytes")

    async def flush(self) -> None:
        if not self.is_open:
            return
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._serial.flush)

    async def close(self) -> None:
        if self._serial is None:
            return
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._close_blocking)
        logger.info(f"Closed {self.port}")

    def _close_blocking(self) -> None:
        # Waits for an in-flight read, bounded by poll_timeout
        with self._read_lock:
            ser, self._serial = self._serial, None
            if ser is not None and ser.is_open:
                ser.close()

    def describe(self) -> PortDescriptor:
        return self.descriptor

    def _require_open(self) -> serial.Serial:
        if self._serial is None or not self._serial.is_open:
            raise serial.SerialException(f"Port {self.port} is not open")
        return self._serial


class SerialPortGrant(PortGrantInterface):
    """Grants SerialTransport handles for host serial ports."""

    def __init__(self, detector: Optional[DeviceDetector] = None):
        self.detector = detector or DeviceDetector()

    def is_available(self) -> bool:
        try:
            serial.tools.list_ports.comports()
        except OSError as e:
            logger.error(f"Serial port enumeration unavailable: {e}")
            return False
        return True

    def available_ports(self) -> List[PortDescriptor]:
        return self.detector.scan_ports()

    def request_port(self, name: Optional[str] = None) -> SerialTransport:
        """Grant a transport for ``name``, or for the only ESP port found.

        Raises:
            UserCancelled: If no port was named and no single ESP port exists.
        """
        if name is None:
            candidates = self.detector.scan_esp_ports()
            if len(candidates) != 1:
                raise UserCancelled(
                    "Port selection cancelled" if not candidates
                    else f"Port selection cancelled: {len(candidates)} candidate ports, choose one"
                )
            descriptor = candidates[0]
            return SerialTransport(descriptor.device, descriptor)

        for descriptor in self.detector.scan_ports():
            if descriptor.device == name:
                return SerialTransport(name, descriptor)
        return SerialTransport(name)
