"""Shared fakes and fixtures for the flash session tests."""

import asyncio
from typing import List, Optional

import pytest
import pytest_asyncio

from adapters.interfaces.transport import PortDescriptor, PortGrantInterface, TransportInterface
from config.settings import FlashSettings, FlashTimings
from modules.espflash.errors import UserCancelled
from modules.espflash.session import FlashSession


CP210X_PORT = PortDescriptor(
    device="/dev/ttyUSB0",
    vendor_id=0x10C4,
    product_id=0xEA60,
    description="CP2102 USB to UART Bridge Controller",
)


class FakeTransport(TransportInterface):
    """In-memory transport recording every call.

    ``fail_on_write`` makes the N-th write (1-based) raise ``write_error``.
    ``hold_writes()`` parks writers until ``release_writes()``, and
    ``hold_flush()`` does the same for flush.
    """

    def __init__(
        self,
        descriptor: PortDescriptor = CP210X_PORT,
        fail_on_write: Optional[int] = None,
        write_error: Optional[BaseException] = None,
        open_error: Optional[BaseException] = None,
        close_error: Optional[BaseException] = None,
    ):
        self.descriptor = descriptor
        self.fail_on_write = fail_on_write
        self.write_error = write_error
        self.open_error = open_error
        self.close_error = close_error

        self.calls: List[str] = []
        self.writes: List[bytes] = []
        self.write_attempts = 0
        self.baud_rate: Optional[int] = None
        self.is_open = False
        self._incoming: asyncio.Queue = asyncio.Queue()
        self._gate = asyncio.Event()
        self._gate.set()
        self._flush_gate = asyncio.Event()
        self._flush_gate.set()

    async def open(self, baud_rate: int) -> None:
        self.calls.append("open")
        if self.open_error:
            raise self.open_error
        self.baud_rate = baud_rate
        self.is_open = True

    async def read(self) -> bytes:
        item = await self._incoming.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def write(self, data: bytes) -> None:
        self.write_attempts += 1
        await self._gate.wait()
        if self.fail_on_write == self.write_attempts:
            raise self.write_error or OSError("write failed")
        self.writes.append(bytes(data))

    async def flush(self) -> None:
        self.calls.append("flush")
        await self._flush_gate.wait()

    async def close(self) -> None:
        self.calls.append("close")
        self.is_open = False
        if self.close_error:
            raise self.close_error

    def describe(self) -> PortDescriptor:
        return self.descriptor

    def feed(self, data: bytes) -> None:
        self._incoming.put_nowait(data)

    def feed_error(self, error: BaseException) -> None:
        self._incoming.put_nowait(error)

    def hold_writes(self) -> None:
        self._gate.clear()

    def release_writes(self) -> None:
        self._gate.set()

    def hold_flush(self) -> None:
        self._flush_gate.clear()

    def release_flush(self) -> None:
        self._flush_gate.set()


class FakePortGrant(PortGrantInterface):
    """Port grant handing out a fixed transport."""

    def __init__(
        self,
        transport: Optional[TransportInterface] = None,
        available: bool = True,
        cancel: bool = False,
        ports: Optional[List[PortDescriptor]] = None,
    ):
        self.transport = transport
        self.available = available
        self.cancel = cancel
        self.ports = ports if ports is not None else [CP210X_PORT]
        self.requested: List[Optional[str]] = []

    def is_available(self) -> bool:
        return self.available

    def available_ports(self) -> List[PortDescriptor]:
        return list(self.ports)

    def request_port(self, name: Optional[str] = None) -> TransportInterface:
        self.requested.append(name)
        if self.cancel:
            raise UserCancelled()
        return self.transport


@pytest.fixture
def instant_settings():
    """Settings without pacing delays and with immediate auto-disconnect."""
    return FlashSettings(timings=FlashTimings.instant(), auto_disconnect_delay=0.0)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def port_grant(transport):
    return FakePortGrant(transport)


@pytest.fixture
def session(port_grant, instant_settings):
    return FlashSession(port_grant=port_grant, settings=instant_settings)


@pytest_asyncio.fixture
async def connected_session(session, transport):
    """Session already connected to the fake transport."""
    await session.connect(transport)
    yield session
    await session.disconnect()


async def wait_until(predicate, attempts: int = 200, interval: float = 0.0) -> None:
    """Yield to the loop until ``predicate()`` holds or attempts run out."""
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(interval)
