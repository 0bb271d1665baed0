"""Tests for FlashSession port selection, connect, disconnect and read loop."""

import asyncio

import pytest

from adapters.interfaces.transport import PortDescriptor
from config.settings import FlashSettings, FlashTimings
from modules.espflash.errors import (
    CapabilityUnavailable,
    InvalidSessionState,
    NoPortSelected,
    OpenFailure,
    UserCancelled,
    ValidationFailure,
)
from modules.espflash.events import SessionEvent
from modules.espflash.log_sink import LogLevel
from modules.espflash.progress import IDLE_PROGRESS
from modules.espflash.session import FlashSession, SessionState

from conftest import FakePortGrant, FakeTransport, wait_until


class TestPortSelection:
    """request_port, ports and board selection."""

    def test_request_port_moves_to_port_chosen(self, session, port_grant, transport):
        granted = session.request_port("/dev/ttyUSB0")

        assert granted is transport
        assert port_grant.requested == ["/dev/ttyUSB0"]
        assert session.state == SessionState.PORT_CHOSEN
        assert session.log.messages() == ["Port authorized: CP210x USB Bridge (VID:10C4, PID:EA60)"]

    def test_cancelled_selection_is_informational(self, transport, instant_settings):
        session = FlashSession(FakePortGrant(transport, cancel=True), instant_settings)

        assert session.request_port() is None
        assert session.state == SessionState.DISCONNECTED
        entry = session.logs[-1]
        assert entry.level == LogLevel.INFO
        assert entry.message == "Port selection cancelled"

    def test_no_capability(self, instant_settings):
        session = FlashSession(None, instant_settings)

        with pytest.raises(CapabilityUnavailable):
            session.request_port()
        assert session.logs[-1].level == LogLevel.ERROR

    def test_refresh_ports_logs_count(self, session):
        ports = session.refresh_ports()

        assert [p.display_name for p in ports] == ["CP210x USB Bridge (VID:10C4, PID:EA60)"]
        assert session.log.messages()[-1] == "Found 1 serial port(s)"

    def test_select_board(self, session):
        profile = session.select_board("ESP32-S3")

        assert profile.identifier == "ESP32-S3"
        assert session.selected_board is profile
        assert session.log.messages()[-1] == "Board selected: ESP32-S3"

    def test_select_unknown_board(self, session):
        with pytest.raises(ValidationFailure) as exc_info:
            session.select_board("ESP8266")

        assert exc_info.value.field == "board"
        assert session.selected_board.identifier == "ESP32"


class TestConnect:
    """connect() transitions and logging."""

    @pytest.mark.asyncio
    async def test_connect_opens_at_configured_baud(self, session, transport):
        result = await session.connect(transport)

        assert result is session
        assert session.state == SessionState.CONNECTED
        assert transport.baud_rate == 115200
        assert session.connected_port == transport.descriptor
        assert session.log.messages() == [
            "Connected to device at 115200 baud",
            "Baud rate: 115200",
            "Port: USB VID:10C4, PID:EA60",
        ]
        await session.disconnect()

    @pytest.mark.asyncio
    async def test_connect_uses_requested_port(self, session, transport):
        session.request_port()

        await session.connect()

        assert transport.calls == ["open"]
        assert session.state == SessionState.CONNECTED
        await session.disconnect()

    @pytest.mark.asyncio
    async def test_port_line_skipped_without_usb_ids(self, instant_settings):
        transport = FakeTransport(descriptor=PortDescriptor(device="/dev/ttyS0"))
        session = FlashSession(FakePortGrant(transport), instant_settings)

        await session.connect(transport)

        assert not any(m.startswith("Port:") for m in session.log.messages())
        await session.disconnect()

    @pytest.mark.asyncio
    async def test_port_line_without_product_id(self, instant_settings):
        transport = FakeTransport(descriptor=PortDescriptor(device="COM3", vendor_id=0x303A))
        session = FlashSession(FakePortGrant(transport), instant_settings)

        await session.connect(transport)

        assert "Port: USB VID:303A, PID:N/A" in session.log.messages()
        await session.disconnect()

    @pytest.mark.asyncio
    async def test_connect_without_port(self, session):
        with pytest.raises(NoPortSelected):
            await session.connect()

        assert session.state == SessionState.DISCONNECTED
        assert session.logs[-1].level == LogLevel.ERROR

    @pytest.mark.asyncio
    async def test_connect_without_capability(self, transport, instant_settings):
        session = FlashSession(FakePortGrant(transport, available=False), instant_settings)

        with pytest.raises(CapabilityUnavailable):
            await session.connect(transport)
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_open_failure_restores_state(self, session, transport):
        transport.open_error = OSError("Permission denied")
        session.request_port()

        with pytest.raises(OpenFailure) as exc_info:
            await session.connect()

        assert "/dev/ttyUSB0" in str(exc_info.value)
        assert session.state == SessionState.PORT_CHOSEN
        assert session.logs[-1].message.startswith("Connection failed: Could not open port /dev/ttyUSB0")

    @pytest.mark.asyncio
    async def test_cancelled_open_returns_none(self, session, transport):
        transport.open_error = UserCancelled()

        assert await session.connect(transport) is None
        assert session.state == SessionState.DISCONNECTED
        assert session.logs[-1].level == LogLevel.INFO

    @pytest.mark.asyncio
    async def test_connect_twice(self, connected_session, transport):
        with pytest.raises(InvalidSessionState):
            await connected_session.connect(transport)

        assert connected_session.state == SessionState.CONNECTED

    @pytest.mark.asyncio
    async def test_state_events(self, session, transport):
        states = []
        session.events.add_listener(SessionEvent.STATE, lambda _, state: states.append(state))

        await session.connect(transport)
        await session.disconnect()

        assert states == [
            SessionState.CONNECTING,
            SessionState.CONNECTED,
            SessionState.DISCONNECTING,
            SessionState.DISCONNECTED,
        ]

    @pytest.mark.asyncio
    async def test_all_listener_sees_logs(self, session, transport):
        seen = []
        session.events.add_listener(SessionEvent.ALL, lambda event_type, _: seen.append(event_type))

        await session.connect(transport)

        assert SessionEvent.STATE in seen
        assert SessionEvent.LOG in seen
        await session.disconnect()


class TestDisconnect:
    """Teardown order and idempotency."""

    @pytest.mark.asyncio
    async def test_disconnect_twice(self, connected_session):
        await connected_session.disconnect()
        await connected_session.disconnect()

        assert connected_session.state == SessionState.DISCONNECTED
        assert connected_session.chip_id is None
        assert connected_session.connected_port is None
        assert connected_session.log.messages().count("Disconnected from device") == 1

    @pytest.mark.asyncio
    async def test_disconnect_order(self, connected_session, transport):
        read_task = connected_session._read_task

        await connected_session.disconnect()

        assert read_task.cancelled()
        assert transport.calls == ["open", "flush", "close"]

    @pytest.mark.asyncio
    async def test_disconnect_keeps_log_and_resets_progress(self, connected_session):
        await connected_session.flash_image(bytes(100))
        entries = len(connected_session.logs)

        await connected_session.disconnect()

        assert connected_session.progress == IDLE_PROGRESS
        assert len(connected_session.logs) == entries + 1

    @pytest.mark.asyncio
    async def test_disconnect_error_is_a_warning(self, connected_session, transport):
        transport.close_error = OSError("device gone")

        await connected_session.disconnect()

        assert connected_session.state == SessionState.DISCONNECTED
        warnings = [e.message for e in connected_session.logs if e.level == LogLevel.WARNING]
        assert warnings == ["Disconnection error: device gone"]

    @pytest.mark.asyncio
    async def test_disconnect_from_port_chosen(self, session, transport):
        session.request_port()

        await session.disconnect()

        assert session.state == SessionState.DISCONNECTED
        assert transport.calls == ["close"]

    @pytest.mark.asyncio
    async def test_cancelled_caller_still_completes_teardown(self, connected_session, transport):
        transport.hold_flush()
        caller = asyncio.create_task(connected_session.disconnect())
        await wait_until(lambda: "flush" in transport.calls)

        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller
        transport.release_flush()
        await wait_until(lambda: connected_session.state == SessionState.DISCONNECTED)

        assert connected_session.state == SessionState.DISCONNECTED
        assert transport.calls == ["open", "flush", "close"]
        assert not transport.is_open


class TestReadLoop:
    """Background drain started by connect()."""

    @pytest.mark.asyncio
    async def test_counts_bytes_and_stops_on_error(self, connected_session, transport):
        transport.feed(b"ets Jun  8 2016")
        transport.feed_error(OSError("device lost"))

        await asyncio.wait_for(connected_session._read_task, 1.0)

        assert connected_session._reader.bytes_received == 15
        entry = connected_session.logs[-1]
        assert entry.level == LogLevel.WARNING
        assert entry.message == "Read error: device lost"
        assert connected_session.state == SessionState.CONNECTED

    @pytest.mark.asyncio
    async def test_read_timeouts_are_ignored(self, port_grant, transport):
        settings = FlashSettings(timings=FlashTimings.instant(), read_timeout=0.01)
        session = FlashSession(port_grant, settings)
        await session.connect(transport)

        await asyncio.sleep(0.05)

        assert not session._read_task.done()
        assert all(e.level != LogLevel.WARNING for e in session.logs)
        await session.disconnect()
