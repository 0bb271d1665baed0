"""Flash session orchestrator.

Drives one serial link from port selection to teardown:

    Disconnected -> PortChosen -> Connecting -> Connected -> Flashing -> Connected
                                                    \\-> Disconnecting -> Disconnected

A flash attempt runs the phases Sync, Identify, Begin, Data, End and Verify
in order. Every phase except Data is a timed stand-in for a real bootloader
exchange; the ordering, progress values and error classes are fixed.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Union

from adapters.interfaces.transport import PortDescriptor, PortGrantInterface, TransportInterface
from config.settings import FlashSettings
from core.entities.board import DEFAULT_BOARD, BoardProfile, resolve_board
from core.entities.firmware import FirmwareImage, FlashRequest
from modules.espflash.chunked_writer import ChunkedWriter
from modules.espflash.errors import (
    CapabilityUnavailable,
    InvalidSessionState,
    NoPortSelected,
    PhaseFailure,
    ReadTimeoutOrError,
    SessionBusy,
    UserCancelled,
    ValidationFailure,
    WriteFailure,
    map_transport_error,
)
from modules.espflash.events import SessionEvent, SessionEvents
from modules.espflash.formatting import format_bytes, format_offset
from modules.espflash.link import LinkReader, LinkWriter
from modules.espflash.log_sink import LogEntry, LogSink
from modules.espflash.progress import FlashPhase, Progress, ProgressTracker
from modules.espflash.sync import SyncHandshake
from modules.espflash.validators import DEFAULT_OFFSET, build_flash_request


logger = logging.getLogger(__name__)

# Largest flash chip on supported boards
FLASH_SIZE_LIMIT = 16 * 1024 * 1024


class SessionState(Enum):
    """Lifecycle states of a flash session."""
    DISCONNECTED = "disconnected"
    PORT_CHOSEN = "port_chosen"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FLASHING = "flashing"
    DISCONNECTING = "disconnecting"


@dataclass(frozen=True)
class FlashOutcome:
    """Result of a successful flash attempt."""
    chip_id: str
    board: str
    target_offset: int
    bytes_written: int
    total_chunks: int
    elapsed_seconds: float
    progress: Progress


class FlashSession:
    """Owns one transport and runs flash attempts over it.

    State, progress and log changes are published on ``events`` right after
    they happen. At most one flash attempt runs at a time; a failed attempt
    leaves the session connected so the caller can retry.
    """

    def __init__(
        self,
        port_grant: Optional[PortGrantInterface] = None,
        settings: Optional[FlashSettings] = None,
        events: Optional[SessionEvents] = None,
        log: Optional[LogSink] = None,
        tracker: Optional[ProgressTracker] = None,
    ):
        """Initialize the session.

        Args:
            port_grant: Source of transports; None means the host has no serial access
            settings: Connection settings and phase timings
            events: Event channel, created when omitted
            log: Session log, created when omitted
            tracker: Progress tracker, created when omitted
        """
        self.port_grant = port_grant
        self.settings = settings or FlashSettings()
        self.events = events or SessionEvents()
        self._log = log or LogSink()
        self._tracker = tracker or ProgressTracker()

        self._log.set_append_callback(self._publish_log)
        self._tracker.set_update_callback(self._publish_progress)

        self._state = SessionState.DISCONNECTED
        self._transport: Optional[TransportInterface] = None
        self._writer: Optional[LinkWriter] = None
        self._reader: Optional[LinkReader] = None
        self._read_task: Optional[asyncio.Task] = None
        self._teardown_task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()

        self._chip_id: Optional[str] = None
        self._connected_port: Optional[PortDescriptor] = None
        self._board: BoardProfile = resolve_board(DEFAULT_BOARD)

    # Accessors

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def progress(self) -> Progress:
        return self._tracker.current

    @property
    def logs(self) -> List[LogEntry]:
        return self._log.entries()

    @property
    def log(self) -> LogSink:
        return self._log

    @property
    def tracker(self) -> ProgressTracker:
        return self._tracker

    @property
    def chip_id(self) -> Optional[str]:
        return self._chip_id

    @property
    def connected_port(self) -> Optional[PortDescriptor]:
        return self._connected_port

    @property
    def selected_board(self) -> BoardProfile:
        return self._board

    @property
    def is_connected(self) -> bool:
        return self._state in (SessionState.CONNECTED, SessionState.FLASHING)

    @property
    def teardown_task(self) -> Optional[asyncio.Task]:
        """Auto-disconnect scheduled after a successful flash, until its delay elapses."""
        return self._teardown_task

    # Port selection

    def request_port(self, name: Optional[str] = None) -> Optional[TransportInterface]:
        """Ask the port grant for a transport.

        Args:
            name: Port to grant; None lets the grant choose

        Returns:
            The granted transport, or None if the user cancelled.

        Raises:
            CapabilityUnavailable: If the host has no serial access.
            InvalidSessionState: If a link is already open.
        """
        self._require_capability()
        if self._state not in (SessionState.DISCONNECTED, SessionState.PORT_CHOSEN):
            raise InvalidSessionState("select a port", self._state.value)

        try:
            transport = self.port_grant.request_port(name)
        except UserCancelled as e:
            self._log.info(str(e))
            return None

        self._transport = transport
        self._set_state(SessionState.PORT_CHOSEN)
        self._log.success(f"Port authorized: {transport.describe().display_name}")
        return transport

    def available_ports(self) -> List[PortDescriptor]:
        self._require_capability()
        return self.port_grant.available_ports()

    def refresh_ports(self) -> List[PortDescriptor]:
        """Re-list the ports and log how many were found."""
        ports = self.available_ports()
        self._log.info(f"Found {len(ports)} serial port(s)")
        return ports

    def select_board(self, board_key: str) -> BoardProfile:
        """Set the board used when a request names none.

        Raises:
            ValidationFailure: If the key is not a supported board.
        """
        try:
            profile = resolve_board(board_key)
        except KeyError as e:
            raise ValidationFailure(e.args[0], "board") from None
        self._board = profile
        self._log.info(f"Board selected: {profile.display_name}")
        return profile

    def clear_logs(self) -> None:
        self._log.clear()

    # Connection

    async def connect(self, transport: Optional[TransportInterface] = None) -> Optional["FlashSession"]:
        """Open a transport and start draining it.

        Args:
            transport: Transport to open; defaults to the one from ``request_port``

        Returns:
            The session, or None if opening was cancelled by the user.

        Raises:
            CapabilityUnavailable: If the host has no serial access.
            NoPortSelected: If there is no transport to open.
            OpenFailure: If the transport refused to open.
            InvalidSessionState: If the session is not disconnected or holding a chosen port.
        """
        self._require_capability()

        async with self._lock:
            if self._state not in (SessionState.DISCONNECTED, SessionState.PORT_CHOSEN):
                raise InvalidSessionState("connect", self._state.value)
            self._cancel_teardown()

            transport = transport or self._transport
            if transport is None:
                error = NoPortSelected()
                self._log.error(str(error))
                raise error

            previous = self._state
            baud_rate = self.settings.baud_rate
            self._set_state(SessionState.CONNECTING)

            try:
                await transport.open(baud_rate)
            except UserCancelled as e:
                self._log.info(str(e))
                self._set_state(previous)
                return None
            except asyncio.CancelledError:
                self._set_state(previous)
                raise
            except Exception as e:
                error = map_transport_error(e, "open", port=transport.describe().device)
                self._log.error(f"Connection failed: {error}")
                self._set_state(previous)
                raise error from e

            self._transport = transport
            self._writer = LinkWriter(transport, self.settings.write_timeout)
            self._reader = LinkReader(transport, self.settings.read_timeout)
            self._connected_port = transport.describe()
            self._set_state(SessionState.CONNECTED)

            self._log.success(f"Connected to device at {baud_rate} baud")
            self._log.info(f"Baud rate: {baud_rate}")
            if self._connected_port.has_usb_ids:
                self._log.info(f"Port: USB {self._connected_port.vid_pid_label}")

            self._read_task = asyncio.create_task(self._reader.drain(self._on_read_error))
            return self

    async def disconnect(self) -> None:
        """Tear the link down. Safe to call at any time, any number of times.

        The read loop is cancelled first, then the writer is closed, then the
        transport. Teardown errors are logged as warnings and never raised.
        """
        self._cancel_teardown()
        # Cancelling the caller does not interrupt a teardown already under way
        await asyncio.shield(self._close_link())

    async def _close_link(self) -> None:
        async with self._lock:
            if self._state is SessionState.DISCONNECTED:
                return

            self._set_state(SessionState.DISCONNECTING)
            await self._cancel_read_loop()

            if self._writer is not None:
                try:
                    await self._writer.close()
                except Exception as e:
                    self._log.warning(f"Disconnection error: {e}")

            if self._transport is not None:
                try:
                    await self._transport.close()
                except Exception as e:
                    self._log.warning(f"Disconnection error: {e}")

            self._transport = None
            self._writer = None
            self._reader = None
            self._chip_id = None
            self._connected_port = None
            self._set_state(SessionState.DISCONNECTED)
            self._tracker.reset()
            self._log.info("Disconnected from device")

    # Flashing

    async def flash_image(
        self,
        image: Union[FirmwareImage, bytes, bytearray],
        offset: str = DEFAULT_OFFSET,
        erase_all: bool = False,
        board: Optional[str] = None,
    ) -> FlashOutcome:
        """Validate loosely typed input, then flash it.

        Args:
            image: Firmware image or raw bytes
            offset: Hexadecimal flash offset
            erase_all: Erase the whole flash first
            board: Board key, defaults to the selected board

        Raises:
            SessionBusy: If a flash attempt is already running.
            InvalidSessionState: If the session is not connected.
            ValidationFailure: If the input is rejected; no phase runs.
            PhaseFailure: If a phase fails.
        """
        if self._state is SessionState.FLASHING:
            raise SessionBusy()
        self._require_connected()

        try:
            request = build_flash_request(image, offset, erase_all, board or self._board.identifier)
        except ValidationFailure as e:
            self._log.error(f"Invalid flash request: {e.reason}")
            raise
        return await self.flash(request)

    async def flash(self, request: FlashRequest) -> FlashOutcome:
        """Run one flash attempt.

        Returns:
            FlashOutcome: Summary of the completed attempt.

        Raises:
            SessionBusy: If a flash attempt is already running. Nothing is logged.
            InvalidSessionState: If the session is not connected.
            ValidationFailure: If the request carries no image.
            PhaseFailure: If a phase fails; the session stays connected.
        """
        if self._state is SessionState.FLASHING:
            raise SessionBusy()
        self._require_connected()
        if request.image.size == 0:
            error = ValidationFailure("No firmware image loaded", "image")
            self._log.error(str(error))
            raise error

        self._cancel_teardown()
        self._set_state(SessionState.FLASHING)

        started = time.monotonic()
        timings = self.settings.timings
        board = request.board_profile
        data = request.image.data
        phase = FlashPhase.INITIALIZING

        self._tracker.start(len(data))
        self._log.info("Starting firmware flash...")
        self._log.info(f"Target board: {board.display_name}")

        try:
            await asyncio.sleep(timings.settle_delay)
            self._require_flashing()

            phase = FlashPhase.SYNC
            self._log.info("Syncing with bootloader...")
            await SyncHandshake(timings).run(self._require_writer())
            self._require_flashing()
            self._tracker.advance(FlashPhase.SYNC)

            phase = FlashPhase.IDENTIFY
            self._log.info("Reading chip ID...")
            self._chip_id = board.chip_id_label
            self._log.info(f"Chip ID: {self._chip_id}")
            self._log.info(f"Board: {board.display_name}")
            self._tracker.advance(FlashPhase.IDENTIFY)

            phase = FlashPhase.BEGIN
            await self._begin(request)
            self._require_flashing()
            self._tracker.advance(FlashPhase.BEGIN)

            phase = FlashPhase.DATA
            self._log.info("Writing firmware to flash...")
            summary = await ChunkedWriter(self._log, timings).write_image(
                self._require_writer(), data, on_chunk=self._on_chunk
            )
            self._require_flashing()
            self._tracker.advance(FlashPhase.DATA, bytes_done=summary.bytes_written)

            phase = FlashPhase.END
            self._log.info("Finalizing flash operation...")
            await asyncio.sleep(timings.settle_delay)
            self._require_flashing()
            self._tracker.advance(FlashPhase.END)

            phase = FlashPhase.VERIFY
            self._log.info("Verifying firmware...")
            await asyncio.sleep(timings.settle_delay)
            self._require_flashing()
            self._log.success("Firmware verification complete")
            self._tracker.advance(FlashPhase.VERIFY, bytes_done=len(data))
        except asyncio.CancelledError:
            if self._state is SessionState.FLASHING:
                self._tracker.fail("Flash cancelled")
            self._log.warning(f"Flash cancelled during {phase.value} phase")
            self._return_to_connected()
            raise
        except Exception as e:
            failure = PhaseFailure(phase.value, e)
            # disconnect() already reset progress
            if self._state is SessionState.FLASHING:
                self._tracker.fail(str(failure))
            self._log.error(f"Flash failed: {phase.value}: {e}")
            self._return_to_connected()
            raise failure from e

        self._log.success("Flash successful! Device will reboot now.")
        self._tracker.finish(True, "Flash complete")
        self._return_to_connected()

        outcome = FlashOutcome(
            chip_id=self._chip_id,
            board=board.identifier,
            target_offset=request.target_offset,
            bytes_written=summary.bytes_written,
            total_chunks=summary.total_chunks,
            elapsed_seconds=time.monotonic() - started,
            progress=self._tracker.current,
        )
        self._schedule_teardown()
        return outcome

    async def _begin(self, request: FlashRequest) -> None:
        size = format_bytes(request.image.size)
        offset = format_offset(request.target_offset)

        self._log.info(f"Flash offset: {offset}")
        self._log.info(f"Firmware size: {size}")
        self._log.info(f"Erase mode: {'Full erase' if request.erase_all else 'Preserve data'}")

        start, end = request.flash_window
        if end > FLASH_SIZE_LIMIT:
            raise ValidationFailure(
                f"Flash window {format_offset(start)}-{format_offset(end)} exceeds "
                f"{format_bytes(FLASH_SIZE_LIMIT)} flash",
                "offset",
            )

        self._log.info("Erasing flash memory...")
        await asyncio.sleep(self.settings.timings.settle_delay)
        self._log.info(f"Preparing flash: {size} at {offset}")

    def _on_chunk(self, chunk_index: int, total_chunks: int, bytes_done: int) -> None:
        self._require_flashing()
        self._tracker.advance(
            FlashPhase.DATA,
            bytes_done=bytes_done,
            chunk_index=chunk_index,
            total_chunks=total_chunks,
        )

    # Internals

    def _require_capability(self) -> None:
        if self.port_grant is None or not self.port_grant.is_available():
            error = CapabilityUnavailable()
            self._log.error(str(error))
            raise error

    def _require_connected(self) -> None:
        if self._state is not SessionState.CONNECTED:
            error = InvalidSessionState("flash", self._state.value)
            self._log.error(str(error))
            raise error

    def _require_flashing(self) -> None:
        # The link may have been torn down while a phase was suspended
        if self._state is not SessionState.FLASHING:
            raise WriteFailure("Link closed during flash")

    def _require_writer(self) -> LinkWriter:
        if self._writer is None:
            raise WriteFailure("Writer not available")
        return self._writer

    def _return_to_connected(self) -> None:
        # A concurrent disconnect() wins
        if self._state is SessionState.FLASHING:
            self._set_state(SessionState.CONNECTED)

    def _on_read_error(self, error: ReadTimeoutOrError) -> None:
        self._log.warning(f"Read error: {error.original_error or error}")

    async def _cancel_read_loop(self) -> None:
        task, self._read_task = self._read_task, None
        if task is None:
            return
        if not task.done():
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            self._log.warning(f"Disconnection error: {e}")

    def _schedule_teardown(self) -> None:
        delay = self.settings.auto_disconnect_delay
        self._teardown_task = asyncio.create_task(self._auto_teardown(delay))

    async def _auto_teardown(self, delay: float) -> None:
        await asyncio.sleep(delay)
        # From here on the teardown can no longer be cancelled
        self._teardown_task = None
        logger.info(f"Auto-disconnecting {delay:g}s after successful flash")
        await self.disconnect()

    def _cancel_teardown(self) -> None:
        task, self._teardown_task = self._teardown_task, None
        if task is not None and not task.done():
            task.cancel()

    def _set_state(self, state: SessionState) -> None:
        if state is self._state:
            return
        previous, self._state = self._state, state
        logger.debug(f"Session state {previous.value} -> {state.value}")
        self.events.publish(SessionEvent.STATE, state)

    def _publish_log(self, entry: LogEntry) -> None:
        self.events.publish(SessionEvent.LOG, entry)

    def _publish_progress(self, progress: Progress) -> None:
        self.events.publish(SessionEvent.PROGRESS, progress)
