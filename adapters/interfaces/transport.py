"""Transport and port-grant interface definitions."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional


# Well-known USB-to-UART bridges found on ESP32 dev boards
SILICON_LABS_VID = 0x10C4
ESPRESSIF_VID = 0x303A


@dataclass(frozen=True)
class PortDescriptor:
    """Description of a serial port.

    USB identifiers are optional: a native UART has neither.
    """
    device: Optional[str] = None
    vendor_id: Optional[int] = None
    product_id: Optional[int] = None
    description: Optional[str] = None

    @property
    def has_usb_ids(self) -> bool:
        return self.vendor_id is not None

    @property
    def vid_pid_label(self) -> str:
        """``VID:10C4, PID:EA60`` style label (``N/A`` for a missing PID)."""
        vid = _hex4(self.vendor_id) if self.vendor_id is not None else "N/A"
        pid = _hex4(self.product_id) if self.product_id is not None else "N/A"
        return f"VID:{vid}, PID:{pid}"

    @property
    def display_name(self) -> str:
        """Human readable name for logs and port pickers."""
        if self.vendor_id is None:
            return "Serial Port"
        if self.vendor_id == SILICON_LABS_VID:
            return f"CP210x USB Bridge ({self.vid_pid_label})"
        if self.vendor_id == ESPRESSIF_VID:
            return f"ESP32 USB ({self.vid_pid_label})"
        return f"USB Device ({self.vid_pid_label})"


def _hex4(value: int) -> str:
    return f"{value:04X}"


class TransportInterface(ABC):
    """Byte-stream link to a device.

    Implementations suspend the caller until the operation completes; they
    never retry on behalf of the flash session.
    """

    @abstractmethod
    async def open(self, baud_rate: int) -> None:
        """Open the link at the given baud rate."""
        pass

    @abstractmethod
    async def read(self) -> bytes:
        """Read whatever bytes are available (may be empty)."""
        pass

    @abstractmethod
    async def write(self, data: bytes) -> None:
        """Write bytes; returns once the link accepted them."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the link."""
        pass

    @abstractmethod
    def describe(self) -> PortDescriptor:
        """Describe the underlying port."""
        pass

    async def flush(self) -> None:
        """Wait until buffered output has been handed to the device."""
        return None


class PortGrantInterface(ABC):
    """Capability that hands out transports for user-chosen ports."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the host has any serial capability at all."""
        pass

    @abstractmethod
    def available_ports(self) -> List[PortDescriptor]:
        """Ports that can be granted without further user interaction."""
        pass

    @abstractmethod
    def request_port(self, name: Optional[str] = None) -> TransportInterface:
        """Grant a transport for a port.

        Raises:
            UserCancelled: If the user dismissed the selection.
        """
        pass
