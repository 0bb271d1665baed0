"""Serial port detection for ESP32 boards.

Lists the host's serial ports with pyserial and flags the ones that look like
an ESP32 dev board, either by USB VID/PID or by description.
"""

import logging
from typing import List

import serial.tools.list_ports

from adapters.interfaces.transport import PortDescriptor


logger = logging.getLogger(__name__)


class DeviceDetector:
    """Finds serial ports that probably host an ESP32 bootloader."""

    # Known VID/PID pairs on ESP32 boards
    ESP_VID_PID = [
        (0x303A, 0x1001),  # Espressif USB-Serial/JTAG (C3, S3, C6, H2)
        (0x303A, 0x0002),  # Espressif ESP32-S2 native USB
        (0x10C4, 0xEA60),  # Silicon Labs CP210x
        (0x1A86, 0x7523),  # QinHeng CH340
        (0x1A86, 0x55D4),  # QinHeng CH9102
        (0x0403, 0x6001),  # FTDI FT232R
    ]

    ESP_KEYWORDS = ["esp", "silicon labs", "cp210", "ch340", "ch910", "ftdi", "usb jtag"]

    def scan_ports(self) -> List[PortDescriptor]:
        """Describe every serial port on the host.

        Returns:
            One descriptor per port, ESP candidates first.
        """
        ports = serial.tools.list_ports.comports()
        descriptors = [self.describe(port) for port in ports]
        descriptors.sort(key=lambda d: not self.is_esp_device(d))
        logger.info(f"Found {len(descriptors)} serial port(s)")
        return descriptors

    def scan_esp_ports(self) -> List[PortDescriptor]:
        """Only the ports that look like ESP boards."""
        detected = [d for d in self.scan_ports() if self.is_esp_device(d)]
        logger.info(f"Found {len(detected)} potential ESP device(s)")
        return detected

    @staticmethod
    def describe(port) -> PortDescriptor:
        """Build a descriptor from a pyserial ``ListPortInfo``."""
        return PortDescriptor(
            device=port.device,
            vendor_id=getattr(port, "vid", None),
            product_id=getattr(port, "pid", None),
            description=port.description or None,
        )

    def is_esp_device(self, descriptor: PortDescriptor) -> bool:
        """Whether a port looks like an ESP board."""
        if descriptor.vendor_id is not None and descriptor.product_id is not None:
            if (descriptor.vendor_id, descriptor.product_id) in self.ESP_VID_PID:
                return True

        description = (descriptor.description or "").lower()
        return any(keyword in description for keyword in self.ESP_KEYWORDS)
