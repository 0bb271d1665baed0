"""Infrastructure layer for the ESP flasher.

This package contains concrete implementations of external interfaces,
such as the pyserial-backed transport.
"""

__version__ = "0.1.0"
