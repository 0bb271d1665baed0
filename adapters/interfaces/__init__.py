"""Interfaces package for adapters.

Defines the transport and port-grant capabilities consumed by the flash session."""

from .transport import (
    PortDescriptor,
    PortGrantInterface,
    TransportInterface,
)
