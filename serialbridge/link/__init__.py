from serialbridge.link.base import (
    LinkBusyError,
    LinkError,
    LinkIOError,
    LinkNotOpenError,
    OpenTimeout,
    PortOpener,
    SerialHandle,
)
from serialbridge.link.negotiator import (
    BaudCandidate,
    ConnectionAttempt,
    LinkNegotiator,
    NegotiationFailure,
    NegotiationOutcome,
    build_candidates,
)
from serialbridge.link.ports import DeviceDescriptor, list_devices
from serialbridge.link.pyserial_transport import PySerialOpener, start_reader_thread
from serialbridge.link.serial_link import LinkState, SerialLink

__all__ = [
    "LinkError",
    "LinkBusyError",
    "LinkIOError",
    "LinkNotOpenError",
    "OpenTimeout",
    "NegotiationFailure",
    "PortOpener",
    "SerialHandle",
    "BaudCandidate",
    "ConnectionAttempt",
    "NegotiationOutcome",
    "LinkNegotiator",
    "build_candidates",
    "PySerialOpener",
    "start_reader_thread",
    "LinkState",
    "SerialLink",
    "DeviceDescriptor",
    "list_devices",
]
