from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Protocol, runtime_checkable


class LinkError(ConnectionError):
    pass


class OpenTimeout(LinkError):
    pass


class LinkNotOpenError(LinkError):
    pass


class LinkIOError(LinkError):
    pass


class LinkBusyError(LinkError):
    pass


@runtime_checkable
class SerialHandle(Protocol):
    is_open: bool

    def write(self, data: bytes) -> int | None:
        ...

    def flush(self) -> None:
        ...

    def close(self) -> None:
        ...


class PortOpener(ABC):
    @abstractmethod
    def open(self, port: str, baudrate: int, timeout_ms: int) -> SerialHandle:
        """Open `port` at `baudrate` (8N1, no flow control) within `timeout_ms` or raise."""
        raise NotImplementedError


class ReaderHandle(Protocol):
    def stop(self) -> None:
        ...


DataCallback = Callable[[bytes], None]
LostCallback = Callable[["BaseException | None"], None]
ReaderFactory = Callable[[SerialHandle, DataCallback, LostCallback], ReaderHandle]
FrameSink = Callable[[str], None]
