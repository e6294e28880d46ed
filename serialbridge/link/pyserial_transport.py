from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any

from serialbridge.config.linkspec import DEFAULT_WRITE_TIMEOUT_MS
from serialbridge.link.base import (
    DataCallback,
    LostCallback,
    OpenTimeout,
    PortOpener,
    SerialHandle,
)

logger = logging.getLogger(__name__)


def _require_pyserial() -> Any:
    try:
        import serial  # type: ignore
    except ImportError as exc:
        raise RuntimeError(
            "pyserial is required for serial links. Install with `pip install -e .`."
        ) from exc
    return serial


def close_quietly(handle: Any) -> None:
    try:
        handle.close()
    except Exception as exc:  # noqa: BLE001
        logger.debug("error closing serial handle: %s", exc)


class PySerialOpener(PortOpener):
    """
    Opens ports with pyserial, 8N1 and no flow control.

    `Serial.open()` can block on some drivers, so it runs on a worker thread and
    the caller waits at most `timeout_ms`. A handle whose open finishes after the
    deadline is closed by a done-callback.
    """

    def __init__(self, write_timeout_ms: int = DEFAULT_WRITE_TIMEOUT_MS) -> None:
        if write_timeout_ms <= 0:
            raise ValueError("write_timeout_ms must be > 0")
        self._write_timeout_s = write_timeout_ms / 1000.0

    def _build(self, port: str, baudrate: int) -> Any:
        serial = _require_pyserial()
        handle = serial.Serial()
        handle.port = port
        handle.baudrate = baudrate
        handle.bytesize = serial.EIGHTBITS
        handle.parity = serial.PARITY_NONE
        handle.stopbits = serial.STOPBITS_ONE
        handle.rtscts = False
        handle.xonxoff = False
        handle.dsrdtr = False
        handle.timeout = None
        handle.write_timeout = self._write_timeout_s
        return handle

    def open(self, port: str, baudrate: int, timeout_ms: int) -> SerialHandle:
        handle = self._build(port, baudrate)
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="serial-open")
        try:
            future: Future[None] = executor.submit(handle.open)
        finally:
            executor.shutdown(wait=False)
        try:
            future.result(timeout=max(0, timeout_ms) / 1000.0)
        except FutureTimeout as exc:
            future.add_done_callback(lambda _done: close_quietly(handle))
            raise OpenTimeout(f"timed out opening {port} at {baudrate} baud") from exc
        except BaseException:
            close_quietly(handle)
            raise
        return handle


class SerialReader:
    """Wraps a pyserial `ReaderThread`; `stop()` is safe from the reader thread itself."""

    def __init__(self, thread: Any) -> None:
        self._thread = thread

    @property
    def thread(self) -> Any:
        return self._thread

    def stop(self) -> None:
        if threading.current_thread() is self._thread:
            self._thread.alive = False
            return
        if self._thread.is_alive():
            self._thread.stop()


def start_reader_thread(
    handle: SerialHandle, on_data: DataCallback, on_lost: LostCallback
) -> SerialReader:
    from serial.threaded import Protocol, ReaderThread

    class _Forwarder(Protocol):
        def data_received(self, data: bytes) -> None:
            on_data(bytes(data))

        def connection_lost(self, exc: BaseException | None) -> None:
            on_lost(exc)

    thread = ReaderThread(handle, _Forwarder)
    thread.name = "serial-reader"
    thread.start()
    return SerialReader(thread)
