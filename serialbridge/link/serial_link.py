from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any

from serialbridge.config.linkspec import FramingSpec
from serialbridge.link.base import (
    FrameSink,
    LinkBusyError,
    LinkIOError,
    LinkNotOpenError,
    ReaderFactory,
    ReaderHandle,
    SerialHandle,
)
from serialbridge.link.negotiator import LinkNegotiator, NegotiationOutcome
from serialbridge.link.pyserial_transport import close_quietly, start_reader_thread
from serialbridge.protocol.framing import FrameExtractor, build_extractor
from serialbridge.runtime.logging import EventLogger, NullLogger

logger = logging.getLogger(__name__)


class LinkState(str, Enum):
    DISCONNECTED = "disconnected"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"


@dataclass
class ActiveLink:
    token: int
    port: str
    baudrate: int
    handle: SerialHandle
    extractor: FrameExtractor
    reader: ReaderHandle | None = None


class SerialLink:
    """
    Owns the single active serial connection.

    Inbound chunks run through a per-connection FrameExtractor and each frame's
    text is passed to `sink`. Reader callbacks carry the token of the link they
    were started for, so events from a closed or replaced link are dropped.
    """

    def __init__(
        self,
        negotiator: LinkNegotiator,
        sink: FrameSink | None = None,
        *,
        framing: FramingSpec | None = None,
        line_terminator: str = "\n",
        reader_factory: ReaderFactory = start_reader_thread,
        event_logger: EventLogger | None = None,
    ) -> None:
        if not line_terminator:
            raise ValueError("line_terminator must be non-empty")
        self._negotiator = negotiator
        self._sink = sink
        self._framing = framing or FramingSpec()
        self._line_terminator = line_terminator
        self._reader_factory = reader_factory
        self._events = event_logger or NullLogger()
        self._lock = threading.RLock()
        self._write_lock = threading.Lock()
        self._tokens = itertools.count(1)
        self._state = LinkState.DISCONNECTED
        self._active: ActiveLink | None = None
        self._generation = 0
        self.last_error: BaseException | None = None
        self.frames_delivered = 0
        self.stale_events = 0

    @property
    def state(self) -> LinkState:
        return self._state

    def is_ready(self) -> bool:
        return self._state is LinkState.CONNECTED

    @property
    def port(self) -> str | None:
        active = self._active
        return active.port if active else None

    @property
    def baudrate(self) -> int | None:
        active = self._active
        return active.baudrate if active else None

    def set_sink(self, sink: FrameSink | None) -> None:
        with self._lock:
            self._sink = sink

    def connect(self, port: str, baudrate: int) -> NegotiationOutcome:
        with self._lock:
            if self._state is LinkState.NEGOTIATING:
                raise LinkBusyError("a negotiation is already in progress")
            previous = self._detach()
            self._state = LinkState.NEGOTIATING
            generation = self._generation
        if previous is not None:
            self._release(previous, "link_closed")
        try:
            outcome = self._negotiator.negotiate(port, baudrate)
        except BaseException:
            with self._lock:
                self._state = LinkState.DISCONNECTED
            raise
        with self._lock:
            cancelled = generation != self._generation
        if cancelled:
            if outcome.handle is not None:
                close_quietly(outcome.handle)
            with self._lock:
                self._state = LinkState.DISCONNECTED
            raise LinkIOError(f"connection to {port} cancelled by close()")
        if not outcome.ok or outcome.handle is None or outcome.baudrate is None:
            with self._lock:
                self._state = LinkState.DISCONNECTED
                self.last_error = outcome.failure()
            self._events.log_event(
                "negotiation_failed", {"attempted_baudrates": outcome.attempted_baudrates}
            )
            return outcome

        with self._lock:
            active = ActiveLink(
                token=next(self._tokens),
                port=port,
                baudrate=outcome.baudrate,
                handle=outcome.handle,
                extractor=self._new_extractor(),
            )
            self._active = active
            self._state = LinkState.CONNECTED
            self.last_error = None
            token = active.token
        self._events.log_event(
            "link_connected",
            {"baudrate": active.baudrate, "attempts": len(outcome.attempts)},
        )
        try:
            reader = self._reader_factory(
                active.handle,
                lambda chunk: self.handle_data(token, chunk),
                lambda exc: self.handle_lost(token, exc),
            )
        except Exception as exc:
            self._drop(token, exc, "link_lost")
            raise LinkIOError(f"failed to start reader for {port}: {exc}") from exc
        with self._lock:
            if self._active is active:
                active.reader = reader
                return outcome
        reader.stop()
        return outcome

    def _new_extractor(self) -> FrameExtractor:
        return build_extractor(
            block_start=self._framing.block_start,
            block_end=self._framing.block_end_pattern,
            buffer_ceiling=self._framing.buffer_ceiling,
            encoding=self._framing.encoding,
        )

    def send(self, command: str) -> None:
        active = self._active
        if active is None or self._state is not LinkState.CONNECTED:
            raise LinkNotOpenError("no serial port connected")
        data = (command + self._line_terminator).encode(self._framing.encoding)
        with self._write_lock:
            try:
                _write_all(active.handle, data)
            except (OSError, ValueError) as exc:
                self._drop(active.token, exc, "link_lost")
                raise LinkIOError(f"write to {active.port} failed: {exc}") from exc
        self._events.log_event("command_sent", {"command": command, "bytes": len(data)})

    def handle_data(self, token: int, chunk: bytes) -> None:
        with self._lock:
            active = self._active
            if active is None or active.token != token:
                self.stale_events += 1
                return
            guard = active.extractor.guard
            trims_before = guard.trims if guard else 0
            frames = active.extractor.feed(chunk)
            if guard is not None and guard.trims != trims_before:
                self._events.log_event(
                    "buffer_trimmed", {"dropped_bytes_total": guard.dropped_bytes}
                )
            for frame in frames:
                if self._active is not active:
                    break
                self.frames_delivered += 1
                self._events.log_event(
                    "frame", {"kind": frame.kind.value, "length": len(frame.text)}
                )
                self._deliver(frame.text)

    def _deliver(self, text: str) -> None:
        sink = self._sink
        if sink is None:
            return
        try:
            sink(text)
        except Exception:
            logger.exception("frame sink raised")

    def handle_lost(self, token: int, exc: BaseException | None) -> None:
        self._drop(token, exc, "link_lost")

    def _drop(self, token: int, exc: BaseException | None, event: str) -> None:
        with self._lock:
            active = self._active
            if active is None or active.token != token:
                return
            self._active = None
            self._state = LinkState.DISCONNECTED
            self.last_error = exc
        if exc is not None:
            logger.warning("serial link to %s lost: %s", active.port, exc)
        self._release(active, event)

    def close(self) -> None:
        with self._lock:
            self._generation += 1
            active = self._detach()
            self._state = LinkState.DISCONNECTED
        if active is not None:
            self._release(active, "link_closed")

    def _detach(self) -> ActiveLink | None:
        active = self._active
        self._active = None
        return active

    def _release(self, active: ActiveLink, event: str) -> None:
        if active.reader is not None:
            active.reader.stop()
        close_quietly(active.handle)
        active.extractor.reset()
        self._events.log_event(event, {"baudrate": active.baudrate})
        logger.info("serial link to %s closed (%s)", active.port, event)

    def __enter__(self) -> "SerialLink":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def _write_all(handle: SerialHandle, data: bytes) -> None:
    remaining = memoryview(data)
    while remaining:
        written = handle.write(remaining)
        if written is None:
            written = len(remaining)
        if written <= 0:
            raise LinkIOError("serial write returned no bytes")
        remaining = remaining[written:]
    handle.flush()
