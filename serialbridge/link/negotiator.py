from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Literal, Sequence

from serialbridge.config.linkspec import (
    DEFAULT_BAUDRATES,
    DEFAULT_OPEN_TIMEOUT_MS,
    DEFAULT_RETRY_DELAY_MS,
)
from serialbridge.link.base import LinkError, OpenTimeout, PortOpener, SerialHandle
from serialbridge.runtime.logging import EventLogger, NullLogger
from serialbridge.runtime.scheduler import Clock, RealClock, elapsed_ms

logger = logging.getLogger(__name__)

AttemptOutcome = Literal["success", "failure", "timeout"]


class NegotiationFailure(LinkError):
    def __init__(self, port: str, attempted_baudrates: Sequence[int]) -> None:
        self.port = port
        self.attempted_baudrates = list(attempted_baudrates)
        tried = ", ".join(str(rate) for rate in self.attempted_baudrates)
        super().__init__(f"failed to connect to {port} with any baud rate; tried: {tried}")


@dataclass(frozen=True)
class BaudCandidate:
    baudrate: int
    ordinal: int


@dataclass(frozen=True)
class ConnectionAttempt:
    candidate: BaudCandidate
    outcome: AttemptOutcome
    elapsed_ms: int
    error: str | None = None


@dataclass(frozen=True)
class NegotiationOutcome:
    port: str
    baudrate: int | None
    handle: SerialHandle | None
    attempts: List[ConnectionAttempt] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.handle is not None

    @property
    def attempted_baudrates(self) -> List[int]:
        return [attempt.candidate.baudrate for attempt in self.attempts]

    def failure(self) -> NegotiationFailure:
        return NegotiationFailure(self.port, self.attempted_baudrates)


def build_candidates(
    preferred: int, baudrates: Sequence[int] = DEFAULT_BAUDRATES
) -> List[BaudCandidate]:
    ordered: List[int] = [int(preferred)]
    for rate in baudrates:
        if int(rate) not in ordered:
            ordered.append(int(rate))
    return [BaudCandidate(baudrate=rate, ordinal=i) for i, rate in enumerate(ordered, start=1)]


class LinkNegotiator:
    """
    Finds a working baud rate by opening the port at each candidate speed in turn.

    The preferred rate goes first, then the common rates. Every open is bounded
    by `open_timeout_ms` (enforced by the opener) and the first success wins.
    """

    def __init__(
        self,
        opener: PortOpener,
        *,
        baudrates: Sequence[int] = DEFAULT_BAUDRATES,
        open_timeout_ms: int = DEFAULT_OPEN_TIMEOUT_MS,
        retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS,
        clock: Clock | None = None,
        event_logger: EventLogger | None = None,
    ) -> None:
        if open_timeout_ms <= 0:
            raise ValueError("open_timeout_ms must be > 0")
        if retry_delay_ms < 0:
            raise ValueError("retry_delay_ms must be >= 0")
        self._opener = opener
        self._baudrates = tuple(int(rate) for rate in baudrates)
        self._open_timeout_ms = int(open_timeout_ms)
        self._retry_delay_ms = int(retry_delay_ms)
        self._clock = clock or RealClock()
        self._events = event_logger or NullLogger()

    def candidates(self, preferred_baudrate: int) -> List[BaudCandidate]:
        return build_candidates(preferred_baudrate, self._baudrates)

    def negotiate(self, port: str, preferred_baudrate: int) -> NegotiationOutcome:
        if not port:
            raise ValueError("port must be non-empty")
        candidates = self.candidates(preferred_baudrate)
        logger.info(
            "negotiating %s, baud rates: %s", port, [c.baudrate for c in candidates]
        )
        attempts: List[ConnectionAttempt] = []
        for index, candidate in enumerate(candidates):
            attempt, handle = self._try(port, candidate)
            attempts.append(attempt)
            self._events.log_event(
                "baud_attempt",
                {
                    "baudrate": candidate.baudrate,
                    "ordinal": candidate.ordinal,
                    "outcome": attempt.outcome,
                    "elapsed_ms": attempt.elapsed_ms,
                    "error": attempt.error,
                },
            )
            if handle is not None:
                logger.info("opened %s at %d baud", port, candidate.baudrate)
                return NegotiationOutcome(
                    port=port, baudrate=candidate.baudrate, handle=handle, attempts=attempts
                )
            if self._retry_delay_ms and index < len(candidates) - 1:
                self._clock.sleep_ms(self._retry_delay_ms)
        outcome = NegotiationOutcome(port=port, baudrate=None, handle=None, attempts=attempts)
        logger.warning("%s", outcome.failure())
        return outcome

    def _try(
        self, port: str, candidate: BaudCandidate
    ) -> tuple[ConnectionAttempt, SerialHandle | None]:
        start = self._clock.now_ms()
        try:
            handle = self._opener.open(port, candidate.baudrate, self._open_timeout_ms)
        except OpenTimeout as exc:
            logger.info("timeout opening %s at %d baud", port, candidate.baudrate)
            return self._attempt(candidate, "timeout", start, exc), None
        except (LinkError, OSError, ValueError) as exc:
            logger.info("failed to open %s at %d baud: %s", port, candidate.baudrate, exc)
            return self._attempt(candidate, "failure", start, exc), None
        return self._attempt(candidate, "success", start, None), handle

    def _attempt(
        self,
        candidate: BaudCandidate,
        outcome: AttemptOutcome,
        start_ms: int,
        error: BaseException | None,
    ) -> ConnectionAttempt:
        return ConnectionAttempt(
            candidate=candidate,
            outcome=outcome,
            elapsed_ms=elapsed_ms(self._clock, start_ms),
            error=str(error) if error is not None else None,
        )
