from serialbridge.runtime.logging import EventLogger, JsonlLogger, NullLogger
from serialbridge.runtime.scheduler import Clock, FakeClock, RealClock, elapsed_ms

__all__ = [
    "Clock",
    "RealClock",
    "FakeClock",
    "elapsed_ms",
    "EventLogger",
    "JsonlLogger",
    "NullLogger",
]
