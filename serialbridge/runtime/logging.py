from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any, Dict, Protocol

from serialbridge.config.linkspec import LinkSpec
from serialbridge.runtime.scheduler import Clock, RealClock


class EventLogger(Protocol):
    def log_event(self, event: str, fields: Dict[str, Any]) -> None:
        ...


class JsonlLogger:
    """Append-only JSONL sink for link events, one file per session."""

    def __init__(
        self,
        out_dir: str | Path,
        session_id: str,
        port: str | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._dir = Path(out_dir)
        self._dir.mkdir(parents=True, exist_ok=True)
        self._path = self._dir / f"{session_id}_link.jsonl"
        self._clock = clock or RealClock()
        self._session_id = session_id
        self._port = port
        self._fh = self._path.open("a", encoding="utf-8")
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def set_port(self, port: str | None) -> None:
        self._port = port

    def _base_event(self, event: str) -> Dict[str, Any]:
        return {
            "ts_ms": self._clock.now_ms(),
            "session_id": self._session_id,
            "event": event,
            "port": self._port,
        }

    def log_session_start(self, linkspec: LinkSpec) -> None:
        payload = self._base_event("session_start")
        payload["linkspec"] = linkspec.as_dict()
        self._write(payload)

    def log_event(self, event: str, fields: Dict[str, Any]) -> None:
        payload = self._base_event(event)
        payload.update(fields)
        self._write(payload)

    def _write(self, payload: Dict[str, Any]) -> None:
        line = json.dumps(payload, ensure_ascii=True) + "\n"
        with self._lock:
            if self._fh.closed:
                return
            self._fh.write(line)
            self._fh.flush()

    def close(self) -> None:
        with self._lock:
            self._fh.close()


class NullLogger:
    def log_event(self, event: str, fields: Dict[str, Any]) -> None:
        return None
