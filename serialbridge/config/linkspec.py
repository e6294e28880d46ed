from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Tuple

from serialbridge.protocol.framing import BLOCK_END_PATTERN, BLOCK_START, DEFAULT_BUFFER_CEILING

# Speeds ESP32-class boards ship with, tried after the preferred rate.
DEFAULT_BAUDRATES: Tuple[int, ...] = (115200, 921600, 460800, 230400, 57600, 38400, 19200, 9600)
DEFAULT_BAUDRATE = 115200
DEFAULT_OPEN_TIMEOUT_MS = 3000
DEFAULT_RETRY_DELAY_MS = 500
DEFAULT_WRITE_TIMEOUT_MS = 1000


def _require_keys(data: Dict[str, Any], keys: Iterable[str], context: str) -> None:
    missing = [key for key in keys if key not in data]
    if missing:
        joined = ", ".join(missing)
        raise ValueError(f"missing {context} keys: {joined}")


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if text.lower() in {"", "auto", "none", "null"}:
        return None
    return text


def _baudrate(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"invalid baud rate: {value!r}")
    return int(value)


@dataclass(frozen=True)
class FramingSpec:
    block_start: str = BLOCK_START
    block_end_pattern: str = BLOCK_END_PATTERN
    buffer_ceiling: int = DEFAULT_BUFFER_CEILING
    encoding: str = "utf-8"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FramingSpec":
        return cls(
            block_start=str(data.get("block_start", BLOCK_START)),
            block_end_pattern=str(data.get("block_end_pattern", BLOCK_END_PATTERN)),
            buffer_ceiling=int(data.get("buffer_ceiling", DEFAULT_BUFFER_CEILING)),
            encoding=str(data.get("encoding", "utf-8")),
        )

    def validate(self) -> None:
        if not self.block_start:
            raise ValueError("framing block_start must be non-empty")
        if "{" in self.block_start:
            raise ValueError("framing block_start must not contain '{'")
        try:
            re.compile(self.block_end_pattern)
        except re.error as exc:
            raise ValueError(f"invalid framing block_end_pattern: {exc}") from exc
        if self.buffer_ceiling <= 0:
            raise ValueError("framing buffer_ceiling must be > 0")
        try:
            "".encode(self.encoding)
        except LookupError as exc:
            raise ValueError(f"unknown framing encoding: {self.encoding}") from exc

    def as_dict(self) -> Dict[str, Any]:
        return {
            "block_start": self.block_start,
            "block_end_pattern": self.block_end_pattern,
            "buffer_ceiling": self.buffer_ceiling,
            "encoding": self.encoding,
        }


@dataclass(frozen=True)
class NegotiationSpec:
    baudrates: Tuple[int, ...] = DEFAULT_BAUDRATES
    open_timeout_ms: int = DEFAULT_OPEN_TIMEOUT_MS
    retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS
    write_timeout_ms: int = DEFAULT_WRITE_TIMEOUT_MS

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NegotiationSpec":
        rates = data.get("baudrates")
        return cls(
            baudrates=(
                tuple(_baudrate(rate) for rate in rates) if rates is not None else DEFAULT_BAUDRATES
            ),
            open_timeout_ms=int(data.get("open_timeout_ms", DEFAULT_OPEN_TIMEOUT_MS)),
            retry_delay_ms=int(data.get("retry_delay_ms", DEFAULT_RETRY_DELAY_MS)),
            write_timeout_ms=int(data.get("write_timeout_ms", DEFAULT_WRITE_TIMEOUT_MS)),
        )

    def validate(self) -> None:
        if any(rate <= 0 for rate in self.baudrates):
            raise ValueError("negotiation baudrates must be > 0")
        if self.open_timeout_ms <= 0:
            raise ValueError("negotiation open_timeout_ms must be > 0")
        if self.retry_delay_ms < 0:
            raise ValueError("negotiation retry_delay_ms must be >= 0")
        if self.write_timeout_ms <= 0:
            raise ValueError("negotiation write_timeout_ms must be > 0")

    def as_dict(self) -> Dict[str, Any]:
        return {
            "baudrates": list(self.baudrates),
            "open_timeout_ms": self.open_timeout_ms,
            "retry_delay_ms": self.retry_delay_ms,
            "write_timeout_ms": self.write_timeout_ms,
        }


@dataclass(frozen=True)
class LoggingSpec:
    out_dir: str | None = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LoggingSpec":
        return cls(out_dir=_optional_str(data.get("out_dir")))


@dataclass(frozen=True)
class LinkSpec:
    session_id: str
    port: str | None = None
    baudrate: int = DEFAULT_BAUDRATE
    line_terminator: str = "\n"
    framing: FramingSpec = field(default_factory=FramingSpec)
    negotiation: NegotiationSpec = field(default_factory=NegotiationSpec)
    logging: LoggingSpec = field(default_factory=LoggingSpec)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LinkSpec":
        _require_keys(data, ["session_id"], "linkspec")
        return cls(
            session_id=str(data["session_id"]),
            port=_optional_str(data.get("port")),
            baudrate=_baudrate(data.get("baudrate", DEFAULT_BAUDRATE)),
            line_terminator=str(data.get("line_terminator", "\n")),
            framing=FramingSpec.from_dict(data.get("framing") or {}),
            negotiation=NegotiationSpec.from_dict(data.get("negotiation") or {}),
            logging=LoggingSpec.from_dict(data.get("logging") or {}),
        )

    def validate(self) -> None:
        if not self.session_id:
            raise ValueError("session_id must be non-empty")
        if self.baudrate <= 0:
            raise ValueError("baudrate must be > 0")
        if not self.line_terminator:
            raise ValueError("line_terminator must be non-empty")
        self.framing.validate()
        self.negotiation.validate()

    def as_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "port": self.port,
            "baudrate": self.baudrate,
            "line_terminator": self.line_terminator,
            "framing": self.framing.as_dict(),
            "negotiation": self.negotiation.as_dict(),
            "logging": {"out_dir": self.logging.out_dir},
        }


def _load_json(path: Path) -> Dict[str, Any]:
    return json.loads(path.read_text(encoding="utf-8"))


def _load_yaml(path: Path) -> Dict[str, Any]:
    import yaml

    return yaml.safe_load(path.read_text(encoding="utf-8")) or {}


def load_linkspec(path: str | Path) -> LinkSpec:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(path)
    if path.suffix.lower() in {".yaml", ".yml"}:
        data = _load_yaml(path)
    else:
        data = _load_json(path)
    if not isinstance(data, dict):
        raise ValueError(f"linkspec must be a mapping: {path}")
    spec = LinkSpec.from_dict(data)
    spec.validate()
    return spec


def save_linkspec(path: str | Path, spec: LinkSpec) -> None:
    path = Path(path)
    data = spec.as_dict()
    if path.suffix.lower() in {".yaml", ".yml"}:
        import yaml

        path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
    else:
        path.write_text(json.dumps(data, indent=2), encoding="utf-8")
