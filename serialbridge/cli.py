from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import Callable, List, TextIO

from serialbridge.config import LinkSpec, load_linkspec
from serialbridge.link.base import LinkError
from serialbridge.link.negotiator import LinkNegotiator
from serialbridge.link.ports import list_devices
from serialbridge.link.pyserial_transport import PySerialOpener, start_reader_thread
from serialbridge.link.serial_link import SerialLink
from serialbridge.protocol.framing import build_extractor
from serialbridge.runtime.logging import JsonlLogger
from serialbridge.runtime.scheduler import Clock, RealClock

logger = logging.getLogger("serialbridge")


def _resolve_linkspec(args: argparse.Namespace) -> LinkSpec:
    if getattr(args, "config", None):
        spec = load_linkspec(args.config)
    else:
        spec = LinkSpec(session_id=f"session_{int(time.time())}")
    overrides = {}
    if getattr(args, "port", None):
        overrides["port"] = args.port
    if getattr(args, "baud", None):
        overrides["baudrate"] = args.baud
    if getattr(args, "log_dir", None):
        overrides["logging"] = {"out_dir": args.log_dir}
    if overrides:
        data = spec.as_dict()
        data.update(overrides)
        spec = LinkSpec.from_dict(data)
    spec.validate()
    return spec


def _build_link(
    spec: LinkSpec, sink: Callable[[str], None], clock: Clock
) -> tuple[SerialLink, JsonlLogger | None]:
    events = None
    if spec.logging.out_dir:
        events = JsonlLogger(spec.logging.out_dir, spec.session_id, spec.port, clock=clock)
        events.log_session_start(spec)
    negotiator = LinkNegotiator(
        PySerialOpener(write_timeout_ms=spec.negotiation.write_timeout_ms),
        baudrates=spec.negotiation.baudrates,
        open_timeout_ms=spec.negotiation.open_timeout_ms,
        retry_delay_ms=spec.negotiation.retry_delay_ms,
        clock=clock,
        event_logger=events,
    )
    link = SerialLink(
        negotiator,
        sink,
        framing=spec.framing,
        line_terminator=spec.line_terminator,
        reader_factory=start_reader_thread,
        event_logger=events,
    )
    return link, events


def _connect(link: SerialLink, spec: LinkSpec) -> None:
    if not spec.port:
        raise ValueError("--port is required (or set `port` in the config)")
    outcome = link.connect(spec.port, spec.baudrate)
    if not outcome.ok:
        raise outcome.failure()
    print(
        json.dumps({"event": "connected", "port": spec.port, "baudrate": outcome.baudrate}),
        file=sys.stderr,
    )


def _frame_printer(out: TextIO | None) -> Callable[[str], None]:
    def emit(text: str) -> None:
        if out is None:
            print(text, flush=True)
            return
        out.write(json.dumps({"ts_ms": int(time.time() * 1000), "frame": text}) + "\n")
        out.flush()

    return emit


def _wait_while_ready(link: SerialLink, clock: Clock, duration_s: float, step_ms: int) -> bool:
    deadline = clock.now_ms() + int(duration_s * 1000)
    while link.is_ready():
        if duration_s > 0 and clock.now_ms() >= deadline:
            return True
        clock.sleep_ms(step_ms)
    return False


def _run_ports(args: argparse.Namespace) -> int:
    devices = [device.as_dict() for device in list_devices(include_all=args.all)]
    print(json.dumps(devices, indent=2))
    return 0


def _run_monitor(args: argparse.Namespace) -> int:
    spec = _resolve_linkspec(args)
    clock = RealClock()
    out_fh = None
    if args.out:
        out_path = Path(args.out)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_fh = out_path.open("a", encoding="utf-8")
    link, events = _build_link(spec, _frame_printer(out_fh), clock)
    try:
        _connect(link, spec)
        for command in args.send or []:
            link.send(command)
        completed = _wait_while_ready(link, clock, args.duration_s, args.step_ms)
    except KeyboardInterrupt:
        completed = True
    finally:
        link.close()
        if events:
            events.close()
        if out_fh:
            out_fh.close()
    if not completed:
        print(f"error: serial link lost: {link.last_error}", file=sys.stderr)
        return 2
    return 0


def _run_send(args: argparse.Namespace) -> int:
    spec = _resolve_linkspec(args)
    clock = RealClock()
    link, events = _build_link(spec, _frame_printer(None), clock)
    try:
        _connect(link, spec)
        for command in args.command:
            link.send(command)
        if args.wait_s > 0:
            completed = _wait_while_ready(link, clock, args.wait_s, args.step_ms)
        else:
            completed = link.is_ready()
    finally:
        link.close()
        if events:
            events.close()
    if not completed:
        print(f"error: serial link lost: {link.last_error}", file=sys.stderr)
        return 2
    return 0


def _run_extract(args: argparse.Namespace) -> int:
    spec = _resolve_linkspec(args)
    if args.chunk_size <= 0:
        raise ValueError("--chunk-size must be > 0")
    extractor = build_extractor(
        block_start=spec.framing.block_start,
        block_end=spec.framing.block_end_pattern,
        buffer_ceiling=spec.framing.buffer_ceiling,
        encoding=spec.framing.encoding,
    )
    data = Path(args.input).read_bytes()
    for offset in range(0, len(data), args.chunk_size):
        for frame in extractor.feed(data[offset : offset + args.chunk_size]):
            print(json.dumps({"kind": frame.kind.value, "text": frame.text}, ensure_ascii=False))
    if extractor.buffered_bytes():
        logger.info("%d trailing bytes did not form a frame", extractor.buffered_bytes())
    return 0


def _add_link_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", help="JSON/YAML link spec")
    parser.add_argument("--port")
    parser.add_argument("--baud", type=int, help="preferred baud rate")
    parser.add_argument("--log-dir", help="directory for the JSONL link event log")
    parser.add_argument("--step-ms", type=int, default=50)


def main(argv: List[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="serialbridge")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    sub = parser.add_subparsers(dest="cmd", required=True)

    ports = sub.add_parser("ports", help="list serial devices")
    ports.add_argument("--all", action="store_true", help="do not filter by known USB adapters")
    ports.set_defaults(func=_run_ports)

    monitor = sub.add_parser("monitor", help="connect and print device frames")
    _add_link_args(monitor)
    monitor.add_argument("--duration-s", type=float, default=0.0, help="0 means no limit")
    monitor.add_argument("--out", help="append frames to this JSONL file instead of stdout")
    monitor.add_argument("--send", action="append", help="command to send after connecting")
    monitor.set_defaults(func=_run_monitor)

    send = sub.add_parser("send", help="connect, send commands, print replies")
    _add_link_args(send)
    send.add_argument("--wait-s", type=float, default=2.0)
    send.add_argument("command", nargs="+")
    send.set_defaults(func=_run_send)

    extract = sub.add_parser("extract", help="split a captured byte dump into frames")
    extract.add_argument("--config", help="JSON/YAML link spec (framing section)")
    extract.add_argument("--input", required=True)
    extract.add_argument("--chunk-size", type=int, default=4096)
    extract.set_defaults(func=_run_extract)

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return args.func(args)
    except (LinkError, ValueError, FileNotFoundError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
