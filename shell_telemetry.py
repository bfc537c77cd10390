"""Telemetry schema, sinks and logging setup for the shell game experiment."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from queue import Empty, Full, Queue
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Tuple
import json
import logging
import os
import socket
import threading
import time

TELEMETRY_ENV_VAR = "SHELL_GAME_TELEMETRY"
LOG_LEVEL_ENV_VAR = "LOG_LEVEL"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


def configure_logging(level: Optional[str] = None) -> None:
    """Configure the root logger once; ``LOG_LEVEL`` is used when no level is given."""

    if level is None:
        level = os.getenv(LOG_LEVEL_ENV_VAR, "INFO")
    level = level.upper()

    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(level=level, format=LOG_FORMAT)
    root_logger.setLevel(level)


@dataclass(frozen=True)
class TelemetryEnvelope:
    event: str
    ts_ms: int
    data: Dict[str, Any]


@dataclass(frozen=True)
class TrialStartEvent:
    trial_number: int
    move_limit: int
    transition_speed_ms: int
    winning_index: int
    generation: int


@dataclass(frozen=True)
class ShuffleEvent:
    move: int
    move_limit: int
    final: bool
    generation: int
    positions: List[Tuple[int, int]]


@dataclass(frozen=True)
class SelectionEvent:
    trial_number: int
    shell_index: int
    is_correct: bool
    response_time_s: str
    move_limit: int


@dataclass(frozen=True)
class ExportEvent:
    records: int
    path: Optional[str]


class TelemetrySink(Protocol):
    def emit(self, envelope: TelemetryEnvelope) -> None:
        ...

    def close(self) -> None:
        ...


class CallbackTelemetrySink:
    def __init__(self, callback: Callable[[TelemetryEnvelope], None]) -> None:
        self._callback = callback

    def emit(self, envelope: TelemetryEnvelope) -> None:
        self._callback(envelope)

    def close(self) -> None:
        return


class QueueTelemetrySink:
    def __init__(self, queue: "Queue[TelemetryEnvelope]") -> None:
        self._queue = queue

    def emit(self, envelope: TelemetryEnvelope) -> None:
        self._queue.put(envelope)

    def close(self) -> None:
        return


class ThreadedTCPSink:
    """Non-blocking JSONL sink that writes in a background thread."""

    def __init__(
        self,
        host: str,
        port: int,
        queue_size: int = 256,
        reconnect_delay_ms: int = 250,
    ) -> None:
        self._host = host
        self._port = port
        self._queue: Queue[TelemetryEnvelope] = Queue(maxsize=max(8, queue_size))
        self._reconnect_delay_s = max(0.05, reconnect_delay_ms / 1000.0)
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, name="shell-game-telemetry", daemon=True)
        self._thread.start()

    def emit(self, envelope: TelemetryEnvelope) -> None:
        if self._stop.is_set():
            return
        try:
            self._queue.put_nowait(envelope)
            return
        except Full:
            pass

        # Saturated: drop the oldest event so the latest trial state still goes out.
        try:
            _ = self._queue.get_nowait()
        except Empty:
            pass
        try:
            self._queue.put_nowait(envelope)
        except Full:
            return

    def close(self) -> None:
        self._stop.set()
        self._thread.join(timeout=0.5)

    def _run(self) -> None:
        conn: Optional[socket.socket] = None
        while not self._stop.is_set():
            if conn is None:
                conn = self._try_connect()
                if conn is None:
                    time.sleep(self._reconnect_delay_s)
                    continue
            try:
                envelope = self._queue.get(timeout=0.1)
            except Empty:
                continue
            payload = {
                "event": envelope.event,
                "ts_ms": envelope.ts_ms,
                "data": envelope.data,
            }
            try:
                line = json.dumps(payload, separators=(",", ":")).encode("utf-8") + b"\n"
                conn.sendall(line)
            except OSError:
                logger.debug("telemetry connection to %s:%s dropped", self._host, self._port)
                try:
                    conn.close()
                except OSError:
                    pass
                conn = None
        if conn is not None:
            try:
                conn.close()
            except OSError:
                pass

    def _try_connect(self) -> Optional[socket.socket]:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.settimeout(0.3)
        try:
            sock.connect((self._host, self._port))
        except OSError:
            sock.close()
            return None
        sock.settimeout(None)
        return sock


def emit_event(sink: Optional[TelemetrySink], event: str, payload: Mapping[str, Any]) -> None:
    if sink is None:
        return
    envelope = TelemetryEnvelope(event=event, ts_ms=now_ms(), data=dict(payload))
    try:
        sink.emit(envelope)
    except Exception:
        logger.warning("telemetry sink rejected %s event", event, exc_info=True)


def emit_dataclass_event(sink: Optional[TelemetrySink], event: str, payload_obj: object) -> None:
    emit_event(sink, event, asdict(payload_obj))


def parse_host_port(value: str) -> Optional[Tuple[str, int]]:
    raw = value.strip()
    if not raw:
        return None
    if ":" not in raw:
        return None
    host, port_raw = raw.rsplit(":", 1)
    host = host.strip()
    if not host:
        return None
    try:
        port = int(port_raw)
    except ValueError:
        return None
    if port <= 0 or port > 65535:
        return None
    return host, port


def sink_from_env(environ: Optional[Mapping[str, str]] = None) -> Optional[ThreadedTCPSink]:
    environ = os.environ if environ is None else environ
    endpoint_raw = environ.get(TELEMETRY_ENV_VAR, "").strip()
    if not endpoint_raw:
        return None
    endpoint = parse_host_port(endpoint_raw)
    if endpoint is None:
        logger.warning("ignoring malformed %s=%r", TELEMETRY_ENV_VAR, endpoint_raw)
        return None
    return ThreadedTCPSink(endpoint[0], endpoint[1])
