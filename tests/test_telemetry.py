import json
import random
import socket
import tempfile
import unittest
from pathlib import Path
from queue import Queue
from unittest.mock import patch

import shell_telemetry as telemetry_mod
from shell_engine import TrialConfig
from shell_session import GameSession
from shell_telemetry import (
    CallbackTelemetrySink,
    QueueTelemetrySink,
    TelemetryEnvelope,
    ThreadedTCPSink,
    TrialStartEvent,
    emit_dataclass_event,
    emit_event,
    parse_host_port,
    sink_from_env,
)


class _CollectSink:
    def __init__(self) -> None:
        self.events: list[TelemetryEnvelope] = []

    def emit(self, envelope: TelemetryEnvelope) -> None:
        self.events.append(envelope)

    def close(self) -> None:
        return


class _BrokenSink:
    def emit(self, envelope: TelemetryEnvelope) -> None:
        raise OSError("sink down")

    def close(self) -> None:
        return


class TestTelemetry(unittest.TestCase):
    def test_trial_emits_start_shuffle_and_selection_events(self):
        sink = _CollectSink()
        session = GameSession(rng=random.Random(1), telemetry_sink=sink, config=TrialConfig(3, 200))
        session.start_trial()
        while not session.trial.is_finished:
            gen = session.trial.layout_generation
            for slot in range(3):
                session.on_animation_settled(gen, slot)
        session.select_shell(0)

        names = [event.event for event in sink.events]
        self.assertEqual(names, ["trial_start", "shuffle", "shuffle", "shuffle", "selection"])
        start = sink.events[0].data
        self.assertEqual(start["move_limit"], 3)
        self.assertEqual(start["winning_index"], session.trial.winning_index)
        shuffles = [event.data for event in sink.events if event.event == "shuffle"]
        self.assertEqual([s["move"] for s in shuffles], [1, 2, 3])
        self.assertEqual([s["final"] for s in shuffles], [False, False, True])
        self.assertEqual(len(shuffles[0]["positions"]), 3)

    def test_export_event_carries_record_count(self):
        sink = _CollectSink()
        session = GameSession(rng=random.Random(2), telemetry_sink=sink, config=TrialConfig(1, 200))
        session.start_trial()
        session.trial.shuffle()
        session.select_shell(2)
        with tempfile.TemporaryDirectory() as tmp:
            session.save_csv(Path(tmp) / "data.csv")
        export_events = [event for event in sink.events if event.event == "export"]
        self.assertEqual(len(export_events), 1)
        self.assertEqual(export_events[0].data["records"], 1)

    def test_broken_sink_does_not_break_trial(self):
        session = GameSession(rng=random.Random(3), telemetry_sink=_BrokenSink())
        with self.assertLogs("shell_telemetry", level="WARNING"):
            session.start_trial()
        self.assertTrue(session.trial.is_started)

    def test_queue_and_callback_sinks(self):
        queue: Queue = Queue()
        emit_event(QueueTelemetrySink(queue), "ping", {"n": 1})
        self.assertEqual(queue.get_nowait().data, {"n": 1})

        seen = []
        emit_event(CallbackTelemetrySink(seen.append), "pong", {})
        self.assertEqual([envelope.event for envelope in seen], ["pong"])

    def test_tcp_sink_writes_jsonl_lines(self):
        server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        server.bind(("127.0.0.1", 0))
        server.listen(1)
        server.settimeout(5.0)
        port = server.getsockname()[1]
        sink = ThreadedTCPSink("127.0.0.1", port)
        conn = None
        try:
            emit_dataclass_event(
                sink,
                "trial_start",
                TrialStartEvent(
                    trial_number=1,
                    move_limit=5,
                    transition_speed_ms=350,
                    winning_index=2,
                    generation=1,
                ),
            )
            conn, _ = server.accept()
            conn.settimeout(5.0)
            received = b""
            while not received.endswith(b"\n"):
                chunk = conn.recv(4096)
                if not chunk:
                    break
                received += chunk
        finally:
            sink.close()
            if conn is not None:
                conn.close()
            server.close()

        payload = json.loads(received.decode("utf-8"))
        self.assertEqual(payload["event"], "trial_start")
        self.assertIsInstance(payload["ts_ms"], int)
        self.assertEqual(payload["data"]["move_limit"], 5)
        self.assertEqual(payload["data"]["winning_index"], 2)

    def test_emit_without_sink_is_noop(self):
        emit_event(None, "ignored", {"a": 1})

    def test_parse_host_port(self):
        self.assertEqual(parse_host_port("127.0.0.1:9100"), ("127.0.0.1", 9100))
        self.assertEqual(parse_host_port(" localhost:80 "), ("localhost", 80))
        self.assertIsNone(parse_host_port(""))
        self.assertIsNone(parse_host_port("localhost"))
        self.assertIsNone(parse_host_port(":9100"))
        self.assertIsNone(parse_host_port("host:abc"))
        self.assertIsNone(parse_host_port("host:70000"))

    def test_sink_from_env(self):
        self.assertIsNone(sink_from_env({}))
        with self.assertLogs("shell_telemetry", level="WARNING"):
            self.assertIsNone(sink_from_env({"SHELL_GAME_TELEMETRY": "nonsense"}))
        with patch.object(telemetry_mod, "ThreadedTCPSink") as sink_cls:
            sink_from_env({"SHELL_GAME_TELEMETRY": "127.0.0.1:9100"})
        sink_cls.assert_called_once_with("127.0.0.1", 9100)


if __name__ == "__main__":
    unittest.main()
