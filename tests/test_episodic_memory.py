from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from rwis_bot.memory.engine import MemoryEngine
from rwis_bot.memory.episodic_memory import EpisodicEventLog, record_quietly


class EpisodicEventLogTests(unittest.TestCase):
    def test_record_and_latest(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db_path = Path(tmp) / "rwis.db"
            engine = MemoryEngine(db_path)
            engine.initialize()
            try:
                log = EpisodicEventLog(db_path)
                first = log.record("ping_answered", {"sender_id": "6281"}, decision="allow")
                second = log.record("llm_error", {"sender_id": "6281", "error": "timeout"}, decision="deny")
                self.assertGreater(second, first)
                events = log.latest(limit=5)
                self.assertEqual([e["event_type"] for e in events], ["llm_error", "ping_answered"])
                self.assertEqual(events[0]["payload"], {"sender_id": "6281", "error": "timeout"})
                self.assertEqual(events[0]["decision"], "deny")
            finally:
                engine.close()

    def test_database_errors_do_not_raise(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            # No schema: the insert fails with "no such table".
            log = EpisodicEventLog(Path(tmp) / "empty.db")
            self.assertEqual(log.record("ping_answered", {"sender_id": "6281"}), 0)
            missing_dir = EpisodicEventLog(Path(tmp) / "absent" / "rwis.db")
            self.assertEqual(missing_dir.record("ping_answered", {"sender_id": "6281"}), 0)


class RecordQuietlyTests(unittest.TestCase):
    def test_failing_recorder_returns_zero(self) -> None:
        class BrokenLog:
            def record(self, event_type, payload, *, decision=None):
                raise RuntimeError("database is locked")

        self.assertEqual(record_quietly(BrokenLog(), "llm_error", {}, decision="deny"), 0)
        self.assertEqual(record_quietly(None, "llm_error", {}), 0)

    def test_passes_through_recorder_result(self) -> None:
        class CountingLog:
            def __init__(self) -> None:
                self.calls = []

            def record(self, event_type, payload, *, decision=None):
                self.calls.append((event_type, payload, decision))
                return len(self.calls)

        log = CountingLog()
        self.assertEqual(record_quietly(log, "ping_answered", {"sender_id": "1"}, decision="allow"), 1)
        self.assertEqual(log.calls, [("ping_answered", {"sender_id": "1"}, "allow")])


if __name__ == "__main__":
    unittest.main()
