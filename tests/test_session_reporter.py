import csv
import json
import tempfile
import unittest
from pathlib import Path

import numpy as np

from session_reporter import REPORT_FIELDS, SyncSessionReporter


def summary(steps: int, **overrides) -> dict:
    row = {
        "session_started_at": 10.0,
        "session_ended_at": 70.0,
        "seconds": 60.0,
        "mode": "simulated",
        "steps": steps,
        "spm_min": 110,
        "spm_max": 130,
        "spm_mean": 120.0,
        "rate_min": 0.95,
        "rate_max": 1.1,
        "rate_mean": 1.02,
        "track_bpm": 118.0,
        "ticks": 600,
    }
    row.update(overrides)
    return row


class TestSyncSessionReporter(unittest.TestCase):
    def test_sessions_accumulate_in_json_and_csv(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            reporter = SyncSessionReporter(Path(tmpdir))
            reporter.save_session(summary(10))
            reporter.save_session(summary(20))

            with open(reporter.json_path, "r", encoding="utf-8") as f:
                payload = json.load(f)
            self.assertEqual(payload["session_count"], 2)
            self.assertEqual(payload["latest"]["steps"], 20)
            self.assertEqual([s["steps"] for s in payload["sessions"]], [10, 20])

            with open(reporter.csv_path, "r", newline="", encoding="utf-8") as f:
                rows = list(csv.DictReader(f))
            self.assertEqual(len(rows), 2)
            self.assertEqual(list(rows[0].keys()), REPORT_FIELDS)
            self.assertEqual(rows[1]["steps"], "20")

    def test_history_is_trimmed(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            reporter = SyncSessionReporter(Path(tmpdir), max_sessions=2)
            for steps in (1, 2, 3):
                reporter.save_session(summary(steps))

            with open(reporter.json_path, "r", encoding="utf-8") as f:
                payload = json.load(f)
            self.assertEqual([s["steps"] for s in payload["sessions"]], [2, 3])

    def test_numpy_values_are_serialized(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            reporter = SyncSessionReporter(Path(tmpdir))
            reporter.save_session(summary(np.int64(7), rate_mean=np.float32(1.5)))

            with open(reporter.json_path, "r", encoding="utf-8") as f:
                latest = json.load(f)["latest"]
            self.assertEqual(latest["steps"], 7)
            self.assertEqual(latest["rate_mean"], 1.5)

    def test_corrupt_report_is_replaced(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            reporter = SyncSessionReporter(Path(tmpdir))
            reporter.json_path.write_text("{not json", encoding="utf-8")
            reporter.save_session(summary(3))

            with open(reporter.json_path, "r", encoding="utf-8") as f:
                self.assertEqual(json.load(f)["session_count"], 1)


if __name__ == "__main__":
    unittest.main()
