import json
import tempfile
import unittest
from dataclasses import asdict
from pathlib import Path
from unittest import mock

from config import Config
import config_persistence


class TestConfigPersistence(unittest.TestCase):
    def test_save_and_load_roundtrip(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            cfg_file = Path(tmpdir) / "config.json"
            cfg = Config()
            cfg.step.threshold = 1.25
            cfg.rate.max_rate = 1.3
            cfg.playback.device_index = 3

            with mock.patch.object(config_persistence, "get_config_file", return_value=cfg_file):
                self.assertTrue(config_persistence.save_config(cfg))
                loaded = config_persistence.load_config()

            self.assertAlmostEqual(loaded.step.threshold, 1.25, places=6)
            self.assertAlmostEqual(loaded.rate.max_rate, 1.3, places=6)
            self.assertEqual(loaded.playback.device_index, 3)

    def test_load_default_when_missing(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            cfg_file = Path(tmpdir) / "config.json"
            with mock.patch.object(config_persistence, "get_config_file", return_value=cfg_file):
                loaded = config_persistence.load_config()
            self.assertIsInstance(loaded, Config)
            self.assertFalse(cfg_file.exists())

    def test_load_migrates_and_autosaves(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            cfg_file = Path(tmpdir) / "config.json"
            legacy = Config()
            legacy.version = 0
            legacy_data = asdict(legacy)
            legacy_data["step"]["threshold"] = None
            with open(cfg_file, "w", encoding="utf-8") as f:
                json.dump(legacy_data, f)

            with mock.patch.object(config_persistence, "get_config_file", return_value=cfg_file):
                loaded = config_persistence.load_config()

            self.assertEqual(loaded.version, 1)
            self.assertEqual(loaded.step.threshold, 0.8)
            with open(cfg_file, "r", encoding="utf-8") as f:
                self.assertEqual(json.load(f)["version"], 1)

    def test_load_invalid_json_returns_default(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            cfg_file = Path(tmpdir) / "config.json"
            with open(cfg_file, "w", encoding="utf-8") as f:
                f.write("{invalid json")

            with mock.patch.object(config_persistence, "get_config_file", return_value=cfg_file):
                loaded = config_persistence.load_config()

            self.assertIsInstance(loaded, Config)

    def test_save_failure_returns_false(self):
        cfg = Config()

        with mock.patch.object(config_persistence, "get_config_file", side_effect=OSError("boom")):
            self.assertFalse(config_persistence.save_config(cfg))

    def test_report_dir_lives_under_config_dir(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            with mock.patch.object(config_persistence, "get_config_dir", return_value=Path(tmpdir)):
                self.assertEqual(config_persistence.get_report_dir(), Path(tmpdir) / "reports")


if __name__ == "__main__":
    unittest.main()
