import os
import sys
import unittest
import yaml

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from config import YamlConfig, load_settings
from settings_schema import validate_settings


class ConfigTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.path = "test_config_settings.yaml"
        self.env = os.environ.pop("IRONLOG_DB", None)

    def tearDown(self) -> None:
        if os.path.exists(self.path):
            os.remove(self.path)
        os.environ.pop("IRONLOG_DB", None)
        if self.env is not None:
            os.environ["IRONLOG_DB"] = self.env

    def test_defaults_without_file(self) -> None:
        settings = load_settings(self.path)
        self.assertEqual(settings.db_path, "ironlog.db")
        self.assertEqual(settings.plateau_weeks, 4)
        self.assertEqual(settings.trend_mode, "peak")

    def test_save_and_load(self) -> None:
        YamlConfig(self.path).save({"app_name": "mylog", "plateau_threshold": 1.02})
        with open(self.path, encoding="utf-8") as f:
            self.assertEqual(yaml.safe_load(f)["app_name"], "mylog")
        settings = load_settings(self.path)
        self.assertEqual(settings.app_name, "mylog")
        self.assertAlmostEqual(settings.plateau_threshold, 1.02)

    def test_environment_overrides_db_path(self) -> None:
        YamlConfig(self.path).save({"db_path": "file.db"})
        os.environ["IRONLOG_DB"] = "env.db"
        self.assertEqual(load_settings(self.path).db_path, "env.db")

    def test_invalid_settings(self) -> None:
        with self.assertRaises(ValueError):
            validate_settings({"trend_mode": "median"})
        with self.assertRaises(ValueError):
            validate_settings({"plateau_weeks": 0})


if __name__ == "__main__":
    unittest.main()
