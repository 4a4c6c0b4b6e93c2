import logging
import os
import yaml

from settings_schema import SettingsSchema, validate_settings

APP_VERSION = "1.0.0"

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class YamlConfig:
    """Load and save settings to a YAML file."""

    ENV_OVERRIDES = {"IRONLOG_DB": "db_path"}

    def __init__(self, path: str = "settings.yaml") -> None:
        self.path = path

    def load(self) -> dict:
        data: dict = {}
        if os.path.exists(self.path):
            with open(self.path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        for env, key in self.ENV_OVERRIDES.items():
            value = os.environ.get(env)
            if value:
                data[key] = value
        return data

    def save(self, data: dict) -> None:
        with open(self.path, "w", encoding="utf-8") as f:
            yaml.safe_dump(dict(data), f)


def load_settings(path: str = "settings.yaml") -> SettingsSchema:
    """Read ``path`` and return validated settings with defaults filled in."""
    return validate_settings(YamlConfig(path).load())


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
