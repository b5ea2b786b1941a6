import os
import shutil
import sys
import tempfile
import unittest

import yaml

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from config import YamlConfig, load_settings
from settings_schema import SettingsSchema, validate_settings


class SettingsTest(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.mkdtemp()
        self.path = os.path.join(self.tmp, "settings.yaml")
        self._env = {k: os.environ.pop(k, None) for k in YamlConfig.ENV_OVERRIDES}

    def tearDown(self) -> None:
        for key, value in self._env.items():
            os.environ.pop(key, None)
            if value is not None:
                os.environ[key] = value
        shutil.rmtree(self.tmp, ignore_errors=True)

    def test_defaults_without_file(self) -> None:
        settings = load_settings(self.path)
        self.assertEqual(settings, SettingsSchema())
        self.assertEqual(settings.db_path, "workout.db")
        self.assertEqual(settings.system_owner_id, "system_templates")
        self.assertEqual(settings.default_user_id, "local_user")

    def test_save_and_load(self) -> None:
        cfg = YamlConfig(self.path)
        cfg.save({"db_path": "gym.db", "weight_unit": "lb", "retry_backoff": 0.2})
        self.assertEqual(cfg.load()["weight_unit"], "lb")
        settings = load_settings(self.path)
        self.assertEqual(settings.db_path, "gym.db")
        self.assertEqual(settings.weight_unit, "lb")
        self.assertEqual(settings.retry_backoff, 0.2)

    def test_environment_overrides(self) -> None:
        YamlConfig(self.path).save({"db_path": "gym.db"})
        os.environ["WORKOUT_DB_PATH"] = "/tmp/other.db"
        os.environ["WORKOUT_LOG_LEVEL"] = "DEBUG"
        settings = load_settings(self.path)
        self.assertEqual(settings.db_path, "/tmp/other.db")
        self.assertEqual(settings.log_level, "DEBUG")

    def test_invalid_values_rejected(self) -> None:
        with self.assertRaises(ValueError):
            validate_settings({"weight_unit": "stone"})
        with self.assertRaises(ValueError):
            YamlConfig(self.path).save({"busy_timeout": 0})
        self.assertFalse(os.path.exists(self.path))
        with open(self.path, "w", encoding="utf-8") as f:
            yaml.safe_dump({"log_level": "LOUD"}, f)
        with self.assertRaises(ValueError):
            load_settings(self.path)

    def test_non_mapping_file_rejected(self) -> None:
        with open(self.path, "w", encoding="utf-8") as f:
            f.write("- just\n- a list\n")
        with self.assertRaises(ValueError):
            YamlConfig(self.path).load()


if __name__ == "__main__":
    unittest.main()
