from __future__ import annotations

from pathlib import Path
import tempfile
import unittest

from govscan.config import DEFAULT_EXCLUDE_GLOBS, Config, load_config, validate_config


class ConfigTests(unittest.TestCase):
    def test_defaults_are_valid(self) -> None:
        config = Config()
        self.assertEqual(validate_config(config), [])
        self.assertEqual(config.scan.exclude_globs, DEFAULT_EXCLUDE_GLOBS)
        self.assertGreaterEqual(config.scan.threads, 1)

    def test_loads_sections_from_toml(self) -> None:
        text = """
[scan]
catalog = "rules.toml"
exclude_globs = ["vendor/**"]
max_file_size = 2048
threads = 3
multi_repo = true
disabled_rules = ["work-item-marker"]

[sampling]
sample_size = 5
seed = 42
labels = "labels.json"

[report]
format = "json"
strict = true
"""
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "govscan.toml"
            path.write_text(text, encoding="utf-8")
            config = load_config(str(path))

        self.assertEqual(config.scan.catalog, "rules.toml")
        self.assertEqual(config.scan.exclude_globs, ["vendor/**"])
        self.assertEqual(config.scan.max_file_size, 2048)
        self.assertEqual(config.scan.threads, 3)
        self.assertTrue(config.scan.multi_repo)
        self.assertEqual(config.scan.disabled_rules, ["work-item-marker"])
        self.assertIsNone(config.scan.enabled_rules)
        self.assertEqual(config.sampling.sample_size, 5)
        self.assertEqual(config.sampling.seed, 42)
        self.assertEqual(config.sampling.labels, "labels.json")
        self.assertEqual(config.report.output_format, "json")
        self.assertTrue(config.report.strict)

    def test_missing_explicit_config_raises(self) -> None:
        with self.assertRaises(FileNotFoundError):
            load_config("/nonexistent/govscan.toml")

    def test_malformed_toml_raises_value_error(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "govscan.toml"
            path.write_text("[scan\nthreads = 2\n", encoding="utf-8")
            with self.assertRaises(ValueError) as exc:
                load_config(str(path))

        self.assertIn("invalid TOML", str(exc.exception))

    def test_non_integer_setting_names_the_key(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "govscan.toml"
            path.write_text('[scan]\nthreads = "many"\n', encoding="utf-8")
            with self.assertRaises(ValueError) as exc:
                load_config(str(path))

        self.assertIn("threads", str(exc.exception))

    def test_validation_errors(self) -> None:
        config = Config()
        config.scan.threads = 0
        config.scan.max_file_size = -1
        config.sampling.sample_size = -2
        config.report.output_format = "sarif"
        config.scan.enabled_rules = []

        errors = validate_config(config)

        self.assertTrue(any("threads" in error for error in errors))
        self.assertTrue(any("max_file_size" in error for error in errors))
        self.assertTrue(any("sample_size" in error for error in errors))
        self.assertTrue(any("format" in error for error in errors))
        self.assertTrue(any("enabled_rules" in error for error in errors))


if __name__ == "__main__":
    unittest.main()
