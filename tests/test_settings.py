import os
import tempfile
import time
import unittest
from pathlib import Path


class TestSettings(unittest.TestCase):
    def _write(self, path: Path, text: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")

    def test_defaults_without_files(self) -> None:
        from ambient.kernel.settings import DEFAULT_EXCLUDE_PATTERNS, load_settings

        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            s = load_settings(root, global_path=root / "missing.yaml")
            self.assertTrue(s.enabled)
            self.assertEqual(s.port, 38080)
            self.assertEqual(s.check_interval_secs, 60)
            self.assertEqual(s.ollama.base_url, "http://localhost:11434/v1")
            self.assertEqual(s.ollama.model, "gpt-oss:20b")
            self.assertEqual(s.exclude_patterns, DEFAULT_EXCLUDE_PATTERNS)
            self.assertEqual(s.ruleset().names(), ["Syntax & Type Errors", "Security Risks", "Performance"])

    def test_project_overrides_global_and_merges_reviews_by_name(self) -> None:
        from ambient.kernel.settings import load_settings

        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            gpath = root / "home" / "settings.yaml"
            self._write(
                gpath,
                "port: 40000\n"
                "ollama:\n  model: global-model\n  base_url: http://gpu:11434/v1\n"
                "reviews:\n"
                "  - {name: A, file_patterns: ['*.py'], prompt: 'a {file_path}', priority: 10}\n"
                "  - {name: B, file_patterns: ['*'], prompt: 'b', priority: 20}\n",
            )
            self._write(
                root / ".ambient" / "config.yaml",
                "port: 40100\n"
                "ollama:\n  model: project-model\n"
                "reviews:\n"
                "  - {name: A, file_patterns: ['*.rs'], prompt: 'a2', priority: 10}\n"
                "  - {name: C, file_patterns: ['*'], prompt: 'c', priority: 5}\n",
            )
            s = load_settings(root, global_path=gpath)
            self.assertEqual(s.port, 40100)
            self.assertEqual(s.ollama.model, "project-model")
            self.assertEqual(s.ollama.base_url, "http://gpu:11434/v1")
            self.assertEqual([r.name for r in s.reviews], ["A", "B", "C"])
            self.assertEqual(s.reviews[0].file_patterns, ["*.rs"])
            self.assertEqual(s.ruleset().names(), ["B", "A", "C"])

    def test_invalid_documents_raise_settings_error(self) -> None:
        from ambient.kernel.settings import SettingsError, load_settings

        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            self._write(root / ".ambient" / "config.yaml", "port: [not, a, port]\n")
            with self.assertRaises(SettingsError):
                load_settings(root, global_path=root / "none.yaml")
            self._write(root / ".ambient" / "config.yaml", "unknown_key: 1\n")
            with self.assertRaises(SettingsError):
                load_settings(root, global_path=root / "none.yaml")
            self._write(root / ".ambient" / "config.yaml", "reviews: [\n")
            with self.assertRaises(SettingsError):
                load_settings(root, global_path=root / "none.yaml")

    def test_store_reloads_on_change_and_keeps_last_good(self) -> None:
        from ambient.kernel.settings import SettingsStore

        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            cfg = root / ".ambient" / "config.yaml"
            self._write(cfg, "check_interval_secs: 5\n")
            store = SettingsStore(root, global_path=root / "none.yaml")
            self.assertEqual(store.snapshot().check_interval_secs, 5)

            self._write(cfg, "check_interval_secs: 7\n")
            later = time.time() + 5
            os.utime(cfg, (later, later))
            self.assertEqual(store.snapshot().check_interval_secs, 7)

            self._write(cfg, "check_interval_secs: [\n")
            later += 5
            os.utime(cfg, (later, later))
            self.assertEqual(store.snapshot().check_interval_secs, 7)
            self.assertTrue(store.last_error)

            self._write(cfg, "check_interval_secs: 9\n")
            later += 5
            os.utime(cfg, (later, later))
            self.assertEqual(store.snapshot().check_interval_secs, 9)
            self.assertEqual(store.last_error, "")

    def test_create_sample_round_trips(self) -> None:
        from ambient.kernel.settings import AmbientSettings, create_sample, load_settings

        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            path = create_sample(root)
            self.assertTrue(path.exists())
            self.assertTrue((root / ".ambient" / "README.md").exists())
            self.assertEqual(load_settings(root, global_path=root / "none.yaml"), AmbientSettings())


if __name__ == "__main__":
    unittest.main()
