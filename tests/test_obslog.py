import io
import json
import logging
import unittest


class TestJsonlLogging(unittest.TestCase):
    def test_records_carry_correlation_fields(self) -> None:
        from ambient.util.obslog import JsonlFormatter

        stream = io.StringIO()
        handler = logging.StreamHandler(stream)
        handler.setFormatter(JsonlFormatter(component="ambient-test"))
        log = logging.getLogger("ambient.test.obslog")
        log.propagate = False
        log.addHandler(handler)
        self.addCleanup(log.removeHandler, handler)
        log.setLevel(logging.INFO)

        log.info("question queued", extra={"session_id": "s1", "query_seq": 3})
        doc = json.loads(stream.getvalue().strip())
        self.assertEqual(doc["msg"], "question queued")
        self.assertEqual(doc["component"], "ambient-test")
        self.assertEqual(doc["logger"], "ambient.test.obslog")
        self.assertEqual(doc["session_id"], "s1")
        self.assertEqual(doc["query_seq"], 3)
        self.assertTrue(doc["ts"].endswith("Z"))

    def test_exceptions_are_serialized(self) -> None:
        from ambient.util.obslog import JsonlFormatter

        fmt = JsonlFormatter(component="x")
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            import sys

            record = logging.LogRecord("n", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())
        doc = json.loads(fmt.format(record))
        self.assertIn("RuntimeError: boom", doc["exc"])

    def test_level_from_environment(self) -> None:
        import os
        from unittest import mock

        from ambient.util.obslog import default_level

        with mock.patch.dict(os.environ, {"AMBIENT_LOG_LEVEL": "DEBUG"}):
            self.assertEqual(default_level(), "DEBUG")
        with mock.patch.dict(os.environ, {}, clear=True):
            self.assertEqual(default_level(), "INFO")


if __name__ == "__main__":
    unittest.main()
