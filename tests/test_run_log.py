from __future__ import annotations

import io
import json
import tempfile
import unittest
from pathlib import Path

from ugc_ingest.run_log import NullRunLogger, RunLogger, ensure_logger


class TestRunLogger(unittest.TestCase):
    def test_writes_jsonl_records(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            log_path = Path(td) / "logs" / "run.log"

            with RunLogger.open(log_path, run_id="r1", session_id="s1") as log:
                log.info("run_started", mode="hashtag", targets=["tdr"])
                log.warning("media_rehost_failed", url="https://example.com/a.jpg", error="timeout")

            lines = log_path.read_text(encoding="utf-8").splitlines()
            self.assertEqual(len(lines), 2)

            first = json.loads(lines[0])
            self.assertEqual(first["event"], "run_started")
            self.assertEqual(first["level"], "INFO")
            self.assertEqual(first["run_id"], "r1")
            self.assertEqual(first["session_id"], "s1")
            self.assertEqual(first["data"], {"mode": "hashtag", "targets": ["tdr"]})

            second = json.loads(lines[1])
            self.assertEqual(second["level"], "WARN")
            self.assertEqual(second["url"], "https://example.com/a.jpg")

    def test_exception_records_traceback(self) -> None:
        buf = io.StringIO()
        log = RunLogger(stream=buf)

        try:
            raise ValueError("bad item")
        except ValueError as e:
            log.exception("run_failed", exc=e, state="normalizing")

        rec = json.loads(buf.getvalue())
        self.assertEqual(rec["level"], "ERROR")
        self.assertEqual(rec["data"]["error"]["type"], "ValueError")
        self.assertIn("bad item", rec["data"]["error"]["traceback"])
        self.assertEqual(rec["data"]["state"], "normalizing")

    def test_min_level_filters(self) -> None:
        buf = io.StringIO()
        log = RunLogger(stream=buf, min_level="INFO")
        log.debug("item_dropped", index=1)
        log.info("run_started")

        events = [json.loads(line)["event"] for line in buf.getvalue().splitlines()]
        self.assertEqual(events, ["run_started"])

    def test_bound_views_keep_their_own_run_id(self) -> None:
        buf = io.StringIO()
        log = RunLogger(stream=buf, session_id="s1", min_level="INFO")
        a = log.bind(run_id="a")
        b = log.bind(run_id="b")

        a.info("one")
        b.info("two")
        a.debug("filtered")
        log.info("three")
        a.close()
        a.info("four")

        recs = [json.loads(line) for line in buf.getvalue().splitlines()]
        self.assertEqual([r["event"] for r in recs], ["one", "two", "three", "four"])
        self.assertEqual(recs[0]["run_id"], "a")
        self.assertEqual(recs[1]["run_id"], "b")
        self.assertNotIn("run_id", recs[2])
        self.assertEqual(recs[3]["run_id"], "a")
        self.assertTrue(all(r["session_id"] == "s1" for r in recs))

    def test_null_logger(self) -> None:
        log = ensure_logger(None)
        self.assertIsInstance(log, NullRunLogger)
        log.info("ignored", x=1)
        self.assertIs(log.bind(run_id="r"), log)
        log.close()

        with self.assertRaises(ValueError):
            RunLogger()


if __name__ == "__main__":
    unittest.main()
