from __future__ import annotations

import time
import unittest
from unittest.mock import patch

import app as web_app
from composition import CompositionReport, new_size_table
from errors import NoMementosError


class AsyncRoutesSmokeTest(unittest.TestCase):
    def setUp(self) -> None:
        web_app.app.config["TESTING"] = True
        self.client = web_app.app.test_client()
        self.target_url = "https://example.com/smoke-async"
        self.memento = "20240101120000"

    def _poll_status(self, path: str, timeout_s: float = 5.0) -> dict:
        started = time.time()
        last = {}
        while time.time() - started < timeout_s:
            response = self.client.get(path)
            self.assertEqual(response.status_code, 200)
            last = response.get_json() or {}
            if last.get("state") in ("done", "error"):
                return last
            time.sleep(0.05)
        self.fail(f"Timeout waiting for {path}. Last payload: {last}")

    def _assert_progress_shape(self, payload: dict) -> None:
        progress = payload.get("progress") or {}
        self.assertIn("stage", progress)
        self.assertIn("message", progress)
        self.assertIn("percent", progress)
        self.assertIn("current_item", progress)
        self.assertIn("elapsed_seconds", progress)

    def _fake_analyse(self, archive_id, target_url, year, month="01", day="01", **kwargs) -> CompositionReport:
        callback = kwargs.get("progress_callback")
        if callback:
            callback({"stage": "resolve", "message": "Fetching available mementos", "percent": 5, "current_url": target_url})
            callback({"stage": "measure", "message": "Measuring resources", "percent": 45, "memento": self.memento})
        sizes = new_size_table(2048)
        sizes["script"] = {"bytes": 1024, "count": 1}
        sizes["total"] = {"bytes": 3072, "count": 2}
        return CompositionReport(
            url=target_url,
            requested_memento=f"{year}{month}{day}000000",
            memento=self.memento,
            memento_url=f"https://web.archive.org/web/{self.memento}if_/{target_url}",
            archive="Wayback Machine",
            archive_org="Internet Archive",
            archive_url="https://web.archive.org",
            sizes=sizes,
            completeness="100%",
            discovered=1,
            measured=1,
        )

    def test_report_job_reaches_done(self) -> None:
        with patch.object(web_app.tool, "analyse", side_effect=self._fake_analyse) as analyse:
            start = self.client.post(
                "/report/start",
                json={"target_url": self.target_url, "year": "2024", "archive": "ia", "include_resources": True},
            ).get_json()
            self.assertTrue(start["ok"])
            done = self._poll_status(f"/report/status/{start['job_id']}")

        self.assertEqual(done.get("state"), "done")
        self._assert_progress_shape(done)
        self.assertEqual(done["progress"]["percent"], 100)
        self.assertEqual(done["result"]["memento"], self.memento)
        self.assertEqual(done["result"]["sizes"]["total"], {"bytes": 3072, "count": 2})
        self.assertEqual(analyse.call_args.args, ("ia", self.target_url, "2024", "01", "01"))
        self.assertTrue(analyse.call_args.kwargs["include_resources"])

    def test_report_job_records_error_kind(self) -> None:
        with patch.object(web_app.tool, "analyse", side_effect=NoMementosError("No mementos found")):
            start = self.client.post("/report/start", data={"target_url": self.target_url, "year": "2024"}).get_json()
            done = self._poll_status(f"/report/status/{start['job_id']}")

        self.assertEqual(done.get("state"), "error")
        self.assertEqual(done.get("error"), "No mementos found")
        self.assertEqual(done.get("error_kind"), "no_mementos")
        self._assert_progress_shape(done)

    def test_report_start_rejects_when_at_capacity(self) -> None:
        with patch.object(web_app, "MAX_ACTIVE_JOBS", 1), patch.object(web_app, "ACTIVE_JOBS_COUNT", 1):
            response = self.client.post("/report/start", data={"target_url": self.target_url, "year": "2024"})
        self.assertEqual(response.status_code, 429)
        self.assertFalse((response.get_json() or {}).get("ok"))


if __name__ == "__main__":
    unittest.main(verbosity=2)
