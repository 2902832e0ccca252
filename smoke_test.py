from __future__ import annotations

import time
import unittest

import app as web_app
from app import app


class AppSmokeTest(unittest.TestCase):
    def setUp(self) -> None:
        app.config["TESTING"] = True
        self.client = app.test_client()

    def test_index_lists_endpoints(self) -> None:
        response = self.client.get("/")
        self.assertEqual(response.status_code, 200)
        payload = response.get_json() or {}
        self.assertTrue(payload.get("ok"))
        self.assertIn("POST /report/start", payload.get("endpoints", []))

    def test_archives_endpoint(self) -> None:
        response = self.client.get("/archives")
        self.assertEqual(response.status_code, 200)
        ids = [item["id"] for item in (response.get_json() or {}).get("archives", [])]
        self.assertIn("ia", ids)
        self.assertEqual(ids, sorted(ids))

    def test_report_start_requires_url_and_year(self) -> None:
        for data in ({}, {"year": "2020"}, {"target_url": "example.com"}):
            with self.subTest(data=data):
                response = self.client.post("/report/start", data=data)
                self.assertEqual(response.status_code, 400)
                self.assertFalse((response.get_json() or {}).get("ok"))

    def test_mementos_requires_url(self) -> None:
        response = self.client.get("/mementos")
        self.assertEqual(response.status_code, 400)

    def test_mementos_rejects_unknown_archive(self) -> None:
        response = self.client.get("/mementos", query_string={"target_url": "example.com", "archive": "zz"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual((response.get_json() or {}).get("error_kind"), "unsupported_archive")

    def test_status_rejects_unknown_job(self) -> None:
        response = self.client.get("/report/status/does-not-exist")
        self.assertEqual(response.status_code, 404)

    def test_diagnostics_endpoint_returns_ok_payload(self) -> None:
        response = self.client.get("/diagnostics")
        self.assertEqual(response.status_code, 200)
        payload = response.get_json() or {}
        self.assertTrue(payload.get("ok"))
        self.assertIn("runtime", payload)
        self.assertEqual(payload["config"]["archives"], 13)

    def test_finished_jobs_expire(self) -> None:
        now = time.time()
        with web_app.REPORT_JOBS_LOCK:
            web_app.REPORT_JOBS["old-job"] = {"state": "done", "started_at": now - 10_000, "finished_at": now - 10_000}
            web_app.REPORT_JOBS["live-job"] = {"state": "running", "started_at": now - 10_000, "finished_at": None}
        try:
            web_app._cleanup_old_jobs(now)
            with web_app.REPORT_JOBS_LOCK:
                self.assertNotIn("old-job", web_app.REPORT_JOBS)
                self.assertIn("live-job", web_app.REPORT_JOBS)
        finally:
            with web_app.REPORT_JOBS_LOCK:
                web_app.REPORT_JOBS.pop("old-job", None)
                web_app.REPORT_JOBS.pop("live-job", None)


if __name__ == "__main__":
    unittest.main(verbosity=2)
