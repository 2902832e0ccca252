from __future__ import annotations

import io
import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

import cli
from archives import ARCHIVES
from composition import CompositionReport, ResourceResult, new_size_table
from errors import NoMementosError, UnsupportedArchiveError


def _report(resources=None) -> CompositionReport:
    sizes = new_size_table(1000)
    sizes["image"] = {"bytes": 3000, "count": 2}
    sizes["total"] = {"bytes": 4000, "count": 3}
    return CompositionReport(
        url="https://example.com",
        requested_memento="20200101000000",
        memento="20200102030405",
        memento_url="https://web.archive.org/web/20200102030405if_/https://example.com",
        archive="Wayback Machine",
        archive_org="Internet Archive",
        archive_url="https://web.archive.org",
        sizes=sizes,
        completeness="100%",
        discovered=2,
        measured=2,
        resources=resources,
    )


class CliTest(unittest.TestCase):
    def setUp(self) -> None:
        self.out = io.StringIO()
        self.err = io.StringIO()

    def _run(self, *argv: str) -> int:
        return cli.main(list(argv), out=self.out, err=self.err)

    def test_archives_lists_every_archive(self) -> None:
        self.assertEqual(self._run("archives"), 0)
        lines = self.out.getvalue().splitlines()
        self.assertEqual(len(lines), len(ARCHIVES))
        self.assertTrue(any(line.startswith("ia") and "Wayback Machine" in line for line in lines))

    def test_report_prints_composition(self) -> None:
        with patch.object(cli.WastebackMachine, "analyse", return_value=_report()) as analyse:
            self.assertEqual(self._run("report", "example.com", "2020", "--archive", "ia"), 0)
        args = analyse.call_args.args
        self.assertEqual(args, ("ia", "example.com", "2020", "01", "01"))
        text = self.out.getvalue()
        self.assertIn("Memento:      20200102030405", text)
        self.assertIn("Completeness: 100%", text)
        self.assertIn("image", text)
        self.assertNotIn("  video", text)
        self.assertNotIn("CO2e", text)

    def test_report_passes_year_range(self) -> None:
        with patch.object(cli.WastebackMachine, "analyse", return_value=_report()) as analyse:
            self.assertEqual(self._run("report", "example.com", "2020", "--start-year", "2018", "--end-year", "2021"), 0)
        kwargs = analyse.call_args.kwargs
        self.assertEqual((kwargs["start_year"], kwargs["end_year"]), (2018, 2021))

    def test_report_year_range_defaults_to_none(self) -> None:
        with patch.object(cli.WastebackMachine, "analyse", return_value=_report()) as analyse:
            self.assertEqual(self._run("report", "example.com", "2020"), 0)
        kwargs = analyse.call_args.kwargs
        self.assertIsNone(kwargs["start_year"])
        self.assertIsNone(kwargs["end_year"])

    def test_report_json_with_emissions(self) -> None:
        resources = [ResourceResult(url="https://cdn.example/a.png", category="image", size=3000)]
        with patch.object(cli.WastebackMachine, "analyse", return_value=_report(resources)):
            self.assertEqual(self._run("report", "example.com", "2020", "6", "--json", "--resources", "--grams-per-gb", "1000000"), 0)
        payload = json.loads(self.out.getvalue())
        self.assertEqual(payload["memento"], "20200102030405")
        self.assertEqual(payload["resources"], [{"url": "https://cdn.example/a.png", "type": "image", "size": 3000}])
        self.assertAlmostEqual(payload["emissions"]["total"], 4.0)
        self.assertAlmostEqual(payload["emissions"]["image"], 3.0)

    def test_input_errors_exit_with_two(self) -> None:
        with patch.object(cli.WastebackMachine, "analyse", side_effect=UnsupportedArchiveError("Invalid or unsupported archive: zz")):
            self.assertEqual(self._run("report", "example.com", "2020", "--archive", "zz"), 2)
        self.assertEqual(self.err.getvalue().strip(), "Error: Invalid or unsupported archive: zz")

    def test_pipeline_errors_exit_with_one(self) -> None:
        with patch.object(cli.WastebackMachine, "analyse", side_effect=NoMementosError("No mementos found")):
            self.assertEqual(self._run("report", "example.com", "2020"), 1)
        self.assertEqual(self.err.getvalue().strip(), "Error: No mementos found")

    def test_mementos_single_year(self) -> None:
        with patch.object(cli.WastebackMachine, "get_mementos", return_value=["20200102030405"]) as get_mementos:
            self.assertEqual(self._run("mementos", "example.com", "--year", "2020"), 0)
        kwargs = get_mementos.call_args.kwargs
        self.assertEqual((kwargs["start_year"], kwargs["end_year"]), (2020, 2020))
        self.assertEqual(self.out.getvalue().strip(), "20200102030405")


class HelpersTest(unittest.TestCase):
    def test_human_size(self) -> None:
        self.assertEqual(cli.human_size(512), "512 B")
        self.assertEqual(cli.human_size(2048), "2.0 KB")
        self.assertEqual(cli.human_size(5 * 1024 * 1024), "5.0 MB")

    def test_load_env_file_does_not_override(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / ".env"
            path.write_text("# comment\nWASTEBACK_TEST_A='one'\nWASTEBACK_TEST_B=two\nnoequals\n", encoding="utf-8")
            with patch.dict(os.environ, {"WASTEBACK_TEST_B": "kept"}, clear=False):
                cli.load_env_file(path)
                self.assertEqual(os.environ["WASTEBACK_TEST_A"], "one")
                self.assertEqual(os.environ["WASTEBACK_TEST_B"], "kept")


if __name__ == "__main__":
    unittest.main(verbosity=2)
