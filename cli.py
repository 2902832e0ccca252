from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional, TextIO

from archives import describe_archives
from classifier import CATEGORIES
from composition import CompositionReport
from errors import InputError, WastebackError
from wasteback import WastebackMachine, emissions


def load_env_file(path: Path) -> None:
    if not path.exists():
        return
    for raw in path.read_text(encoding="utf-8").splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


def human_size(num_bytes: int) -> str:
    size = float(num_bytes)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            return f"{int(size)} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


def configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="wasteback",
        description="Measure the composition of archived web pages.",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0, help="More logging (-vv for debug)")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("archives", help="List supported web archives")

    mementos = sub.add_parser("mementos", help="List mementos of a URL")
    mementos.add_argument("url")
    mementos.add_argument("--archive", default=None, help="Archive id (default: ia)")
    mementos.add_argument("--year", type=int, default=None, help="Single year to probe")
    mementos.add_argument("--start-year", type=int, default=None)
    mementos.add_argument("--end-year", type=int, default=None)
    mementos.add_argument("--index", action="store_true", help="Use the archive's index instead of its timegate")

    report = sub.add_parser("report", help="Report the composition of a memento")
    report.add_argument("url")
    report.add_argument("year")
    report.add_argument("month", nargs="?", default="01")
    report.add_argument("day", nargs="?", default="01")
    report.add_argument("--archive", default=None, help="Archive id (default: ia)")
    report.add_argument("--resources", action="store_true", help="Include per-resource entries")
    report.add_argument("--index", action="store_true", help="Use the archive's index instead of its timegate")
    report.add_argument("--start-year", type=int, default=None, help="First year to search for mementos (default: YEAR)")
    report.add_argument("--end-year", type=int, default=None, help="Last year to search for mementos (default: YEAR)")
    report.add_argument("--scan-scripts", action="store_true", help="Collect URLs referenced inside scripts")
    report.add_argument("--json", action="store_true", help="Print the report as JSON")
    report.add_argument("--grams-per-gb", type=float, default=None, help="Linear CO2e estimate per transferred GB")
    report.add_argument("--workers", type=int, default=None, help="Concurrent resource fetches")
    return parser


def print_archives(out: TextIO) -> None:
    for archive_id, name in describe_archives():
        print(f"{archive_id:<8}{name}", file=out)


def print_report(report: CompositionReport, out: TextIO, grams_per_gb: Optional[float] = None) -> None:
    print(f"URL:          {report.url}", file=out)
    print(f"Archive:      {report.archive} ({report.archive_org})", file=out)
    print(f"Requested:    {report.requested_memento}", file=out)
    print(f"Memento:      {report.memento}", file=out)
    print(f"Memento URL:  {report.memento_url}", file=out)
    total = report.sizes["total"]
    print(f"Page size:    {human_size(total['bytes'])} in {total['count']} resources", file=out)
    print(f"Completeness: {report.completeness} ({report.measured}/{report.discovered} measured)", file=out)
    if report.malformed:
        print(f"Malformed:    {report.malformed} resource URLs skipped", file=out)

    estimates = {}
    if grams_per_gb is not None:
        estimates = emissions(report, lambda size: size / 1e9 * grams_per_gb)
        print(f"CO2e:         {estimates['total']:.3f} g", file=out)

    print("", file=out)
    print("Composition:", file=out)
    for category in CATEGORIES:
        cell = report.sizes[category]
        if not cell["count"]:
            continue
        line = f"  {category:<11}{cell['count']:>5}  {human_size(cell['bytes']):>10}"
        if category in estimates:
            line += f"  {estimates[category]:.3f} g"
        print(line, file=out)

    if report.resources is not None:
        print("", file=out)
        print("Resources:", file=out)
        for item in report.resources:
            print(f"  {item.category:<11}{human_size(item.size):>10}  {item.url}", file=out)
    if report.script_references:
        print("", file=out)
        print("Script references:", file=out)
        for url in report.script_references:
            print(f"  {url}", file=out)


def main(argv: Optional[List[str]] = None, out: TextIO = sys.stdout, err: TextIO = sys.stderr) -> int:
    load_env_file(Path(__file__).resolve().parent / ".env")
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    if args.command in (None, "archives"):
        print_archives(out)
        return 0

    try:
        if args.command == "mementos":
            machine = WastebackMachine()
            start_year, end_year = args.start_year, args.end_year
            if args.year is not None:
                start_year = end_year = args.year
            for timestamp in machine.get_mementos(
                args.archive,
                args.url,
                start_year=start_year,
                end_year=end_year,
                use_index=args.index,
            ):
                print(timestamp, file=out)
            return 0

        machine = WastebackMachine(max_workers=args.workers) if args.workers else WastebackMachine()
        report = machine.analyse(
            args.archive,
            args.url,
            args.year,
            args.month,
            args.day,
            include_resources=args.resources,
            start_year=args.start_year,
            end_year=args.end_year,
            use_index=args.index,
            scan_scripts=args.scan_scripts,
        )
    except InputError as exc:
        print(f"Error: {exc}", file=err)
        return 2
    except WastebackError as exc:
        print(f"Error: {exc}", file=err)
        return 1

    if args.json:
        payload = report.to_dict()
        if args.grams_per_gb is not None:
            payload["emissions"] = emissions(report, lambda size: size / 1e9 * args.grams_per_gb)
        print(json.dumps(payload, indent=2), file=out)
    else:
        print_report(report, out, grams_per_gb=args.grams_per_gb)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
