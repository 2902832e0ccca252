from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from email.utils import format_datetime, parsedate_to_datetime
from typing import Iterable, List, Optional, Sequence, Union

from archives import LOOKUP_INDEX, ArchiveProfile
from errors import FetchError, InputError, NoMementosError
from fetcher import ResilientFetcher


logger = logging.getLogger(__name__)

TIMESTAMP_RE = re.compile(r"^\d{14}$")
TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"


def is_timestamp(value: object) -> bool:
    return isinstance(value, str) and bool(TIMESTAMP_RE.match(value))


def format_timestamp(moment: datetime) -> str:
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime(TIMESTAMP_FORMAT)


def probe_datetime(year: int) -> datetime:
    return datetime(year, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def http_date(moment: datetime) -> str:
    return format_datetime(moment.astimezone(timezone.utc), usegmt=True)


def parse_http_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def build_timestamp(year: Union[int, str], month: Union[int, str] = "01", day: Union[int, str] = "01") -> str:
    year_text = str(year).strip()
    month_text = str(month).strip() or "01"
    day_text = str(day).strip() or "01"
    if not (year_text.isdigit() and len(year_text) == 4):
        raise InputError(f"Invalid year: {year}")
    if not month_text.isdigit() or not 1 <= int(month_text) <= 12:
        raise InputError(f"Invalid month: {month}")
    if not day_text.isdigit() or not 1 <= int(day_text) <= 31:
        raise InputError(f"Invalid day: {day}")
    return f"{year_text}{month_text.zfill(2)}{day_text.zfill(2)}".ljust(14, "0")


def pick_closest(mementos: Sequence[str], target: str) -> str:
    if not mementos:
        raise NoMementosError("No mementos found")
    goal = int(target)
    best = mementos[0]
    for candidate in mementos[1:]:
        if abs(int(candidate) - goal) < abs(int(best) - goal):
            best = candidate
    return best


def _unique_sorted(timestamps: Iterable[str]) -> List[str]:
    return sorted({ts for ts in timestamps if is_timestamp(ts)})


class MementoResolver:
    def __init__(self, fetcher: ResilientFetcher) -> None:
        self.fetcher = fetcher

    def resolve_memento_set(self, archive: ArchiveProfile, url: str, start_year: int, end_year: int) -> List[str]:
        if start_year > end_year:
            raise InputError(f"Start year {start_year} is after end year {end_year}")
        if archive.lookup == LOOKUP_INDEX:
            return self._index_timestamps(archive, url, start_year, end_year)
        return self._timegate_timestamps(archive, url, start_year, end_year)

    def _timegate_timestamps(self, archive: ArchiveProfile, url: str, start_year: int, end_year: int) -> List[str]:
        found: List[str] = []
        for year in range(start_year, end_year + 1):
            probe = probe_datetime(year)
            try:
                response = self.fetcher.fetch(
                    archive.timegate_url(url),
                    headers={"Accept-Datetime": http_date(probe)},
                    stream=True,
                )
            except FetchError as exc:
                logger.warning("Timegate probe for %s in %d failed: %s", url, year, exc)
                continue
            try:
                actual = parse_http_date(response.headers.get("Memento-Datetime")) or probe
            finally:
                response.close()
            found.append(format_timestamp(actual))
            logger.debug("Timegate %s resolved %d to %s", archive.id, year, found[-1])
        return _unique_sorted(found)

    def _index_timestamps(self, archive: ArchiveProfile, url: str, start_year: int, end_year: int) -> List[str]:
        if not archive.index_url:
            raise InputError(f"Archive {archive.id} has no index endpoint")
        params = {
            "url": url,
            "from": str(start_year),
            "to": str(end_year),
            "output": "json",
            "fl": "timestamp",
            "filter": "statuscode:200",
        }
        try:
            rows = self.fetcher.fetch(archive.index_url, params=params).json()
        except (FetchError, ValueError) as exc:
            logger.warning("Index query for %s on %s failed: %s", url, archive.id, exc)
            return []

        if not isinstance(rows, list) or len(rows) <= 1:
            return []
        return _unique_sorted(str(row[0]) for row in rows[1:] if isinstance(row, list) and row)
