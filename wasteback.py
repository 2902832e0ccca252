from __future__ import annotations

import dataclasses
import logging
import os
from datetime import datetime, timezone
from typing import Callable, Dict, List, Mapping, Optional, Union
from urllib.parse import urlparse

from archives import ARCHIVES, LOOKUP_INDEX, ArchiveProfile, get_archive
from classifier import CATEGORIES
from composition import CompositionAggregator, CompositionReport
from discovery import ResourceDiscovery
from errors import InputError, NoMementosError
from fetcher import DEFAULT_ATTEMPTS, DEFAULT_RETRY_DELAY, DEFAULT_TIMEOUT, ResilientFetcher
from mementos import MementoResolver, build_timestamp, is_timestamp, pick_closest


logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = int(os.environ.get("WASTEBACK_MAX_WORKERS", "8"))

ProgressCallback = Callable[[Dict[str, object]], None]
Co2Estimator = Callable[[int], float]


def normalize_target(target_url: Optional[str]) -> str:
    url = (target_url or "").strip()
    if not url:
        raise InputError("URL is required")
    if not url.lower().startswith(("http://", "https://")):
        url = "https://" + url
    if not urlparse(url).netloc:
        raise InputError(f"Invalid URL: {target_url}")
    return url


def emissions(report: CompositionReport, estimate: Co2Estimator) -> Dict[str, float]:
    out = {"total": estimate(report.sizes["total"]["bytes"])}
    for category in CATEGORIES:
        cell = report.sizes.get(category) or {}
        if cell.get("count") and cell.get("bytes"):
            out[category] = estimate(cell["bytes"])
    return out


class WastebackMachine:
    def __init__(
        self,
        registry: Mapping[str, ArchiveProfile] = ARCHIVES,
        fetcher: Optional[ResilientFetcher] = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_workers: int = DEFAULT_MAX_WORKERS,
        attempts: int = DEFAULT_ATTEMPTS,
        base_delay: float = DEFAULT_RETRY_DELAY,
        scan_scripts: bool = False,
    ) -> None:
        self.registry = registry
        self.fetcher = fetcher or ResilientFetcher(
            timeout=timeout,
            attempts=attempts,
            base_delay=base_delay,
            pool_size=max_workers,
        )
        self.resolver = MementoResolver(self.fetcher)
        self.discovery = ResourceDiscovery(self.fetcher)
        self.max_workers = max(1, max_workers)
        self.scan_scripts = scan_scripts

    normalize_target = staticmethod(normalize_target)

    def resolve_archive(self, archive_id: Optional[str], use_index: bool = False) -> ArchiveProfile:
        profile = get_archive(archive_id, self.registry)
        if use_index:
            if not profile.index_url:
                raise InputError(f"Archive {profile.id} does not offer an index lookup")
            profile = dataclasses.replace(profile, lookup=LOOKUP_INDEX)
        return profile

    def get_mementos(
        self,
        archive_id: Optional[str],
        target_url: str,
        start_year: Optional[int] = None,
        end_year: Optional[int] = None,
        use_index: bool = False,
    ) -> List[str]:
        archive = self.resolve_archive(archive_id, use_index=use_index)
        url = normalize_target(target_url)
        current_year = datetime.now(timezone.utc).year
        start = archive.earliest_year if start_year is None else int(start_year)
        end = current_year if end_year is None else int(end_year)
        return self.resolver.resolve_memento_set(archive, url, start, end)

    def get_memento_sizes(
        self,
        archive_id: Optional[str],
        target_url: str,
        timestamp: str,
        include_resources: bool = False,
        start_year: Optional[int] = None,
        end_year: Optional[int] = None,
        use_index: bool = False,
        scan_scripts: Optional[bool] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> CompositionReport:
        archive = self.resolve_archive(archive_id, use_index=use_index)
        url = normalize_target(target_url)
        if not is_timestamp(timestamp):
            raise InputError(f"Invalid memento timestamp: {timestamp}")
        year = int(timestamp[:4])
        start = year if start_year is None else int(start_year)
        end = year if end_year is None else int(end_year)

        self._emit_progress(
            progress_callback,
            stage="resolve",
            message="Fetching available mementos",
            percent=5,
            current_url=url,
        )
        mementos = self.resolver.resolve_memento_set(archive, url, start, end)
        if not mementos:
            raise NoMementosError(f"No mementos found for {url} between {start} and {end} in {archive.archive}")
        memento = pick_closest(mementos, timestamp)
        logger.info("Closest memento to %s for %s is %s", timestamp, url, memento)

        self._emit_progress(
            progress_callback,
            stage="discover",
            message="Loading memento and discovering resources",
            percent=25,
            current_url=url,
            memento=memento,
            mementos_found=len(mementos),
        )
        found = self.discovery.discover(archive, url, memento)

        self._emit_progress(
            progress_callback,
            stage="measure",
            message="Measuring resources",
            percent=45,
            current_url=url,
            memento=memento,
            resources_total=len(found.references),
        )
        aggregator = CompositionAggregator(
            self.fetcher,
            max_workers=self.max_workers,
            scan_scripts=self.scan_scripts if scan_scripts is None else scan_scripts,
        )
        report = aggregator.aggregate(
            archive,
            found.references,
            found.html_size,
            url=url,
            requested_memento=timestamp,
            memento=memento,
            include_resources=include_resources,
            malformed=len(found.malformed),
        )

        self._emit_progress(
            progress_callback,
            stage="done",
            message="Analysis complete",
            percent=100,
            current_url=url,
            memento=memento,
            completeness=report.completeness,
        )
        return report

    def analyse(
        self,
        archive_id: Optional[str],
        target_url: str,
        year: Union[int, str],
        month: Union[int, str] = "01",
        day: Union[int, str] = "01",
        **options: object,
    ) -> CompositionReport:
        archive = self.resolve_archive(archive_id, use_index=bool(options.get("use_index", False)))
        year_value = self._validate_year(archive, year)
        timestamp = build_timestamp(year_value, month or "01", day or "01")
        return self.get_memento_sizes(archive_id, target_url, timestamp, **options)

    def _validate_year(self, archive: ArchiveProfile, year: Union[int, str]) -> int:
        text = str(year if year is not None else "").strip()
        if not text:
            raise InputError("Year is required")
        try:
            value = int(text)
        except ValueError as exc:
            raise InputError(f"Invalid year: {year}") from exc
        current_year = datetime.now(timezone.utc).year
        if value < archive.earliest_year or value > current_year:
            raise InputError(f"Invalid year: {year} (expected {archive.earliest_year}-{current_year})")
        return value

    def _emit_progress(self, callback: Optional[ProgressCallback], **payload: object) -> None:
        if callback is None:
            return
        callback(payload)
