from __future__ import annotations

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from archives import ArchiveProfile, CleaningRule
from classifier import CATEGORIES, DEFAULT_CATEGORY, TEXT_CATEGORIES, classify
from discovery import ResourceReference, extract_script_urls, is_excluded, normalize_url
from errors import FetchError
from fetcher import ResilientFetcher, content_type, decode_body


logger = logging.getLogger(__name__)

BLOCK_COMMENT_RE = re.compile(r"/\*[\s\S]*?\*/")

SizeTable = Dict[str, Dict[str, int]]


@dataclass(frozen=True)
class ResourceResult:
    url: str
    category: str
    size: int
    ok: bool = True
    script_urls: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, object]:
        return {"url": self.url, "type": self.category, "size": self.size}


@dataclass(frozen=True)
class CompositionReport:
    url: str
    requested_memento: str
    memento: str
    memento_url: str
    archive: str
    archive_org: str
    archive_url: str
    sizes: SizeTable
    completeness: str
    discovered: int = 0
    measured: int = 0
    malformed: int = 0
    resources: Optional[List[ResourceResult]] = None
    script_references: Optional[List[str]] = None

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "url": self.url,
            "requestedMemento": self.requested_memento,
            "memento": self.memento,
            "mementoUrl": self.memento_url,
            "archive": self.archive,
            "archiveOrg": self.archive_org,
            "archiveUrl": self.archive_url,
            "sizes": {name: dict(cell) for name, cell in self.sizes.items()},
            "completeness": self.completeness,
            "discovered": self.discovered,
            "measured": self.measured,
            "malformed": self.malformed,
        }
        if self.resources is not None:
            payload["resources"] = [item.to_dict() for item in self.resources]
        if self.script_references is not None:
            payload["scriptReferences"] = list(self.script_references)
        return payload


def apply_cleaning_rules(text: str, rules: Iterable[CleaningRule]) -> str:
    for rule in rules:
        if rule.remove_comments:
            text = BLOCK_COMMENT_RE.sub("", text)
        for start, end in rule.remove_between:
            text = re.sub(f"{start}[\\s\\S]*?{end}", "", text, flags=re.IGNORECASE)
    return text


def new_size_table(html_size: int = 0) -> SizeTable:
    table = {category: {"bytes": 0, "count": 0} for category in CATEGORIES}
    table["html"] = {"bytes": html_size, "count": 1}
    table["total"] = {"bytes": html_size, "count": 1}
    return table


def fold_result(table: SizeTable, result: ResourceResult) -> SizeTable:
    category = result.category if result.category in CATEGORIES else DEFAULT_CATEGORY
    table[category]["bytes"] += result.size
    table[category]["count"] += 1
    table["total"]["bytes"] += result.size
    table["total"]["count"] += 1
    return table


def completeness_percent(measured: int, discovered: int) -> str:
    if discovered <= 0:
        return "100%"
    ratio = max(0, min(measured, discovered)) / discovered
    return f"{round(ratio * 100)}%"


class CompositionAggregator:
    def __init__(self, fetcher: ResilientFetcher, max_workers: int = 8, scan_scripts: bool = False) -> None:
        self.fetcher = fetcher
        self.max_workers = max(1, max_workers)
        self.scan_scripts = scan_scripts

    def measure(self, archive: ArchiveProfile, reference: ResourceReference) -> ResourceResult:
        try:
            response = self.fetcher.fetch(reference.url)
        except FetchError as exc:
            logger.warning("Could not size %s: %s", reference.url, exc)
            return ResourceResult(url=reference.url, category=DEFAULT_CATEGORY, size=0, ok=False)

        category = classify(reference.url, content_type(response))
        body = response.content
        if category not in TEXT_CATEGORIES:
            return ResourceResult(url=reference.url, category=category, size=len(body))

        decoded, encoding = decode_body(body)
        text = apply_cleaning_rules(decoded, archive.cleaning_rules)
        script_urls: Tuple[str, ...] = ()
        if self.scan_scripts and category == "script":
            script_urls = tuple(self._script_references(archive, text))
        size = len(text.encode(encoding))
        logger.debug("Sized %s as %s: %d bytes cleaned, %d transferred", reference.url, category, size, len(body))
        return ResourceResult(url=reference.url, category=category, size=size, script_urls=script_urls)

    def measure_all(self, archive: ArchiveProfile, references: Sequence[ResourceReference]) -> List[ResourceResult]:
        if not references:
            return []
        workers = min(self.max_workers, len(references))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            return list(pool.map(lambda ref: self.measure(archive, ref), references))

    def aggregate(
        self,
        archive: ArchiveProfile,
        references: Sequence[ResourceReference],
        html_size: int,
        *,
        url: str,
        requested_memento: str,
        memento: str,
        include_resources: bool = False,
        malformed: int = 0,
    ) -> CompositionReport:
        results = self.measure_all(archive, references)

        sizes = new_size_table(html_size)
        for result in results:
            fold_result(sizes, result)

        measured = sum(1 for result in results if result.ok)
        script_references: Optional[List[str]] = None
        if self.scan_scripts:
            script_references = list(dict.fromkeys(u for result in results for u in result.script_urls))

        return CompositionReport(
            url=url,
            requested_memento=requested_memento,
            memento=memento,
            memento_url=archive.frame_url(url, memento),
            archive=archive.archive,
            archive_org=archive.archive_org,
            archive_url=archive.archive_url,
            sizes=sizes,
            completeness=completeness_percent(measured, len(references)),
            discovered=len(references),
            measured=measured,
            malformed=malformed,
            resources=results if include_resources else None,
            script_references=script_references,
        )

    def _script_references(self, archive: ArchiveProfile, text: str) -> List[str]:
        out: List[str] = []
        for candidate in extract_script_urls(text):
            if is_excluded(candidate, archive.excluded_paths):
                continue
            normalized = normalize_url(candidate)
            if normalized:
                out.append(normalized)
        return out
