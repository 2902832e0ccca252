from __future__ import annotations

import os
from dataclasses import dataclass
from types import MappingProxyType
from typing import FrozenSet, Iterable, List, Mapping, Optional, Tuple

from errors import UnsupportedArchiveError


LOOKUP_TIMEGATE = "timegate"
LOOKUP_INDEX = "index"
DEFAULT_ARCHIVE_ID = os.environ.get("WASTEBACK_DEFAULT_ARCHIVE", "ia").strip().lower() or "ia"
WAYBACK_CDX_API = "https://web.archive.org/cdx/search/cdx"


@dataclass(frozen=True)
class CleaningRule:
    remove_comments: bool = False
    remove_between: Tuple[Tuple[str, str], ...] = ()


@dataclass(frozen=True)
class ArchiveProfile:
    id: str
    archive: str
    archive_org: str
    archive_url: str
    timegate: str
    endpoint_raw: str
    endpoint_frame: str
    excluded_paths: FrozenSet[str] = frozenset()
    cleaning_rules: Tuple[CleaningRule, ...] = ()
    lookup: str = LOOKUP_TIMEGATE
    index_url: Optional[str] = None
    earliest_year: int = 1995

    def raw_url(self, url: str, timestamp: str) -> str:
        return self.endpoint_raw.format(timestamp=timestamp, url=url)

    def frame_url(self, url: str, timestamp: str) -> str:
        return self.endpoint_frame.format(timestamp=timestamp, url=url)

    def timegate_url(self, url: str) -> str:
        return self.timegate + url


# Comment and banner stripping shared by the pywb/OpenWayback style archives.
ARCHIVED_BANNER_RULES: Tuple[CleaningRule, ...] = (
    CleaningRule(remove_comments=True),
    CleaningRule(
        remove_between=(
            (r"/\* FILE ARCHIVED ON", r"\*/"),
            (r"<!-- FILE ARCHIVED ON", r"-->"),
        )
    ),
)


def _wayback(prefix: str, frame_flag: str = "if_") -> Tuple[str, str]:
    return (
        prefix + "{timestamp}id_/{url}",
        prefix + "{timestamp}" + frame_flag + "/{url}",
    )


def _profile(
    archive_id: str,
    archive: str,
    archive_org: str,
    archive_url: str,
    timegate: str,
    replay_prefix: str,
    excluded_paths: Iterable[str] = (),
    cleaning_rules: Tuple[CleaningRule, ...] = (),
    frame_flag: str = "if_",
    index_url: Optional[str] = None,
) -> ArchiveProfile:
    raw, frame = _wayback(replay_prefix, frame_flag)
    return ArchiveProfile(
        id=archive_id,
        archive=archive,
        archive_org=archive_org,
        archive_url=archive_url,
        timegate=timegate,
        endpoint_raw=raw,
        endpoint_frame=frame,
        excluded_paths=frozenset(excluded_paths),
        cleaning_rules=cleaning_rules,
        index_url=index_url,
    )


PROFILES: Tuple[ArchiveProfile, ...] = (
    _profile(
        "arq",
        "Arquivo.pt",
        "FCCN/FCT",
        "https://arquivo.pt",
        "https://arquivo.pt/wayback/",
        "https://arquivo.pt/noFrame/replay/",
        excluded_paths=("/static/",),
    ),
    _profile(
        "awa",
        "Australia Web Archive (Trove)",
        "National Library of Australia",
        "https://webarchive.nla.gov.au",
        "https://webarchive.org.au/wayback/",
        "https://webarchive.nla.gov.au/awa/",
        excluded_paths=(
            "/bamboo-service/",
            "/calendar/",
            "/cdx/",
            "/css/",
            "/images/",
            "/js/",
            "/webjars/",
            "https://web.archive.org.au/static/",
            "https://assets.nla.gov.au",
            "https://login.nla.gov.au",
            "https://region1.google-analytics.com",
            "https://www.googletagmanager.com",
        ),
    ),
    _profile(
        "cz",
        "Webarchiv",
        "National Library of the Czech Republic",
        "https://webarchiv.cz/",
        "https://wayback.webarchiv.cz/wayback/",
        "https://wayback.webarchiv.cz/wayback/",
        excluded_paths=("/_static/", "https://web-static.archive.org"),
        cleaning_rules=ARCHIVED_BANNER_RULES,
    ),
    _profile(
        "gcwa",
        "Government of Canada Web Archive",
        "Library and Archives Canada",
        "https://webarchiveweb.bac-lac.canada.ca",
        "https://webarchiveweb.wayback.bac-lac.canada.ca/web/",
        "https://webarchiveweb.wayback.bac-lac.canada.ca/web/",
        excluded_paths=("/static/", "https://analytics.archive-it.org"),
        cleaning_rules=ARCHIVED_BANNER_RULES,
    ),
    _profile(
        "ia",
        "Wayback Machine",
        "Internet Archive",
        "https://web.archive.org",
        "https://web.archive.org/web/",
        "https://web.archive.org/web/",
        excluded_paths=("/_static/", "https://web-static.archive.org"),
        cleaning_rules=ARCHIVED_BANNER_RULES,
        index_url=WAYBACK_CDX_API,
    ),
    _profile(
        "iwa",
        "Icelandic Web Archive (Vefsafn.is)",
        "National and University Library of Iceland",
        "https://vefsafn.is",
        "https://vefsafn.is/",
        "https://vefsafn.is/",
        excluded_paths=("/static/", "https://t.landsbokasafn.is"),
    ),
    _profile(
        "loc",
        "Library of Congress Web Archive",
        "Library of Congress",
        "https://loc.gov/web-archives",
        "https://webarchive.loc.gov/all/*/",
        "https://webarchive.loc.gov/all/",
        excluded_paths=("/static/",),
        cleaning_rules=ARCHIVED_BANNER_RULES,
    ),
    _profile(
        "nliwa",
        "National Library of Ireland Web Archive",
        "National Library of Ireland",
        "https://nli.ie/collections/our-collections/web-archive",
        "https://wayback.archive-it.org/org-1444/",
        "https://wayback.archive-it.org/org-1444/",
        excluded_paths=("/static/", "https://analytics.archive-it.org"),
        cleaning_rules=ARCHIVED_BANNER_RULES,
    ),
    _profile(
        "nzwa",
        "New Zealand Web Archive",
        "National Library of New Zealand",
        "https://webarchive.natlib.govt.nz",
        "https://ndhadeliver.natlib.govt.nz/webarchive/",
        "https://ndhadeliver.natlib.govt.nz/webarchive/",
        excluded_paths=("/static/",),
    ),
    _profile(
        "pwa",
        "PRONI Web Archive",
        "The Public Record Office of Northern Ireland",
        "https://webarchive.proni.gov.uk",
        "https://wayback.archive-it.org/11112/",
        "https://wayback.archive-it.org/11112/",
        excluded_paths=("/static/", "https://partner.archive-it.org"),
        cleaning_rules=ARCHIVED_BANNER_RULES,
    ),
    _profile(
        "slo",
        "Spletni Arhiv",
        "National and University Library of Slovenia",
        "https://arhiv.nuk.uni-lj.si",
        "https://arhiv.nuk.uni-lj.si/wayback/",
        "https://arhiv.nuk.uni-lj.si/wayback/",
        excluded_paths=(
            "/_static/",
            "/extern_js/",
            "/images/",
            "/intl/",
            "/textinputassistant/",
            "https://ssl.gstatic.com/",
        ),
        cleaning_rules=ARCHIVED_BANNER_RULES,
    ),
    _profile(
        "ukgwa",
        "UK Government Web Archive (UKGWA)",
        "The National Archives",
        "https://webarchive.nationalarchives.gov.uk/ukgwa",
        "https://webarchive.nationalarchives.gov.uk/ukgwa/",
        "https://webarchive.nationalarchives.gov.uk/ukgwa/",
        excluded_paths=(
            "/static/",
            "https://cdn.jsdelivr.net",
            "https://fonts.googleapis.com",
            "https://fonts.gstatic.com",
            "https://s3-eu-west-1.amazonaws.com",
            "https://www.googletagmanager.com",
        ),
    ),
    _profile(
        "ukwa",
        "UK Web Archive",
        "British Library",
        "https://www.webarchive.org.uk",
        "https://webarchive.org.uk/wayback/en/archive/",
        "https://webarchive.org.uk/wayback/en/archive/",
        frame_flag="mp_",
    ),
)


def build_registry(profiles: Iterable[ArchiveProfile]) -> Mapping[str, ArchiveProfile]:
    registry = {}
    for profile in profiles:
        key = profile.id.strip().lower()
        if not key:
            raise ValueError("Archive id must not be empty")
        if key in registry:
            raise ValueError(f"Duplicate archive id: {profile.id}")
        if not profile.endpoint_raw or not profile.endpoint_frame:
            raise ValueError(f"Archive {profile.id} must define raw and frame endpoints")
        registry[key] = profile
    return MappingProxyType(registry)


ARCHIVES: Mapping[str, ArchiveProfile] = build_registry(PROFILES)


def get_archive(archive_id: Optional[str], registry: Mapping[str, ArchiveProfile] = ARCHIVES) -> ArchiveProfile:
    key = (archive_id or "").strip().lower() or DEFAULT_ARCHIVE_ID
    profile = registry.get(key)
    if profile is None:
        raise UnsupportedArchiveError(f"Invalid or unsupported archive: {archive_id}")
    return profile


def describe_archives(registry: Mapping[str, ArchiveProfile] = ARCHIVES) -> List[Tuple[str, str]]:
    return [(archive_id, registry[archive_id].archive) for archive_id in sorted(registry)]
