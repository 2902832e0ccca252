from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple
from urllib.parse import SplitResult, parse_qsl, urlencode, urljoin, urlsplit, urlunsplit

from bs4 import BeautifulSoup

from archives import ArchiveProfile
from errors import DiscoveryError, FetchError
from fetcher import ResilientFetcher, decode_text


logger = logging.getLogger(__name__)

RESOURCE_ATTRIBUTES: Tuple[Tuple[str, str], ...] = (
    ("link", "href"),
    ("script", "src"),
    ("img", "src"),
    ("img", "srcset"),
    ("source", "src"),
    ("source", "srcset"),
    ("video", "src"),
    ("video", "poster"),
    ("audio", "src"),
    ("iframe", "src"),
    ("object", "data"),
    ("embed", "src"),
)
CACHE_BUSTING_PARAMS = frozenset({"v", "ver", "cb"})
DEFAULT_PORTS = {"http": 80, "https": 443}
SKIPPED_PREFIXES = ("javascript:", "mailto:", "tel:", "data:", "about:", "blob:", "#")
SCRIPT_URL_RE = re.compile(r"""['"`](https?://[^'"`\s]+?)['"`]""")


@dataclass(frozen=True)
class ResourceReference:
    raw_url: str
    url: str


@dataclass
class Discovery:
    html_size: int
    references: List[ResourceReference] = field(default_factory=list)
    malformed: List[str] = field(default_factory=list)
    frame_url: str = ""


def parse_srcset(value: str) -> List[str]:
    out: List[str] = []
    for candidate in (value or "").split(","):
        parts = candidate.strip().split()
        if parts:
            out.append(parts[0])
    return out


def _canonical_netloc(parts: SplitResult, port: Optional[int]) -> str:
    host = (parts.hostname or "").lower()
    if ":" in host:
        host = f"[{host}]"
    if port is not None and port != DEFAULT_PORTS[parts.scheme]:
        host = f"{host}:{port}"
    if parts.username is not None:
        userinfo = parts.username
        if parts.password is not None:
            userinfo += ":" + parts.password
        host = f"{userinfo}@{host}"
    return host


def normalize_url(url: str) -> Optional[str]:
    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError:
        return None
    if parts.scheme not in DEFAULT_PORTS or not parts.hostname:
        return None
    pairs = parse_qsl(parts.query, keep_blank_values=True)
    kept = [(key, value) for key, value in pairs if key not in CACHE_BUSTING_PARAMS]
    query = parts.query if len(kept) == len(pairs) else urlencode(kept)
    netloc = _canonical_netloc(parts, port)
    return urlunsplit((parts.scheme, netloc, parts.path or "/", query, ""))


def is_excluded(raw_url: str, excluded_paths: Iterable[str]) -> bool:
    return any(path in raw_url for path in excluded_paths)


def _expand_scheme_relative(value: str) -> str:
    if value.startswith("//"):
        return "https:" + value
    return value


def _attribute_values(soup: BeautifulSoup) -> List[str]:
    values: List[str] = []
    for tag in soup.find_all([name for name, _ in RESOURCE_ATTRIBUTES]):
        for name, attr in RESOURCE_ATTRIBUTES:
            if tag.name != name:
                continue
            value = tag.get(attr)
            if not value:
                continue
            if isinstance(value, list):
                value = " ".join(value)
            if attr == "srcset":
                values.extend(parse_srcset(value))
            else:
                values.append(value)
    return values


def extract_references(
    html: str,
    base_url: str,
    excluded_paths: Iterable[str] = (),
) -> Tuple[List[ResourceReference], List[str]]:
    soup = BeautifulSoup(html, "html.parser")
    excluded = tuple(excluded_paths)
    references: List[ResourceReference] = []
    malformed: List[str] = []
    seen: set[str] = set()

    for raw in _attribute_values(soup):
        candidate = raw.strip()
        if not candidate or candidate.lower().startswith(SKIPPED_PREFIXES):
            continue
        candidate = _expand_scheme_relative(candidate)
        if is_excluded(candidate, excluded):
            logger.debug("Excluded archive asset %s", candidate)
            continue
        try:
            resolved = urljoin(base_url, candidate)
        except ValueError:
            resolved = ""
        normalized = normalize_url(resolved) if resolved else None
        if normalized is None:
            logger.debug("Dropping malformed resource URL %r", raw)
            malformed.append(raw)
            continue
        if normalized in seen:
            continue
        seen.add(normalized)
        references.append(ResourceReference(raw_url=raw, url=normalized))

    return references, malformed


def extract_script_urls(text: str) -> List[str]:
    return list(dict.fromkeys(SCRIPT_URL_RE.findall(text or "")))


class ResourceDiscovery:
    def __init__(self, fetcher: ResilientFetcher) -> None:
        self.fetcher = fetcher

    def discover(self, archive: ArchiveProfile, url: str, timestamp: str) -> Discovery:
        raw_url = archive.raw_url(url, timestamp)
        frame_url = archive.frame_url(url, timestamp)
        try:
            html_size = len(self.fetcher.fetch(raw_url).content)
            frame_html = decode_text(self.fetcher.fetch(frame_url).content)
        except FetchError as exc:
            raise DiscoveryError(f"Could not load memento {timestamp} of {url} from {archive.archive}: {exc}") from exc

        references, malformed = extract_references(frame_html, frame_url, archive.excluded_paths)
        logger.info(
            "Discovered %d resources for %s at %s (%d malformed)",
            len(references),
            url,
            timestamp,
            len(malformed),
        )
        return Discovery(
            html_size=html_size,
            references=references,
            malformed=malformed,
            frame_url=frame_url,
        )
