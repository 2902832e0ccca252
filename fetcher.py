from __future__ import annotations

import logging
import os
import time
from typing import Callable, Dict, Optional, Tuple

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from errors import FetchError


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = float(os.environ.get("WASTEBACK_TIMEOUT", "45"))
DEFAULT_ATTEMPTS = int(os.environ.get("WASTEBACK_ATTEMPTS", "3"))
DEFAULT_RETRY_DELAY = float(os.environ.get("WASTEBACK_RETRY_DELAY", "0.8"))
DEFAULT_POOL_SIZE = int(os.environ.get("WASTEBACK_MAX_WORKERS", "8"))
USER_AGENT = os.environ.get(
    "WASTEBACK_USER_AGENT",
    "wasteback-machine/1.0 (+https://overbrowsing.com)",
)


class ResilientFetcher:
    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        attempts: int = DEFAULT_ATTEMPTS,
        base_delay: float = DEFAULT_RETRY_DELAY,
        pool_size: int = DEFAULT_POOL_SIZE,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if session is None:
            session = requests.Session()
            session.headers["User-Agent"] = USER_AGENT
        self.session = session
        # Retries are driven by fetch(); the adapter only pools connections.
        adapter = HTTPAdapter(
            pool_connections=max(1, pool_size),
            pool_maxsize=max(1, pool_size),
            max_retries=Retry(total=0, read=False, raise_on_status=False),
        )
        self.session.mount("https://", adapter)
        self.session.mount("http://", adapter)
        self.timeout = timeout
        self.attempts = max(1, attempts)
        self.base_delay = max(0.0, base_delay)
        self._sleep = sleep

    def fetch(
        self,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, str]] = None,
        attempts: Optional[int] = None,
        stream: bool = False,
    ) -> requests.Response:
        budget = max(1, attempts if attempts is not None else self.attempts)
        last_error: Optional[FetchError] = None
        for attempt in range(1, budget + 1):
            try:
                response = self.session.get(
                    url,
                    headers=headers,
                    params=params,
                    timeout=self.timeout,
                    stream=stream,
                )
                if response.ok:
                    return response
                status = int(response.status_code)
                response.close()
                last_error = FetchError(f"Non-OK response: {status}", url=url, status=status)
            except requests.RequestException as exc:
                last_error = FetchError(f"Request failed: {exc}", url=url, cause=exc)

            if attempt < budget:
                logger.warning("Attempt %d/%d for %s failed (%s), retrying", attempt, budget, url, last_error)
                self._sleep(self.base_delay * attempt)

        if last_error is None:
            last_error = FetchError("Request failed", url=url)
        logger.warning("Giving up on %s after %d attempts: %s", url, budget, last_error)
        raise last_error

    def close(self) -> None:
        self.session.close()


def decode_body(body: bytes) -> Tuple[str, str]:
    try:
        return body.decode("utf-8"), "utf-8"
    except UnicodeDecodeError:
        # latin-1 maps every byte, so re-encoding gives back the same length.
        return body.decode("latin-1"), "latin-1"


def decode_text(body: bytes) -> str:
    return decode_body(body)[0]


def content_type(response: requests.Response) -> str:
    return (response.headers.get("content-type") or "").split(";")[0].strip().lower()
