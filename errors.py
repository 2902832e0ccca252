from __future__ import annotations

from typing import Optional


class WastebackError(RuntimeError):
    kind = "error"


class InputError(WastebackError):
    kind = "input"


class UnsupportedArchiveError(InputError):
    kind = "unsupported_archive"


class NoMementosError(WastebackError):
    kind = "no_mementos"


class DiscoveryError(WastebackError):
    kind = "discovery"


class FetchError(WastebackError):
    kind = "fetch"

    def __init__(
        self,
        message: str,
        *,
        url: str = "",
        status: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.status = status
        self.cause = cause
