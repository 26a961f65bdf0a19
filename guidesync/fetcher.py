"""Retrieval of guideline documents from URLs or local paths."""

from __future__ import annotations

import http.client
import socket
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Callable, List, Optional, Sequence
from urllib.error import HTTPError, URLError
from urllib.parse import unquote, urlsplit
from urllib.request import Request, urlopen

from .logging import get_logger
from .models import FetchErrorKind, FetchedDocument, FetchFailure, FetchResult, DocumentReference

_USER_AGENT = "guidesync/0.1"
_NOT_FOUND_STATUSES = {404, 410}
_MAX_CONCURRENT_FETCHES = 8


class TransientFetchError(Exception):
    """A retrieval failure worth retrying (timeout, 5xx, reset connection)."""


class PermanentFetchError(Exception):
    """A retrieval failure that retrying cannot fix."""

    def __init__(self, kind: FetchErrorKind, detail: str) -> None:
        super().__init__(detail)
        self.kind = kind


@dataclass
class HttpRequest:
    """Represents one HTTP GET issued by the fetcher."""

    url: str
    timeout: float
    headers: dict[str, str]


Transport = Callable[[HttpRequest], str]


class Fetcher:
    """Fetches documents with a bounded timeout and limited retries.

    Failures never raise: every call returns either a ``FetchedDocument`` or a
    ``FetchFailure`` so callers decide what a missing document means.
    """

    def __init__(
        self,
        *,
        timeout: float = 10.0,
        retries: int = 2,
        backoff: float = 0.5,
        transport: Transport | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        if retries < 0:
            raise ValueError("retries cannot be negative")
        self.timeout = timeout
        self.retries = retries
        self.backoff = backoff
        self._transport = transport or self._urllib_transport
        self._sleep = sleep
        self._clock = clock or (lambda: datetime.now(UTC))
        self.logger = get_logger("fetcher")

    def fetch(
        self,
        reference: DocumentReference,
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> FetchResult:
        """Return the document body, retrying transient failures until cancelled."""
        attempts = self.retries + 1
        last_detail = ""
        for attempt in range(1, attempts + 1):
            if cancel_event is not None and cancel_event.is_set():
                return self._cancelled(reference)
            try:
                content = self._retrieve(reference.location)
            except PermanentFetchError as exc:
                self.logger.debug("Fetch of %s failed permanently: %s", reference.location, exc)
                return FetchFailure(reference=reference, error=exc.kind, detail=str(exc))
            except TransientFetchError as exc:
                last_detail = str(exc)
                self.logger.debug(
                    "Fetch attempt %d/%d for %s failed: %s",
                    attempt,
                    attempts,
                    reference.location,
                    exc,
                )
                if attempt < attempts:
                    self._sleep(self.backoff * attempt)
                continue
            self.logger.debug("Fetched %s (%d chars)", reference.location, len(content))
            return FetchedDocument(reference=reference, content=content, fetched_at=self._clock())

        return FetchFailure(
            reference=reference,
            error=FetchErrorKind.UNREACHABLE,
            detail=f"{last_detail} (after {attempts} attempts)",
        )

    def fetch_all(
        self,
        references: Sequence[DocumentReference],
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[FetchResult]:
        """Fetch references concurrently; results keep the input order."""
        if not references:
            return []

        def _task(reference: DocumentReference) -> FetchResult:
            return self.fetch(reference, cancel_event=cancel_event)

        workers = min(len(references), _MAX_CONCURRENT_FETCHES)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="guidesync-fetch") as pool:
            return list(pool.map(_task, references))

    # ------------------------------------------------------------------
    # Helpers

    @staticmethod
    def _cancelled(reference: DocumentReference) -> FetchFailure:
        return FetchFailure(reference=reference, error=FetchErrorKind.CANCELLED, detail="run cancelled")

    def _retrieve(self, location: str) -> str:
        if not location or not location.strip():
            raise PermanentFetchError(FetchErrorKind.INVALID, "empty document location")

        parts = urlsplit(location)
        scheme = parts.scheme.lower()
        # Single-letter schemes are Windows drive letters, not URLs.
        if scheme in ("", "file") or len(scheme) == 1:
            path = Path(unquote(parts.path)) if scheme == "file" else Path(location)
            return self._read_local(path)
        if scheme not in ("http", "https"):
            raise PermanentFetchError(FetchErrorKind.INVALID, f"unsupported scheme '{parts.scheme}'")
        if not parts.netloc:
            raise PermanentFetchError(FetchErrorKind.INVALID, f"malformed URL '{location}'")

        request = HttpRequest(
            url=location,
            timeout=self.timeout,
            headers={"User-Agent": _USER_AGENT, "Accept": "text/markdown, text/plain, */*"},
        )
        return self._transport(request)

    @staticmethod
    def _read_local(path: Path) -> str:
        path = path.expanduser()
        if path.is_dir():
            raise PermanentFetchError(FetchErrorKind.INVALID, f"{path} is a directory")
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise PermanentFetchError(FetchErrorKind.NOT_FOUND, f"{path} does not exist") from exc
        except UnicodeDecodeError as exc:
            raise PermanentFetchError(FetchErrorKind.INVALID, f"{path} is not UTF-8 text") from exc
        except OSError as exc:
            raise TransientFetchError(f"{path}: {exc.strerror or exc}") from exc

    @staticmethod
    def _urllib_transport(request: HttpRequest) -> str:
        http_request = Request(request.url, headers=request.headers, method="GET")
        try:
            with urlopen(http_request, timeout=request.timeout) as response:  # type: ignore[arg-type]
                raw = response.read()
                charset = response.headers.get_content_charset() or "utf-8"
        except HTTPError as exc:
            if exc.code in _NOT_FOUND_STATUSES:
                raise PermanentFetchError(FetchErrorKind.NOT_FOUND, f"HTTP {exc.code}") from exc
            if exc.code >= 500 or exc.code == 429:
                raise TransientFetchError(f"HTTP {exc.code}") from exc
            raise PermanentFetchError(FetchErrorKind.UNREACHABLE, f"HTTP {exc.code}: {exc.reason}") from exc
        except (socket.timeout, TimeoutError) as exc:
            raise TransientFetchError("timed out") from exc
        except URLError as exc:
            raise TransientFetchError(str(exc.reason)) from exc
        except ConnectionError as exc:
            raise TransientFetchError(str(exc)) from exc
        except http.client.HTTPException as exc:
            raise TransientFetchError(f"protocol error: {type(exc).__name__}") from exc

        try:
            return raw.decode(charset)
        except (LookupError, UnicodeDecodeError) as exc:
            raise PermanentFetchError(FetchErrorKind.INVALID, "response is not valid text") from exc


__all__ = [
    "Fetcher",
    "HttpRequest",
    "PermanentFetchError",
    "TransientFetchError",
]
