from __future__ import annotations

import threading
from datetime import UTC, datetime
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Dict, Iterator, List, Tuple

import pytest

from guidesync.fetcher import Fetcher, HttpRequest, PermanentFetchError, TransientFetchError
from guidesync.models import (
    DocumentKind,
    DocumentReference,
    FetchErrorKind,
    FetchedDocument,
    FetchFailure,
    LanguageTag,
)

FIXED = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


def _ref(location: str, language: LanguageTag | None = None) -> DocumentReference:
    kind = DocumentKind.BASE if language is None else DocumentKind.LANGUAGE_GUIDELINE
    return DocumentReference(kind=kind, location=location, language=language)


class ScriptedTransport:
    """Replays a list of outcomes; exceptions are raised, strings returned."""

    def __init__(self, *outcomes: object) -> None:
        self.outcomes = list(outcomes)
        self.requests: List[HttpRequest] = []

    def __call__(self, request: HttpRequest) -> str:
        self.requests.append(request)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return str(outcome)


def test_fetch_returns_document_from_transport() -> None:
    transport = ScriptedTransport("# Base\n")
    fetcher = Fetcher(timeout=4.0, transport=transport, clock=lambda: FIXED)

    result = fetcher.fetch(_ref("https://guides.example.com/base.md"))

    assert isinstance(result, FetchedDocument)
    assert result.content == "# Base\n"
    assert result.fetched_at == FIXED
    assert transport.requests[0].timeout == 4.0
    assert transport.requests[0].headers["User-Agent"].startswith("guidesync/")


def test_transient_failures_are_retried_with_backoff() -> None:
    transport = ScriptedTransport(TransientFetchError("HTTP 503"), TransientFetchError("timed out"), "ok")
    sleeps: List[float] = []
    fetcher = Fetcher(retries=2, backoff=0.5, transport=transport, sleep=sleeps.append)

    result = fetcher.fetch(_ref("https://guides.example.com/base.md"))

    assert isinstance(result, FetchedDocument)
    assert len(transport.requests) == 3
    assert sleeps == [0.5, 1.0]


def test_exhausted_retries_report_unreachable() -> None:
    transport = ScriptedTransport(*[TransientFetchError("timed out")] * 3)
    fetcher = Fetcher(retries=2, transport=transport, sleep=lambda _: None)

    result = fetcher.fetch(_ref("https://guides.example.com/base.md"))

    assert isinstance(result, FetchFailure)
    assert result.error is FetchErrorKind.UNREACHABLE
    assert result.detail == "timed out (after 3 attempts)"


def test_not_found_is_not_retried() -> None:
    transport = ScriptedTransport(PermanentFetchError(FetchErrorKind.NOT_FOUND, "HTTP 404"))
    fetcher = Fetcher(retries=2, transport=transport, sleep=lambda _: None)

    result = fetcher.fetch(_ref("https://guides.example.com/rust/guidelines.md", LanguageTag.RUST))

    assert isinstance(result, FetchFailure)
    assert result.error is FetchErrorKind.NOT_FOUND
    assert len(transport.requests) == 1
    assert result.describe() == "Rust guidelines could not be fetched (not found: HTTP 404)"


def test_invalid_locations_fail_without_transport() -> None:
    transport = ScriptedTransport()
    fetcher = Fetcher(transport=transport)

    empty = fetcher.fetch(_ref(""))
    ftp = fetcher.fetch(_ref("ftp://guides.example.com/base.md"))

    assert isinstance(empty, FetchFailure) and empty.error is FetchErrorKind.INVALID
    assert isinstance(ftp, FetchFailure) and ftp.error is FetchErrorKind.INVALID
    assert transport.requests == []


def test_local_paths_and_file_urls_are_read(tmp_path: Path) -> None:
    document = tmp_path / "base.md"
    document.write_text("# Local base\n", encoding="utf-8")
    fetcher = Fetcher()

    plain = fetcher.fetch(_ref(str(document)))
    as_url = fetcher.fetch(_ref(document.as_uri()))

    assert isinstance(plain, FetchedDocument) and plain.content == "# Local base\n"
    assert isinstance(as_url, FetchedDocument) and as_url.content == "# Local base\n"


def test_local_missing_file_and_directory(tmp_path: Path) -> None:
    fetcher = Fetcher()

    missing = fetcher.fetch(_ref(str(tmp_path / "absent.md")))
    directory = fetcher.fetch(_ref(str(tmp_path)))

    assert isinstance(missing, FetchFailure) and missing.error is FetchErrorKind.NOT_FOUND
    assert isinstance(directory, FetchFailure) and directory.error is FetchErrorKind.INVALID


def test_fetch_all_preserves_input_order(tmp_path: Path) -> None:
    for name in ("a.md", "b.md", "c.md"):
        (tmp_path / name).write_text(name, encoding="utf-8")
    references = [_ref(str(tmp_path / name)) for name in ("c.md", "a.md", "b.md")]

    results = Fetcher().fetch_all(references)

    assert [result.content for result in results if isinstance(result, FetchedDocument)] == [
        "c.md",
        "a.md",
        "b.md",
    ]


def test_fetch_all_after_cancel_returns_cancelled() -> None:
    transport = ScriptedTransport()
    cancel = threading.Event()
    cancel.set()

    results = Fetcher(transport=transport).fetch_all(
        [_ref("https://guides.example.com/base.md")], cancel_event=cancel
    )

    assert len(results) == 1
    assert isinstance(results[0], FetchFailure)
    assert results[0].error is FetchErrorKind.CANCELLED
    assert transport.requests == []


def test_fetch_all_with_no_references() -> None:
    assert Fetcher().fetch_all([]) == []


def test_cancel_during_retries_stops_further_requests() -> None:
    cancel = threading.Event()
    requests: List[HttpRequest] = []

    def transport(request: HttpRequest) -> str:
        requests.append(request)
        cancel.set()
        raise TransientFetchError("HTTP 503")

    sleeps: List[float] = []
    fetcher = Fetcher(retries=2, transport=transport, sleep=sleeps.append)

    (result,) = fetcher.fetch_all([_ref("https://guides.example.com/base.md")], cancel_event=cancel)

    assert isinstance(result, FetchFailure)
    assert result.error is FetchErrorKind.CANCELLED
    assert len(requests) == 1
    assert len(sleeps) <= 1


def test_fetch_honours_cancel_event_before_first_attempt() -> None:
    transport = ScriptedTransport()
    cancel = threading.Event()
    cancel.set()

    result = Fetcher(transport=transport).fetch(
        _ref("https://guides.example.com/base.md"), cancel_event=cancel
    )

    assert isinstance(result, FetchFailure) and result.error is FetchErrorKind.CANCELLED
    assert transport.requests == []


Reply = Tuple[int, Dict[str, str], bytes]


def _reply(status: int, body: bytes = b"", *, charset: str = "utf-8", length: int | None = None) -> Reply:
    headers = {
        "Content-Type": f"text/markdown; charset={charset}",
        "Content-Length": str(len(body) if length is None else length),
    }
    return status, headers, body


class _GuideHandler(BaseHTTPRequestHandler):
    """Serves scripted replies per path; the last reply for a path repeats."""

    def do_GET(self) -> None:  # noqa: N802 - http.server naming
        self.server.hits.append(self.path)  # type: ignore[attr-defined]
        replies = self.server.routes.get(self.path) or [_reply(404)]  # type: ignore[attr-defined]
        status, headers, body = replies.pop(0) if len(replies) > 1 else replies[0]
        self.send_response(status)
        for name, value in headers.items():
            self.send_header(name, value)
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args: object) -> None:
        pass


@pytest.fixture
def guide_server(monkeypatch: pytest.MonkeyPatch) -> Iterator[ThreadingHTTPServer]:
    for name in ("http_proxy", "HTTP_PROXY", "https_proxy", "HTTPS_PROXY", "all_proxy", "ALL_PROXY"):
        monkeypatch.delenv(name, raising=False)
    server = ThreadingHTTPServer(("127.0.0.1", 0), _GuideHandler)
    server.routes = {}  # type: ignore[attr-defined]
    server.hits = []  # type: ignore[attr-defined]
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server
    server.shutdown()
    server.server_close()
    thread.join()


def _url(server: ThreadingHTTPServer, path: str) -> str:
    return f"http://127.0.0.1:{server.server_address[1]}{path}"


def test_http_document_is_decoded_with_response_charset(guide_server: ThreadingHTTPServer) -> None:
    guide_server.routes["/base.md"] = [_reply(200, "# Café rules\n".encode("latin-1"), charset="latin-1")]

    result = Fetcher(timeout=5).fetch(_ref(_url(guide_server, "/base.md")))

    assert isinstance(result, FetchedDocument)
    assert result.content == "# Café rules\n"


def test_http_404_is_not_found_without_retry(guide_server: ThreadingHTTPServer) -> None:
    result = Fetcher(timeout=5, sleep=lambda _: None).fetch(
        _ref(_url(guide_server, "/rust/guidelines.md"), LanguageTag.RUST)
    )

    assert isinstance(result, FetchFailure)
    assert result.error is FetchErrorKind.NOT_FOUND
    assert guide_server.hits == ["/rust/guidelines.md"]


def test_http_server_error_is_retried(guide_server: ThreadingHTTPServer) -> None:
    guide_server.routes["/base.md"] = [_reply(500), _reply(200, b"# Base\n")]
    sleeps: List[float] = []

    result = Fetcher(timeout=5, retries=2, sleep=sleeps.append).fetch(_ref(_url(guide_server, "/base.md")))

    assert isinstance(result, FetchedDocument)
    assert result.content == "# Base\n"
    assert guide_server.hits == ["/base.md", "/base.md"]
    assert sleeps == [0.5]


def test_http_client_error_is_permanent(guide_server: ThreadingHTTPServer) -> None:
    guide_server.routes["/base.md"] = [_reply(403)]

    result = Fetcher(timeout=5, sleep=lambda _: None).fetch(_ref(_url(guide_server, "/base.md")))

    assert isinstance(result, FetchFailure)
    assert result.error is FetchErrorKind.UNREACHABLE
    assert result.detail.startswith("HTTP 403")
    assert guide_server.hits == ["/base.md"]


def test_truncated_http_body_is_reported_not_raised(guide_server: ThreadingHTTPServer) -> None:
    guide_server.routes["/python/guidelines.md"] = [_reply(200, b"# Pyt", length=100)]

    result = Fetcher(timeout=5, retries=1, sleep=lambda _: None).fetch(
        _ref(_url(guide_server, "/python/guidelines.md"), LanguageTag.PYTHON)
    )

    assert isinstance(result, FetchFailure)
    assert result.error is FetchErrorKind.UNREACHABLE
    assert "IncompleteRead" in result.detail
    assert len(guide_server.hits) == 2
