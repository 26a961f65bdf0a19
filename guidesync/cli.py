"""CLI entrypoints for guidesync commands."""

from __future__ import annotations

import argparse
import json
import sys
import threading
from pathlib import Path
from typing import Callable, List, Optional, TextIO, TypeVar

from .config import ConfigError
from .logging import configure_logging, get_logger
from .models import ConfirmationRequest, LanguageTag, OutcomeStatus, RunResult
from .orchestrator import Orchestrator
from .report import as_dict, summarize

T = TypeVar("T")

logger = get_logger("cli")


class Prompter:
    """Interactive confirmation and language choice, serialized across projects."""

    def __init__(
        self,
        *,
        assume_yes: bool = False,
        interactive: Optional[bool] = None,
        stdin: TextIO | None = None,
        stdout: TextIO | None = None,
    ) -> None:
        self.assume_yes = assume_yes
        self._stdin = stdin or sys.stdin
        self._stdout = stdout or sys.stderr
        self.interactive = self._stdin.isatty() if interactive is None else interactive
        self._lock = threading.Lock()

    def confirm(self, request: ConfirmationRequest) -> bool:
        if self.assume_yes:
            return True
        if not self.interactive:
            logger.warning("%s Declined (non-interactive; pass --yes to approve).", request.message)
            return False
        with self._lock:
            answer = self._ask(f"{request.message} [y/N] ")
        return answer.strip().lower() in {"y", "yes"}

    def choose_languages(self, path: Path) -> Optional[List[LanguageTag]]:
        if not self.interactive:
            return None
        choices = ", ".join(tag.slug for tag in LanguageTag)
        with self._lock:
            while True:
                answer = self._ask(
                    f"No language markers in {path}. Languages ({choices}; blank to skip): "
                ).strip()
                if not answer:
                    return None
                try:
                    return _parse_languages(answer.replace(",", " ").split())
                except ValueError as exc:
                    self._stdout.write(f"{exc}\n")

    def _ask(self, prompt: str) -> str:
        self._stdout.write(prompt)
        self._stdout.flush()
        line = self._stdin.readline()
        return line if line else ""


def _parse_languages(values: List[str]) -> List[LanguageTag]:
    tags: List[LanguageTag] = []
    for value in values:
        tag = LanguageTag.parse(value)
        if tag not in tags:
            tags.append(tag)
    return tags


def _language_arg(value: str) -> LanguageTag:
    try:
        return LanguageTag.parse(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _depth_arg(value: str) -> int:
    try:
        depth = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid depth '{value}'") from exc
    if depth < 0:
        raise argparse.ArgumentTypeError("depth cannot be negative")
    return depth


def _add_verbose_option(
    parser: argparse.ArgumentParser, *, suppress_default: bool = False
) -> None:
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=argparse.SUPPRESS if suppress_default else False,
        help="Increase log verbosity for troubleshooting.",
    )


def _add_path_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "path",
        nargs="?",
        default=".",
        help="Root directory to scan for projects (defaults to current directory).",
    )


def _add_depth_option(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--max-depth",
        type=_depth_arg,
        default=None,
        help="How many directory levels below the root to search for projects (default 3).",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="guidesync",
        description="Fetch coding guidelines and merge them into per-project AGENTS.md files.",
    )
    _add_verbose_option(parser)
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Also write detailed logs to this file.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    sync_parser = subparsers.add_parser(
        "sync",
        help="Fetch guidelines and write AGENTS.md (plus CLAUDE.md link) for each project.",
    )
    _add_verbose_option(sync_parser, suppress_default=True)
    _add_path_argument(sync_parser)
    _add_depth_option(sync_parser)
    sync_parser.add_argument(
        "--source",
        default=None,
        help="Base URL or directory holding the guideline documents.",
    )
    sync_parser.add_argument(
        "-l",
        "--language",
        dest="languages",
        action="append",
        type=_language_arg,
        default=None,
        help="Language for projects without marker files (repeatable).",
    )
    sync_parser.add_argument(
        "-y",
        "--yes",
        action="store_true",
        help="Approve every overwrite, link replacement and commit without prompting.",
    )
    sync_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show the changes that would be written without touching any file.",
    )
    sync_parser.add_argument(
        "--commit",
        action="store_true",
        default=None,
        help="Commit written files to git after the sync.",
    )
    sync_parser.add_argument(
        "--discard-custom",
        action="store_true",
        help="Do not carry over the existing Project-Specific Guidelines section.",
    )
    sync_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the run result as JSON instead of a text report.",
    )

    detect_parser = subparsers.add_parser(
        "detect",
        help="List detected projects, their languages and maturity.",
    )
    _add_verbose_option(detect_parser, suppress_default=True)
    _add_path_argument(detect_parser)
    _add_depth_option(detect_parser)

    serve_parser = subparsers.add_parser(
        "serve",
        help="Run the HTTP service exposing detect and sync.",
    )
    _add_verbose_option(serve_parser, suppress_default=True)
    serve_parser.add_argument("--host", default="127.0.0.1", help="Interface to bind.")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port to listen on.")

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint for guidesync commands."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    configure_logging(
        verbose=bool(args.verbose),
        quiet=bool(getattr(args, "json", False)),
        log_file=args.log_file,
    )

    orchestrator = Orchestrator()

    if args.command == "sync":
        _run_sync(parser, args, orchestrator)
    elif args.command == "detect":
        _run_detect(parser, args, orchestrator)
    elif args.command == "serve":
        try:
            from .service import run_service
        except ModuleNotFoundError as exc:
            parser.exit(
                1,
                f"Service mode needs {exc.name}. Install it with `pip install 'guidesync[service]'`.\n",
            )
        run_service(host=args.host, port=args.port)
    else:  # pragma: no cover - argparse enforces choices
        parser.exit(1, "Unknown command\n")


def _run_sync(parser: argparse.ArgumentParser, args: argparse.Namespace, orchestrator: Orchestrator) -> None:
    prompter = Prompter(assume_yes=bool(args.yes))
    cancel_event = threading.Event()
    root = Path(args.path).expanduser().resolve()

    def _sync() -> RunResult:
        return orchestrator.run(
            root,
            confirm=prompter.confirm,
            choose_languages=prompter.choose_languages,
            cancel_event=cancel_event,
            source=args.source,
            languages=args.languages,
            max_depth=args.max_depth,
            dry_run=bool(args.dry_run),
            preserve_custom=not args.discard_custom,
            commit=args.commit,
        )

    try:
        result = _run_cancellable(_sync, cancel_event)
    except (ConfigError, FileNotFoundError, NotADirectoryError) as exc:
        parser.exit(1, f"{exc}\n")
    except Exception as exc:  # pragma: no cover - unexpected failure surface
        parser.exit(1, f"guidesync sync failed: {exc}\nRun with --verbose for more details.\n")

    if args.json:
        print(json.dumps(as_dict(result), indent=2))
    else:
        print(summarize(result, root=root))
        if args.dry_run:
            for outcome in result.outcomes:
                if outcome.diff:
                    print()
                    print(outcome.diff.rstrip("\n"))

    if result.by_status(OutcomeStatus.FAILED):
        parser.exit(1)
    if cancel_event.is_set():
        parser.exit(130)
    if result.by_status(OutcomeStatus.UNDETERMINED):
        parser.exit(2)


def _run_detect(parser: argparse.ArgumentParser, args: argparse.Namespace, orchestrator: Orchestrator) -> None:
    root = Path(args.path).expanduser().resolve()
    try:
        projects = orchestrator.detect(root, max_depth=args.max_depth)
    except (ConfigError, FileNotFoundError, NotADirectoryError) as exc:
        parser.exit(1, f"{exc}\n")

    if not projects:
        print("No projects detected. Use `guidesync sync --language <name>` to choose one.")
        return
    for descriptor in projects:
        languages = ", ".join(tag.value for tag in descriptor.sorted_languages)
        print(f"{_relativize(descriptor.path, root)}\t{languages}\t{descriptor.maturity.value}")


def _run_cancellable(func: Callable[[], T], cancel_event: threading.Event) -> T:
    """Run ``func`` on a worker thread so Ctrl-C can request a clean stop."""
    outcome: dict[str, object] = {}

    def _target() -> None:
        try:
            outcome["value"] = func()
        except BaseException as exc:  # re-raised on the calling thread below
            outcome["error"] = exc

    worker = threading.Thread(target=_target, name="guidesync-run", daemon=True)
    worker.start()
    try:
        while worker.is_alive():
            worker.join(0.2)
    except KeyboardInterrupt:
        cancel_event.set()
        sys.stderr.write("Cancelling: finishing in-flight work, no partial writes...\n")
        worker.join()

    if "error" in outcome:
        raise outcome["error"]  # type: ignore[misc]
    return outcome["value"]  # type: ignore[return-value]


def _relativize(path: Path, root: Path) -> str:
    try:
        relative = path.relative_to(root)
    except ValueError:
        return str(path)
    return relative.as_posix() if relative.parts else "."


if __name__ == "__main__":
    main(sys.argv[1:])
