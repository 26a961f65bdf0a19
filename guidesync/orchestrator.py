"""Pipeline orchestration: detect, select, fetch, merge and write per project."""

from __future__ import annotations

import difflib
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence

from .config import GuideSyncConfig, load_config
from .detector import ProjectDetector
from .fetcher import Fetcher
from .git.publisher import Publisher
from .logging import get_logger, log_transition
from .merger import Merger
from .models import (
    ConfirmAction,
    ConfirmationRequest,
    FetchFailure,
    LanguageTag,
    OutcomeStatus,
    ProjectDescriptor,
    ProjectOutcome,
    RunResult,
)
from .selector import DocumentCatalog, DocumentSelector
from .writer import ConfirmCallback, OutputWriter, WriteError

LanguageChooser = Callable[[Path], Optional[Sequence[LanguageTag]]]


class Orchestrator:
    """Coordinates the per-project guideline sync pipelines."""

    def __init__(
        self,
        *,
        detector: ProjectDetector | None = None,
        fetcher: Fetcher | None = None,
        writer: OutputWriter | None = None,
        publisher: Publisher | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._detector = detector
        self._fetcher = fetcher
        self._writer = writer
        self.publisher = publisher or Publisher()
        self._clock = clock
        self.logger = get_logger("orchestrator")

    def load_config(
        self,
        root: Path,
        *,
        source: str | None = None,
        max_depth: int | None = None,
    ) -> GuideSyncConfig:
        """Read ``.guidesync.yml`` under ``root`` and apply caller overrides."""
        config = load_config(root)
        if source:
            config.source = source if "://" in source else str(Path(source).expanduser().resolve())
        if max_depth is not None:
            config.detect.max_depth = max_depth
        return config

    def detect(self, path: str | Path, *, max_depth: int | None = None) -> tuple[ProjectDescriptor, ...]:
        """Return the detected projects under ``path`` without touching any file."""
        root = Path(path).expanduser().resolve()
        config = self.load_config(root, max_depth=max_depth)
        return self._resolve_detector(config).detect(root)

    def run(
        self,
        path: str | Path,
        *,
        confirm: ConfirmCallback,
        choose_languages: LanguageChooser | None = None,
        cancel_event: threading.Event | None = None,
        source: str | None = None,
        languages: Sequence[LanguageTag] | None = None,
        max_depth: int | None = None,
        dry_run: bool = False,
        preserve_custom: bool = True,
        commit: bool | None = None,
    ) -> RunResult:
        """Sync guideline files for every project under ``path``."""
        root = Path(path).expanduser().resolve()
        self.logger.info("Starting sync run for %s", root)
        config = self.load_config(root, source=source, max_depth=max_depth)
        catalog = DocumentCatalog.from_config(config)
        cancel_event = cancel_event or threading.Event()

        detector = self._resolve_detector(config)
        projects: List[ProjectDescriptor] = list(detector.detect(root))
        self.logger.debug("Detected %d project(s)", len(projects))

        outcomes: List[ProjectOutcome] = []
        preset = list(languages or config.languages)
        for candidate in detector.undetermined(root, projects):
            chosen: Sequence[LanguageTag] | None = preset or None
            if not chosen and choose_languages is not None:
                chosen = choose_languages(candidate)
            if chosen:
                self.logger.info(
                    "Using operator-selected languages for %s: %s",
                    candidate,
                    ", ".join(tag.value for tag in chosen),
                )
                projects.append(detector.describe(candidate, chosen))
                continue
            self.logger.warning("No language markers found in %s; operator choice required", candidate)
            outcomes.append(
                ProjectOutcome(
                    descriptor=detector.describe(candidate, ()),
                    status=OutcomeStatus.UNDETERMINED,
                    detail="No marker files found; choose a language to continue.",
                )
            )

        selector = DocumentSelector(catalog)
        fetcher = self._resolve_fetcher(config)
        merger = Merger(catalog.source, clock=self._clock)
        writer = self._resolve_writer(config)

        def _pipeline(descriptor: ProjectDescriptor) -> ProjectOutcome:
            return self._run_project(
                descriptor,
                config=config,
                selector=selector,
                fetcher=fetcher,
                merger=merger,
                writer=writer,
                confirm=confirm,
                cancel_event=cancel_event,
                dry_run=dry_run,
                preserve_custom=preserve_custom,
            )

        if projects:
            workers = min(config.workers, len(projects))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="guidesync-project") as pool:
                outcomes.extend(pool.map(_pipeline, projects))

        outcomes.sort(key=lambda outcome: outcome.descriptor.path.as_posix())
        result = RunResult(outcomes=tuple(outcomes))

        should_commit = config.commit.enabled if commit is None else commit
        if should_commit and not dry_run and not cancel_event.is_set():
            self._maybe_commit(result, config, confirm)

        self._log_summary(result)
        return result

    # ------------------------------------------------------------------
    # Per-project pipeline

    def _run_project(
        self,
        descriptor: ProjectDescriptor,
        *,
        config: GuideSyncConfig,
        selector: DocumentSelector,
        fetcher: Fetcher,
        merger: Merger,
        writer: OutputWriter,
        confirm: ConfirmCallback,
        cancel_event: threading.Event,
        dry_run: bool,
        preserve_custom: bool,
    ) -> ProjectOutcome:
        output_path = descriptor.path / config.output.primary
        log_transition(self.logger, descriptor.path, "Detected")
        try:
            if cancel_event.is_set():
                return self._cancelled(descriptor)

            log_transition(self.logger, descriptor.path, "Selecting")
            references = selector.select(descriptor)

            log_transition(self.logger, descriptor.path, "Fetching")
            results = fetcher.fetch_all(references, cancel_event=cancel_event)
            if cancel_event.is_set():
                return self._cancelled(descriptor)

            base = results[0]
            if isinstance(base, FetchFailure):
                self.logger.error("%s: %s; project skipped", descriptor.path, base.describe())
                return ProjectOutcome(
                    descriptor=descriptor,
                    status=OutcomeStatus.FAILED,
                    detail=base.describe(),
                )

            warnings = []
            for result in results[1:]:
                if isinstance(result, FetchFailure):
                    self.logger.warning("%s: %s; section omitted", descriptor.path, result.describe())
                    warnings.append(f"{result.describe()}; section omitted")

            log_transition(self.logger, descriptor.path, "Merging")
            existing = self._read_existing(output_path)
            merged = merger.merge(descriptor, results, existing, preserve_custom=preserve_custom)
            omitted = {failure.reference.key for failure in merged.omitted}
            sections = tuple(key for key in merger.markers.keys(merged.body) if key not in omitted)

            if dry_run:
                return self._dry_run_outcome(descriptor, output_path, existing, merged.body, sections, warnings)

            if cancel_event.is_set():
                return self._cancelled(descriptor)

            log_transition(self.logger, descriptor.path, "AwaitingConfirmation")
            outcome = writer.write(output_path, merged, confirm)
        except WriteError as exc:
            self.logger.error("Write failed for %s: %s", descriptor.path, exc)
            log_transition(self.logger, descriptor.path, "Failed")
            return ProjectOutcome(descriptor=descriptor, status=OutcomeStatus.FAILED, detail=str(exc))
        except Exception as exc:  # noqa: BLE001 - failures stay scoped to one project
            self._log_exception(f"Pipeline failed for {descriptor.path}", exc)
            log_transition(self.logger, descriptor.path, "Failed")
            return ProjectOutcome(descriptor=descriptor, status=OutcomeStatus.FAILED, detail=str(exc))

        warnings.extend(outcome.warnings)
        if outcome.status is OutcomeStatus.SKIPPED:
            log_transition(self.logger, descriptor.path, "Skipped")
            detail = f"Kept existing {output_path.name} (overwrite declined)"
        else:
            log_transition(self.logger, descriptor.path, "Written")
            detail = f"{output_path.name}: {outcome.status.value}; secondary {outcome.secondary.value}"
            if outcome.backup_path is not None:
                detail += f"; backup at {outcome.backup_path.name}"
        return ProjectOutcome(
            descriptor=descriptor,
            status=outcome.status,
            detail=detail,
            warnings=tuple(warnings),
            output_path=output_path,
            sections=sections,
        )

    @staticmethod
    def _read_existing(path: Path) -> Optional[str]:
        if not path.is_file():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise WriteError(f"Unable to read existing {path}: {exc}") from exc

    def _dry_run_outcome(
        self,
        descriptor: ProjectDescriptor,
        output_path: Path,
        existing: Optional[str],
        body: str,
        sections: tuple[str, ...],
        warnings: List[str],
    ) -> ProjectOutcome:
        if existing == body:
            status, detail, diff = OutcomeStatus.UNCHANGED, f"{output_path.name} already up to date", None
        else:
            status = OutcomeStatus.SKIPPED
            detail = f"dry-run: {output_path.name} would be {'updated' if existing else 'created'}"
            diff = self._render_diff(existing or "", body, output_path.name)
        self.logger.info("Dry-run for %s: %s", descriptor.path, detail)
        return ProjectOutcome(
            descriptor=descriptor,
            status=status,
            detail=detail,
            warnings=tuple(warnings),
            output_path=output_path,
            sections=sections,
            diff=diff,
        )

    @staticmethod
    def _cancelled(descriptor: ProjectDescriptor) -> ProjectOutcome:
        return ProjectOutcome(
            descriptor=descriptor,
            status=OutcomeStatus.SKIPPED,
            detail="Run cancelled before writing; project left untouched",
        )

    # ------------------------------------------------------------------
    # Helpers

    def _resolve_detector(self, config: GuideSyncConfig) -> ProjectDetector:
        if self._detector is not None:
            return self._detector
        return ProjectDetector(max_depth=config.detect.max_depth)

    def _resolve_fetcher(self, config: GuideSyncConfig) -> Fetcher:
        if self._fetcher is not None:
            return self._fetcher
        return Fetcher(timeout=config.fetch.timeout, retries=config.fetch.retries)

    def _resolve_writer(self, config: GuideSyncConfig) -> OutputWriter:
        if self._writer is not None:
            return self._writer
        return OutputWriter(secondary_name=config.output.secondary)

    def _maybe_commit(self, result: RunResult, config: GuideSyncConfig, confirm: ConfirmCallback) -> None:
        files = self._committable_files(result.written_paths, config.output.secondary)
        if not files:
            return
        request = ConfirmationRequest(
            action=ConfirmAction.COMMIT,
            path=files[0].parent,
            message=f"Commit {len(files)} updated guideline file(s)?",
        )
        if not confirm(request):
            self.logger.info("Commit declined; changes left uncommitted")
            return
        try:
            self.publisher.commit_all(files, message=config.commit.message)
        except Exception as exc:  # noqa: BLE001 - files stay written even if git fails
            self._log_exception("Commit failed", exc)

    @staticmethod
    def _committable_files(primaries: Iterable[Path], secondary_name: Optional[str]) -> List[Path]:
        files: List[Path] = []
        for primary in primaries:
            files.append(primary)
            if secondary_name:
                secondary = primary.with_name(secondary_name)
                if secondary.exists() or secondary.is_symlink():
                    files.append(secondary)
        return files

    def _log_summary(self, result: RunResult) -> None:
        counts = [
            f"{len(result.by_status(status))} {status.value}"
            for status in OutcomeStatus
            if result.by_status(status)
        ]
        self.logger.info("Sync finished: %s", ", ".join(counts) or "no projects")

    def _log_exception(self, message: str, exc: Exception) -> None:
        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.exception("%s: %s", message, exc)
        else:
            self.logger.error("%s: %s", message, exc)

    @staticmethod
    def _render_diff(original: str, updated: str, name: str) -> str:
        diff = difflib.unified_diff(
            original.splitlines(keepends=True),
            updated.splitlines(keepends=True),
            fromfile=f"a/{name}",
            tofile=f"b/{name}",
        )
        return "".join(diff)


__all__ = ["LanguageChooser", "Orchestrator"]
