"""Writes merged output files and keeps the secondary name linked to them."""

from __future__ import annotations

import os
import shutil
import tempfile
import threading
import uuid
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from .logging import get_logger
from .models import (
    ConfirmAction,
    ConfirmationRequest,
    MergedOutput,
    OutcomeStatus,
    SecondaryStatus,
    WriteOutcome,
)

ConfirmCallback = Callable[[ConfirmationRequest], bool]
SymlinkFunc = Callable[[str, Path], None]


class WriteError(RuntimeError):
    """Raised when a project's output could not be written in full."""


def _default_symlink(target: str, link: Path) -> None:
    os.symlink(target, link)


class _PathLocks:
    """Hands out one lock per resolved output path."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[Path, threading.Lock] = {}

    def get(self, path: Path) -> threading.Lock:
        key = path.resolve()
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock


_PATH_LOCKS = _PathLocks()


class OutputWriter:
    """Writes the primary file atomically and maintains its secondary alias."""

    def __init__(
        self,
        secondary_name: Optional[str] = "CLAUDE.md",
        *,
        symlink: SymlinkFunc | None = None,
    ) -> None:
        self.secondary_name = secondary_name
        self._symlink = symlink or _default_symlink
        self.logger = get_logger("writer")

    def write(self, path: Path, merged: MergedOutput, confirm: ConfirmCallback) -> WriteOutcome:
        """Write ``merged`` to ``path`` after any required confirmation."""
        path = Path(path)
        with _PATH_LOCKS.get(path):
            return self._write_locked(path, merged, confirm)

    # ------------------------------------------------------------------
    # Primary file

    def _write_locked(self, path: Path, merged: MergedOutput, confirm: ConfirmCallback) -> WriteOutcome:
        previous: Optional[str] = None
        if path.is_symlink() or path.exists():
            if path.is_dir():
                raise WriteError(f"{path} is a directory")
            try:
                previous = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                raise WriteError(f"Unable to read existing {path}: {exc}") from exc

        if previous is not None and previous != merged.body:
            request = ConfirmationRequest(
                action=ConfirmAction.OVERWRITE,
                path=path,
                message=f"Overwrite existing {path.name} in {path.parent}?",
            )
            if not confirm(request):
                self.logger.info("Overwrite of %s declined; leaving it untouched", path)
                return WriteOutcome(path=path, status=OutcomeStatus.SKIPPED)

        status = OutcomeStatus.CREATED if previous is None else OutcomeStatus.UPDATED
        if previous == merged.body:
            status = OutcomeStatus.UNCHANGED
        else:
            self._atomic_write(path, merged.body)

        try:
            secondary, warnings, backup = self._ensure_secondary(path, previous, merged.body, confirm)
        except (OSError, WriteError) as exc:
            if status is not OutcomeStatus.UNCHANGED:
                self._restore(path, previous)
            raise WriteError(f"Unable to update secondary file next to {path}: {exc}") from exc

        if status is not OutcomeStatus.UNCHANGED:
            self.logger.info("%s %s", "Created" if previous is None else "Updated", path)
        return WriteOutcome(
            path=path,
            status=status,
            secondary=secondary,
            warnings=tuple(warnings),
            backup_path=backup,
        )

    @staticmethod
    def _atomic_write(path: Path, content: str) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        except OSError as exc:
            raise WriteError(f"Unable to prepare {path}: {exc}") from exc
        temp_path = Path(temp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as handle:
                handle.write(content)
            if path.exists() and not path.is_symlink():
                shutil.copymode(path, temp_path)
            os.replace(temp_path, path)
        except OSError as exc:
            temp_path.unlink(missing_ok=True)
            raise WriteError(f"Unable to write {path}: {exc}") from exc

    def _restore(self, path: Path, previous: Optional[str]) -> None:
        try:
            if previous is None:
                path.unlink(missing_ok=True)
            else:
                self._atomic_write(path, previous)
        except (OSError, WriteError):
            self.logger.error("Unable to roll back %s after a failed write", path)

    # ------------------------------------------------------------------
    # Secondary file

    def _ensure_secondary(
        self,
        primary: Path,
        previous: Optional[str],
        body: str,
        confirm: ConfirmCallback,
    ) -> Tuple[SecondaryStatus, List[str], Optional[Path]]:
        if not self.secondary_name:
            return SecondaryStatus.DISABLED, [], None

        secondary = primary.with_name(self.secondary_name)
        warnings: List[str] = []

        if secondary.is_symlink():
            if self._points_to(secondary, primary):
                return SecondaryStatus.ALREADY_LINKED, warnings, None
            self.logger.info("Repairing %s so it links to %s", secondary, primary.name)
            return self._link_or_copy(primary, secondary, body, warnings), warnings, None

        if not secondary.exists():
            return self._link_or_copy(primary, secondary, body, warnings), warnings, None

        if secondary.is_dir():
            warnings.append(f"{secondary.name} is a directory; left unchanged")
            return SecondaryStatus.KEPT, warnings, None

        supports_links = self.supports_symlinks(primary.parent)
        current = secondary.read_text(encoding="utf-8", errors="replace")
        if not supports_links and current in (previous, body):
            # A copy we made earlier; refresh it in place.
            if current != body:
                self._atomic_write(secondary, body)
            warnings.append(self._copy_warning(secondary))
            return SecondaryStatus.COPIED, warnings, None

        replacement = "a link to" if supports_links else "a copy of"
        request = ConfirmationRequest(
            action=ConfirmAction.REPLACE_SECONDARY,
            path=secondary,
            message=(
                f"{secondary.name} in {secondary.parent} is an independent file. "
                f"Back it up to {secondary.name}.bak and replace it with {replacement} {primary.name}?"
            ),
        )
        if not confirm(request):
            warnings.append(f"{secondary.name} kept as an independent file (replacement declined)")
            self.logger.warning("Kept independent %s; it will not follow %s", secondary, primary.name)
            return SecondaryStatus.KEPT, warnings, None

        backup = self._backup(secondary)
        status = self._link_or_copy(primary, secondary, body, warnings)
        return status, warnings, backup

    def _link_or_copy(self, primary: Path, secondary: Path, body: str, warnings: List[str]) -> SecondaryStatus:
        # The old secondary stays in place until the staged link replaces it.
        staged = secondary.with_name(f".{secondary.name}.{uuid.uuid4().hex}.link")
        try:
            self._symlink(primary.name, staged)
        except (OSError, NotImplementedError) as exc:
            self.logger.debug("Symlink creation failed for %s: %s", secondary, exc)
            self._atomic_write(secondary, body)
            warnings.append(self._copy_warning(secondary))
            self.logger.warning("Links unsupported here; wrote %s as a copy", secondary)
            return SecondaryStatus.COPIED
        try:
            os.replace(staged, secondary)
        except OSError:
            staged.unlink(missing_ok=True)
            raise
        self.logger.debug("Linked %s -> %s", secondary, primary.name)
        return SecondaryStatus.LINKED

    def supports_symlinks(self, directory: Path) -> bool:
        """Check whether a symbolic link can be created inside ``directory``."""
        check = directory / f".guidesync-link-check-{uuid.uuid4().hex}"
        try:
            self._symlink(".", check)
        except (OSError, NotImplementedError):
            return False
        try:
            check.unlink()
        except OSError:
            self.logger.debug("Unable to remove link check %s", check)
        return True

    @staticmethod
    def _points_to(link: Path, target: Path) -> bool:
        try:
            return link.resolve(strict=True) == target.resolve(strict=True)
        except (OSError, RuntimeError):
            return False

    @staticmethod
    def _backup(path: Path) -> Path:
        backup = path.with_name(f"{path.name}.bak")
        shutil.copy2(path, backup)
        return backup

    @staticmethod
    def _copy_warning(secondary: Path) -> str:
        return f"{secondary.name} is a copy, not a live link; rerun guidesync after edits"


__all__ = ["ConfirmCallback", "OutputWriter", "WriteError"]
