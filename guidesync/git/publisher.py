"""Git commit support for synced guideline files."""

from __future__ import annotations

import os
import subprocess
from collections import defaultdict
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from ..logging import get_logger

DEFAULT_MESSAGE = "docs: sync agent guidelines via guidesync"


def find_repo_root(path: Path) -> Optional[Path]:
    """Return the closest ancestor (or ``path`` itself) holding a ``.git`` entry."""
    current = path if path.is_dir() else path.parent
    for candidate in (current, *current.parents):
        if (candidate / ".git").exists():
            return candidate
    return None


def _commit_env() -> Dict[str, str]:
    """Current environment with a fallback guidesync identity for the commit."""
    env = dict(os.environ)
    for role in ("AUTHOR", "COMMITTER"):
        env.setdefault(f"GIT_{role}_NAME", "guidesync")
        env.setdefault(f"GIT_{role}_EMAIL", "guidesync@users.noreply.local")
    return env


class Publisher:
    """Stages and commits written files in their enclosing git work trees."""

    def __init__(self, runner: Callable[..., str] | None = None) -> None:
        self._runner = runner or self._default_runner
        self.logger = get_logger("git")

    def commit(
        self,
        repo_path: str | Path,
        files: Sequence[Path | str],
        *,
        message: str = DEFAULT_MESSAGE,
    ) -> bool:
        """Stage ``files`` and commit them alone; False when nothing changed."""
        repo = Path(repo_path)
        if not files or not (repo / ".git").exists():
            return False

        pathspec = ["--", *(self._to_relative(repo, Path(file)) for file in files)]
        self._run(["git", "add", *pathspec], cwd=repo)
        pending = self._run(["git", "status", "--porcelain", *pathspec], cwd=repo, capture_output=True)
        if not pending.strip():
            self.logger.debug("Nothing to commit in %s", repo)
            return False

        self._run(["git", "commit", "-m", message, *pathspec], cwd=repo, env=_commit_env())
        self.logger.info("Committed %d file(s) in %s", len(pathspec) - 1, repo)
        return True

    def commit_all(self, files: Iterable[Path], *, message: str = DEFAULT_MESSAGE) -> List[Path]:
        """Group ``files`` by work tree and commit each group; return committed repos."""
        groups: Dict[Path, List[Path]] = defaultdict(list)
        for file in files:
            repo = find_repo_root(Path(file))
            if repo is None:
                self.logger.debug("%s is not inside a git work tree; skipping commit", file)
                continue
            groups[repo].append(Path(file))

        committed: List[Path] = []
        for repo in sorted(groups):
            if self.commit(repo, groups[repo], message=message):
                committed.append(repo)
        return committed

    # ------------------------------------------------------------------
    # Helpers

    @staticmethod
    def _to_relative(repo: Path, file_path: Path) -> str:
        try:
            return file_path.relative_to(repo).as_posix()
        except ValueError:
            return file_path.as_posix()

    def _run(
        self,
        args: Iterable[str],
        *,
        cwd: Path,
        env: dict[str, str] | None = None,
        capture_output: bool = False,
    ) -> str:
        return self._runner(args, cwd=cwd, env=env, capture_output=capture_output)

    @staticmethod
    def _default_runner(
        args: Iterable[str],
        *,
        cwd: Path,
        env: dict[str, str] | None = None,
        capture_output: bool = False,
    ) -> str:
        completed = subprocess.run(
            list(args),
            cwd=str(cwd),
            env=env,
            check=True,
            text=True,
            capture_output=capture_output,
        )
        if capture_output:
            return completed.stdout
        return ""
