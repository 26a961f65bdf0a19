"""Project discovery: marker files, language tags and maturity."""

from __future__ import annotations

import os
from dataclasses import dataclass
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, Iterator, List, Sequence, Set, Tuple

from .config import ConfigError, load_config
from .logging import get_logger
from .models import LanguageTag, Maturity, ProjectDescriptor

_EXCLUDED_DIRS = {
    ".git",
    ".hg",
    ".svn",
    ".venv",
    "venv",
    "env",
    "node_modules",
    "__pycache__",
    ".pytest_cache",
    ".mypy_cache",
    ".ruff_cache",
    ".tox",
    ".idea",
    ".vscode",
    "target",
    "dist",
    "build",
    "out",
    "coverage",
    ".next",
}

_MARKERS: Dict[str, LanguageTag] = {
    "pyproject.toml": LanguageTag.PYTHON,
    "setup.py": LanguageTag.PYTHON,
    "setup.cfg": LanguageTag.PYTHON,
    "requirements.txt": LanguageTag.PYTHON,
    "Pipfile": LanguageTag.PYTHON,
    "Cargo.toml": LanguageTag.RUST,
    "tsconfig.json": LanguageTag.TYPESCRIPT,
    "package.json": LanguageTag.TYPESCRIPT,
    "deno.json": LanguageTag.TYPESCRIPT,
}

_SOURCE_SUFFIXES: Dict[str, LanguageTag] = {
    ".py": LanguageTag.PYTHON,
    ".pyi": LanguageTag.PYTHON,
    ".rs": LanguageTag.RUST,
    ".ts": LanguageTag.TYPESCRIPT,
    ".tsx": LanguageTag.TYPESCRIPT,
    ".mts": LanguageTag.TYPESCRIPT,
    ".js": LanguageTag.TYPESCRIPT,
    ".jsx": LanguageTag.TYPESCRIPT,
    ".mjs": LanguageTag.TYPESCRIPT,
}

_SOURCE_DIRS = ("src", "lib", "app")

# Build scripts that sit next to manifests are not evidence of real code.
_SCAFFOLD_FILES = {"setup.py", "build.rs", "conftest.py"}

_PLACEHOLDER_MAX_LINES = 5
_MATURITY_FILE_LIMIT = 200
_COMMENT_PREFIXES = ("#", "//", "/*", "*", '"""', "'''")

logger = get_logger("detector")


@dataclass
class IgnoreRule:
    """Represents an ignore rule parsed from .gitignore or .guidesync.yml."""

    pattern: str
    directory_only: bool
    anchored: bool
    negate: bool
    has_slash: bool

    def matches(self, rel_path: str, is_dir: bool) -> bool:
        if not self.pattern:
            return False
        if self.directory_only and not is_dir:
            return False

        if self.anchored or self.has_slash:
            if fnmatchcase(rel_path, self.pattern):
                return True
            return self.directory_only and rel_path.startswith(f"{self.pattern}/")

        return any(fnmatchcase(part, self.pattern) for part in rel_path.split("/"))


def _build_ignore_rule(pattern: str, negate: bool = False) -> IgnoreRule | None:
    pattern = pattern.strip()
    if not pattern:
        return None

    directory_only = pattern.endswith("/")
    if directory_only:
        pattern = pattern[:-1]

    anchored = pattern.startswith("/")
    if anchored:
        pattern = pattern[1:]

    return IgnoreRule(
        pattern=pattern,
        directory_only=directory_only,
        anchored=anchored,
        negate=negate,
        has_slash="/" in pattern,
    )


def _parse_gitignore(path: Path) -> List[IgnoreRule]:
    if not path.is_file():
        return []

    rules: List[IgnoreRule] = []
    for raw_line in path.read_text(encoding="utf-8", errors="replace").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        negate = line.startswith("!")
        if negate:
            line = line[1:]
        rule = _build_ignore_rule(line, negate=negate)
        if rule is not None:
            rules.append(rule)
    return rules


def _should_ignore(rel_path: str, is_dir: bool, rules: Sequence[IgnoreRule]) -> bool:
    ignored = False
    for rule in rules:
        if rule.matches(rel_path, is_dir):
            ignored = not rule.negate
    return ignored


def _is_meaningful(line: str) -> bool:
    stripped = line.strip()
    return bool(stripped) and not stripped.startswith(_COMMENT_PREFIXES)


def is_placeholder_source(path: Path) -> bool:
    """Return True when a source file holds only scaffold boilerplate."""
    if path.name in _SCAFFOLD_FILES:
        return True
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return True
    meaningful = sum(1 for line in text.splitlines() if _is_meaningful(line))
    return meaningful < _PLACEHOLDER_MAX_LINES


class ProjectDetector:
    """Walks a directory tree and reports every directory holding marker files."""

    def __init__(
        self,
        *,
        max_depth: int = 3,
        exclude_paths: Sequence[str] = (),
    ) -> None:
        if max_depth < 0:
            raise ValueError("max_depth cannot be negative")
        self.max_depth = max_depth
        self._extra_rules = [
            rule for rule in (_build_ignore_rule(pattern) for pattern in exclude_paths) if rule
        ]

    def detect(self, root: str | Path) -> Tuple[ProjectDescriptor, ...]:
        """Return descriptors for every project found under ``root``, sorted by path."""
        root_path = self._resolve_root(root)
        rules = self._load_rules(root_path)

        descriptors: List[ProjectDescriptor] = []
        for directory, filenames in self._walk(root_path, rules):
            languages = frozenset(_MARKERS[name] for name in filenames if name in _MARKERS)
            if not languages:
                continue
            maturity = self.classify_maturity(directory, languages)
            logger.debug(
                "Detected %s project at %s (%s)",
                ", ".join(tag.value for tag in sorted(languages, key=lambda t: t.name)),
                directory,
                maturity.value,
            )
            descriptors.append(
                ProjectDescriptor(path=directory, languages=languages, maturity=maturity)
            )

        descriptors.sort(key=lambda descriptor: descriptor.path.as_posix())
        return tuple(descriptors)

    def undetermined(
        self, root: str | Path, projects: Iterable[ProjectDescriptor]
    ) -> Tuple[Path, ...]:
        """Return candidate directories whose language must be chosen by the operator."""
        root_path = self._resolve_root(root)
        project_paths = [descriptor.path for descriptor in projects]
        if root_path in project_paths:
            return ()

        rules = self._load_rules(root_path)
        candidates: List[Path] = []
        for child in sorted(root_path.iterdir(), key=lambda entry: entry.name):
            if not child.is_dir() or child.is_symlink():
                continue
            if child.name.startswith(".") or child.name in _EXCLUDED_DIRS:
                continue
            if _should_ignore(child.name, True, rules):
                continue
            if any(path == child or child in path.parents for path in project_paths):
                continue
            candidates.append(child)

        if not candidates and not project_paths:
            return (root_path,)
        return tuple(candidates)

    def describe(self, path: str | Path, languages: Iterable[LanguageTag]) -> ProjectDescriptor:
        """Build a descriptor for an operator-chosen language set."""
        directory = self._resolve_root(path)
        tags = frozenset(languages)
        return ProjectDescriptor(
            path=directory, languages=tags, maturity=self.classify_maturity(directory, tags)
        )

    def classify_maturity(self, directory: Path, languages: FrozenSet[LanguageTag]) -> Maturity:
        """``New`` unless a primary source location holds substantive code."""
        for path in self._iter_primary_sources(directory, languages):
            if not is_placeholder_source(path):
                return Maturity.EXISTING
        return Maturity.NEW

    # ------------------------------------------------------------------
    # Helpers

    @staticmethod
    def _resolve_root(root: str | Path) -> Path:
        root_path = Path(root).expanduser().resolve()
        if not root_path.exists():
            raise FileNotFoundError(f"Project path not found: {root}")
        if not root_path.is_dir():
            raise NotADirectoryError(f"Project path is not a directory: {root}")
        return root_path

    def _load_rules(self, root: Path) -> List[IgnoreRule]:
        rules = _parse_gitignore(root / ".gitignore")
        try:
            config = load_config(root)
        except ConfigError as exc:
            logger.debug("Ignoring exclude patterns from unreadable config: %s", exc)
        else:
            rules.extend(
                rule
                for rule in (_build_ignore_rule(pattern) for pattern in config.all_exclude_paths)
                if rule
            )
        rules.extend(self._extra_rules)
        return rules

    def _walk(self, root: Path, rules: Sequence[IgnoreRule]) -> Iterator[Tuple[Path, Set[str]]]:
        for dirpath, dirnames, filenames in os.walk(root):
            current = Path(dirpath)
            rel_dir = current.relative_to(root).as_posix() if current != root else ""
            depth = 0 if not rel_dir else rel_dir.count("/") + 1

            if depth >= self.max_depth:
                dirnames[:] = []
            else:
                kept = []
                for name in sorted(dirnames):
                    if name in _EXCLUDED_DIRS:
                        continue
                    rel_path = f"{rel_dir}/{name}" if rel_dir else name
                    if _should_ignore(rel_path, True, rules):
                        continue
                    kept.append(name)
                dirnames[:] = kept

            visible = set()
            for filename in filenames:
                rel_path = f"{rel_dir}/{filename}" if rel_dir else filename
                if not _should_ignore(rel_path, False, rules):
                    visible.add(filename)
            yield current, visible

    @staticmethod
    def _iter_primary_sources(directory: Path, languages: FrozenSet[LanguageTag]) -> Iterator[Path]:
        seen = 0
        locations: List[Path] = [directory / name for name in _SOURCE_DIRS]
        if LanguageTag.PYTHON in languages:
            try:
                children = sorted(directory.iterdir(), key=lambda entry: entry.name)
            except OSError:
                children = []
            locations.extend(
                child
                for child in children
                if child.is_dir() and child.name not in _SOURCE_DIRS and (child / "__init__.py").is_file()
            )

        try:
            top_level = sorted(directory.iterdir(), key=lambda entry: entry.name)
        except OSError:
            top_level = []
        for entry in top_level:
            if entry.is_file() and _SOURCE_SUFFIXES.get(entry.suffix.lower()) in languages:
                seen += 1
                yield entry

        for location in locations:
            if not location.is_dir():
                continue
            for dirpath, dirnames, filenames in os.walk(location):
                dirnames[:] = sorted(
                    name for name in dirnames if name not in _EXCLUDED_DIRS and not name.startswith(".")
                )
                for filename in sorted(filenames):
                    if _SOURCE_SUFFIXES.get(Path(filename).suffix.lower()) not in languages:
                        continue
                    seen += 1
                    if seen > _MATURITY_FILE_LIMIT:
                        return
                    yield Path(dirpath) / filename


__all__ = ["IgnoreRule", "ProjectDetector", "is_placeholder_source"]
