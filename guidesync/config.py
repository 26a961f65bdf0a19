"""Configuration loading for guidesync (.guidesync.yml)."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import yaml

from .models import LanguageTag

CONFIG_FILENAME = ".guidesync.yml"
ENV_SOURCE_KEY = "GUIDESYNC_SOURCE"


class ConfigError(RuntimeError):
    """Raised when the configuration file cannot be parsed or is incomplete."""


@dataclass
class DocumentsConfig:
    """Location templates for guideline documents, relative to the source."""

    base: str = "base.md"
    guideline: str = "{language}/guidelines.md"
    setup: str = "{language}/setup.md"


@dataclass
class OutputConfig:
    primary: str = "AGENTS.md"
    secondary: Optional[str] = "CLAUDE.md"


@dataclass
class FetchConfig:
    timeout: float = 10.0
    retries: int = 2


@dataclass
class DetectConfig:
    max_depth: int = 3
    exclude_paths: List[str] = field(default_factory=list)


@dataclass
class CommitConfig:
    enabled: bool = False
    message: str = "docs: sync agent guidelines via guidesync"


@dataclass
class GuideSyncConfig:
    """Represents the settings defined in .guidesync.yml."""

    root: Path
    source: Optional[str] = None
    documents: DocumentsConfig = field(default_factory=DocumentsConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    detect: DetectConfig = field(default_factory=DetectConfig)
    commit: CommitConfig = field(default_factory=CommitConfig)
    languages: List[LanguageTag] = field(default_factory=list)
    exclude_paths: List[str] = field(default_factory=list)
    workers: int = 4

    def require_source(self) -> str:
        if not self.source:
            raise ConfigError(
                "No guideline source configured. Pass --source, set "
                f"{ENV_SOURCE_KEY}, or add `source:` to {CONFIG_FILENAME}."
            )
        return self.source

    @property
    def all_exclude_paths(self) -> List[str]:
        return [*self.exclude_paths, *self.detect.exclude_paths]


def load_config(config_path: Path) -> GuideSyncConfig:
    """Load configuration from disk, applying environment overrides."""
    config_file = _resolve_config_path(config_path)
    root = config_file.parent.resolve()

    data: Dict[str, Any] = {}
    if config_file.exists():
        data = _read_config(config_file)

    config = GuideSyncConfig(root=root)

    source = _as_str(data.get("source"))
    if source:
        config.source = _resolve_source(source, root)

    documents_data = _as_dict(data.get("documents"))
    if documents_data:
        defaults = DocumentsConfig()
        config.documents = DocumentsConfig(
            base=_as_str(documents_data.get("base")) or defaults.base,
            guideline=_as_str(documents_data.get("guideline")) or defaults.guideline,
            setup=_as_str(documents_data.get("setup")) or defaults.setup,
        )

    output_data = _as_dict(data.get("output"))
    if output_data:
        primary = _as_str(output_data.get("primary")) or OutputConfig.primary
        secondary: Optional[str] = OutputConfig.secondary
        if "secondary" in output_data:
            secondary = _as_str(output_data.get("secondary")) or None
        if secondary == primary:
            raise ConfigError("output.secondary must differ from output.primary")
        config.output = OutputConfig(primary=primary, secondary=secondary)

    fetch_data = _as_dict(data.get("fetch"))
    if fetch_data:
        timeout = _as_float(fetch_data.get("timeout"))
        retries = _as_int(fetch_data.get("retries"))
        if timeout is not None and timeout <= 0:
            raise ConfigError("fetch.timeout must be positive")
        if retries is not None and retries < 0:
            raise ConfigError("fetch.retries cannot be negative")
        config.fetch = FetchConfig(
            timeout=timeout if timeout is not None else FetchConfig.timeout,
            retries=retries if retries is not None else FetchConfig.retries,
        )

    detect_data = _as_dict(data.get("detect"))
    if detect_data:
        max_depth = _as_int(detect_data.get("max_depth"))
        if max_depth is not None and max_depth < 0:
            raise ConfigError("detect.max_depth cannot be negative")
        config.detect = DetectConfig(
            max_depth=max_depth if max_depth is not None else DetectConfig.max_depth,
            exclude_paths=_as_str_list(detect_data.get("exclude_paths")),
        )

    commit_data = _as_dict(data.get("commit"))
    if commit_data:
        config.commit = CommitConfig(
            enabled=_as_bool(commit_data.get("enabled")) or False,
            message=_as_str(commit_data.get("message")) or CommitConfig.message,
        )

    try:
        config.languages = [LanguageTag.parse(name) for name in _as_str_list(data.get("languages"))]
    except ValueError as exc:
        raise ConfigError(f"Invalid `languages` entry in {CONFIG_FILENAME}: {exc}") from exc

    config.exclude_paths = _as_str_list(data.get("exclude_paths"))

    workers = _as_int(data.get("workers"))
    if workers is not None:
        if workers < 1:
            raise ConfigError("workers must be at least 1")
        config.workers = workers

    env_source = os.getenv(ENV_SOURCE_KEY)
    if env_source:
        config.source = _resolve_source(env_source, Path.cwd())

    return config


def _resolve_config_path(config_path: Path) -> Path:
    config_path = config_path.expanduser()
    if config_path.is_dir():
        return (config_path / CONFIG_FILENAME).resolve()
    if config_path.name != CONFIG_FILENAME:
        return (config_path.parent / CONFIG_FILENAME).resolve()
    return config_path.resolve()


def _resolve_source(source: str, base: Path) -> str:
    """Anchor relative local sources; URLs pass through untouched."""
    if "://" in source:
        return source.rstrip("/")
    path = Path(source).expanduser()
    if not path.is_absolute():
        path = base / path
    return str(path.resolve())


def _read_config(path: Path) -> Dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    if not text.strip():
        return {}
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {path.name}: {exc}") from exc
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigError(f"{CONFIG_FILENAME} must contain a mapping at the root")
    return loaded


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_str(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return None
    return str(value) if isinstance(value, (str, int, float)) else None


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "1"}:
            return True
        if lowered in {"false", "no", "0"}:
            return False
    return None


def _as_str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, Sequence):
        return [str(item) for item in value if isinstance(item, (str, int, float)) and not isinstance(item, bool)]
    return []
