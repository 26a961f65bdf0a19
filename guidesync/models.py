"""Core data models shared across guidesync components."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import FrozenSet, Optional, Tuple, Union


class LanguageTag(str, Enum):
    """Languages with a published guideline document."""

    PYTHON = "Python"
    RUST = "Rust"
    TYPESCRIPT = "TypeScript"

    @property
    def slug(self) -> str:
        return self.value.lower()

    @classmethod
    def parse(cls, value: str) -> "LanguageTag":
        """Resolve a tag from its display name or slug, case-insensitively."""
        lowered = value.strip().lower()
        aliases = {"py": cls.PYTHON, "rs": cls.RUST, "ts": cls.TYPESCRIPT}
        if lowered in aliases:
            return aliases[lowered]
        for tag in cls:
            if tag.slug == lowered:
                return tag
        known = ", ".join(tag.slug for tag in cls)
        raise ValueError(f"Unknown language '{value}' (expected one of: {known})")


class Maturity(str, Enum):
    NEW = "new"
    EXISTING = "existing"


class DocumentKind(str, Enum):
    BASE = "base"
    LANGUAGE_GUIDELINE = "guideline"
    SETUP_PROMPT = "setup"


class FetchErrorKind(str, Enum):
    """Why a document could not be retrieved."""

    UNREACHABLE = "unreachable"
    NOT_FOUND = "not found"
    INVALID = "invalid reference"
    CANCELLED = "cancelled"


class OutcomeStatus(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    UNDETERMINED = "undetermined"
    FAILED = "failed"


class SecondaryStatus(str, Enum):
    """What happened to the secondary (linked) output file."""

    LINKED = "linked"
    ALREADY_LINKED = "already linked"
    COPIED = "copied"
    KEPT = "kept"
    DISABLED = "disabled"


class ConfirmAction(str, Enum):
    OVERWRITE = "overwrite"
    REPLACE_SECONDARY = "replace-secondary"
    COMMIT = "commit"


@dataclass(frozen=True)
class ProjectDescriptor:
    """A detected project directory and the languages it uses."""

    path: Path
    languages: FrozenSet[LanguageTag]
    maturity: Maturity

    @property
    def sorted_languages(self) -> Tuple[LanguageTag, ...]:
        return tuple(sorted(self.languages, key=lambda tag: tag.name))


@dataclass(frozen=True)
class DocumentReference:
    """Points at one guideline document (URL or local path)."""

    kind: DocumentKind
    location: str
    language: Optional[LanguageTag] = None

    @property
    def key(self) -> str:
        """Stable identifier used for managed section markers."""
        if self.language is None:
            return self.kind.value
        return f"{self.language.slug}-{self.kind.value}"

    @property
    def title(self) -> str:
        if self.kind is DocumentKind.BASE:
            return "Base guidelines"
        assert self.language is not None
        if self.kind is DocumentKind.SETUP_PROMPT:
            return f"{self.language.value} setup"
        return f"{self.language.value} guidelines"


@dataclass(frozen=True)
class FetchedDocument:
    reference: DocumentReference
    content: str
    fetched_at: datetime


@dataclass(frozen=True)
class FetchFailure:
    reference: DocumentReference
    error: FetchErrorKind
    detail: str = ""

    def describe(self) -> str:
        reason = self.error.value
        if self.detail:
            reason = f"{reason}: {self.detail}"
        return f"{self.reference.title} could not be fetched ({reason})"


FetchResult = Union[FetchedDocument, FetchFailure]


@dataclass(frozen=True)
class MergedOutput:
    """Rendered primary output for one project."""

    project_path: Path
    body: str
    preserved_custom_section: Optional[str] = None
    omitted: Tuple[FetchFailure, ...] = ()


@dataclass(frozen=True)
class ConfirmationRequest:
    """Describes a destructive action awaiting an operator decision."""

    action: ConfirmAction
    path: Path
    message: str


@dataclass(frozen=True)
class WriteOutcome:
    path: Path
    status: OutcomeStatus
    secondary: SecondaryStatus = SecondaryStatus.DISABLED
    warnings: Tuple[str, ...] = ()
    backup_path: Optional[Path] = None


@dataclass(frozen=True)
class ProjectOutcome:
    """Final state of one project's pipeline."""

    descriptor: ProjectDescriptor
    status: OutcomeStatus
    detail: str = ""
    warnings: Tuple[str, ...] = ()
    output_path: Optional[Path] = None
    sections: Tuple[str, ...] = ()
    diff: Optional[str] = None


@dataclass(frozen=True)
class RunResult:
    outcomes: Tuple[ProjectOutcome, ...] = field(default_factory=tuple)

    def by_status(self, status: OutcomeStatus) -> Tuple[ProjectOutcome, ...]:
        return tuple(outcome for outcome in self.outcomes if outcome.status is status)

    @property
    def written_paths(self) -> Tuple[Path, ...]:
        paths = []
        for outcome in self.outcomes:
            if outcome.status in (OutcomeStatus.CREATED, OutcomeStatus.UPDATED) and outcome.output_path:
                paths.append(outcome.output_path)
        return tuple(paths)
