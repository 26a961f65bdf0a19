"""Human-readable and structured summaries of a sync run."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import OutcomeStatus, ProjectOutcome, RunResult

_STATUS_ORDER = (
    OutcomeStatus.CREATED,
    OutcomeStatus.UPDATED,
    OutcomeStatus.UNCHANGED,
    OutcomeStatus.SKIPPED,
    OutcomeStatus.UNDETERMINED,
    OutcomeStatus.FAILED,
)

_STATUS_HEADINGS = {
    OutcomeStatus.CREATED: "Created",
    OutcomeStatus.UPDATED: "Updated",
    OutcomeStatus.UNCHANGED: "Unchanged",
    OutcomeStatus.SKIPPED: "Skipped",
    OutcomeStatus.UNDETERMINED: "Language undetermined (choose with --language)",
    OutcomeStatus.FAILED: "Failed",
}


def summarize(run_result: RunResult, *, root: Optional[Path] = None) -> str:
    """Render ``run_result`` grouped by status. Never touches the filesystem."""
    if not run_result.outcomes:
        return "No projects found."

    lines: List[str] = []
    for status in _STATUS_ORDER:
        outcomes = run_result.by_status(status)
        if not outcomes:
            continue
        if lines:
            lines.append("")
        lines.append(f"{_STATUS_HEADINGS[status]} ({len(outcomes)}):")
        for outcome in outcomes:
            lines.append(f"  - {_describe(outcome, root)}")
            if outcome.detail:
                lines.append(f"      {outcome.detail}")

    warnings = [
        (outcome, warning) for outcome in run_result.outcomes for warning in outcome.warnings
    ]
    if warnings:
        lines.append("")
        lines.append(f"Warnings ({len(warnings)}):")
        for outcome, warning in warnings:
            lines.append(f"  - {_display_path(outcome.descriptor.path, root)}: {warning}")

    return "\n".join(lines)


def as_dict(run_result: RunResult) -> Dict[str, Any]:
    """Return a JSON-serialisable view of ``run_result``."""
    counts = {status.value: len(run_result.by_status(status)) for status in _STATUS_ORDER}
    return {
        "counts": counts,
        "projects": [_outcome_dict(outcome) for outcome in run_result.outcomes],
    }


def _outcome_dict(outcome: ProjectOutcome) -> Dict[str, Any]:
    descriptor = outcome.descriptor
    return {
        "path": str(descriptor.path),
        "languages": [tag.value for tag in descriptor.sorted_languages],
        "maturity": descriptor.maturity.value,
        "status": outcome.status.value,
        "detail": outcome.detail,
        "warnings": list(outcome.warnings),
        "output_path": str(outcome.output_path) if outcome.output_path else None,
        "sections": list(outcome.sections),
        "diff": outcome.diff,
    }


def _describe(outcome: ProjectOutcome, root: Optional[Path]) -> str:
    descriptor = outcome.descriptor
    label = _display_path(descriptor.path, root)
    if outcome.status is OutcomeStatus.UNDETERMINED:
        return label
    languages = ", ".join(tag.value for tag in descriptor.sorted_languages) or "no languages"
    return f"{label} [{languages}; {descriptor.maturity.value}]"


def _display_path(path: Path, root: Optional[Path]) -> str:
    if root is None:
        return str(path)
    try:
        relative = path.relative_to(root)
    except ValueError:
        return str(path)
    return relative.as_posix() if relative.parts else "."


__all__ = ["as_dict", "summarize"]
