from __future__ import annotations

import json
from pathlib import Path

from guidesync.models import (
    LanguageTag,
    Maturity,
    OutcomeStatus,
    ProjectDescriptor,
    ProjectOutcome,
    RunResult,
)
from guidesync.report import as_dict, summarize

ROOT = Path("/work")


def _outcome(name: str, status: OutcomeStatus, **kwargs) -> ProjectOutcome:
    languages = frozenset() if status is OutcomeStatus.UNDETERMINED else frozenset({LanguageTag.PYTHON})
    descriptor = ProjectDescriptor(path=ROOT / name, languages=languages, maturity=Maturity.EXISTING)
    return ProjectOutcome(descriptor=descriptor, status=status, **kwargs)


def test_summary_groups_outcomes_in_fixed_order() -> None:
    result = RunResult(
        outcomes=(
            _outcome("zeta", OutcomeStatus.FAILED, detail="Base guidelines could not be fetched"),
            _outcome("alpha", OutcomeStatus.CREATED),
            _outcome("scripts", OutcomeStatus.UNDETERMINED),
            _outcome("beta", OutcomeStatus.UNCHANGED),
        )
    )

    text = summarize(result, root=ROOT)

    assert text.splitlines() == [
        "Created (1):",
        "  - alpha [Python; existing]",
        "",
        "Unchanged (1):",
        "  - beta [Python; existing]",
        "",
        "Language undetermined (choose with --language) (1):",
        "  - scripts",
        "",
        "Failed (1):",
        "  - zeta [Python; existing]",
        "      Base guidelines could not be fetched",
    ]


def test_summary_lists_warnings_per_project() -> None:
    result = RunResult(
        outcomes=(
            _outcome(
                "api",
                OutcomeStatus.UPDATED,
                warnings=("Rust guidelines could not be fetched (not found); section omitted",),
            ),
        )
    )

    text = summarize(result, root=ROOT)

    assert "Warnings (1):" in text
    assert "  - api: Rust guidelines could not be fetched (not found); section omitted" in text


def test_summary_for_empty_run() -> None:
    assert summarize(RunResult()) == "No projects found."


def test_as_dict_is_json_serialisable() -> None:
    result = RunResult(
        outcomes=(
            _outcome(
                "api",
                OutcomeStatus.CREATED,
                output_path=ROOT / "api" / "AGENTS.md",
                sections=("base", "python-guideline"),
            ),
        )
    )

    payload = json.loads(json.dumps(as_dict(result)))

    assert payload["counts"]["created"] == 1
    assert payload["counts"]["failed"] == 0
    project = payload["projects"][0]
    assert project["languages"] == ["Python"]
    assert project["sections"] == ["base", "python-guideline"]
    assert project["output_path"] == str(ROOT / "api" / "AGENTS.md")
