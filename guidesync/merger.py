"""Merges fetched guideline documents into a single agent-instruction file."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from jinja2 import Environment, FileSystemLoader

from .models import FetchedDocument, FetchFailure, FetchResult, MergedOutput, ProjectDescriptor

TITLE = "Agent Guidelines"
CUSTOM_HEADING = "Project-Specific Guidelines"
CUSTOM_HINT = (
    "<!-- Add guidelines specific to this project here. "
    "guidesync keeps this section intact on every sync. -->"
)

_TEMPLATE_NAME = "guidelines.md.j2"
_TIMESTAMP_RE = re.compile(r"^Last updated: (?P<value>\S+)\s*$", re.MULTILINE)
_CUSTOM_HEADING_RE = re.compile(rf"^##\s+{re.escape(CUSTOM_HEADING)}\s*$", re.IGNORECASE)
_SECTION_BREAK_RE = re.compile(r"^#{1,2}\s")


@dataclass(frozen=True)
class SectionBlock:
    key: str
    block: str


class SectionMarkers:
    """Wraps and reads back the managed blocks of a generated file."""

    BEGIN_FMT = "<!-- guidesync:begin:{key} -->"
    END_FMT = "<!-- guidesync:end:{key} -->"
    _BEGIN_TOKEN = "<!-- guidesync:begin:"
    END_TOKEN = "<!-- guidesync:end:"

    def wrap(self, key: str, body: str) -> str:
        begin = self.BEGIN_FMT.format(key=key)
        end = self.END_FMT.format(key=key)
        return f"{begin}\n{body.strip()}\n{end}"

    def is_managed(self, markdown: str) -> bool:
        return self._BEGIN_TOKEN in markdown

    def keys(self, markdown: str) -> List[str]:
        """Return the managed block keys in document order."""
        return re.findall(r"<!-- guidesync:begin:(\S+?) -->", markdown)


def extract_custom_section(markdown: str, markers: SectionMarkers | None = None) -> Optional[str]:
    """Return the body under the Project-Specific Guidelines heading, if non-empty.

    In a file guidesync generated the section is always last, so it runs to
    the end of the file. In a hand-written file it stops at the next level one
    or two heading outside a code fence.
    """
    markers = markers or SectionMarkers()
    managed = markers.is_managed(markdown)
    lines = markdown.splitlines(keepends=True)

    # Guideline payloads may contain the heading too; only look past the last managed block.
    first = 0
    if managed:
        for index, line in enumerate(lines):
            if line.strip().startswith(markers.END_TOKEN):
                first = index + 1

    in_fence = False
    start: Optional[int] = None
    for index in range(first, len(lines)):
        line = lines[index]
        stripped = line.strip()
        if stripped.startswith(("```", "~~~")):
            in_fence = not in_fence
            continue
        if not in_fence and _CUSTOM_HEADING_RE.match(stripped):
            start = index + 1
            break
    if start is None:
        return None

    end = len(lines)
    if not managed:
        in_fence = False
        for index in range(start, len(lines)):
            stripped = lines[index].strip()
            if stripped.startswith(("```", "~~~")):
                in_fence = not in_fence
                continue
            if not in_fence and _SECTION_BREAK_RE.match(stripped):
                end = index
                break

    body = "".join(lines[start:end]).lstrip("\n").rstrip()
    if not body.strip() or body.strip() == CUSTOM_HINT:
        return None
    return body


class Merger:
    """Renders the primary output file from fetched documents."""

    def __init__(
        self,
        source: str,
        *,
        templates_dir: Path | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.source = source
        self.markers = SectionMarkers()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._env = Environment(
            loader=FileSystemLoader(str(templates_dir or Path(__file__).with_name("templates"))),
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
        )

    def merge(
        self,
        descriptor: ProjectDescriptor,
        results: Sequence[FetchResult],
        existing_output: Optional[str] = None,
        *,
        preserve_custom: bool = True,
    ) -> MergedOutput:
        sections, omitted = self._build_sections(results)

        preserved: Optional[str] = None
        if existing_output and preserve_custom:
            preserved = extract_custom_section(existing_output, self.markers)

        languages = ", ".join(tag.value for tag in descriptor.sorted_languages) or "none"
        body = self._render(sections, languages, preserved, self._timestamp())

        # Reuse the previous timestamp when nothing else changed so reruns are byte-stable.
        if existing_output:
            match = _TIMESTAMP_RE.search(existing_output)
            if match:
                previous = self._render(sections, languages, preserved, match.group("value"))
                if previous == existing_output:
                    body = previous

        return MergedOutput(
            project_path=descriptor.path,
            body=body,
            preserved_custom_section=preserved,
            omitted=tuple(omitted),
        )

    # ------------------------------------------------------------------
    # Helpers

    def _build_sections(
        self, results: Sequence[FetchResult]
    ) -> Tuple[List[SectionBlock], List[FetchFailure]]:
        sections: List[SectionBlock] = []
        omitted: List[FetchFailure] = []
        for result in results:
            key = result.reference.key
            if isinstance(result, FetchedDocument):
                sections.append(SectionBlock(key=key, block=self.markers.wrap(key, result.content)))
                continue
            omitted.append(result)
            placeholder = (
                f"<!-- guidesync:missing {result.reference.location} -->\n"
                f"> **Missing section:** {result.describe()}. "
                "Rerun guidesync once the document is reachable."
            )
            sections.append(SectionBlock(key=key, block=self.markers.wrap(key, placeholder)))
        return sections, omitted

    def _render(
        self,
        sections: Sequence[SectionBlock],
        languages: str,
        custom: Optional[str],
        timestamp: str,
    ) -> str:
        template = self._env.get_template(_TEMPLATE_NAME)
        rendered = template.render(
            title=TITLE,
            source=self.source,
            custom_heading=CUSTOM_HEADING,
            timestamp=timestamp,
            languages=languages,
            sections=sections,
            custom=custom if custom is not None else CUSTOM_HINT,
        )
        return rendered.rstrip() + "\n"

    def _timestamp(self) -> str:
        return self._clock().astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


__all__ = ["CUSTOM_HEADING", "Merger", "SectionMarkers", "extract_custom_section"]
