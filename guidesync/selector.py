"""Maps a project descriptor to the ordered guideline documents it needs."""

from __future__ import annotations

import posixpath
from dataclasses import dataclass
from pathlib import Path
from typing import List, Tuple
from urllib.parse import urlsplit, urlunsplit

from .config import DocumentsConfig, GuideSyncConfig
from .models import DocumentKind, DocumentReference, LanguageTag, Maturity, ProjectDescriptor


@dataclass(frozen=True)
class DocumentCatalog:
    """Resolves document kinds to concrete locations under a source."""

    source: str
    base: str = DocumentsConfig.base
    guideline: str = DocumentsConfig.guideline
    setup: str = DocumentsConfig.setup

    @classmethod
    def from_config(cls, config: GuideSyncConfig) -> "DocumentCatalog":
        return cls(
            source=config.require_source(),
            base=config.documents.base,
            guideline=config.documents.guideline,
            setup=config.documents.setup,
        )

    def reference(self, kind: DocumentKind, language: LanguageTag | None = None) -> DocumentReference:
        if kind is DocumentKind.BASE:
            template = self.base
        elif language is None:
            raise ValueError(f"{kind.value} documents require a language")
        elif kind is DocumentKind.SETUP_PROMPT:
            template = self.setup
        else:
            template = self.guideline
        relative = template.format(language=language.slug if language else "")
        return DocumentReference(kind=kind, language=language, location=self._join(relative))

    def _join(self, relative: str) -> str:
        if "://" in relative or Path(relative).is_absolute():
            return relative
        if "://" in self.source:
            parts = urlsplit(self.source)
            path = posixpath.join(parts.path.rstrip("/") + "/", relative)
            return urlunsplit((parts.scheme, parts.netloc, path, parts.query, parts.fragment))
        return str(Path(self.source) / relative)


class DocumentSelector:
    """Computes the deterministic document list for one project."""

    def __init__(self, catalog: DocumentCatalog) -> None:
        self.catalog = catalog

    def select(self, descriptor: ProjectDescriptor) -> Tuple[DocumentReference, ...]:
        references: List[DocumentReference] = [self.catalog.reference(DocumentKind.BASE)]
        for language in descriptor.sorted_languages:
            if descriptor.maturity is Maturity.NEW:
                references.append(self.catalog.reference(DocumentKind.SETUP_PROMPT, language))
            references.append(self.catalog.reference(DocumentKind.LANGUAGE_GUIDELINE, language))
        return tuple(references)


__all__ = ["DocumentCatalog", "DocumentSelector"]
