from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator

import pytest

from tests._fixtures.project_builder import ProjectBuilder


@pytest.fixture
def project_builder(tmp_path: Path) -> ProjectBuilder:
    """Provide a workspace and guideline source rooted at the pytest tmp_path."""
    return ProjectBuilder(tmp_path)


@pytest.fixture(autouse=True)
def _clear_source_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("GUIDESYNC_SOURCE", raising=False)


@pytest.fixture(autouse=True)
def _reset_guidesync_logger() -> Iterator[None]:
    """Drop handlers installed by CLI tests so they never outlive captured streams."""
    yield
    logger = logging.getLogger("guidesync")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
