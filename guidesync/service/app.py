"""FastAPI application exposing guidesync detect and sync operations."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, List, Optional

from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..config import ConfigError
from ..models import ConfirmationRequest, LanguageTag, RunResult
from ..orchestrator import Orchestrator
from ..report import as_dict


class DetectRequest(BaseModel):
    path: str
    max_depth: Optional[int] = None


class ProjectInfo(BaseModel):
    path: str
    languages: List[str]
    maturity: str


class DetectResponse(BaseModel):
    projects: List[ProjectInfo]


class SyncRequest(BaseModel):
    path: str
    source: Optional[str] = None
    languages: List[str] = []
    assume_yes: bool = False
    dry_run: bool = False
    preserve_custom: bool = True


class HealthResponse(BaseModel):
    status: str


def _default_orchestrator() -> Orchestrator:
    return Orchestrator()


def create_app(
    orchestrator_factory: Callable[[], Orchestrator] = _default_orchestrator,
) -> FastAPI:
    """Create the FastAPI application exposing guidesync operations."""

    app = FastAPI(title="guidesync", version="0.1.0")

    async def get_orchestrator() -> Orchestrator:
        return orchestrator_factory()

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.post("/detect", response_model=DetectResponse)
    async def detect(
        payload: DetectRequest,
        orchestrator: Orchestrator = Depends(get_orchestrator),
    ) -> DetectResponse:
        loop = asyncio.get_running_loop()
        projects = await loop.run_in_executor(
            None, lambda: orchestrator.detect(payload.path, max_depth=payload.max_depth)
        )
        return DetectResponse(
            projects=[
                ProjectInfo(
                    path=str(descriptor.path),
                    languages=[tag.value for tag in descriptor.sorted_languages],
                    maturity=descriptor.maturity.value,
                )
                for descriptor in projects
            ]
        )

    @app.post("/sync")
    async def sync(
        payload: SyncRequest,
        orchestrator: Orchestrator = Depends(get_orchestrator),
    ) -> Dict[str, Any]:
        languages = [LanguageTag.parse(name) for name in payload.languages]

        # No operator is attached to a request; the payload's policy answers every prompt.
        def _confirm(_: ConfirmationRequest) -> bool:
            return payload.assume_yes

        def _run_sync() -> RunResult:
            return orchestrator.run(
                payload.path,
                confirm=_confirm,
                source=payload.source,
                languages=languages,
                dry_run=payload.dry_run,
                preserve_custom=payload.preserve_custom,
            )

        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(None, _run_sync)
        return as_dict(result)

    @app.exception_handler(FileNotFoundError)
    async def file_not_found_handler(_: Any, exc: FileNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(ConfigError)
    async def config_error_handler(_: Any, exc: ConfigError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(ValueError)
    async def value_error_handler(_: Any, exc: ValueError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    return app


def run_service(host: str = "127.0.0.1", port: int = 8000) -> None:  # pragma: no cover - integration path
    import uvicorn

    uvicorn.run(create_app(), host=host, port=port)
