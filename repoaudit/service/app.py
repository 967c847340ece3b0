"""FastAPI application entrypoint for repoaudit service mode."""

from __future__ import annotations

import json
from dataclasses import replace
from typing import Any, AsyncIterator, Callable, Dict, Optional

from fastapi import Depends, FastAPI, Query
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from ..config import ConfigError, ProviderConfig, load_config, resolve_provider
from ..fetcher import FetchError, parse_repo_url
from ..logging import get_logger
from ..models import RepoRef
from ..pipeline import AuditError, Auditor, AuditTimeoutError

logger = get_logger("service")


class AuditRequest(BaseModel):
    repo_url: str
    ref: Optional[str] = None
    github_token: Optional[str] = None
    provider: Optional[str] = None
    model: Optional[str] = None
    refresh: bool = False


class AuditResponse(BaseModel):
    from_cache: bool
    revision: Optional[str] = None
    report: Dict[str, Any]


class HealthResponse(BaseModel):
    status: str


def _default_auditor() -> Auditor:
    return Auditor(load_config())


def create_app(auditor_factory: Callable[[], Auditor] = _default_auditor) -> FastAPI:
    """Create the FastAPI application exposing audit operations."""

    app = FastAPI(title="repoaudit", version="0.1.0")
    app.state.auditor = None

    async def get_auditor() -> Auditor:
        # One auditor per app so background stream runs stay referenced.
        if app.state.auditor is None:
            app.state.auditor = auditor_factory()
        return app.state.auditor

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.post("/audit")
    async def audit(
        payload: AuditRequest,
        stream: bool = Query(False),
        auditor: Auditor = Depends(get_auditor),
    ):  # type: ignore[no-untyped-def]
        repo = parse_repo_url(payload.repo_url, payload.ref)
        provider = _provider_for(auditor, payload)
        if stream:
            events = _sse_events(auditor, repo, payload, provider)
            return StreamingResponse(
                events,
                media_type="text/event-stream",
                headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
            )
        outcome = await auditor.audit_repository(
            repo,
            token=payload.github_token,
            provider=provider,
            force_refresh=payload.refresh,
        )
        return AuditResponse(
            from_cache=outcome.from_cache,
            revision=outcome.revision,
            report=outcome.report.to_dict(),
        )

    @app.get("/cache/stats")
    async def cache_stats(auditor: Auditor = Depends(get_auditor)) -> Dict[str, Any]:
        stats = await auditor.cache_stats()
        if stats is None:
            return {"enabled": False}
        return {"enabled": True, **stats}

    @app.exception_handler(ValueError)
    async def value_error_handler(_: Any, exc: ValueError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(ConfigError)
    async def config_error_handler(_: Any, exc: ConfigError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(FetchError)
    async def fetch_error_handler(_: Any, exc: FetchError) -> JSONResponse:
        status = exc.status if exc.status and 400 <= exc.status < 500 else 502
        return JSONResponse(status_code=status, content={"detail": str(exc), "status": exc.status})

    @app.exception_handler(AuditError)
    async def audit_error_handler(_: Any, exc: AuditError) -> JSONResponse:
        status = 504 if isinstance(exc, AuditTimeoutError) else 500
        return JSONResponse(status_code=status, content={"detail": str(exc)})

    return app


def _provider_for(auditor: Auditor, payload: AuditRequest) -> ProviderConfig:
    settings = auditor.config.provider
    if payload.provider:
        settings = replace(settings, name=payload.provider.lower(), model=None)
    return resolve_provider(settings, payload.model)


async def _sse_events(
    auditor: Auditor, repo: RepoRef, payload: AuditRequest, provider: ProviderConfig
) -> AsyncIterator[str]:
    stream = auditor.stream_audit(
        repo,
        token=payload.github_token,
        provider=provider,
        force_refresh=payload.refresh,
    )
    async for event in stream:
        data = event.to_dict()
        if event.kind == "complete":
            data["type"] = "result"
        yield f"data: {json.dumps(data)}\n\n"


def run_service(host: str = "0.0.0.0", port: int = 8000) -> None:  # pragma: no cover - integration path
    import uvicorn

    logger.info("Starting repoaudit service on %s:%d", host, port)
    uvicorn.run(create_app(), host=host, port=port)


__all__ = ["AuditRequest", "AuditResponse", "create_app", "run_service"]
