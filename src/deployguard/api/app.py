"""HTTP surface: liveness, per-environment health, audit records and metrics.

Run with `uvicorn --factory deployguard.api.app:create_app`.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
import logging
import uuid

import anyio
from fastapi import APIRouter, FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse

from deployguard.contracts.types import HealthStatus
from deployguard.errors import ConfigurationError
from deployguard.observability.metrics import render_metrics
from deployguard.runtime import Runtime, build_runtime

logger = logging.getLogger(__name__)

router = APIRouter()


def _runtime(request: Request) -> Runtime:
    return request.app.state.runtime


@router.get("/health", tags=["health"])
async def liveness(request: Request) -> dict[str, object]:
    runtime = _runtime(request)
    settings = runtime.settings
    return {
        "status": "ok",
        "service": settings.service_name,
        "version": settings.app_version,
        "deployments_in_progress": runtime.orchestrator.in_progress(),
    }


@router.get("/health/{environment}", tags=["health"])
async def environment_health(environment: str, request: Request) -> JSONResponse:
    runtime = _runtime(request)
    try:
        descriptor = runtime.resolver.resolve(environment)
    except ConfigurationError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    verdict = await anyio.to_thread.run_sync(runtime.verifier.check_all, descriptor)
    body = verdict.model_dump(mode="json")
    body["url"] = descriptor.url
    body["breakers"] = runtime.verifier.breakers.snapshot(descriptor.name)
    status_code = 503 if verdict.status is HealthStatus.UNHEALTHY else 200
    return JSONResponse(content=body, status_code=status_code)


@router.get("/deployments", tags=["deployments"])
async def list_deployments(request: Request, limit: int = 50) -> list[dict]:
    store = _runtime(request).orchestrator.store
    records = await anyio.to_thread.run_sync(store.list_records, limit)
    return [record.model_dump(mode="json") for record in records]


@router.get("/deployments/{deployment_id}", tags=["deployments"])
async def get_deployment(deployment_id: str, request: Request) -> dict:
    store = _runtime(request).orchestrator.store
    record = await anyio.to_thread.run_sync(store.load, deployment_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Deployment not found")
    return record.model_dump(mode="json")


@router.get("/metrics", tags=["meta"])
async def metrics() -> PlainTextResponse:
    return PlainTextResponse(render_metrics(), media_type="text/plain; version=0.0.4")


def create_app(runtime: Runtime | None = None) -> FastAPI:
    """Build the app; without `runtime` one is wired from settings at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = runtime is None
        app.state.runtime = runtime or build_runtime()
        settings = app.state.runtime.settings
        logger.info(
            "service.start",
            extra={"extra": {"service": settings.service_name, "env": settings.app_env}},
        )
        try:
            yield
        finally:
            logger.info("service.stop", extra={"extra": {"service": settings.service_name}})
            if owned:
                app.state.runtime.close()

    app = FastAPI(
        title="DeployGuard",
        description="Deployment orchestration health and audit API",
        lifespan=lifespan,
    )

    @app.middleware("http")
    async def add_request_id(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        req_id = request.headers.get("x-request-id", str(uuid.uuid4()))
        request.state.req_id = req_id
        response = await call_next(request)
        response.headers["x-request-id"] = req_id
        logger.info(
            "http.response",
            extra={
                "extra": {
                    "req_id": req_id,
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                }
            },
        )
        return response

    app.include_router(router)
    return app
