from __future__ import annotations

from contextlib import asynccontextmanager
from time import perf_counter
from typing import AsyncIterator, Awaitable, Callable, Optional
from uuid import uuid4

from fastapi import FastAPI, Request, Response

from hostcraft.config import get_settings
from hostcraft.dependencies import get_executor
from hostcraft.logger import configure_logging, get_logger
from hostcraft.metrics import observe_http_request
from hostcraft.routes import (
    backups,
    deployments,
    events,
    health,
    hosts,
    secrets,
    system,
    workloads,
)
from hostcraft.services.vault import get_vault

settings = get_settings()
configure_logging(settings.log_level, settings.log_file)
logger = get_logger("api")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info("app.startup", "Starting app", env=settings.app_env, version=settings.app_version)
    get_vault()
    yield
    await get_executor().close()
    logger.info("app.shutdown", "Shutting down app")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)


@app.middleware("http")
async def request_logging(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    request_id = request.headers.get("x-request-id") or str(uuid4())
    client: Optional[str] = None
    if request.client:
        client = request.client.host

    start = perf_counter()
    with logger.context(request_id=request_id):
        logger.info(
            "request.start",
            "Started",
            method=request.method,
            path=request.url.path,
            client=client,
        )
        try:
            response = await call_next(request)
        except Exception as exc:
            duration_ms = (perf_counter() - start) * 1000
            logger.exception(
                "request.error",
                "Failed",
                method=request.method,
                path=request.url.path,
                duration_ms=round(duration_ms, 1),
                error_type=type(exc).__name__,
            )
            raise

        duration = perf_counter() - start
        route = request.scope.get("route")
        path_template = getattr(route, "path", request.url.path)
        observe_http_request(
            method=request.method,
            path=path_template,
            status=response.status_code,
            duration_seconds=duration,
        )
        logger.info(
            "request.complete",
            "Completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(duration * 1000, 1),
        )

    response.headers["X-Request-ID"] = request_id
    return response


app.include_router(system.router)
app.include_router(hosts.router)
app.include_router(workloads.router)
app.include_router(deployments.router)
app.include_router(backups.router)
app.include_router(health.router)
app.include_router(secrets.router)
app.include_router(events.router)
