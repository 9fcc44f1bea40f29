"""
FastAPI application exposing Kubernetes probe endpoints.

Features
--------
- Root endpoint (`/`) with the service name, version and environment.
- Liveness probe (`/health`, also `/livez` and `/healthz`). Always 200 while the
  process can answer; Kubernetes restarts the Pod when this times out.
- Readiness probe (`/ready`, also `/readyz`). 200 when every dependency check
  is ``ok``, 503 otherwise, with the failing checks listed in the body.
- Metrics (`/metrics`) in Prometheus text format, or JSON with `?format=json`.
  HTTP request metrics come from `prometheus-fastapi-instrumentator`.
- System info (`/api/info`) with interpreter, platform and memory figures.

Intended Use
------------
Run behind an Ingress inside a Kind cluster or on EKS/GKE. Wire `/health`
and `/ready` to the Pod's liveness and readiness probes and let Prometheus
scrape `/metrics`.

Notes
-----
- Probe handlers only read cached state. Dependency checks run in the
  background (see `probe_service.checks`) on their own schedule.
- A metric producer that fails is skipped; the scrape still answers 200 and
  reports the count in `X-Metrics-Skipped`.
"""
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from enum import Enum
import logging

from fastapi import APIRouter, FastAPI, Query, Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry
from prometheus_fastapi_instrumentator import Instrumentator
from starlette.exceptions import HTTPException as StarletteHTTPException
import uvicorn

from .checks import DependencyMonitor, tcp_check
from .config import Settings
from .exposition import render_text, resolve_conflicts
from .logging import setup_logging
from .probes import ProbeContext, ReadinessTracker
from .runtime import MB, ProcessInfo, register_process_metrics
from .schemas import (
    ErrorResponse,
    InfoResponse,
    LivenessResponse,
    MemoryInfo,
    MetricsResponse,
    ReadinessResponse,
    RootResponse,
)

logger = logging.getLogger(__name__)

METRICS_PATH = "/metrics"
SKIPPED_HEADER = "X-Metrics-Skipped"

router = APIRouter()


class MetricsFormat(str, Enum):
    TEXT = "text"
    JSON = "json"


def _now():
    return datetime.now(timezone.utc).isoformat()


@router.get("/", response_model=RootResponse)
def root(request: Request):
    settings = request.app.state.settings
    return RootResponse(
        message=f"Welcome to {settings.app_name}!",
        version=settings.app_version,
        environment=settings.app_env,
        timestamp=_now(),
    )


@router.get("/health", response_model=LivenessResponse)
@router.get("/livez", response_model=LivenessResponse, include_in_schema=False)
@router.get("/healthz", response_model=LivenessResponse, include_in_schema=False)
async def health(request: Request):
    # cached state only; must not wait on the threadpool
    state = request.app.state.probes.query_liveness()
    return JSONResponse(content=LivenessResponse.from_state(state).to_content())


@router.get("/ready", response_model=ReadinessResponse, responses={503: {"model": ReadinessResponse}})
@router.get("/readyz", response_model=ReadinessResponse, include_in_schema=False)
async def ready(request: Request):
    state = request.app.state.probes.query_readiness()
    return JSONResponse(
        content=ReadinessResponse.from_state(state).to_content(),
        status_code=200 if state.ready else 503,
    )


@router.get(METRICS_PATH)
def metrics(request: Request, fmt: MetricsFormat = Query(MetricsFormat.TEXT, alias="format")):
    result = request.app.state.probes.query_metrics()
    if fmt is MetricsFormat.JSON:
        return JSONResponse(
            content=MetricsResponse.from_result(result).to_content(),
            headers={SKIPPED_HEADER: str(result.skipped)},
        )
    http_registry = request.app.state.http_registry
    result = resolve_conflicts(result, http_registry)
    headers = {SKIPPED_HEADER: str(result.skipped)}
    return Response(
        content=render_text(result, http_registry),
        media_type=CONTENT_TYPE_LATEST,
        headers=headers,
    )


@router.get("/api/info", response_model=InfoResponse)
def info(request: Request):
    settings = request.app.state.settings
    process = request.app.state.process_info
    return InfoResponse(
        application=settings.app_name,
        version=settings.app_version,
        environment=settings.app_env,
        python_version=process.python_version(),
        platform=process.platform(),
        architecture=process.architecture(),
        pid=process.pid,
        memory=MemoryInfo(
            used_mb=round(process.resident_memory_bytes() / MB),
            virtual_mb=round(process.virtual_memory_bytes() / MB),
            system_total_mb=round(process.system_memory_total_bytes() / MB),
        ),
    )


async def not_found_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404:
        body = ErrorResponse(error="Not Found", path=request.url.path)
        return JSONResponse(content=body.to_content(), status_code=404)
    return JSONResponse(content={"detail": exc.detail}, status_code=exc.status_code, headers=exc.headers)


async def server_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    body = ErrorResponse(error="Internal Server Error", message=str(exc))
    return JSONResponse(content=body.to_content(), status_code=500)


def create_app(settings=None, context=None, process_info=None):
    """
    Build the application around a single `ProbeContext`.

    When no context is given one is created with the configured readiness
    dependencies and the process metrics registered.
    """
    settings = settings or Settings.from_env()
    setup_logging(settings.log_level)
    process_info = process_info or ProcessInfo()
    if context is None:
        context = ProbeContext(readiness=ReadinessTracker(settings.expected_dependencies))
        register_process_metrics(context.metrics, process_info, context.liveness)

    monitor = DependencyMonitor(
        context.readiness,
        interval=settings.check_interval_seconds,
        timeout=settings.check_timeout_seconds,
    )
    for name, (host, port) in settings.tcp_checks.items():
        monitor.add(name, tcp_check(host, port))

    @asynccontextmanager
    async def lifespan(app):
        monitor.start()
        logger.info("%s %s started (%s)", settings.app_name, settings.app_version, settings.app_env)
        try:
            yield
        finally:
            await monitor.stop()
            logger.info("%s stopped", settings.app_name)

    app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
    app.state.settings = settings
    app.state.probes = context
    app.state.monitor = monitor
    app.state.process_info = process_info
    app.state.http_registry = CollectorRegistry()

    if settings.instrument_http:
        # instrument on a per-app registry; /metrics renders it after the probe samples
        Instrumentator(
            registry=app.state.http_registry,
            excluded_handlers=[METRICS_PATH],
        ).instrument(app)
    else:
        app.state.http_registry = None

    app.add_exception_handler(StarletteHTTPException, not_found_handler)
    app.add_exception_handler(Exception, server_error_handler)
    app.include_router(router)
    return app


def run():
    settings = Settings.from_env()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_level=settings.log_level.lower())


app = create_app()


if __name__ == "__main__":
    run()
