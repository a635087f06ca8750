from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from crm.metrics import PrometheusExporter, metrics_registry
from crm.metrics.exporters import CONTENT_TYPE

router = APIRouter(tags=["health"])


@router.get("/ping", summary="Liveness probe")
async def ping() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/ping/ready", summary="Readiness probe including the database")
async def ready(request: Request) -> JSONResponse:
    health_check = getattr(request.app.state, "db_health", None)
    service = getattr(request.app.state, "work_item_service", None)
    if health_check is None or service is None:
        return JSONResponse(status_code=503, content={"status": "unavailable", "database": "unconfigured"})
    if not await health_check.test_connection():
        return JSONResponse(status_code=503, content={"status": "unavailable", "database": "unreachable"})
    return JSONResponse(content={"status": "ok", "database": "ok"})


@router.get("/metrics", summary="Prometheus metrics", response_class=PlainTextResponse)
async def metrics(request: Request) -> PlainTextResponse:
    registry = getattr(request.app.state, "metrics_registry", None) or metrics_registry
    return PlainTextResponse(PrometheusExporter(registry).build_payload(), media_type=CONTENT_TYPE)
