from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse

from apps.api.dependencies.auth import AdminUser
from apps.api.metrics import PrometheusExporter, metrics_registry

router = APIRouter(prefix="/metrics", tags=["observability"])


@router.get("", response_class=PlainTextResponse, summary="Prometheus metrics")
async def export_metrics(request: Request, user: AdminUser) -> PlainTextResponse:
    registry = getattr(request.app.state, "metrics_registry", None) or metrics_registry
    payload = PrometheusExporter(registry).export()
    return PlainTextResponse(payload, media_type="text/plain; version=0.0.4")
