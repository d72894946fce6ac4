from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from queueline.metrics import PrometheusExporter, metrics_registry

router = APIRouter(tags=["observability"])

exporter = PrometheusExporter(metrics_registry)


@router.get("/metrics", response_class=PlainTextResponse, summary="Prometheus metrics")
async def metrics() -> PlainTextResponse:
    return PlainTextResponse(exporter.build_payload(), media_type=exporter.content_type)
