from fastapi import APIRouter, Request, Response

from fixflow.metrics import PrometheusExporter, metrics_registry

router = APIRouter(tags=["metrics"])


@router.get("/metrics", summary="Prometheus metrics", include_in_schema=False)
async def metrics(request: Request) -> Response:
    registry = getattr(request.app.state, "metrics_registry", metrics_registry)
    exporter = PrometheusExporter(registry)
    return Response(content=exporter.build_payload(), media_type=exporter.content_type)
