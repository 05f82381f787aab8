"""Prometheus metrics endpoint."""

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter()


@router.get("/metrics")
async def metrics() -> Response:
    """Prometheus metrics endpoint.

    Exposes all registered Prometheus metrics including:
    - pipeline_request_latency_ms{route, status}
    - pipeline_rejections_total{route, reason}
    - audit_writes_total{outcome}
    - identity_failsafe_total
    """
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
