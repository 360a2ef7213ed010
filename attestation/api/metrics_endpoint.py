"""Prometheus metrics endpoint (text exposition format, not JSON).

Exposes the HTTP metrics and the attestation_operations_total /
attestation_verifications_total counters from the default registry.
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter(tags=["observability"])


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
