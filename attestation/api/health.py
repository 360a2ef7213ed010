"""Liveness endpoint.

/health answers "is this process alive", plus the state of its optional
dependencies:

  status:      "ok", or "degraded" when a configured dependency is down
  checks:      per-dependency status (redis: ok | error | disabled)
  namespaces:  attestation backends this instance can serve

It returns 200 even when degraded.  NFT attestations keep working without
Redis, so a Redis outage should not get the container restarted.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from attestation.api.dependencies import get_container
from attestation.db.redis import redis_status
from attestation.services.container import Container

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(container: Annotated[Container, Depends(get_container)]) -> dict:
    redis = await redis_status(container.redis_client)
    return {
        "status": "degraded" if redis == "error" else "ok",
        "checks": {"redis": redis},
        "namespaces": container.registry.namespaces(),
    }
