"""Health router – liveness and readiness probes.

GET /health
    Process is up. Never touches storage.

GET /health/ready
    Elasticsearch and the Redis cache answer a ping; 503 otherwise.
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

router = APIRouter(tags=["health"])

logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    status: str


@router.get("/health", response_model=HealthResponse, status_code=200)
async def healthcheck():
    return {"status": "ok"}


@router.get("/health/ready", response_model=HealthResponse)
async def readiness(request: Request):
    services = getattr(request.app.state, "services", None)
    reachable = False
    if services is not None:
        try:
            reachable = bool(await services.es.ping()) and await services.cache.ping()
        except Exception:
            logger.warning("Readiness ping failed", exc_info=True)
    if not reachable:
        return JSONResponse(status_code=503, content={"status": "unavailable"})
    return {"status": "ok"}
