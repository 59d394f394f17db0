import logging
from contextlib import asynccontextmanager

import httpx
import redis.asyncio as redis
from elasticsearch import AsyncElasticsearch
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from .config import Settings
from .errors import InternalError
from .routers import embeddings, experiments, health, recommendations
from .security import verify_api_key
from .services import build_services

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = Settings()
    logging.basicConfig(level=settings.log_level)

    es_kwargs = {}
    if settings.elasticsearch_api_key:
        es_kwargs["api_key"] = settings.elasticsearch_api_key
    es = AsyncElasticsearch(settings.elasticsearch_url, **es_kwargs)
    http_client = httpx.AsyncClient()
    redis_client = redis.Redis.from_url(settings.redis_url, decode_responses=True)

    app.state.settings = settings
    app.state.services = build_services(es, settings, redis_client, http_client)
    logger.info("ScholarHub recommender started (Elasticsearch at %s)", settings.elasticsearch_url)
    try:
        yield
    finally:
        await http_client.aclose()
        await redis_client.aclose()
        await es.close()


app = FastAPI(
    title="ScholarHub Recommender",
    description="Recommendation and content-similarity engine for the ScholarHub research network",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(recommendations.router)
app.include_router(embeddings.router)
app.include_router(experiments.router)


@app.exception_handler(InternalError)
async def internal_error_handler(request: Request, exc: InternalError):
    logger.error("Internal error on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.get("/", dependencies=[Depends(verify_api_key)])
async def root():
    return {"message": "ScholarHub Recommender"}
