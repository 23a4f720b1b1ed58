"""Main FastAPI application."""

from contextlib import asynccontextmanager
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from bizagent.config import config
from bizagent.database import init_db
from bizagent.logging_config import logger
from bizagent.metrics import api_requests_total, api_request_duration
from bizagent.redis_client import REDIS_AVAILABLE
from bizagent.health import router as health_router, SERVICE_VERSION
from bizagent.routers.agent import router as agent_router
from bizagent.routers.core import router as core_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    logger.info("application_starting", version=SERVICE_VERSION)
    init_db()
    logger.info("database_initialized")
    logger.info("redis_available", available=REDIS_AVAILABLE)
    logger.info("openai_configured", configured=config.has_openai_key(), provider=config.AI_PROVIDER)
    logger.info("heuristic_replies", enabled=config.AGENT_HEURISTIC_REPLIES)

    yield

    logger.info("application_shutting_down")


app = FastAPI(
    title="bizagent API",
    description="Business-operations chat agent for service businesses",
    version=SERVICE_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def record_request_metrics(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    route = request.scope.get("route")
    endpoint = getattr(route, "path", None) or "unmatched"
    api_requests_total.labels(method=request.method, endpoint=endpoint, status=response.status_code).inc()
    api_request_duration.observe(time.perf_counter() - started)
    return response


app.include_router(core_router)
app.include_router(health_router)
app.include_router(agent_router)


# GET /metrics
# Gets: nothing
# Returns: Prometheus text exposition
# Example:
#   curl http://localhost:8000/metrics
@app.get("/metrics", include_in_schema=False)
async def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("bizagent.main:app", host="0.0.0.0", port=8000, reload=config.DEBUG)
