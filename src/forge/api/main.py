from __future__ import annotations

from datetime import UTC, datetime
from dotenv import load_dotenv
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from ..domain.errors import GatewayError
from ..observability.metrics import metrics_middleware_factory
from .dependencies import get_config
from .routers.chat import router as chat_router
from .routers.export import router as export_router

load_dotenv()  # Provider keys (OPENAI_API_KEY, ANTHROPIC_API_KEY, ...) and limiter settings from .env


app = FastAPI(title="Forge Generation Gateway", version="0.1.0")

# Observability: request latency histogram
app.middleware("http")(metrics_middleware_factory())

app.include_router(chat_router)
app.include_router(export_router)

# Also expose the same routers under /api
app.include_router(chat_router, prefix="/api")
app.include_router(export_router, prefix="/api")

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(get_config().cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
)


@app.exception_handler(GatewayError)
def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_body().model_dump(exclude_none=True),
        headers=exc.headers,
    )


def _health() -> dict:
    config = get_config()
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
        "components": {
            "api": "ok",
            "rate_limit_store": "redis" if config.redis_url else "in-memory",
            "rate_limit": "disabled" if config.rate_limit_disabled else "enabled",
        },
    }


@app.get("/")
def root():
    return {"name": "Forge Generation Gateway", "version": "0.1.0"}


@app.get("/health")
def health():
    return _health()


@app.get("/metrics")
def metrics() -> Response:
    data = generate_latest(REGISTRY)
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)


@app.get("/api/health")
def api_health():
    return _health()


@app.get("/api/metrics")
def api_metrics() -> Response:
    data = generate_latest(REGISTRY)
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
