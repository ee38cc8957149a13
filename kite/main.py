"""
Kite Score: Lender API

Portable credit scores from on-chain, developer and bank signals,
with signed attestations and score-change webhooks for lenders.

Start with:
    uvicorn kite.main:app --host 0.0.0.0 --port 8000
"""
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import structlog

from kite.config import settings

structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
)
logger = structlog.get_logger()

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("kite_starting", version=VERSION, environment=settings.ENVIRONMENT,
                store=settings.STORE_BACKEND)

    # Fail fast on an insecure production secret
    settings.attestation_secret

    if settings.STORE_BACKEND != "memory":
        try:
            from kite.db.neo4j import init_schema
            init_schema()
        except Exception as e:
            logger.warning("neo4j_init_failed", error=str(e))

    yield

    from kite.compute.pipeline import shutdown as pipeline_shutdown
    await pipeline_shutdown()
    if settings.STORE_BACKEND != "memory":
        from kite.db.neo4j import close
        close()
    logger.info("kite_stopped")


app = FastAPI(
    title="Kite Score",
    description="Portable creditworthiness scores with signed attestations and lender webhooks.",
    version=VERSION,
    lifespan=lifespan,
)


@app.middleware("http")
async def request_middleware(request: Request, call_next):
    # Lenders may pass their own id to correlate with their logs
    request_id = request.headers.get("X-Request-Id", "")[:64] or uuid.uuid4().hex[:12]
    request.state.request_id = request_id
    start = time.perf_counter()

    response = await call_next(request)

    duration_ms = round((time.perf_counter() - start) * 1000, 2)
    response.headers["X-Request-Id"] = request_id
    response.headers["X-Response-Time"] = f"{duration_ms}ms"
    if request.url.path == "/health":
        return response

    log = logger.bind(request_id=request_id, path=request.url.path)
    lender_id = getattr(request.state, "lender_id", None)
    if lender_id:
        log = log.bind(lender_id=lender_id)
    if request.url.path.startswith("/v1/score/by-wallet/") and request.method == "GET":
        log = log.bind(wallet_address=request.url.path.rsplit("/", 1)[-1])

    if response.status_code >= 500:
        log.error("request_failed", method=request.method, status=response.status_code,
                  duration_ms=duration_ms)
    else:
        log.info("request", method=request.method, status=response.status_code,
                 duration_ms=duration_ms)
    return response


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("unhandled_exception",
                 path=request.url.path,
                 request_id=getattr(request.state, "request_id", None),
                 lender_id=getattr(request.state, "lender_id", None),
                 error=str(exc),
                 type=type(exc).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "request_id": getattr(request.state, "request_id", "unknown"),
        },
    )


# === Routers ===

from kite.api.lender import router as lender_router  # noqa: E402
from kite.api.score import router as score_router  # noqa: E402

app.include_router(lender_router)
app.include_router(score_router)


@app.get("/health")
async def health():
    return {"status": "ok", "version": VERSION}
