import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from storymint.core.db import ConnectionManager
from storymint.api.v1.royalties import router as royalties_router
from storymint.api.v1.mints import router as mints_router
from storymint.api.v1.outbox import router as outbox_router
from storymint.core.config import PROJECT_NAME, VERSION
from storymint.core.errors import ServiceError
from storymint.core.exception_handlers import setup_exception_handlers

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
log = logging.getLogger("storymint")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handles startup and shutdown events."""
    log.info(f"Starting {PROJECT_NAME} v{VERSION}...")
    db = ConnectionManager(generate_schemas=True)
    await db.connect() # Retries with backoff, fails startup if the DB never answers
    app.state.db = db
    yield
    await db.close()
    log.info(f"{PROJECT_NAME} stopped.")

app = FastAPI(
    title=PROJECT_NAME,
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)

# Include routers for modular API structure
app.include_router(royalties_router, prefix="/api/v1/royalties", tags=["Royalties"])
app.include_router(mints_router, prefix="/api/v1/stories", tags=["Minting"])
app.include_router(outbox_router, prefix="/api/v1/outbox", tags=["Outbox"])


setup_exception_handlers(app)

@app.get("/health", status_code=status.HTTP_200_OK)
async def health_check(request: Request):
    """Health check with database latency."""
    db = getattr(request.app.state, "db", None)
    if db is not None and not db.is_connected:
        # One quick attempt so the health check recovers once the database is back
        try:
            await db.connect(max_retries=1)
        except ServiceError as e:
            log.warning(f"Health check could not reconnect: {e.message}")
    latency_ms = await db.measure_latency() if db is not None else None
    body = {
        "status": "ok" if latency_ms is not None else "degraded",
        "app_name": PROJECT_NAME,
        "database": {
            **(db.state() if db is not None else {"is_connected": False}),
            "latency_ms": latency_ms,
        },
    }
    if latency_ms is None:
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=body)
    return body
