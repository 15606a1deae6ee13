import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .db import init_db
from .logging_config import setup_logging
from .routers import connections, data_points, sync

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title="Health Sync API",
    version="0.1.0",
    description="Incremental sync of Oura and Withings data",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sync.router, prefix="/api/v1/sync", tags=["sync"])
app.include_router(
    connections.router, prefix="/api/v1/connections", tags=["connections"]
)
app.include_router(
    data_points.router, prefix="/api/v1/data-points", tags=["data-points"]
)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unexpected error handling %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Unexpected server error",
            "details": str(exc),
        },
    )


@app.get("/health")
def health_check():
    return {"status": "ok", "service": "healthsync"}
