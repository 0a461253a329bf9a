"""
NYC Spatial Joins - FastAPI Application

Mounts the report routes under /api/v1 and maps report errors onto HTTP
status codes: bad columns, strategies or parameters are 400, database
failures are 503.
"""

from contextlib import asynccontextmanager
from typing import List

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config.database import test_connection
from config.settings import get_settings
from spatial_joins.api.routes import router
from spatial_joins.errors import QueryExecutionError, SpatialJoinError
from spatial_joins.schema import LAYOUTS
from spatial_joins.strategies import JoinStrategy
from spatial_joins.utils.logging import setup_logging

settings = get_settings()
logger = setup_logging("api")

API_PREFIX = "/api/v1"
LOCAL_ORIGINS = ["http://localhost:3000", "http://127.0.0.1:3000"]


def cors_origins(raw: str) -> List[str]:
    """Comma-separated CORS_ALLOW_ORIGINS, or the local dev origins when unset."""
    return [origin.strip() for origin in (raw or "").split(",") if origin.strip()] or LOCAL_ORIGINS


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.API_TITLE} v{settings.API_VERSION} ({settings.ENVIRONMENT})")
    if not test_connection():
        # Serve anyway; /health reports the database as disconnected
        logger.error("PostGIS unreachable on startup")
    yield
    logger.info("Shutting down API")


app = FastAPI(
    title=settings.API_TITLE,
    version=settings.API_VERSION,
    description=settings.API_DESCRIPTION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins(settings.CORS_ALLOW_ORIGINS),
    allow_credentials=True,
    allow_methods=["GET", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(router, prefix=API_PREFIX)


@app.exception_handler(QueryExecutionError)
async def query_failed(request: Request, exc: QueryExecutionError):
    logger.error(f"{request.url.path} failed in the database: {exc}")
    return JSONResponse(status_code=503, content={"detail": f"Report query failed: {exc}"})


@app.exception_handler(SpatialJoinError)
@app.exception_handler(ValueError)
async def invalid_report(request: Request, exc: Exception):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.get("/")
async def root():
    """Service summary with the report endpoints and what they accept."""
    return {
        "name": settings.API_TITLE,
        "version": settings.API_VERSION,
        "description": settings.API_DESCRIPTION,
        "docs": "/docs" if settings.DEBUG else "disabled in production",
        "layouts": sorted(LAYOUTS),
        "strategies": [strategy.value for strategy in JoinStrategy],
        "endpoints": {
            "health": "/health",
            "ratio_report": f"{API_PREFIX}/reports/ratio",
            "proximity_report": f"{API_PREFIX}/reports/proximity",
            "audit_report": f"{API_PREFIX}/reports/audit",
            "layouts": f"{API_PREFIX}/metadata/layouts",
        },
    }


@app.get("/health")
async def health_check():
    db_healthy = test_connection()
    return JSONResponse(
        status_code=200 if db_healthy else 503,
        content={
            "status": "healthy" if db_healthy else "degraded",
            "database": "connected" if db_healthy else "disconnected",
            "environment": settings.ENVIRONMENT,
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "spatial_joins.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
