"""Main FastAPI application entry point."""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ranking_engine.api.gameweeks import router as gameweeks_router
from ranking_engine.api.leagues import router as leagues_router
from ranking_engine.api.ranks import router as ranks_router
from ranking_engine.config import get_settings
from ranking_engine.db import close_pool, init_pool
from ranking_engine.services.result_cache import get_result_cache

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Prediction League Ranking Engine",
    description="Mini-league tables, season standings and global ranks for match predictions",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(leagues_router)
app.include_router(ranks_router)
app.include_router(gameweeks_router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint for container orchestration."""
    return {"status": "healthy"}


@app.on_event("startup")
async def startup_event() -> None:
    """Open the database pool when configured."""
    logger.info("Starting ranking engine")
    logger.info(f"CORS origins: {settings.cors_origins_list}")
    logger.info(f"Result cache: {get_result_cache().stats()}")

    if not settings.database_url:
        logger.warning("DATABASE_URL not set; data endpoints will answer 503")
        return
    try:
        await init_pool()
    except Exception as e:
        logger.error(f"Failed to initialize database pool: {type(e).__name__}: {e}")


@app.on_event("shutdown")
async def shutdown_event() -> None:
    """Cleanup on shutdown."""
    logger.info("Shutting down ranking engine")
    await close_pool()
