"""
FastAPI application for the content queue admin API.

This module sets up the app with CORS, the admin queue router and
Redis cleanup on shutdown.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError

from medtour.config import config
from medtour.queue.connection import close_redis_connection
from medtour.routes.admin import router as admin_queue_router
from medtour.utils.logging import api_logger as logger, configure_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(config.LOG_LEVEL)
    logger.info(
        "API starting",
        environment=config.ENVIRONMENT,
        redis_configured=config.redis_configured,
        supabase_configured=config.supabase_configured,
    )
    yield
    await close_redis_connection()
    logger.info("API stopped")


app = FastAPI(
    title="Content Queue API",
    description="Admin API for the medical-tourism content generation queue",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(admin_queue_router)


@app.exception_handler(RedisError)
async def redis_error_handler(request: Request, exc: RedisError):
    """The queue store is down: tell the caller instead of pretending it worked."""
    logger.error("Queue store unavailable", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=503, content={"detail": f"Queue store unavailable: {exc}"})


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "environment": config.ENVIRONMENT,
        "redis_configured": config.redis_configured,
        "supabase_configured": config.supabase_configured,
    }
