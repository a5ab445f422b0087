import logging
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from endgame.api import auth, feed, notifications, posts, profiles, realtime
from endgame.core.cache import close_cache, init_cache
from endgame.core.db import close_db, init_db
from endgame.services.realtime_service import registry

logger = logging.getLogger(__name__)

# Create FastAPI application
app = FastAPI(
    title="Endgame API",
    description="Social network for athletes",
    version="0.1.0",
)

# Set up CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, restrict this to specific domains
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_request_duration(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(f"{request.method} {request.url.path} -> {response.status_code} in {elapsed_ms:.1f}ms")
    return response


# Register API routers
app.include_router(auth.router)
app.include_router(profiles.router)
app.include_router(posts.router)
app.include_router(feed.router)
app.include_router(notifications.router)
app.include_router(realtime.router)


@app.on_event("startup")
async def startup_event():
    """Initialize connections on startup"""
    await init_db()
    await init_cache()


@app.on_event("shutdown")
async def shutdown_event():
    """Close subscriptions and connections on shutdown"""
    await registry.close()
    await close_cache()
    await close_db()


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy"}


@app.get("/api/version")
async def api_version():
    """API version information"""
    return {
        "version": "0.1.0",
        "name": "Endgame API",
        "endpoints": "/api/v1",
    }
