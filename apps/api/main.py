"""
Reel Credits - FastAPI Backend
Main application entry point: credit-metered video generation API.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import settings, validate_security_settings
from database import engine, Base
import models  # noqa: F401
from middleware import EmbedRefererMiddleware
from routers import (
    health,
    auth,
    embed,
    videos,
    prompts,
    billing,
    integrations,
    social,
)
from services.dispatcher import validate_dispatch_routes

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    print("🚀 Starting Reel Credits API...")
    validate_security_settings()
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print("🗄️ Database schema verified.")
        except Exception as e:
            print(f"⚠️ Database bootstrap skipped: {e}")
    missing_routes = validate_dispatch_routes()
    if missing_routes:
        print(f"⚠️ Unconfigured dispatch endpoints: {', '.join(missing_routes)}")
    if not settings.CALLBACK_SECRET:
        print("⚠️ CALLBACK_SECRET is not set; /videos/callback accepts unauthenticated reports.")
    yield
    # Shutdown
    print("👋 Shutting down API...")


app = FastAPI(
    title="Reel Credits API",
    description="Generate AI videos with prepaid credits and publish them through your CRM",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(EmbedRefererMiddleware)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(auth.router, prefix="/auth", tags=["Authentication"])
app.include_router(embed.router, prefix="/embed", tags=["Embed"])
app.include_router(videos.router, prefix="/videos", tags=["Videos"])
app.include_router(prompts.router, prefix="/prompts", tags=["Prompts"])
app.include_router(billing.router, prefix="/billing", tags=["Billing"])
app.include_router(integrations.router, prefix="/integrations", tags=["Integrations"])
app.include_router(social.router, prefix="/social", tags=["Social"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Reel Credits API",
        "version": "0.1.0",
        "status": "running"
    }
