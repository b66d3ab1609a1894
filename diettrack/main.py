"""
diettrack: FastAPI backend for meal photo/text analysis.

Run with: uvicorn diettrack.main:app --reload

Architecture:
- Vision/text detection merged across providers
- Composition lookup chain (personal aliases, then global ingredients) with a short TTL cache
- Portion scaling and totals with fixed rounding rules
- Adjustments stored next to the original analysis, never over it
- At-most-one feedback per (analysis, user)
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from diettrack.api import analysis, compositions, feedback, health
from diettrack.api.deps import init_services
from diettrack.config import get_settings
from diettrack.errors import DietTrackError
from diettrack.services.supabase import SupabaseStore, get_supabase_client

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    logger.info("Starting diettrack backend...")

    store = SupabaseStore(get_supabase_client())
    init_services(app, store, settings)
    logger.info(
        f"Services ready (detection={settings.detection_strategy}, "
        f"openai={'on' if settings.openai_enabled else 'off'})"
    )

    yield

    logger.info("Shutting down diettrack backend...")


app = FastAPI(
    title="diettrack",
    description="Meal analysis & nutrition resolution API",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS - allow mobile/web clients
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DietTrackError)
async def diettrack_error_handler(request: Request, exc: DietTrackError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")
    message = exc.message if exc.expose or not settings.is_production else "Internal server error"
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": message, "code": exc.code},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{location}: {first.get('msg')}" if location else str(first.get("msg", "Invalid request"))
    return JSONResponse(
        status_code=400,
        content={"detail": message, "code": "BAD_INPUT"},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    message = "Internal server error" if settings.is_production else str(exc)
    return JSONResponse(
        status_code=500,
        content={"detail": message, "code": "INTERNAL_ERROR"},
    )


# Include routers
app.include_router(health.router)
app.include_router(analysis.router)  # /api/v1/analysis
app.include_router(feedback.router)  # /api/v1/feedback
app.include_router(compositions.router)  # /api/v1/compositions


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "diettrack",
        "version": "1.0.0",
        "description": "Meal analysis & nutrition resolution API",
        "docs": "/docs",
        "endpoints": {
            "health": "/health",
            "analysis": "/api/v1/analysis",
            "feedback": "/api/v1/feedback",
            "compositions": "/api/v1/compositions",
        },
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "diettrack.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=not settings.is_production,
    )
