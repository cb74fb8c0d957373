from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from gatekeeper import __version__
from gatekeeper.core.config import get_settings
from gatekeeper.core.logger import setup_logger
from gatekeeper.api.middleware import RateLimiter, RateLimitMiddleware
from gatekeeper.api.routers import subjects, dashboard, notifications, health

settings = get_settings()

setup_logger("gatekeeper", log_dir=settings.log_dir, level=settings.log_level)

app = FastAPI(
    title=settings.app_name,
    description="Moderation workflow for user-submitted content",
    version=__version__,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# Rate limiting (added first so CORS headers also reach 429 responses)
app.state.rate_limiter = RateLimiter(settings)
app.add_middleware(RateLimitMiddleware)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.debug else settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(subjects.router, prefix="/api")
app.include_router(dashboard.router, prefix="/api")
app.include_router(notifications.router, prefix="/api")
app.include_router(health.router)


@app.get("/")
async def root():
    return {
        "name": settings.app_name,
        "version": __version__,
        "docs": "/docs" if settings.debug else None,
    }


@app.on_event("shutdown")
async def close_rate_limiter():
    await app.state.rate_limiter.close()
