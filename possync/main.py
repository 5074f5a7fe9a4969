import logging
from datetime import datetime
from fastapi import FastAPI
from contextlib import asynccontextmanager

from possync.config.settings import settings
from possync.config.database import init_db
from possync.core.logging import setup_logging
from possync.core.middleware import setup_middleware
from possync.api.router import api_router

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    setup_logging(settings.log_level)
    init_db()
    logger.info(f"🚀 {settings.app_name} starting")
    logger.info(f"📍 Version: {settings.version}")
    logger.info(f"🌍 Environment: {'Development' if settings.debug else 'Production'}")
    
    yield
    
    # Shutdown
    logger.info(f"🛑 {settings.app_name} shutting down")

# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=settings.version,
    description="Central reconciliation service for offline POS terminals",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan
)

# Setup middleware
setup_middleware(app)

# Include routers
app.include_router(api_router)

# Root endpoint
@app.get("/")
async def root():
    return {
        "message": f"🚀 {settings.app_name}",
        "version": settings.version,
        "status": "running",
        "docs": "/docs" if settings.debug else "Disabled in production",
        "api": "/api",
        "health": "/health"
    }

@app.get("/health")
async def health_check():
    return {
        "status": "ok",
        "version": settings.version,
        "timestamp": datetime.utcnow().isoformat()
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "possync.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )
