"""
FastAPI application entry point.

This is the main application that ties together all components:
- API routes for triggering financing runs
- Database lifecycle management
- Error handling and logging
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from financing import __version__
from financing.api.routes import financing, health
from financing.config import get_settings
from financing.infrastructure.database import close_db, init_db

# Configure logging
logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    
    Handles startup and shutdown tasks:
    - Initialize database tables
    - Optionally run one financing cycle
    - Clean up on shutdown
    """
    settings = get_settings()
    
    logger.info(f"Starting financing engine v{__version__}")
    logger.info(f"Database backend: {settings.database_backend}")
    logger.info(f"Debug mode: {settings.debug}")
    
    await init_db()
    
    if settings.financing_run_on_startup:
        summary = await financing.get_financing_service().run_financing_cycle()
        logger.info(f"Startup financing run matched {summary.matched} invoices")
    
    yield  # Application runs here
    
    # Shutdown
    logger.info("Shutting down financing engine")
    await close_db()


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.
    
    Returns:
        Configured FastAPI instance ready to serve requests.
    """
    settings = get_settings()
    
    app = FastAPI(
        title="Invoice Financing API",
        description=(
            "Early payment of invoices by purchasers.\n\n"
            "Matches unfinanced invoices with the cheapest eligible purchaser "
            "offer and records the resulting financing agreements."
        ),
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )
    
    # Register routers
    app.include_router(health.router)
    app.include_router(financing.router, prefix="/api/v1")
    
    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Catch-all exception handler for unhandled errors."""
        logger.exception(f"Unhandled error: {exc}")
        
        # Don't expose internal errors in production
        if settings.debug:
            detail = str(exc)
        else:
            detail = "An internal error occurred"
        
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal Server Error",
                "detail": detail,
            },
        )
    
    return app


# Create the application instance
app = create_app()


# Development server entry point
if __name__ == "__main__":
    import uvicorn
    
    uvicorn.run(
        "financing.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
