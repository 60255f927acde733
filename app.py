"""
Tender Analysis API - Main Application
"""
import os

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

# Import logging
from utils.logging_config import get_logger

# Setup logger
logger = get_logger(__name__, "app")

# Import API routers
from api import health, tenders

# Create FastAPI app
app = FastAPI(
    title="Tender Analysis API",
    version="1.0.0",
    description="Tender document intake, item enrichment and report generation",
    docs_url="/docs",
    redoc_url="/redoc"
)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Plain-language 500s for unexpected errors"""
    if isinstance(exc, HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    # Log unexpected errors
    logger.error(f"Unexpected error: {exc}", exc_info=True)

    error_msg = "Internal server error"
    exc_str = str(exc).lower()

    if "connection" in exc_str or "timeout" in exc_str:
        error_msg = "Database connection error. Please try again in a moment."
    elif "resource temporarily unavailable" in exc_str:
        error_msg = "Service temporarily unavailable. Please try again in a few moments."

    return JSONResponse(status_code=500, content={"detail": error_msg})


# Register API routers
app.include_router(health.router, tags=["Health"])
app.include_router(tenders.router, tags=["Tenders"])


@app.on_event("startup")
def log_startup():
    logger.info("=" * 80)
    logger.info("Tender Analysis API Starting")
    logger.info("Version: 1.0.0")
    logger.info("Docs: http://localhost:8000/docs")
    logger.info("=" * 80)


@app.on_event("shutdown")
def stop_running_analyses():
    # In-flight gateway calls finish; no new work is dispatched
    tenders.cancel_running_analyses("API shutdown")
    logger.info("Tender Analysis API stopped")


# Main entry point
if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
