"""Delivery Fee Engine FastAPI Application.

Main entry point for the API server. The engine is built once per app and
shared through ``app.state``; its lifecycle follows the app lifespan.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from fee_engine.api import router
from fee_engine.config import Settings
from fee_engine.engine import build_engine
from fee_engine.models import ErrorCode
from fee_engine.services import FeeCalculatorService, LocationPlatform

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)


def create_app(
    settings: Optional[Settings] = None,
    calculator: Optional[FeeCalculatorService] = None,
    platform: Optional[LocationPlatform] = None,
    clock: Optional[Callable[[], float]] = None,
) -> FastAPI:
    """Build the FastAPI app around a freshly wired engine."""
    engine = build_engine(settings, calculator, platform, clock=clock or time.time)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        # Startup
        await engine.start()
        yield
        # Shutdown
        await engine.close()

    app = FastAPI(
        title="Delivery Fee Engine API",
        description="Location-aware delivery fee caching and recalculation",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.engine = engine

    # Global exception handlers
    @app.exception_handler(ValidationError)
    async def validation_exception_handler(request: Request, exc: ValidationError):
        """Handle Pydantic validation errors."""
        return JSONResponse(
            status_code=422,
            content={
                "success": False,
                "error": {
                    "code": ErrorCode.VALIDATION_ERROR.value,
                    "message": str(exc),
                    "user_message": "Invalid request format. Please check your input.",
                },
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle unexpected errors."""
        logging.getLogger(__name__).exception("[API] Unhandled error")
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": {
                    "code": ErrorCode.API_ERROR.value,
                    "message": str(exc),
                    "user_message": "Something went wrong. Please try again.",
                },
            },
        )

    # Include API routes
    app.include_router(router, prefix="/api")

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


app = create_app()
