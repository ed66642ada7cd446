"""
Loan Offer API Application Factory
"""

from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .deps import LendingSystem, get_lending_system
from .offers import router as offers_router
from .payments import router as payments_router
from ..errors import LendingError
from ..logging_config import get_logger
from .. import __version__


logger = get_logger("loan_offers.api")


def create_app(system: Optional[LendingSystem] = None) -> FastAPI:
    """
    Create and configure the FastAPI application

    Args:
        system: Pre-built LendingSystem to serve; the process-wide one is
            created lazily when omitted
    """
    app = FastAPI(
        title="Loan Offer API",
        description="Peer-to-peer loan offers, repayment schedules and payment ledger",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if system is not None:
        app.dependency_overrides[get_lending_system] = lambda: system

    @app.exception_handler(LendingError)
    async def lending_error_handler(request: Request, exc: LendingError):
        if exc.http_status >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(
            status_code=exc.http_status,
            content={"error": exc.code, "message": exc.message}
        )

    app.include_router(offers_router, prefix="/offers", tags=["Offers"])
    app.include_router(payments_router, prefix="/payments", tags=["Payments"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "loan_offers_api",
            "version": __version__
        }

    return app


def run_server(host: str = "0.0.0.0", port: int = 8090, debug: bool = False,
               log_level: str = "info"):
    """Run the FastAPI server"""
    uvicorn.run(
        "loan_offers.api:create_app",
        factory=True,
        host=host,
        port=port,
        reload=debug,
        log_level=log_level
    )
