"""
General Ledger API Application Factory
"""

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..errors import LedgerError, LedgerIntegrityError, LedgerStateError
from ..system import LedgerSystem
from .deps import get_ledger_system
from .accounts import router as accounts_router
from .currencies import router as currencies_router
from .journal import router as journal_router
from .periods import router as periods_router
from .reports import router as reports_router
from .reconciliation import router as reconciliation_router
from .admin import router as admin_router


logger = logging.getLogger(__name__)


def status_for_error(error: LedgerError) -> int:
    """Validation -> 400 (404 for missing records), state conflict -> 409, integrity -> 500"""
    if isinstance(error, LedgerIntegrityError):
        return 500
    if isinstance(error, LedgerStateError):
        return 409
    if error.kind.endswith("_not_found"):
        return 404
    return 400


def create_app(system: Optional[LedgerSystem] = None) -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="General Ledger API",
        description="Double-entry general ledger with period closing",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if system is not None:
        app.dependency_overrides[get_ledger_system] = lambda: system

    @app.exception_handler(ValueError)
    async def ledger_error_handler(request: Request, exc: ValueError):
        if not isinstance(exc, LedgerError):
            return JSONResponse(
                status_code=400,
                content={"error": "invalid_request", "category": "validation", "message": str(exc), "details": {}}
            )
        if isinstance(exc, LedgerIntegrityError):
            logger.critical("Integrity error on %s %s", request.method, request.url.path,
                            extra={"extra": exc.to_dict()})
        return JSONResponse(status_code=status_for_error(exc), content=exc.to_dict())

    # Include routers
    app.include_router(accounts_router, prefix="/accounts", tags=["Accounts"])
    app.include_router(currencies_router, prefix="/currencies", tags=["Currencies"])
    app.include_router(journal_router, prefix="/journal", tags=["Journal"])
    app.include_router(periods_router, prefix="/periods", tags=["Periods"])
    app.include_router(reports_router, prefix="/reports", tags=["Reports"])
    app.include_router(reconciliation_router, prefix="/reconciliation", tags=["Reconciliation"])
    app.include_router(admin_router, prefix="/admin", tags=["Admin"])

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "ledger_api",
            "version": __version__
        }

    # Root endpoint
    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "General Ledger API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "accounts": "/accounts",
                "currencies": "/currencies",
                "journal": "/journal",
                "periods": "/periods",
                "reports": "/reports",
                "reconciliation": "/reconciliation",
                "admin": "/admin"
            }
        }

    return app
