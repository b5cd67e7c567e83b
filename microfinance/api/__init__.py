"""
Microfinance API Application Factory
"""

import logging

import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import get_config
from ..errors import MicrofinanceError, DependencyError
from ..logging_config import setup_logging, log_action
from .auth import get_actor, get_system
from .clients import router as clients_router
from .loans import router as loans_router
from .repayments import router as repayments_router
from .alerts import router as alerts_router
from .audit import router as audit_router
from .reports import router as reports_router

logger = logging.getLogger("microfinance.api")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Microfinance Loan API",
        description="Loan lifecycle and repayment reconciliation for a microfinance lender",
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

    @app.exception_handler(MicrofinanceError)
    async def handle_microfinance_error(request: Request, exc: MicrofinanceError):
        if isinstance(exc, DependencyError):
            log_action(
                logger, "error", f"Dependency failure: {exc.cause or exc.message}",
                action=request.method, resource=request.url.path
            )
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "code": exc.code}
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        log_action(
            logger, "error", f"Unhandled error: {exc}",
            action=request.method, resource=request.url.path, exc_info=True
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "An unexpected error occurred, please try again", "code": "internal_error"}
        )

    # Include routers
    app.include_router(clients_router, prefix="/clients", tags=["Clients"])
    app.include_router(loans_router, prefix="/loans", tags=["Loans"])
    app.include_router(repayments_router, prefix="/repayments", tags=["Repayments"])
    app.include_router(alerts_router, prefix="/alerts", tags=["Alerts"])
    app.include_router(audit_router, prefix="/audit", tags=["Audit"])
    app.include_router(reports_router, prefix="/reports", tags=["Reports"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "microfinance_api",
            "version": __version__
        }

    @app.get("/me")
    async def whoami(actor=Depends(get_actor)):
        """The authenticated user's name and role"""
        return {"id": actor.id, "name": actor.name, "role": actor.role.value}

    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Microfinance Loan API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "clients": "/clients",
                "loans": "/loans",
                "repayments": "/repayments",
                "alerts": "/alerts",
                "audit": "/audit",
                "reports": "/reports",
            }
        }

    return app


def run_server(host: str = None, port: int = None, debug: bool = False):
    """Run the FastAPI server"""
    settings = get_config()
    setup_logging(settings.log_level, log_format=settings.log_format, log_file=settings.log_file)
    get_system()
    uvicorn.run(
        "microfinance.api:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=debug,
        log_level=settings.log_level.lower()
    )


app = create_app()
