"""Global error handlers: every failure leaves as {"detail": ...} JSON."""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from agora.database import InfrastructureError
from agora.forum.words import IndexingError
from agora.i18n import t
from agora.session_store import SessionBusyError

logger = structlog.get_logger()


def setup_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={"detail": "Validation error", "errors": exc.errors()},
        )

    @app.exception_handler(SessionBusyError)
    async def session_busy_handler(_request: Request, _exc: SessionBusyError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": t("wizard.busy")})

    @app.exception_handler(InfrastructureError)
    async def infrastructure_handler(request: Request, exc: InfrastructureError) -> JSONResponse:
        logger.error("infrastructure_failure", path=request.url.path, error=str(exc))
        return JSONResponse(status_code=503, content={"detail": "Service temporarily unavailable"})

    @app.exception_handler(IndexingError)
    async def indexing_handler(request: Request, exc: IndexingError) -> JSONResponse:
        logger.error("indexing_failure", path=request.url.path, error=str(exc))
        return JSONResponse(status_code=500, content={"detail": t("forum.post_error")})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions."""
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )
