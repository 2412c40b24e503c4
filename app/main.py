import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from sqlalchemy import text
from sqlalchemy.exc import ProgrammingError, SQLAlchemyError

from app.config import settings
from app.db.base import engine
from app.services.errors import (
    InvalidTransition,
    NotFound,
    PartialFailure,
    PayloadTooLarge,
    SiteRequestError,
    StorageFailure,
    ValidationError,
)
from app.services.media_storage import MediaStorageConfigurationError
from app.routers import image_drafts, site_requests, site_sessions

logger = logging.getLogger(__name__)

# Most specific first; PayloadTooLarge is also a ValidationError.
_ERROR_STATUS: tuple[tuple[type[SiteRequestError], int], ...] = (
    (NotFound, 404),
    (InvalidTransition, 409),
    (PayloadTooLarge, 413),
    (ValidationError, 400),
    (StorageFailure, 502),
    (PartialFailure, 502),
)


def _status_for(exc: SiteRequestError) -> int:
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 500


def _is_schema_mismatch_programming_error(exc: ProgrammingError) -> bool:
    orig = getattr(exc, "orig", None)
    if getattr(orig, "pgcode", None) == "42703":
        return True
    message = str(orig or exc).lower()
    return any(
        marker in message
        for marker in (
            "undefined column",
            "does not exist",
            "no such column",
            "no such table",
        )
    )


def create_app() -> FastAPI:
    app = FastAPI(
        title="Site Request Queue API",
        default_response_class=ORJSONResponse,
    )

    allow_origins = sorted(set(settings.BACKEND_CORS_ORIGINS))

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(SiteRequestError)
    async def site_request_error_handler(request: Request, exc: SiteRequestError) -> ORJSONResponse:
        status_code = _status_for(exc)
        log = logger.warning if status_code >= 500 else logger.info
        log(
            "Request failed",
            extra={
                "path": request.url.path,
                "error_type": type(exc).__name__,
                "status_code": status_code,
                "error": exc.message,
                **{f"ctx_{key}": value for key, value in exc.context.items()},
            },
        )
        return ORJSONResponse(status_code=status_code, content={"detail": exc.message})

    @app.exception_handler(MediaStorageConfigurationError)
    async def media_storage_configuration_error_handler(
        _request: Request, exc: MediaStorageConfigurationError
    ) -> ORJSONResponse:
        return ORJSONResponse(status_code=500, content={"detail": str(exc)})

    @app.exception_handler(ProgrammingError)
    async def programming_error_handler(_request: Request, exc: ProgrammingError) -> ORJSONResponse:
        logger.exception("Database programming error", exc_info=exc)
        if _is_schema_mismatch_programming_error(exc):
            return ORJSONResponse(
                status_code=503,
                content={
                    "detail": "Database schema is out of date. Run `alembic upgrade head` and redeploy."
                },
            )
        return ORJSONResponse(status_code=500, content={"detail": "Database query failed."})

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(_request: Request, exc: Exception) -> ORJSONResponse:
        logger.exception("Unhandled server exception", exc_info=exc)
        return ORJSONResponse(status_code=500, content={"detail": "Internal server error."})

    @app.get("/health")
    async def health() -> dict[str, bool]:
        return {"ok": True}

    @app.get("/health/db")
    def health_db() -> dict[str, str]:
        try:
            with engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            return {"db": "ok"}
        except SQLAlchemyError as exc:
            logger.warning("Database health check failed", extra={"error": str(exc)})
            return {"db": f"error: {exc}"}

    app.include_router(site_requests.router)
    app.include_router(image_drafts.router)
    app.include_router(site_sessions.router)

    return app


app = create_app()
