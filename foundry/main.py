import logging

from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from foundry.config import settings
from foundry.db.deps import get_session
from foundry.routers import ai, config, contact, content, email, media, subscriptions
from foundry.services.media_storage import MediaStorageConfigurationError

logger = logging.getLogger(__name__)

ROUTERS = (config, content, subscriptions, contact, email, media, ai)


def _configure_logging() -> None:
    if not logging.getLogger().handlers:
        logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s %(message)s")
    logging.getLogger("foundry").setLevel(settings.LOG_LEVEL.upper())


def _cors_origins() -> list[str]:
    origins = set(settings.BACKEND_CORS_ORIGINS)
    if settings.PUBLIC_SITE_URL:
        origins.add(settings.PUBLIC_SITE_URL.rstrip("/"))
    return sorted(origins)


def create_app() -> FastAPI:
    _configure_logging()
    app = FastAPI(title="Foundry API", default_response_class=ORJSONResponse)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(MediaStorageConfigurationError)
    async def storage_not_configured(_request: Request, exc: MediaStorageConfigurationError) -> ORJSONResponse:
        logger.error("Media storage is not configured", extra={"reason": str(exc)})
        return ORJSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": str(exc)})

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception) -> ORJSONResponse:
        logger.exception("Unhandled error", extra={"path": request.url.path}, exc_info=exc)
        return ORJSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error."},
        )

    @app.get("/health")
    async def health() -> dict[str, bool]:
        return {"ok": True}

    @app.get("/health/db")
    def health_db(session: Session = Depends(get_session)):
        try:
            session.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            logger.warning("Database health check failed", extra={"reason": str(exc)})
            return ORJSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"db": "unavailable"})
        return {"db": "ok"}

    for module in ROUTERS:
        app.include_router(module.router)

    return app


app = create_app()
