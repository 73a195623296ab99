"""
FastAPI Application Entry Point.

This is the main application file for the FitSocial backend.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from fitsocial.app.core.config import settings
from fitsocial.app.api.v1.router import router as api_v1_router
from fitsocial.app.db.session import engine, Base
from fitsocial.app.core.observability import ObservabilityMiddleware, configure_logging
from fitsocial.app.core.token_revocation import ping_redis
from fitsocial.app.core.exceptions import (
    AppException,
    app_exception_handler,
    database_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)
from fitsocial.app.services.push_provider import ExpoPushClient

# Import models to ensure they are registered with Base
from fitsocial.app.models.user import User  # noqa: F401
from fitsocial.app.models.post import Post, PostLike, PostComment  # noqa: F401
from fitsocial.app.models.follow import UserFollow  # noqa: F401
from fitsocial.app.models.notification import Notification  # noqa: F401
from fitsocial.app.models.notification_preference import NotificationPreference  # noqa: F401
from fitsocial.app.models.push_token import PushToken  # noqa: F401

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    Creates database tables on startup.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("%s %s started", settings.app_name, settings.api_version)
    yield
    await engine.dispose()


def create_app() -> FastAPI:
    configure_logging()

    application = FastAPI(
        title=settings.app_name,
        version=settings.api_version,
        debug=settings.debug,
        description="Social fitness backend: feed, follows, notifications and push delivery",
        lifespan=lifespan,
    )

    # One provider (and circuit breaker) per process
    application.state.push_provider = ExpoPushClient.from_settings(settings)

    application.add_middleware(ObservabilityMiddleware)

    # Register global exception handlers
    application.add_exception_handler(AppException, app_exception_handler)
    application.add_exception_handler(HTTPException, http_exception_handler)
    application.add_exception_handler(StarletteHTTPException, http_exception_handler)
    application.add_exception_handler(RequestValidationError, validation_exception_handler)
    application.add_exception_handler(SQLAlchemyError, database_exception_handler)
    application.add_exception_handler(Exception, generic_exception_handler)

    @application.get("/health", tags=["Health"])
    async def health_check():
        """Liveness plus Redis reachability (token revocation)."""
        return {
            "status": "healthy",
            "app_name": settings.app_name,
            "version": settings.api_version,
            "redis": "up" if await ping_redis() else "down",
        }

    application.include_router(api_v1_router, prefix=settings.api_prefix)
    return application


app = create_app()
