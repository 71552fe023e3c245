"""
mentorlink/main.py
FastAPI application: HTTP routes, the /ws real-time endpoint and the
shared components both surfaces use.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from mentorlink import __version__
from mentorlink.config.settings import Settings, get_settings
from mentorlink.database import close_db, get_session_factory, init_db
from mentorlink.errors import APIError, ErrorCode, new_log_id
from mentorlink.orm.base import isoformat, utcnow
from mentorlink.realtime import ws_server
from mentorlink.realtime.gateway import ConnectionGateway
from mentorlink.realtime.rooms import RoomRouter
from mentorlink.repositories.base import SessionRepository
from mentorlink.repositories.sql_repository import SqlSessionRepository
from mentorlink.routes import profile, sessions
from mentorlink.sandbox.executor import CodeExecutor
from mentorlink.sandbox.pool import ExecutionPool
from mentorlink.services.identity_client import IdentityClient
from mentorlink.services.participant_service import ParticipantService
from mentorlink.services.profile_service import ProfileService

logger = logging.getLogger(__name__)

LOCAL_ORIGIN_PATTERN = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()]
    )


def create_app(
    settings: Optional[Settings] = None,
    repository: Optional[SessionRepository] = None,
    identity_client: Optional[IdentityClient] = None,
    executor: Optional[CodeExecutor] = None,
    manage_database: Optional[bool] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Defaults to environment settings
        repository: Store adapter; defaults to SqlSessionRepository over DATABASE_URL
        identity_client: Defaults to an httpx client for IDENTITY_URL
        executor: Sandbox executor; defaults to one built from settings
        manage_database: Run init_db/close_db in the lifespan. Defaults to
            True only when no repository was injected.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    if manage_database is None:
        manage_database = repository is None
    repository = repository or SqlSessionRepository(get_session_factory())
    identity_client = identity_client or IdentityClient(settings)
    executor = executor or CodeExecutor(settings)

    participant_service = ParticipantService(repository)
    pool = ExecutionPool(
        executor,
        max_concurrency=settings.sandbox_max_concurrency,
        max_pending=settings.sandbox_max_pending,
    )
    gateway = ConnectionGateway(
        participant_service,
        identity_client,
        pool,
        router=RoomRouter(),
        repository=repository,
        settings=settings,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting application...")
        if manage_database:
            await init_db()
        logger.info(f"Sandbox languages: {', '.join(executor.supported_languages)}")

        yield

        logger.info("Shutting down application...")
        await gateway.shutdown()
        await identity_client.close()
        if manage_database:
            try:
                await close_db()
            except Exception as e:
                logger.error(f"Error closing database connection: {str(e)}")

    app = FastAPI(
        title="MentorLink Collaboration API",
        description="Mentorship sessions with chat, shared code editing and code execution",
        version=__version__,
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None if settings.is_production else "/redoc",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.repository = repository
    app.state.identity_client = identity_client
    app.state.participant_service = participant_service
    app.state.profile_service = ProfileService(repository)
    app.state.pool = pool
    app.state.gateway = gateway

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_origin_regex=None if settings.is_production else LOCAL_ORIGIN_PATTERN,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        logger.warning(f"Validation error on {request.url.path}: {exc.errors()}")

        error_details = []
        for error in exc.errors():
            error_details.append({
                "loc": error.get("loc"),
                "msg": error.get("msg"),
                "type": error.get("type")
            })

        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "success": False,
                "error": "Validation Error",
                "message": "Request validation failed",
                "code": ErrorCode.VALIDATION_ERROR,
                "details": error_details
            }
        )

    @app.exception_handler(APIError)
    async def api_error_handler(request: Request, exc: APIError):
        logger.warning(f"API error on {request.url.path}: {exc.code} - {exc.message}")
        return exc.to_response()

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        log_id = new_log_id()
        logger.exception(f"[{log_id}] Unhandled exception on {request.url.path}: {type(exc).__name__}: {str(exc)}")

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "success": False,
                "error": "Internal Error",
                "message": "An unexpected error occurred. Please try again later.",
                "code": ErrorCode.INTERNAL_ERROR,
                "details": {"log_id": log_id}
            }
        )

    @app.get("/health", tags=["Health"])
    async def health_check():
        return {
            "status": "ok",
            "timestamp": isoformat(utcnow()),
        }

    app.include_router(sessions.router)
    app.include_router(profile.router)
    app.include_router(ws_server.router)

    return app


def get_application() -> FastAPI:
    """uvicorn factory entry point: uvicorn mentorlink.main:get_application --factory"""
    return create_app()
