"""FastAPI application factory.

Creates the app with tenant middleware, logging middleware, metrics middleware,
CORS, Sentry, lifespan events for database initialization, the meeting
services on app.state, and the v1 API router.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import timedelta

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.crm.api.errors import register_exception_handlers
from src.crm.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.crm.api.middleware.tenant import TenantAuthMiddleware
from src.crm.api.v1.router import router as v1_router
from src.crm.config import Settings, get_settings
from src.crm.core.database import close_db, get_service_session, get_tenant_session, init_db
from src.crm.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.crm.core.redis import close_redis, get_redis_pool
from src.crm.meetings.coordinator import MeetingCoordinator
from src.crm.meetings.notifications import DatabaseNotificationSink
from src.crm.meetings.repository import MeetingRepository
from src.crm.services.gsuite import (
    ConferenceProvisioner,
    CredentialStore,
    OAuthClientConfig,
    TokenManager,
)


def init_meeting_services(app: FastAPI, settings: Settings) -> None:
    """Wire the meeting and Google Calendar services onto app.state."""
    oauth_config = OAuthClientConfig.from_settings(settings)
    credential_store = CredentialStore(session_factory=get_service_session)
    token_manager = TokenManager(
        credential_store=credential_store,
        oauth_config=oauth_config,
        refresh_margin=timedelta(seconds=settings.GOOGLE_TOKEN_REFRESH_MARGIN_SECONDS),
    )
    provisioner = ConferenceProvisioner(
        token_manager=token_manager,
        calendar_id=settings.GOOGLE_CALENDAR_ID,
        default_timezone=settings.DEFAULT_MEETING_TIMEZONE,
        max_link_polls=settings.MEET_LINK_MAX_RETRIES,
        poll_base_seconds=settings.MEET_LINK_RETRY_BASE_SECONDS,
    )
    repository = MeetingRepository(session_factory=get_tenant_session)

    app.state.oauth_config = oauth_config
    app.state.credential_store = credential_store
    app.state.token_manager = token_manager
    app.state.meeting_repository = repository
    app.state.meeting_coordinator = MeetingCoordinator(
        repository=repository,
        provisioner=provisioner,
        notifier=DatabaseNotificationSink(session_factory=get_tenant_session),
        default_timezone=settings.DEFAULT_MEETING_TIMEZONE,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB, Sentry and services on startup, close on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()
    await init_db()

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    init_meeting_services(app, settings)
    log.info(
        "meeting_services_initialized",
        google_calendar_configured=app.state.oauth_config.is_configured,
        default_timezone=settings.DEFAULT_MEETING_TIMEZONE,
    )

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="CRM Meetings API",
        version="0.1.0",
        description="Meeting scheduling and Google Calendar sync for the sales CRM",
        lifespan=lifespan,
    )
    register_exception_handlers(app)

    # Middleware is added in reverse order (last added = outermost)

    # Tenant middleware (inner -- resolves tenant context from JWT/header)
    app.add_middleware(TenantAuthMiddleware, redis_client=get_redis_pool())

    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router)

    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
