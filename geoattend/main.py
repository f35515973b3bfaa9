"""
Geo Attendance — Application entry point.

This is the **only** file that assembles the app.  Business logic lives in
``services/``; the HTTP layer in ``api/``; persistence in ``db/`` and
``models/``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import select

from geoattend.api.v1.api import api_router
from geoattend.api.v1.endpoints.auth import limiter
from geoattend.core.config import settings
from geoattend.core.exceptions import TransportError, register_exception_handlers
from geoattend.core.security import get_password_hash
from geoattend.db.base import Base
from geoattend.db.session import async_session_factory, engine

# Ensure all models are imported so metadata.create_all can see them
from geoattend.models.activity import AuditLog, NotificationLog  # noqa: F401
from geoattend.models.admin import Admin  # noqa: F401
from geoattend.models.conversation import ConversationState  # noqa: F401
from geoattend.models.employee import AttendanceDay, Employee  # noqa: F401
from geoattend.models.user import User
from geoattend.services.container import build_services
from geoattend.services.transport import DisabledTransport, TelegramTransport, Transport

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


async def _seed_api_admin() -> None:
    async with async_session_factory() as session:
        result = await session.execute(
            select(User).where(User.email == settings.FIRST_ADMIN_EMAIL)
        )
        if result.scalar_one_or_none() is None:
            admin = User(
                email=settings.FIRST_ADMIN_EMAIL,
                hashed_password=get_password_hash(settings.FIRST_ADMIN_PASSWORD),
                full_name="System Administrator",
                role="admin",
            )
            session.add(admin)
            await session.commit()
            logger.info(
                "Default admin created: %s (password: <redacted>)",
                settings.FIRST_ADMIN_EMAIL,
            )


def _build_transport() -> Transport:
    if not settings.TELEGRAM_BOT_TOKEN:
        logger.warning("TELEGRAM_BOT_TOKEN is not set; outbound messages will fail and be logged")
        return DisabledTransport()
    return TelegramTransport(settings.TELEGRAM_BOT_TOKEN, api_url=settings.TELEGRAM_API_URL)


# ── Lifespan ────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialised")

    await _seed_api_admin()

    transport = _build_transport()
    services = build_services(
        settings=settings,
        session_factory=async_session_factory,
        transport=transport,
    )
    app.state.services = services

    # Chat admins listed in the environment are (re-)activated on every start
    for telegram_id in settings.TELEGRAM_ADMIN_IDS:
        await services.store.add_admin(telegram_id)
    if settings.TELEGRAM_ADMIN_IDS:
        logger.info("Seeded %d chat admin(s)", len(settings.TELEGRAM_ADMIN_IDS))

    if settings.SCHEDULER_ENABLED:
        services.orchestrator.start()

    if settings.TELEGRAM_WEBHOOK_URL and isinstance(transport, TelegramTransport):
        try:
            await transport.set_webhook(
                settings.TELEGRAM_WEBHOOK_URL,
                settings.TELEGRAM_WEBHOOK_SECRET or None,
            )
        except TransportError as e:
            logger.error("Could not register Telegram webhook: %s", e)

    logger.info("🚀 %s v%s started", settings.PROJECT_NAME, settings.VERSION)
    yield
    services.orchestrator.stop()
    await transport.aclose()
    await engine.dispose()
    logger.info("Shutdown complete")


# ── App factory ─────────────────────────────────────────────────────
def create_app() -> FastAPI:
    application = FastAPI(
        title=settings.PROJECT_NAME,
        description="Location-gated attendance tracking over a Telegram bot",
        version=settings.VERSION,
        openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Global exception handlers (prevent stack-trace leakage)
    register_exception_handlers(application)

    # Login rate limiting
    application.state.limiter = limiter
    application.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Mount API v1
    application.include_router(api_router, prefix=settings.API_V1_PREFIX)

    return application


app = create_app()
