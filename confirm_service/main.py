"""FastAPI application wiring for the confirm service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from psycopg_pool import ConnectionPool
import redis

from .api.routes import confirm_router, router as v1_router
from .config import Settings, get_settings
from .delivery.dispatch import DeliveryDispatcher
from .delivery.mailer import LogMailer, SmtpMailer
from .domain.confirm import ConfirmModule
from .domain.pipeline import AuthPipeline
from .domain.service import AccountService
from .memory_repository import InMemoryAccountRepository
from .repository import AccountRepository
from .security.redis_sessions import RedisSessionStore
from .security.sessions import InMemorySessionStore

logger = logging.getLogger(__name__)

settings = get_settings()


def build_mailer(settings: Settings) -> SmtpMailer | LogMailer:
    if settings.mail_backend == "smtp":
        logger.info("mailer using smtp relay %s:%s", settings.smtp_host, settings.smtp_port)
        return SmtpMailer(
            settings.smtp_host,
            settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
            starttls=settings.smtp_starttls,
            synchronous=settings.mail_synchronous,
        )
    logger.info("mailer logging messages instead of sending")
    return LogMailer(synchronous=settings.mail_synchronous)


def build_session_store(settings: Settings) -> InMemorySessionStore | RedisSessionStore:
    """Instantiate the configured session backend, preferring Redis when available."""
    if settings.session_backend == "redis" and settings.redis_url:
        try:
            client = redis.from_url(settings.redis_url)
            # ensure connectivity early to fail fast and fall back
            client.ping()
            logger.info("session store configured for redis backend at %s", settings.redis_url)
            return RedisSessionStore(client, ttl_seconds=settings.session_ttl_seconds)
        except redis.RedisError as exc:
            logger.warning("redis session store unavailable, falling back to in-memory: %s", exc)

    logger.info("session store using in-memory backend")
    return InMemorySessionStore(ttl_seconds=settings.session_ttl_seconds)


def build_service(
    settings: Settings,
    repository: AccountRepository | InMemoryAccountRepository,
    dispatcher: DeliveryDispatcher,
) -> AccountService:
    """Wire the confirm module into a fresh auth pipeline and account service."""
    confirm = ConfirmModule(settings, repository, dispatcher)
    pipeline = AuthPipeline(not_confirmed_path=settings.not_confirmed_path)
    pipeline.register(confirm)
    return AccountService(repository, pipeline, confirm, settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise shared resources (Postgres pool, mail workers, sessions) for the app lifecycle."""
    pool: ConnectionPool | None = None
    if settings.storage_backend == "memory":
        logger.info("account storage using in-memory backend")
        repository = InMemoryAccountRepository()
    else:
        pool = ConnectionPool(settings.database_url, open=False)
        pool.open()
        repository = AccountRepository(pool)

    dispatcher = DeliveryDispatcher(build_mailer(settings), max_workers=settings.delivery_workers)
    app.state.pool = pool
    app.state.dispatcher = dispatcher
    app.state.session_store = build_session_store(settings)
    app.state.account_service = build_service(settings, repository, dispatcher)
    try:
        yield
    finally:
        dispatcher.shutdown(wait=True)
        if pool is not None:
            pool.close()


app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)

# CORS for local frontend dev
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=600,
)


@app.get("/healthz", tags=["health"])
def healthz() -> dict[str, str]:
    """Return a minimal readiness indicator used by orchestration systems."""
    return {"status": "ok"}


@app.get("/metrics")
def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(v1_router)
app.include_router(confirm_router)
