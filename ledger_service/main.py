"""FastAPI application wiring for the ledger service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from psycopg_pool import ConnectionPool

from .api.errors import install_error_handlers
from .api.routes import auth_router, router as accounts_router
from .config import Settings, get_settings
from .domain.credentials import CredentialService
from .domain.service import LedgerService
from .repository import LedgerRepository, UserRepository
from .security.gatekeeper import GatekeeperMiddleware, RequestGatekeeper
from .security.passwords import PasslibHasher
from .security.rate_limiter import SlidingWindowLoginThrottle
from .security.redis_rate_limiter import RedisLoginThrottle
from .security.tokens import TokenAuthority

logger = logging.getLogger(__name__)

settings = get_settings()


def build_login_throttle(settings: Settings) -> SlidingWindowLoginThrottle | RedisLoginThrottle:
    """Instantiate the configured login throttle backend, preferring Redis when available."""
    if settings.rate_limit_backend == "redis" and settings.redis_url:
        try:
            import redis

            client = redis.from_url(settings.redis_url)
            # ensure connectivity early to fail fast and fall back
            client.ping()
            logger.info("login throttle configured for redis backend at %s", settings.redis_url)
            return RedisLoginThrottle(
                client,
                max_failures=settings.login_max_failures,
                window_seconds=settings.login_window_seconds,
            )
        except Exception as exc:  # pragma: no cover - depends on a live redis
            logger.warning("redis login throttle unavailable, falling back to in-memory: %s", exc)

    logger.info("login throttle using in-memory backend")
    return SlidingWindowLoginThrottle(
        max_failures=settings.login_max_failures,
        window_seconds=settings.login_window_seconds,
    )


def wire_services(
    app: FastAPI,
    settings: Settings,
    ledger_repository: LedgerRepository,
    user_repository: UserRepository,
) -> None:
    """Attach the service graph to ``app.state`` for the request handlers."""
    tokens = TokenAuthority(settings.token)
    app.state.token_authority = tokens
    app.state.ledger_service = LedgerService(ledger_repository)
    app.state.credential_service = CredentialService(
        user_repository,
        PasslibHasher(),
        tokens,
        build_login_throttle(settings),
    )
    app.state.gatekeeper = RequestGatekeeper(tokens, user_repository)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Initialise shared resources (Postgres pool, services) for the app lifecycle."""
    logging.basicConfig(level=settings.log_level)
    if not settings.jwt_secret:
        logger.warning("JWT_SECRET is not set; logins will fail until it is configured")
    pool = ConnectionPool(settings.database_url, open=False)
    pool.open()
    app.state.pool = pool
    users = UserRepository(pool)
    wire_services(
        app,
        settings,
        LedgerRepository(pool, max_attempts=settings.ledger_tx_retries),
        users,
    )
    app.state.credential_service.ensure_bootstrap_user(
        settings.bootstrap_login, settings.bootstrap_password
    )
    try:
        yield
    finally:
        pool.close()
        pool.wait_close()


def build_app(
    settings: Settings,
    lifespan: Callable[[FastAPI], Any] | None = None,
) -> FastAPI:
    """Create the FastAPI app with middleware, error handlers and routers installed."""
    app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)

    app.add_middleware(GatekeeperMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials="*" not in settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        max_age=600,
    )
    install_error_handlers(app)

    @app.get("/healthz", tags=["health"])
    def healthz() -> dict[str, str]:
        """Return a minimal readiness indicator used by orchestration systems."""
        return {"status": "ok"}

    app.include_router(auth_router)
    app.include_router(accounts_router)

    # Prometheus metrics endpoint for Prometheus scrapes
    try:
        from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

        @app.get("/metrics", tags=["health"])
        def metrics() -> Response:
            return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
    except ImportError:  # pragma: no cover - metrics are optional in dev
        pass

    return app


app = build_app(settings, lifespan=lifespan)


def run() -> None:
    """Serve the application with uvicorn on the configured host and port."""
    logging.basicConfig(level=settings.log_level)
    import uvicorn

    uvicorn.run(app, host=settings.http_host, port=settings.http_port, log_level=settings.log_level.lower())
