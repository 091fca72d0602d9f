"""FastAPI application wiring for the user service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import timedelta

import uvicorn
from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from psycopg_pool import ConnectionPool

from .api.errors import register_error_handlers
from .api.routes import router as v1_router
from .config import get_settings
from .domain.authentication import AuthService
from .domain.service import AccountService
from .repository import AccountRepository, RoleRepository
from .security.tokens import build_token_issuer

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load the signing key and open the Postgres pool for the app lifecycle.

    A malformed signing key raises ``ConfigurationFault`` here and aborts startup.
    """
    token_issuer = build_token_issuer(settings)
    pool = ConnectionPool(settings.database_url, open=False)
    pool.open()
    accounts = AccountRepository(pool)
    app.state.pool = pool
    app.state.account_service = AccountService(
        accounts, RoleRepository(pool), bcrypt_rounds=settings.bcrypt_rounds
    )
    app.state.auth_service = AuthService(
        accounts,
        token_issuer,
        recovery_code_ttl=timedelta(seconds=settings.recovery_code_ttl_seconds),
        reset_token_ttl=timedelta(seconds=settings.reset_token_ttl_seconds),
        bcrypt_rounds=settings.bcrypt_rounds,
    )
    logger.info("%s %s started", settings.app_name, settings.version)
    try:
        yield
    finally:
        pool.close()


app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)
register_error_handlers(app)


@app.get("/healthz", tags=["health"])
def healthz() -> dict[str, str]:
    """Return a minimal readiness indicator used by orchestration systems."""
    return {"status": "ok"}


@app.get("/metrics", include_in_schema=False)
def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(v1_router)


def run() -> None:
    """Serve the app with uvicorn on the configured host and port."""
    uvicorn.run(app, host=settings.http_host, port=settings.http_port, log_level=settings.log_level.lower())
