"""FastAPI application wiring for the credential service."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import timedelta
import logging

from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from psycopg_pool import ConnectionPool

from .api.routes import router as v1_router
from .config import Settings, get_settings
from .domain.errors import StoreUnavailableError
from .domain.service import CredentialManager
from .messaging import build_publisher
from .repository import AccountStore, InMemoryAccountStore, PostgresAccountStore
from .security.hashing import BcryptSecretHasher
from .security.tokens import JwtTokenSigner

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


def build_manager(store: AccountStore, signer: JwtTokenSigner, settings: Settings) -> CredentialManager:
    """Assemble the credential manager from settings and an account store."""
    return CredentialManager(
        store,
        BcryptSecretHasher(rounds=settings.bcrypt_rounds),
        signer,
        reset_token_ttl=timedelta(seconds=settings.reset_token_ttl_seconds),
        revoke_sessions_on_password_reset=settings.revoke_sessions_on_password_reset,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise shared resources (store, publisher, manager) for the app lifecycle."""
    pool: ConnectionPool | None = None
    if settings.store_backend == "memory":
        logger.warning("using in-memory account store; data is lost on restart")
        store: AccountStore = InMemoryAccountStore()
    else:
        pool = ConnectionPool(settings.database_url, open=False)
        pool.open()
        postgres_store = PostgresAccountStore(pool)
        postgres_store.ensure_schema()
        store = postgres_store

    signer = JwtTokenSigner.from_settings(settings)
    app.state.token_signer = signer
    app.state.notification_publisher = build_publisher(settings)
    app.state.credential_manager = build_manager(store, signer, settings)
    try:
        yield
    finally:
        if pool is not None:
            pool.close()
            pool.wait_close()


def configure_cors(app: FastAPI, settings: Settings) -> None:
    """Allow browser clients on the configured origins to call the API."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        max_age=600,
    )


async def store_unavailable_handler(request: Request, exc: StoreUnavailableError) -> JSONResponse:
    logger.warning("request to %s failed: %s", request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "account store unavailable"},
    )


app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)
app.add_exception_handler(StoreUnavailableError, store_unavailable_handler)
configure_cors(app, settings)


@app.get("/healthz", tags=["health"])
def healthz() -> dict[str, str]:
    """Return a minimal readiness indicator used by orchestration systems."""
    return {"status": "ok"}


@app.get("/metrics", tags=["health"])
def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(v1_router)
