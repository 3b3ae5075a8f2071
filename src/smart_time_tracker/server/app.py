"""FastAPI ingestion server: pairing, token auth and log storage."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError

from smart_time_tracker import __version__
from smart_time_tracker.core.config import Config
from smart_time_tracker.core.errors import TrackerError
from smart_time_tracker.core.models import utcnow
from smart_time_tracker.server.error_handlers import (
    general_exception_handler,
    request_validation_handler,
    tracker_error_handler,
)
from smart_time_tracker.server.ingestion import IngestionService, LegacyIdentityResolver
from smart_time_tracker.server.pairing import PairingService, TokenService
from smart_time_tracker.server.storage import LogStorage, SqlLogStorage
from smart_time_tracker.server.stores import PairingCodeStore, TokenStore

logger = logging.getLogger(__name__)


@dataclass
class ServerServices:
    """Everything a request handler may touch, owned by one app instance."""

    pairing: PairingService
    tokens: TokenService
    ingestion: IngestionService
    storage: LogStorage


def build_services(
    config: Config,
    storage: LogStorage | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> ServerServices:
    """Wire stores and services from configuration."""
    server = config.server
    storage = storage or SqlLogStorage(server.database_url)

    tokens = TokenService(TokenStore(clock), ttl_seconds=server.token_ttl_seconds, clock=clock)
    pairing = PairingService(
        PairingCodeStore(clock),
        tokens,
        ttl_seconds=server.pair_code_ttl_seconds,
        max_attempts=server.code_generation_attempts,
        min_user_id_length=server.min_user_id_length,
        clock=clock,
    )
    ingestion = IngestionService(
        tokens,
        storage,
        legacy=LegacyIdentityResolver(enabled=server.allow_legacy_identity),
        clock=clock,
        list_limit=server.list_limit,
        list_limit_with_dates=server.list_limit_with_dates,
    )
    return ServerServices(pairing=pairing, tokens=tokens, ingestion=ingestion, storage=storage)


def create_app(
    config: Config | None = None,
    *,
    storage: LogStorage | None = None,
    services: ServerServices | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    if config is None:
        load_dotenv()
        config = Config.load()

    services = services or build_services(config, storage)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Starting Smart Time Tracker API...")
        yield
        close = getattr(services.storage, "close", None)
        if callable(close):
            close()
        logger.info("API shutdown complete")

    app = FastAPI(
        title="Smart Time Tracker API",
        description="Pairing, token auth and activity log ingestion",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.services = services
    app.state.config = config

    from smart_time_tracker.server.routes import health, logs, pairing

    app.include_router(health.router)
    app.include_router(pairing.router, prefix="/api/extension")
    app.include_router(logs.router, prefix="/api")

    app.add_exception_handler(TrackerError, tracker_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    return app


def run_server(host: str | None = None, port: int | None = None) -> None:
    """Run the API server."""
    import uvicorn

    load_dotenv()
    config = Config.load()
    host = host or config.server.host
    port = port or config.server.port

    logger.info(f"Starting API at http://{host}:{port}")

    uvicorn.run(
        "smart_time_tracker.server.app:create_app",
        host=host,
        port=port,
        factory=True,
        log_level="info",
    )
