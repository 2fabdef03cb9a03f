"""ClinicSync API — FastAPI application entry point hosting the sync runtime.

Invariants:
    - Routes registered explicitly (no auto-discovery)
    - Global error handlers map SyncError → structured JSON responses
    - CORS configured from settings (not hardcoded)
    - Sync engine wired once in the lifespan and kept on app.state; stopped on shutdown

Design Decisions:
    - Lifespan over @app.on_event: FastAPI recommended pattern, cleaner cleanup
    - build_sync_engine() separate from lifespan: embedded hosts reuse the wiring without FastAPI
    - Realtime client created only when the backend is configured
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from clinisync.api.error_handlers import register_error_handlers
from clinisync.api.routes import health, sync_routes
from clinisync.config import Settings, get_settings
from clinisync.core.echo_guard import EchoGuard
from clinisync.core.field_mapper import FieldMapper
from clinisync.core.sync_state import SyncStateStore
from clinisync.core.table_registry import default_registry
from clinisync.infrastructure.database import DatabaseSessionManager
from clinisync.infrastructure.local_store import SqlAlchemyLocalStore
from clinisync.infrastructure.observability import setup_logging
from clinisync.infrastructure.postgrest_client import PostgrestRemoteStore
from clinisync.infrastructure.realtime_channel import RealtimeClient, realtime_url
from clinisync.services.batch_writer import RetryableBatchWriter
from clinisync.services.change_subscriber import ChangeSubscriber
from clinisync.services.sync_coordinator import SyncCoordinator
from clinisync.services.sync_diagnostics import SyncDiagnostics
from clinisync.services.sync_runtime import SyncRuntime

logger = logging.getLogger(__name__)


@dataclass
class SyncEngine:
    """Everything the lifespan owns, for shutdown."""
    db: DatabaseSessionManager
    remote: PostgrestRemoteStore
    runtime: SyncRuntime
    diagnostics: SyncDiagnostics


def build_sync_engine(settings: Settings) -> SyncEngine:
    db = DatabaseSessionManager(
        settings.local_database_url,
        pool_size=settings.local_database_pool_size,
        max_overflow=settings.local_database_max_overflow,
    )
    realtime = None
    if settings.is_backend_configured:
        realtime = RealtimeClient(
            realtime_url(settings.remote_url, settings.remote_api_key),
            settings.remote_api_key,
            schema=settings.remote_schema,
        )
    remote = PostgrestRemoteStore(
        settings.remote_url or "http://localhost",
        settings.remote_api_key,
        schema=settings.remote_schema,
        timeout_seconds=settings.remote_timeout_seconds,
        max_retries=settings.remote_max_retries,
        base_delay_ms=settings.remote_base_delay_ms,
        max_delay_ms=settings.remote_max_delay_ms,
        realtime=realtime,
    )
    local = SqlAlchemyLocalStore(db)
    registry = default_registry()
    mapper = FieldMapper()
    echo_guard = EchoGuard(ttl_seconds=settings.echo_ttl_seconds)

    coordinator = SyncCoordinator(
        local, remote, registry,
        SyncStateStore(is_online=settings.start_online),
        mapper=mapper,
        writer=RetryableBatchWriter(remote, batch_size=settings.sync_batch_size),
        echo_guard=echo_guard,
        is_backend_configured=lambda: settings.is_backend_configured,
    )
    subscriber = ChangeSubscriber(
        local, remote,
        mapper=mapper,
        echo_guard=echo_guard,
        max_subscriptions=settings.max_realtime_subscriptions,
        stagger_seconds=settings.subscription_stagger_ms / 1000,
    )
    runtime = SyncRuntime(
        coordinator, subscriber,
        sync_interval_seconds=settings.sync_interval_seconds,
        critical_sync_interval_seconds=settings.critical_sync_interval_seconds,
    )
    return SyncEngine(
        db=db, remote=remote, runtime=runtime,
        diagnostics=SyncDiagnostics(local, remote, registry),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)
    engine = build_sync_engine(settings)
    await engine.db.create_all()
    app.state.db = engine.db
    app.state.runtime = engine.runtime
    app.state.diagnostics = engine.diagnostics
    if not settings.is_backend_configured:
        logger.warning("Remote backend not configured, running local-only")
    await engine.runtime.start()
    logger.info("ClinicSync API started")
    yield
    logger.info("ClinicSync API shutting down")
    await engine.runtime.stop()
    await engine.remote.aclose()
    await engine.db.dispose()


app = FastAPI(
    title="ClinicSync API", version="1.0.0", lifespan=lifespan,
)

# CORS — configured from settings, not hardcoded
settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routes — explicit registration
app.include_router(health.router)
app.include_router(sync_routes.router)

register_error_handlers(app)
