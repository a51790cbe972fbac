# ruff: noqa: I001

import logging
import os
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app import models  # noqa: F401  (registers ORM tables on Base.metadata)
from app.api.router import api_router
from app.config import settings
from app.core.observability import (
    global_exception_handler,
    offer_error_handler,
    request_logging_middleware,
    uptime_seconds,
    utc_now_iso,
)
from app.database import POOL_CONFIG, engine
from app.services.offer_errors import OfferError
from app.services.offer_services import build_offer_services
from app.services.sql_record_store import SqlRecordStore

api_prefix = (
    settings.api_prefix
    if settings.api_prefix.startswith("/")
    else f"/{settings.api_prefix}"
    if settings.api_prefix
    else ""
)

logger = logging.getLogger("marketplace")
logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")

app = FastAPI(
    title=settings.app_name,
    docs_url="/docs" if settings.enable_docs else None,
    redoc_url="/redoc" if settings.enable_docs else None,
    openapi_url=(f"{api_prefix}/openapi.json" if api_prefix else "/openapi.json")
    if settings.enable_docs
    else None,
)

# Expose logger for middleware without creating circular imports.
app.state.logger = logger

app.add_exception_handler(OfferError, offer_error_handler)
app.add_exception_handler(Exception, global_exception_handler)

# Request-level logging + request correlation id.
app.middleware("http")(request_logging_middleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix=api_prefix)

_MIGRATION_LOCK_KEY = 48211907


def _run_migrations_if_configured() -> None:
    if not bool(getattr(settings, "run_migrations_on_start", False)):
        return

    if (settings.environment or "").lower() == "test":
        return

    # Imported lazily; most startups never migrate.
    from alembic import command
    from alembic.config import Config
    from sqlalchemy import text
    from sqlalchemy.engine.url import make_url

    backend_root = Path(__file__).resolve().parents[1]
    alembic_cfg = Config(str(backend_root / "alembic.ini"))

    url_obj = make_url(str(settings.database_url))
    logger.info(
        "migrations_db_target",
        extra={
            "driver": url_obj.drivername,
            "host": url_obj.host,
            "db": url_obj.database,
            "has_password": bool(url_obj.password),
        },
    )

    try:
        with engine.connect() as connection:
            dialect = str(connection.dialect.name or "").lower()

            # Avoid concurrent migrations across multiple instances.
            lock_acquired = True
            if dialect == "postgresql":
                lock_acquired = bool(
                    connection.execute(
                        text("select pg_try_advisory_lock(:k)"), {"k": _MIGRATION_LOCK_KEY}
                    ).scalar()
                )
            if not lock_acquired:
                logger.info("migrations_skipped_lock_not_acquired")
                return

            try:
                # env.py reuses this connection via config.attributes['connection'].
                alembic_cfg.attributes["connection"] = connection
                command.upgrade(alembic_cfg, "head")
                logger.info("migrations_applied")
            finally:
                if dialect == "postgresql":
                    connection.execute(text("select pg_advisory_unlock(:k)"), {"k": _MIGRATION_LOCK_KEY})
                    connection.commit()
    except Exception as e:
        # Keep the API up; store calls against missing tables surface as 503s.
        logger.error("migrations_failed", extra={"error": str(e)})


@app.on_event("startup")
def _startup_offer_services():
    logger.info(
        "runtime_config",
        extra={
            "pid": os.getpid(),
            "web_concurrency": os.getenv("WEB_CONCURRENCY"),
            "db_pool": POOL_CONFIG,
            "realtime_enabled": settings.offer_realtime_enabled,
        },
    )
    _run_migrations_if_configured()
    # Tests install their own services before the app starts.
    if getattr(app.state, "offer_services", None) is not None:
        return
    app.state.offer_services = build_offer_services(
        SqlRecordStore(engine),
        cache_ttl_seconds=settings.offer_cache_ttl_seconds,
        cache_max_entries=settings.offer_cache_max_entries,
        telemetry_event_window=settings.offer_telemetry_event_window,
        realtime_enabled=settings.offer_realtime_enabled,
    )


@app.on_event("shutdown")
def _shutdown_offer_services():
    services = getattr(app.state, "offer_services", None)
    if services is not None:
        services.reset()
        logger.info("offer_services_stopped")


@app.get("/", tags=["meta"])
def root():
    docs_path = (
        (f"{api_prefix}/openapi.json" if api_prefix else "/openapi.json")
        if settings.enable_docs
        else None
    )
    return {"message": "Marketplace Offers API", "docs": docs_path}


@app.get("/healthz", tags=["meta"])
def healthz():
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.environment,
        "time": utc_now_iso(),
        "uptime_seconds": round(uptime_seconds(), 2),
        "version": getattr(settings, "build_version", None),
    }
