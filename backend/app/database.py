import os

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool, StaticPool

from app.config import settings

db_url = str(settings.database_url)


def _env_int(key: str, default: int) -> int:
    return int(os.getenv(key, str(default)))


def _env_flag(key: str) -> bool:
    return str(os.getenv(key, "")).strip().lower() in {"1", "true", "yes", "y", "on"}


def _engine_options(url: str) -> tuple[dict, dict]:
    """Engine kwargs for ``url`` plus the pool settings logged at startup."""

    pool: dict = dict.fromkeys(("pool_size", "max_overflow", "pool_timeout", "pool_recycle", "use_null_pool"))
    options: dict = {"future": True, "connect_args": {}}

    if url.startswith("sqlite"):
        # Store calls run in the threadpool, so connections cross threads.
        options["connect_args"] = {"check_same_thread": False}
        if ":memory:" in url:
            options["poolclass"] = StaticPool
        return options, pool

    if not url.startswith("postgresql"):
        return options, pool

    options["connect_args"] = {"connect_timeout": _env_int("DB_CONNECT_TIMEOUT_SECONDS", 10)}
    options["pool_pre_ping"] = True
    if _env_flag("DB_USE_NULL_POOL"):
        # Transaction poolers (pgbouncer and friends) do the pooling.
        options["poolclass"] = NullPool
        pool["use_null_pool"] = "true"
        return options, pool

    pool.update(
        pool_size=_env_int("DB_POOL_SIZE", 5),
        max_overflow=_env_int("DB_MAX_OVERFLOW", 10),
        pool_timeout=_env_int("DB_POOL_TIMEOUT_SECONDS", 30),
        pool_recycle=_env_int("DB_POOL_RECYCLE_SECONDS", 1800),
        use_null_pool="false",
    )
    options.update({k: v for k, v in pool.items() if k != "use_null_pool"})
    return options, pool


engine_kwargs, POOL_CONFIG = _engine_options(db_url)
engine = create_engine(db_url, **engine_kwargs)
Base = declarative_base()
