"""Engine construction and URL handling shared by the dialect adapters."""

import logging
from typing import Any

from sqlalchemy import Engine, create_engine, make_url, text
from sqlalchemy.engine import URL
from sqlalchemy.exc import ArgumentError, SQLAlchemyError

from querydesk.errors import BackendError

logger = logging.getLogger(__name__)

# Backend names SQLAlchemy accepts (or users commonly type) mapped onto the
# adapter families we ship.
_BACKEND_ALIASES = {
    "postgres": "postgresql",
    "pgsql": "postgresql",
    "mariadb": "mysql",
    "sqlite3": "sqlite",
}

_DEFAULT_DRIVERS = {
    "mysql": "pymysql",
}


def _parse(database_url: str) -> URL | None:
    try:
        return make_url(database_url)
    except ArgumentError:
        return None


def detect_dialect_from_url(database_url: str) -> str:
    """Return the adapter family for a database URL.

    The driver suffix is ignored, so ``postgresql+psycopg2://`` and
    ``postgres://`` both resolve to ``postgresql``. Returns ``"unknown"``
    for an empty or unparseable URL.
    """
    if not database_url:
        return "unknown"

    url = _parse(database_url)
    if url is None:
        return "unknown"

    backend = url.get_backend_name().lower()
    return _BACKEND_ALIASES.get(backend, backend)


def normalize_database_url(database_url: str) -> str:
    """Rewrite URL spellings SQLAlchemy rejects or would route to a driver we don't install."""
    if not database_url:
        return database_url

    url = _parse(database_url)
    if url is None:
        return database_url

    backend, _, driver = url.drivername.partition("+")
    if backend == "postgres":
        backend = "postgresql"
    if not driver:
        driver = _DEFAULT_DRIVERS.get(backend, "")

    drivername = f"{backend}+{driver}" if driver else backend
    if drivername == url.drivername:
        return database_url
    return url.set(drivername=drivername).render_as_string(hide_password=False)


def create_engine_for(database_url: str, engine_kwargs: dict[str, Any] | None = None) -> Engine:
    """Build an engine for ``database_url``.

    Raises:
        BackendError: If the URL is empty or SQLAlchemy refuses it.
    """
    if not database_url:
        raise BackendError("No database URL configured")

    try:
        engine = create_engine(normalize_database_url(database_url), **(engine_kwargs or {}))
    except (ArgumentError, ImportError, SQLAlchemyError) as e:
        raise BackendError(f"Failed to create database engine: {e}") from e

    logger.info("Created %s engine for %s", engine.dialect.name, engine.url.render_as_string())
    return engine


def ping_engine(engine: Engine) -> dict[str, Any]:
    """Run a trivial round trip and report where the engine points."""
    status: dict[str, Any] = {
        "connected": False,
        "dialect": detect_dialect_from_url(engine.url.render_as_string()),
        "host": engine.url.host,
        "database": engine.url.database,
        "error": None,
    }
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).scalar()
    except SQLAlchemyError as e:
        logger.warning("Connection check failed: %s", e)
        status["error"] = f"Connection failed: {e}"
    else:
        status["connected"] = True
    return status
