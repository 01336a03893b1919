"""Database engine and helpers.

This module builds the SQLModel/SQLAlchemy engine the rest of the
application receives by injection. There is no module-level engine: the
FastAPI app builds one at start-up and tests build an in-memory one.

``sqlite://`` gives a private in-memory database shared by every thread
of the process (``StaticPool``), which is what the tests use as the fake
store.
"""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

from . import models  # noqa: F401  (registers the tables on SQLModel.metadata)
from .config import settings
from .errors import DependencyUnavailable

logger = logging.getLogger("focuslab.database")

_IN_MEMORY_URLS = ("sqlite://", "sqlite:///:memory:")


def _enable_sqlite_foreign_keys(dbapi_connection, _record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(url: Optional[str] = None) -> Engine:
    """Create an engine for ``url`` (defaults to ``settings.DATABASE_URL``)."""
    url = url or settings.DATABASE_URL
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in _IN_MEMORY_URLS:
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, echo=False, **kwargs)
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        return engine
    return create_engine(url, echo=False, pool_pre_ping=True)


def create_db_and_tables(engine: Engine) -> None:
    """Create database tables using SQLModel metadata.

    Intended for local development and tests; production deployments
    should run proper migrations instead.
    """
    with store_errors():
        SQLModel.metadata.create_all(engine)


@contextmanager
def store_errors() -> Iterator[None]:
    """Turn "cannot reach the database" into ``DependencyUnavailable``."""
    try:
        yield
    except OperationalError as exc:
        logger.error("persistence_unavailable %s", exc.__class__.__name__)
        raise DependencyUnavailable("persistence store unavailable") from exc

