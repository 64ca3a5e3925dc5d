"""Database engine, session factory and unit-of-work construction."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import (
    DataError,
    DBAPIError,
    IntegrityError,
    OperationalError,
    SQLAlchemyError,
    TimeoutError as PoolTimeoutError,
)
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool
from loguru import logger

from progress_engine.db.base import Base
from progress_engine.db import models  # noqa: F401  # Imported for side effects
from progress_engine.utils.exceptions import InvalidState, StorageError, TransientError


def build_engine(database_url: str, *, echo: bool = False) -> Engine:
    """Create an engine; SQLite URLs get thread-safe single-connection pooling."""

    if database_url.startswith("sqlite"):
        options: dict = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url in {"sqlite://", "sqlite+pysqlite://"}:
            options["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, **options)

    return create_engine(
        database_url,
        pool_pre_ping=True,
        poolclass=QueuePool,
        pool_size=10,
        max_overflow=20,
        pool_recycle=3600,  # Recycle connections after 1 hour
        echo=echo,
    )


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine,
        expire_on_commit=False,  # Keep objects usable after commit
    )


@contextmanager
def unit_of_work(session_factory: sessionmaker, operation: str) -> Iterator[Session]:
    """Open a session and translate driver errors into engine errors.

    Connectivity problems become :class:`TransientError` so callers can retry;
    constraint and data violations become :class:`InvalidState`; any other
    database failure becomes :class:`StorageError`.
    """

    db: Session = session_factory()
    try:
        yield db
    except (IntegrityError, DataError) as exc:
        db.rollback()
        raise InvalidState(
            f"{operation} was rejected by the database",
            details={"operation": operation},
        ) from exc
    except (OperationalError, PoolTimeoutError) as exc:
        db.rollback()
        logger.warning(f"Transient database failure during {operation}")
        raise TransientError(
            f"{operation} could not reach the database",
            details={"operation": operation},
        ) from exc
    except DBAPIError as exc:
        db.rollback()
        if exc.connection_invalidated:
            raise TransientError(
                f"{operation} lost its database connection",
                details={"operation": operation},
            ) from exc
        logger.error(f"Database failure during {operation}", error=type(exc.orig).__name__)
        raise StorageError(
            f"{operation} failed in the database",
            details={"operation": operation},
        ) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(f"Database failure during {operation}", error=type(exc).__name__)
        raise StorageError(
            f"{operation} failed in the database",
            details={"operation": operation},
        ) from exc
    finally:
        db.close()


def init_db(engine: Engine) -> None:
    """Create all engine tables if they are missing."""

    Base.metadata.create_all(bind=engine)
    logger.info("Database tables ensured", url=engine.url.render_as_string(hide_password=True))
