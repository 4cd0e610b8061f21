# app/db/session.py
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Generator, Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from app.core.config import settings
from app.services.ledger_errors import ConcurrentUpdate

logger = logging.getLogger(__name__)


def _enable_sqlite_savepoints(eng: Engine) -> None:
    """
    pysqlite opens transactions lazily and breaks SAVEPOINT;
    take over BEGIN ourselves so begin_nested() works (SQLAlchemy recipe).
    """

    @event.listens_for(eng, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(eng, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")


def make_engine(db_uri: str, **kwargs) -> Engine:
    if db_uri.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        eng = create_engine(
            db_uri,
            connect_args=connect_args,
            echo=settings.SQL_ECHO,
            future=True,
            **kwargs,
        )
        _enable_sqlite_savepoints(eng)
        return eng

    return create_engine(
        db_uri,
        pool_pre_ping=True,
        pool_recycle=280,
        pool_size=10,
        max_overflow=20,
        echo=settings.SQL_ECHO,
        future=True,
        **kwargs,
    )


def make_session_factory(eng: Engine) -> sessionmaker:
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=eng,
        future=True,
    )


engine: Engine = make_engine(settings.SQLALCHEMY_DATABASE_URI)
SessionLocal = make_session_factory(engine)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """
    One unit of work: commit on success, roll back on any error.
    Ledger appends and counter updates made inside share the same fate.
    """
    try:
        yield db
        db.commit()
    except StaleDataError as e:
        db.rollback()
        logger.warning("Optimistic version check failed: %s", e)
        raise ConcurrentUpdate(
            "Medication was changed by another session; reload and retry."
        ) from e
    except Exception:
        db.rollback()
        raise
