from __future__ import annotations

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from storefront.core.config import get_settings
from storefront.persistence.models import Base


def _enable_sqlite_immediate_transactions(engine: Engine) -> None:
    # pysqlite defers BEGIN and never takes the write lock up front, so two
    # concurrent checkouts can deadlock on lock promotion. Start every
    # transaction with BEGIN IMMEDIATE so writers queue on the busy timeout.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, _record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_engine_from_url(url: str) -> Engine:
    if url.startswith("sqlite"):
        settings = get_settings()
        engine = create_engine(
            url,
            future=True,
            connect_args={"check_same_thread": False, "timeout": settings.sqlite_busy_timeout_seconds},
        )
        _enable_sqlite_immediate_transactions(engine)
        return engine
    return create_engine(url, future=True, pool_pre_ping=True)


def make_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(bind=bind, autoflush=False, autocommit=False, expire_on_commit=False)


settings = get_settings()
engine = create_engine_from_url(settings.database_url)
SessionLocal = make_session_factory(engine)


def init_db() -> None:
    Base.metadata.create_all(bind=engine)


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_session() -> Generator[Session, None, None]:
    with session_scope() as session:
        yield session
