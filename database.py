import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import get_settings
from exceptions import StoreFailure

logger = logging.getLogger(__name__)


def create_ledger_engine(database_url: str, *, sqlite_timeout: float = 5.0) -> Engine:
    connect_args: dict[str, object] = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = sqlite_timeout

    eng = create_engine(database_url, connect_args=connect_args)
    if database_url.startswith("sqlite"):
        event.listen(eng, "connect", _enable_sqlite_pragmas)
        event.listen(eng, "begin", _begin_immediate)
    return eng


def _enable_sqlite_pragmas(dbapi_conn, _record):
    # pysqlite would otherwise defer BEGIN until the first write, leaving the
    # reads of a unit outside its transaction
    dbapi_conn.isolation_level = None
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


def _begin_immediate(conn):
    # takes the write lock up front so concurrent units serialize
    conn.exec_driver_sql("BEGIN IMMEDIATE")


def make_sessionmaker(eng: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=eng, autoflush=False, expire_on_commit=False)


_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker[Session]] = None


def get_engine() -> Engine:
    global _engine, _session_factory
    if _engine is None:
        _engine = create_ledger_engine(get_settings().database_url)
        _session_factory = make_sessionmaker(_engine)
        logger.info(f"engine_started: dialect={_engine.dialect.name}")
    return _engine


def dispose_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
        logger.info("engine_disposed")
    _engine = None
    _session_factory = None


def SessionLocal() -> Session:
    get_engine()
    assert _session_factory is not None
    return _session_factory()


class Base(DeclarativeBase):
    pass


@contextmanager
def atomic(session: Session, operation: str) -> Iterator[Session]:
    """Run a block as one commit-or-rollback unit on an existing session.

    Store errors are rolled back and re-raised as ``StoreFailure``; any other
    exception (validation errors included) is rolled back and propagated as is.
    """
    try:
        yield session
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.exception(f"store_failure: operation={operation}")
        raise StoreFailure(f"Could not complete {operation}") from exc
    except StoreFailure:
        session.rollback()
        logger.exception(f"store_failure: operation={operation}")
        raise
    except Exception:
        session.rollback()
        raise
