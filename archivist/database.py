from contextlib import contextmanager
from datetime import UTC, datetime

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from archivist.config import Settings, get_settings

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC now; every DateTime column stores naive UTC."""
    return datetime.now(UTC).replace(tzinfo=None)


def create_db_engine(database_url: str | None = None, echo: bool = False) -> Engine:
    """
    Build an engine for the given URL (or DATABASE_URL from settings).

    In-memory SQLite gets a StaticPool so every session sees the same database,
    which is what the test suite and local tooling rely on.
    """
    url = database_url or get_settings().DATABASE_URL
    if url.startswith("sqlite") and ":memory:" in url:
        engine = create_engine(
            url,
            future=True,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    elif url.startswith("sqlite"):
        engine = create_engine(url, future=True, echo=echo, connect_args={"check_same_thread": False})
    else:
        return create_engine(url, future=True, echo=echo, pool_pre_ping=True)

    _enable_sqlite_savepoints(engine)
    return engine


def _enable_sqlite_savepoints(engine: Engine) -> None:
    """
    pysqlite defers BEGIN, which breaks SAVEPOINT (restore inserts each
    record in its own nested transaction). Emit BEGIN ourselves.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine,
        future=True,
        expire_on_commit=False,
    )


def init_db(engine: Engine) -> None:
    """
    Import models and create tables if they don't exist.
    Alembic is the real migration tool, but this keeps local dev and tests sane.
    """
    from archivist import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def session_factory_from_settings(settings: Settings | None = None) -> sessionmaker:
    settings = settings or get_settings()
    return create_session_factory(create_db_engine(settings.DATABASE_URL))


@contextmanager
def session_scope(factory: sessionmaker):
    """
    Transactional scope: commit on success, roll back and re-raise on failure.
    """
    db: Session = factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
