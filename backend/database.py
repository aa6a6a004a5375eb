"""Database setup and session management."""

import logging
from functools import lru_cache

from sqlalchemy import create_engine, event
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


def configure_sqlite(engine) -> None:
    """Turn on FK enforcement and make SAVEPOINT work under pysqlite.

    pysqlite defers BEGIN until the first DML statement, which breaks
    ``Session.begin_nested()``. Driver-level transaction handling is
    switched off and BEGIN is emitted explicitly instead.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_conn, connection_record):
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


@lru_cache
def get_engine():
    """Get or create the database engine (cached).

    SQLite connections are opened with ``check_same_thread=False`` so the
    engine can be shared between sync workers; concurrent writers are
    serialized by the database and reconciled through unique constraints.
    """
    connect_args = {}
    database_url = settings.DATABASE_URL

    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False

    engine = create_engine(
        database_url,
        connect_args=connect_args,
        echo=False,
    )
    if database_url.startswith("sqlite"):
        configure_sqlite(engine)

    logger.info("Database engine created for %s", engine.url.render_as_string(hide_password=True))
    return engine


def get_session_local():
    """Get a sessionmaker bound to the engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=get_engine())


def init_db() -> None:
    """Create all tables that don't exist yet."""
    import models  # noqa: F401  (registers mappers)

    Base.metadata.create_all(bind=get_engine())


def get_db():
    """Provide a database session.

    Transaction conventions:
    - Default: services ``flush()``, the caller ``commit()``s
    - Each reconciliation call runs inside its own ``begin_nested()``
      savepoint so a constraint violation can be handled without aborting
      the caller's transaction
    - ``SyncService.sync_family()`` commits once at the end of a family sync
    """
    SessionLocal = get_session_local()
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
