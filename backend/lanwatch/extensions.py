# lanwatch/extensions.py
from __future__ import annotations

from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, scoped_session, sessionmaker

Base = declarative_base()

Session = scoped_session(sessionmaker(expire_on_commit=False))

_engine: Optional[Engine] = None


@event.listens_for(Engine, "connect")
def set_sqlite_pragma(dbapi_connection, _connection_record):
    # PRAGMA is SQLite-only, skip for PostgreSQL
    module_name = type(dbapi_connection).__module__
    if "sqlite" in module_name.lower():
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def init_db(uri: str) -> Engine:
    """Bind the session factory to `uri` and create missing tables."""
    global _engine
    from . import models  # noqa: F401  register tables on Base.metadata

    if _engine is not None:
        Session.remove()
        _engine.dispose()

    connect_args = {"check_same_thread": False} if uri.startswith("sqlite") else {}
    _engine = create_engine(uri, future=True, connect_args=connect_args)
    Session.configure(bind=_engine)
    Base.metadata.create_all(_engine)
    return _engine


def get_engine() -> Optional[Engine]:
    return _engine
