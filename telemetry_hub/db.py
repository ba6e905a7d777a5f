from typing import Callable

from sqlalchemy import event
from sqlalchemy.engine import Engine, make_url
from sqlmodel import SQLModel, create_engine, Session

SessionFactory = Callable[[], Session]

# the station upsert needs INSERT ... ON CONFLICT ... RETURNING
SUPPORTED_BACKENDS = ("sqlite", "postgresql")


def make_engine(database_url: str) -> Engine:
    backend = make_url(database_url).get_backend_name()
    if backend not in SUPPORTED_BACKENDS:
        raise ValueError(f"unsupported database backend: {backend}")
    if backend == "sqlite":
        engine = create_engine(database_url, connect_args={"check_same_thread": False})

        @event.listens_for(engine, "connect")
        def _sqlite_pragmas(dbapi_conn, _record):
            cur = dbapi_conn.cursor()
            cur.execute("PRAGMA foreign_keys=ON")
            cur.execute("PRAGMA busy_timeout=5000")
            cur.close()

        return engine
    return create_engine(database_url, pool_pre_ping=True)


def init_db(engine: Engine) -> None:
    from . import models  # noqa: F401  registers the tables on the metadata
    SQLModel.metadata.create_all(engine)


def session_factory(engine: Engine) -> SessionFactory:
    def get_session() -> Session:
        # 👇 prevent attribute expiration so simple reads after commit are safe
        return Session(engine, expire_on_commit=False)
    return get_session
