from typing import Iterator, Optional

from fastapi import Request
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from .models import Base


def _unicode_lower(value):
    return value.lower() if isinstance(value, str) else value


def _configure_sqlite(dbapi_connection, connection_record):
    # built-in lower() only folds ASCII; enforce FKs like the other backends
    dbapi_connection.create_function("lower", 1, _unicode_lower, deterministic=True)
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """
    Explicit store handle: one engine plus its session factory.

    The app keeps one instance on ``app.state.db``; tests build their own
    against a throwaway SQLite file.
    """

    def __init__(self, url: str, schema: Optional[str] = None, **engine_kwargs):
        self.url = make_url(url)
        self.schema = schema
        if self.url.get_backend_name() == "sqlite":
            # FastAPI runs sync handlers in a threadpool
            engine_kwargs.setdefault("connect_args", {"check_same_thread": False})
        else:
            engine_kwargs.setdefault("pool_pre_ping", True)
            if schema:
                # search_path so unqualified tables use our schema
                engine_kwargs.setdefault(
                    "connect_args", {"options": f"-csearch_path={schema},public"}
                )
        self.engine: Engine = create_engine(self.url, **engine_kwargs)
        if self.url.get_backend_name() == "sqlite":
            event.listen(self.engine, "connect", _configure_sqlite)
        self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False, autocommit=False)

    def init_db(self) -> None:
        """
        Ensure the schema exists, then create tables (idempotent).
        Called once at application startup.
        """
        if self.schema and self.url.get_backend_name() == "postgresql":
            with self.engine.begin() as conn:
                conn.execute(text(f'CREATE SCHEMA IF NOT EXISTS "{self.schema}"'))
        Base.metadata.create_all(bind=self.engine)

    def drop_all(self) -> None:
        Base.metadata.drop_all(bind=self.engine)

    def session(self) -> Session:
        return self.SessionLocal()

    def session_scope(self) -> Iterator[Session]:
        """Yields a session, commits on success, rolls back on error."""
        s = self.SessionLocal()
        try:
            yield s
            s.commit()
        except Exception:
            s.rollback()
            raise
        finally:
            s.close()

    def dispose(self) -> None:
        self.engine.dispose()


def get_database(request: Request) -> Database:
    return request.app.state.db


def get_session(request: Request) -> Iterator[Session]:
    """
    FastAPI dependency: yields a DB session from the app's Database,
    commits on success, rolls back on error.
    """
    yield from get_database(request).session_scope()
