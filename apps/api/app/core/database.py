from __future__ import annotations

import logging
import threading
from collections.abc import Generator

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from starlette.requests import Request


logger = logging.getLogger("app.database")


class Base(DeclarativeBase):
    pass


class Database:
    """Owns the engine and session factory for one process.

    The engine is built on first use. Concurrent first callers block on the
    same lock and all observe the single initialized engine.
    """

    def __init__(self, url: str, *, auto_create: bool = False, **engine_kwargs) -> None:  # type: ignore[no-untyped-def]
        self.url = url
        self.auto_create = auto_create
        self._engine_kwargs = engine_kwargs
        self._lock = threading.Lock()
        self._engine: Engine | None = None
        self._session_factory: sessionmaker[Session] | None = None

    @property
    def initialized(self) -> bool:
        return self._session_factory is not None

    def initialize(self) -> sessionmaker[Session]:
        factory = self._session_factory
        if factory is not None:
            return factory

        with self._lock:
            if self._session_factory is not None:
                return self._session_factory

            engine = create_engine(self.url, **self._engine_kwargs)
            if self.auto_create:
                Base.metadata.create_all(bind=engine)
            self._engine = engine
            self._session_factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
            logger.info("database.initialized", extra={"status": "ready"})
            return self._session_factory

    @property
    def engine(self) -> Engine:
        self.initialize()
        assert self._engine is not None
        return self._engine

    def session(self) -> Session:
        return self.initialize()()

    def dispose(self) -> None:
        with self._lock:
            if self._engine is not None:
                self._engine.dispose()
            self._engine = None
            self._session_factory = None


def get_db(request: Request) -> Generator[Session, None, None]:
    database: Database = request.app.state.database
    session = database.session()
    try:
        yield session
    finally:
        session.close()
