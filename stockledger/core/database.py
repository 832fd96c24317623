"""
Ledger Store - storage handle with an explicit open/close lifecycle
"""
from contextlib import contextmanager
from typing import Iterator, Optional
import logging

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker, declarative_base

logger = logging.getLogger(__name__)

# Base class for models
Base = declarative_base()


class LedgerStore:
    """
    Owns the engine and session factory for one database.

    Opened once at process start and closed at shutdown; every service
    receives the store instead of reaching for a module-level session.
    """

    def __init__(self, database_url: str, echo: bool = False, lock_timeout_seconds: Optional[float] = None):
        self.database_url = database_url
        self.echo = echo
        self.lock_timeout_seconds = lock_timeout_seconds
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("LedgerStore is not open")
        return self._engine

    def open(self) -> "LedgerStore":
        if self._engine is not None:
            return self

        connect_args = {}
        if self.is_sqlite:
            connect_args["check_same_thread"] = False
            engine = create_engine(self.database_url, connect_args=connect_args, echo=self.echo)

            # Enable WAL Mode for SQLite Concurrency
            @event.listens_for(engine, "connect")
            def set_sqlite_pragma(dbapi_connection, connection_record):
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA journal_mode=WAL")
                cursor.execute("PRAGMA busy_timeout=30000")
                cursor.close()
        else:
            engine = create_engine(self.database_url, pool_pre_ping=True, echo=self.echo)

        self._engine = engine
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)
        logger.info(f"Ledger store opened ({engine.dialect.name})")
        return self

    def close(self) -> None:
        if self._engine is None:
            return
        self._engine.dispose()
        self._engine = None
        self._session_factory = None
        logger.info("Ledger store closed")

    def create_all(self) -> None:
        # Import models so every table is registered on Base.metadata
        from stockledger import models  # noqa: F401
        Base.metadata.create_all(bind=self.engine)

    def drop_all(self) -> None:
        from stockledger import models  # noqa: F401
        Base.metadata.drop_all(bind=self.engine)

    def _new_session(self) -> Session:
        if self._session_factory is None:
            raise RuntimeError("LedgerStore is not open")
        return self._session_factory()

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Read-only unit of work; nothing is committed.

        Closing without a rollback keeps loaded objects readable after the
        block ends.
        """
        db = self._new_session()
        try:
            yield db
        finally:
            db.close()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Unit of work committed on success and rolled back on any error."""
        db = self._new_session()
        try:
            if self.lock_timeout_seconds and self.engine.dialect.name == "postgresql":
                timeout_ms = int(self.lock_timeout_seconds * 1000)
                db.execute(text(f"SET LOCAL lock_timeout = {timeout_ms}"))
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def __enter__(self) -> "LedgerStore":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def create_store(settings=None) -> LedgerStore:
    """Build a store from application settings."""
    if settings is None:
        from .config import settings
    return LedgerStore(
        settings.DATABASE_URL,
        echo=settings.DEBUG,
        lock_timeout_seconds=settings.LOCK_TIMEOUT_SECONDS,
    )
