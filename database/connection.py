"""
Database Connection Management for the Blocklist Screening Service

This module provides:
- Store settings from config.yaml with environment overrides
- Engine creation with tenacity retry on connection failures
- Scoped sessions and explicit Units of Work for the ingestion pipelines
- The process-wide provider shared by the API and the scheduler

Uses SQLAlchemy 2.0 style with proper typing support.
"""

import os
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Generator, Optional

from sqlalchemy import create_engine, event, text, Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.exc import OperationalError
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log
)

from database.models import Base

logger = logging.getLogger(__name__)


# ============================================
# CONFIGURATION
# ============================================

@dataclass
class DatabaseSettings:
    """Connection settings for the primary store."""
    host: str = "localhost"
    port: int = 5432
    database: str = "blocklist_database"
    user: str = "blocklist_user"
    password: str = "blocklist_password"
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800
    echo: bool = False

    @classmethod
    def from_config(cls, config=None) -> 'DatabaseSettings':
        """
        Build settings from the database section of config.yaml.

        DB_* environment variables take precedence over the file; with no
        config the dataclass defaults apply.
        """
        defaults = cls()
        db = config.database if config is not None else None
        return cls(
            host=os.getenv("DB_HOST", db.host if db else defaults.host),
            port=int(os.getenv("DB_PORT", str(db.port if db else defaults.port))),
            database=os.getenv("DB_NAME", db.name if db else defaults.database),
            user=os.getenv("DB_USER", db.user if db else defaults.user),
            password=os.getenv("DB_PASSWORD", db.password if db else defaults.password),
            pool_size=int(os.getenv("DB_POOL_SIZE", str(defaults.pool_size))),
            max_overflow=int(os.getenv("DB_MAX_OVERFLOW", str(defaults.max_overflow))),
            echo=os.getenv("DB_ECHO", "false").lower() == "true"
        )

    def get_url(self) -> str:
        """DATABASE_URL when set, else a PostgreSQL URL from the parts."""
        full_url = os.getenv("DATABASE_URL")
        if full_url:
            return full_url
        return f"postgresql+psycopg2://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}"


# Retry engine creation while the store is starting up
db_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(OperationalError),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True
)


def enable_sqlite_savepoints(engine: Engine) -> None:
    """
    Let SQLite honor SAVEPOINT (Session.begin_nested).

    pysqlite issues its own BEGIN lazily, which breaks nested
    transactions; take over transaction demarcation instead.
    """
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


# ============================================
# UNIT OF WORK PATTERN
# ============================================

class UnitOfWork:
    """
    Explicit transaction boundary for multi-step writes.

    Usage:
        with db_provider.get_unit_of_work() as uow:
            IndividualRepository(uow.session).upsert(fields)
            uow.commit()
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory
        self._session: Optional[Session] = None

    def __enter__(self) -> 'UnitOfWork':
        self._session = self._session_factory()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self.rollback()
        self.close()

    @property
    def session(self) -> Session:
        if self._session is None:
            raise RuntimeError("UnitOfWork not started. Use as context manager.")
        return self._session

    def commit(self) -> None:
        if self._session:
            self._session.commit()

    def rollback(self) -> None:
        if self._session:
            self._session.rollback()

    def close(self) -> None:
        if self._session:
            self._session.close()
            self._session = None


# ============================================
# SESSION PROVIDER
# ============================================

class DatabaseSessionProvider:
    """
    Owns the engine and hands out sessions.

    Usage:
        db_provider = DatabaseSessionProvider(DatabaseSettings.from_config(config))
        db_provider.init()

        with db_provider.session_scope() as session:
            ImportJobRepository(session).list_recent()
    """

    def __init__(
        self,
        settings: Optional[DatabaseSettings] = None,
        engine: Optional[Engine] = None
    ):
        """
        Args:
            settings: Store settings (defaults plus environment when omitted)
            engine: Pre-created engine (for testing)
        """
        self._settings = settings or DatabaseSettings.from_config()
        self._engine = engine
        self._session_factory: Optional[sessionmaker] = None
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    def init(self, echo: Optional[bool] = None) -> None:
        """
        Create the engine (unless one was given) and the session factory.

        Args:
            echo: Override echo setting for SQL logging
        """
        if self._initialized:
            return

        if echo is not None:
            self._settings.echo = echo

        if self._engine is None:
            self._engine = self._create_engine_with_retry()

        self._session_factory = sessionmaker(
            bind=self._engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False
        )

        self._initialized = True
        logger.info("Database session provider initialized")

    @db_retry
    def _create_engine_with_retry(self) -> Engine:
        url = self._settings.get_url()

        if url.startswith("sqlite"):
            engine = create_engine(url, echo=self._settings.echo)
            enable_sqlite_savepoints(engine)
        else:
            engine = create_engine(
                url,
                echo=self._settings.echo,
                pool_size=self._settings.pool_size,
                max_overflow=self._settings.max_overflow,
                pool_timeout=self._settings.pool_timeout,
                pool_recycle=self._settings.pool_recycle,
                pool_pre_ping=True,
            )

        # Verify connection
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))

        return engine

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("Database not initialized. Call init() first.")
        return self._engine

    @property
    def session_factory(self) -> sessionmaker:
        if self._session_factory is None:
            raise RuntimeError("Database not initialized. Call init() first.")
        return self._session_factory

    def get_unit_of_work(self) -> UnitOfWork:
        if self._session_factory is None:
            self.init()
        return UnitOfWork(self._session_factory)

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Session that commits on exit and rolls back on exception.

        Usage:
            with db_provider.session_scope() as session:
                ImportJobRepository(session).create(filename)
        """
        if self._session_factory is None:
            self.init()

        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_tables(self) -> None:
        """Create missing tables."""
        if self._engine is None:
            self.init()
        Base.metadata.create_all(self._engine)
        logger.info("Database tables created")

    def close(self) -> None:
        if self._engine:
            self._engine.dispose()
            logger.info("Database engine disposed")
        self._initialized = False


# ============================================
# GLOBAL PROVIDER INSTANCE
# ============================================

_db_provider: Optional[DatabaseSessionProvider] = None


def get_db_provider(config=None) -> DatabaseSessionProvider:
    """Process-wide provider, created from config on first use."""
    global _db_provider
    if _db_provider is None:
        _db_provider = DatabaseSessionProvider(DatabaseSettings.from_config(config))
    return _db_provider


def init_db(config=None, echo: bool = False, create_tables: bool = True) -> DatabaseSessionProvider:
    """
    Initialize the global provider. Call during application startup.

    Args:
        config: ConfigManager whose database section is used
        echo: If True, log all SQL statements
        create_tables: If True, create missing tables

    Returns:
        DatabaseSessionProvider instance
    """
    provider = get_db_provider(config)
    provider.init(echo=echo)
    if create_tables:
        provider.create_tables()
    return provider


def close_db() -> None:
    """Dispose the global provider. Call during application shutdown."""
    global _db_provider
    if _db_provider:
        _db_provider.close()
        _db_provider = None


# ============================================
# PYTEST FIXTURES SUPPORT
# ============================================

def create_test_provider(
    engine: Optional[Engine] = None,
    settings: Optional[DatabaseSettings] = None
) -> DatabaseSessionProvider:
    """
    Create a provider around a test engine.

    Args:
        engine: Pre-created engine (e.g., SQLite for unit tests)
        settings: Custom settings for testing

    Returns:
        DatabaseSessionProvider configured for testing
    """
    if engine is not None and engine.dialect.name == "sqlite":
        enable_sqlite_savepoints(engine)
    return DatabaseSessionProvider(settings=settings, engine=engine)
