"""
Database connection management for the result store.

The engine and session factory are owned by a single ResultStorePool
instance. Callers acquire sessions through it (or through the FastAPI
dependency get_db) and never touch the engine directly.
"""
import logging
import threading
from contextlib import contextmanager
from functools import lru_cache
from typing import Generator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, OperationalError, InterfaceError
from sqlalchemy.orm import sessionmaker, Session

from nightly_stats.config import get_settings
from nightly_stats.services.errors import StoreConnectionError, StoreAuthenticationError

logger = logging.getLogger(__name__)

_AUTH_MARKERS = ('login failed', 'authentication', 'password', 'access denied')
_TIMEOUT_MARKERS = ('timeout', 'timed out')


def _host_from_url(database_url: str) -> str:
    """Extract a printable host from a database URL for error hints."""
    if '@' in database_url:
        return database_url.split('@', 1)[1].split('/', 1)[0]
    return database_url.split('///', 1)[-1]


def translate_store_error(exc: Exception, database_url: str) -> Exception:
    """
    Convert a driver-level connectivity error into an operator-facing error.

    Args:
        exc: Exception raised by SQLAlchemy/DBAPI
        database_url: Configured URL, used to name the server in hints

    Returns:
        StoreAuthenticationError or StoreConnectionError with guidance text
    """
    message = str(exc).lower()
    server = _host_from_url(database_url)

    if any(marker in message for marker in _AUTH_MARKERS):
        return StoreAuthenticationError(
            "Database authentication failed. Please check:\n"
            "1. Password in .env file is correct\n"
            "2. The configured user has proper permissions"
        )
    if any(marker in message for marker in _TIMEOUT_MARKERS):
        return StoreConnectionError(
            "Database connection timeout. Please check:\n"
            f"1. Network connectivity to {server}\n"
            "2. VPN connection (if required)\n"
            "3. Firewall settings\n"
            "4. Database server status"
        )
    return StoreConnectionError(
        f"Cannot reach database server {server}.\n"
        "Please check network connectivity and VPN connection."
    )


class ResultStorePool:
    """
    Owns the SQLAlchemy engine for the result store.

    Lifecycle operations:
    - session(): acquire a session (context manager, commits on success)
    - health_check(): run SELECT 1
    - reset(): dispose the engine and rebuild it on next use
    """

    def __init__(self, database_url: str, echo: bool = False, connect_timeout: int = 30):
        self.database_url = database_url
        self.echo = echo
        self.connect_timeout = connect_timeout
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None
        self._lock = threading.Lock()
        self.needs_reset = False

    def _pool_config(self) -> dict:
        """Engine keyword arguments for the configured backend."""
        if self.database_url.startswith('sqlite'):
            # SQLite doesn't benefit from pooling but needs thread safety
            return {'connect_args': {"check_same_thread": False}}

        pool_config = {
            'pool_size': 10,
            'max_overflow': 0,
            'pool_pre_ping': True,         # Verify connections before using them
            'pool_recycle': 3600,
            'pool_timeout': self.connect_timeout,
        }
        if self.database_url.startswith('mssql+pyodbc'):
            pool_config['connect_args'] = {'timeout': self.connect_timeout}
        return pool_config

    def _ensure_engine(self) -> sessionmaker:
        """Create the engine on first use or after reset(); return the session factory."""
        with self._lock:
            if self._engine is None:
                logger.info("Connecting to result store...")
                self._engine = create_engine(self.database_url, echo=self.echo, **self._pool_config())
                self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self._engine)
                self.needs_reset = False
            return self._session_factory

    @property
    def engine(self) -> Engine:
        """Engine, created on first use or after reset()."""
        self._ensure_engine()
        return self._engine

    def _new_session(self) -> Session:
        if self.needs_reset:
            self.reset()
        return self._ensure_engine()()

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """
        Acquire a session with automatic transaction management.

        Connectivity failures are re-raised as StoreConnectionError /
        StoreAuthenticationError and mark the pool for reset.
        """
        db = self._new_session()
        try:
            yield db
            db.commit()
        except (OperationalError, InterfaceError) as e:
            db.rollback()
            self.needs_reset = True
            logger.error(f"Result store connectivity error: {e}")
            raise translate_store_error(e, self.database_url) from e
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def health_check(self) -> bool:
        """
        Verify the store answers a trivial query.

        Returns:
            True if SELECT 1 succeeds

        Raises:
            StoreConnectionError / StoreAuthenticationError on failure
        """
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except DBAPIError as e:
            self.needs_reset = True
            raise translate_store_error(e, self.database_url) from e

    def reset(self) -> None:
        """Discard the current engine; the next acquire builds a new one."""
        with self._lock:
            if self._engine is not None:
                logger.info("Resetting result store connection pool")
                self._engine.dispose()
            self._engine = None
            self._session_factory = None
            self.needs_reset = False


@lru_cache()
def get_pool() -> ResultStorePool:
    """Process-wide result store pool built from settings."""
    settings = get_settings()
    return ResultStorePool(
        settings.DATABASE_URL,
        echo=settings.DEBUG,
        connect_timeout=settings.DB_CONNECT_TIMEOUT_SECONDS
    )


def get_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency for database sessions.

    Usage:
        @router.get("/items/")
        def read_items(db: Session = Depends(get_db)):
            ...

    Yields:
        Database session
    """
    with get_pool().session() as db:
        yield db

