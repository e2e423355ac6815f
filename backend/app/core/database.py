from contextlib import contextmanager
from typing import Iterator
import logging

from fastapi import Request
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, declarative_base, Session
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

# Base class for models - can be imported without connecting to DB
Base = declarative_base()


class Database:
    """
    Storage handle owning the engine and session factory.

    Created once at process start (see app.main lifespan), passed down to
    the services that need it and disposed at shutdown. Nothing in the
    request path creates engines or runs DDL.
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        self.engine = create_engine(url, echo=echo, **self._engine_options(url))
        self.session_factory = sessionmaker(
            autocommit=False, autoflush=False, expire_on_commit=False, bind=self.engine
        )
        logger.info(f"Created database engine for: {url[:50]}...")

    @staticmethod
    def _engine_options(url: str) -> dict:
        if url.startswith("sqlite"):
            options = {"connect_args": {"check_same_thread": False}}
            if ":memory:" in url or url.rstrip("/") == "sqlite:":
                # Single shared connection so every session sees the same database
                options["poolclass"] = StaticPool
            return options
        return {
            "pool_pre_ping": True,
            "pool_size": 5,
            "max_overflow": 10,
            # Connection timeout to avoid hanging forever
            "connect_args": {"connect_timeout": 10},
        }

    def migrate(self):
        """Create tables and indexes. Idempotent; run once before serving."""
        # Register every model on Base.metadata
        import app.models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)
        logger.info("Database tables created/verified")

    @contextmanager
    def session(self) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
        finally:
            db.close()

    def check_connection(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"Database connection check failed: {e}")
            return False

    def dispose(self):
        self.engine.dispose()
        logger.info("Database engine disposed")


def get_db(request: Request) -> Iterator[Session]:
    """Dependency to get database session."""
    db = request.app.state.database.session_factory()
    try:
        yield db
    finally:
        db.close()
