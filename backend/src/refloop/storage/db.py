"""Engine and unit-of-work sessions for the referral store."""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from refloop.logging_config import get_logger
from refloop.settings import settings
from refloop.storage.models import Base

logger = get_logger(__name__)


def _register_models() -> None:
    """Import model modules so their tables are attached to ``Base.metadata``."""
    import refloop.auth.models  # noqa: F401
    import refloop.referral.models  # noqa: F401


class Database:
    """Owns the engine and hands out transactional sessions.

    Every referral operation runs inside one ``session()`` block: the block
    commits on success and rolls back on any exception, so a failed claim or
    completion never leaves half-written rows behind.
    """

    def __init__(self, database_url: str | None = None):
        self.database_url = database_url or settings.database_url
        url = make_url(self.database_url)

        connect_args = {}
        if url.get_backend_name() == "sqlite":
            # Request handlers run in a threadpool
            connect_args["check_same_thread"] = False

        self.engine = create_engine(
            url,
            echo=settings.env == "development",
            pool_pre_ping=True,
            connect_args=connect_args,
        )
        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine,
        )
        logger.info("database_initialized", url=url.render_as_string(hide_password=True))

    def create_tables(self) -> None:
        _register_models()
        Base.metadata.create_all(bind=self.engine)
        logger.info("tables_created")

    def drop_tables(self) -> None:
        _register_models()
        Base.metadata.drop_all(bind=self.engine)
        logger.warning("tables_dropped")

    def reset_schema(self) -> None:
        """Drop and recreate every table (local tooling and tests)."""
        self.drop_tables()
        self.create_tables()

    def ping(self) -> bool:
        """True when the store answers a trivial query."""
        try:
            with self.engine.connect() as connection:
                connection.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.warning("database_ping_failed", error=str(e))
            return False
        return True

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Transactional scope: commit on success, roll back on error."""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


# Global database instance
db = Database()
