"""Database configuration and session management."""

from contextlib import contextmanager

from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import NullPool
from sqlmodel import SQLModel

from agent_runner.core.config import settings

_engine = None
_session_maker = None


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def get_engine():
    """Get or create the engine."""
    global _engine, _session_maker

    if _engine is None:
        database_url = settings.database_url

        engine_kwargs = {}
        if _is_sqlite(database_url):
            # Job threads and the watchdog share the file database
            engine_kwargs["connect_args"] = {"check_same_thread": False}
        elif settings.env == "test":
            engine_kwargs["poolclass"] = NullPool

        _engine = create_engine(
            database_url,
            echo=False,
            pool_pre_ping=True,
            **engine_kwargs,
        )

        _session_maker = sessionmaker(
            bind=_engine,
            class_=Session,
            expire_on_commit=False,
            autocommit=False,
            autoflush=False,
        )

    return _engine


@contextmanager
def get_session():
    """Get database session."""
    get_engine()

    with _session_maker() as session:
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


def create_tables() -> None:
    """Create all database tables."""
    # Table classes register themselves on import
    import agent_runner.models  # noqa: F401

    engine = get_engine()
    SQLModel.metadata.create_all(engine)


def clean_database() -> None:
    """Remove all rows from every table (used between tests)."""
    engine = get_engine()
    tables = list(reversed(SQLModel.metadata.sorted_tables))
    if not tables:
        return

    with get_session() as session:
        if _is_sqlite(str(engine.url)):
            for table in tables:
                session.execute(table.delete())
        else:
            table_names = [f'"{table.name}"' for table in tables]
            session.execute(
                text(
                    "TRUNCATE "
                    + ", ".join(table_names)
                    + " RESTART IDENTITY CASCADE"
                )
            )


def close_db() -> None:
    """Close database connections."""
    global _engine, _session_maker

    if _engine:
        _engine.dispose()
        _engine = None
        _session_maker = None
