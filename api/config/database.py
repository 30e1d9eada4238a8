"""Database configuration using SQLAlchemy."""

from typing import Any, Generator

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker, declarative_base

# Base class for models
Base = declarative_base()


def engine_options(database_url: str, debug: bool = False) -> dict[str, Any]:
    """Build create_engine keyword arguments for a database URL.

    SQLite gets a thread-agnostic connection (FastAPI runs sync
    dependencies in a thread pool); server databases get a bounded pool.
    """
    options: dict[str, Any] = {"echo": debug, "pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False}
    else:
        options.update(pool_size=5, max_overflow=10, pool_recycle=3600)
    return options


class Database:
    """Process-scoped engine and session factory.

    Created once by the application lifespan (or the processor service)
    and handed to whatever needs sessions.
    """

    def __init__(self, database_url: str = None, debug: bool = False, engine: Engine = None):
        if engine is None:
            engine = create_engine(database_url, **engine_options(database_url, debug))
        self.engine = engine
        self.session_factory = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=engine,
        )

    def session(self) -> Session:
        """Open a new session. Caller closes it."""
        return self.session_factory()

    def create_all(self) -> None:
        """Create all tables registered on Base."""
        # Import all models to register them with Base
        from api import models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)

    def dispose(self) -> None:
        self.engine.dispose()


def get_database(request: Request) -> Database:
    """Return the Database attached to the running application."""
    return request.app.state.database


def get_db(request: Request) -> Generator[Session, None, None]:
    """
    Dependency that provides a database session.

    Usage:
        @router.get("/items")
        def get_items(db: Session = Depends(get_db)):
            return db.query(Item).all()
    """
    db = get_database(request).session()
    try:
        yield db
    finally:
        db.close()
