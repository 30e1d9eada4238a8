"""Database setup for the processor."""

from contextlib import contextmanager
from typing import Callable, Generator

from sqlalchemy.orm import Session

from api.config.database import Database
from processor.config import ProcessorSettings


def create_database(settings: ProcessorSettings) -> Database:
    """Engine and session factory for the processor process."""
    return Database(settings.DATABASE_URL)


@contextmanager
def session_scope(session_factory: Callable[[], Session]) -> Generator[Session, None, None]:
    """Session as a context manager; always closed."""
    db = session_factory()
    try:
        yield db
    finally:
        db.close()
