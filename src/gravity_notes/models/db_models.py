"""SQLAlchemy database models for the metadata index."""
import datetime
from typing import Optional

from sqlalchemy import Column, DateTime, Integer, String, Text, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from gravity_notes.config import config

# Create base class for SQLAlchemy models
Base = declarative_base()


class DBNoteMeta(Base):
    """Index row describing one note file.

    ``content_hash`` is the SHA-256 of the content the row was derived
    from; a mismatch with the file on disk marks the row as stale.
    """
    __tablename__ = "note_meta"
    id = Column(String(255), primary_key=True, index=True)
    path = Column(Text, nullable=False)
    title = Column(String(255), nullable=False)
    preview = Column(Text, nullable=False, default="")
    created_at = Column(DateTime, default=datetime.datetime.now, nullable=False)
    modified_at = Column(DateTime, default=datetime.datetime.now, nullable=False, index=True)
    word_count = Column(Integer, nullable=False, default=0)
    char_count = Column(Integer, nullable=False, default=0)
    content_hash = Column(String(64), nullable=False)

    def __repr__(self) -> str:
        """Return string representation of the index row."""
        return f"<NoteMeta(id='{self.id}', title='{self.title}')>"


def init_db(in_memory: Optional[bool] = None, db_url: Optional[str] = None) -> Engine:
    """Create the index engine and its schema.

    In-memory databases use a StaticPool so every session in the process
    shares the one connection that holds the data. File databases get WAL
    journaling so readers never block the single writer.

    Args:
        in_memory: Override ``config.in_memory_db``.
        db_url: Explicit SQLAlchemy URL; wins over both of the above.
    """
    if in_memory is None:
        in_memory = config.in_memory_db

    if db_url is None:
        db_url = "sqlite:///:memory:" if in_memory else config.get_db_url()

    if ":memory:" in db_url:
        engine = create_engine(
            db_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(
            db_url,
            connect_args={"check_same_thread": False, "timeout": 30},
            pool_pre_ping=True,
        )

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            # WAL mode: writes go to separate journal, preventing corruption on crash
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.close()

    Base.metadata.create_all(engine)
    return engine


def get_session_factory(engine: Engine):
    """Get a session factory for the index database."""
    return sessionmaker(bind=engine, expire_on_commit=False)
