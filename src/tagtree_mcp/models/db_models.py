"""SQLAlchemy database models for the TagTree MCP server."""
import datetime

from sqlalchemy import (Boolean, Column, DateTime, ForeignKey, Index, Integer,
                        String, Table, UniqueConstraint, create_engine, event,
                        func)
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from tagtree_mcp.config import config

# Create base class for SQLAlchemy models
Base = declarative_base()

# Association between externally-owned notes and tags
note_tags = Table(
    "note_tags",
    Base.metadata,
    Column("note_id", String(255), primary_key=True),
    Column("tag_id", String(64), ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)


class DBTag(Base):
    """Database model for a tag."""
    __tablename__ = "tags"
    id = Column(String(64), primary_key=True)
    user_id = Column(Integer, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    color = Column(String(32), default="slate", nullable=False)
    # Not a foreign key: a dangling parent is displayed as a root
    parent_id = Column(String(64), nullable=True, index=True)
    is_parent = Column(Boolean, default=False, nullable=False)
    is_pinned = Column(Boolean, default=False, nullable=False)
    is_favorite = Column(Boolean, default=False, nullable=False)
    sort_order = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.datetime.now, nullable=False)
    updated_at = Column(DateTime, default=datetime.datetime.now, nullable=False)

    __table_args__ = (
        # Names are unique per user regardless of case
        Index("uq_tags_user_lower_name", "user_id", func.lower(name), unique=True),
    )

    def __repr__(self) -> str:
        """Return string representation of tag."""
        return f"<Tag(id='{self.id}', name='{self.name}', parent='{self.parent_id}')>"


class DBTagColor(Base):
    """Color map entry, keyed by tag name."""
    __tablename__ = "tag_colors"
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, index=True)
    tag_name = Column(String(255), nullable=False)
    color = Column(String(32), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "tag_name", name="unique_user_tag_color"),
    )

    def __repr__(self) -> str:
        return f"<TagColor(tag='{self.tag_name}', color='{self.color}')>"


class DBFavoriteTag(Base):
    """Favorites mirror: one row per favorite tag name."""
    __tablename__ = "favorite_tags"
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, index=True)
    tag_name = Column(String(255), nullable=False)
    position = Column(Integer, default=0, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "tag_name", name="unique_user_favorite"),
    )

    def __repr__(self) -> str:
        return f"<FavoriteTag(tag='{self.tag_name}')>"


def _apply_sqlite_pragmas(engine) -> None:
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        # WAL mode: writes go to separate journal, preventing corruption on crash
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def init_db(db_url=None):
    """Initialize the database and return the engine.

    Applies SQLite settings for crash resilience (WAL journal, NORMAL
    synchronous mode) and creates any missing tables.

    Args:
        db_url: Database URL. Defaults to the configured SQLite file.
    """
    url = db_url or config.get_db_url()
    if url in ("sqlite://", "sqlite:///:memory:"):
        # One shared connection, otherwise every session sees an empty database
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(url, pool_pre_ping=True)
    _apply_sqlite_pragmas(engine)

    Base.metadata.create_all(engine)
    return engine


def get_session_factory(engine=None):
    """Get a session factory for the database."""
    if engine is None:
        engine = init_db()
    return sessionmaker(bind=engine, expire_on_commit=False)
