from __future__ import annotations
import datetime
import json
import logging
import os
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import create_engine, DateTime, Integer, String, Text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, sessionmaker, Session, Mapped, mapped_column

from .errors import PersistenceError, StaleSnapshotError

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


DB_PATH: str = os.environ.get("KANJI_SRS_DB", "kanji_library.db")
engine = create_engine(f"sqlite:///{DB_PATH}")
# Prevent attribute expiration on commit so returned objects remain accessible
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)

KANJI_KEY = "kanjiLibrary"
VOCABULARY_KEY = "vocabularyLibrary"
KATAKANA_KEY = "katakanaVocabularyLibrary"


class LibrarySnapshot(Base):
    """One whole collection (kanji or vocabulary) serialised as JSON.

    Every save replaces the payload in a single transaction and bumps
    ``version``, so a reader never sees a half-written collection.
    """
    __tablename__ = "library_snapshots"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    key: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    payload: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    version: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime,
        default=lambda: datetime.datetime.now(datetime.UTC),
        onupdate=lambda: datetime.datetime.now(datetime.UTC),
    )


def is_db_initialized() -> bool:
    """Check if the snapshot table exists."""
    from sqlalchemy import inspect
    inspector = inspect(engine)
    return LibrarySnapshot.__tablename__ in set(inspector.get_table_names())


def init_db() -> None:
    """Initialize the database by creating all tables."""
    Base.metadata.create_all(bind=engine)


def get_session() -> Session:
    return SessionLocal()


class SnapshotStore:
    """Key-value persistence for library collections.

    ``load`` never raises: a missing row, an unreadable database or a corrupt
    payload all come back as an empty collection. ``save`` raises
    PersistenceError so the caller can report it.
    """

    def load(self, key: str) -> Tuple[List[Dict[str, Any]], int]:
        session: Optional[Session] = None
        try:
            session = get_session()
            row = session.query(LibrarySnapshot).filter_by(key=key).first()
            if row is None:
                return [], 0
            items = json.loads(row.payload or "[]")
            if not isinstance(items, list):
                raise ValueError(f"payload for '{key}' is not a list")
            return items, row.version
        except (SQLAlchemyError, ValueError) as e:
            logger.error("Failed to load '%s' snapshot: %s", key, e)
            return [], 0
        finally:
            if session is not None:
                session.close()

    def save(self, key: str, items: List[Dict[str, Any]], expected_version: Optional[int] = None) -> int:
        """Replace the stored collection. Returns the new version."""
        session = get_session()
        try:
            row = session.query(LibrarySnapshot).filter_by(key=key).first()
            current = row.version if row is not None else 0
            if expected_version is not None and expected_version != current:
                raise StaleSnapshotError(key, expected_version, current)
            if row is None:
                row = LibrarySnapshot(key=key, version=0)
                session.add(row)
            row.payload = json.dumps(items, ensure_ascii=False)
            row.version = current + 1
            session.commit()
            return row.version
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to save '{key}' snapshot: {e}") from e
        finally:
            session.close()

    def version(self, key: str) -> int:
        session = get_session()
        try:
            row = session.query(LibrarySnapshot).filter_by(key=key).first()
            return row.version if row is not None else 0
        finally:
            session.close()


# ----------------------------------------------------------------------
# Import / export
# ----------------------------------------------------------------------
def export_snapshot(key: str, path: str, store: Optional[SnapshotStore] = None) -> int:
    """Write one collection to a JSON file. Returns the number of items written."""
    store = store or SnapshotStore()
    items, _version = store.load(key)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(items, f, ensure_ascii=False, indent=2)
    return len(items)


def import_snapshot(key: str, path: str, store: Optional[SnapshotStore] = None) -> int:
    """Replace one collection with the contents of a JSON file.

    Accepts the array written by ``export_snapshot`` (the same shape the
    browser edition keeps in localStorage).
    """
    store = store or SnapshotStore()
    try:
        with open(path, "r", encoding="utf-8") as f:
            items = json.load(f)
    except (OSError, ValueError) as e:
        raise PersistenceError(f"Could not read snapshot file {path}: {e}") from e
    if not isinstance(items, list):
        raise PersistenceError(f"Snapshot file {path} must contain a JSON array")
    store.save(key, items)
    return len(items)
