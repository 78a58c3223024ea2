"""
Key-value stores for learned selectors.

Pattern memory only depends on the ``PatternStore`` protocol. Values are
``field -> [selector, ...]`` mappings keyed by origin.
"""

from __future__ import annotations

import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol, runtime_checkable

import orjson
from sqlalchemy import JSON, DateTime, Integer, String, create_engine, event, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

logger = logging.getLogger(__name__)

FieldSelectors = dict[str, list[str]]


@runtime_checkable
class PatternStore(Protocol):
    """Persistence for learned patterns."""

    def get(self, origin: str) -> FieldSelectors | None: ...

    def put(self, origin: str, patterns: FieldSelectors) -> None: ...

    def load_all(self) -> dict[str, FieldSelectors]: ...


# =============================================================================
# JSON File Store
# =============================================================================


class JsonFilePatternStore:
    """One JSON document on disk, replaced atomically on every write."""

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self._lock = threading.Lock()

    def load_all(self) -> dict[str, FieldSelectors]:
        if not self.path.exists():
            return {}
        data = orjson.loads(self.path.read_bytes())
        if not isinstance(data, dict):
            raise ValueError(f"Pattern file {self.path} must contain an object")
        return data

    def get(self, origin: str) -> FieldSelectors | None:
        return self.load_all().get(origin)

    def put(self, origin: str, patterns: FieldSelectors) -> None:
        with self._lock:
            try:
                data = self.load_all()
            except (OSError, ValueError) as e:
                logger.warning(f"Rewriting unreadable pattern file {self.path}: {e}")
                data = {}
            data[origin] = patterns

            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp_path.write_bytes(orjson.dumps(data, option=orjson.OPT_INDENT_2 | orjson.OPT_SORT_KEYS))
            os.replace(tmp_path, self.path)


# =============================================================================
# SQL Store
# =============================================================================


class Base(DeclarativeBase):
    """Base class for pattern memory tables."""


class LearnedPattern(Base):
    """Selectors learned for one origin/field pair."""

    __tablename__ = "learned_patterns"

    origin: Mapped[str] = mapped_column(String(255), primary_key=True)
    field: Mapped[str] = mapped_column(String(64), primary_key=True)
    selectors: Mapped[list[str]] = mapped_column(JSON, default=list)
    hits: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        return f"<LearnedPattern {self.origin}:{self.field} ({len(self.selectors)} selectors)>"


def _configure_sqlite(engine: Engine) -> None:
    """Enable WAL so readers are not blocked by the background writer."""

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()


class SqlPatternStore:
    """SQLAlchemy-backed store, one row per origin/field."""

    def __init__(self, database_url: str = "sqlite:///data/patterns.db", echo: bool = False):
        if database_url.startswith("sqlite:///"):
            db_path = Path(database_url.replace("sqlite:///", ""))
            if str(db_path) != ":memory:":
                db_path.parent.mkdir(parents=True, exist_ok=True)

        self.engine = create_engine(database_url, echo=echo, future=True)
        if database_url.startswith("sqlite"):
            _configure_sqlite(self.engine)
        Base.metadata.create_all(self.engine)
        self._sessions = sessionmaker(bind=self.engine, expire_on_commit=False)

    def load_all(self) -> dict[str, FieldSelectors]:
        data: dict[str, FieldSelectors] = {}
        with self._sessions() as session:
            for row in session.scalars(select(LearnedPattern)):
                data.setdefault(row.origin, {})[row.field] = list(row.selectors or [])
        return data

    def get(self, origin: str) -> FieldSelectors | None:
        with self._sessions() as session:
            rows = session.scalars(select(LearnedPattern).where(LearnedPattern.origin == origin)).all()
        if not rows:
            return None
        return {row.field: list(row.selectors or []) for row in rows}

    def put(self, origin: str, patterns: FieldSelectors) -> None:
        with self._sessions.begin() as session:
            for field_name, selectors in patterns.items():
                row = session.get(LearnedPattern, (origin, field_name))
                if row is None:
                    row = LearnedPattern(origin=origin, field=field_name, selectors=list(selectors), hits=1)
                    session.add(row)
                else:
                    row.selectors = list(selectors)
                    row.hits = (row.hits or 0) + 1
                    row.updated_at = datetime.now(timezone.utc)

    def close(self) -> None:
        self.engine.dispose()
