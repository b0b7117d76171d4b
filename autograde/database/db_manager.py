"""
Database manager — engine, session factory and dialect-aware upserts.

One ``DatabaseManager`` is built by the composition root and shared by
the stores. Sessions are scoped to each store call, so the stores are
safe to call from worker threads (``asyncio.to_thread``).
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from autograde.database.models import Base
from autograde.utils.logger import get_logger

log = get_logger(__name__)

UPSERT_DIALECTS = ("sqlite", "postgresql")


class DatabaseManager:
    """Owns the SQLAlchemy engine and hands out sessions."""

    def __init__(self, database_url: str, echo: bool = False, engine: Optional[Engine] = None):
        self.database_url = database_url
        self.engine = engine or self._create_engine(database_url, echo)
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    @staticmethod
    def _create_engine(database_url: str, echo: bool) -> Engine:
        kwargs: Dict[str, Any] = {"echo": echo, "future": True}
        if database_url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                # one shared connection, otherwise every session sees an empty DB
                kwargs["poolclass"] = StaticPool
        engine = create_engine(database_url, **kwargs)
        if engine.dialect.name == "sqlite":
            event.listen(engine, "connect", _sqlite_pragmas)
        return engine

    def init_db(self) -> None:
        """Create all tables if they do not exist."""
        Base.metadata.create_all(self.engine)
        log.info("Database initialised at %s", self.engine.url.render_as_string(hide_password=True))

    def session(self) -> Session:
        return self._session_factory()

    @property
    def supports_native_upsert(self) -> bool:
        return self.engine.dialect.name in UPSERT_DIALECTS

    def upsert_statement(
        self,
        table,
        values: Dict[str, Any],
        conflict_columns: Iterable[str],
        update_columns: Iterable[str],
    ):
        """
        Build ``INSERT ... ON CONFLICT (conflict_columns) DO UPDATE``.

        Only valid when :attr:`supports_native_upsert` is true.
        """
        if self.engine.dialect.name == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        else:
            from sqlalchemy.dialects.sqlite import insert

        stmt = insert(table).values(**values)
        return stmt.on_conflict_do_update(
            index_elements=list(conflict_columns),
            set_={col: stmt.excluded[col] for col in update_columns},
        )

    def dispose(self) -> None:
        self.engine.dispose()


def _sqlite_pragmas(dbapi_connection, _record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()
