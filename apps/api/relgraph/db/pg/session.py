from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from relgraph.core.config import Settings


def _sqlalchemy_dsn(dsn: str) -> str:
    if dsn.startswith("postgresql://"):
        return dsn.replace("postgresql://", "postgresql+psycopg://", 1)
    return dsn


def build_engine(settings: Settings) -> Engine:
    dsn = _sqlalchemy_dsn(settings.database_dsn)
    engine_kwargs: dict[str, object] = {
        "future": True,
        "pool_pre_ping": True,
    }
    if dsn.startswith("postgresql+psycopg://"):
        # Webhook bursts and manual syncs share the pool; size it for concurrent requests.
        engine_kwargs.update(
            {
                "pool_size": settings.db_pool_size,
                "max_overflow": settings.db_max_overflow,
                "pool_timeout": settings.db_pool_timeout_seconds,
                "pool_recycle": settings.db_pool_recycle_seconds,
            }
        )
    elif dsn.startswith("sqlite"):
        engine_kwargs["connect_args"] = {"check_same_thread": False}
    return create_engine(dsn, **engine_kwargs)


class Database:
    """Engine plus session factory, built once per process and handed to consumers."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self.session_factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)

    @classmethod
    def from_settings(cls, settings: Settings) -> Database:
        return cls(build_engine(settings))

    def session(self) -> Session:
        return self.session_factory()

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        db = self.session()
        try:
            yield db
        finally:
            db.close()

    def create_all(self) -> None:
        from relgraph.db.pg import models as _models  # noqa: F401
        from relgraph.db.pg.base import Base

        Base.metadata.create_all(bind=self.engine)

    def dispose(self) -> None:
        self.engine.dispose()
