from __future__ import annotations

from collections.abc import Generator

from fastapi import Request
from sqlalchemy.orm import Session

from relgraph.core.config import Settings, get_settings
from relgraph.db.pg.session import Database


def get_database(request: Request) -> Database:
    return request.app.state.database


def get_db(request: Request) -> Generator[Session, None, None]:
    db = get_database(request).session()
    try:
        yield db
    finally:
        db.close()


def get_settings_dep() -> Settings:
    return get_settings()
