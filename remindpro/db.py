from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Generator, Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker

from remindpro.settings import settings


def _ensure_sqlite_dir(url: str) -> None:
    if not url.startswith("sqlite:///"):
        return
    path = url.replace("sqlite:///", "", 1)
    dir_path = os.path.dirname(path)
    if dir_path and not os.path.exists(dir_path):
        os.makedirs(dir_path, exist_ok=True)


def build_engine(url: str):
    _ensure_sqlite_dir(url)
    return create_engine(
        url,
        connect_args={"check_same_thread": False} if url.startswith("sqlite") else {},
    )


engine = build_engine(settings.DATABASE_URL)

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope(factory=None) -> Iterator[Session]:
    db = (factory or SessionLocal)()
    try:
        yield db
    finally:
        db.close()


def describe_db(url: str | None = None) -> dict:
    parsed = make_url(url or settings.DATABASE_URL)
    info = {"dialect": parsed.get_backend_name(), "database": parsed.database}
    if info["dialect"] == "sqlite" and parsed.database:
        info["sqlite_path"] = os.path.abspath(parsed.database)
    return info
