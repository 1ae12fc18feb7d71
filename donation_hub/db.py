from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker, declarative_base

from .config import get_settings

Base = declarative_base()


def make_engine(url: str, **kwargs) -> Engine:
    """Build an engine; SQLite gets cross-thread access and enforced FKs."""
    is_sqlite = url.startswith("sqlite")
    if is_sqlite:
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    eng = create_engine(url, future=True, **kwargs)

    if is_sqlite:
        @event.listens_for(eng, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return eng


def make_sessionmaker(eng: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=eng, future=True)


engine = make_engine(get_settings().database_url)
SessionLocal = make_sessionmaker(engine)


def init_db(eng: Engine = None) -> None:
    # Importing models registers the tables on Base.metadata
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=eng or engine)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
