from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import get_settings


def build_engine(database_url: str, **engine_kwargs) -> Engine:
    """Engine for ``database_url``; SQLite connections enforce foreign keys."""
    is_sqlite = database_url.startswith("sqlite")
    connect_args: dict[str, object] = {}
    if is_sqlite:
        # Settlement runs on scheduler threads as well as request threads.
        connect_args["check_same_thread"] = False
    eng = create_engine(database_url, connect_args=connect_args, **engine_kwargs)
    if is_sqlite:
        event.listen(eng, "connect", _enable_sqlite_pragmas)
    return eng


def _enable_sqlite_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


def session_factory(eng: Engine) -> sessionmaker:
    # Services keep working with their objects after committing.
    return sessionmaker(bind=eng, autoflush=False, expire_on_commit=False)


engine = build_engine(get_settings().database_url)
SessionLocal = session_factory(engine)


class Base(DeclarativeBase):
    pass


@contextmanager
def session_scope() -> Iterator[Session]:
    """Session for background jobs: commits on success, rolls back on error."""
    session: Session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
