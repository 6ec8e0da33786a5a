"""Database bootstrap for SQLModel/SQLite storage.

Exposes the engine behind the decision event log, table creation for the
FastAPI lifespan, and a session factory for ``EventRecorder``.
"""

from pathlib import Path

from sqlmodel import Session, SQLModel, create_engine

from .config import settings


def _ensure_sqlite_parent_dir(database_url: str) -> None:
    """Create local SQLite parent directory when file-based URL is used."""

    if not database_url.startswith("sqlite:///"):
        return
    raw_path = database_url[len("sqlite:///") :].split("?", 1)[0].strip()
    if not raw_path or raw_path == ":memory:" or raw_path.startswith("file:"):
        return
    db_path = Path(raw_path).expanduser()
    parent = db_path.parent
    if str(parent) and not parent.exists():
        parent.mkdir(parents=True, exist_ok=True)


_ensure_sqlite_parent_dir(settings.database_url)
_connect_args = {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}
engine = create_engine(settings.database_url, echo=False, connect_args=_connect_args)


def init_db() -> None:
    """Create all registered SQLModel tables."""

    from . import models  # noqa: F401
    SQLModel.metadata.create_all(engine)


def new_session() -> Session:
    return Session(engine)
