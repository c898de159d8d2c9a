"""
db/session.py – Engine factory + Session helper.

One Engine is cached per database URL; the lock timeout of the first caller wins.
db_session() commits on success, rolls back on error and always closes.
"""
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from .models import Base

DEFAULT_LOCK_TIMEOUT = 30.0   # seconds a connection waits on a database lock


# ── Engine cache (1 engine / database URL) ────────────────────────────────────

_engines: dict[str, Engine] = {}
_session_factories: dict[str, sessionmaker] = {}


def _get_engine(url: str, timeout: float = DEFAULT_LOCK_TIMEOUT) -> Engine:
    if url not in _engines:
        parsed = make_url(url)
        is_sqlite = parsed.get_backend_name() == "sqlite"
        if is_sqlite and parsed.database and parsed.database != ":memory:":
            Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)

        if is_sqlite:
            # busy timeout: a write blocked on a lock fails and rolls back
            options = {"connect_args": {"check_same_thread": False, "timeout": timeout}}
        else:
            options = {"pool_timeout": timeout}
        engine = create_engine(url, echo=False, **options)
        if is_sqlite:
            # WAL for concurrent readers; foreign_keys so CASCADE / SET NULL apply
            @event.listens_for(engine, "connect")
            def set_pragmas(conn, _):
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("PRAGMA synchronous=NORMAL")
                conn.execute("PRAGMA foreign_keys=ON")

        _engines[url] = engine
        _session_factories[url] = sessionmaker(bind=engine, expire_on_commit=False)
    return _engines[url]


def get_session_factory(url: str, timeout: float = DEFAULT_LOCK_TIMEOUT) -> sessionmaker:
    _get_engine(url, timeout)
    return _session_factories[url]


def init_db(url: str, timeout: float = DEFAULT_LOCK_TIMEOUT) -> None:
    """Create every table that does not exist yet."""
    Base.metadata.create_all(_get_engine(url, timeout))


def dispose_all() -> None:
    for engine in _engines.values():
        engine.dispose()
    _engines.clear()
    _session_factories.clear()


@contextmanager
def db_session(url: str, timeout: float = DEFAULT_LOCK_TIMEOUT) -> Generator[Session, None, None]:
    """Context manager returning a Session; commit/rollback/close handled here."""
    factory = get_session_factory(url, timeout)
    session: Session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
