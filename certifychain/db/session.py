"""Engine and session wiring for the CertifyChain record store.

``get_db`` is the FastAPI dependency used by the routers;
``get_db_session`` serves code that runs outside a request (health probes,
scripts). Both hand out sessions from the same ``SessionLocal`` factory.
"""

import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from certifychain.config import DATABASE_URL

log = logging.getLogger(__name__)

IS_SQLITE = DATABASE_URL.startswith("sqlite")


def _engine_options() -> dict:
    if not IS_SQLITE:
        return {"pool_pre_ping": True}
    # One shared connection; the API serves requests from several threads
    return {
        "connect_args": {"check_same_thread": False, "timeout": 30},
        "poolclass": StaticPool,
    }


def _sqlite_file() -> Optional[Path]:
    """Path of the SQLite database file, or None for memory/other engines."""
    prefix = "sqlite:///"
    if not DATABASE_URL.startswith(prefix):
        return None
    location = DATABASE_URL[len(prefix):]
    if not location or location == ":memory:":
        return None
    return Path(location)


engine = create_engine(DATABASE_URL, **_engine_options())

SessionLocal = sessionmaker(bind=engine, autoflush=False)


@event.listens_for(engine, "connect")
def set_sqlite_pragma(dbapi_connection, connection_record):
    """Foreign keys on, WAL journal, and a busy timeout so writers queue."""
    if not IS_SQLITE:
        return
    cursor = dbapi_connection.cursor()
    for pragma in ("foreign_keys=ON", "journal_mode=WAL", "busy_timeout=30000"):
        cursor.execute(f"PRAGMA {pragma}")
    cursor.close()


def get_db() -> Generator[Session, None, None]:
    """Request-scoped session; stores commit their own writes."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    """Session for non-request code, committed on exit or rolled back on error."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def _is_locked(error: OperationalError) -> bool:
    text = str(error)
    return "database is locked" in text or "SQLITE_BUSY" in text


def init_database(max_retries: int = 5, base_delay: float = 2.0) -> None:
    """Create the tables, backing off while another process holds the SQLite lock.

    Raises:
        OperationalError: on any other database error, or once the retries
            are used up.
    """
    from certifychain.db.models import Base

    db_file = _sqlite_file()
    if db_file is not None:
        db_file.parent.mkdir(parents=True, exist_ok=True)
    log.info(f"Initializing record store at {DATABASE_URL}")

    attempt = 0
    while True:
        try:
            Base.metadata.create_all(bind=engine)
        except OperationalError as e:
            attempt += 1
            if not _is_locked(e) or attempt >= max_retries:
                log.error(f"Record store initialization failed: {e}")
                raise
            delay = base_delay * (2 ** (attempt - 1))
            log.warning(f"Database locked during init, retry {attempt}/{max_retries} in {delay:.1f}s")
            time.sleep(delay)
        else:
            log.info("Record store tables ready")
            return
