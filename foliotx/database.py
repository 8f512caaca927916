#!/usr/bin/env python
"""
foliotx/database.py

Storage boundary for the ledger. The services never touch a session: the
routers load portfolios through services/backup.py, run a pure engine and
save what it returns. This module only knows where the data lives and how
to open a session on it.

Configuration (.env at the project root, then the process environment):
- DATABASE_URL   full SQLAlchemy URL; wins over DATABASE_FILE when set
- DATABASE_FILE  SQLite file, relative to the project root unless absolute
- LOG_LEVEL      root logging level (default INFO)
"""

import os
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.types import TypeDecorator, String

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
load_dotenv(dotenv_path=os.path.join(PROJECT_ROOT, ".env"))

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)

DEFAULT_DATABASE_FILE = "foliotx/foliotx.db"

# ------------------------------------------------------------------
# Where the ledger lives
# ------------------------------------------------------------------
def _sqlite_url_for(path: str) -> str:
    if not os.path.isabs(path):
        path = os.path.join(PROJECT_ROOT, path)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    return f"sqlite:///{path}"


def resolve_database_url() -> str:
    url = os.getenv("DATABASE_URL")
    if url:
        return url
    return _sqlite_url_for(os.getenv("DATABASE_FILE", DEFAULT_DATABASE_FILE))


def _connect_args(url: str) -> dict:
    # SQLite connections are shared across FastAPI's worker threads
    return {"check_same_thread": False} if url.startswith("sqlite") else {}


DATABASE_URL = resolve_database_url()
logger.debug(f"[Storage] DATABASE_URL: {DATABASE_URL}")

engine = create_engine(DATABASE_URL, connect_args=_connect_args(DATABASE_URL))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

# ------------------------------------------------------------------
# Timestamps
# ------------------------------------------------------------------
class UTCDateTime(TypeDecorator):
    """
    Timestamps are written as ISO8601 text ending in 'Z' and always come
    back offset-aware in UTC. Naive values are taken to be UTC already.
    """
    impl = String
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)

# ------------------------------------------------------------------
# Sessions
# ------------------------------------------------------------------
def get_db():
    """FastAPI dependency: one session per request, always closed."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope():
    """Session for work outside a request; rolled back if the block raises."""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

# ------------------------------------------------------------------
# Startup
# ------------------------------------------------------------------
def create_tables():
    """
    Idempotent. Creates missing tables, then loads the ledger once so an
    empty database is seeded with the default portfolio.
    """
    from foliotx.models import portfolio  # noqa: F401  (registers models)
    from foliotx.services.backup import load_portfolios

    Base.metadata.create_all(bind=engine)
    with session_scope() as db:
        portfolios = load_portfolios(db)
    logger.info(f"[Storage] Ledger ready with {len(portfolios)} portfolio(s)")


if __name__ == "__main__":
    create_tables()
