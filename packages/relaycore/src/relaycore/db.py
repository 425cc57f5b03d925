"""
Database engine and sessions.

Engine and sessionmaker are built on first use from DATABASE_URL, so
importing this module never opens a connection.
"""

import functools
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from relaycore.settings import get_settings


@functools.lru_cache()
def get_engine() -> Engine:
    """Process-wide engine for DATABASE_URL."""
    url = get_settings().DATABASE_URL
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, pool_pre_ping=True, connect_args=connect_args)


@functools.lru_cache()
def get_sessionmaker() -> sessionmaker:
    """
    Session factory bound to get_engine().

    Objects stay loaded after commit so handlers can read the rows they
    just wrote (status, balance) while publishing events.
    """
    return sessionmaker(bind=get_engine(), autoflush=False, expire_on_commit=False)


def get_db() -> Iterator[Session]:
    """FastAPI dependency: one session per request, closed afterwards."""
    db = get_sessionmaker()()
    try:
        yield db
    finally:
        db.close()
