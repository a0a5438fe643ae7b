from __future__ import annotations
import os
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session, declarative_base

Base = declarative_base()

# Lazily created, module-global singletons
_ENGINE = None
_SESSION_FACTORY: Optional[sessionmaker] = None

def get_engine():
    """Create the Engine on first use; reuse thereafter."""
    global _ENGINE
    if _ENGINE is None:
        url = os.getenv("DATABASE_URL")
        if not url:
            raise RuntimeError("DATABASE_URL is not set")
        kwargs = {"pool_pre_ping": True, "future": True}
        if url.startswith("sqlite"):
            # feeds are processed from worker threads
            kwargs["connect_args"] = {"check_same_thread": False}
        _ENGINE = create_engine(url, **kwargs)
    return _ENGINE

def get_session_factory() -> sessionmaker:
    """Create the sessionmaker on first use; reuse thereafter."""
    global _SESSION_FACTORY
    if _SESSION_FACTORY is None:
        _SESSION_FACTORY = sessionmaker(
            bind=get_engine(),
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            future=True,
        )
    return _SESSION_FACTORY

def reset_engine() -> None:
    """Drop the cached engine so the next session picks up a new DATABASE_URL."""
    global _ENGINE, _SESSION_FACTORY
    if _ENGINE is not None:
        _ENGINE.dispose()
    _ENGINE = None
    _SESSION_FACTORY = None

def SessionLocal() -> Session:
    """Return a new Session each call (FastAPI dependency will call this)."""
    return get_session_factory()()

@contextmanager
def session_scope() -> Generator[Session, None, None]:
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
