# app/db/session.py
import asyncio
from typing import Any, Callable, Generator, TypeVar

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import settings

T = TypeVar("T")

def _normalize(url: str) -> str:
    if url and url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    if url and url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url

SQLALCHEMY_DATABASE_URL = _normalize(settings.DATABASE_URL)

# sessions are handed to worker threads by run_in_session
_connect_args = {"check_same_thread": False} if SQLALCHEMY_DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(SQLALCHEMY_DATABASE_URL, pool_pre_ping=True, connect_args=_connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

_LOCK_KEY = "async_lock"

async def run_in_session(db: Session, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """
    Runs blocking ORM work in a worker thread so the event loop keeps serving.
    Calls against one session run one at a time.
    """
    loop = asyncio.get_running_loop()
    owner = db.info.get(_LOCK_KEY)
    if owner is None or owner[0] is not loop:
        owner = db.info[_LOCK_KEY] = (loop, asyncio.Lock())
    async with owner[1]:
        return await asyncio.to_thread(fn, *args, **kwargs)
