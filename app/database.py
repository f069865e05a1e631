from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from app.config import get_settings


def _connect_args(url: str) -> dict:
    # SQLite connections are shared across FastAPI's worker threads
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


_url = get_settings().database_url

engine = create_engine(_url, connect_args=_connect_args(_url), pool_pre_ping=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Yield one session per request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
