# db/session.py
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

from core.config import get_settings

DATABASE_URL = get_settings().database_url


def build_engine(database_url: str, **kwargs):
    """Crée un engine SQLAlchemy (SQLite autorisé multi-thread pour FastAPI)."""
    if database_url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    return create_engine(database_url, **kwargs)


engine = build_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Session:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None) -> None:
    """Crée les tables manquantes (les migrations de schéma sont gérées hors application)."""
    from db.models import Base
    Base.metadata.create_all(bind=bind or engine)
