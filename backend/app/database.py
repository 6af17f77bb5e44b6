"""
Database Engine & Session Management
SQLAlchemy engine, session factory and table creation.
"""
import os
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from app.config import get_settings

settings = get_settings()


def _ensure_sqlite_dir(url: str) -> None:
    if not url.startswith("sqlite:///"):
        return
    directory = os.path.dirname(url.replace("sqlite:///", ""))
    if directory:
        os.makedirs(directory, exist_ok=True)


_ensure_sqlite_dir(settings.DATABASE_URL)

engine = create_engine(
    settings.DATABASE_URL,
    connect_args={"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {},
    echo=settings.DEBUG,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def init_db(bind=None):
    """Create all tables. Called once at application startup."""
    from app.models import signing_session as _session_model   # noqa: F401
    from app.models import audit as _audit_model               # noqa: F401
    from app.models import customer as _customer_model         # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
