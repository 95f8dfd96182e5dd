from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from cmr.core_settings import get_settings
from cmr.domain.models import Base

def build_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        # An in-memory database only lives as long as its single connection
        if ":memory:" in url or url.rstrip("/") in ("sqlite:", "sqlite+pysqlite:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=False, future=True, **kwargs)
    return create_engine(url, echo=False, future=True, pool_pre_ping=True)

settings = get_settings()
DATABASE_URL = settings.database_url
engine = build_engine(DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)

def get_db() -> Session:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def init_models(bind: Engine = None):
    Base.metadata.create_all(bind or engine)
