from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from snapurl_app.config import settings


def _engine_kwargs(database_url: str) -> dict:
    # SQLite needs this for FastAPI's threadpool; Postgres gets a real pool
    if database_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_timeout": 30,
        "pool_recycle": 1800,
    }


engine = create_engine(settings.database_url, **_engine_kwargs(settings.database_url))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
