from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.engine.url import make_url

from app.core.settings import settings

SQLALCHEMY_DATABASE_URL = settings.database_url


def engine_connect_args(database_url: str) -> dict:
    if database_url.startswith("sqlite"):
        # Writers queue on the database lock instead of failing fast.
        return {"check_same_thread": False, "timeout": 30}
    try:
        url = make_url(database_url)
        if (url.drivername or "").startswith("postgresql") and url.host not in {None, "localhost", "127.0.0.1"}:
            return {"sslmode": "require"}
    except Exception:
        return {}
    return {}


engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args=engine_connect_args(SQLALCHEMY_DATABASE_URL),
    pool_pre_ping=True,
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory():
    return SessionLocal
