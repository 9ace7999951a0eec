from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from core.config import settings


def build_engine(database_url: str, timeout: float):
    """
    Creates the engine with bounded waits on the pool and on connect,
    so an unreachable database surfaces as an error instead of a hang.
    """
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": timeout}
    else:
        connect_args = {"connect_timeout": int(timeout)}

    return create_engine(
        database_url,
        connect_args=connect_args,
        pool_pre_ping=True,
        pool_timeout=timeout,
    )


engine = build_engine(settings.DATABASE_URL, settings.STORE_TIMEOUT_SECONDS)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()
