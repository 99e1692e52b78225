# clinic_scheduler/config/database.py

import math
from sqlalchemy import create_engine, pool
from sqlalchemy.orm import declarative_base, sessionmaker
from clinic_scheduler.config.settings import get_settings

settings = get_settings()


def driver_timeout_args(database_url: str, timeout: float) -> dict:
    """connect_args bounding connect, lock waits and statements by the storage timeout"""
    if database_url.startswith("sqlite"):
        return {"check_same_thread": False, "timeout": timeout}
    if database_url.startswith("postgresql"):
        millis = int(timeout * 1000)
        return {
            "connect_timeout": max(1, math.ceil(timeout)),
            "options": f"-c lock_timeout={millis} -c statement_timeout={millis}"
        }
    return {}


def build_engine(database_url: str, timeout: float):
    """Engine with the storage timeout applied as pool and driver timeout"""
    connect_args = driver_timeout_args(database_url, timeout)
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": connect_args}
        if ":memory:" in database_url or database_url.rstrip("/") == "sqlite:":
            kwargs["poolclass"] = pool.StaticPool
        return create_engine(database_url, **kwargs)

    return create_engine(
        database_url,
        connect_args=connect_args,
        poolclass=pool.QueuePool,
        pool_size=20,
        max_overflow=40,
        pool_timeout=timeout,
        pool_pre_ping=True,
        pool_recycle=3600,
        echo=False
    )


engine = build_engine(settings.database_url, settings.storage_timeout_seconds)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
