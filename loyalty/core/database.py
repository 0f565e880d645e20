"""Database configuration for the loyalty backend."""
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from loyalty.core.config import settings


def _create_engine(url: str):
    """Create a SQLAlchemy engine for the given URL, handling sqlite connect args."""
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True)

    connect_args = {"check_same_thread": False}
    if url in ("sqlite://", "sqlite:///:memory:"):
        # A single shared connection, otherwise every session sees an empty database
        return create_engine(url, connect_args=connect_args, poolclass=StaticPool)
    return create_engine(url, connect_args=connect_args)


engine = _create_engine(settings.DATABASE_URL)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)

Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency that yields a database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Create tables for every registered model."""
    from loyalty.models import (  # noqa: F401  (import registers model metadata)
        audit_log,
        commission_rule,
        customer,
        discount_code,
        pricing_rule,
        order,
        order_discount_usage,
        referral,
        salon,
        user,
    )

    Base.metadata.create_all(bind=engine)
