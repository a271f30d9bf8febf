"""Database bootstrap helpers and column types shared by all services."""

from sqlalchemy import JSON, Numeric, String, create_engine
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.types import TypeDecorator

from railpay.common.config import settings


# Single SQLAlchemy engine per process.
engine = create_engine(settings.postgres_dsn, pool_pre_ping=True)
# `expire_on_commit=False` keeps ORM objects readable after commit in handlers.
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)

JSONType = JSON().with_variant(JSONB(), "postgresql")


class AtomicAmount(TypeDecorator):
    """Arbitrary-precision integer amount (wei, sats, drops...).

    Stored as NUMERIC(78,0) on PostgreSQL and as a decimal string elsewhere so
    that no backend ever routes the value through a float.
    """

    impl = String(78)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(Numeric(78, 0))
        return dialect.type_descriptor(String(78))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        amount = int(value)
        if dialect.name == "postgresql":
            return amount
        return str(amount)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return int(value)


class Base(DeclarativeBase):
    """Declarative base for SQLAlchemy models."""

    pass
