"""Base model with common fields for all entities."""
import time
from decimal import Decimal

from sqlalchemy import BigInteger, Column, Numeric, String
from sqlalchemy.types import TypeDecorator

from settlement.database import Base as DeclarativeBase


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


class ExactDecimal(TypeDecorator):
    """
    Decimal column that returns exactly the value that was written.

    PostgreSQL stores it as unconstrained NUMERIC, which keeps any scale.
    Other backends store the decimal string, since e.g. SQLite would round
    NUMERIC through a float.
    """

    impl = String(64)
    cache_ok = True

    def load_dialect_impl(self, dialect):  # noqa: ANN001
        if dialect.name == "postgresql":
            return dialect.type_descriptor(Numeric(asdecimal=True))
        return dialect.type_descriptor(String(64))

    def process_bind_param(self, value, dialect):  # noqa: ANN001
        if value is None:
            return None
        value = Decimal(str(value))
        return value if dialect.name == "postgresql" else str(value)

    def process_result_value(self, value, dialect):  # noqa: ANN001
        if value is None:
            return None
        return Decimal(str(value))


class Base(DeclarativeBase):
    """Base model class with common fields."""

    __abstract__ = True

    id = Column(String(64), primary_key=True)
    created_at = Column(BigInteger, default=now_ms, nullable=False, index=True)
    updated_at = Column(BigInteger, default=now_ms, onupdate=now_ms, nullable=False)
