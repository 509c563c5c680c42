"""SQLAlchemy ORM models for the settlement service."""
# Import all models here to ensure they are registered with Alembic

from settlement.models.base import Base
from settlement.models.payment import Payment, PaymentStatus

__all__ = [
    "Base",
    "Payment",
    "PaymentStatus",
]
