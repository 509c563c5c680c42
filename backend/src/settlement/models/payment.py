"""Payment model for gateway payment attempts."""
import enum

from sqlalchemy import JSON, BigInteger, Column, Enum as SQLEnum, String, Text
from sqlalchemy.dialects.postgresql import JSONB

from settlement.models.base import Base, ExactDecimal


class PaymentStatus(enum.Enum):
    """Payment attempt status."""

    INITIATED = "initiated"
    APPROVED = "approved"
    CAPTURED = "captured"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PaymentStatus.CAPTURED, PaymentStatus.FAILED)


class Payment(Base):
    """
    One payment attempt against the PayPal gateway.

    Raw payer PII is never stored: payer email and payer id are kept only as
    SHA-256 hashes, and the full capture response is kept AES-GCM encrypted.
    """

    __tablename__ = "payments"

    order_id = Column(String(64), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    amount = Column(ExactDecimal(), nullable=False)  # as received; rounded only for PayPal
    currency = Column(String(3), nullable=False, default="USD")
    status = Column(
        SQLEnum(PaymentStatus, values_callable=lambda e: [m.value for m in e], name="payment_status"),
        nullable=False,
        default=PaymentStatus.INITIATED,
        index=True,
    )
    paypal_order_id = Column(String(64), nullable=True, unique=True)
    paypal_capture_id = Column(String(64), nullable=True)
    encrypted_response = Column(Text, nullable=True)
    payer_email_hash = Column(String(64), nullable=True)
    payer_id_hash = Column(String(64), nullable=True)
    transaction_metadata = Column(JSON().with_variant(JSONB, "postgresql"), nullable=True)
    error_code = Column(String(64), nullable=True)
    error_message = Column(Text, nullable=True)
    completed_at = Column(BigInteger, nullable=True)

    def __repr__(self) -> str:
        """String representation."""
        return f"<Payment(id={self.id}, order_id={self.order_id}, status={self.status.value}, amount={self.amount})>"
