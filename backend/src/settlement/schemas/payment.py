"""Pydantic schemas for payment entities."""
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from settlement.models.payment import PaymentStatus


class PaymentInitiate(BaseModel):
    """Schema for initiating a payment."""

    order_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0, description="Amount as received, sent to PayPal with 2 decimals")
    currency: Optional[str] = Field(None, min_length=3, max_length=3, description="ISO 4217 currency code")

    @field_validator("currency")
    @classmethod
    def uppercase_currency(cls, value: Optional[str]) -> Optional[str]:
        """Normalize currency codes to upper case."""
        return value.upper() if value else value


class PaymentComplete(BaseModel):
    """Schema for completing a payment after payer approval."""

    paypal_order_id: str = Field(..., min_length=1)


class PaymentInitiateRequest(BaseModel):
    """
    Request body for payment initiation.

    Fields are optional here so that missing ones are reported by the
    service as a single validation error.
    """

    order_id: Optional[str] = Field(None, description="External order id")
    user_id: Optional[str] = Field(None, description="External user id")
    amount: Optional[Decimal] = Field(None, description="Amount to charge, stored as received")
    currency: Optional[str] = Field(None, description="ISO 4217 currency code")


class PaymentCompleteRequest(BaseModel):
    """Request body for completing a payment."""

    paypal_order_id: Optional[str] = Field(None, description="PayPal order id approved by the payer")


class PaymentInitiateResult(BaseModel):
    """Result of a payment initiation."""

    payment_id: str
    paypal_order_id: Optional[str]
    approval_url: Optional[str]
    status: PaymentStatus = PaymentStatus.INITIATED


class PaymentCompleteResult(BaseModel):
    """Result of a payment completion."""

    payment_id: str
    order_id: str
    status: PaymentStatus
    amount: str
    currency: str


class PaymentView(BaseModel):
    """
    Caller-facing projection of a payment.

    Never carries the encrypted audit blob or payer hashes.
    """

    model_config = ConfigDict(from_attributes=True)

    id: str
    order_id: str
    user_id: str
    amount: Decimal
    currency: str
    status: PaymentStatus
    paypal_order_id: Optional[str] = None
    transaction_metadata: Optional[dict[str, Any]] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    created_at: int
    updated_at: int
    completed_at: Optional[int] = None


class PaymentVerifyResult(BaseModel):
    """Result of a payment verification."""

    verified: bool
    status: str
    payment: Optional[PaymentView] = None
    error: Optional[str] = None
