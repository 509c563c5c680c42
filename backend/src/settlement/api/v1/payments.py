"""Payment endpoints consumed by the order-management service."""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from settlement.api.deps import get_settlement_service
from settlement.schemas.error import SuccessResponse
from settlement.schemas.payment import PaymentCompleteRequest, PaymentInitiateRequest
from settlement.services.settlement_service import SettlementService

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/initiate", response_model=SuccessResponse)
async def initiate_payment(
    body: PaymentInitiateRequest,
    service: SettlementService = Depends(get_settlement_service),
) -> SuccessResponse:
    """
    Create a payment and its PayPal order.

    - **order_id**: External order id
    - **user_id**: External user id
    - **amount**: Amount to charge
    - **currency**: ISO 4217 code (optional)
    """
    result = await service.initiate_payment(
        order_id=body.order_id,
        user_id=body.user_id,
        amount=body.amount,
        currency=body.currency,
    )
    return SuccessResponse(message="Payment initiated successfully", data=result.model_dump(mode="json"))


@router.post("/complete", response_model=SuccessResponse)
async def complete_payment(
    body: PaymentCompleteRequest,
    service: SettlementService = Depends(get_settlement_service),
) -> SuccessResponse:
    """Capture a payer-approved PayPal order."""
    result = await service.complete_payment(body.paypal_order_id)
    return SuccessResponse(message="Payment completed successfully", data=result.model_dump(mode="json"))


@router.get("", response_model=SuccessResponse)
async def list_payments(
    user_id: str = Query("", description="Owner of the payments"),
    limit: Optional[int] = Query(None, ge=1, description="Maximum results"),
    service: SettlementService = Depends(get_settlement_service),
) -> SuccessResponse:
    """List a user's payments, newest first."""
    payments = await service.list_user_payments(user_id, limit)
    return SuccessResponse(data=[p.model_dump(mode="json") for p in payments])


@router.get("/orders/{order_id}", response_model=SuccessResponse)
async def get_order_payment(
    order_id: str,
    service: SettlementService = Depends(get_settlement_service),
) -> SuccessResponse:
    """Get the most recent payment for an order."""
    payment = await service.get_payment_for_order(order_id)
    return SuccessResponse(data=payment.model_dump(mode="json"))


@router.get("/{payment_id}/verify", response_model=SuccessResponse)
async def verify_payment(
    payment_id: str,
    service: SettlementService = Depends(get_settlement_service),
) -> SuccessResponse:
    """Verify whether a payment has been captured."""
    result = await service.verify_payment(payment_id)
    return SuccessResponse(data=result.model_dump(mode="json"))


@router.get("/{payment_id}", response_model=SuccessResponse)
async def get_payment(
    payment_id: str,
    service: SettlementService = Depends(get_settlement_service),
) -> SuccessResponse:
    """Get payment details without audit data."""
    payment = await service.get_payment_details(payment_id)
    return SuccessResponse(data=payment.model_dump(mode="json"))
