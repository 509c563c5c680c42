"""FastAPI dependencies wiring the settlement service."""
from functools import lru_cache

from settlement.adapters.paypal_adapter import PayPalAdapter
from settlement.config import settings
from settlement.database import AsyncSessionLocal
from settlement.services.payment_store import PaymentRecordStore
from settlement.services.settlement_service import SettlementService
from settlement.utils.crypto import CryptoVault


@lru_cache
def get_settlement_service() -> SettlementService:
    """
    Settlement service dependency.

    The service holds configuration only; each operation opens its own
    database transactions and gateway connections.

    Returns:
        SettlementService: Configured service
    """
    gateway = PayPalAdapter(
        client_id=settings.paypal_client_id,
        client_secret=settings.paypal_client_secret.get_secret_value(),
        api_base=settings.paypal_api_base,
        return_url=settings.return_url,
        cancel_url=settings.cancel_url,
        brand_name=settings.brand_name,
        timeout_seconds=settings.gateway_timeout_seconds,
    )
    return SettlementService(
        store=PaymentRecordStore(AsyncSessionLocal),
        gateway=gateway,
        vault=CryptoVault(settings.encryption_key_b64.get_secret_value()),
        default_currency=settings.default_currency,
        user_payments_limit=settings.user_payments_limit,
    )
