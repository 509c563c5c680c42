"""Durable store for payment records."""
from decimal import Decimal
from typing import Any, Callable, List, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from settlement.models.base import now_ms
from settlement.models.payment import Payment, PaymentStatus

logger = structlog.get_logger(__name__)


class PaymentRecordStore:
    """
    Persistence for Payment records.

    Every operation runs in its own short transaction and commits before
    returning, so a record written before a gateway call survives a later
    failure of that call. Updates are single UPDATE statements keyed by id;
    concurrent writers to the same id resolve last-write-wins, except where
    the forward-only guards below reject the write.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], int] = now_ms,
    ):
        """
        Initialize the store.

        Args:
            session_factory: Factory producing async sessions (expire_on_commit=False)
            clock: Source of epoch-millisecond timestamps
        """
        self.session_factory = session_factory
        self.clock = clock

    async def create(
        self,
        payment_id: str,
        order_id: str,
        user_id: str,
        amount: Decimal,
        currency: str = "USD",
    ) -> Payment:
        """
        Insert a new payment in INITIATED status.

        Args:
            payment_id: Internal payment id
            order_id: External order reference
            user_id: External user reference
            amount: Payment amount as received
            currency: ISO 4217 code

        Returns:
            Created payment
        """
        now = self.clock()
        payment = Payment(
            id=payment_id,
            order_id=order_id,
            user_id=user_id,
            amount=amount,
            currency=currency,
            status=PaymentStatus.INITIATED,
            created_at=now,
            updated_at=now,
        )

        async with self.session_factory() as session:
            async with session.begin():
                session.add(payment)

        logger.debug("payment_record_created", payment_id=payment_id, order_id=order_id)
        return payment

    async def get_by_id(self, payment_id: str) -> Optional[Payment]:
        """Get payment by internal id."""
        return await self._first(select(Payment).where(Payment.id == payment_id))

    async def get_by_order_id(self, order_id: str) -> Optional[Payment]:
        """Get the most recent payment for an order."""
        return await self._first(
            select(Payment)
            .where(Payment.order_id == order_id)
            .order_by(Payment.created_at.desc())
            .limit(1)
        )

    async def get_by_gateway_order_id(self, paypal_order_id: str) -> Optional[Payment]:
        """Get payment by PayPal order id."""
        return await self._first(
            select(Payment)
            .where(Payment.paypal_order_id == paypal_order_id)
            .order_by(Payment.created_at.desc())
            .limit(1)
        )

    async def list_by_user(self, user_id: str, limit: int = 50) -> List[Payment]:
        """
        List a user's payments, newest first.

        Args:
            user_id: External user reference
            limit: Maximum rows returned

        Returns:
            List of payments
        """
        async with self.session_factory() as session:
            result = await session.execute(
                select(Payment)
                .where(Payment.user_id == user_id)
                .order_by(Payment.created_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def update_gateway_order_id(self, payment_id: str, paypal_order_id: str) -> Optional[Payment]:
        """Attach the PayPal order id to a payment."""
        return await self._update(payment_id, {"paypal_order_id": paypal_order_id})

    async def update_status(self, payment_id: str, status: PaymentStatus) -> Optional[Payment]:
        """
        Move a non-terminal payment to a new status.

        Terminal records (captured, failed) are left untouched.
        """
        if status == PaymentStatus.INITIATED:
            raise ValueError("Payments cannot return to initiated")

        return await self._update(
            payment_id,
            {"status": status},
            Payment.status.notin_([PaymentStatus.CAPTURED, PaymentStatus.FAILED]),
        )

    async def store_capture_details(
        self,
        payment_id: str,
        capture_id: str,
        encrypted_response: str,
        payer_email_hash: Optional[str],
        payer_id_hash: Optional[str],
        metadata: dict[str, Any],
    ) -> Optional[Payment]:
        """
        Record a confirmed capture in a single update.

        A failed record may still move to captured here, since the gateway
        is the source of truth for money movement. An already captured
        record is never overwritten.

        Args:
            payment_id: Internal payment id
            capture_id: PayPal capture id
            encrypted_response: Audit token of the full gateway response
            payer_email_hash: SHA-256 of payer email
            payer_id_hash: SHA-256 of payer id
            metadata: Non-sensitive transaction summary

        Returns:
            Updated payment
        """
        now = self.clock()
        return await self._update(
            payment_id,
            {
                "paypal_capture_id": capture_id,
                "encrypted_response": encrypted_response,
                "payer_email_hash": payer_email_hash,
                "payer_id_hash": payer_id_hash,
                "transaction_metadata": metadata,
                "status": PaymentStatus.CAPTURED,
                "error_code": None,
                "error_message": None,
                "completed_at": now,
            },
            Payment.status != PaymentStatus.CAPTURED,
            now=now,
        )

    async def store_failure_details(
        self,
        payment_id: str,
        error_code: str,
        error_message: str,
    ) -> Optional[Payment]:
        """
        Mark a payment as failed with an error code and message.

        Captured payments are never downgraded.
        """
        return await self._update(
            payment_id,
            {
                "status": PaymentStatus.FAILED,
                "error_code": error_code,
                "error_message": error_message[:1000],
            },
            Payment.status != PaymentStatus.CAPTURED,
        )

    async def _first(self, query) -> Optional[Payment]:  # noqa: ANN001
        async with self.session_factory() as session:
            result = await session.execute(query)
            return result.scalars().first()

    async def _update(
        self,
        payment_id: str,
        values: dict[str, Any],
        *guards,
        now: Optional[int] = None,
    ) -> Optional[Payment]:
        values = {**values, "updated_at": now if now is not None else self.clock()}

        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(Payment)
                    .where(Payment.id == payment_id, *guards)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    logger.info(
                        "payment_update_skipped",
                        payment_id=payment_id,
                        fields=sorted(values),
                    )
                refreshed = await session.execute(select(Payment).where(Payment.id == payment_id))
                return refreshed.scalars().first()
