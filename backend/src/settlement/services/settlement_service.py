"""Settlement service driving payments through PayPal.

State machine::

    initiated -> approved -> captured
        \\           \\
         +-----------+-> failed

Capture is at-most-once by convention rather than by lock. Before capturing,
the local record is checked (already captured: return it) and then the
gateway order itself (already COMPLETED: record it without a second
capture). Two completions racing past both checks can still both reach the
capture endpoint; PayPal rejects the second capture, and that rejection is
resolved by re-querying the order and treating COMPLETED as success.
"""
from typing import Any, List, Optional

import structlog
from pydantic import ValidationError as SchemaValidationError

from settlement.adapters.paypal_adapter import PayPalAdapter, format_amount
from settlement.exceptions import (
    CaptureDetailsMissingError,
    GatewayAuthError,
    GatewayCaptureError,
    GatewayError,
    GatewayLookupError,
    PaymentCaptureFailedError,
    PaymentNotApprovedError,
    PaymentNotFoundError,
    SettlementError,
    ValidationError,
)
from settlement.metrics import payments_captured_total, payments_failed_total, payments_initiated_total
from settlement.models.payment import Payment, PaymentStatus
from settlement.schemas.payment import (
    PaymentComplete,
    PaymentCompleteResult,
    PaymentInitiate,
    PaymentInitiateResult,
    PaymentVerifyResult,
    PaymentView,
)
from settlement.services.payment_store import PaymentRecordStore
from settlement.utils.crypto import CryptoVault
from settlement.utils.ids import IdGenerator, PaymentIdGenerator

ORDER_COMPLETED = "COMPLETED"
ORDER_APPROVED = "APPROVED"

# Coarse codes persisted on the payment record when completion fails.
# Errors not listed here leave the record as it is.
FAILURE_CODES = {
    GatewayCaptureError: "CAPTURE_FAILED",
    PaymentCaptureFailedError: "CAPTURE_FAILED",
    GatewayLookupError: "GATEWAY_LOOKUP_FAILED",
    GatewayAuthError: "GATEWAY_AUTH_FAILED",
}

# PayPal order states that can never become capturable. Other unapproved
# states (CREATED, PAYER_ACTION_REQUIRED) leave the record untouched.
CLOSED_ORDER_CODES = {
    "VOIDED": "ORDER_VOIDED",
}


def _schema_error(exc: SchemaValidationError) -> ValidationError:
    fields = sorted({".".join(str(loc) for loc in err["loc"]) for err in exc.errors()})
    return ValidationError(f"Missing or invalid fields: {', '.join(fields)}")


class SettlementService:
    """Service orchestrating payment initiation, capture and verification."""

    def __init__(
        self,
        store: PaymentRecordStore,
        gateway: PayPalAdapter,
        vault: CryptoVault,
        id_generator: Optional[IdGenerator] = None,
        logger: Optional[Any] = None,
        default_currency: str = "USD",
        user_payments_limit: int = 50,
    ):
        """
        Initialize settlement service.

        Args:
            store: Payment record store
            gateway: PayPal gateway client
            vault: Hashing and encryption for payer data
            id_generator: Callable producing fresh payment ids
            logger: Structured logger
            default_currency: Currency used when the caller omits one
            user_payments_limit: Upper bound for user payment listings
        """
        self.store = store
        self.gateway = gateway
        self.vault = vault
        self.id_generator = id_generator or PaymentIdGenerator()
        self.logger = logger or structlog.get_logger(__name__)
        self.default_currency = default_currency
        self.user_payments_limit = user_payments_limit

    async def initiate_payment(
        self,
        order_id: str,
        user_id: str,
        amount: Any,
        currency: Optional[str] = None,
    ) -> PaymentInitiateResult:
        """
        Create a local payment record and a PayPal order for it.

        If PayPal order creation fails, the local record stays INITIATED with
        no gateway order id and the gateway error propagates.

        Args:
            order_id: External order id
            user_id: External user id
            amount: Payment amount
            currency: ISO 4217 code (defaults to the configured currency)

        Returns:
            Payment id, PayPal order id and approval URL

        Raises:
            ValidationError: If a required field is missing
            GatewayError: If PayPal rejects the order
        """
        try:
            request = PaymentInitiate(order_id=order_id, user_id=user_id, amount=amount, currency=currency)
        except SchemaValidationError as e:
            raise _schema_error(e) from None

        currency = request.currency or self.default_currency
        payment_id = self.id_generator()
        log = self.logger.bind(payment_id=payment_id, order_id=request.order_id)

        await self.store.create(payment_id, request.order_id, request.user_id, request.amount, currency)
        payments_initiated_total.labels(currency=currency).inc()
        log.info("payment_record_created", amount=str(request.amount), currency=currency)

        try:
            order = await self.gateway.create_order(request.order_id, request.amount, currency)
        except GatewayError as e:
            log.error("payment_initiation_failed", error_code=e.error_code, error=e.message)
            raise

        await self.store.update_gateway_order_id(payment_id, order["gateway_order_id"])
        log.info("payment_initiated", gateway_order_id=order["gateway_order_id"])

        return PaymentInitiateResult(
            payment_id=payment_id,
            paypal_order_id=order["gateway_order_id"],
            approval_url=order["approval_url"],
            status=PaymentStatus.INITIATED,
        )

    async def complete_payment(self, gateway_order_id: str) -> PaymentCompleteResult:
        """
        Capture an approved PayPal order at most once.

        Args:
            gateway_order_id: PayPal order id

        Returns:
            Captured payment summary

        Raises:
            ValidationError: If the order id is missing
            PaymentNotFoundError: If no local payment matches
            PaymentNotApprovedError: If the payer has not approved the order
            PaymentCaptureFailedError: If capture did not complete
            CaptureDetailsMissingError: If PayPal completed the order without capture details
            GatewayError: On gateway failures (timeouts are retryable)
        """
        try:
            PaymentComplete(paypal_order_id=gateway_order_id)
        except SchemaValidationError:
            raise ValidationError("PayPal order ID required") from None

        payment = await self.store.get_by_gateway_order_id(gateway_order_id)
        if not payment:
            raise PaymentNotFoundError(f"Payment record not found for PayPal order {gateway_order_id}")

        log = self.logger.bind(payment_id=payment.id, gateway_order_id=gateway_order_id)

        if payment.status == PaymentStatus.CAPTURED:
            log.info("payment_already_captured")
            payments_captured_total.labels(currency=payment.currency, path="already_captured").inc()
            return self._captured_result(payment)

        try:
            return await self._settle(payment, gateway_order_id, log)
        except SettlementError as e:
            log.error("payment_completion_failed", error_code=e.error_code, error=e.message)
            failure_code = self._failure_code(e)
            if failure_code:
                payments_failed_total.labels(error_code=failure_code).inc()
                await self._record_failure(payment, failure_code, e, log)
            raise

    async def verify_payment(self, payment_id: str) -> PaymentVerifyResult:
        """
        Report whether a payment has been captured.

        Gateway lookup failures degrade to ``verified=False`` with the error
        message instead of raising.

        Args:
            payment_id: Internal payment id

        Returns:
            Verification result

        Raises:
            PaymentNotFoundError: If the payment does not exist
        """
        payment = await self._get_payment(payment_id)
        view = PaymentView.model_validate(payment)

        if payment.status == PaymentStatus.CAPTURED:
            return PaymentVerifyResult(verified=True, status=PaymentStatus.CAPTURED.value, payment=view)

        if payment.paypal_order_id:
            try:
                order = await self.gateway.get_order_status(payment.paypal_order_id)
            except GatewayError as e:
                self.logger.warning(
                    "payment_verification_degraded",
                    payment_id=payment.id,
                    error_code=e.error_code,
                )
                return PaymentVerifyResult(
                    verified=False,
                    status=payment.status.value,
                    payment=view,
                    error=e.message,
                )

            gateway_status = order.get("status") or ""
            return PaymentVerifyResult(
                verified=gateway_status == ORDER_COMPLETED,
                status=gateway_status.lower(),
                payment=view,
            )

        return PaymentVerifyResult(verified=False, status=payment.status.value, payment=view)

    async def get_payment_details(self, payment_id: str) -> PaymentView:
        """
        Get the caller-facing view of a payment.

        Raises:
            PaymentNotFoundError: If the payment does not exist
        """
        return PaymentView.model_validate(await self._get_payment(payment_id))

    async def get_payment_for_order(self, order_id: str) -> PaymentView:
        """Get the most recent payment for an order."""
        if not order_id:
            raise ValidationError("Order ID required")
        payment = await self.store.get_by_order_id(order_id)
        if not payment:
            raise PaymentNotFoundError(f"No payment found for order {order_id}")
        return PaymentView.model_validate(payment)

    async def list_user_payments(self, user_id: str, limit: Optional[int] = None) -> List[PaymentView]:
        """List a user's payments, newest first."""
        if not user_id:
            raise ValidationError("User ID required")
        bound = self.user_payments_limit if limit is None else max(1, min(limit, self.user_payments_limit))
        payments = await self.store.list_by_user(user_id, bound)
        return [PaymentView.model_validate(p) for p in payments]

    async def get_audit_response(self, payment_id: str) -> Optional[dict[str, Any]]:
        """
        Decrypt the stored gateway response for operator review.

        Not exposed to callers outside the settlement core.

        Returns:
            The decrypted capture response, or None if nothing was captured yet

        Raises:
            PaymentNotFoundError: If the payment does not exist
            DecryptionError: If the stored blob cannot be decrypted
        """
        payment = await self._get_payment(payment_id)
        if not payment.encrypted_response:
            return None
        self.logger.info("audit_response_accessed", payment_id=payment.id)
        return self.vault.decrypt(payment.encrypted_response)

    async def _get_payment(self, payment_id: str) -> Payment:
        if not payment_id:
            raise ValidationError("Payment ID required")
        payment = await self.store.get_by_id(payment_id)
        if not payment:
            raise PaymentNotFoundError(f"Payment {payment_id} not found")
        return payment

    async def _settle(self, payment: Payment, gateway_order_id: str, log: Any) -> PaymentCompleteResult:
        order = await self.gateway.get_order_status(gateway_order_id)
        gateway_status = order.get("status")
        log.info("paypal_order_status", status=gateway_status)

        if gateway_status == ORDER_COMPLETED:
            # Captured at PayPal by an earlier attempt whose local write never landed
            log.info("paypal_order_already_completed")
            return await self._finalize(payment, order, "reconciled", log)

        if gateway_status != ORDER_APPROVED:
            raise PaymentNotApprovedError(gateway_status)

        await self.store.update_status(payment.id, PaymentStatus.APPROVED)

        try:
            capture_result = await self.gateway.capture_order(gateway_order_id)
        except GatewayCaptureError as e:
            reconciled = await self._reconcile_rejected_capture(gateway_order_id, e, log)
            if reconciled is None:
                raise
            return await self._finalize(payment, reconciled, "reconciled", log)

        if capture_result.get("status") != ORDER_COMPLETED:
            raise PaymentCaptureFailedError(capture_result.get("status"))

        return await self._finalize(payment, capture_result, "capture", log)

    async def _reconcile_rejected_capture(
        self,
        gateway_order_id: str,
        error: GatewayCaptureError,
        log: Any,
    ) -> Optional[dict[str, Any]]:
        """
        Re-query an order after PayPal rejected its capture.

        PayPal does not reliably distinguish "already captured" from other
        capture rejections, so the order status decides: COMPLETED means a
        concurrent completion captured it and this attempt resolves to success.
        """
        log.warning("paypal_capture_rejected", issue=error.issue)
        try:
            order = await self.gateway.get_order_status(gateway_order_id)
        except GatewayError as lookup_error:
            log.error("capture_reconciliation_lookup_failed", error_code=lookup_error.error_code)
            return None

        if order.get("status") == ORDER_COMPLETED:
            log.info("capture_rejection_reconciled")
            return order
        return None

    async def _finalize(
        self,
        payment: Payment,
        gateway_response: dict[str, Any],
        path: str,
        log: Any,
    ) -> PaymentCompleteResult:
        try:
            capture = self._extract_capture(gateway_response)
        except CaptureDetailsMissingError:
            log.critical("capture_not_recorded", reason="capture_details_missing")
            raise
        amount = capture.get("amount") or {}
        value = amount.get("value")
        currency = amount.get("currency_code") or payment.currency

        if value is not None and value != format_amount(payment.amount):
            log.warning("captured_amount_mismatch", expected=format_amount(payment.amount), captured=value)

        payer = gateway_response.get("payer") or {}
        metadata = {
            "capture_id": capture.get("id"),
            "status": gateway_response.get("status"),
            "amount": value,
            "currency": currency,
            "create_time": capture.get("create_time"),
            "update_time": capture.get("update_time"),
        }

        try:
            await self.store.store_capture_details(
                payment.id,
                capture.get("id"),
                self.vault.encrypt(gateway_response),
                self.vault.hash(payer.get("email_address")),
                self.vault.hash(payer.get("payer_id")),
                metadata,
            )
        except Exception:
            # Money has moved at PayPal; a retry reconciles through the COMPLETED path
            log.critical("capture_not_recorded", capture_id=capture.get("id"))
            raise

        payments_captured_total.labels(currency=currency, path=path).inc()
        log.info("payment_captured", capture_id=capture.get("id"), path=path)

        return PaymentCompleteResult(
            payment_id=payment.id,
            order_id=payment.order_id,
            status=PaymentStatus.CAPTURED,
            amount=value if value is not None else format_amount(payment.amount),
            currency=currency,
        )

    @staticmethod
    def _extract_capture(gateway_response: dict[str, Any]) -> dict[str, Any]:
        # Only called with COMPLETED responses
        try:
            capture = gateway_response["purchase_units"][0]["payments"]["captures"][0]
        except (KeyError, IndexError, TypeError):
            raise CaptureDetailsMissingError(gateway_response.get("id")) from None
        if not isinstance(capture, dict) or not capture.get("id"):
            raise CaptureDetailsMissingError(gateway_response.get("id"))
        return capture

    @staticmethod
    def _captured_result(payment: Payment) -> PaymentCompleteResult:
        metadata = payment.transaction_metadata or {}
        return PaymentCompleteResult(
            payment_id=payment.id,
            order_id=payment.order_id,
            status=PaymentStatus.CAPTURED,
            amount=metadata.get("amount") or format_amount(payment.amount),
            currency=metadata.get("currency") or payment.currency,
        )

    @staticmethod
    def _failure_code(error: SettlementError) -> Optional[str]:
        if isinstance(error, PaymentNotApprovedError):
            return CLOSED_ORDER_CODES.get(error.gateway_status)
        for error_type, code in FAILURE_CODES.items():
            if isinstance(error, error_type):
                return code
        return None

    async def _record_failure(self, payment: Payment, code: str, error: SettlementError, log: Any) -> None:
        """Best-effort failure write; never replaces the original error."""
        try:
            await self.store.store_failure_details(payment.id, code, error.message)
        except Exception as db_error:  # noqa: BLE001
            log.error("payment_failure_not_stored", error_code=code, store_error=type(db_error).__name__)
