"""
Settlement domain exceptions.

All exceptions raised by the settlement core derive from SettlementError and
carry a machine-readable ``error_code`` plus the ``status_code`` used when the
error is rendered into a response envelope.

Messages must never contain payer PII, key material or access tokens.
"""
from typing import Any, Optional


class SettlementError(Exception):
    """Base exception for settlement errors."""

    error_code = "settlement_error"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(SettlementError):
    """Raised when required input is missing or malformed."""

    error_code = "validation_error"
    status_code = 400


class PaymentNotFoundError(SettlementError):
    """Raised when no local payment record matches the lookup key."""

    error_code = "payment_not_found"
    status_code = 404


class PaymentNotApprovedError(SettlementError):
    """Raised when the gateway order is not in a capturable state."""

    error_code = "payment_not_approved"
    status_code = 409

    def __init__(self, gateway_status: Optional[str]):
        super().__init__(f"PayPal order is not approved. Current status: {gateway_status}")
        self.gateway_status = gateway_status


class PaymentCaptureFailedError(SettlementError):
    """Raised when a capture call returns a non-terminal or failed status."""

    error_code = "payment_capture_failed"
    status_code = 502

    def __init__(self, gateway_status: Optional[str]):
        super().__init__(f"Payment capture failed with status: {gateway_status}")
        self.gateway_status = gateway_status


class CaptureDetailsMissingError(SettlementError):
    """
    Raised when PayPal reports an order COMPLETED without usable capture details.

    The money has moved, so this is never recorded as a payment failure.
    """

    error_code = "capture_details_missing"
    status_code = 502

    def __init__(self, gateway_order_id: Optional[str]):
        super().__init__(f"PayPal order {gateway_order_id} is completed but returned no capture details")
        self.gateway_order_id = gateway_order_id


class GatewayError(SettlementError):
    """Base class for failures originating at the payment gateway."""

    error_code = "gateway_error"
    status_code = 502

    def __init__(self, message: str, payload: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.payload = payload or {}


class GatewayAuthError(GatewayError):
    """Raised when the OAuth client-credentials exchange is rejected."""

    error_code = "gateway_auth_error"


class GatewayOrderError(GatewayError):
    """Raised when the gateway refuses to create an order."""

    error_code = "gateway_order_error"


class GatewayCaptureError(GatewayError):
    """Raised when the gateway rejects a capture request."""

    error_code = "gateway_capture_error"

    def __init__(
        self,
        message: str,
        payload: Optional[dict[str, Any]] = None,
        issue: Optional[str] = None,
        description: Optional[str] = None,
    ):
        super().__init__(message, payload)
        self.issue = issue
        self.description = description


class GatewayLookupError(GatewayError):
    """Raised when the gateway cannot return an order."""

    error_code = "gateway_lookup_error"


class GatewayTimeoutError(GatewayError):
    """Raised when a gateway call exceeds its timeout. Safe to retry."""

    error_code = "gateway_timeout"
    status_code = 504


class EncryptionError(SettlementError):
    """Raised when an audit payload cannot be encrypted."""

    error_code = "encryption_error"


class DecryptionError(SettlementError):
    """Raised when an audit token cannot be authenticated or decrypted."""

    error_code = "decryption_error"
