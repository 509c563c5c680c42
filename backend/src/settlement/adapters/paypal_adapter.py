"""PayPal payment gateway adapter."""
import time
from contextlib import asynccontextmanager
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, AsyncIterator, Optional

import httpx
import structlog

from settlement.exceptions import (
    GatewayAuthError,
    GatewayCaptureError,
    GatewayLookupError,
    GatewayOrderError,
    GatewayTimeoutError,
)
from settlement.metrics import gateway_request_duration_seconds
from settlement.tracing import get_tracer

tracer = get_tracer(__name__)

TWO_PLACES = Decimal("0.01")


def format_amount(amount: Any) -> str:
    """Format an amount as a string with exactly two decimal places."""
    return str(Decimal(str(amount)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP))


def _describe_error(payload: dict[str, Any], fallback: str) -> tuple[str, Optional[str], Optional[str]]:
    """
    Build a PII-free message from a PayPal error body.

    Only the error name, issue code and description are used; ``details[].value``
    can echo payer input and is deliberately ignored.
    """
    details = payload.get("details") or []
    first = details[0] if details and isinstance(details[0], dict) else {}
    issue = first.get("issue")
    description = first.get("description")
    name = payload.get("name") or payload.get("error")
    message = description or payload.get("message") or payload.get("error_description") or fallback

    parts = [p for p in (name, issue) if p]
    if parts:
        message = f"{message} ({' - '.join(parts)})"
    return message, issue, description


def _json_or_empty(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


class PayPalAdapter:
    """
    Stateless client for the PayPal Orders v2 API.

    Every call obtains a fresh access token and opens its own HTTP client, so
    instances hold configuration only and are safe to share.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        api_base: str,
        return_url: str,
        cancel_url: str,
        brand_name: str = "Your Store",
        timeout_seconds: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        logger: Optional[Any] = None,
    ):
        """
        Initialize PayPal adapter.

        Args:
            client_id: REST client id
            client_secret: REST client secret
            api_base: API base URL (sandbox or live)
            return_url: Payer redirect after approval
            cancel_url: Payer redirect after cancel
            brand_name: Brand shown on the approval page
            timeout_seconds: Per-call timeout
            transport: Optional httpx transport (used by tests)
            logger: Structured logger
        """
        self.client_id = client_id
        self._client_secret = client_secret
        self.api_base = api_base.rstrip("/")
        self.return_url = return_url
        self.cancel_url = cancel_url
        self.brand_name = brand_name
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self.logger = logger or structlog.get_logger(__name__)

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        async with httpx.AsyncClient(
            base_url=self.api_base,
            timeout=self.timeout_seconds,
            transport=self._transport,
        ) as client:
            yield client

    async def _send(self, operation: str, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send one request, mapping timeouts and recording latency."""
        start = time.perf_counter()
        outcome = "error"
        with tracer.start_as_current_span(f"paypal.{operation}") as span:
            span.set_attribute("paypal.operation", operation)
            try:
                async with self._client() as client:
                    response = await client.request(method, url, **kwargs)
                outcome = "ok" if response.is_success else f"http_{response.status_code}"
                span.set_attribute("http.status_code", response.status_code)
                return response
            except httpx.TimeoutException as e:
                outcome = "timeout"
                self.logger.warning("paypal_timeout", operation=operation, timeout=self.timeout_seconds)
                raise GatewayTimeoutError(
                    f"PayPal {operation} timed out after {self.timeout_seconds}s"
                ) from e
            finally:
                gateway_request_duration_seconds.labels(operation=operation, outcome=outcome).observe(
                    time.perf_counter() - start
                )

    async def get_access_token(self) -> str:
        """
        Exchange client credentials for a bearer token.

        Returns:
            Access token

        Raises:
            GatewayAuthError: If PayPal rejects the credentials
        """
        try:
            response = await self._send(
                "get_access_token",
                "POST",
                "/v1/oauth2/token",
                auth=(self.client_id, self._client_secret),
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                data={"grant_type": "client_credentials"},
            )
        except httpx.HTTPError as e:
            raise GatewayAuthError(f"Failed to get PayPal access token: {type(e).__name__}") from e

        if not response.is_success:
            payload = _json_or_empty(response)
            message, _, _ = _describe_error(payload, f"HTTP {response.status_code}")
            self.logger.error("paypal_auth_failed", status_code=response.status_code)
            raise GatewayAuthError(f"Failed to get PayPal access token: {message}", payload)

        token = _json_or_empty(response).get("access_token")
        if not token:
            raise GatewayAuthError("Failed to get PayPal access token: no token in response")
        return token

    async def _authorized(self, operation: str, method: str, url: str, **kwargs: Any) -> httpx.Response:
        token = await self.get_access_token()
        headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
        return await self._send(operation, method, url, headers=headers, **kwargs)

    async def create_order(
        self,
        order_id: str,
        amount: Any,
        currency: str,
        description: str = "Order Payment",
    ) -> dict[str, Any]:
        """
        Create a PayPal order with CAPTURE intent.

        Args:
            order_id: Local order id, sent as the purchase unit reference
            amount: Order amount
            currency: ISO 4217 code
            description: Purchase unit description

        Returns:
            Dict with gateway_order_id, status, approval_url and the raw response

        Raises:
            GatewayOrderError: If PayPal rejects the order
        """
        order_data = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "reference_id": order_id,
                    "description": description,
                    "amount": {
                        "currency_code": currency,
                        "value": format_amount(amount),
                    },
                }
            ],
            "application_context": {
                "brand_name": self.brand_name,
                "landing_page": "NO_PREFERENCE",
                "user_action": "PAY_NOW",
                "return_url": self.return_url,
                "cancel_url": self.cancel_url,
            },
        }

        try:
            response = await self._authorized("create_order", "POST", "/v2/checkout/orders", json=order_data)
        except httpx.HTTPError as e:
            raise GatewayOrderError(f"PayPal order creation failed: {type(e).__name__}") from e

        payload = _json_or_empty(response)
        if not response.is_success:
            message, _, _ = _describe_error(payload, "Unknown error")
            self.logger.error(
                "paypal_create_order_failed",
                order_id=order_id,
                status_code=response.status_code,
                error_name=payload.get("name"),
            )
            raise GatewayOrderError(f"PayPal order creation failed: {message}", payload)

        approval_url = next(
            (
                link.get("href")
                for link in payload.get("links", [])
                if link.get("rel") in ("approve", "payer-action")
            ),
            None,
        )

        self.logger.info(
            "paypal_order_created",
            order_id=order_id,
            gateway_order_id=payload.get("id"),
            status=payload.get("status"),
        )

        return {
            "gateway_order_id": payload.get("id"),
            "status": payload.get("status"),
            "approval_url": approval_url,
            "raw": payload,
        }

    async def capture_order(self, gateway_order_id: str) -> dict[str, Any]:
        """
        Capture an approved PayPal order.

        Args:
            gateway_order_id: PayPal order id

        Returns:
            Full capture response

        Raises:
            GatewayCaptureError: With PayPal's issue code and description when available
        """
        try:
            response = await self._authorized(
                "capture_order", "POST", f"/v2/checkout/orders/{gateway_order_id}/capture"
            )
        except httpx.HTTPError as e:
            raise GatewayCaptureError(f"PayPal capture failed: {type(e).__name__}") from e

        payload = _json_or_empty(response)
        if not response.is_success:
            message, issue, description = _describe_error(payload, "Unknown error")
            self.logger.error(
                "paypal_capture_failed",
                gateway_order_id=gateway_order_id,
                status_code=response.status_code,
                error_name=payload.get("name"),
                issue=issue,
            )
            raise GatewayCaptureError(
                f"PayPal capture failed: {message}",
                payload,
                issue=issue,
                description=description,
            )

        self.logger.info(
            "paypal_order_captured",
            gateway_order_id=gateway_order_id,
            status=payload.get("status"),
        )
        return payload

    async def get_order_status(self, gateway_order_id: str) -> dict[str, Any]:
        """
        Fetch a PayPal order.

        Args:
            gateway_order_id: PayPal order id

        Returns:
            Full order details (status, purchase units, payer)

        Raises:
            GatewayLookupError: If PayPal does not return the order
        """
        try:
            response = await self._authorized("get_order", "GET", f"/v2/checkout/orders/{gateway_order_id}")
        except httpx.HTTPError as e:
            raise GatewayLookupError(f"Failed to get PayPal order: {type(e).__name__}") from e

        payload = _json_or_empty(response)
        if not response.is_success:
            message, _, _ = _describe_error(payload, "Unknown error")
            raise GatewayLookupError(f"Failed to get PayPal order: {message}", payload)

        return payload
