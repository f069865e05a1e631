"""
Pesapal-style aggregator client (card and mobile-money rails).

Endpoints:
  POST /api/Auth/RequestToken                       -> {token, expiryDate}
  POST /api/Transactions/SubmitOrderRequest         -> {order_tracking_id, redirect_url}
  GET  /api/Transactions/GetTransactionStatus?orderTrackingId=...

The aggregator sometimes answers 200 with an `error` object in the body,
so every response is checked for both.
"""
from typing import Any, Dict, Optional

import httpx
import structlog

from app.config import Settings, get_settings
from app.errors import AuthError, GatewayError
from app.processors.base import BaseGateway, StatusResult, SubmitResult, Token

logger = structlog.get_logger(__name__)


TOKEN_PATH = "/api/Auth/RequestToken"
SUBMIT_ORDER_PATH = "/api/Transactions/SubmitOrderRequest"
STATUS_PATH = "/api/Transactions/GetTransactionStatus"


def _error_message(body: Any, default: str) -> str:
    """Pull the aggregator's error message out of a response body."""
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return error.get("message") or error.get("code") or default
        if isinstance(error, str) and error:
            return error
        if body.get("message"):
            return str(body["message"])
    return default


def _json_or_none(response: httpx.Response) -> Optional[Any]:
    try:
        return response.json()
    except ValueError:
        return None


def _has_error(body: Any) -> bool:
    # Successful responses still carry an error object with all fields null
    if not isinstance(body, dict):
        return False
    error = body.get("error")
    if isinstance(error, dict):
        return any(error.values())
    return bool(error)


class PesapalGateway(BaseGateway):
    """
    Async client for the aggregator REST API.

    Built from Settings; pass ``transport`` to route requests through an
    httpx transport of your choosing (tests use httpx.MockTransport).
    """

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = settings.resolved_gateway_url
        self.timeout = settings.gateway_timeout
        self._transport = transport

    @property
    def gateway_name(self) -> str:
        return "pesapal"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
            headers={"Accept": "application/json"},
        )

    async def authenticate(self, consumer_key: str, consumer_secret: str) -> Token:
        if not consumer_key or not consumer_secret:
            raise AuthError("Gateway credentials not configured")

        try:
            async with self._client() as client:
                response = await client.post(
                    TOKEN_PATH,
                    json={"consumer_key": consumer_key, "consumer_secret": consumer_secret},
                )
        except httpx.HTTPError as e:
            logger.error("gateway_auth_request_failed", error=str(e))
            raise AuthError(f"Token request failed: {e}") from e

        body = _json_or_none(response)
        if response.is_error or _has_error(body):
            logger.error(
                "gateway_auth_rejected",
                status_code=response.status_code,
                error=_error_message(body, response.reason_phrase),
            )
            raise AuthError(_error_message(body, "Token request rejected"))

        if not isinstance(body, dict) or not body.get("token"):
            logger.error("gateway_auth_malformed_body", status_code=response.status_code)
            raise AuthError("Token response missing token")

        logger.info("gateway_authenticated", expires_at=body.get("expiryDate"))
        return Token(value=body["token"], expires_at=body.get("expiryDate"))

    async def submit_order(self, token: Token, order_payload: Dict[str, Any]) -> SubmitResult:
        try:
            async with self._client() as client:
                response = await client.post(
                    SUBMIT_ORDER_PATH,
                    json=order_payload,
                    headers={"Authorization": f"Bearer {token.value}"},
                )
        except httpx.HTTPError as e:
            logger.error("gateway_submit_request_failed", order_reference=order_payload.get("id"), error=str(e))
            raise GatewayError(f"Order submission failed: {e}") from e

        body = _json_or_none(response)
        if response.is_error or _has_error(body) or not isinstance(body, dict) \
                or not body.get("order_tracking_id"):
            message = _error_message(body, "Order submission rejected")
            logger.error(
                "gateway_submit_rejected",
                order_reference=order_payload.get("id"),
                status_code=response.status_code,
                error=message,
            )
            raise GatewayError(message, upstream_status=response.status_code, body=body)

        logger.info(
            "gateway_order_submitted",
            order_reference=order_payload.get("id"),
            tracking_id=body["order_tracking_id"],
        )
        return SubmitResult(
            tracking_id=body["order_tracking_id"],
            redirect_url=body.get("redirect_url"),
        )

    async def query_status(self, token: Token, tracking_id: str) -> StatusResult:
        try:
            async with self._client() as client:
                response = await client.get(
                    STATUS_PATH,
                    params={"orderTrackingId": tracking_id},
                    headers={"Authorization": f"Bearer {token.value}"},
                )
        except httpx.HTTPError as e:
            logger.error("gateway_status_request_failed", tracking_id=tracking_id, error=str(e))
            raise GatewayError(f"Status query failed: {e}") from e

        body = _json_or_none(response)
        if response.is_error or _has_error(body) or not isinstance(body, dict):
            message = _error_message(body, f"Unknown tracking id {tracking_id}")
            logger.warning(
                "gateway_status_rejected",
                tracking_id=tracking_id,
                status_code=response.status_code,
                error=message,
            )
            raise GatewayError(message, upstream_status=response.status_code, body=body)

        status_code = body.get("status_code")
        amount = body.get("amount")
        return StatusResult(
            tracking_id=body.get("order_tracking_id") or tracking_id,
            status_description=body.get("payment_status_description"),
            status_code=int(status_code) if status_code is not None else None,
            merchant_reference=body.get("merchant_reference"),
            amount=float(amount) if amount is not None else None,
            currency=body.get("currency"),
            payment_method=body.get("payment_method"),
            confirmation_code=body.get("confirmation_code"),
            raw=body,
        )


def get_gateway() -> BaseGateway:
    """FastAPI dependency returning the configured aggregator client."""
    return PesapalGateway(get_settings())
