"""
Webhook receiver.

Flow for one delivery:
1. Verify the HMAC-SHA256 signature over the raw body bytes (401 on mismatch)
2. Parse the JSON payload and pull out reference / tracking id / status
3. Look up the transaction (404 if unknown; nothing is created implicitly)
4. Apply the status through the store's forward-only rules and persist;
   a notification with no status asks the gateway and reconciles instead

Redelivery of the same notification is harmless: re-applying a status the
transaction already has is a no-op in the store.
"""
import hashlib
import hmac
import json
from typing import Any, Dict, Iterable, Mapping, Optional

import structlog
from sqlalchemy.orm import Session

from app.config import Settings
from app.errors import ConflictError, NotFoundError, PaymentError, ValidationError
from app.processors.base import BaseGateway
from app.services import payments
from app.services import transactions as store
from app.services.normalizer import normalize_status

logger = structlog.get_logger(__name__)


REFERENCE_KEYS = ("order_reference", "api_ref", "orderRef", "OrderMerchantReference")
TRACKING_KEYS = ("tracking_id", "trackingId", "invoice_id", "OrderTrackingId")
STATUS_KEYS = ("status", "state", "payment_status_description", "status_code")


class WebhookUnauthorized(PaymentError):
    """Signature missing or not matching the body."""

    status_code = 401


def compute_signature(raw_body: bytes, shared_secret: str) -> str:
    """Hex HMAC-SHA256 of the raw body."""
    return hmac.new(shared_secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, signature_header: Optional[str], shared_secret: str) -> bool:
    """
    Constant-time check of ``signature_header`` against the body's HMAC.

    Accepts an optional ``sha256=`` prefix on the header value.
    """
    if not signature_header or not shared_secret:
        return False
    provided = signature_header.strip()
    if provided.lower().startswith("sha256="):
        provided = provided[len("sha256="):]
    expected = compute_signature(raw_body, shared_secret)
    return hmac.compare_digest(expected.encode("utf-8"), provided.strip().lower().encode("utf-8"))


def _first(payload: Mapping[str, Any], keys: Iterable[str]) -> Optional[Any]:
    for key in keys:
        value = payload.get(key)
        if value not in (None, ""):
            return value
    return None


class Notification:
    def __init__(
        self,
        order_reference: Optional[str],
        tracking_id: Optional[str],
        raw_status: Any,
        status: Optional[str],
        payload: Dict[str, Any],
    ):
        self.order_reference = order_reference
        self.tracking_id = tracking_id
        self.raw_status = raw_status
        self.status = status
        self.payload = payload


def parse_notification(raw_body: bytes) -> Notification:
    """
    Decode a webhook body into a Notification.

    A body with a tracking id but no status key at all (an aggregator IPN)
    decodes with ``status`` None; the receiver asks the gateway instead.

    Raises:
        ValidationError: body is not a JSON object, lacks a reference and
            tracking id, or carries an unrecognised or missing status
    """
    try:
        payload = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise ValidationError("Webhook body is not valid JSON")
    if not isinstance(payload, dict):
        raise ValidationError("Webhook body must be a JSON object")

    reference = _first(payload, REFERENCE_KEYS)
    tracking_id = _first(payload, TRACKING_KEYS)
    if reference is None and tracking_id is None:
        raise ValidationError("Missing payment reference")

    raw_status = _first(payload, STATUS_KEYS)
    status = normalize_status(raw_status)
    if raw_status is None and tracking_id is None:
        raise ValidationError("Missing payment status")
    if raw_status is not None and status is None:
        raise ValidationError(f"Unrecognised payment status: {raw_status!r}")

    return Notification(
        order_reference=str(reference) if reference is not None else None,
        tracking_id=str(tracking_id) if tracking_id is not None else None,
        raw_status=raw_status,
        status=status,
        payload=payload,
    )


class WebhookResult:
    def __init__(self, order_reference: str, status: str, outcome: str):
        self.order_reference = order_reference
        self.status = status
        self.outcome = outcome


class WebhookReceiver:
    """
    Verifies and applies gateway notifications. Built from Settings.

    ``gateway`` is only needed for notifications that carry no status.
    """

    def __init__(self, settings: Settings, gateway: Optional[BaseGateway] = None):
        self.settings = settings
        self.gateway = gateway
        self.shared_secret = settings.webhook_secret
        self.verify = settings.webhook_verify
        self.signature_headers = list(settings.webhook_signature_headers)

    def signature_from(self, headers: Mapping[str, str]) -> Optional[str]:
        """First configured signature header present on the request."""
        for name in self.signature_headers:
            value = headers.get(name) or headers.get(name.lower())
            if value:
                return value
        return None

    def authenticate(self, raw_body: bytes, headers: Mapping[str, str]) -> None:
        if not self.verify:
            logger.warning("webhook_signature_check_disabled")
            return
        if not verify_signature(raw_body, self.signature_from(headers), self.shared_secret):
            logger.warning("webhook_signature_rejected", body_bytes=len(raw_body))
            raise WebhookUnauthorized("Invalid signature")

    async def handle(self, raw_body: bytes, headers: Mapping[str, str], db: Session) -> WebhookResult:
        """
        Verify, decode and apply one delivery.

        Raises:
            WebhookUnauthorized: bad or missing signature (nothing is parsed)
            ValidationError: malformed payload
            NotFoundError: no matching transaction
            InvalidTransitionError: terminal -> different terminal
            ConflictError: tracking id clashes with a stored one
        """
        self.authenticate(raw_body, headers)
        notification = parse_notification(raw_body)

        txn = None
        if notification.order_reference:
            txn = store.find_by_reference(db, notification.order_reference)
        if txn is None and notification.tracking_id:
            txn = store.find_by_tracking_id(db, notification.tracking_id)
        if txn is None:
            logger.warning(
                "webhook_transaction_not_found",
                order_reference=notification.order_reference,
                tracking_id=notification.tracking_id,
            )
            raise NotFoundError("Payment not found")

        if notification.status is None:
            result = await self._query_gateway(db, txn, notification)
        else:
            payload = notification.payload
            result = store.update_status(
                db,
                txn.id,
                notification.status,
                tracking_id=notification.tracking_id,
                payment_method=payload.get("provider") or payload.get("payment_method"),
                confirmation_code=payload.get("mpesa_reference") or payload.get("confirmation_code"),
                failure_reason=payload.get("failed_reason"),
                processor_response=payload,
            )

        logger.info(
            "webhook_processed",
            order_reference=txn.order_reference,
            raw_status=notification.raw_status,
            status=result.transaction.status,
            outcome=result.outcome,
        )
        return WebhookResult(
            order_reference=result.transaction.order_reference,
            status=result.transaction.status,
            outcome=result.outcome,
        )

    async def _query_gateway(self, db: Session, txn, notification: Notification) -> store.UpdateResult:
        if self.gateway is None:
            raise ValidationError("Notification carries no payment status")
        if not txn.gateway_tracking_id:
            store.update_status(db, txn.id, txn.status, tracking_id=notification.tracking_id)
        elif txn.gateway_tracking_id != notification.tracking_id:
            raise ConflictError(
                f"Notification tracking id {notification.tracking_id} does not match "
                f"{txn.gateway_tracking_id}"
            )
        logger.info(
            "webhook_status_query",
            order_reference=txn.order_reference,
            tracking_id=txn.gateway_tracking_id,
        )
        return await payments.reconcile(db, self.gateway, self.settings, txn)
