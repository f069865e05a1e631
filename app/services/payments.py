"""
Payment initiation and status reconciliation.

Initiate:
1. Persist a pending transaction (409 on a reused order reference)
2. Authenticate with the aggregator (fresh token per flow)
3. Submit the order
4. Record the tracking id and move to `submitted`

A failed step 2 or 3 marks the transaction `failed` and re-raises; the
order reference is spent and the caller starts over with a new one.
"""
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy.orm import Session

from app import models
from app.config import Settings
from app.errors import AuthError, GatewayError, NotFoundError
from app.processors.base import BaseGateway, StatusResult
from app.services import transactions as store
from app.services.normalizer import normalize_status

logger = structlog.get_logger(__name__)

# Reported amounts closer than this to the stored one are the same amount
AMOUNT_TOLERANCE = 0.01


def build_order_payload(txn: models.Transaction, settings: Settings, billing: Dict[str, Any]) -> Dict[str, Any]:
    """SubmitOrderRequest body for a stored transaction."""
    return {
        "id": txn.order_reference,
        "currency": txn.currency,
        "amount": txn.amount,
        "description": txn.description or f"Payment for order {txn.order_reference}",
        "callback_url": settings.gateway_callback_url,
        "notification_id": settings.gateway_notification_id,
        "billing_address": {
            "email_address": billing.get("email") or "",
            "phone_number": billing.get("phone") or "",
            "country_code": billing.get("country_code") or settings.default_country_code,
            "first_name": billing.get("first_name") or "",
            "last_name": billing.get("last_name") or "",
        },
    }


async def initiate_payment(
    db: Session,
    gateway: BaseGateway,
    settings: Settings,
    order_reference: str,
    amount: float,
    currency: str,
    channel: str,
    billing: Dict[str, Any],
    description: Optional[str] = None,
) -> models.Transaction:
    """
    Create, submit and record one payment attempt.

    Raises:
        ConflictError: order reference already used
        AuthError: gateway rejected our credentials
        GatewayError: gateway rejected the order
    """
    txn = store.create(
        db,
        order_reference=order_reference,
        amount=amount,
        currency=currency,
        channel=channel,
        phone=billing.get("phone"),
        email=billing.get("email"),
        description=description,
    )

    try:
        token = await gateway.authenticate(
            settings.gateway_consumer_key, settings.gateway_consumer_secret
        )
        submitted = await gateway.submit_order(token, build_order_payload(txn, settings, billing))
    except (AuthError, GatewayError) as e:
        store.update_status(db, txn.id, models.FAILED, failure_reason=e.message)
        logger.warning(
            "payment_initiation_failed",
            gateway=gateway.gateway_name,
            order_reference=order_reference,
            error_type=type(e).__name__,
            error=e.message,
        )
        raise

    # A webhook may already have moved the transaction on; the tracking id
    # is recorded either way.
    result = store.update_status(
        db,
        txn.id,
        models.SUBMITTED,
        tracking_id=submitted.tracking_id,
        redirect_url=submitted.redirect_url,
    )

    logger.info(
        "payment_initiated",
        gateway=gateway.gateway_name,
        order_reference=order_reference,
        channel=channel,
        tracking_id=submitted.tracking_id,
        status=result.transaction.status,
    )
    return result.transaction


def get_by_reference(db: Session, order_reference: str) -> models.Transaction:
    txn = store.find_by_reference(db, order_reference)
    if txn is None:
        raise NotFoundError("Payment not found")
    return txn


def reported_mismatches(txn: models.Transaction, result: StatusResult) -> List[str]:
    """Fields where the aggregator's report disagrees with the stored transaction."""
    mismatches = []
    if result.amount is not None and abs(result.amount - txn.amount) >= AMOUNT_TOLERANCE:
        mismatches.append("amount")
    if result.currency and result.currency.upper() != txn.currency:
        mismatches.append("currency")
    if result.merchant_reference and result.merchant_reference != txn.order_reference:
        mismatches.append("merchant_reference")
    return mismatches


async def reconcile(
    db: Session,
    gateway: BaseGateway,
    settings: Settings,
    txn: models.Transaction,
) -> store.UpdateResult:
    """
    Query the aggregator for ``txn`` and apply what it reports.

    Terminal transactions and ones without a tracking id are left as stored.
    Status codes we cannot map leave the transaction untouched. A completed
    report whose amount, currency or reference does not match the stored
    transaction is not applied.
    """
    if txn.is_terminal or not txn.gateway_tracking_id:
        return store.UpdateResult(txn, store.UNCHANGED, txn.status)

    token = await gateway.authenticate(
        settings.gateway_consumer_key, settings.gateway_consumer_secret
    )
    result = await gateway.query_status(token, txn.gateway_tracking_id)

    status = normalize_status(result.status_description)
    if status is None:
        status = normalize_status(result.status_code)
    if status is None:
        logger.warning(
            "gateway_status_unmapped",
            gateway=gateway.gateway_name,
            order_reference=txn.order_reference,
            status_description=result.status_description,
            status_code=result.status_code,
        )
        return store.UpdateResult(txn, store.UNCHANGED, txn.status)

    mismatches = reported_mismatches(txn, result)
    if mismatches:
        logger.error(
            "gateway_report_mismatch",
            gateway=gateway.gateway_name,
            order_reference=txn.order_reference,
            fields=mismatches,
            reported_amount=result.amount,
            reported_currency=result.currency,
            reported_reference=result.merchant_reference,
            reported_status=status,
        )
        if status == models.COMPLETED:
            return store.UpdateResult(txn, store.UNCHANGED, txn.status)

    return store.update_status(
        db,
        txn.id,
        status,
        payment_method=result.payment_method,
        confirmation_code=result.confirmation_code,
        failure_reason=result.status_description if status == models.FAILED else None,
        processor_response=result.raw or None,
    )


async def refresh_status(
    db: Session,
    gateway: BaseGateway,
    settings: Settings,
    order_reference: str,
) -> models.Transaction:
    """Ask the aggregator for the latest status of an order and reconcile it locally."""
    txn = get_by_reference(db, order_reference)
    update = await reconcile(db, gateway, settings, txn)
    return update.transaction
