"""
Transaction store.

Durable CRUD for payment attempts, scoped by id, order reference or
gateway tracking id, plus the forward-only status rules:

  pending (0) -> submitted (1) -> completed | failed | cancelled (2, terminal)

  same status            -> no-op, updated_at untouched
  forward move           -> applied, updated_at bumped
  lower rank (regression)-> ignored, logged as a warning; a missing
                            tracking id is still filled in
  terminal -> other term -> InvalidTransitionError

Each write is a single-row compare-and-set UPDATE keyed by primary key
and the status we read. If another request changed the row in between,
the row is re-read and the rules are evaluated again against the fresh
status, so a racing status query and webhook settle on the same answer.
"""
from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app import models
from app.errors import (
    ConflictError,
    InternalError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)

logger = structlog.get_logger(__name__)


STATUS_RANK = {
    models.PENDING: 0,
    models.SUBMITTED: 1,
    models.COMPLETED: 2,
    models.FAILED: 2,
    models.CANCELLED: 2,
}

# Outcomes of an update_status call
APPLIED = "applied"
UNCHANGED = "unchanged"
IGNORED = "ignored"

# Optional columns a status update may carry along
DETAIL_FIELDS = (
    "redirect_url",
    "payment_method",
    "confirmation_code",
    "failure_reason",
    "processor_response",
)

MAX_UPDATE_ATTEMPTS = 3


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def classify_transition(current: str, target: str) -> str:
    """
    Decide what moving from ``current`` to ``target`` means.

    Returns APPLIED, UNCHANGED or IGNORED.
    Raises InvalidTransitionError for terminal -> different terminal.
    """
    if target not in STATUS_RANK:
        raise ValidationError(f"Unknown status: {target}")
    if current == target:
        return UNCHANGED
    if current in models.TERMINAL_STATUSES and target in models.TERMINAL_STATUSES:
        raise InvalidTransitionError(
            f"Cannot move transaction from {current} to {target}"
        )
    if STATUS_RANK[target] < STATUS_RANK[current]:
        return IGNORED
    return APPLIED


class UpdateResult:
    def __init__(self, transaction: models.Transaction, outcome: str, previous_status: str):
        self.transaction = transaction
        self.outcome = outcome
        self.previous_status = previous_status


def create(
    db: Session,
    order_reference: str,
    amount: float,
    currency: str,
    channel: str = "mpesa",
    phone: Optional[str] = None,
    email: Optional[str] = None,
    description: Optional[str] = None,
) -> models.Transaction:
    """
    Persist a new pending transaction.

    Raises:
        ConflictError: if the order reference is already in use
        ValidationError: if amount is not positive
    """
    if amount is None or amount <= 0:
        raise ValidationError("amount must be greater than 0")

    if find_by_reference(db, order_reference) is not None:
        raise ConflictError(f"Order reference {order_reference} already exists")

    now = utcnow()
    txn = models.Transaction(
        order_reference=order_reference,
        amount=round(float(amount), 2),
        currency=currency.upper(),
        channel=channel,
        status=models.PENDING,
        phone=phone,
        email=email,
        description=description,
        created_at=now,
        updated_at=now,
    )
    db.add(txn)
    try:
        db.commit()
    except IntegrityError:
        # Lost a race with a concurrent create for the same reference
        db.rollback()
        raise ConflictError(f"Order reference {order_reference} already exists")
    db.refresh(txn)

    logger.info(
        "transaction_created",
        transaction_id=txn.id,
        order_reference=order_reference,
        amount=txn.amount,
        currency=txn.currency,
        channel=channel,
    )
    return txn


def find_by_reference(db: Session, order_reference: str) -> Optional[models.Transaction]:
    return db.query(models.Transaction).filter(
        models.Transaction.order_reference == order_reference
    ).first()


def find_by_tracking_id(db: Session, tracking_id: str) -> Optional[models.Transaction]:
    return db.query(models.Transaction).filter(
        models.Transaction.gateway_tracking_id == tracking_id
    ).first()


def get(db: Session, transaction_id: str) -> models.Transaction:
    txn = db.get(models.Transaction, transaction_id)
    if txn is None:
        raise NotFoundError(f"Transaction {transaction_id} not found")
    return txn


def update_status(
    db: Session,
    transaction_id: str,
    new_status: str,
    tracking_id: Optional[str] = None,
    **details,
) -> UpdateResult:
    """
    Move a transaction towards ``new_status`` under the forward-only rules.

    ``details`` may carry any of DETAIL_FIELDS; they are written only when
    the status actually changes. A missing tracking id is filled in
    whatever the outcome, so a late submit still records it.

    Raises:
        NotFoundError: unknown transaction id
        InvalidTransitionError: terminal -> different terminal
        ConflictError: tracking id differs from the one already assigned,
            or already belongs to another transaction
    """
    unknown = set(details) - set(DETAIL_FIELDS)
    if unknown:
        raise TypeError(f"Unexpected detail fields: {sorted(unknown)}")

    for attempt in range(MAX_UPDATE_ATTEMPTS):
        if attempt:
            db.expire_all()
        txn = get(db, transaction_id)
        current = txn.status

        if tracking_id and txn.gateway_tracking_id and tracking_id != txn.gateway_tracking_id:
            raise ConflictError(
                f"Transaction {transaction_id} already has tracking id {txn.gateway_tracking_id}"
            )

        try:
            outcome = classify_transition(current, new_status)
        except InvalidTransitionError:
            logger.warning(
                "transaction_invalid_transition",
                transaction_id=transaction_id,
                current_status=current,
                requested_status=new_status,
            )
            raise

        if outcome == IGNORED:
            logger.warning(
                "transaction_regression_ignored",
                transaction_id=transaction_id,
                current_status=current,
                requested_status=new_status,
            )

        values = {}
        if outcome == APPLIED:
            values["status"] = new_status
            values["updated_at"] = utcnow()
            values.update({k: v for k, v in details.items() if v is not None})
        if tracking_id and not txn.gateway_tracking_id:
            values["gateway_tracking_id"] = tracking_id

        if not values:
            return UpdateResult(txn, outcome, current)

        stmt = (
            update(models.Transaction)
            .where(models.Transaction.id == transaction_id)
            .where(models.Transaction.status == current)
            .values(**values)
        )
        if "gateway_tracking_id" in values:
            stmt = stmt.where(models.Transaction.gateway_tracking_id.is_(None))

        try:
            result = db.execute(stmt.execution_options(synchronize_session=False))
            rowcount = result.rowcount
            if rowcount == 1:
                db.commit()
        except IntegrityError:
            db.rollback()
            logger.warning(
                "transaction_tracking_id_taken",
                transaction_id=transaction_id,
                tracking_id=tracking_id,
            )
            raise ConflictError(f"Tracking id {tracking_id} belongs to another transaction")

        if rowcount == 1:
            db.refresh(txn)
            logger.info(
                "transaction_status_updated",
                transaction_id=transaction_id,
                previous_status=current,
                status=txn.status,
                outcome=outcome,
                tracking_id=txn.gateway_tracking_id,
            )
            return UpdateResult(txn, outcome, current)

        db.rollback()
        logger.info(
            "transaction_update_raced",
            transaction_id=transaction_id,
            expected_status=current,
            attempt=attempt + 1,
        )

    raise InternalError(
        f"Could not update transaction {transaction_id} after {MAX_UPDATE_ATTEMPTS} attempts"
    )
