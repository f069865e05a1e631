"""
Maps the aggregator's status vocabulary to local transaction statuses.

The card rail reports `payment_status_description` strings and numeric
`status_code` values; the mobile-money rail reports `state` strings.
Everything collapses onto pending / submitted / completed / failed /
cancelled. Unrecognised values map to None so callers can reject them.
"""
from typing import Any, Optional

from app import models


NORMALIZED_STATES = {
    # Completed
    "COMPLETE": models.COMPLETED,
    "COMPLETED": models.COMPLETED,
    "SUCCESS": models.COMPLETED,
    "SUCCESSFUL": models.COMPLETED,
    # Failed
    "FAILED": models.FAILED,
    "ERROR": models.FAILED,
    # Cancelled
    "CANCELLED": models.CANCELLED,
    "CANCELED": models.CANCELLED,
    "REVERSED": models.CANCELLED,
    # In flight
    "PENDING": models.PENDING,
    "PROCESSING": models.SUBMITTED,
    "SUBMITTED": models.SUBMITTED,
}

# GetTransactionStatus status_code values
STATUS_CODES = {
    # 0 (INVALID) is reported for orders still awaiting payment; left unmapped
    1: models.COMPLETED,
    2: models.FAILED,
    3: models.CANCELLED,  # REVERSED
}


def normalize_status(raw: Any) -> Optional[str]:
    """Normalize a status string or numeric status code; None if unrecognised."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return STATUS_CODES.get(raw)
    text = str(raw).strip()
    if text.isdigit():
        return STATUS_CODES.get(int(text))
    return NORMALIZED_STATES.get(text.upper())
