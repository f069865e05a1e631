from sqlalchemy import Column, String, Float, DateTime, JSON
from app.database import Base
import uuid


PENDING = "pending"
SUBMITTED = "submitted"
COMPLETED = "completed"
FAILED = "failed"
CANCELLED = "cancelled"

STATUSES = (PENDING, SUBMITTED, COMPLETED, FAILED, CANCELLED)
TERMINAL_STATUSES = frozenset({COMPLETED, FAILED, CANCELLED})


def generate_id():
    return f"txn_{uuid.uuid4().hex[:12]}"


class Transaction(Base):
    """One payment attempt against the gateway."""

    __tablename__ = "transactions"

    id = Column(String, primary_key=True, default=generate_id)
    order_reference = Column(String(64), nullable=False, unique=True, index=True)
    amount = Column(Float, nullable=False)
    currency = Column(String(3), nullable=False)
    channel = Column(String, nullable=False, default="mpesa")  # mpesa | card
    status = Column(String, nullable=False, default=PENDING)
    gateway_tracking_id = Column(String, nullable=True, unique=True, index=True)
    redirect_url = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    email = Column(String, nullable=True)
    description = Column(String, nullable=True)
    payment_method = Column(String, nullable=True)
    confirmation_code = Column(String, nullable=True)
    failure_reason = Column(String, nullable=True)
    processor_response = Column(JSON, nullable=True)  # last gateway payload that moved the status
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
