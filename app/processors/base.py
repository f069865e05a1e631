from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class Token:
    """Short-lived bearer token; expiry is informational only."""

    value: str
    expires_at: Optional[str] = None


@dataclass
class SubmitResult:
    tracking_id: str
    redirect_url: Optional[str]


@dataclass
class StatusResult:
    tracking_id: str
    status_description: Optional[str]
    status_code: Optional[int]
    merchant_reference: Optional[str] = None
    amount: Optional[float] = None
    currency: Optional[str] = None
    payment_method: Optional[str] = None
    confirmation_code: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


class BaseGateway(ABC):
    """Abstract base for payment aggregator clients."""

    @property
    @abstractmethod
    def gateway_name(self) -> str:
        pass

    @abstractmethod
    async def authenticate(self, consumer_key: str, consumer_secret: str) -> Token:
        """
        Obtain a bearer token.
        Raises AuthError on a non-2xx response or a malformed body.
        """
        pass

    @abstractmethod
    async def submit_order(self, token: Token, order_payload: Dict[str, Any]) -> SubmitResult:
        """
        Submit an order. Does not retry.
        Raises GatewayError carrying the aggregator's error on failure.
        """
        pass

    @abstractmethod
    async def query_status(self, token: Token, tracking_id: str) -> StatusResult:
        """
        Fetch the current status of a submitted order.
        Raises GatewayError if the tracking id is unknown to the aggregator.
        """
        pass
