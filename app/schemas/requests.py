import re
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


MAX_AMOUNT = 1_000_000
ORDER_REF_PATTERN = re.compile(r"^[A-Za-z0-9_.:\-]{1,64}$")


class PaymentRequest(BaseModel):
    """Fields shared by every initiate request."""

    model_config = ConfigDict(populate_by_name=True)

    amount: float = Field(..., gt=0, le=MAX_AMOUNT)
    currency: Optional[str] = None  # falls back to the configured default
    order_ref: str = Field(..., alias="orderRef")

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip().upper()
        if len(v) != 3 or not v.isalpha():
            raise ValueError("currency must be a 3-letter ISO code")
        return v

    @field_validator("order_ref")
    @classmethod
    def validate_order_ref(cls, v: str) -> str:
        v = v.strip()
        if not ORDER_REF_PATTERN.match(v):
            raise ValueError("orderRef must be 1-64 characters of letters, digits, '_', '-', '.', ':'")
        return v

    @field_validator("phone", check_fields=False)
    @classmethod
    def validate_phone(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        digits = re.sub(r"\D", "", v)
        if not 9 <= len(digits) <= 15:
            raise ValueError("phone must contain 9 to 15 digits")
        return digits


class MpesaInitiateRequest(PaymentRequest):
    phone: str


class CardInitiateRequest(PaymentRequest):
    email: str = Field(..., min_length=3, max_length=254)
    first_name: str = Field(..., alias="firstName", min_length=1, max_length=100)
    last_name: str = Field(..., alias="lastName", min_length=1, max_length=100)
    phone: Optional[str] = None
    description: Optional[str] = Field(None, max_length=100)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v = v.strip()
        if "@" not in v or v.startswith("@") or v.endswith("@"):
            raise ValueError("email must be a valid address")
        return v
