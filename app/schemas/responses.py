from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from datetime import datetime


class InitiateResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    order_ref: str = Field(..., alias="orderRef")
    status: str
    tracking_id: str = Field(..., alias="trackingId")
    redirect_url: Optional[str] = Field(None, alias="redirectUrl")


class StatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    order_ref: str = Field(..., alias="orderRef")
    status: str
    tracking_id: Optional[str] = Field(None, alias="trackingId")
    amount: float
    currency: str
    channel: str
    payment_method: Optional[str] = Field(None, alias="paymentMethod")
    confirmation_code: Optional[str] = Field(None, alias="confirmationCode")
    failure_reason: Optional[str] = Field(None, alias="failureReason")
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: datetime = Field(..., alias="updatedAt")


class WebhookAck(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    received: bool = True
    order_ref: str = Field(..., alias="orderRef")
    status: str
    outcome: str  # "applied" | "unchanged" | "ignored"


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
