from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.config import Settings, get_settings
from app.database import get_db
from app.processors.base import BaseGateway
from app.processors.pesapal import get_gateway
from app.schemas.responses import ErrorResponse, WebhookAck
from app.services.webhook import WebhookReceiver

router = APIRouter()

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
}


async def _receive(request: Request, db: Session, gateway: BaseGateway, settings: Settings) -> WebhookAck:
    # The signature covers the exact bytes, so read them before any JSON parsing
    raw_body = await request.body()
    result = await WebhookReceiver(settings, gateway).handle(raw_body, request.headers, db)
    return WebhookAck(order_ref=result.order_reference, status=result.status, outcome=result.outcome)


@router.post("/card/webhook", response_model=WebhookAck, responses=ERROR_RESPONSES)
async def card_webhook(
    request: Request,
    db: Session = Depends(get_db),
    gateway: BaseGateway = Depends(get_gateway),
    settings: Settings = Depends(get_settings),
):
    """
    Gateway notification for card payments.

    - 401 on a missing or mismatched signature (nothing is processed)
    - 404 when no transaction matches the reference
    - 200 when the update was applied, was already in place, or was a
      regression that got ignored
    - A notification with only a tracking id is confirmed by querying the
      gateway (502 if that query fails)
    """
    return await _receive(request, db, gateway, settings)


@router.post("/mpesa/webhook", response_model=WebhookAck, responses=ERROR_RESPONSES)
async def mpesa_webhook(
    request: Request,
    db: Session = Depends(get_db),
    gateway: BaseGateway = Depends(get_gateway),
    settings: Settings = Depends(get_settings),
):
    """Gateway notification for mobile-money payments; same rules as the card hook."""
    return await _receive(request, db, gateway, settings)
