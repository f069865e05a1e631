from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app import models
from app.config import Settings, get_settings
from app.database import get_db
from app.processors.base import BaseGateway
from app.processors.pesapal import get_gateway
from app.schemas.requests import CardInitiateRequest, MpesaInitiateRequest
from app.schemas.responses import ErrorResponse, InitiateResponse, StatusResponse
from app.services import payments

router = APIRouter()

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
}


def _initiate_response(txn: models.Transaction) -> InitiateResponse:
    return InitiateResponse(
        order_ref=txn.order_reference,
        status=txn.status,
        tracking_id=txn.gateway_tracking_id,
        redirect_url=txn.redirect_url,
    )


@router.post(
    "/mpesa/initiate",
    status_code=201,
    response_model=InitiateResponse,
    responses=ERROR_RESPONSES,
)
async def initiate_mpesa(
    request: MpesaInitiateRequest,
    db: Session = Depends(get_db),
    gateway: BaseGateway = Depends(get_gateway),
    settings: Settings = Depends(get_settings),
):
    """
    Start a mobile-money payment.

    - Stores a pending transaction under `orderRef`
    - Submits the order to the aggregator
    - Returns the tracking id and checkout redirect URL
    """
    txn = await payments.initiate_payment(
        db,
        gateway,
        settings,
        order_reference=request.order_ref,
        amount=request.amount,
        currency=request.currency or settings.default_currency,
        channel="mpesa",
        billing={"phone": request.phone},
    )
    return _initiate_response(txn)


@router.post(
    "/card/initiate",
    status_code=201,
    response_model=InitiateResponse,
    responses=ERROR_RESPONSES,
)
async def initiate_card(
    request: CardInitiateRequest,
    db: Session = Depends(get_db),
    gateway: BaseGateway = Depends(get_gateway),
    settings: Settings = Depends(get_settings),
):
    """Start a card payment; the customer completes it on the redirect URL."""
    txn = await payments.initiate_payment(
        db,
        gateway,
        settings,
        order_reference=request.order_ref,
        amount=request.amount,
        currency=request.currency or settings.default_currency,
        channel="card",
        billing={
            "email": request.email,
            "phone": request.phone,
            "first_name": request.first_name,
            "last_name": request.last_name,
        },
        description=request.description,
    )
    return _initiate_response(txn)


@router.get(
    "/{order_ref}/status",
    response_model=StatusResponse,
    responses=ERROR_RESPONSES,
)
async def payment_status(
    order_ref: str,
    refresh: bool = False,
    db: Session = Depends(get_db),
    gateway: BaseGateway = Depends(get_gateway),
    settings: Settings = Depends(get_settings),
):
    """
    Current status of a payment.

    With `refresh=true` the aggregator is asked first when the payment has a
    tracking id and is not yet terminal.
    """
    if refresh:
        txn = await payments.refresh_status(db, gateway, settings, order_ref)
    else:
        txn = payments.get_by_reference(db, order_ref)

    return StatusResponse(
        order_ref=txn.order_reference,
        status=txn.status,
        tracking_id=txn.gateway_tracking_id,
        amount=txn.amount,
        currency=txn.currency,
        channel=txn.channel,
        payment_method=txn.payment_method,
        confirmation_code=txn.confirmation_code,
        failure_reason=txn.failure_reason,
        created_at=txn.created_at,
        updated_at=txn.updated_at,
    )
