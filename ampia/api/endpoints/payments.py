"""
Mobile money payment API endpoints

The WonyaSoft webhook is unauthenticated: the provider calls it with the
transaction reference we generated, and the handler only ever moves a known
payment forward.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel

from ampia.core.auth import get_current_user
from ampia.core.errors import InvalidRequest
from ampia.services.payment_service import payment_service

router = APIRouter(redirect_slashes=False)


class PaymentInitiate(BaseModel):
    ticketTypeId: Optional[Any] = None
    quantity: Optional[Any] = None
    mobileNumber: Optional[str] = None
    currency: Optional[str] = None


@router.post("/initiate", status_code=status.HTTP_201_CREATED)
async def initiate_payment(
    payment_data: PaymentInitiate,
    current_user: dict = Depends(get_current_user),
):
    """Start a mobile money payment for tickets"""
    return await payment_service.initiate_payment(
        user_id=current_user["id"],
        ticket_type_id=payment_data.ticketTypeId,
        quantity=payment_data.quantity,
        mobile_number=payment_data.mobileNumber,
        currency=payment_data.currency,
    )


@router.get("/status/{transaction_ref}")
async def get_payment_status(
    transaction_ref: str,
    current_user: dict = Depends(get_current_user),
):
    """Current status of a payment, refreshed from the provider while pending"""
    return await payment_service.get_payment_status(current_user["id"], transaction_ref)


@router.post("/webhook/wonyasoft")
async def wonyasoft_webhook(request: Request):
    try:
        body: Dict[str, Any] = await request.json()
    except ValueError:
        raise InvalidRequest("Corps de requête invalide")
    if not isinstance(body, dict):
        raise InvalidRequest("Corps de requête invalide")

    return await payment_service.handle_webhook(body)


@router.get("/history")
async def get_payment_history(current_user: dict = Depends(get_current_user)):
    """The user's payments, newest first"""
    return await payment_service.get_payment_history(current_user["id"])
