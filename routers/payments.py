import logging
from typing import Callable, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from database import create_document
from dependencies import get_gateway_factory
from payments import RazorpayGateway
from schemas import PaymentIntent

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/razorpay", tags=["payments"])


class ProviderOrderRequest(BaseModel):
    amount: int = Field(..., gt=0, description="Amount in paise")
    currency: str = "INR"
    receipt: Optional[str] = None


class PaymentConfirmation(BaseModel):
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str


@router.post("/order")
def create_provider_order(payload: ProviderOrderRequest,
                          gateway_factory: Callable[[], RazorpayGateway] = Depends(get_gateway_factory)):
    gateway = gateway_factory()
    order = gateway.create_order(payload.amount, payload.currency, payload.receipt)
    create_document("payment_intent", PaymentIntent(
        provider_order_id=order["order_id"],
        amount=int(order["amount"]),
        currency=order["currency"],
        receipt=payload.receipt,
    ))
    return {**order, "key_id": gateway.key_id}


@router.post("/verify")
def verify_payment(payload: PaymentConfirmation,
                   gateway_factory: Callable[[], RazorpayGateway] = Depends(get_gateway_factory)):
    valid = gateway_factory().verify_payment(payload.model_dump())
    if not valid:
        logger.warning(f"Payment verification failed for {payload.razorpay_order_id}")
    return {"valid": valid}
