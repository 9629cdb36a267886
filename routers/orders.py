import logging
import re
from datetime import datetime, timedelta
from typing import Callable, List, Literal, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator
from pymongo import ReturnDocument

import config
import shipments
from database import create_document, get_collection, get_document, get_documents, serialize_doc, to_object_id, utcnow
from dependencies import get_gateway_factory, get_shiprocket
from errors import PaymentVerificationError, PricingError, StoreError
from order_status import OrderStatus, check_transition
from payments import RazorpayGateway
from pricing import quote, record_coupon_use, release_coupon_use
from routers.cart import clear_cart
from schemas import Order, OrderItem
from security import get_current_user, get_optional_user, require_admin
from settings_store import get_settings
from shiprocket import ShiprocketClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["orders"])

ORDER_CURRENCY = "INR"


class OrderItemIn(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)
    price: Optional[float] = Field(None, description="Display hint; the catalogue price is used")


class OrderDraft(BaseModel):
    billing_customer_name: str = Field(..., min_length=2)
    billing_last_name: str = ""
    billing_address: str = Field(..., min_length=5)
    billing_city: str = Field(..., min_length=2)
    billing_state: str = Field(..., min_length=2)
    billing_country: str = "India"
    billing_pincode: str = Field(..., min_length=5)
    billing_email: EmailStr
    billing_phone: str
    shipping_is_billing: bool = True
    shipping_customer_name: Optional[str] = None
    shipping_address: Optional[str] = None
    shipping_city: Optional[str] = None
    shipping_state: Optional[str] = None
    shipping_country: Optional[str] = None
    shipping_pincode: Optional[str] = None
    payment_method: Literal["card", "upi", "cod"]
    coupon_code: Optional[str] = None
    total_amount: Optional[float] = Field(None, description="Display hint only")
    discount_amount: Optional[float] = Field(None, description="Display hint only")
    package_length: Optional[float] = Field(None, gt=0)
    package_breadth: Optional[float] = Field(None, gt=0)
    package_height: Optional[float] = Field(None, gt=0)
    package_weight: Optional[float] = Field(None, gt=0)

    @field_validator("billing_phone")
    @classmethod
    def phone_has_ten_digits(cls, v: str) -> str:
        if len(re.sub(r"\D", "", v)) < 10:
            raise ValueError("Phone number must have at least 10 digits")
        return v

    @model_validator(mode="after")
    def shipping_block_required(self):
        if not self.shipping_is_billing:
            missing = [f for f in ("shipping_address", "shipping_city", "shipping_state", "shipping_pincode")
                       if not (getattr(self, f) or "").strip()]
            if missing:
                raise ValueError(f"Shipping fields required when shipping differs from billing: {', '.join(missing)}")
        return self


class PaymentProof(BaseModel):
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str


class OrderCreate(BaseModel):
    order: OrderDraft
    items: List[OrderItemIn] = Field(..., min_length=1)
    payment: Optional[PaymentProof] = None


class QuoteRequest(BaseModel):
    items: List[OrderItemIn] = Field(..., min_length=1)
    coupon_code: Optional[str] = None


class OrderUpdate(BaseModel):
    status: Optional[str] = None
    package_length: Optional[float] = Field(None, gt=0)
    package_breadth: Optional[float] = Field(None, gt=0)
    package_height: Optional[float] = Field(None, gt=0)
    package_weight: Optional[float] = Field(None, gt=0)


class ServiceabilityRequest(BaseModel):
    delivery_pincode: str = Field(..., min_length=5)
    weight: float = Field(0.5, gt=0)
    cod: bool = False


def _load_order(order_id: str) -> dict:
    order = get_document("order", order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


def _order_items(order_id: str) -> List[dict]:
    return [serialize_doc(i) for i in get_documents("order_item", {"order_id": str(order_id)})]


def _claim_payment(proof: PaymentProof, amount_minor: int) -> dict:
    intents = get_collection("payment_intent")
    intent = intents.find_one({"provider_order_id": proof.razorpay_order_id})
    if not intent:
        raise PaymentVerificationError("Unknown payment order")
    if (intent.get("currency") or ORDER_CURRENCY).upper() != ORDER_CURRENCY:
        logger.warning(f"Payment {proof.razorpay_order_id} in {intent['currency']}, orders are in {ORDER_CURRENCY}")
        raise PaymentVerificationError("Payment currency does not match order currency")
    if int(intent["amount"]) != amount_minor:
        logger.warning(f"Payment {proof.razorpay_order_id} amount {intent['amount']} != order total {amount_minor}")
        raise PaymentVerificationError("Payment amount does not match order total")
    claimed = intents.find_one_and_update(
        {"_id": intent["_id"], "consumed": False},
        {"$set": {"consumed": True, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if claimed is None:
        raise PaymentVerificationError("Payment already used for another order", status_code=409)
    return claimed


def _release_payment(intent: dict) -> None:
    get_collection("payment_intent").update_one(
        {"_id": intent["_id"], "order_id": None},
        {"$set": {"consumed": False, "updated_at": utcnow()}},
    )


@router.post("/checkout/quote")
def checkout_quote(payload: QuoteRequest):
    result = quote(payload.items, payload.coupon_code, get_settings())
    return {"items": result["items"], "coupon_code": result["coupon_code"], **result["totals"].as_dict()}


@router.post("/orders", status_code=201)
def create_order(payload: OrderCreate, background_tasks: BackgroundTasks,
                 user: Optional[dict] = Depends(get_optional_user),
                 gateway_factory: Callable[[], RazorpayGateway] = Depends(get_gateway_factory),
                 shiprocket: ShiprocketClient = Depends(get_shiprocket)):
    draft = payload.order
    priced = quote(payload.items, draft.coupon_code, get_settings())
    totals = priced["totals"]
    if draft.total_amount is not None and abs(draft.total_amount - totals.total_amount) > 0.01:
        logger.warning(f"Client total {draft.total_amount} differs from computed {totals.total_amount}; using computed")

    payment_fields = {"payment_status": "unpaid", "payment_id": None, "provider_order_id": None}
    if draft.payment_method != "cod":
        if payload.payment is None:
            raise PaymentVerificationError("Payment confirmation is required for online payments")
        if not gateway_factory().verify_payment(payload.payment.model_dump()):
            raise PaymentVerificationError("Payment failed")
        payment_fields = {
            "payment_status": "paid",
            "payment_id": payload.payment.razorpay_payment_id,
            "provider_order_id": payload.payment.razorpay_order_id,
        }

    order = Order(
        **draft.model_dump(exclude={"coupon_code", "total_amount", "discount_amount"}),
        **totals.as_dict(),
        **payment_fields,
        user_id=str(user["_id"]) if user else "guest",
        status=OrderStatus.PENDING.value,
        coupon_code=priced["coupon_code"],
    )

    intent = None
    if draft.payment_method != "cod":
        intent = _claim_payment(payload.payment, totals.amount_minor)
    coupon_counted = False
    try:
        if priced["coupon_code"]:
            if not record_coupon_use(priced["coupon_code"]):
                raise PricingError("This coupon has reached its usage limit")
            coupon_counted = True
        order_id = create_document("order", order)
    except Exception:
        # no order was written; return the claimed payment and coupon use
        if coupon_counted:
            release_coupon_use(priced["coupon_code"])
        if intent is not None:
            _release_payment(intent)
        raise
    logger.info(f"Order {order_id} created: {draft.payment_method} {totals.total_amount} ({order.payment_status})")

    if intent is not None:
        get_collection("payment_intent").update_one({"_id": intent["_id"]}, {"$set": {"order_id": order_id}})

    for item in priced["items"]:
        create_document("order_item", OrderItem(order_id=order_id, **item))
        get_collection("product").update_one({"_id": to_object_id(item["product_id"])},
                                             {"$inc": {"inventory": -item["quantity"]}})
    if user:
        clear_cart(str(user["_id"]))

    shipments.enqueue(order_id, "create")
    if config.SHIPMENT_DISPATCH_ON_CREATE:
        background_tasks.add_task(shipments.process_due, shiprocket)

    return {"order": serialize_doc(get_document("order", order_id)), "items": _order_items(order_id)}


@router.get("/orders")
def list_orders(page: int = 1, limit: int = 10, search: str = "", status: str = "", date: str = "",
                user: dict = Depends(require_admin)):
    filt: dict = {}
    if search:
        oid = to_object_id(search)
        if oid is not None:
            filt["_id"] = oid
        else:
            pattern = {"$regex": re.escape(search), "$options": "i"}
            filt["$or"] = [{"user_id": pattern}, {"billing_email": pattern}]
    if status and status != "all":
        filt["status"] = status
    if date and date != "all":
        try:
            day = datetime.strptime(date, "%Y-%m-%d")
        except ValueError:
            raise HTTPException(status_code=400, detail="date must be YYYY-MM-DD")
        filt["created_at"] = {"$gte": day, "$lt": day + timedelta(days=1)}

    page, limit = max(page, 1), max(1, min(limit, 100))
    orders = get_collection("order")
    total = orders.count_documents(filt)
    cursor = orders.find(filt).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    return {"orders": [serialize_doc(o) for o in cursor], "total": total}


@router.get("/my/orders")
async def my_orders(user: dict = Depends(get_current_user)):
    cursor = get_collection("order").find({"user_id": str(user["_id"])}).sort("created_at", -1)
    return {"orders": [serialize_doc(o) for o in cursor]}


@router.get("/orders/{order_id}")
def get_order(order_id: str):
    order = _load_order(order_id)
    return {"order": serialize_doc(order), "items": _order_items(order_id)}


@router.get("/orders/{order_id}/track")
async def track_order(order_id: str, shiprocket: ShiprocketClient = Depends(get_shiprocket)):
    order = _load_order(order_id)
    if not order.get("shiprocket_order_id"):
        raise StoreError(f"Shipment not created yet (status: {order.get('shipment_status', 'none')})", status_code=404)
    return await shiprocket.track_shipment(order["shiprocket_order_id"])


@router.put("/orders/{order_id}")
def update_order(order_id: str, payload: OrderUpdate, user: dict = Depends(require_admin)):
    order = _load_order(order_id)
    update = payload.model_dump(exclude_none=True, exclude={"status"})
    current = order.get("status", OrderStatus.PENDING.value)
    target = None
    if payload.status is not None:
        target = check_transition(current, payload.status)
        update["status"] = target.value
    if not update:
        return serialize_doc(order)

    update["updated_at"] = utcnow()
    # guard on the status we validated against so concurrent edits cannot skip the table
    updated = get_collection("order").find_one_and_update(
        {"_id": order["_id"], "status": current},
        {"$set": update},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise StoreError("Order was modified concurrently, reload and retry", status_code=409)

    if target == OrderStatus.CANCELLED and current != OrderStatus.CANCELLED.value:
        logger.info(f"Order {order_id} cancelled by {user.get('email')}")
        if updated.get("shiprocket_order_id"):
            shipments.enqueue(order_id, "cancel", reason="Order cancelled")
            updated = get_collection("order").find_one({"_id": order["_id"]})
    return serialize_doc(updated)


@router.post("/orders/{order_id}/shipment/retry")
def retry_shipment(order_id: str, user: dict = Depends(require_admin)):
    order = _load_order(order_id)
    if order.get("shipment_status") != "failed":
        raise StoreError("Only failed shipments can be retried", status_code=409)
    task_id = shipments.retry_failed(order_id)
    return {"order_id": order_id, "task_id": task_id, "shipment_status": "queued"}


@router.post("/shipping/serviceability")
async def serviceability(payload: ServiceabilityRequest, shiprocket: ShiprocketClient = Depends(get_shiprocket)):
    return await shiprocket.check_serviceability(payload.delivery_pincode, payload.weight, payload.cod)


def backfill_order_defaults() -> None:
    """Fill fields added after launch on legacy order documents."""
    orders = get_collection("order")
    res = orders.update_many({"shipment_status": {"$exists": False}}, {"$set": {"shipment_status": "none"}})
    res2 = orders.update_many({"discount_amount": {"$exists": False}}, {"$set": {"discount_amount": 0}})
    if res.modified_count or res2.modified_count:
        logger.info(f"Backfilled {res.modified_count} shipment_status, {res2.modified_count} discount_amount")
