import logging
from datetime import datetime, timezone
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from pymongo import ReturnDocument

from database import create_document, get_collection, get_document, serialize_doc, to_object_id, utcnow
from pricing import evaluate_coupon
from schemas import Coupon
from security import require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/coupons", tags=["coupons"])


class CouponIn(BaseModel):
    code: str = Field(..., min_length=2)
    description: str
    discount_amount: float
    discount_type: Literal["percentage", "fixed"] = "percentage"
    minimum_cart_value: float = Field(0, ge=0)
    max_uses: int = -1
    start_date: datetime
    end_date: datetime
    is_active: bool = True


class CouponUpdate(BaseModel):
    code: Optional[str] = None
    description: Optional[str] = None
    discount_amount: Optional[float] = None
    discount_type: Optional[Literal["percentage", "fixed"]] = None
    minimum_cart_value: Optional[float] = Field(None, ge=0)
    max_uses: Optional[int] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: Optional[bool] = None


class ValidateRequest(BaseModel):
    code: str
    cart_value: float = Field(..., ge=0)


def _naive(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _check_discount(discount_type: str, amount: float) -> None:
    if discount_type == "percentage" and (amount <= 0 or amount > 100):
        raise HTTPException(status_code=400, detail="Percentage discount must be between 1 and 100")
    if discount_type == "fixed" and amount <= 0:
        raise HTTPException(status_code=400, detail="Fixed discount must be greater than 0")


def _check_dates(start: Optional[datetime], end: Optional[datetime]) -> None:
    if start and end and start >= end:
        raise HTTPException(status_code=400, detail="End date must be after start date")


@router.get("")
def list_coupons(user: dict = Depends(require_admin)):
    return [serialize_doc(c) for c in get_collection("coupon").find({}).sort("created_at", -1)]


@router.post("/validate")
def validate_coupon(payload: ValidateRequest):
    result = evaluate_coupon(payload.code, payload.cart_value)
    logger.info(f"Coupon {payload.code.upper()} valid for cart value {payload.cart_value}")
    return {
        "valid": True,
        "coupon": serialize_doc(result.coupon),
        "discount_value": result.discount_value,
        "message": "Coupon applied successfully",
    }


@router.get("/{coupon_id}")
def get_coupon(coupon_id: str, user: dict = Depends(require_admin)):
    oid = to_object_id(coupon_id)
    coupon = get_collection("coupon").find_one({"_id": oid}) if oid else None
    if not coupon:
        raise HTTPException(status_code=404, detail="Coupon not found")
    return serialize_doc(coupon)


@router.post("", status_code=201)
def create_coupon(payload: CouponIn, user: dict = Depends(require_admin)):
    coupons = get_collection("coupon")
    code = payload.code.upper()
    if coupons.find_one({"code": code}):
        raise HTTPException(status_code=400, detail="Coupon code already exists")
    _check_discount(payload.discount_type, payload.discount_amount)
    start, end = _naive(payload.start_date), _naive(payload.end_date)
    _check_dates(start, end)
    coupon = Coupon(**payload.model_dump(exclude={"code", "start_date", "end_date"}),
                    code=code, start_date=start, end_date=end)
    return serialize_doc(get_document("coupon", create_document("coupon", coupon)))


@router.put("/{coupon_id}")
def update_coupon(coupon_id: str, payload: CouponUpdate, user: dict = Depends(require_admin)):
    coupons = get_collection("coupon")
    oid = to_object_id(coupon_id)
    coupon = coupons.find_one({"_id": oid}) if oid else None
    if not coupon:
        raise HTTPException(status_code=404, detail="Coupon not found")

    update = payload.model_dump(exclude_none=True)
    if "code" in update:
        update["code"] = update["code"].upper()
        if update["code"] != coupon["code"] and coupons.find_one({"code": update["code"]}):
            raise HTTPException(status_code=400, detail="Coupon code already exists")
    if "discount_amount" in update or "discount_type" in update:
        _check_discount(update.get("discount_type", coupon.get("discount_type")),
                        update.get("discount_amount", coupon.get("discount_amount", 0)))
    for field in ("start_date", "end_date"):
        if field in update:
            update[field] = _naive(update[field])
    _check_dates(update.get("start_date", coupon.get("start_date")), update.get("end_date", coupon.get("end_date")))

    update["updated_at"] = utcnow()
    updated = coupons.find_one_and_update({"_id": oid}, {"$set": update}, return_document=ReturnDocument.AFTER)
    return serialize_doc(updated)


@router.delete("/{coupon_id}")
def delete_coupon(coupon_id: str, user: dict = Depends(require_admin)):
    oid = to_object_id(coupon_id)
    res = get_collection("coupon").delete_one({"_id": oid}) if oid else None
    if res is None or res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Coupon not found")
    return {"message": "Coupon deleted successfully"}
