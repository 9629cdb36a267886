"""
Checkout pricing.

Totals are always computed here from catalogue prices and the coupon ledger;
figures sent by the client are only compared against the result.
"""
import logging
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from database import get_collection, to_object_id, utcnow
from errors import NotFoundError, PricingError
from settings_store import tax_config

logger = logging.getLogger(__name__)

FREE_SHIPPING_THRESHOLD = 500
SHIPPING_FEE = 50


@dataclass
class Totals:
    subtotal: float
    discount_amount: float
    shipping_fee: float
    tax_amount: float
    total_amount: float

    def as_dict(self) -> Dict[str, float]:
        return asdict(self)

    @property
    def amount_minor(self) -> int:
        return int(round(self.total_amount * 100))


@dataclass
class CouponResult:
    coupon: dict
    discount_value: float


def compute_totals(subtotal: float, discount: float = 0, tax_enabled: bool = False,
                   tax_percentage: float = 0) -> Totals:
    discount = min(max(discount, 0), subtotal)
    discounted = subtotal - discount
    # free shipping only strictly above the threshold
    shipping_fee = 0 if discounted > FREE_SHIPPING_THRESHOLD else SHIPPING_FEE
    tax_amount = discounted * (tax_percentage / 100) if tax_enabled else 0
    return Totals(
        subtotal=round(subtotal, 2),
        discount_amount=round(discount, 2),
        shipping_fee=float(shipping_fee),
        tax_amount=round(tax_amount, 2),
        total_amount=round(discounted + shipping_fee + tax_amount, 2),
    )


def price_items(items: Iterable[Any]) -> Tuple[List[dict], float]:
    """Resolve `{product_id, quantity}` lines to frozen price snapshots."""
    products = get_collection("product")
    priced = []
    subtotal = 0.0
    for item in items:
        product_id = item["product_id"] if isinstance(item, dict) else item.product_id
        quantity = item["quantity"] if isinstance(item, dict) else item.quantity
        oid = to_object_id(product_id)
        product = products.find_one({"_id": oid}) if oid else None
        if not product or not product.get("is_active", True):
            raise PricingError(f"Product {product_id} is not available")
        price = float(product.get("price", 0))
        subtotal += price * quantity
        priced.append({
            "product_id": str(product["_id"]),
            "name": product.get("name", "Product"),
            "sku": product.get("sku") or str(product["_id"]),
            "quantity": quantity,
            "price": price,
        })
    if not priced:
        raise PricingError("Cart is empty")
    return priced, round(subtotal, 2)


def coupon_discount(coupon: dict, cart_value: float) -> float:
    if coupon.get("discount_type") == "percentage":
        value = cart_value * float(coupon.get("discount_amount", 0)) / 100
    else:
        value = float(coupon.get("discount_amount", 0))
    return round(min(value, cart_value), 2)


def evaluate_coupon(code: str, cart_value: float, now: Optional[datetime] = None) -> CouponResult:
    if not code:
        raise PricingError("Coupon code is required")
    coupon = get_collection("coupon").find_one({"code": code.upper()})
    if not coupon:
        raise NotFoundError("Invalid coupon code")
    if not coupon.get("is_active", True):
        raise PricingError("This coupon is inactive")
    now = now or utcnow()
    if now < coupon["start_date"] or now > coupon["end_date"]:
        raise PricingError("This coupon has expired or is not yet active")
    max_uses = coupon.get("max_uses", -1)
    if max_uses != -1 and coupon.get("used_count", 0) >= max_uses:
        raise PricingError("This coupon has reached its usage limit")
    minimum = float(coupon.get("minimum_cart_value", 0))
    if cart_value < minimum:
        raise PricingError(f"Minimum cart value of {minimum:g} required for this coupon")
    return CouponResult(coupon=coupon, discount_value=coupon_discount(coupon, cart_value))


def quote(items: Iterable[Any], coupon_code: Optional[str], settings: Optional[dict]) -> Dict[str, Any]:
    priced, subtotal = price_items(items)
    discount = 0.0
    applied_code = None
    if coupon_code:
        result = evaluate_coupon(coupon_code, subtotal)
        discount = result.discount_value
        applied_code = result.coupon["code"]
    tax_enabled, tax_percentage = tax_config(settings)
    totals = compute_totals(subtotal, discount, tax_enabled, tax_percentage)
    return {"items": priced, "coupon_code": applied_code, "totals": totals}


def record_coupon_use(code: Optional[str], attempts: int = 5) -> bool:
    """Count one use of `code`. Returns False once the coupon is exhausted."""
    if not code:
        return True
    coupons = get_collection("coupon")
    for _ in range(attempts):
        coupon = coupons.find_one({"code": code.upper()})
        if coupon is None:
            return False
        used = coupon.get("used_count", 0)
        max_uses = coupon.get("max_uses", -1)
        if max_uses != -1 and used >= max_uses:
            return False
        # matches only if no other order counted a use since the read
        res = coupons.update_one({"_id": coupon["_id"], "used_count": used}, {"$inc": {"used_count": 1}})
        if res.modified_count:
            return True
    logger.warning(f"Coupon {code} usage not recorded after {attempts} contended attempts")
    return False


def release_coupon_use(code: str) -> None:
    get_collection("coupon").update_one({"code": code.upper(), "used_count": {"$gt": 0}},
                                        {"$inc": {"used_count": -1}})
