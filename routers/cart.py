from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from database import get_collection, to_object_id, utcnow
from security import get_current_user

router = APIRouter(prefix="/api/cart", tags=["cart"])


class CartItemIn(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class CartItemRemove(BaseModel):
    product_id: str


def _load_cart(uid: str) -> dict:
    carts = get_collection("cart")
    cart = carts.find_one({"user_id": uid})
    if not cart:
        cart = {"user_id": uid, "items": [], "created_at": utcnow(), "updated_at": utcnow()}
        cart["_id"] = carts.insert_one(cart).inserted_id
    return cart


def _render(cart: dict) -> dict:
    """Attach live prices; the cart only stores what was added and when."""
    products = get_collection("product")
    items = []
    subtotal = 0.0
    for it in cart.get("items", []):
        oid = to_object_id(it["product_id"])
        product = products.find_one({"_id": oid}) if oid else None
        if not product:
            continue
        price = float(product.get("price", it.get("price_at_add", 0.0)))
        subtotal += price * it["quantity"]
        items.append({
            "product_id": it["product_id"],
            "name": product.get("name"),
            "image": (product.get("images") or [None])[0],
            "quantity": it["quantity"],
            "price": price,
        })
    return {"id": str(cart["_id"]), "user_id": cart["user_id"], "items": items, "subtotal": round(subtotal, 2)}


def _save(uid: str, items: list) -> None:
    get_collection("cart").update_one({"user_id": uid}, {"$set": {"items": items, "updated_at": utcnow()}})


@router.get("")
async def get_cart(user: dict = Depends(get_current_user)):
    return _render(_load_cart(str(user["_id"])))


@router.post("/add")
async def cart_add(item: CartItemIn, user: dict = Depends(get_current_user)):
    uid = str(user["_id"])
    cart = _load_cart(uid)
    oid = to_object_id(item.product_id)
    product = get_collection("product").find_one({"_id": oid}) if oid else None
    if not product or not product.get("is_active", True):
        raise HTTPException(status_code=404, detail="Product not found")
    items = cart.get("items", [])
    for it in items:
        if it["product_id"] == item.product_id:
            it["quantity"] += item.quantity
            break
    else:
        items.append({
            "product_id": item.product_id,
            "quantity": item.quantity,
            "price_at_add": float(product.get("price", 0.0)),
        })
    _save(uid, items)
    return _render(_load_cart(uid))


@router.post("/update")
async def cart_update(item: CartItemIn, user: dict = Depends(get_current_user)):
    uid = str(user["_id"])
    cart = get_collection("cart").find_one({"user_id": uid})
    if not cart:
        raise HTTPException(status_code=404, detail="Cart not found")
    items = cart.get("items", [])
    for it in items:
        if it["product_id"] == item.product_id:
            it["quantity"] = item.quantity
            break
    else:
        raise HTTPException(status_code=404, detail="Item not in cart")
    _save(uid, items)
    return _render(_load_cart(uid))


@router.post("/remove")
async def cart_remove(item: CartItemRemove, user: dict = Depends(get_current_user)):
    uid = str(user["_id"])
    cart = _load_cart(uid)
    _save(uid, [it for it in cart.get("items", []) if it["product_id"] != item.product_id])
    return _render(_load_cart(uid))


def clear_cart(uid: str) -> None:
    get_collection("cart").update_one({"user_id": uid}, {"$set": {"items": [], "updated_at": utcnow()}})
