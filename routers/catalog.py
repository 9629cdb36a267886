from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from database import create_document, get_collection, serialize_doc, to_object_id, utcnow
from middleware import cached_json, invalidate
from schemas import Category, Collection, Product
from security import require_admin

router = APIRouter(prefix="/api", tags=["catalog"])

CATALOG_PREFIXES = ("/api/products", "/api/categories", "/api/collections")


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    slug: Optional[str] = None
    sku: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    mrp: Optional[float] = Field(None, ge=0)
    images: Optional[List[str]] = None
    category_id: Optional[str] = None
    inventory: Optional[int] = Field(None, ge=0)
    featured: Optional[bool] = None
    bestseller: Optional[bool] = None
    is_active: Optional[bool] = None


class CategoryUpdate(BaseModel):
    name: Optional[str] = None
    slug: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    featured: Optional[bool] = None


class CollectionUpdate(BaseModel):
    name: Optional[str] = None
    slug: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None


class CollectionProduct(BaseModel):
    product_id: str


def _find_by_id_or_slug(collection_name: str, id_or_slug: str) -> Optional[dict]:
    coll = get_collection(collection_name)
    oid = to_object_id(id_or_slug)
    if oid is not None:
        doc = coll.find_one({"_id": oid})
        if doc:
            return doc
    return coll.find_one({"slug": id_or_slug})


def _ensure_unique_slug(collection_name: str, slug: str, exclude_id=None) -> None:
    filt: Dict[str, Any] = {"slug": slug}
    if exclude_id is not None:
        filt["_id"] = {"$ne": exclude_id}
    if get_collection(collection_name).find_one(filt):
        raise HTTPException(status_code=400, detail=f"Slug '{slug}' already in use")


def _product_list(filt: Dict[str, Any], sort: Optional[str] = None, limit: int = 12) -> List[dict]:
    cursor = get_collection("product").find(filt)
    if sort:
        cursor = cursor.sort(sort, -1)
    return [serialize_doc(p) for p in cursor.limit(limit)]


# Products
@router.get("/products")
async def list_products(request: Request, q: Optional[str] = None, category: Optional[str] = None,
                        sort: Optional[str] = None, page: int = 1, page_size: int = 12,
                        min_price: Optional[float] = None, max_price: Optional[float] = None):
    def produce():
        filt: Dict[str, Any] = {"is_active": True}
        if q:
            filt["name"] = {"$regex": q, "$options": "i"}
        if category:
            cat = _find_by_id_or_slug("category", category)
            filt["category_id"] = str(cat["_id"]) if cat else category
        price_cond = {}
        if min_price is not None:
            price_cond["$gte"] = min_price
        if max_price is not None:
            price_cond["$lte"] = max_price
        if price_cond:
            filt["price"] = price_cond

        products = get_collection("product")
        total = products.count_documents(filt)
        cursor = products.find(filt)
        if sort == "price_asc":
            cursor = cursor.sort("price", 1)
        elif sort == "price_desc":
            cursor = cursor.sort("price", -1)
        elif sort == "newest":
            cursor = cursor.sort("created_at", -1)
        size = max(1, min(page_size, 100))
        cursor = cursor.skip((max(page, 1) - 1) * size).limit(size)
        return {"items": [serialize_doc(p) for p in cursor], "page": page, "page_size": size, "total": total}

    return await cached_json(request, produce)


@router.get("/products/featured")
async def featured_products(request: Request):
    return await cached_json(request, lambda: _product_list({"is_active": True, "featured": True}))


@router.get("/products/bestsellers")
async def bestseller_products(request: Request):
    return await cached_json(request, lambda: _product_list({"is_active": True, "bestseller": True}))


@router.get("/products/new")
async def new_products(request: Request):
    return await cached_json(request, lambda: _product_list({"is_active": True}, sort="created_at", limit=8))


@router.get("/products/{id_or_slug}")
def get_product(id_or_slug: str):
    product = _find_by_id_or_slug("product", id_or_slug)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return serialize_doc(product)


@router.post("/products", status_code=201)
async def create_product(payload: Product, request: Request, user: dict = Depends(require_admin)):
    _ensure_unique_slug("product", payload.slug)
    inserted = create_document("product", payload)
    await invalidate(request, *CATALOG_PREFIXES)
    return {"id": inserted}


@router.put("/products/{product_id}")
async def update_product(product_id: str, payload: ProductUpdate, request: Request,
                         user: dict = Depends(require_admin)):
    oid = to_object_id(product_id)
    update = payload.model_dump(exclude_none=True)
    if oid is not None and update.get("slug"):
        _ensure_unique_slug("product", update["slug"], exclude_id=oid)
    update["updated_at"] = utcnow()
    res = get_collection("product").update_one({"_id": oid}, {"$set": update}) if oid else None
    if res is None or res.matched_count == 0:
        raise HTTPException(status_code=404, detail="Product not found")
    await invalidate(request, *CATALOG_PREFIXES)
    return serialize_doc(get_collection("product").find_one({"_id": oid}))


@router.delete("/products/{product_id}")
async def delete_product(product_id: str, request: Request, user: dict = Depends(require_admin)):
    oid = to_object_id(product_id)
    res = get_collection("product").delete_one({"_id": oid}) if oid else None
    if res is None or res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Product not found")
    get_collection("collection").update_many({}, {"$pull": {"product_ids": product_id}})
    await invalidate(request, *CATALOG_PREFIXES)
    return {"id": product_id, "deleted": True}


# Categories
@router.get("/categories")
async def list_categories(request: Request):
    return await cached_json(request, lambda: [serialize_doc(c) for c in get_collection("category").find({}).sort("name", 1)])


@router.get("/categories/{slug}")
def get_category(slug: str):
    category = _find_by_id_or_slug("category", slug)
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    return serialize_doc(category)


@router.get("/categories/{slug}/products")
async def category_products(slug: str, request: Request):
    category = _find_by_id_or_slug("category", slug)
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    filt = {"is_active": True, "category_id": str(category["_id"])}
    return await cached_json(request, lambda: _product_list(filt, limit=100))


@router.post("/categories", status_code=201)
async def create_category(payload: Category, request: Request, user: dict = Depends(require_admin)):
    _ensure_unique_slug("category", payload.slug)
    doc = payload.model_dump()
    doc.update({"created_at": utcnow(), "updated_at": utcnow()})
    doc["_id"] = get_collection("category").insert_one(doc).inserted_id
    await invalidate(request, "/api/categories")
    return serialize_doc(doc)


@router.put("/categories/{category_id}")
async def update_category(category_id: str, payload: CategoryUpdate, request: Request,
                          user: dict = Depends(require_admin)):
    oid = to_object_id(category_id)
    update = payload.model_dump(exclude_none=True)
    if oid is not None and update.get("slug"):
        _ensure_unique_slug("category", update["slug"], exclude_id=oid)
    update["updated_at"] = utcnow()
    res = get_collection("category").update_one({"_id": oid}, {"$set": update}) if oid else None
    if res is None or res.matched_count == 0:
        raise HTTPException(status_code=404, detail="Category not found")
    await invalidate(request, "/api/categories", "/api/products")
    return serialize_doc(get_collection("category").find_one({"_id": oid}))


@router.delete("/categories/{category_id}")
async def delete_category(category_id: str, request: Request, user: dict = Depends(require_admin)):
    oid = to_object_id(category_id)
    res = get_collection("category").delete_one({"_id": oid}) if oid else None
    if res is None or res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Category not found")
    await invalidate(request, "/api/categories", "/api/products")
    return {"id": category_id, "deleted": True}


# Collections
@router.get("/collections")
async def list_collections(request: Request):
    return await cached_json(request, lambda: [serialize_doc(c) for c in get_collection("collection").find({})])


@router.get("/collections/{slug}")
def get_collection_detail(slug: str):
    col = get_collection("collection").find_one({"slug": slug})
    if not col:
        raise HTTPException(status_code=404, detail="Collection not found")
    return serialize_doc(col)


@router.get("/collections/{slug}/products")
async def collection_products(slug: str, request: Request):
    col = get_collection("collection").find_one({"slug": slug})
    if not col:
        raise HTTPException(status_code=404, detail="Collection not found")
    ids = [oid for oid in (to_object_id(pid) for pid in col.get("product_ids", [])) if oid is not None]
    return await cached_json(request, lambda: _product_list({"_id": {"$in": ids}, "is_active": True}, limit=200))


@router.post("/collections", status_code=201)
async def create_collection(payload: Collection, request: Request, user: dict = Depends(require_admin)):
    _ensure_unique_slug("collection", payload.slug)
    doc = payload.model_dump()
    doc.update({"created_at": utcnow(), "updated_at": utcnow()})
    doc["_id"] = get_collection("collection").insert_one(doc).inserted_id
    await invalidate(request, "/api/collections")
    return serialize_doc(doc)


@router.put("/collections/{collection_id}")
async def update_collection(collection_id: str, payload: CollectionUpdate, request: Request,
                            user: dict = Depends(require_admin)):
    oid = to_object_id(collection_id)
    update = payload.model_dump(exclude_none=True)
    if oid is not None and update.get("slug"):
        _ensure_unique_slug("collection", update["slug"], exclude_id=oid)
    update["updated_at"] = utcnow()
    res = get_collection("collection").update_one({"_id": oid}, {"$set": update}) if oid else None
    if res is None or res.matched_count == 0:
        raise HTTPException(status_code=404, detail="Collection not found")
    await invalidate(request, "/api/collections")
    return serialize_doc(get_collection("collection").find_one({"_id": oid}))


@router.delete("/collections/{collection_id}", status_code=204)
async def delete_collection(collection_id: str, request: Request, user: dict = Depends(require_admin)):
    oid = to_object_id(collection_id)
    res = get_collection("collection").delete_one({"_id": oid}) if oid else None
    if res is None or res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Collection not found")
    await invalidate(request, "/api/collections")


@router.post("/collections/{slug}/products", status_code=201)
async def add_collection_product(slug: str, payload: CollectionProduct, request: Request,
                                 user: dict = Depends(require_admin)):
    product = _find_by_id_or_slug("product", payload.product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    product_id = str(product["_id"])
    res = get_collection("collection").update_one({"slug": slug}, {"$addToSet": {"product_ids": product_id}})
    if res.matched_count == 0:
        raise HTTPException(status_code=404, detail="Collection not found")
    await invalidate(request, "/api/collections")
    return {"collection": slug, "product_id": product_id}


@router.delete("/collections/{slug}/products/{product_id}")
async def remove_collection_product(slug: str, product_id: str, request: Request,
                                    user: dict = Depends(require_admin)):
    col = get_collection("collection").find_one({"slug": slug})
    if not col:
        raise HTTPException(status_code=404, detail="Collection not found")
    if product_id not in col.get("product_ids", []):
        raise HTTPException(status_code=404, detail="Mapping not found")
    get_collection("collection").update_one({"slug": slug}, {"$pull": {"product_ids": product_id}})
    await invalidate(request, "/api/collections")
    return {"success": True}
