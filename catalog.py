import logging
import math
import re
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field, field_validator
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

import media
from database import check_db, create_document, db, ensure_object_id, now, serialize_doc
from schemas import Category as CategorySchema, Product as ProductSchema, TICKET_STATUSES
from security import require_admin

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(check_db)])

SORTS = {
    "newest": ("created_at", DESCENDING),
    "price_asc": ("price", ASCENDING),
    "price_desc": ("price", DESCENDING),
}


# ----------------------- Models -----------------------
class CategoryBody(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)
    description: Optional[str] = None
    kind: Literal["category", "collection"] = "category"

    @field_validator("name")
    @classmethod
    def strip_name(cls, v):
        v = v.strip()
        if len(v) < 2:
            raise ValueError("It must have at least 2 characters")
        return v


class ProductBody(ProductSchema):
    @field_validator("colors", "sizes")
    @classmethod
    def drop_blank(cls, v: List[str]):
        return [s.strip() for s in v if isinstance(s, str) and s.strip()]

    @field_validator("collection_id")
    @classmethod
    def empty_collection(cls, v):
        return v or None


def slugify(name: str) -> str:
    return re.sub(r"\s+", "-", name.strip().lower())


# ----------------------- Categories -----------------------
@router.get("/api/products/categories")
def list_categories(kind: Optional[Literal["category", "collection"]] = None):
    query = {"kind": kind} if kind else {}
    return [serialize_doc(c) for c in db["category"].find(query).sort("created_at", DESCENDING)]


def _category_doc(body: CategoryBody) -> dict:
    return CategorySchema(
        name=body.name,
        slug=slugify(body.name),
        description=body.description or "",
        kind=body.kind,
    ).model_dump()


@router.post("/api/products/categories", status_code=201)
def create_category(body: CategoryBody, user=Depends(require_admin)):
    doc = _category_doc(body)
    if db["category"].find_one({"slug": doc["slug"]}):
        raise HTTPException(status_code=400, detail="Category already exists")
    try:
        category_id = create_document("category", doc)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Category already exists")
    return serialize_doc(db["category"].find_one({"_id": ensure_object_id(category_id)}))


@router.get("/api/products/categories/{category_id}")
def get_category(category_id: str):
    category = db["category"].find_one({"_id": ensure_object_id(category_id)})
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    return serialize_doc(category)


@router.put("/api/products/categories/{category_id}")
def update_category(category_id: str, body: CategoryBody, user=Depends(require_admin)):
    _id = ensure_object_id(category_id)
    doc = _category_doc(body)
    if db["category"].find_one({"slug": doc["slug"], "_id": {"$ne": _id}}):
        raise HTTPException(status_code=400, detail="Category already exists")
    doc["updated_at"] = now()
    updated = db["category"].find_one_and_update({"_id": _id}, {"$set": doc}, return_document=ReturnDocument.AFTER)
    if not updated:
        raise HTTPException(status_code=404, detail="Category not found")
    return serialize_doc(updated)


@router.delete("/api/products/categories/{category_id}")
def delete_category(category_id: str, user=Depends(require_admin)):
    res = db["category"].delete_one({"_id": ensure_object_id(category_id)})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Category not found")
    return {"message": "Category deleted"}


# ----------------------- Products -----------------------
@router.get("/api/products")
def list_products(
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    search: Optional[str] = None,
    category_id: Optional[str] = None,
    collection_id: Optional[str] = None,
    sort: Literal["newest", "price_asc", "price_desc"] = "newest",
    status: Optional[Literal["active", "inactive"]] = None,
):
    filt = {}
    if search:
        filt["title"] = {"$regex": re.escape(search), "$options": "i"}
    if category_id:
        filt["category_id"] = category_id
    if collection_id:
        filt["collection_id"] = collection_id
    if status:
        filt["status"] = status

    field, direction = SORTS[sort]
    skip = (page - 1) * limit
    items = db["product"].find(filt).sort(field, direction).skip(skip).limit(limit)
    total = db["product"].count_documents(filt)
    return {
        "items": [serialize_doc(i) for i in items],
        "total": total,
        "page": page,
        "pages": math.ceil(total / limit),
    }


@router.get("/api/products/{product_id}")
def get_product(product_id: str):
    item = db["product"].find_one({"_id": ensure_object_id(product_id)})
    if not item:
        raise HTTPException(status_code=404, detail="Product not found")
    return serialize_doc(item)


@router.post("/api/products", status_code=201)
def create_product(body: ProductBody, user=Depends(require_admin)):
    pid = create_document("product", ProductSchema(**body.model_dump()))
    return serialize_doc(db["product"].find_one({"_id": ensure_object_id(pid)}))


@router.put("/api/products/{product_id}")
def update_product(product_id: str, body: ProductBody, user=Depends(require_admin)):
    update = ProductSchema(**body.model_dump()).model_dump()
    update["updated_at"] = now()
    updated = db["product"].find_one_and_update(
        {"_id": ensure_object_id(product_id)},
        {"$set": update},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise HTTPException(status_code=404, detail="Product not found")
    return serialize_doc(updated)


@router.delete("/api/products/{product_id}")
def delete_product(product_id: str, user=Depends(require_admin)):
    _id = ensure_object_id(product_id)
    product = db["product"].find_one({"_id": _id})
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    for img in product.get("images") or []:
        if img.get("public_id"):
            try:
                media.destroy(img["public_id"])
            except media.MediaError as exc:
                logger.warning("Could not delete image %s of product %s: %s", img["public_id"], product_id, exc)
    db["product"].delete_one({"_id": _id})
    return {"message": "Product deleted"}


# ----------------------- Admin -----------------------
@router.get("/api/admin/stats")
def admin_stats(user=Depends(require_admin)):
    return {
        "users": db["user"].count_documents({}),
        "products": db["product"].count_documents({}),
        "categories": db["category"].count_documents({}),
        "orders": db["order"].count_documents({}),
        "tickets": {s: db["ticket"].count_documents({"status": s}) for s in TICKET_STATUSES},
    }
