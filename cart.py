"""
Server-side shopping cart.

`price_at_add` is captured once, when a line is first added, from the
product's price minus its discount. It is never recomputed afterwards, so
later price changes do not touch carts that already hold the product.
"""
import logging
from typing import Dict, List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator

from database import check_db, db, now
from schemas import CartItem
from security import get_current_user, get_optional_user

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(check_db)])

MAX_QTY = 10
PLACEHOLDER_IMAGE = "/placeholder.png"


# ----------------------- Models -----------------------
class _LineBody(BaseModel):
    product_id: str
    variant: Optional[str] = None

    @field_validator("variant")
    @classmethod
    def blank_variant(cls, v):
        return v or None


class AddBody(_LineBody):
    qty: int = Field(..., ge=1, le=MAX_QTY)


class UpdateBody(_LineBody):
    qty: int = Field(..., ge=0, le=MAX_QTY)


class RemoveBody(_LineBody):
    pass


class GuestItem(_LineBody):
    qty: int


class MergeBody(BaseModel):
    items: List[GuestItem] = []


# ----------------------- Helpers -----------------------
def price_at_add(product: dict) -> float:
    price = float(product.get("price", 0))
    discount = float(product.get("discount") or 0)
    if discount > 0:
        price = price - price * (discount / 100)
    return round(price, 2)


def find_purchasable(product_id: str) -> Optional[dict]:
    if not ObjectId.is_valid(product_id):
        return None
    product = db["product"].find_one({"_id": ObjectId(product_id)})
    if not product or product.get("status", "active") != "active":
        return None
    return product


def _same_line(item: dict, product_id: str, variant: Optional[str]) -> bool:
    return item["product_id"] == product_id and (item.get("variant") or None) == variant


def load_items(user_id: str) -> List[dict]:
    cart = db["cart"].find_one({"user_id": user_id})
    return list(cart.get("items") or []) if cart else []


def save_items(user_id: str, items: List[dict]) -> None:
    db["cart"].update_one(
        {"user_id": user_id},
        {"$set": {"items": items, "updated_at": now()}, "$setOnInsert": {"created_at": now()}},
        upsert=True,
    )


def _products_for(items: List[dict]) -> Dict[str, dict]:
    oids = [ObjectId(i["product_id"]) for i in items if ObjectId.is_valid(i["product_id"])]
    if not oids:
        return {}
    return {str(p["_id"]): p for p in db["product"].find({"_id": {"$in": oids}}, {"title": 1, "images": 1})}


def expand_items(items: List[dict]) -> List[dict]:
    """Cart lines plus the title and first image re-read from each product."""
    products = _products_for(items)
    out = []
    for i in items:
        product = products.get(i["product_id"]) or {}
        images = product.get("images") or []
        out.append({
            "product_id": i["product_id"],
            "qty": i["qty"],
            "price_at_add": i["price_at_add"],
            "variant": i.get("variant"),
            "title": product.get("title") or "Untitled",
            "image": (images[0].get("url") if images else None) or PLACEHOLDER_IMAGE,
        })
    return out


def cart_response(items: List[dict]) -> dict:
    return {"cart": {"items": expand_items(items)}}


def cart_total(items: List[dict]) -> float:
    return round(sum(i["qty"] * i["price_at_add"] for i in items), 2)


# ----------------------- Cart -----------------------
@router.get("/api/cart/get")
def get_cart(user=Depends(get_optional_user)):
    if user is None:
        return {"cart": {"items": []}}
    return cart_response(load_items(user["id"]))


@router.post("/api/cart/add")
def add_to_cart(body: AddBody, user=Depends(get_current_user)):
    product = find_purchasable(body.product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    price = price_at_add(product)

    items = load_items(user["id"])
    existing = next((i for i in items if _same_line(i, body.product_id, body.variant)), None)
    if existing:
        existing["qty"] += body.qty
        if not existing.get("price_at_add"):
            existing["price_at_add"] = price
    else:
        items.append(CartItem(product_id=body.product_id, qty=body.qty,
                              price_at_add=price, variant=body.variant).model_dump())
    save_items(user["id"], items)
    return cart_response(items)


@router.put("/api/cart/update")
def update_cart_item(body: UpdateBody, user=Depends(get_current_user)):
    items = load_items(user["id"])
    existing = next((i for i in items if _same_line(i, body.product_id, body.variant)), None)
    if not existing:
        return cart_response(items)
    if body.qty == 0:
        items = [i for i in items if not _same_line(i, body.product_id, body.variant)]
    else:
        existing["qty"] = body.qty
    save_items(user["id"], items)
    return cart_response(items)


@router.delete("/api/cart/remove")
def remove_from_cart(body: RemoveBody, user=Depends(get_current_user)):
    items = load_items(user["id"])
    remaining = [i for i in items if not _same_line(i, body.product_id, body.variant)]
    if len(remaining) != len(items):
        save_items(user["id"], remaining)
    return cart_response(remaining)


@router.delete("/api/cart/clear")
def clear_cart(user=Depends(get_current_user)):
    db["cart"].update_one({"user_id": user["id"]}, {"$set": {"items": [], "updated_at": now()}})
    return {"cart": {"items": []}}


@router.post("/api/cart/merge")
def merge_guest_cart(body: MergeBody, user=Depends(get_current_user)):
    """Fold the browser-held guest cart into the user's cart after login."""
    items = load_items(user["id"])
    skipped = 0
    for guest in body.items:
        product = find_purchasable(guest.product_id) if guest.qty >= 1 else None
        if not product:
            skipped += 1
            continue
        existing = next((i for i in items if _same_line(i, guest.product_id, guest.variant)), None)
        if existing:
            existing["qty"] = min(existing["qty"] + guest.qty, MAX_QTY)
        else:
            items.append(CartItem(product_id=guest.product_id, qty=min(guest.qty, MAX_QTY),
                                  price_at_add=price_at_add(product), variant=guest.variant).model_dump())
    if skipped:
        logger.info("Dropped %d invalid guest cart lines for user %s", skipped, user["id"])
    save_items(user["id"], items)
    return cart_response(items)
