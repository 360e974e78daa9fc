"""
Orders and PayPal checkout.

Flow: `create-order` opens a PayPal order for the cart total and records a
pending order holding the cart snapshot. PayPal then redirects the buyer's
browser to `capture-order?token=<paypal id>`, which captures the payment,
marks the order paid and clears the cart. Recording the order and clearing
the cart are separate writes.
"""
import logging
import os
import re
import secrets

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse
from pydantic import BaseModel
from pymongo import DESCENDING, ReturnDocument

import paypal
from cart import cart_total, expand_items, load_items, save_items
from database import check_db, create_document, db, ensure_object_id, now, serialize_doc
from schemas import Order as OrderSchema, SHIPPING_STATUSES
from security import get_current_user, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(check_db)])

FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")
API_URL = os.getenv("API_URL", "http://localhost:8000")
LOCALES = ("en", "es")
DEFAULT_LOCALE = "es"


# ----------------------- Models -----------------------
class ShippingBody(BaseModel):
    shipping_status: str


def _checked_shipping(body: ShippingBody) -> str:
    if body.shipping_status not in SHIPPING_STATUSES:
        raise HTTPException(status_code=400, detail="Invalid shipping status")
    return body.shipping_status


def locale_from_referer(referer: str) -> str:
    match = re.search(r"/(en|es)/", referer or "")
    return match.group(1) if match else DEFAULT_LOCALE


def _new_order(user_id: str, paypal_order_id: str, items: list, payment_method: str) -> dict:
    order = OrderSchema(
        user_id=user_id,
        paypal_order_id=paypal_order_id,
        items=expand_items(items),
        total=cart_total(items),
        status="pending",
        payment_method=payment_method,
    )
    order_id = create_document("order", order)
    return db["order"].find_one({"_id": ensure_object_id(order_id)})


# ----------------------- PayPal -----------------------
@router.post("/api/paypal/create-order")
def paypal_create_order(user=Depends(get_current_user)):
    items = load_items(user["id"])
    total = cart_total(items)
    if total <= 0:
        raise HTTPException(status_code=400, detail="Invalid total")
    try:
        created = paypal.create_order(
            total,
            return_url=f"{API_URL}/api/paypal/capture-order",
            cancel_url=f"{FRONTEND_URL}/cart",
        )
    except paypal.PayPalError as exc:
        logger.error("CREATE ORDER ERROR: %s", exc)
        raise HTTPException(status_code=500, detail="PayPal error")
    _new_order(user["id"], created["id"], items, "paypal")
    return {"id": created["id"]}


@router.get("/api/paypal/capture-order")
def paypal_capture_order(request: Request, token: str = ""):
    error_url = f"{FRONTEND_URL}/cart?payment=error"
    if not token:
        return RedirectResponse(error_url)

    order = db["order"].find_one({"paypal_order_id": token})
    if not order:
        logger.error("Capture for unknown PayPal order %s", token)
        return RedirectResponse(error_url)

    locale = locale_from_referer(request.headers.get("referer", ""))
    success_url = f"{FRONTEND_URL}/{locale}/checkout/success?orderId={token}"
    if order.get("status") == "paid":
        return RedirectResponse(success_url)

    try:
        capture = paypal.capture_order(token)
        amount = paypal.captured_amount(capture)
        if amount is None:
            raise paypal.PayPalError(f"No amount in capture for {token}")
    except paypal.PayPalError as exc:
        logger.error("CAPTURE ORDER ERROR: %s", exc)
        db["order"].update_one({"_id": order["_id"]}, {"$set": {"status": "failed", "updated_at": now()}})
        return RedirectResponse(error_url)

    db["order"].update_one(
        {"_id": order["_id"]},
        {"$set": {"status": "paid", "total": amount, "updated_at": now()}},
    )
    save_items(order["user_id"], [])
    return RedirectResponse(success_url)


# ----------------------- Orders -----------------------
@router.post("/api/orders", status_code=201)
def create_test_order(user=Depends(get_current_user)):
    items = load_items(user["id"])
    if not items:
        raise HTTPException(status_code=400, detail="Cart is empty")
    order = _new_order(user["id"], f"TEST-{secrets.token_hex(8).upper()}", items, "testing")
    return {"order": serialize_doc(order)}


@router.get("/api/orders")
def list_my_orders(user=Depends(get_current_user)):
    orders = db["order"].find({"user_id": user["id"]}).sort("created_at", DESCENDING)
    return {"orders": [serialize_doc(o) for o in orders]}


@router.get("/api/orders/{paypal_order_id}")
def get_order(paypal_order_id: str, user=Depends(get_current_user)):
    order = db["order"].find_one({"paypal_order_id": paypal_order_id})
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    if order.get("user_id") != user["id"] and user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Forbidden")
    return serialize_doc(order)


@router.patch("/api/orders/{paypal_order_id}")
def update_order_shipping(paypal_order_id: str, body: ShippingBody, user=Depends(require_admin)):
    shipping_status = _checked_shipping(body)
    updated = db["order"].find_one_and_update(
        {"paypal_order_id": paypal_order_id},
        {"$set": {"shipping_status": shipping_status, "updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise HTTPException(status_code=404, detail="Order not found")
    return {"message": "Shipping status updated", "order": serialize_doc(updated)}


# ----------------------- Admin -----------------------
@router.get("/api/admin/orders")
def admin_list_orders(user=Depends(require_admin)):
    orders = db["order"].find().sort("created_at", DESCENDING)
    return {"orders": [serialize_doc(o) for o in orders]}


@router.get("/api/admin/orders/{order_id}")
def admin_get_order(order_id: str, user=Depends(require_admin)):
    order = db["order"].find_one({"_id": ensure_object_id(order_id)})
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return {"order": serialize_doc(order)}


@router.patch("/api/admin/orders/{order_id}")
def admin_update_order(order_id: str, body: ShippingBody, user=Depends(require_admin)):
    shipping_status = _checked_shipping(body)
    updated = db["order"].find_one_and_update(
        {"_id": ensure_object_id(order_id)},
        {"$set": {"shipping_status": shipping_status, "updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise HTTPException(status_code=404, detail="Order not found")
    return {"order": serialize_doc(updated)}
