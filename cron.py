"""
Scheduled jobs, triggered by an external scheduler over HTTP.

Both endpoints require the `x-cron-secret` header to match CRON_SECRET.
"""
import hmac
import logging
import os
from datetime import timedelta
from typing import Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, Header, HTTPException

import mailer
from database import check_db, db, get_documents, now

logger = logging.getLogger(__name__)

CRON_SECRET = os.getenv("CRON_SECRET")
SUPPORT_EMAIL = os.getenv("SUPPORT_EMAIL")
PENDING_AFTER = timedelta(hours=24)
NEW_PRODUCTS_WINDOW = timedelta(hours=24)
MAX_NEW_PRODUCTS = 10


def verify_cron_secret(x_cron_secret: Optional[str] = Header(None)):
    if not CRON_SECRET or not x_cron_secret or not hmac.compare_digest(x_cron_secret, CRON_SECRET):
        raise HTTPException(status_code=401, detail="Unauthorized")


router = APIRouter(dependencies=[Depends(verify_cron_secret), Depends(check_db)])


def agent_has_replied(ticket: dict) -> bool:
    assignee = ticket.get("assigned_to")
    if not assignee:
        return False
    return any(m.get("sender") == assignee for m in ticket.get("messages") or [])


def reminder_target(ticket: dict) -> Optional[str]:
    assignee = ticket.get("assigned_to")
    if assignee and ObjectId.is_valid(assignee):
        agent = db["user"].find_one({"_id": ObjectId(assignee)}, {"email": 1})
        if agent and agent.get("email"):
            return agent["email"]
    return SUPPORT_EMAIL or None


@router.get("/api/cron/pending-reminders")
def pending_reminders():
    limit_date = now() - PENDING_AFTER
    tickets = db["ticket"].find({
        "status": {"$in": ["open", "in_progress"]},
        "created_at": {"$lte": limit_date},
    })

    sent = 0
    for ticket in tickets:
        if agent_has_replied(ticket):
            continue
        target = reminder_target(ticket)
        if not target:
            continue
        if mailer.send_quietly(mailer.send_pending_reminder_email, target, str(ticket["_id"]), ticket["title"]):
            sent += 1

    logger.info("Pending ticket reminders sent: %d", sent)
    return {"ok": True, "message": f"Reminders sent: {sent}"}


@router.get("/api/cron/daily-new-products")
def daily_new_products():
    since = now() - NEW_PRODUCTS_WINDOW
    products = get_documents("product", {"created_at": {"$gte": since}, "status": "active"}, limit=MAX_NEW_PRODUCTS)
    if not products:
        return {"message": "No new products today"}

    sent = 0
    for user in db["user"].find({}, {"email": 1}):
        if mailer.send_quietly(mailer.send_new_products_email, user["email"], products):
            sent += 1

    logger.info("New products digest: %d products to %d users", len(products), sent)
    return {"ok": True, "sent_to": sent, "products": len(products)}
