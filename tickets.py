"""
Ticket endpoints: role-scoped listing, lifecycle updates and message threads.

Visibility:
  - client  -> only the tickets they created
  - support -> everything, optionally narrowed to "mine" or "unassigned"
  - admin   -> everything

Statuses are not a strict state machine; any authorized caller may set any
valid status. Moving into resolved/closed stamps `resolved_at` once and
notifies the creator.
"""
import logging
import math
from typing import Dict, Iterable, List, Literal, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field, field_validator
from pymongo import DESCENDING

import mailer
from database import check_db, create_document, db, ensure_object_id, now, serialize_doc
from schemas import Attachment, Ticket as TicketSchema, TicketPriority, TicketStatus
from security import get_current_user, public_user, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(check_db)])

CLOSING_STATUSES = ("resolved", "closed")


# ----------------------- Models -----------------------
def _clean_title(v: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError("Title is required")
    return v


class CreateTicketBody(BaseModel):
    title: str = Field(..., min_length=1, max_length=120)
    description: str = Field(..., min_length=1, max_length=2000)
    priority: TicketPriority = "medium"
    category: str = "general"
    attachments: List[Attachment] = []

    @field_validator("title")
    @classmethod
    def check_title(cls, v):
        return _clean_title(v)

    @field_validator("category")
    @classmethod
    def default_category(cls, v):
        return v.strip() or "general"


class UpdateTicketBody(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=120)
    description: Optional[str] = Field(None, max_length=2000)
    priority: Optional[TicketPriority] = None
    status: Optional[TicketStatus] = None
    category: Optional[str] = None
    attachments: Optional[List[Attachment]] = None
    assigned_to: Optional[str] = None

    @field_validator("title")
    @classmethod
    def check_title(cls, v):
        return v if v is None else _clean_title(v)


class MessageBody(BaseModel):
    message: str
    attachments: List[Attachment] = []

    @field_validator("message")
    @classmethod
    def check_message(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Message is required")
        if len(v) > 2000:
            raise ValueError("Message is too long (max 2000 characters)")
        return v


# ----------------------- Helpers -----------------------
def _users_by_id(ids: Iterable[Optional[str]]) -> Dict[str, dict]:
    oids = {ObjectId(i) for i in ids if i and ObjectId.is_valid(i)}
    if not oids:
        return {}
    return {str(u["_id"]): public_user(u) for u in db["user"].find({"_id": {"$in": list(oids)}})}


def shape_tickets(tickets: List[dict]) -> List[dict]:
    """Serialize tickets and expand creator, assignee and message senders."""
    ids = set()
    for t in tickets:
        ids.update([t.get("created_by"), t.get("assigned_to")])
        ids.update(m.get("sender") for m in t.get("messages") or [])
    people = _users_by_id(ids)

    shaped = []
    for t in tickets:
        doc = serialize_doc(t)
        doc["created_by"] = people.get(t.get("created_by"), {"id": t.get("created_by")})
        assignee = t.get("assigned_to")
        doc["assigned_to"] = people.get(assignee, {"id": assignee}) if assignee else None
        for m in doc.get("messages") or []:
            m["sender"] = people.get(m["sender"], {"id": m["sender"]})
        shaped.append(doc)
    return shaped


def shape_ticket(ticket: dict) -> dict:
    return shape_tickets([ticket])[0]


def get_ticket_or_404(ticket_id: str) -> dict:
    ticket = db["ticket"].find_one({"_id": ensure_object_id(ticket_id)})
    if not ticket:
        raise HTTPException(status_code=404, detail="Ticket not found")
    return ticket


def _creator_email(ticket: dict) -> Optional[str]:
    creator_id = ticket.get("created_by")
    if not creator_id or not ObjectId.is_valid(creator_id):
        return None
    creator = db["user"].find_one({"_id": ObjectId(creator_id)}, {"email": 1})
    return creator.get("email") if creator else None


def visibility_filter(user: dict, assigned: str = "all") -> dict:
    role = user.get("role")
    if role == "client":
        return {"created_by": user["id"]}
    if role == "support":
        if assigned == "mine":
            return {"assigned_to": user["id"]}
        if assigned == "unassigned":
            return {"assigned_to": None}
    return {}


def guard_update(ticket: dict, changes: dict, user: dict) -> dict:
    """Apply role rules to a requested change set; returns the allowed changes."""
    role = user.get("role")
    changes = dict(changes)

    if role == "client":
        if ticket.get("created_by") != user["id"]:
            raise HTTPException(status_code=403, detail="Forbidden")
        changes.pop("assigned_to", None)
        changes.pop("priority", None)
        if "status" in changes and changes["status"] != "resolved":
            raise HTTPException(status_code=403, detail="Clients can only mark a ticket as resolved")

    elif role == "support":
        current = ticket.get("assigned_to")
        if "assigned_to" in changes:
            if changes["assigned_to"] != user["id"]:
                raise HTTPException(status_code=403, detail="Agents can only claim tickets for themselves")
            if current and current != user["id"]:
                raise HTTPException(status_code=403, detail="Ticket already assigned to another agent")
        assignee = changes.get("assigned_to", current)
        if ("status" in changes or "priority" in changes) and assignee != user["id"]:
            raise HTTPException(status_code=403, detail="Only the assigned agent can change status or priority")

    elif role == "admin":
        target = changes.get("assigned_to")
        if target is not None:
            agent = db["user"].find_one({"_id": ensure_object_id(target), "role": "support"})
            if not agent:
                raise HTTPException(status_code=400, detail="assigned_to must be a support agent")

    else:
        raise HTTPException(status_code=403, detail="Forbidden")

    return changes


# ----------------------- Tickets -----------------------
@router.get("/api/tickets")
def list_tickets(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[TicketStatus] = None,
    priority: Optional[TicketPriority] = None,
    category: Optional[str] = None,
    assigned: Literal["all", "mine", "unassigned"] = "all",
    user=Depends(get_current_user),
):
    query = visibility_filter(user, assigned)
    if status:
        query["status"] = status
    if priority:
        query["priority"] = priority
    if category:
        query["category"] = category

    skip = (page - 1) * limit
    cursor = db["ticket"].find(query).sort("created_at", DESCENDING).skip(skip).limit(limit)
    total = db["ticket"].count_documents(query)
    return {
        "tickets": shape_tickets(list(cursor)),
        "page": page,
        "total_pages": math.ceil(total / limit),
        "total": total,
    }


@router.post("/api/tickets", status_code=201)
def create_ticket(body: CreateTicketBody, user=Depends(get_current_user)):
    if user.get("role") != "client":
        raise HTTPException(status_code=403, detail="Only clients can create tickets")
    ticket = TicketSchema(
        title=body.title,
        description=body.description,
        priority=body.priority,
        category=body.category or "general",
        attachments=body.attachments,
        created_by=user["id"],
    )
    ticket_id = create_document("ticket", ticket)
    logger.info("Ticket %s created by %s", ticket_id, user["id"])
    doc = get_ticket_or_404(ticket_id)
    mailer.send_quietly(mailer.send_ticket_created_email, user["email"], ticket_id, body.title)
    return {"ticket": shape_ticket(doc)}


@router.get("/api/tickets/{ticket_id}")
def get_ticket(ticket_id: str, user=Depends(get_current_user)):
    ticket = get_ticket_or_404(ticket_id)
    if user.get("role") == "client" and ticket.get("created_by") != user["id"]:
        raise HTTPException(status_code=403, detail="Forbidden")
    return {"ticket": shape_ticket(ticket)}


@router.patch("/api/tickets/{ticket_id}")
def update_ticket(ticket_id: str, body: UpdateTicketBody, user=Depends(get_current_user)):
    ticket = get_ticket_or_404(ticket_id)
    requested = body.model_dump(exclude_unset=True)
    # null only means something for the assignee
    requested = {k: v for k, v in requested.items() if v is not None or k == "assigned_to"}
    changes = guard_update(ticket, requested, user)

    previous_status = ticket.get("status")
    next_status = changes.get("status", previous_status)
    if next_status in CLOSING_STATUSES and not ticket.get("resolved_at"):
        changes["resolved_at"] = now()

    changes["updated_at"] = now()
    db["ticket"].update_one({"_id": ticket["_id"]}, {"$set": changes})
    updated = get_ticket_or_404(ticket_id)

    if previous_status != next_status:
        logger.info("Ticket %s moved %s -> %s by %s", ticket_id, previous_status, next_status, user["id"])
    if previous_status != next_status and next_status in CLOSING_STATUSES:
        email = _creator_email(updated)
        if email:
            mailer.send_quietly(mailer.send_ticket_resolved_email, email, ticket_id, updated["title"])

    return {"ticket": shape_ticket(updated)}


@router.post("/api/tickets/{ticket_id}/messages")
def add_message(ticket_id: str, body: MessageBody, user=Depends(get_current_user)):
    ticket = get_ticket_or_404(ticket_id)
    role = user.get("role")
    if role == "client" and ticket.get("created_by") != user["id"]:
        raise HTTPException(status_code=403, detail="Forbidden")

    stamp = now()
    message = {
        "sender": user["id"],
        "message": body.message,
        "created_at": stamp,
        "attachments": [a.model_dump() for a in body.attachments],
    }
    update = {"$push": {"messages": message}, "$set": {"updated_at": stamp}}
    sender_is_agent = role == "support"
    if sender_is_agent and not ticket.get("first_response_at"):
        update["$set"]["first_response_at"] = stamp
    db["ticket"].update_one({"_id": ticket["_id"]}, update)

    if sender_is_agent:
        email = _creator_email(ticket)
        if email:
            mailer.send_quietly(mailer.send_ticket_reply_email, email, ticket_id, ticket["title"], body.message)

    return {"ok": True, "message": "Message added", "ticket": shape_ticket(get_ticket_or_404(ticket_id))}


# ----------------------- Admin -----------------------
@router.get("/api/admin/tickets")
def admin_list_tickets(user=Depends(require_admin)):
    tickets = list(db["ticket"].find().sort("created_at", DESCENDING))
    return {"tickets": shape_tickets(tickets)}


@router.get("/api/admin/agents")
def admin_agents(user=Depends(require_admin)):
    agents = []
    for agent in db["user"].find({"role": "support"}).sort("created_at", DESCENDING):
        assigned = list(db["ticket"].find({"assigned_to": str(agent["_id"])}).sort("created_at", DESCENDING))
        agents.append({"agent": public_user(agent), "tickets": [serialize_doc(t) for t in assigned]})
    return {"agents_with_tickets": agents}
