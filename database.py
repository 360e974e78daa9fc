"""
Database Helper Functions

MongoDB helpers shared by every router. Collections are named after the
lowercased schema class (User -> "user", Ticket -> "ticket", ...).
"""
import logging
import os
from datetime import datetime, timezone
from typing import Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from dotenv import load_dotenv
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient

load_dotenv()

logger = logging.getLogger(__name__)

_client = None
db = None

database_url = os.getenv("DATABASE_URL")
database_name = os.getenv("DATABASE_NAME")

if database_url and database_name:
    _client = MongoClient(database_url)
    db = _client[database_name]


def now() -> datetime:
    return datetime.now(timezone.utc)


def check_db():
    """Router-level dependency: every data route needs a configured database."""
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a single document stamped with created_at/updated_at."""
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")

    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)

    stamp = now()
    data_dict.setdefault("created_at", stamp)
    data_dict["updated_at"] = stamp

    result = db[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None):
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")

    cursor = db[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def ensure_object_id(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise HTTPException(status_code=400, detail="Invalid ID format")


def _serialize_value(value):
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return serialize_doc(value)
    if isinstance(value, list):
        return [_serialize_value(v) for v in value]
    return value


def serialize_doc(doc):
    """Make a Mongo document JSON-safe: `_id` -> `id`, ObjectIds and datetimes to strings."""
    if not doc:
        return doc
    doc = dict(doc)
    if "_id" in doc:
        doc["id"] = str(doc.pop("_id"))
    doc.pop("password_hash", None)
    return {k: _serialize_value(v) for k, v in doc.items()}


def ensure_indexes():
    if db is None:
        logger.warning("Database not configured, skipping index creation")
        return
    db["user"].create_index("email", unique=True)
    db["category"].create_index("slug", unique=True)
    db["cart"].create_index("user_id", unique=True)
    db["ticket"].create_index([("created_by", ASCENDING), ("created_at", DESCENDING)])
    db["ticket"].create_index("assigned_to")
    db["order"].create_index("paypal_order_id")
    logger.info("Indexes ensured on %s", db.name)
