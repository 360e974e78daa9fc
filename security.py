import hashlib
import hmac
import os
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from bson.objectid import ObjectId
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from database import db, serialize_doc

JWT_SECRET = os.getenv("JWT_SECRET", "devsecret")
JWT_ALGO = "HS256"
TOKEN_TTL = timedelta(days=7)

# missing credentials are handled in _load_user
security = HTTPBearer(auto_error=False)


def hash_password(password: str, salt: Optional[str] = None) -> str:
    if salt is None:
        salt = secrets.token_hex(16)
    digest = hashlib.sha256((salt + password).encode()).hexdigest()
    return f"{salt}${digest}"


def verify_password(password: str, stored_hash: Optional[str]) -> bool:
    if not stored_hash:
        return False
    try:
        salt, _digest = stored_hash.split("$")
    except ValueError:
        return False
    return hmac.compare_digest(hash_password(password, salt), stored_hash)


def create_token(user: dict) -> str:
    payload = {
        "id": str(user["_id"]),
        "email": user["email"],
        "role": user.get("role", "client"),
        "exp": datetime.now(timezone.utc) + TOKEN_TTL,
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGO)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGO])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


def public_user(user: dict) -> dict:
    """Shape a user document for responses and for populating references."""
    image = user.get("image") or {}
    return {
        "id": str(user["_id"]) if "_id" in user else user.get("id"),
        "name": user.get("name", ""),
        "email": user.get("email"),
        "role": user.get("role", "client"),
        "image": image.get("url"),
    }


def _load_user(credentials: Optional[HTTPAuthorizationCredentials]):
    if credentials is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    payload = decode_token(credentials.credentials)
    user_id = payload.get("id")
    if not user_id or not ObjectId.is_valid(user_id):
        raise HTTPException(status_code=401, detail="Invalid token payload")
    # role comes from the stored user, not the token
    user = db["user"].find_one({"_id": ObjectId(user_id)})
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return serialize_doc(user)


async def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)):
    return _load_user(credentials)


async def get_optional_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)):
    if credentials is None:
        return None
    return _load_user(credentials)


def require_roles(*roles: str):
    async def checker(user=Depends(get_current_user)):
        if user.get("role") not in roles:
            if roles == ("admin",):
                raise HTTPException(status_code=403, detail="Admin only")
            raise HTTPException(status_code=403, detail="Forbidden")
        return user

    return checker


require_admin = require_roles("admin")
