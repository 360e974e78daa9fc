import logging
import os
from typing import Literal, Optional

import requests
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, EmailStr, Field, field_validator
from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

import mailer
import media
from database import check_db, create_document, db, ensure_object_id, now, serialize_doc
from schemas import Image, User as UserSchema
from security import create_token, get_current_user, hash_password, public_user, require_admin, verify_password

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(check_db)])

GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
GOOGLE_TOKENINFO_URL = "https://oauth2.googleapis.com/tokeninfo"


# ----------------------- Models -----------------------
class RegisterBody(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginBody(BaseModel):
    email: EmailStr
    password: str


class GoogleLoginBody(BaseModel):
    id_token: str = Field(..., min_length=1)


class UpdateProfileBody(BaseModel):
    name: Optional[str] = None
    image_base64: Optional[str] = None

    @field_validator("name")
    @classmethod
    def check_name(cls, v):
        if v is None:
            return v
        v = v.strip()
        if len(v) < 2:
            raise ValueError("Name must be at least 2 characters")
        if len(v) > 50:
            raise ValueError("Name too long")
        return v

    @field_validator("image_base64")
    @classmethod
    def check_image(cls, v):
        if v and not v.startswith("data:image/"):
            raise ValueError("Invalid image format")
        return v


class RoleBody(BaseModel):
    role: Literal["client", "support", "admin"]


def _auth_response(user: dict) -> dict:
    return {"token": create_token(user), "user": public_user(user)}


# ----------------------- Auth -----------------------
@router.post("/api/auth/register", status_code=201)
def register(body: RegisterBody):
    email = str(body.email).lower()
    if db["user"].find_one({"email": email}):
        raise HTTPException(status_code=400, detail="Email already registered")
    user = UserSchema(
        name=body.name.strip(),
        email=email,
        password_hash=hash_password(body.password),
        provider="credentials",
        role="client",
    )
    try:
        user_id = create_document("user", user)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Email already registered")
    mailer.send_quietly(mailer.send_welcome_email, email, user.name)
    return {"ok": True, "user": {"id": user_id, "name": user.name, "email": email, "role": "client"}}


@router.post("/api/auth/login")
def login(body: LoginBody):
    user = db["user"].find_one({"email": str(body.email).lower()})
    if not user or not verify_password(body.password, user.get("password_hash")):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return _auth_response(user)


def verify_google_token(id_token: str) -> dict:
    """Validate a Google ID token and return its claims."""
    try:
        r = requests.get(GOOGLE_TOKENINFO_URL, params={"id_token": id_token}, timeout=10)
    except requests.RequestException as exc:
        logger.error("Google token check failed: %s", exc)
        raise HTTPException(status_code=401, detail="Invalid Google token")
    if r.status_code != 200:
        raise HTTPException(status_code=401, detail="Invalid Google token")
    claims = r.json()
    if not GOOGLE_CLIENT_ID or claims.get("aud") != GOOGLE_CLIENT_ID:
        raise HTTPException(status_code=401, detail="Invalid Google token")
    if not claims.get("email"):
        raise HTTPException(status_code=401, detail="Google account has no email")
    return claims


@router.post("/api/auth/google")
def google_login(body: GoogleLoginBody):
    claims = verify_google_token(body.id_token)
    email = claims["email"].lower()
    user = db["user"].find_one({"email": email})
    if not user:
        new_user = UserSchema(
            name=claims.get("name") or "",
            email=email,
            provider="google",
            role="client",
            image=Image(url=claims.get("picture") or "", public_id=None),
        )
        user_id = create_document("user", new_user)
        user = db["user"].find_one({"_id": ensure_object_id(user_id)})
        mailer.send_quietly(mailer.send_welcome_email, email, new_user.name)
    return _auth_response(user)


@router.get("/api/auth/me")
def me(user=Depends(get_current_user)):
    return public_user(user)


# ----------------------- Profile -----------------------
@router.put("/api/users/update-profile")
def update_profile(body: UpdateProfileBody, user=Depends(get_current_user)):
    update = {"updated_at": now()}
    if body.name:
        update["name"] = body.name

    if body.image_base64:
        previous = (user.get("image") or {}).get("public_id")
        if previous:
            try:
                media.destroy(previous)
            except media.MediaError as exc:
                logger.warning("Failed to delete previous profile image: %s", exc)
        try:
            uploaded = media.upload(body.image_base64, folder="profiles", transformation="c_fill,h_300,w_300")
        except media.MediaError as exc:
            logger.error("Profile image upload failed: %s", exc)
            raise HTTPException(status_code=500, detail="Upload failed")
        update["image"] = uploaded

    updated = db["user"].find_one_and_update(
        {"_id": ensure_object_id(user["id"])},
        {"$set": update},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise HTTPException(status_code=404, detail="User not found")
    suser = serialize_doc(updated)
    return {"user": {"id": suser["id"], "email": suser["email"], "name": suser.get("name"), "image": suser.get("image")}}


# ----------------------- Admin -----------------------
@router.get("/api/admin/users")
def admin_list_users(user=Depends(require_admin)):
    users = db["user"].find().sort("created_at", DESCENDING)
    return {"users": [serialize_doc(u) for u in users]}


@router.patch("/api/admin/users/{user_id}")
def admin_set_role(user_id: str, body: RoleBody, user=Depends(require_admin)):
    updated = db["user"].find_one_and_update(
        {"_id": ensure_object_id(user_id)},
        {"$set": {"role": body.role, "updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise HTTPException(status_code=404, detail="User not found")
    return {"user": serialize_doc(updated)}
