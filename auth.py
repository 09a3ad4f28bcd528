import hashlib
import logging
import secrets
from typing import Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel, EmailStr, Field
from pymongo.errors import DuplicateKeyError

from database import db, create_document, require_database, to_str_id, utcnow
from schemas import User as UserSchema, UserProfile as UserProfileSchema, Session as SessionSchema

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"], dependencies=[Depends(require_database)])


def sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _token_from_header(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


def user_id_for_token(token: Optional[str]) -> Optional[str]:
    if not token:
        return None
    session = db.session.find_one({"token": token})
    if not session:
        return None
    return session["user_id"]


def get_optional_user(authorization: Optional[str] = Header(None)) -> Optional[str]:
    """Caller's user id, or None for anonymous requests."""
    token = _token_from_header(authorization)
    if token is None:
        return None
    user_id = user_id_for_token(token)
    if user_id is None:
        raise HTTPException(status_code=401, detail="Invalid or expired session")
    return user_id


def get_current_user(user_id: Optional[str] = Depends(get_optional_user)) -> str:
    if user_id is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return user_id


def provision_profile(user_id: str, full_name: Optional[str]) -> dict:
    # signup trigger: every new user gets a buyer profile with the same id
    profile = UserProfileSchema(full_name=full_name or "New User", role="buyer").model_dump()
    now = utcnow()
    profile.update({"_id": ObjectId(user_id), "created_at": now, "updated_at": now})
    db.user_profile.insert_one(profile)
    return profile


class RegisterBody(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginBody(BaseModel):
    email: EmailStr
    password: str


@router.post("/register")
def register(body: RegisterBody):
    email = body.email.lower()
    if db.user.find_one({"email": email}):
        raise HTTPException(status_code=400, detail="Email already registered")

    user = UserSchema(
        name=body.name,
        email=email,
        password_hash=sha256(body.password),
        is_active=True,
    )
    try:
        user_id = create_document("user", user)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Email already registered")
    provision_profile(user_id, body.name)
    logger.info("Registered user %s", user_id)
    return {"id": user_id, "name": user.name, "email": user.email}


@router.post("/login")
def login(body: LoginBody):
    user = db.user.find_one({"email": body.email.lower()})
    if not user or user.get("password_hash") != sha256(body.password):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not user.get("is_active", True):
        raise HTTPException(status_code=401, detail="Account disabled")

    user_id = str(user["_id"])
    token = secrets.token_urlsafe(32)
    create_document("session", SessionSchema(user_id=user_id, token=token))
    return {"id": user_id, "name": user["name"], "email": user["email"], "token": token}


@router.post("/logout")
def logout(authorization: Optional[str] = Header(None)):
    token = _token_from_header(authorization)
    if token is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    res = db.session.delete_one({"token": token})
    return {"logged_out": res.deleted_count > 0}


@router.get("/me")
def me(user_id: str = Depends(get_current_user)):
    profile = db.user_profile.find_one({"_id": ObjectId(user_id)})
    if not profile:
        raise HTTPException(status_code=404, detail="Profile not found")
    return to_str_id(profile)
