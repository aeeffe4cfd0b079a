"""
Account endpoints: signup, login, password reset and public profiles.
"""
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from pydantic import EmailStr
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from cache import ProductCache, get_cache
from database import create_document, get_db, parse_object_id, utcnow
from logging_config import get_logger
from mailer import Mailer, get_mailer
from rate_limit import auth_rate_limit
from schemas import ForgotPasswordRequest, LoginRequest, PublicUser, ResetPasswordRequest, User
from security import RESET_PURPOSE, VALID_ROLES, create_token, decode_token, hash_password, verify_password
from settings import settings
from storage import ImageStorage, get_storage

router = APIRouter(prefix="/api/auth", tags=["Authentication"])
logger = get_logger("shopsmart.auth")


@router.post("/signup", status_code=status.HTTP_201_CREATED, dependencies=[Depends(auth_rate_limit)])
def signup(
    email: EmailStr = Form(...),
    password: str = Form(..., min_length=6),
    name: str = Form("User"),
    role: str = Form("user"),
    profile_photo: Optional[UploadFile] = File(None),
    db: Database = Depends(get_db),
    storage: ImageStorage = Depends(get_storage),
):
    try:
        email = email.lower()
        if db["user"].find_one({"email": email}):
            raise HTTPException(status_code=409, detail="User already exists, please login")
        if role not in VALID_ROLES:
            raise HTTPException(status_code=403, detail="Role does not exist")

        photo_url = storage.save(profile_photo, "profiles") if profile_photo and profile_photo.filename else ""
        user = User(name=name, email=email, password=hash_password(password), role=role, profile_photo=photo_url)
        user_id = create_document(db, "user", user)
        logger.info("User signed up", user_id=user_id, role=role)
        return {"message": "User signup success", "id": user_id}
    except HTTPException:
        raise
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="User already exists, please login")
    except Exception:
        logger.exception("Signup failed")
        raise HTTPException(status_code=500, detail="Something went wrong")


@router.post("/login", dependencies=[Depends(auth_rate_limit)])
def login(payload: LoginRequest, db: Database = Depends(get_db)):
    try:
        user = db["user"].find_one({"email": payload.email.lower()})
        if not user:
            raise HTTPException(status_code=404, detail="User does not exist, please signup")
        if not verify_password(payload.password, user["password"]):
            raise HTTPException(status_code=401, detail="Wrong password")

        token = create_token(str(user["_id"]), user.get("role", "user"))
        return {"message": "Login success", "access_token": token, "token_type": "bearer"}
    except HTTPException:
        raise
    except Exception:
        logger.exception("Login failed")
        raise HTTPException(status_code=500, detail="Something went wrong")


@router.post("/forgot-password", dependencies=[Depends(auth_rate_limit)])
def forgot_password(
    payload: ForgotPasswordRequest,
    db: Database = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    try:
        user = db["user"].find_one({"email": payload.email.lower()})
        if not user:
            raise HTTPException(status_code=404, detail="User does not exist")

        reset_token = create_token(str(user["_id"]), user.get("role", "user"), purpose=RESET_PURPOSE)
        reset_link = f"{settings.FRONTEND_URL}/reset-password?token={reset_token}"
        mailer.send(
            to=user["email"],
            subject="Reset password from ShopSmart",
            html=f"<p>Dear {user.get('name', 'User')}, here is your reset password link</p><p>{reset_link}</p>",
        )
        return {"message": "Password reset link has been sent to your email"}
    except HTTPException:
        raise
    except Exception:
        logger.exception("Forgot password failed")
        raise HTTPException(status_code=500, detail="Something went wrong")


@router.put("/reset-password", dependencies=[Depends(auth_rate_limit)])
def reset_password(
    payload: ResetPasswordRequest,
    token: str = Query(...),
    db: Database = Depends(get_db),
):
    claims = decode_token(token, purpose=RESET_PURPOSE)
    try:
        oid = parse_object_id(claims["sub"])
        if not oid or not db["user"].find_one({"_id": oid}, {"_id": 1}):
            raise HTTPException(status_code=401, detail="User is not authorized")
        db["user"].update_one(
            {"_id": oid},
            {"$set": {"password": hash_password(payload.new_password), "updated_at": utcnow()}},
        )
        logger.info("Password reset", user_id=claims["sub"])
        return {"message": "Password reset success"}
    except HTTPException:
        raise
    except Exception:
        logger.exception("Password reset failed")
        raise HTTPException(status_code=500, detail="Something went wrong")


@router.get("/users/{user_id}")
def get_public_user(user_id: str, db: Database = Depends(get_db), cache: ProductCache = Depends(get_cache)):
    oid = parse_object_id(user_id)
    if not oid:
        raise HTTPException(status_code=404, detail="User not found")

    def load():
        doc = db["user"].find_one({"_id": oid}, {"name": 1, "profile_photo": 1, "role": 1})
        if not doc:
            return None
        return PublicUser(
            id=str(doc["_id"]),
            name=doc.get("name", "User"),
            profile_photo=doc.get("profile_photo", ""),
            role=doc.get("role", "user"),
        ).model_dump()

    try:
        user, cached = cache.get_or_load(cache.user_key(user_id), cache.user_ttl, load)
    except Exception:
        logger.exception("Fetching user failed", user_id=user_id)
        raise HTTPException(status_code=500, detail="Failed to fetch user")
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return {"user": user, "cached": cached}
