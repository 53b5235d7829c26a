import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, Request
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

import config
from database import get_database
from errors import AuthError, ForbiddenError, ValidationError
from models import ProfileUpdate, User, UserCreate, UserLogin, utcnow

logger = logging.getLogger(__name__)

# Password hashing configuration
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

USER_PUBLIC_PROJECTION = {"_id": 0, "hashed_password": 0}

# ==================== HELPERS ====================

def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=15)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)
    return encoded_jwt


def issue_token_for(user: User) -> str:
    return create_access_token(
        data={"sub": user.user_id, "email": user.email, "role": user.role},
        expires_delta=timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES)
    )


def check_account_standing(user_doc: dict):
    if user_doc.get("is_banned"):
        reason = user_doc.get("ban_reason")
        raise ForbiddenError(f"Account banned: {reason}" if reason else "Account banned")
    if not user_doc.get("is_active", True):
        raise AuthError("Account is deactivated")

# ==================== AUTHENTICATION ====================

def extract_token(request: Request) -> Optional[str]:
    token = request.cookies.get("access_token")

    # Fallback to Authorization header
    if not token:
        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            token = auth_header.split(" ", 1)[1]
    return token


async def get_current_user(request: Request, db=Depends(get_database)) -> User:
    """Get current user from JWT token in cookie or Authorization header"""
    token = extract_token(request)
    if not token:
        raise AuthError("Access token required")

    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
    except ExpiredSignatureError:
        raise AuthError("Token expired")
    except JWTError:
        raise AuthError("Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise AuthError("Invalid token")

    user_doc = await db.users.find_one({"user_id": user_id}, USER_PUBLIC_PROJECTION)
    if not user_doc:
        raise AuthError("User not found")

    check_account_standing(user_doc)
    return User(**user_doc)


async def get_admin_user(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role != "admin":
        raise ForbiddenError("Admin access required")
    return current_user

# ==================== AUTH OPERATIONS ====================

async def register_user(db, user_data: UserCreate) -> User:
    if await db.users.find_one({"email": user_data.email}, {"_id": 0, "user_id": 1}):
        raise ValidationError.for_field("email", "Email already registered")
    if await db.users.find_one({"username": user_data.username}, {"_id": 0, "user_id": 1}):
        raise ValidationError.for_field("username", "Username already taken")

    role = "admin" if config.is_bootstrap_admin_email(user_data.email) else "user"
    user = User(
        username=user_data.username,
        email=user_data.email,
        first_name=user_data.first_name,
        last_name=user_data.last_name,
        role=role
    )
    doc = user.model_dump()
    doc["hashed_password"] = get_password_hash(user_data.password)
    await db.users.insert_one(doc)
    logger.info(f"Registered user {user.user_id} with role {role}")
    return user


async def authenticate_user(db, form_data: UserLogin) -> User:
    user_doc = await db.users.find_one({"email": form_data.email}, {"_id": 0})
    hashed = (user_doc or {}).get("hashed_password")
    if not hashed or not verify_password(form_data.password, hashed):
        raise AuthError("Invalid email or password")

    check_account_standing(user_doc)

    now = utcnow()
    await db.users.update_one(
        {"user_id": user_doc["user_id"]},
        {"$set": {"last_login": now}}
    )
    user_doc["last_login"] = now
    return User(**user_doc)


async def update_profile(db, user: User, payload: ProfileUpdate) -> User:
    update = {}
    if payload.first_name is not None:
        update["first_name"] = payload.first_name
    if payload.last_name is not None:
        update["last_name"] = payload.last_name
    if payload.preferences is not None:
        if payload.preferences.theme is not None:
            update["preferences.theme"] = payload.preferences.theme
        if payload.preferences.notifications is not None:
            update["preferences.notifications"] = payload.preferences.notifications

    if update:
        update["updated_at"] = utcnow()
        await db.users.update_one({"user_id": user.user_id}, {"$set": update})

    user_doc = await db.users.find_one({"user_id": user.user_id}, USER_PUBLIC_PROJECTION)
    return User(**user_doc)
