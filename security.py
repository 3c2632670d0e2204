import hashlib
import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from bson import ObjectId
from fastapi import Depends, HTTPException, Request, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token
from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.database import Database

import config
from config import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    ALGORITHM,
    REFRESH_TOKEN_EXPIRE_DAYS,
    SECRET_KEY,
    SESSION_COOKIE_NAME,
)
from database import as_utc, get_db, utcnow
from schemas import GoogleSignInInput

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=12)
http_bearer = HTTPBearer(auto_error=False)

PHONE_PATTERN = re.compile(r"^(\+?94|0)?[0-9]{9,10}$")
SESSION_HEADER = "X-Session-Token"


@dataclass(frozen=True)
class AuthContext:
    """Who is calling: resolved once per request from the session token."""

    user_id: str
    role: str = "user"
    provider: str = "credentials"
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


@dataclass(frozen=True)
class GoogleIdentity:
    email: str
    name: str
    google_id: str
    picture: Optional[str] = None


# Utilities

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def generate_refresh_token() -> str:
    return secrets.token_hex(64)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def refresh_token_expiry() -> datetime:
    return utcnow() + timedelta(days=REFRESH_TOKEN_EXPIRE_DAYS)


def is_admin_email(email: str) -> bool:
    return email.strip().lower() in config.ADMIN_EMAILS


def validate_password(password: str) -> Optional[str]:
    if len(password) < 8:
        return "Password must be at least 8 characters long."
    if not re.search(r"[A-Z]", password):
        return "Password must contain at least one uppercase letter."
    if not re.search(r"[a-z]", password):
        return "Password must contain at least one lowercase letter."
    if not re.search(r"[0-9]", password):
        return "Password must contain at least one number."
    return None


def validate_phone_number(phone: str) -> bool:
    return bool(PHONE_PATTERN.match(re.sub(r"[\s-]", "", phone)))


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> Optional[Dict[str, Any]]:
    # expiry is checked by the caller so an expired session can still be extended
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM], options={"verify_exp": False})
    except JWTError:
        return None


def session_claims(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "sub": str(user["_id"]),
        "role": user.get("role", "user"),
        "provider": user.get("provider", "credentials"),
        "email": user.get("email"),
    }


def issue_session(user: Dict[str, Any]) -> str:
    return create_access_token(session_claims(user))


def set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        SESSION_COOKIE_NAME,
        token,
        max_age=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        httponly=True,
        samesite="lax",
    )


def rotate_refresh_token(db: Database, user_id: ObjectId) -> datetime:
    expiry = refresh_token_expiry()
    db["user"].update_one(
        {"_id": user_id},
        {"$set": {"refreshToken": hash_token(generate_refresh_token()), "refreshTokenExpiry": expiry, "updated_at": utcnow()}},
    )
    return expiry


def refresh_window_open(user: Dict[str, Any]) -> bool:
    expiry = as_utc(user.get("refreshTokenExpiry"))
    return expiry is not None and expiry > utcnow()


def extend_session(db: Database, claims: Dict[str, Any], response: Response) -> Optional[Dict[str, Any]]:
    user_id = claims.get("sub")
    if not ObjectId.is_valid(user_id):
        return None
    user = db["user"].find_one({"_id": ObjectId(user_id)})
    if not user or not user.get("isActive", True) or not refresh_window_open(user):
        logger.warning("Session expired for user %s", user_id)
        return None
    rotate_refresh_token(db, user["_id"])
    token = issue_session(user)
    response.headers[SESSION_HEADER] = token
    set_session_cookie(response, token)
    logger.info("Extended session for user %s", user_id)
    return session_claims(user)


# Dependencies

def get_auth_context(
    request: Request,
    response: Response,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    db: Database = Depends(get_db),
) -> Optional[AuthContext]:
    if credentials is not None and credentials.scheme.lower() == "bearer":
        token = credentials.credentials
    else:
        token = request.cookies.get(SESSION_COOKIE_NAME)
    if not token:
        return None
    claims = decode_token(token)
    if not claims or not claims.get("sub"):
        return None
    exp = claims.get("exp")
    if exp is not None and exp <= utcnow().timestamp():
        claims = extend_session(db, claims, response)
        if claims is None:
            return None
    return AuthContext(
        user_id=claims["sub"],
        role=claims.get("role", "user"),
        provider=claims.get("provider", "credentials"),
        email=claims.get("email"),
    )


def authorize(context: Optional[AuthContext], role: Optional[str] = None) -> AuthContext:
    if context is None:
        raise HTTPException(status_code=401, detail="Please log in.")
    if role is not None and context.role != role:
        logger.warning("User %s lacks role %s", context.user_id, role)
        raise HTTPException(status_code=401, detail=f"Unauthorized. {role.capitalize()} access required.")
    return context


def require_session(context: Optional[AuthContext] = Depends(get_auth_context)) -> AuthContext:
    return authorize(context)


def require_admin(context: Optional[AuthContext] = Depends(get_auth_context)) -> AuthContext:
    return authorize(context, "admin")


def verify_google_identity(payload: GoogleSignInInput) -> GoogleIdentity:
    try:
        info = id_token.verify_oauth2_token(payload.idToken, google_requests.Request(), config.GOOGLE_CLIENT_ID)
    except ValueError:
        raise HTTPException(status_code=401, detail="Google sign-in failed.")
    if not info.get("email") or not info.get("email_verified", False):
        raise HTTPException(status_code=401, detail="Google account email is not verified.")
    return GoogleIdentity(
        email=info["email"].lower(),
        name=info.get("name") or info["email"].split("@")[0],
        google_id=info["sub"],
        picture=info.get("picture"),
    )
