import logging
import re
import time
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError
from bson import ObjectId
from fastapi import APIRouter, Depends, File, HTTPException, Response, UploadFile
from pydantic import BaseModel, ValidationError
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from config import SESSION_COOKIE_NAME
from database import create_document, get_db, utcnow
from schemas import AccountUpdateInput, LoginInput, RegisterInput, User as UserSchema
from security import (
    AuthContext,
    GoogleIdentity,
    get_auth_context,
    hash_password,
    is_admin_email,
    issue_session,
    refresh_window_open,
    require_session,
    rotate_refresh_token,
    set_session_cookie,
    validate_password,
    validate_phone_number,
    verify_google_identity,
    verify_password,
)
from storage import (
    BlobStore,
    discard_image,
    file_extension,
    optional_blob_store,
    read_upload,
    require_blob_store,
    validate_image,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
GENDERS = ("male", "female", "other", "prefer-not-to-say")
MINIMUM_AGE = 13


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: Dict[str, Any]


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    birthday = user.get("birthday")
    return {
        "id": str(user["_id"]),
        "name": user.get("name"),
        "email": user.get("email"),
        "contactNumbers": user.get("contactNumbers") or [],
        "addresses": user.get("addresses") or [],
        "birthday": birthday.date().isoformat() if isinstance(birthday, datetime) else None,
        "gender": user.get("gender"),
        "image": user.get("image"),
        "role": user.get("role", "user"),
        "provider": user.get("provider", "credentials"),
        "createdAt": user.get("created_at"),
    }


def build_user(**fields) -> Dict[str, Any]:
    try:
        return UserSchema(**fields).model_dump()
    except ValidationError as e:
        message = e.errors()[0]["msg"].removeprefix("Value error, ")
        raise HTTPException(status_code=400, detail=message)


def load_user(db: Database, context: AuthContext) -> Dict[str, Any]:
    user = None
    if ObjectId.is_valid(context.user_id):
        user = db["user"].find_one({"_id": ObjectId(context.user_id)})
    if not user:
        raise HTTPException(status_code=404, detail="Account not found.")
    return user


def clean_strings(values: Optional[List[Any]]) -> List[str]:
    return [v.strip() for v in values or [] if isinstance(v, str) and v.strip()]


def check_phone_numbers(numbers: List[str]) -> None:
    for phone in numbers:
        if not validate_phone_number(phone):
            raise HTTPException(
                status_code=400,
                detail=f"Invalid phone number: {phone}. Please enter a valid Sri Lankan number.",
            )


def check_gender(gender: Optional[str]) -> None:
    if gender and gender not in GENDERS:
        raise HTTPException(status_code=400, detail="Invalid gender selection.")


def parse_birthday(value: Optional[str], too_young: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        birthday = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="Invalid birthday date.")
    if birthday.tzinfo is None:
        birthday = birthday.replace(tzinfo=timezone.utc)
    today = date.today()
    try:
        cutoff = today.replace(year=today.year - MINIMUM_AGE)
    except ValueError:  # Feb 29
        cutoff = today.replace(year=today.year - MINIMUM_AGE, day=28)
    if birthday.date() > cutoff:
        raise HTTPException(status_code=400, detail=too_young)
    return birthday


def start_session(db: Database, user: Dict[str, Any], response: Response) -> TokenResponse:
    rotate_refresh_token(db, user["_id"])
    token = issue_session(user)
    set_session_cookie(response, token)
    return TokenResponse(access_token=token, user=public_user(user))


# Auth
@router.post("/register", status_code=201)
def register(payload: RegisterInput, db: Database = Depends(get_db)):
    if not payload.name or not payload.email or not payload.password or not payload.confirmPassword:
        raise HTTPException(status_code=400, detail="Name, email, password, and confirm password are required.")
    if len(payload.name.strip()) < 2:
        raise HTTPException(status_code=400, detail="Name must be at least 2 characters long.")
    if not EMAIL_PATTERN.match(payload.email):
        raise HTTPException(status_code=400, detail="Please enter a valid email address.")
    if is_admin_email(payload.email):
        raise HTTPException(
            status_code=400,
            detail="This email is reserved for admin access. Admins must sign in with Google.",
        )
    password_error = validate_password(payload.password)
    if password_error:
        raise HTTPException(status_code=400, detail=password_error)
    if payload.password != payload.confirmPassword:
        raise HTTPException(status_code=400, detail="Passwords do not match.")
    if not payload.contactNumbers:
        raise HTTPException(status_code=400, detail="At least one contact number is required.")
    for phone in payload.contactNumbers:
        if not phone or not phone.strip():
            raise HTTPException(status_code=400, detail="Contact number cannot be empty.")
    check_phone_numbers(payload.contactNumbers)
    check_gender(payload.gender)
    birthday = parse_birthday(payload.birthday, "You must be at least 13 years old to register.")

    email = payload.email.strip().lower()
    if db["user"].find_one({"email": email}):
        raise HTTPException(status_code=409, detail="An account with this email already exists. Please login instead.")

    user_doc = build_user(
        name=payload.name.strip(),
        email=email,
        password=hash_password(payload.password),
        contactNumbers=[c.strip() for c in payload.contactNumbers],
        addresses=clean_strings(payload.addresses),
        birthday=birthday,
        gender=payload.gender or None,
        role="user",
        provider="credentials",
    )
    try:
        user_id = create_document(db, "user", user_doc)
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="An account with this email already exists.")
    logger.info("Registered user %s", user_id)
    return {
        "success": True,
        "message": "Account created successfully! You can now log in.",
        "user": {"id": user_id, "name": user_doc["name"], "email": email},
    }


@router.post("/auth/login", response_model=TokenResponse)
def login(payload: LoginInput, response: Response, db: Database = Depends(get_db)):
    user = db["user"].find_one({"email": payload.email.lower()})
    if not user:
        raise HTTPException(status_code=401, detail="No account found with this email. Please register first.")
    if not user.get("isActive", True):
        raise HTTPException(status_code=401, detail="Your account has been deactivated. Please contact support.")
    if user.get("role") == "admin" and user.get("provider") == "google":
        raise HTTPException(status_code=401, detail="Admin accounts must sign in with Google.")
    if not user.get("password"):
        raise HTTPException(status_code=401, detail="This account uses Google sign-in. Please sign in with Google.")
    if not verify_password(payload.password, user["password"]):
        raise HTTPException(status_code=401, detail="Incorrect password. Please try again.")
    return start_session(db, user, response)


@router.post("/auth/google", response_model=TokenResponse)
def google_sign_in(
    response: Response,
    identity: GoogleIdentity = Depends(verify_google_identity),
    db: Database = Depends(get_db),
):
    admin = is_admin_email(identity.email)
    existing = db["user"].find_one({"email": identity.email})
    if existing:
        if not existing.get("isActive", True):
            raise HTTPException(status_code=401, detail="Your account has been deactivated. Please contact support.")
        update: Dict[str, Any] = {
            "googleId": identity.google_id,
            "image": identity.picture or existing.get("image"),
            "updated_at": utcnow(),
        }
        if existing.get("provider") == "credentials":
            update["provider"] = "both"
        if admin:
            update["role"] = "admin"
        db["user"].update_one({"_id": existing["_id"]}, {"$set": update})
        user = db["user"].find_one({"_id": existing["_id"]})
    else:
        user_doc = build_user(
            name=identity.name,
            email=identity.email,
            image=identity.picture,
            googleId=identity.google_id,
            provider="google",
            role="admin" if admin else "user",
            contactNumbers=[],
            addresses=[],
        )
        try:
            user_id = create_document(db, "user", user_doc)
        except DuplicateKeyError:
            raise HTTPException(status_code=409, detail="An account with this email already exists.")
        user = db["user"].find_one({"_id": ObjectId(user_id)})
        logger.info("Created Google user %s", user_id)
    return start_session(db, user, response)


@router.post("/auth/logout")
def logout(
    response: Response,
    context: Optional[AuthContext] = Depends(get_auth_context),
    db: Database = Depends(get_db),
):
    if context is not None and ObjectId.is_valid(context.user_id):
        db["user"].update_one(
            {"_id": ObjectId(context.user_id)},
            {"$unset": {"refreshToken": "", "refreshTokenExpiry": ""}},
        )
    response.delete_cookie(SESSION_COOKIE_NAME)
    return {"success": True, "message": "Signed out."}


@router.post("/refresh-token")
def refresh_token(context: AuthContext = Depends(require_session), db: Database = Depends(get_db)):
    user = None
    if ObjectId.is_valid(context.user_id):
        user = db["user"].find_one({"_id": ObjectId(context.user_id)})
    if not user:
        raise HTTPException(status_code=404, detail="User not found.")
    if not user.get("isActive", True):
        raise HTTPException(status_code=403, detail="Account has been deactivated.")
    if not refresh_window_open(user):
        raise HTTPException(status_code=401, detail="Session expired. Please log in again.")
    expiry = rotate_refresh_token(db, user["_id"])
    logger.info("Rotated refresh token for user %s", context.user_id)
    return {"success": True, "message": "Token refreshed successfully.", "expiresAt": expiry.isoformat()}


# Account
@router.get("/account")
def get_account(context: AuthContext = Depends(require_session), db: Database = Depends(get_db)):
    return {"success": True, "user": public_user(load_user(db, context))}


@router.put("/account")
def update_account(
    payload: AccountUpdateInput,
    context: AuthContext = Depends(require_session),
    db: Database = Depends(get_db),
):
    name = (payload.name or "").strip()
    if not name:
        raise HTTPException(status_code=400, detail="Name is required.")
    if len(name) < 2:
        raise HTTPException(status_code=400, detail="Name must be at least 2 characters.")
    if len(name) > 100:
        raise HTTPException(status_code=400, detail="Name cannot exceed 100 characters.")

    user = load_user(db, context)
    contact_numbers = clean_strings(payload.contactNumbers)
    google_only_admin = user.get("role") == "admin" and user.get("provider") == "google"
    if not google_only_admin and not contact_numbers:
        raise HTTPException(status_code=400, detail="At least one contact number is required.")
    check_phone_numbers(contact_numbers)
    check_gender(payload.gender)
    birthday = parse_birthday(payload.birthday, "You must be at least 13 years old.")

    update = {
        "name": name,
        "contactNumbers": contact_numbers,
        "addresses": clean_strings(payload.addresses),
        "birthday": birthday,
        "gender": payload.gender or None,
        "updated_at": utcnow(),
    }
    db["user"].update_one({"_id": user["_id"]}, {"$set": update})
    updated = db["user"].find_one({"_id": user["_id"]})
    return {"success": True, "message": "Profile updated successfully!", "user": public_user(updated)}


@router.post("/upload-profile-image")
def upload_profile_image(
    image: Optional[UploadFile] = File(None),
    context: AuthContext = Depends(require_session),
    db: Database = Depends(get_db),
    store: Optional[BlobStore] = Depends(optional_blob_store),
):
    if image is None:
        raise HTTPException(status_code=400, detail="No image file provided.")
    data = read_upload(image.file)
    validate_image(image.content_type, len(data))
    store = require_blob_store(store)

    user = load_user(db, context)
    key = f"profile-images/{user['_id']}/{int(time.time() * 1000)}.{file_extension(image.filename, image.content_type)}"
    try:
        ref = store.put(key, data, image.content_type)
    except (BotoCoreError, ClientError):
        logger.exception("Profile image upload failed for user %s", context.user_id)
        raise HTTPException(status_code=500, detail="Failed to upload image. Please try again.")

    image_url = ref.to_url()
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"image": image_url, "updated_at": utcnow()}})
    if user.get("image") and user["image"] != image_url:
        discard_image(store, user["image"])
    return {"success": True, "message": "Profile image updated successfully!", "imageUrl": image_url}


@router.delete("/upload-profile-image")
def delete_profile_image(
    context: AuthContext = Depends(require_session),
    db: Database = Depends(get_db),
    store: Optional[BlobStore] = Depends(optional_blob_store),
):
    user = load_user(db, context)
    if user.get("image"):
        discard_image(store, user["image"])
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"image": None, "updated_at": utcnow()}})
    return {"success": True, "message": "Profile image removed.", "imageUrl": None}
