"""Accounts: registration, login, self-service profile and admin user management."""

from typing import List, Optional

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import carts
import storage
from auth import hash_password, verify_password
from database import create_document, get_documents, now, to_object_id
from errors import NotFoundError, ValidationError
from logging_config import get_logger
from schemas import Role, User

logger = get_logger(__name__)

ROLES = [role.value for role in Role]


def public_user(user: dict) -> dict:
    """Copy of a user document without the password hash."""
    user = dict(user)
    user.pop("password_hash", None)
    return user


def _get(db: Database, user_id) -> dict:
    obj_id = to_object_id(user_id)
    user = db["user"].find_one({"_id": obj_id}) if obj_id else None
    if not user:
        raise NotFoundError("User %s not found" % user_id)
    return user


def _ensure_email_free(db: Database, email: str, exclude_id=None) -> None:
    existing = db["user"].find_one({"email": email})
    if existing and existing["_id"] != exclude_id:
        raise ValidationError("Email %s is already registered" % email)


def create_user(db: Database, name: str, email: str, password: str,
                role: str = Role.USER.value, profile_image: Optional[str] = None) -> dict:
    if not password:
        raise ValidationError("Password is required")
    if role not in ROLES:
        raise ValidationError("Invalid role, expected one of: %s" % ", ".join(ROLES))
    email = email.lower()
    _ensure_email_free(db, email)
    user = User(name=name, email=email, password_hash=hash_password(password), role=role, profile_image=profile_image)
    try:
        user_id = create_document(db, "user", user)
    except DuplicateKeyError:
        raise ValidationError("Email %s is already registered" % email)
    logger.info("user_created", user_id=str(user_id), role=user.role)
    return public_user(db["user"].find_one({"_id": user_id}))


def register(db: Database, name: str, email: str, password: str) -> dict:
    """Self-registration always creates a regular user."""
    return create_user(db, name, email, password, role=Role.USER.value)


def authenticate(db: Database, email: str, password: str) -> dict:
    user = db["user"].find_one({"email": email.lower()})
    if not user or not verify_password(password, user.get("password_hash", "")):
        raise ValidationError("Invalid email or password")
    return public_user(user)


def get_user(db: Database, user_id) -> dict:
    return public_user(_get(db, user_id))


def list_users(db: Database) -> List[dict]:
    return [public_user(u) for u in get_documents(db, "user", sort=[("created_at", -1), ("_id", -1)])]


def update_user(db: Database, user_id, name: Optional[str] = None, email: Optional[str] = None,
                role: Optional[str] = None, profile_image: Optional[str] = None) -> dict:
    """Partial update; a new profile image replaces the old file."""
    user = _get(db, user_id)
    update = {}
    if name:
        update["name"] = name
    if email and email.lower() != user["email"]:
        _ensure_email_free(db, email.lower(), exclude_id=user["_id"])
        update["email"] = email.lower()
    if role:
        if role not in ROLES:
            raise ValidationError("Invalid role, expected one of: %s" % ", ".join(ROLES))
        update["role"] = role
    if profile_image:
        update["profile_image"] = profile_image
    if update:
        merged = {k: user.get(k) for k in User.model_fields}
        merged.update(update)
        User(**merged)
        update["updated_at"] = now()
        try:
            db["user"].update_one({"_id": user["_id"]}, {"$set": update})
        except DuplicateKeyError:
            raise ValidationError("Email %s is already registered" % email.lower())
        if profile_image and user.get("profile_image"):
            storage.delete_asset("users", user["profile_image"])
        logger.info("user_updated", user_id=str(user["_id"]), fields=sorted(update))
    return public_user(db["user"].find_one({"_id": user["_id"]}))


def change_password(db: Database, user_id, current_password: str, new_password: str) -> None:
    user = _get(db, user_id)
    if not verify_password(current_password, user.get("password_hash", "")):
        raise ValidationError("Current password is incorrect")
    reset_password(db, user["_id"], new_password)


def reset_password(db: Database, user_id, new_password: str) -> dict:
    if not new_password:
        raise ValidationError("New password is required")
    user = _get(db, user_id)
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"password_hash": hash_password(new_password), "updated_at": now()}},
    )
    logger.info("password_changed", user_id=str(user["_id"]))
    return public_user(db["user"].find_one({"_id": user["_id"]}))


def delete_user(db: Database, user_id) -> tuple:
    """Delete a user, their cart and their profile image.

    Returns ``(user, image_deleted)``. The image is only touched when the user
    has one, and a failed removal does not undo the deletion.
    """
    user = _get(db, user_id)
    db["user"].delete_one({"_id": user["_id"]})
    carts.delete_for_user(db, user["_id"])
    image_deleted = True
    if user.get("profile_image"):
        image_deleted = storage.delete_asset("users", user["profile_image"])
        if not image_deleted:
            logger.warning("profile_image_orphaned", user_id=str(user["_id"]), image=user["profile_image"])
    logger.info("user_deleted", user_id=str(user["_id"]))
    return public_user(user), image_deleted
