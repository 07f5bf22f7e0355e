import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from fastapi import Depends, Header
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import config
from database import get_db, serialize_doc, to_object_id
from errors import AuthenticationError, AuthorizationError
from logging_config import get_logger
from schemas import Role, TokenBlacklist

logger = get_logger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

ANY_ROLE = frozenset({Role.USER.value, Role.ADMIN.value})
ADMIN_ONLY = frozenset({Role.ADMIN.value})

# (resource, action) -> roles allowed to perform it
POLICY: Dict[tuple, frozenset] = {
    ("profile", "read"): ANY_ROLE,
    ("profile", "update"): ANY_ROLE,
    ("profile", "delete"): ANY_ROLE,
    ("users", "read"): ADMIN_ONLY,
    ("users", "create"): ADMIN_ONLY,
    ("users", "update"): ADMIN_ONLY,
    ("users", "delete"): ADMIN_ONLY,
    ("products", "read"): ANY_ROLE,
    ("products", "create"): ADMIN_ONLY,
    ("products", "update"): ADMIN_ONLY,
    ("products", "delete"): ADMIN_ONLY,
    ("cart", "read"): ANY_ROLE,
    ("cart", "update"): ANY_ROLE,
    ("orders", "checkout"): ANY_ROLE,
    ("orders", "read"): ANY_ROLE,
    ("orders", "read_all"): ADMIN_ONLY,
    ("orders", "update"): ADMIN_ONLY,
    ("orders", "delete"): ADMIN_ONLY,
    ("assets", "read"): ANY_ROLE,
}


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def _encode(data: dict, secret: str, expires_delta: timedelta) -> str:
    to_encode = data.copy()
    issued_at = datetime.now(timezone.utc)
    to_encode.update({"iat": issued_at, "exp": issued_at + expires_delta, "jti": uuid.uuid4().hex})
    return jwt.encode(to_encode, secret, algorithm=config.ALGORITHM)


def create_access_token(user: dict, expires_delta: Optional[timedelta] = None) -> str:
    claims = {"sub": str(user.get("_id", user.get("id"))), "role": user["role"], "type": "access"}
    return _encode(claims, config.SECRET_KEY, expires_delta or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES))


def create_refresh_token(user: dict, expires_delta: Optional[timedelta] = None) -> str:
    claims = {"sub": str(user.get("_id", user.get("id"))), "type": "refresh"}
    return _encode(claims, config.REFRESH_SECRET_KEY, expires_delta or timedelta(days=config.REFRESH_TOKEN_EXPIRE_DAYS))


def decode_token(token: str, token_type: str = "access") -> dict:
    secret = config.SECRET_KEY if token_type == "access" else config.REFRESH_SECRET_KEY
    try:
        payload = jwt.decode(token, secret, algorithms=[config.ALGORITHM])
    except ExpiredSignatureError:
        raise AuthenticationError("Token has expired")
    except JWTError:
        raise AuthenticationError("Invalid token")
    if payload.get("type") != token_type or not payload.get("sub"):
        raise AuthenticationError("Invalid token")
    return payload


def token_signature(token: str) -> str:
    return token.rsplit(".", 1)[-1]


def blacklist_token(db: Database, token: str, payload: dict) -> None:
    """Reject ``token`` from now on; the entry expires together with the token."""
    entry = TokenBlacklist(
        signature=token_signature(token),
        expired_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
    )
    try:
        db["token_blacklist"].insert_one(entry.model_dump())
    except DuplicateKeyError:
        # already revoked
        return
    logger.info("token_blacklisted", user_id=payload.get("sub"))


def is_blacklisted(db: Database, token: str) -> bool:
    return db["token_blacklist"].find_one({"signature": token_signature(token)}) is not None


# Dependencies

def bearer_token(authorization: Optional[str] = Header(default=None)) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthenticationError("Not authenticated")
    token = authorization.split(" ", 1)[1].strip()
    if not token:
        raise AuthenticationError("Not authenticated")
    return token


def get_current_user(token: str = Depends(bearer_token), db: Database = Depends(get_db)) -> dict:
    payload = decode_token(token)
    if is_blacklisted(db, token):
        raise AuthenticationError("Token has been revoked, please log in again")
    user_id = to_object_id(payload["sub"])
    user = db["user"].find_one({"_id": user_id}) if user_id else None
    if not user:
        raise AuthenticationError("User not found")
    user = serialize_doc(user)
    user.pop("password_hash", None)
    return user


def require(resource: str, action: str):
    """Dependency allowing the request only for roles the policy grants ``(resource, action)``."""
    allowed = POLICY[(resource, action)]

    def check(current_user: dict = Depends(get_current_user)) -> dict:
        if current_user.get("role") not in allowed:
            raise AuthorizationError("Access denied")
        return current_user

    return check
