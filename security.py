import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
import structlog
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pymongo.database import Database

import config
from database import get_db, serialize_doc, to_object_id
from errors import Forbidden, Unauthorized

logger = structlog.get_logger(__name__)

security = HTTPBearer(auto_error=False)

PBKDF2_ROUNDS = 120_000

# Which roles may exercise which capability. Every handler that mutates
# state goes through authorize() with one of these names.
CAPABILITIES = {
    "shop": {"user", "admin"},
    "catalog:write": {"admin"},
    "orders:read-all": {"admin"},
    "orders:fulfil": {"admin"},
    "orders:cancel": {"user", "admin"},
    "orders:request-return": {"user", "admin"},
    "orders:resolve-return": {"admin"},
    "orders:override": {"admin"},
    "users:manage": {"admin"},
    "analytics:read": {"admin"},
}


def hash_password(password: str) -> str:
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), PBKDF2_ROUNDS)
    return f"{salt}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    try:
        salt, expected = stored.split("$", 1)
    except (AttributeError, ValueError):
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), PBKDF2_ROUNDS)
    return hmac.compare_digest(digest.hex(), expected)


def create_token(payload: dict) -> str:
    exp = datetime.now(timezone.utc) + timedelta(days=config.TOKEN_EXPIRE_DAYS)
    to_encode = {**payload, "exp": exp}
    return jwt.encode(to_encode, config.JWT_SECRET, algorithm=config.JWT_ALGO)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGO])
    except jwt.ExpiredSignatureError:
        raise Unauthorized("Session expired, login again")
    except jwt.InvalidTokenError:
        raise Unauthorized("Not Authorized, Login Again")


def public_user(doc: dict) -> dict:
    user = serialize_doc(doc)
    user.pop("password", None)
    return user


async def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
                           db: Database = Depends(get_db)) -> dict:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise Unauthorized("Not Authorized, Login Again")
    payload = decode_token(credentials.credentials)
    user_id = payload.get("id")
    if not user_id:
        raise Unauthorized("Invalid token payload")
    user = db["user"].find_one({"_id": to_object_id(user_id)})
    if not user:
        raise Unauthorized("User not found")
    if user.get("suspended"):
        raise Forbidden("Account suspended")
    return public_user(user)


def authorize(user: dict, capability: str) -> None:
    role = user.get("role", "user")
    if role not in CAPABILITIES[capability]:
        logger.info("access_denied", user_id=user.get("_id"), role=role, capability=capability)
        raise Forbidden("Access denied")


def require(capability: str):
    """Dependency resolving the current user and checking one capability."""
    async def dependency(user: dict = Depends(get_current_user)) -> dict:
        authorize(user, capability)
        return user
    return dependency
