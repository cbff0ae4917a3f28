from typing import Optional

import structlog
from fastapi import APIRouter, Depends
from fastapi.security import HTTPAuthorizationCredentials
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import config
from database import create_document, get_db, get_documents, to_object_id, utcnow
from errors import Conflict, Forbidden, NotFound, Unauthorized, ValidationFailed
from schemas import (
    AdminCreateBody,
    AdminUserUpdateBody,
    LoginBody,
    ProfileUpdateBody,
    RegisterBody,
    User as UserSchema,
)
from security import (
    authorize,
    create_token,
    get_current_user,
    hash_password,
    public_user,
    require,
    security,
    verify_password,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/user", tags=["user"])


def _check_password(password: str) -> None:
    if len(password) < config.MIN_PASSWORD_LENGTH:
        raise ValidationFailed("Please enter a strong password")


def _check_email_free(db: Database, email: str, exclude_id=None) -> None:
    filt = {"email": email}
    if exclude_id is not None:
        filt["_id"] = {"$ne": exclude_id}
    if db["user"].find_one(filt):
        raise Conflict("User already exists")


def _save_user(db: Database, oid, update: dict):
    # the unique email index still wins if another request took the address first
    try:
        return db["user"].update_one({"_id": oid}, {"$set": update})
    except DuplicateKeyError:
        raise Conflict("User already exists")


def register_user(db: Database, body: RegisterBody, role: str = "user") -> str:
    _check_password(body.password)
    _check_email_free(db, body.email)
    user = UserSchema(
        first_name=body.first_name,
        last_name=body.last_name,
        email=body.email,
        password=hash_password(body.password),
        address=body.address,
        phone=body.phone,
        role=role,
    )
    try:
        user_id = create_document(db, "user", user)
    except DuplicateKeyError:
        raise Conflict("User already exists")
    logger.info("user_registered", user_id=user_id, role=role)
    return user_id


def authenticate(db: Database, email: str, password: str) -> dict:
    user = db["user"].find_one({"email": email})
    if not user or not verify_password(password, user.get("password", "")):
        logger.info("login_failed", email=email)
        raise Unauthorized("Invalid credentials")
    if user.get("suspended"):
        raise Forbidden("Account suspended")
    return user


def _bootstrap_admin(db: Database, email: str, password: str) -> dict:
    """Create (or refresh) the admin account configured through the environment."""
    db["user"].update_one(
        {"email": email},
        {
            "$set": {"role": "admin", "suspended": False, "password": hash_password(password), "updatedAt": utcnow()},
            "$setOnInsert": {
                "firstName": "Admin",
                "lastName": "User",
                "address": "",
                "phone": "",
                "cartData": {},
                "wishlistData": {},
                "createdAt": utcnow(),
            },
        },
        upsert=True,
    )
    logger.info("bootstrap_admin_synced", email=email)
    return db["user"].find_one({"email": email})


def _token_for(user: dict) -> str:
    return create_token({"id": str(user["_id"]), "role": user.get("role", "user")})


# ----------------------- Public -----------------------
@router.post("/register")
def register(body: RegisterBody, db: Database = Depends(get_db)):
    user_id = register_user(db, body)
    token = create_token({"id": user_id, "role": "user"})
    return {"success": True, "token": token}


@router.post("/login")
def login(body: LoginBody, db: Database = Depends(get_db)):
    user = authenticate(db, body.email, body.password)
    return {"success": True, "token": _token_for(user), "user": public_user(user)}


@router.post("/admin")
def admin_login(body: LoginBody, db: Database = Depends(get_db)):
    user = db["user"].find_one({"email": body.email, "role": "admin"})
    if user and verify_password(body.password, user.get("password", "")):
        if user.get("suspended"):
            raise Forbidden("Account suspended")
    elif config.ADMIN_EMAIL and body.email == config.ADMIN_EMAIL and body.password == config.ADMIN_PASSWORD:
        user = _bootstrap_admin(db, body.email, body.password)
    else:
        logger.info("admin_login_failed", email=body.email)
        raise Unauthorized("Invalid credentials")
    return {"success": True, "token": _token_for(user)}


@router.post("/register-admin")
async def register_admin(body: AdminCreateBody,
                         credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
                         db: Database = Depends(get_db)):
    # Open until the first admin exists, admin-only afterwards
    if db["user"].count_documents({"role": "admin"}) > 0:
        actor = await get_current_user(credentials, db)
        authorize(actor, "users:manage")
    user_id = register_user(db, body, role=body.role)
    return {"success": True, "message": "User created", "userId": user_id}


# ----------------------- Profile -----------------------
@router.get("/profile")
def get_profile(user: dict = Depends(get_current_user)):
    return {"success": True, "user": user}


@router.put("/profile")
def update_profile(body: ProfileUpdateBody, user: dict = Depends(get_current_user),
                   db: Database = Depends(get_db)):
    oid = to_object_id(user["_id"])
    update = body.model_dump(by_alias=True, exclude_none=True)
    if "email" in update:
        _check_email_free(db, update["email"], exclude_id=oid)
    if "password" in update:
        _check_password(update["password"])
        update["password"] = hash_password(update["password"])
    update["updatedAt"] = utcnow()
    _save_user(db, oid, update)
    return {"success": True, "message": "Profile updated", "user": public_user(db["user"].find_one({"_id": oid}))}


# ----------------------- Admin -----------------------
@router.get("/all")
def list_users(_admin: dict = Depends(require("users:manage")), db: Database = Depends(get_db)):
    users = get_documents(db, "user", {}, sort=[("createdAt", -1)])
    return {"success": True, "users": [public_user(u) for u in users]}


@router.put("/{user_id}")
def update_user(user_id: str, body: AdminUserUpdateBody, admin: dict = Depends(require("users:manage")),
                db: Database = Depends(get_db)):
    oid = to_object_id(user_id)
    update = body.model_dump(by_alias=True, exclude_none=True)
    if "email" in update:
        _check_email_free(db, update["email"], exclude_id=oid)
    if user_id == admin["_id"] and (update.get("suspended") or update.get("role") == "user"):
        raise ValidationFailed("You cannot suspend or demote your own account")
    update["updatedAt"] = utcnow()
    res = _save_user(db, oid, update)
    if res.matched_count == 0:
        raise NotFound("User not found")
    logger.info("user_updated_by_admin", user_id=user_id, admin_id=admin["_id"], fields=sorted(update))
    return {"success": True, "message": "User updated", "user": public_user(db["user"].find_one({"_id": oid}))}


@router.delete("/{user_id}")
def delete_user(user_id: str, admin: dict = Depends(require("users:manage")), db: Database = Depends(get_db)):
    if user_id == admin["_id"]:
        raise ValidationFailed("You cannot delete your own account")
    res = db["user"].delete_one({"_id": to_object_id(user_id)})
    if res.deleted_count == 0:
        raise NotFound("User not found")
    logger.info("user_deleted", user_id=user_id, admin_id=admin["_id"])
    return {"success": True, "message": "User deleted"}
