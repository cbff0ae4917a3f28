"""
Cart and wishlist store

Both live on the user document: ``cartData`` maps productId -> size ->
quantity and ``wishlistData`` maps productId -> True. Each mutation reads the
user, changes the mapping in memory and writes the whole mapping back, so two
devices editing the same cart concurrently resolve last-write-wins.
"""
import structlog
from fastapi import APIRouter, Depends
from pymongo.database import Database

from database import get_db, to_object_id, utcnow
from errors import NotFound
from schemas import CartAddBody, CartUpdateBody, WishlistBody
from security import require

logger = structlog.get_logger(__name__)

cart_router = APIRouter(prefix="/cart", tags=["cart"])
wishlist_router = APIRouter(prefix="/wishlist", tags=["wishlist"])


def _load_user(db: Database, user_id: str) -> dict:
    user = db["user"].find_one({"_id": to_object_id(user_id)}, {"cartData": 1, "wishlistData": 1})
    if not user:
        raise NotFound("User not found")
    return user


def _save(db: Database, user_id: str, field: str, value: dict) -> None:
    db["user"].update_one({"_id": to_object_id(user_id)}, {"$set": {field: value, "updatedAt": utcnow()}})
    logger.debug("user_mapping_saved", user_id=user_id, field=field, entries=len(value))


# ----------------------- Cart -----------------------
def get_cart(db: Database, user_id: str) -> dict:
    return _load_user(db, user_id).get("cartData") or {}


def add_to_cart(db: Database, user_id: str, product_id: str, size: str) -> dict:
    cart = get_cart(db, user_id)
    sizes = cart.setdefault(product_id, {})
    sizes[size] = sizes.get(size, 0) + 1
    _save(db, user_id, "cartData", cart)
    return cart


def update_cart_quantity(db: Database, user_id: str, product_id: str, size: str, quantity: int) -> dict:
    """Set the quantity of one line. Zero or less removes the line, and the
    product key goes with its last size."""
    cart = get_cart(db, user_id)
    if quantity > 0:
        cart.setdefault(product_id, {})[size] = quantity
    else:
        sizes = cart.get(product_id, {})
        sizes.pop(size, None)
        if not sizes:
            cart.pop(product_id, None)
    _save(db, user_id, "cartData", cart)
    return cart


def clear_cart(db: Database, user_id: str) -> None:
    _save(db, user_id, "cartData", {})


# ----------------------- Wishlist -----------------------
def get_wishlist(db: Database, user_id: str) -> dict:
    return _load_user(db, user_id).get("wishlistData") or {}


def add_to_wishlist(db: Database, user_id: str, product_id: str) -> dict:
    wishlist = get_wishlist(db, user_id)
    wishlist[product_id] = True
    _save(db, user_id, "wishlistData", wishlist)
    return wishlist


def remove_from_wishlist(db: Database, user_id: str, product_id: str) -> dict:
    wishlist = get_wishlist(db, user_id)
    wishlist.pop(product_id, None)
    _save(db, user_id, "wishlistData", wishlist)
    return wishlist


def clear_wishlist(db: Database, user_id: str) -> None:
    _load_user(db, user_id)
    _save(db, user_id, "wishlistData", {})


# ----------------------- Routes -----------------------
@cart_router.post("/add")
def cart_add(body: CartAddBody, user: dict = Depends(require("shop")), db: Database = Depends(get_db)):
    cart = add_to_cart(db, user["_id"], body.item_id, body.size)
    return {"success": True, "message": "Added To Cart", "cartData": cart}


@cart_router.post("/update")
def cart_update(body: CartUpdateBody, user: dict = Depends(require("shop")), db: Database = Depends(get_db)):
    cart = update_cart_quantity(db, user["_id"], body.item_id, body.size, body.quantity)
    return {"success": True, "message": "Cart Updated", "cartData": cart}


@cart_router.post("/get")
def cart_get(user: dict = Depends(require("shop")), db: Database = Depends(get_db)):
    return {"success": True, "cartData": get_cart(db, user["_id"])}


@wishlist_router.post("/add")
def wishlist_add(body: WishlistBody, user: dict = Depends(require("shop")), db: Database = Depends(get_db)):
    wishlist = add_to_wishlist(db, user["_id"], body.item_id)
    return {"success": True, "message": "Added to wishlist", "wishlistData": wishlist}


@wishlist_router.post("/remove")
def wishlist_remove(body: WishlistBody, user: dict = Depends(require("shop")), db: Database = Depends(get_db)):
    wishlist = remove_from_wishlist(db, user["_id"], body.item_id)
    return {"success": True, "message": "Removed from wishlist", "wishlistData": wishlist}


@wishlist_router.post("/get")
def wishlist_get(user: dict = Depends(require("shop")), db: Database = Depends(get_db)):
    return {"success": True, "wishlistData": get_wishlist(db, user["_id"])}


@wishlist_router.post("/clear")
def wishlist_clear(user: dict = Depends(require("shop")), db: Database = Depends(get_db)):
    clear_wishlist(db, user["_id"])
    return {"success": True, "message": "Wishlist cleared", "wishlistData": {}}
